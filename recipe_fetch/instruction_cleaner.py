"""Optional LLM cleanup of extracted instruction text (Groq chat API)"""

import os
from typing import Optional, Protocol

import httpx
from loguru import logger

from .config import EXTERNAL_SERVICE_TIMEOUT, GROQ_API_KEY_ENV, GROQ_API_URL, GROQ_MODEL

SYSTEM_PROMPT = (
    "You are a specialized recipe instruction parser. Extract and clean up cooking "
    "instructions from the given text. Remove any navigation elements, advertisements, "
    "metadata, social sharing buttons, and website headers/footers. Return only the "
    "actual cooking steps in a clear, numbered format."
)


class InstructionCleaner(Protocol):
    @property
    def available(self) -> bool:
        ...

    async def clean(self, instructions: str) -> str:
        ...


class GroqInstructionCleaner:
    """
    Rewrites scraped instructions into clean numbered steps.

    The API key is read from the environment on every call, so setting or
    unsetting it takes effect without rebuilding the scraper.
    """

    def __init__(
        self,
        api_key_env: str = GROQ_API_KEY_ENV,
        model: str = GROQ_MODEL,
        api_url: str = GROQ_API_URL,
        timeout: float = EXTERNAL_SERVICE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key_env = api_key_env
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None

    @property
    def available(self) -> bool:
        return self.api_key is not None

    async def clean(self, instructions: str) -> str:
        """
        Return cleaned instructions.

        Returns the input unchanged when no key is configured or the text is
        blank. HTTP and payload errors propagate to the caller.
        """
        api_key = self.api_key
        if not api_key or not instructions.strip():
            return instructions

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        "Clean and format these recipe instructions, keeping only the "
                        f"actual cooking steps:\n\n{instructions}"
                    ),
                },
            ],
            "temperature": 0.1,
        }

        logger.debug("Cleaning instructions with Groq LLM...")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            response.raise_for_status()
            data = response.json()

        choices = data.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content or not content.strip():
            raise ValueError("Unexpected Groq API response format")

        logger.debug("Successfully cleaned instructions with Groq")
        return content.strip()
