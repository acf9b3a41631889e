"""Fallback extraction through the Firecrawl prompt + schema API"""

import os
from typing import Any, Dict, Optional, Protocol

import httpx
from loguru import logger

from .config import EXTERNAL_SERVICE_TIMEOUT, FIRECRAWL_API_KEY_ENV, FIRECRAWL_API_URL
from .exceptions import FallbackUnavailableError, InvalidResponseError

EXTRACT_PROMPT = """Extract recipe information and return as JSON with these exact fields:
- title (string): Recipe name
- ingredients (array of strings): List of ingredients with quantities
- instructions (string): Step-by-step cooking instructions
- prep_time (string): Preparation time
- cook_time (string): Cooking time
- servings (number): Number of servings
- image_url (string): Main recipe image URL
- description (string): Recipe description"""

RECIPE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "ingredients": {"type": "array", "items": {"type": "string"}},
        "instructions": {"type": "string"},
        "prep_time": {"type": "string"},
        "cook_time": {"type": "string"},
        "servings": {"type": "number"},
        "image_url": {"type": "string"},
        "description": {"type": "string"},
    },
}


class FallbackExtractionService(Protocol):
    @property
    def available(self) -> bool:
        ...

    async def extract(self, url: str) -> Dict[str, Any]:
        ...


class FirecrawlFallback:
    """Independent extraction path used when the primary pipeline's result is too poor"""

    def __init__(
        self,
        api_key_env: str = FIRECRAWL_API_KEY_ENV,
        api_url: str = FIRECRAWL_API_URL,
        timeout: float = EXTERNAL_SERVICE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key_env = api_key_env
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None

    @property
    def available(self) -> bool:
        return self.api_key is not None

    async def extract(self, url: str) -> Dict[str, Any]:
        """
        Extract a recipe dict for `url`.

        Raises:
            FallbackUnavailableError: No API key in the environment
            httpx.HTTPStatusError: Non-2xx answer from the service
            InvalidResponseError: Answer did not contain an object
        """
        api_key = self.api_key
        if not api_key:
            raise FallbackUnavailableError(
                f"Fallback extraction not configured ({self.api_key_env} is not set)"
            )

        payload = {
            "url": url,
            "formats": ["extract"],
            "extract": {"prompt": EXTRACT_PROMPT, "schema": RECIPE_SCHEMA},
        }

        logger.info(f"🔥 Calling Firecrawl API for: {url}")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            if response.is_error:
                logger.error(f"❌ Firecrawl API error {response.status_code}: {response.text[:200]}")
            response.raise_for_status()
            data = response.json()

        # v1 nests the result under data.extract; older answers put it at the top
        extracted = data
        if isinstance(data, dict):
            inner = data.get("data") if isinstance(data.get("data"), dict) else data
            extracted = inner.get("extract") or inner

        if not isinstance(extracted, dict) or not extracted:
            raise InvalidResponseError("Firecrawl returned unexpected response format", url=url)

        logger.success(f"🎉 Firecrawl extraction successful for {url}")
        return extracted
