"""Result storage with async I/O - non-blocking streaming"""

import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import orjson  # Much faster than json module
from loguru import logger

from .exceptions import ScrapeFailedError
from .models import RecipeRecord

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = 60) -> str:
    slug = _SLUG_RE.sub("-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "recipe"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def _default(value: Any) -> Any:
    # Enums and dataclasses inside reports
    if hasattr(value, "value"):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


class AsyncStreamingStorage:
    """
    Async storage that never blocks the event loop.
    Uses aiofiles for async I/O and orjson for fast serialization.
    """

    def __init__(self, output_dir: Path):
        """
        Initialize async streaming storage.

        Args:
            output_dir: Base output directory; failures go to output_dir/failures
        """
        self.output_dir = Path(output_dir)
        self.failures_dir = self.output_dir / "failures"
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.failures_dir.mkdir(parents=True, exist_ok=True)

    async def _write_json(self, path: Path, data: Any) -> int:
        json_bytes = orjson.dumps(data, option=orjson.OPT_INDENT_2, default=_default)

        # Async file write - doesn't block event loop!
        async with aiofiles.open(path, "wb") as f:
            await f.write(json_bytes)
        return len(json_bytes)

    async def save_recipe(self, record: RecipeRecord, timestamp: Optional[str] = None) -> Path:
        """
        Save one extracted recipe.

        Returns:
            Path to saved file
        """
        timestamp = timestamp or _timestamp()
        path = self.output_dir / f"{record.domain}_{slugify(record.title)}_{timestamp}.json"
        size = await self._write_json(path, record.to_dict())
        logger.debug(f"💾 Saved recipe: {path.name} ({size / 1024:.1f}KB)")
        return path

    async def save_failure(self, error: ScrapeFailedError, timestamp: Optional[str] = None) -> Path:
        """Save a structured failure next to the results"""
        timestamp = timestamp or _timestamp()
        path = self.failures_dir / f"{error.domain}_{timestamp}_{abs(hash(error.url)) % 10_000:04d}.json"
        await self._write_json(path, error.to_dict())
        logger.debug(f"💾 Saved failure: {path.name}")
        return path

    async def save_report(self, report: Dict[str, Any], name: str = "report") -> Path:
        """Save a monitoring / run summary report"""
        path = self.output_dir / f"{name}_{_timestamp()}.json"
        size = await self._write_json(path, report)
        logger.success(f"💾 Saved {name}: {path.name} ({size / 1024:.1f}KB)")
        return path
