"""Per-domain operating parameters (timeouts, rate limits, breaker thresholds)"""

import random
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

import orjson
from loguru import logger

from .config import DESKTOP_USER_AGENTS, MOBILE_USER_AGENTS
from .models import Difficulty, ExtractionMethod, SiteConfig

# Known recipe sites. Values override the SiteConfig defaults.
SITE_CONFIGS: Dict[str, Dict[str, Any]] = {
    # Easy sites - good schema.org markup
    "allrecipes.com": {
        "difficulty": Difficulty.EASY,
        "timeout": 20.0,
        "retry_attempts": 2,
        "preferred_method": ExtractionMethod.STANDARD,
        "notes": "Very reliable, good schema.org markup",
    },
    "simplyrecipes.com": {
        "difficulty": Difficulty.EASY,
        "timeout": 20.0,
        "notes": "Clean HTML structure, reliable",
    },
    "food.com": {
        "difficulty": Difficulty.EASY,
        "timeout": 20.0,
        "notes": "Good structured data",
    },
    "seriouseats.com": {
        "difficulty": Difficulty.EASY,
        "timeout": 20.0,
        "notes": "Detailed recipes, good markup",
    },
    "thekitchn.com": {
        "difficulty": Difficulty.EASY,
        "timeout": 20.0,
        "notes": "Clean structure, reliable",
    },
    "cooking.nytimes.com": {
        "difficulty": Difficulty.MEDIUM,
        "timeout": 25.0,
        "notes": "May require subscription for some recipes",
    },
    # Medium
    "bonappetit.com": {
        "difficulty": Difficulty.MEDIUM,
        "timeout": 25.0,
        "retry_attempts": 3,
        "preferred_method": ExtractionMethod.ENHANCED,
        "requires_javascript": True,
        "notes": "Dynamic content loading",
    },
    "epicurious.com": {
        "difficulty": Difficulty.MEDIUM,
        "timeout": 25.0,
        "preferred_method": ExtractionMethod.ENHANCED,
        "requires_javascript": True,
        "notes": "Complex page structure",
    },
    "tasteofhome.com": {
        "difficulty": Difficulty.MEDIUM,
        "timeout": 25.0,
        "preferred_method": ExtractionMethod.ENHANCED,
        "notes": "Heavy with ads, may be slow",
    },
    "delish.com": {
        "difficulty": Difficulty.MEDIUM,
        "timeout": 25.0,
        "preferred_method": ExtractionMethod.ENHANCED,
        "notes": "Heavy with ads and popups",
    },
    # Hard
    "foodnetwork.com": {
        "difficulty": Difficulty.HARD,
        "timeout": 30.0,
        "retry_attempts": 4,
        "rate_limit_min_delay": 2.0,
        "rate_limit_max_requests": 5,
        "preferred_method": ExtractionMethod.ENHANCED,
        "requires_javascript": True,
        "requires_special_handling": True,
        "circuit_breaker_threshold": 3,
        "notes": "Dynamic content, complex structure, may block scrapers",
    },
    "hellofresh.com": {
        "difficulty": Difficulty.HARD,
        "timeout": 35.0,
        "retry_attempts": 5,
        "rate_limit_min_delay": 3.0,
        "rate_limit_max_requests": 3,
        "preferred_method": ExtractionMethod.FALLBACK,
        "requires_javascript": True,
        "requires_special_handling": True,
        "circuit_breaker_threshold": 3,
        "notes": "Very challenging, most recipes need login, heavy JS",
    },
    "tasty.co": {
        "difficulty": Difficulty.HARD,
        "timeout": 30.0,
        "preferred_method": ExtractionMethod.ENHANCED,
        "requires_javascript": True,
        "requires_special_handling": True,
        "notes": "Video-centric, JSON data in scripts",
    },
}

_ENUM_FIELDS = {
    "difficulty": Difficulty,
    "preferred_method": ExtractionMethod,
}
_FIELD_NAMES = {f.name for f in fields(SiteConfig)}


def normalize_domain(domain: str) -> str:
    """Lower-case, drop port and leading www."""
    domain = domain.strip().lower().rstrip(".")
    if ":" in domain:
        domain = domain.split(":", 1)[0]
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def extract_domain(url: str) -> str:
    """Return the normalized hostname of an absolute URL, or 'unknown'"""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        hostname = None
    if not hostname:
        return "unknown"
    return normalize_domain(hostname)


def _coerce_overrides(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate an override mapping and convert enum strings"""
    coerced: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in _FIELD_NAMES or key == "domain":
            raise ValueError(f"Unknown site config field: {key}")
        enum_type = _ENUM_FIELDS.get(key)
        if enum_type is not None and not isinstance(value, enum_type):
            value = enum_type(value)
        coerced[key] = value
    return coerced


class SiteConfigRegistry:
    """
    Static lookup of per-domain configuration.

    Resolution order: exact domain, longest configured suffix on a label
    boundary, then defaults. No mutable state after construction.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
        defaults: Optional[Mapping[str, Any]] = None,
        include_builtin: bool = True,
    ):
        """
        Initialize registry.

        Args:
            overrides: Extra or replacement per-domain settings
            defaults: Settings applied to every domain before its own entry
            include_builtin: Start from the built-in table of known sites
        """
        self._defaults = _coerce_overrides(defaults or {})
        self._sites: Dict[str, Dict[str, Any]] = {}

        if include_builtin:
            for domain, values in SITE_CONFIGS.items():
                self._sites[normalize_domain(domain)] = _coerce_overrides(values)

        for domain, values in (overrides or {}).items():
            key = normalize_domain(domain)
            merged = dict(self._sites.get(key, {}))
            merged.update(_coerce_overrides(values))
            self._sites[key] = merged

        # Longest first so the most specific suffix wins
        self._suffixes = sorted(self._sites, key=len, reverse=True)

        logger.debug(f"Site config registry initialized: {len(self._sites)} domains")

    @classmethod
    def from_file(cls, path: Path, include_builtin: bool = True) -> "SiteConfigRegistry":
        """
        Load overrides from a JSON file.

        Expected shape: {"defaults": {...}, "sites": {"example.com": {...}}}
        """
        data = orjson.loads(Path(path).read_bytes())
        if not isinstance(data, dict):
            raise ValueError(f"Site config file must contain a JSON object: {path}")
        logger.info(f"Loaded site config overrides from {path}")
        return cls(
            overrides=data.get("sites", {}),
            defaults=data.get("defaults", {}),
            include_builtin=include_builtin,
        )

    def _match(self, domain: str) -> Optional[str]:
        if domain in self._sites:
            return domain
        for configured in self._suffixes:
            if domain.endswith("." + configured):
                return configured
        return None

    def resolve(self, domain: str) -> SiteConfig:
        """Resolve the configuration for a domain"""
        domain = normalize_domain(domain)
        config = replace(SiteConfig(domain=domain), **self._defaults)

        matched = self._match(domain)
        if matched is not None:
            config = replace(config, **self._sites[matched])
        return config

    def resolve_url(self, url: str) -> SiteConfig:
        return self.resolve(extract_domain(url))

    def is_challenging(self, domain: str) -> bool:
        return self.resolve(domain).is_challenging

    def configured_domains(self) -> List[str]:
        return sorted(self._sites)

    def summary(self) -> Dict[str, Any]:
        """Counts by difficulty and preferred method"""
        by_difficulty: Dict[str, int] = {}
        by_method: Dict[str, int] = {}
        for domain in self._sites:
            config = self.resolve(domain)
            by_difficulty[config.difficulty.value] = by_difficulty.get(config.difficulty.value, 0) + 1
            by_method[config.preferred_method.value] = by_method.get(config.preferred_method.value, 0) + 1
        return {
            "total_domains": len(self._sites),
            "by_difficulty": by_difficulty,
            "by_preferred_method": by_method,
        }


def user_agent_for(config: SiteConfig, rng: Optional[random.Random] = None) -> str:
    """Pick a user agent; hard JS-heavy sites get a mobile one"""
    use_mobile = config.requires_javascript and config.difficulty == Difficulty.HARD
    pool = MOBILE_USER_AGENTS if use_mobile else DESKTOP_USER_AGENTS

    if config.user_agent_rotation:
        return (rng or random).choice(pool)
    return pool[0]
