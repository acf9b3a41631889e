"""Recipe field extraction from raw HTML"""

import html as html_lib
import re
from typing import Any, Dict, List, Optional, Protocol

import orjson
from loguru import logger

_JSON_LD_RE = re.compile(
    r"<script[^>]+type=[\"']application/ld\+json[\"'][^>]*>(.*?)</script>", re.I | re.S
)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_ISO_DURATION_RE = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:\d+(?:\.\d+)?S)?)?$", re.I
)
_INT_RE = re.compile(r"\d+")
_H1_RE = re.compile(r"<h1[^>]*>(.*?)</h1>", re.I | re.S)
_INGREDIENT_ITEM_RE = re.compile(
    r"<li[^>]*(?:itemprop=[\"']recipeIngredient[\"']|class=[\"'][^\"']*ingredient[^\"']*[\"'])[^>]*>(.*?)</li>",
    re.I | re.S,
)
_INSTRUCTION_BLOCK_RE = re.compile(
    r"<(?:ol|ul|div|section)[^>]*(?:itemprop=[\"']recipeInstructions[\"']|class=[\"'][^\"']*(?:instruction|direction|step)[^\"']*[\"'])[^>]*>(.*?)</(?:ol|ul|div|section)>",
    re.I | re.S,
)
_LIST_ITEM_RE = re.compile(r"<(?:li|p)[^>]*>(.*?)</(?:li|p)>", re.I | re.S)

# Site names appended to <title>/og:title
_SITE_SUFFIX_RE = re.compile(
    r"\s*[-|]\s*(?:Food Network|Pioneer Woman|Allrecipes|Epicurious|Bon App[ée]tit|NYT Cooking|Serious Eats|Delish|Tasty)\b.*$",
    re.I,
)


class FieldExtractor(Protocol):
    def extract(self, html: str, url: str, domain: str) -> Dict[str, Any]:
        ...


def clean_text(text: Any) -> str:
    """Strip tags, decode entities and collapse whitespace"""
    if not text:
        return ""
    text = html_lib.unescape(str(text))
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def format_duration(minutes: int) -> str:
    """Convert minutes to 'Xh Ym' format"""
    hours = minutes // 60
    mins = minutes % 60
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"


def parse_iso_duration(value: Any) -> Optional[str]:
    """PT1H30M -> '1h 30m'; unrecognized strings are returned cleaned"""
    if not value:
        return None
    text = clean_text(value)
    match = _ISO_DURATION_RE.match(text)
    if not match or not any(match.groups()):
        return text or None

    days, hours, minutes = (int(group) if group else 0 for group in match.groups())
    total = days * 24 * 60 + hours * 60 + minutes
    return format_duration(total) if total else None


def parse_servings(value: Any) -> Optional[int]:
    """First integer in recipeYield ('4 servings', 4, ['4', '4 servings'])"""
    if isinstance(value, list):
        for item in value:
            servings = parse_servings(item)
            if servings:
                return servings
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if isinstance(value, str):
        match = _INT_RE.search(value)
        if match:
            return int(match.group()) or None
    return None


def normalize_image(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, list):
        return normalize_image(value[0]) if value else None
    if isinstance(value, dict):
        return normalize_image(value.get("url") or value.get("@id"))
    return str(value).strip() or None


def _flatten_instructions(value: Any) -> List[str]:
    """Walk HowToStep / HowToSection / plain string instruction shapes"""
    if not value:
        return []
    if isinstance(value, str):
        lines = [clean_text(line) for line in value.splitlines()]
        return [line for line in lines if line]
    if isinstance(value, list):
        steps: List[str] = []
        for item in value:
            steps.extend(_flatten_instructions(item))
        return steps
    if isinstance(value, dict):
        if "itemListElement" in value:
            return _flatten_instructions(value["itemListElement"])
        text = clean_text(value.get("text") or value.get("description") or value.get("name"))
        return [text] if text else []
    return []


def _has_type(node: Any, type_name: str) -> bool:
    if not isinstance(node, dict):
        return False
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return type_name in node_type
    return node_type == type_name


def _find_recipe_node(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            found = _find_recipe_node(item)
            if found:
                return found
        return None
    if not isinstance(data, dict):
        return None
    if _has_type(data, "Recipe"):
        return data
    if "@graph" in data:
        return _find_recipe_node(data["@graph"])
    return None


def get_meta_content(html: str, name: str) -> str:
    """Content of <meta name|property="name">, in either attribute order"""
    escaped = re.escape(name)
    patterns = (
        rf"<meta[^>]*(?:name|property)=[\"']{escaped}[\"'][^>]*content=[\"']([^\"']+)[\"']",
        rf"<meta[^>]*content=[\"']([^\"']+)[\"'][^>]*(?:name|property)=[\"']{escaped}[\"']",
    )
    for pattern in patterns:
        match = re.search(pattern, html, re.I)
        if match:
            return clean_text(match.group(1))
    return ""


class RecipeDataParser:
    """Best-effort recipe extraction: schema.org JSON-LD first, then markup heuristics"""

    @staticmethod
    def find_structured_data(html: str) -> Optional[Dict[str, Any]]:
        """Return the first schema.org Recipe node found in JSON-LD blocks"""
        for block in _JSON_LD_RE.findall(html):
            try:
                data = orjson.loads(block.strip())
            except orjson.JSONDecodeError as e:
                logger.debug(f"Skipping unparsable JSON-LD block: {e}")
                continue
            node = _find_recipe_node(data)
            if node:
                return node
        return None

    def extract(self, html: str, url: str, domain: str) -> Dict[str, Any]:
        """
        Extract recipe fields from a page.

        Args:
            html: Raw page HTML
            url: Page URL
            domain: Normalized domain (used for the placeholder title)

        Returns:
            Dict with title, ingredients, instructions, prep_time, cook_time,
            servings, image_url, description. Missing fields are None/empty.
        """
        recipe = self.find_structured_data(html) or {}
        if recipe:
            logger.debug(f"Found schema.org Recipe data for {domain}")

        ingredients = [clean_text(item) for item in recipe.get("recipeIngredient") or []]
        ingredients = [item for item in ingredients if item]
        if not ingredients:
            ingredients = self._ingredients_from_markup(html)

        steps = _flatten_instructions(recipe.get("recipeInstructions"))
        if not steps:
            steps = self._instructions_from_markup(html)
        instructions = "\n\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))

        title = clean_text(recipe.get("name")) or self._title_from_markup(html, domain)

        result = {
            "title": title,
            "ingredients": ingredients,
            "instructions": instructions,
            "prep_time": parse_iso_duration(recipe.get("prepTime")),
            "cook_time": parse_iso_duration(recipe.get("cookTime") or recipe.get("totalTime")),
            "servings": parse_servings(recipe.get("recipeYield")),
            "image_url": normalize_image(recipe.get("image"))
            or get_meta_content(html, "og:image")
            or get_meta_content(html, "twitter:image")
            or None,
            "description": clean_text(recipe.get("description"))
            or get_meta_content(html, "og:description")
            or get_meta_content(html, "description")
            or None,
        }

        logger.debug(
            f"Extracted from {url}: title={result['title']!r}, "
            f"{len(ingredients)} ingredients, {len(steps)} steps"
        )
        return result

    @staticmethod
    def _ingredients_from_markup(html: str) -> List[str]:
        seen = []
        for match in _INGREDIENT_ITEM_RE.findall(html):
            item = clean_text(match)
            if item and item not in seen:
                seen.append(item)
        return seen

    @staticmethod
    def _instructions_from_markup(html: str) -> List[str]:
        block = _INSTRUCTION_BLOCK_RE.search(html)
        if not block:
            return []
        steps = [clean_text(item) for item in _LIST_ITEM_RE.findall(block.group(1))]
        return [step for step in steps if step]

    @staticmethod
    def _title_from_markup(html: str, domain: str) -> str:
        title = get_meta_content(html, "og:title")
        if not title:
            match = _H1_RE.search(html)
            title = clean_text(match.group(1)) if match else ""
        title = _SITE_SUFFIX_RE.sub("", title).strip()
        # Placeholder is penalized by the record validator
        return title or f"{domain} Recipe"
