"""Quality scoring for fetched pages and extracted recipes"""

import re
from typing import Any, Dict, List, Mapping

from .config import (
    FALLBACK_SCORE_THRESHOLD,
    HTTP_MIN_SCORE,
    MAX_INGREDIENT_LENGTH,
    MIN_HTML_LENGTH,
    MIN_INGREDIENT_COUNT,
    MIN_INSTRUCTIONS_LENGTH,
    RECIPE_MIN_SCORE,
)
from .models import FetchResponse, ValidationResult

# Phrases that only show up on interstitial / anti-bot pages. Bare vendor
# names like "cloudflare" are left out because CDN asset URLs contain them.
BLOCK_INDICATORS = [
    "access denied",
    "captcha",
    "please verify you are a human",
    "checking your browser",
    "attention required",
    "security check",
    "too many requests",
    "rate limit exceeded",
    "you have been blocked",
]

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
RECIPE_INDICATORS = ("recipe", "ingredient", "instruction", "schema.org/recipe")
NAVIGATION_PHRASES = ("click here", "see more", "view recipe", "continue reading")

# Pages this small that only redirect via JS have nothing to extract
JS_REDIRECT_MAX_LENGTH = 5000
_JS_REDIRECT_RE = re.compile(
    r"window\.location|document\.location|<meta[^>]+http-equiv=[\"']?refresh", re.I
)
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)


def _clamp(score: int) -> int:
    return max(0, min(100, score))


def find_block_indicators(html: str) -> List[str]:
    """Return every anti-bot phrase present in the page"""
    lowered = html.lower()
    return [indicator for indicator in BLOCK_INDICATORS if indicator in lowered]


def _page_title(html: str) -> str:
    match = _TITLE_RE.search(html)
    return match.group(1).strip().lower() if match else ""


def validate_http_response(
    response: FetchResponse,
    domain: str,
    *,
    min_score: int = HTTP_MIN_SCORE,
) -> ValidationResult:
    """
    Score a fetched page before any extraction is attempted.

    Args:
        response: Fetched page
        domain: Domain the page belongs to
        min_score: Minimum score for the page to count as valid

    Returns:
        ValidationResult; non-2xx and empty bodies score 0
    """
    errors: List[str] = []
    warnings: List[str] = []
    score = 100

    if not response.ok:
        errors.append(f"HTTP error: {response.status} {response.reason}".rstrip())
        return ValidationResult(is_valid=False, errors=errors, warnings=warnings, score=0)

    content_type = response.content_type.lower()
    if not any(expected in content_type for expected in HTML_CONTENT_TYPES):
        errors.append(f"Invalid content type: {content_type or 'missing'}. Expected HTML.")
        score -= 50

    html = response.text or ""
    if not html:
        errors.append("Empty HTML content received")
        return ValidationResult(is_valid=False, errors=errors, warnings=warnings, score=0)

    if len(html) < MIN_HTML_LENGTH:
        errors.append(f"HTML content too short ({len(html)} bytes). Likely error page.")
        score -= 40

    lowered = html.lower()
    if "<html" not in lowered:
        errors.append("Missing <html> tag. Response may not be valid HTML.")
        score -= 30

    if "<body" not in lowered:
        warnings.append("Missing <body> tag. HTML structure may be incomplete.")
        score -= 10

    for indicator in find_block_indicators(html):
        errors.append(f'Detected blocking/error indicator: "{indicator}"')
        score -= 40

    if len(html) < JS_REDIRECT_MAX_LENGTH and _JS_REDIRECT_RE.search(html):
        warnings.append("JavaScript redirect detected. May need browser rendering.")
        score -= 20

    title = _page_title(html)
    if "404" in title or "not found" in title:
        errors.append("Appears to be 404 error page")
        score -= 50
    elif "500" in title or "internal server error" in title:
        errors.append("Appears to be 500 error page")
        score -= 50

    if not any(indicator in lowered for indicator in RECIPE_INDICATORS):
        warnings.append("No obvious recipe indicators found in HTML")
        score -= 20

    score = _clamp(score)
    return ValidationResult(
        is_valid=not errors and score >= min_score,
        errors=errors,
        warnings=warnings,
        score=score,
    )


def validate_recipe_data(
    recipe: Mapping[str, Any],
    domain: str,
    *,
    min_score: int = RECIPE_MIN_SCORE,
) -> ValidationResult:
    """Score an extracted recipe dict (title, ingredients, instructions, ...)"""
    errors: List[str] = []
    warnings: List[str] = []
    score = 100

    title = recipe.get("title") or ""
    if not isinstance(title, str) or not title.strip():
        errors.append("Missing or empty recipe title")
        score -= 30
    elif len(title.strip()) < 5:
        warnings.append(f'Recipe title very short: "{title}"')
        score -= 10
    elif title.strip() == f"{domain} Recipe":
        warnings.append("Title is generic fallback, extraction may have failed")
        score -= 20

    ingredients = recipe.get("ingredients")
    if ingredients is None:
        errors.append("Missing ingredients field")
        score -= 30
    elif not isinstance(ingredients, list):
        errors.append("Ingredients is not a list")
        score -= 25
    elif not ingredients:
        errors.append("No ingredients extracted")
        score -= 30
    elif len(ingredients) < MIN_INGREDIENT_COUNT:
        warnings.append(f"Very few ingredients ({len(ingredients)}). May be incomplete.")
        score -= 15
    else:
        empty = sum(1 for item in ingredients if not item or not str(item).strip())
        if empty:
            warnings.append(f"{empty} empty ingredient entries")
            score -= empty * 2

        too_long = sum(1 for item in ingredients if item and len(str(item)) > MAX_INGREDIENT_LENGTH)
        if too_long:
            warnings.append(f"{too_long} suspiciously long ingredients")
            score -= 10

    instructions = recipe.get("instructions") or ""
    if not isinstance(instructions, str) or not instructions.strip():
        errors.append("Missing or empty instructions")
        score -= 30
    else:
        if len(instructions) < MIN_INSTRUCTIONS_LENGTH:
            warnings.append(
                f"Instructions very short ({len(instructions)} chars). May be incomplete."
            )
            score -= 20

        lowered = instructions.lower()
        if len(instructions) < 100 and any(phrase in lowered for phrase in NAVIGATION_PHRASES):
            errors.append("Instructions appear to be navigation links, not actual steps")
            score -= 40

    image_url = recipe.get("image_url")
    if not image_url:
        warnings.append("No recipe image URL")
        score -= 5
    elif not str(image_url).startswith("http"):
        warnings.append("Image URL appears to be relative or invalid")
        score -= 5

    if not recipe.get("prep_time") and not recipe.get("cook_time"):
        warnings.append("No timing information (prep/cook time)")
        score -= 5

    if not recipe.get("servings"):
        warnings.append("No servings information")
        score -= 5

    if not recipe.get("description"):
        warnings.append("No recipe description")
        score -= 5

    score = _clamp(score)
    return ValidationResult(
        is_valid=not errors and score >= min_score,
        errors=errors,
        warnings=warnings,
        score=score,
    )


def should_fallback(
    result: ValidationResult, threshold: int = FALLBACK_SCORE_THRESHOLD
) -> bool:
    """True when the result is invalid or its score is under the threshold"""
    return not result.is_valid or result.score < threshold


def validate_scrape_result(
    response: FetchResponse, recipe: Mapping[str, Any], domain: str
) -> Dict[str, Any]:
    http_validation = validate_http_response(response, domain)
    recipe_validation = validate_recipe_data(recipe, domain)
    return {
        "http_validation": http_validation,
        "recipe_validation": recipe_validation,
        "overall_valid": http_validation.is_valid and recipe_validation.is_valid,
        "overall_score": round((http_validation.score + recipe_validation.score) / 2),
    }


def _report_section(label: str, result: ValidationResult) -> List[str]:
    mark = "✅" if result.is_valid else "❌"
    lines = [f"{label}: {mark} (Score: {result.score}/100)"]
    if result.errors:
        lines.append("  Errors:")
        lines.extend(f"    ❌ {error}" for error in result.errors)
    if result.warnings:
        lines.append("  Warnings:")
        lines.extend(f"    ⚠️ {warning}" for warning in result.warnings)
    return lines


def generate_validation_report(
    http_validation: ValidationResult, recipe_validation: ValidationResult
) -> str:
    lines = ["📊 Validation Report", ""]
    lines.extend(_report_section("HTTP Response", http_validation))
    lines.append("")
    lines.extend(_report_section("Recipe Data", recipe_validation))
    return "\n".join(lines)
