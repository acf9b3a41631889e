import pytest

from recipe_fetch.models import FetchResponse, ValidationResult
from recipe_fetch.validator import (
    find_block_indicators,
    generate_validation_report,
    should_fallback,
    validate_http_response,
    validate_recipe_data,
    validate_scrape_result,
)

RECIPE_PAGE = (
    "<html><head><title>Classic Tomato Soup | Example</title></head><body>"
    "<h1>Classic Tomato Soup</h1>"
    "<ul class='ingredients'><li>2 lb tomatoes</li><li>1 onion</li><li>2 cups stock</li></ul>"
    "<p>This recipe makes a smooth soup. " + "Simmer gently and season to taste. " * 15 + "</p>"
    "</body></html>"
)

BASELINE_RECIPE = {
    "title": "Classic Tomato Soup",
    "ingredients": ["2 lb tomatoes", "1 onion", "2 cups stock"],
    "instructions": "1. Chop the tomatoes and onion.\n\n2. Simmer with the stock for 30 minutes.",
}


def _page(text=RECIPE_PAGE, status=200, content_type="text/html; charset=utf-8"):
    return FetchResponse(
        url="https://example.com/soup",
        status=status,
        headers={"content-type": content_type},
        text=text,
    )


class TestHttpValidation:
    def test_good_page(self):
        result = validate_http_response(_page(), "example.com")
        assert result.is_valid
        assert result.score == 100
        assert result.errors == []

    def test_error_status_scores_zero(self):
        result = validate_http_response(_page(status=503), "example.com")
        assert not result.is_valid
        assert result.score == 0

    def test_empty_body_scores_zero(self):
        result = validate_http_response(_page(text=""), "example.com")
        assert not result.is_valid
        assert result.score == 0

    def test_wrong_content_type(self):
        result = validate_http_response(_page(content_type="application/json"), "example.com")
        assert not result.is_valid
        assert result.score == 50

    def test_block_page(self):
        html = RECIPE_PAGE.replace("<h1>", "<h1>Please verify you are a human. Captcha ")
        result = validate_http_response(_page(text=html), "example.com")
        assert not result.is_valid
        assert result.score == 20
        assert find_block_indicators(html) == ["captcha", "please verify you are a human"]

    def test_cdn_mention_is_not_a_block(self):
        html = RECIPE_PAGE.replace(
            "</head>", "<script src='https://cdnjs.cloudflare.com/x.js'></script></head>"
        )
        assert validate_http_response(_page(text=html), "example.com").is_valid

    def test_short_js_redirect_page(self):
        html = "<html><body><script>window.location='/recipe'</script></body></html>"
        result = validate_http_response(_page(text=html), "example.com")
        assert not result.is_valid
        assert any("JavaScript redirect" in w for w in result.warnings)

    def test_not_found_title(self):
        html = RECIPE_PAGE.replace("Classic Tomato Soup | Example", "Page Not Found")
        result = validate_http_response(_page(text=html), "example.com")
        assert not result.is_valid
        assert "Appears to be 404 error page" in result.errors


class TestRecipeValidation:
    def test_empty_record_is_invalid(self):
        result = validate_recipe_data({}, "example.com")
        assert not result.is_valid
        assert result.score == 0

    def test_baseline_record_is_valid(self):
        result = validate_recipe_data(BASELINE_RECIPE, "example.com")
        assert result.is_valid
        assert result.score == 80
        assert result.errors == []

    def test_complete_record_scores_full(self):
        recipe = dict(
            BASELINE_RECIPE,
            image_url="https://example.com/soup.jpg",
            prep_time="10m",
            servings=4,
            description="A weeknight soup.",
        )
        assert validate_recipe_data(recipe, "example.com").score == 100

    def test_placeholder_title_penalized(self):
        recipe = dict(BASELINE_RECIPE, title="example.com Recipe")
        result = validate_recipe_data(recipe, "example.com")
        assert result.score == 60
        assert result.is_valid

    def test_navigation_instructions_rejected(self):
        recipe = dict(BASELINE_RECIPE, instructions="Click here to view recipe")
        result = validate_recipe_data(recipe, "example.com")
        assert not result.is_valid
        assert "Instructions appear to be navigation links, not actual steps" in result.errors

    def test_few_ingredients_warns(self):
        recipe = dict(BASELINE_RECIPE, ingredients=["salt"])
        result = validate_recipe_data(recipe, "example.com")
        assert result.is_valid
        assert result.score == 65

    def test_ingredients_must_be_a_list(self):
        recipe = dict(BASELINE_RECIPE, ingredients="2 lb tomatoes")
        assert not validate_recipe_data(recipe, "example.com").is_valid


@pytest.mark.parametrize(
    "result,expected",
    [
        (ValidationResult(is_valid=True, score=80), False),
        (ValidationResult(is_valid=True, score=49), True),
        (ValidationResult(is_valid=False, score=90), True),
    ],
)
def test_should_fallback(result, expected):
    assert should_fallback(result) is expected


def test_combined_result_and_report():
    combined = validate_scrape_result(_page(), BASELINE_RECIPE, "example.com")
    assert combined["overall_valid"]
    assert combined["overall_score"] == 90

    report = generate_validation_report(
        combined["http_validation"], combined["recipe_validation"]
    )
    assert "HTTP Response: ✅ (Score: 100/100)" in report
    assert "No servings information" in report
