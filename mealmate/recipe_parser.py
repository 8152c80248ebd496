"""
Recipe extraction from web pages.

Strategies are tried in priority order: schema.org structured data (JSON-LD,
then microdata), the CSS selectors of a known site, then generic selectors
that work on most recipe blogs. Candidate photos and page metadata are
collected alongside the recipe so the user can pick a featured image.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from mealmate.page_fetcher import PageFetchError, create_page_fetcher
from mealmate.rate_limiter import domain_rate_limiter, global_rate_limiter
from mealmate.site_configs import SiteConfig, find_site_config, normalize_domain

logger = logging.getLogger(__name__)

NO_RECIPE_ERROR = "Could not parse recipe from this URL"
MAX_IMAGES = 10

GENERIC_TITLE_SELECTORS = ["h1", ".recipe-title", ".entry-title", ".post-title"]
GENERIC_INGREDIENT_SELECTORS = [
    ".recipe-ingredient",
    ".ingredient",
    ".ingredients li",
    '[class*="ingredient"]',
]
GENERIC_INSTRUCTION_SELECTORS = [
    ".recipe-instructions li",
    ".instructions li",
    ".recipe-directions li",
    ".directions li",
    '[class*="instruction"] li',
]
IMAGE_SELECTORS = [
    ".recipe-image img",
    ".recipe-photo img",
    ".hero-image img",
    ".featured-image img",
    ".recipe-header img",
    '[class*="recipe"] img',
    'img[src*="recipe"]',
    'img[alt*="recipe"]',
]

UNICODE_FRACTIONS = "½⅓⅔¼¾⅕⅖⅗⅘⅙⅚⅛⅜⅝⅞"

# A single quantity: mixed number, fraction, decimal (optionally followed by a
# vulgar fraction, as in "1½") or a lone vulgar fraction
_NUMBER = rf"(?:\d+\s+\d+/\d+|\d+/\d+|\d+(?:\.\d+)?[{UNICODE_FRACTIONS}]?|[{UNICODE_FRACTIONS}])"
QUANTITY_PATTERN = re.compile(rf"^({_NUMBER}(?:\s*(?:-|–|to)\s*{_NUMBER})?)\s*(.*)$")

KNOWN_UNITS = {
    "cup", "cups", "c",
    "tbsp", "tablespoon", "tablespoons", "tbs", "tbsps",
    "tsp", "teaspoon", "teaspoons", "tsps",
    "ml", "milliliter", "milliliters", "millilitre", "millilitres",
    "l", "liter", "liters", "litre", "litres",
    "pint", "pints", "pt", "quart", "quarts", "qt", "gallon", "gallons", "gal",
    "g", "gram", "grams", "kg", "kilogram", "kilograms",
    "oz", "ounce", "ounces", "lb", "lbs", "pound", "pounds",
    "clove", "cloves", "slice", "slices", "can", "cans",
    "package", "packages", "pkg", "bunch", "bunches", "head", "heads",
    "stalk", "stalks", "sprig", "sprigs", "pinch", "pinches", "dash", "dashes",
    "piece", "pieces", "stick", "sticks", "jar", "jars",
}
TWO_WORD_UNITS = {"fl oz", "fluid ounce", "fluid ounces"}


class RecipeParseError(Exception):
    """Raised when recipe parsing fails."""
    pass


@dataclass
class Ingredient:
    name: str
    amount: str = ""
    unit: str = ""
    notes: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NutritionInfo:
    calories: str | None = None
    protein: str | None = None
    carbs: str | None = None
    fat: str | None = None
    fiber: str | None = None
    sugar: str | None = None
    sodium: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RecipeImage:
    url: str
    type: str = "gallery"  # hero, gallery, step, ingredient
    alt_text: str = ""
    quality_score: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ParsedRecipe:
    """A recipe as extracted from a page or from free text."""
    name: str
    ingredients: list[Ingredient] = field(default_factory=list)
    instructions: str = ""
    prep_time: str | None = None
    cook_time: str | None = None
    total_time: str | None = None
    servings: int | None = None
    cuisine: str | None = None
    category: str | None = None
    difficulty: str | None = None
    nutrition: NutritionInfo | None = None
    available_images: list[RecipeImage] = field(default_factory=list)
    source_url: str = ""
    author: str | None = None
    description: str | None = None
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PageMetadata:
    title: str = ""
    description: str = ""
    site_name: str = ""
    favicon: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScrapingResult:
    recipe: ParsedRecipe | None = None
    images: list[RecipeImage] = field(default_factory=list)
    metadata: PageMetadata = field(default_factory=PageMetadata)
    success: bool = False
    error: str | None = None
    confidence: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def parse_duration(value) -> str:
    """Format an ISO-8601 duration ("PT1H15M") for display.

    Returns "1h 15m" when there are hours, "15 minutes" otherwise. Values that
    aren't ISO durations come back unchanged.
    """
    if not value:
        return ""
    value = str(value).strip()
    if value.startswith("PT"):
        match = re.match(r"PT(?:(\d+)H)?(?:(\d+)M)?", value)
        if match:
            hours = int(match.group(1) or 0)
            minutes = int(match.group(2) or 0)
            if hours > 0:
                return f"{hours}h {minutes}m"
            return f"{minutes} minutes"
    return value


def parse_ingredient_line(text: str) -> Ingredient:
    """Split an ingredient line into amount, unit, name and notes.

    Examples:
        "2 cups flour, sifted" -> amount "2", unit "cups", name "flour", notes "sifted"
        "1 1/2 tsp salt"       -> amount "1 1/2", unit "tsp", name "salt"
        "2 large eggs"         -> amount "2", unit "", name "large eggs"
        "salt to taste"        -> name "salt to taste"
    """
    text = " ".join(text.split())
    amount = ""
    unit = ""
    rest = text

    match = QUANTITY_PATTERN.match(text)
    if match and match.group(2):
        amount, rest = match.group(1), match.group(2)

        words = rest.split()
        two_words = " ".join(words[:2]).lower().rstrip(".,")
        first = words[0].lower().rstrip(".,")
        if len(words) > 2 and two_words in TWO_WORD_UNITS:
            unit = " ".join(words[:2]).rstrip(".,")
            rest = " ".join(words[2:])
        elif len(words) > 1 and first in KNOWN_UNITS:
            unit = words[0].rstrip(".,")
            rest = " ".join(words[1:])

    name, _, notes = rest.partition(",")
    name = name.strip()
    if not name:
        return Ingredient(name=text)
    return Ingredient(name=name, amount=amount, unit=unit, notes=notes.strip())


def parse_servings(value) -> int | None:
    """First integer found in a recipeYield value."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, (list, tuple)):
        for item in value:
            servings = parse_servings(item)
            if servings is not None:
                return servings
        return None
    match = re.search(r"(\d+)", str(value))
    if match:
        return int(match.group(1))
    return None


def calculate_image_quality(src: str, alt: str = "") -> int:
    """Heuristic 0-100 score for how good a candidate photo is likely to be."""
    score = 50
    alt = alt or ""

    if "1200" in src or "1920" in src:
        score += 30
    elif "800" in src or "1024" in src:
        score += 20
    elif "600" in src:
        score += 10

    if "high" in src or "hd" in src:
        score += 15
    if "thumb" in src or "small" in src:
        score -= 20

    if len(alt) > 10:
        score += 10
    if "recipe" in alt or "food" in alt:
        score += 5

    if ".jpg" in src or ".jpeg" in src:
        score += 5
    if ".webp" in src:
        score += 10
    if ".png" in src:
        score += 3

    return max(0, min(100, score))


def _text(element) -> str:
    return " ".join(element.get_text(" ").split()) if element is not None else ""


def _first(value):
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _is_recipe_type(node: dict) -> bool:
    node_type = node.get("@type", node.get("type"))
    if isinstance(node_type, list):
        return "Recipe" in node_type
    return node_type == "Recipe"


def _find_recipe_node(data):
    """Depth-first search of a JSON-LD document for a Recipe node."""
    if isinstance(data, list):
        for item in data:
            found = _find_recipe_node(item)
            if found is not None:
                return found
        return None
    if not isinstance(data, dict):
        return None
    if _is_recipe_type(data):
        return data
    if "@graph" in data:
        return _find_recipe_node(data["@graph"])
    return None


def _instruction_steps(value) -> list[str]:
    """Flatten recipeInstructions (strings, HowToStep, HowToSection) into steps."""
    if not value:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, list):
        steps = []
        for item in value:
            steps.extend(_instruction_steps(item))
        return steps
    if isinstance(value, dict):
        if "itemListElement" in value:
            return _instruction_steps(value["itemListElement"])
        text = value.get("text") or value.get("name") or ""
        return [text.strip()] if text.strip() else []
    return []


def _author_name(value) -> str | None:
    value = _first(value)
    if isinstance(value, dict):
        return value.get("name")
    if isinstance(value, str):
        return value
    return None


def _keywords(value) -> list[str]:
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, list):
        return [str(k).strip() for k in value if str(k).strip()]
    return []


def _nutrition(value) -> NutritionInfo | None:
    if not isinstance(value, dict):
        return None

    def get(key):
        v = value.get(key)
        return str(v) if v is not None else None

    return NutritionInfo(
        calories=get("calories"),
        protein=get("proteinContent"),
        carbs=get("carbohydrateContent"),
        fat=get("fatContent"),
        fiber=get("fiberContent"),
        sugar=get("sugarContent"),
        sodium=get("sodiumContent"),
    )


def _json_ld_image_urls(value) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        urls = []
        for item in value:
            urls.extend(_json_ld_image_urls(item))
        return urls
    if isinstance(value, dict):
        url = value.get("url") or value.get("contentUrl")
        return [url] if isinstance(url, str) else []
    return []


class RecipeParser:
    """Parse recipes from URLs using multiple strategies."""

    def __init__(self, fetcher=None, domain_limiter=None, global_limiter=None, text_extractor=None):
        self.fetcher = fetcher or create_page_fetcher()
        self.domain_limiter = domain_limiter or domain_rate_limiter
        self.global_limiter = global_limiter or global_rate_limiter
        self._text_extractor = text_extractor

    def initialize_browser(self) -> None:
        self.fetcher.initialize()

    def close_browser(self) -> None:
        self.fetcher.close()

    def parse_recipe(self, url: str) -> ScrapingResult:
        """Fetch `url` and extract a recipe from it. Never raises."""
        domain = normalize_domain(url)

        try:
            if not domain:
                raise RecipeParseError(f"Invalid URL: {url}")
            limiter = self.domain_limiter.get_limiter(domain)
            with self.global_limiter.slot(), limiter.slot():
                page = self.fetcher.fetch(url)
            return self.parse_html(page.html, page.final_url or url, source_url=url)
        except (PageFetchError, RecipeParseError) as e:
            logger.error("Recipe parsing failed", extra={"url": url, "error_message": str(e)})
            return ScrapingResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error while parsing recipe", extra={"url": url})
            return ScrapingResult(success=False, error=str(e))

    def parse_html(self, html: str, url: str, source_url: str | None = None) -> ScrapingResult:
        """Run the extraction pipeline on already-fetched HTML."""
        soup = BeautifulSoup(html, "html.parser")
        domain = normalize_domain(url)

        recipe = self._parse_structured_data(soup)
        if recipe is not None:
            logger.info("Parsed recipe from structured data", extra={"url": url})
        else:
            site_config = find_site_config(domain)
            if site_config is not None:
                recipe = self._parse_by_site_config(soup, site_config)
                if recipe is not None:
                    logger.info("Parsed recipe with site selectors", extra={"url": url, "site": site_config.name})
            if recipe is None:
                recipe = self._parse_generic(soup)
                if recipe is not None:
                    logger.info("Parsed recipe with generic selectors", extra={"url": url})

        structured_images = recipe.available_images if recipe is not None else []
        images = self._rank_images(structured_images + self._extract_images(soup, url))
        metadata = self._extract_metadata(soup)

        if recipe is None:
            logger.warning("No recipe found on page", extra={"url": url})
            return ScrapingResult(images=images, metadata=metadata, success=False, error=NO_RECIPE_ERROR)

        recipe.source_url = source_url or url
        recipe.available_images = images
        return ScrapingResult(recipe=recipe, images=images, metadata=metadata, success=True)

    def parse_recipe_from_text(self, text: str, context: str = "general",
                               source_url: str | None = None) -> ScrapingResult:
        """Extract a recipe from unstructured text such as a social media caption."""
        from mealmate.text_extractor import AIExtractionError, to_parsed_recipe

        try:
            data = self._get_text_extractor().extract_recipe(text, context)
        except AIExtractionError as e:
            logger.error("Text recipe extraction failed", extra={"error_message": str(e)})
            return ScrapingResult(success=False, error=str(e))

        recipe = to_parsed_recipe(data, source_url)
        return ScrapingResult(recipe=recipe, success=True, confidence=data.confidence)

    def _get_text_extractor(self):
        if self._text_extractor is None:
            from mealmate.text_extractor import TextRecipeExtractor
            self._text_extractor = TextRecipeExtractor()
        return self._text_extractor

    def _parse_structured_data(self, soup: BeautifulSoup) -> ParsedRecipe | None:
        for script in soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.debug("Skipping malformed JSON-LD", extra={"error_message": str(e)})
                continue

            node = _find_recipe_node(data)
            if node is not None:
                return self._parse_json_ld_recipe(node)

        element = soup.select_one('[itemtype*="Recipe"]')
        if element is not None:
            return self._parse_microdata_recipe(element)
        return None

    def _parse_json_ld_recipe(self, data: dict) -> ParsedRecipe:
        ingredients = [
            parse_ingredient_line(str(line))
            for line in data.get("recipeIngredient") or []
            if str(line).strip()
        ]

        cuisine = _first(data.get("recipeCuisine"))
        category = _first(data.get("recipeCategory"))

        images = [
            RecipeImage(url=src, type="hero", alt_text=data.get("name") or "",
                        quality_score=calculate_image_quality(src, data.get("name") or ""))
            for src in _json_ld_image_urls(data.get("image"))
        ]

        return ParsedRecipe(
            name=(data.get("name") or "").strip(),
            ingredients=ingredients,
            instructions="\n\n".join(_instruction_steps(data.get("recipeInstructions"))),
            prep_time=parse_duration(data.get("prepTime")) or None,
            cook_time=parse_duration(data.get("cookTime")) or None,
            total_time=parse_duration(data.get("totalTime")) or None,
            servings=parse_servings(data.get("recipeYield")),
            cuisine=str(cuisine) if cuisine else None,
            category=str(category) if category else None,
            nutrition=_nutrition(data.get("nutrition")),
            available_images=images,
            author=_author_name(data.get("author")),
            description=data.get("description") or None,
            keywords=_keywords(data.get("keywords")),
        )

    def _parse_microdata_recipe(self, element) -> ParsedRecipe | None:
        name = _text(element.select_one('[itemprop="name"]'))

        ingredient_elements = element.select('[itemprop="recipeIngredient"]') or \
            element.select('[itemprop="ingredients"]')
        ingredients = [parse_ingredient_line(_text(el)) for el in ingredient_elements if _text(el)]

        steps = [_text(el) for el in element.select('[itemprop="recipeInstructions"]') if _text(el)]

        def duration(prop):
            el = element.select_one(f'[itemprop="{prop}"]')
            if el is None:
                return None
            return parse_duration(el.get("datetime") or el.get("content") or "") or None

        servings_el = element.select_one('[itemprop="recipeYield"]')
        servings = None
        if servings_el is not None:
            servings = parse_servings(servings_el.get("content") or _text(servings_el))

        if not name and not ingredients:
            return None

        return ParsedRecipe(
            name=name,
            ingredients=ingredients,
            instructions="\n\n".join(steps),
            prep_time=duration("prepTime"),
            cook_time=duration("cookTime"),
            total_time=duration("totalTime"),
            servings=servings,
        )

    def _parse_by_site_config(self, soup: BeautifulSoup, site_config: SiteConfig) -> ParsedRecipe | None:
        selectors = site_config.selectors

        name = ""
        if selectors.get("title"):
            name = _text(soup.select_one(selectors["title"]))

        ingredients = []
        if selectors.get("ingredients"):
            ingredients = [
                parse_ingredient_line(_text(el))
                for el in soup.select(selectors["ingredients"])
                if _text(el)
            ]

        steps = []
        if selectors.get("instructions"):
            steps = [_text(el) for el in soup.select(selectors["instructions"]) if _text(el)]

        def selected_text(key):
            if not selectors.get(key):
                return None
            return _text(soup.select_one(selectors[key])) or None

        if not name or not ingredients:
            return None

        servings_text = selected_text("servings")
        return ParsedRecipe(
            name=name,
            ingredients=ingredients,
            instructions="\n\n".join(steps),
            prep_time=selected_text("prep_time"),
            cook_time=selected_text("cook_time"),
            servings=parse_servings(servings_text) if servings_text else None,
        )

    def _parse_generic(self, soup: BeautifulSoup) -> ParsedRecipe | None:
        name = ""
        for selector in GENERIC_TITLE_SELECTORS:
            title = _text(soup.select_one(selector))
            if len(title) > 5:
                name = title
                break

        ingredients = []
        for selector in GENERIC_INGREDIENT_SELECTORS:
            elements = soup.select(selector)
            if len(elements) > 2:
                ingredients = [
                    parse_ingredient_line(_text(el))
                    for el in elements
                    if len(_text(el)) > 2
                ]
                break

        steps = []
        for selector in GENERIC_INSTRUCTION_SELECTORS:
            steps = [_text(el) for el in soup.select(selector) if _text(el)]
            if steps:
                break

        if not name or not ingredients:
            return None
        return ParsedRecipe(name=name, ingredients=ingredients, instructions="\n\n".join(steps))

    def _extract_images(self, soup: BeautifulSoup, page_url: str) -> list[RecipeImage]:
        images = []
        seen = set()

        for selector in IMAGE_SELECTORS:
            for img in soup.select(selector):
                src = img.get("src") or img.get("data-src")
                if not src or src in seen:
                    continue
                seen.add(src)

                alt = img.get("alt") or ""
                parent_class = " ".join(img.parent.get("class") or []) if img.parent is not None else ""
                img_class = " ".join(img.get("class") or [])

                if "hero" in parent_class or "hero" in img_class:
                    image_type = "hero"
                elif "ingredient" in parent_class or "ingredient" in alt:
                    image_type = "ingredient"
                elif "step" in parent_class or "step" in alt:
                    image_type = "step"
                else:
                    image_type = "gallery"

                images.append(RecipeImage(
                    url=urljoin(page_url, src),
                    type=image_type,
                    alt_text=alt,
                    quality_score=calculate_image_quality(src, alt),
                ))

        return images

    @staticmethod
    def _rank_images(images: list[RecipeImage]) -> list[RecipeImage]:
        unique = {}
        for image in images:
            unique.setdefault(image.url, image)
        ranked = sorted(unique.values(), key=lambda image: image.quality_score, reverse=True)
        return ranked[:MAX_IMAGES]

    @staticmethod
    def _extract_metadata(soup: BeautifulSoup) -> PageMetadata:
        def attr(selector, name):
            el = soup.select_one(selector)
            return (el.get(name) or "") if el is not None else ""

        title = soup.title.get_text().strip() if soup.title is not None else ""
        return PageMetadata(
            title=title,
            description=attr('meta[name="description"]', "content"),
            site_name=attr('meta[property="og:site_name"]', "content"),
            favicon=attr('link[rel="icon"]', "href"),
        )
