"""Per-site scraping configuration for the recipe sites we know about."""

from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass
class SiteConfig:
    """CSS selectors for one recipe site.

    `selectors` keys: title, ingredients, instructions, prep_time, cook_time,
    servings, images.
    """
    name: str
    domains: list[str]
    selectors: dict[str, str] = field(default_factory=dict)
    json_ld: bool = True
    microdata: bool = False

    def matches(self, domain: str) -> bool:
        return any(d in domain for d in self.domains)


SITE_CONFIGS: list[SiteConfig] = [
    SiteConfig(
        name="AllRecipes",
        domains=["allrecipes.com"],
        selectors={
            "title": "h1.headline",
            "ingredients": ".recipe-summary__item",
            "instructions": ".instructions-section .paragraph",
            "prep_time": '.recipe-summary__item[data-id="prep-time"]',
            "cook_time": '.recipe-summary__item[data-id="cook-time"]',
            "servings": '.recipe-summary__item[data-id="servings"]',
            "images": ".recipe-summary__image img, .recipe-media img",
        },
        microdata=True,
    ),
    SiteConfig(
        name="Food Network",
        domains=["foodnetwork.com"],
        selectors={
            "title": "h1.o-AssetTitle__a-HeadlineText",
            "ingredients": ".o-RecipeIngredient__a-Ingredient",
            "instructions": ".o-Method__m-Step",
            "prep_time": '.o-RecipeInfo__a-Description[data-module="prep time"]',
            "cook_time": '.o-RecipeInfo__a-Description[data-module="cook time"]',
            "images": ".m-MediaBlock__a-Image img, .recipe-lead-image img",
        },
    ),
    SiteConfig(
        name="Bon Appétit",
        domains=["bonappetit.com"],
        selectors={
            "title": 'h1[data-testid="ContentHeaderHed"]',
            "ingredients": '[data-testid="IngredientList"] li',
            "instructions": '[data-testid="InstructionsWrapper"] li',
            "prep_time": '[data-testid="prep-time"]',
            "cook_time": '[data-testid="cook-time"]',
            "images": ".recipe-header-image img, .content-image img",
        },
    ),
    SiteConfig(
        name="Serious Eats",
        domains=["seriouseats.com"],
        selectors={
            "title": "h1.heading__title",
            "ingredients": ".recipe-ingredient",
            "instructions": ".recipe-procedure-text",
            "prep_time": '.recipe-about__item[data-ingredient="prep time"]',
            "cook_time": '.recipe-about__item[data-ingredient="cook time"]',
            "images": ".recipe-header__image img, .recipe-image img",
        },
    ),
    SiteConfig(
        name="Tasty",
        domains=["tasty.co"],
        selectors={
            "title": "h1.recipe-name",
            "ingredients": ".recipe-ingredients li",
            "instructions": ".recipe-instructions li",
            "prep_time": ".recipe-time-container .prep-time",
            "cook_time": ".recipe-time-container .cook-time",
            "images": ".recipe-video-container img, .recipe-image img",
        },
    ),
]

# Domains we advertise as supported by /validate-url. Wider than SITE_CONFIGS
# because most of these publish JSON-LD and need no selectors.
SUPPORTED_DOMAINS = [
    "allrecipes.com",
    "foodnetwork.com",
    "bonappetit.com",
    "seriouseats.com",
    "tasty.co",
    "food.com",
    "epicurious.com",
    "delish.com",
    "eatingwell.com",
    "cookinglight.com",
]

SUPPORTED_SITES = [
    {
        "name": "AllRecipes",
        "domain": "allrecipes.com",
        "features": ["structured-data", "images", "nutrition"],
        "quality": "excellent",
    },
    {
        "name": "Food Network",
        "domain": "foodnetwork.com",
        "features": ["structured-data", "images", "chef-info"],
        "quality": "excellent",
    },
    {
        "name": "Bon Appétit",
        "domain": "bonappetit.com",
        "features": ["structured-data", "images", "editorial"],
        "quality": "excellent",
    },
    {
        "name": "Serious Eats",
        "domain": "seriouseats.com",
        "features": ["structured-data", "images", "detailed-instructions"],
        "quality": "excellent",
    },
    {
        "name": "Tasty",
        "domain": "tasty.co",
        "features": ["structured-data", "video", "images"],
        "quality": "good",
    },
    {
        "name": "Generic Recipe Sites",
        "domain": "various",
        "features": ["basic-parsing", "fallback-support"],
        "quality": "fair",
    },
]

PARSING_METHODS = [
    "JSON-LD structured data",
    "Microdata",
    "Site-specific selectors",
    "Generic fallback parsing",
]


def normalize_domain(url: str) -> str:
    """Return the URL's hostname without a leading 'www.'."""
    hostname = (urlparse(url).hostname or "").lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def find_site_config(domain: str) -> SiteConfig | None:
    for site_config in SITE_CONFIGS:
        if site_config.matches(domain):
            return site_config
    return None


def is_supported_domain(domain: str) -> bool:
    return any(supported in domain for supported in SUPPORTED_DOMAINS)
