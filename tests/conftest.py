"""Pytest configuration and fixtures."""

# Tests automatically get a test OpenAI key from config.py when pytest is detected

import json

import pytest

from mealmate.households import HouseholdService
from mealmate.meal_plans import MealPlanService
from mealmate.recipes import RecipeService
from mealmate.staples import StaplesService
from mealmate.store import JsonStore


def recipe_page(recipe: dict | None = None, body: str = "", title: str = "Recipe page") -> str:
    """Build an HTML page, optionally with a JSON-LD recipe block."""
    head = f"<title>{title}</title>"
    if recipe is not None:
        head += f'<script type="application/ld+json">{json.dumps(recipe)}</script>'
    return f"<html><head>{head}</head><body>{body}</body></html>"


def json_ld_recipe(**overrides) -> dict:
    recipe = {
        "@context": "https://schema.org",
        "@type": "Recipe",
        "name": "Classic Pancakes",
        "recipeIngredient": ["2 cups flour", "1 1/2 cups milk", "2 large eggs"],
        "recipeInstructions": [
            {"@type": "HowToStep", "text": "Whisk everything together."},
            {"@type": "HowToStep", "text": "Cook on a hot griddle."},
        ],
        "prepTime": "PT10M",
        "cookTime": "PT1H15M",
        "recipeYield": "4 servings",
        "recipeCuisine": "American",
        "recipeCategory": "Breakfast",
        "image": ["https://example.com/pancakes-1200.jpg"],
    }
    recipe.update(overrides)
    return recipe


def sample_recipe_data(**overrides) -> dict:
    data = {
        "name": "Chicken Tacos",
        "instructions": "Cook the chicken. Fill the tortillas.",
        "ingredients": [
            {"name": "chicken thighs", "amount": "1", "unit": "lb"},
            {"name": "tortillas", "amount": "8", "unit": ""},
            {"name": "onion", "amount": "1", "unit": ""},
        ],
        "cuisine": "Mexican",
        "prep_time": "20 minutes",
    }
    data.update(overrides)
    return data


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "mealmate.json")


@pytest.fixture
def households(store):
    return HouseholdService(store)


@pytest.fixture
def recipes(store):
    return RecipeService(store)


@pytest.fixture
def staples(store, households):
    return StaplesService(store, households)


@pytest.fixture
def meal_plans(store, staples):
    return MealPlanService(store, staples)


@pytest.fixture
def alice(households):
    return households.upsert_user("alice", "alice@example.com", full_name="Alice")


@pytest.fixture
def bob(households):
    return households.upsert_user("bob", "bob@example.com", full_name="Bob")


@pytest.fixture
def household(households, alice):
    return households.create_household("The Smiths", alice.id)
