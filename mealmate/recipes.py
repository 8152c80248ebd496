import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from mealmate.errors import AppError, ErrorCode
from mealmate.recipe_parser import ParsedRecipe, parse_ingredient_line
from mealmate.store import JsonStore
from mealmate.tag_inference import RecipeCategorizer

logger = logging.getLogger(__name__)

RECIPES = "recipes"
PLANNED_MEALS = "planned_meals"

MEAL_TYPES = ["breakfast", "lunch", "dinner", "snack"]
DIFFICULTIES = ["easy", "medium", "hard"]
PREP_TIME_CATEGORIES = ["quick", "medium", "long"]

# Fields a client may set on create/update
EDITABLE_FIELDS = {
    "name", "ingredients", "instructions", "source_url", "prep_time", "cuisine",
    "estimated_nutrition", "featured_image", "image_alt_text", "meal_types",
    "dietary_restrictions", "difficulty", "prep_time_category", "tags", "is_draft",
}


@dataclass
class Recipe:
    id: str
    name: str
    owner_id: str
    instructions: str
    ingredients: list[dict[str, Any]] = field(default_factory=list)
    source_url: str | None = None
    prep_time: str | None = None
    cuisine: str | None = None
    estimated_nutrition: dict[str, Any] | None = None
    featured_image: str | None = None
    image_alt_text: str | None = None
    meal_types: list[str] = field(default_factory=list)
    dietary_restrictions: list[str] = field(default_factory=list)
    difficulty: str | None = None
    prep_time_category: str | None = None
    tags: list[str] = field(default_factory=list)
    is_draft: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipe":
        missing = [f for f in ("id", "name", "owner_id") if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values.setdefault("instructions", "")
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_ingredients(ingredients) -> list[dict[str, Any]]:
    """Accept ingredient dicts or plain lines and return ingredient dicts."""
    if not isinstance(ingredients, list):
        raise AppError.validation("ingredients must be a list")

    result = []
    for ingredient in ingredients:
        if isinstance(ingredient, str):
            if ingredient.strip():
                result.append(parse_ingredient_line(ingredient).to_dict())
            continue
        if not isinstance(ingredient, dict) or not str(ingredient.get("name") or "").strip():
            raise AppError.validation("Each ingredient needs a name", details={"ingredient": ingredient})

        item = {
            "name": str(ingredient["name"]).strip(),
            "amount": "" if ingredient.get("amount") is None else str(ingredient["amount"]),
            "unit": str(ingredient.get("unit") or ""),
            "notes": str(ingredient.get("notes") or ""),
        }
        if ingredient.get("category"):
            item["category"] = str(ingredient["category"])
        result.append(item)
    return result


def _validate_fields(data: dict[str, Any]) -> dict[str, Any]:
    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise AppError.validation(f"Unknown recipe fields: {', '.join(sorted(unknown))}")

    cleaned = dict(data)
    if "name" in cleaned:
        cleaned["name"] = str(cleaned["name"] or "").strip()
        if not cleaned["name"]:
            raise AppError("Recipe name is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)
    if "instructions" in cleaned:
        instructions = cleaned["instructions"]
        if isinstance(instructions, list):
            instructions = "\n\n".join(str(step).strip() for step in instructions if str(step).strip())
        cleaned["instructions"] = str(instructions or "").strip()
        if not cleaned["instructions"]:
            raise AppError("Recipe instructions are required", ErrorCode.MISSING_REQUIRED_FIELD, 400)
    if "ingredients" in cleaned:
        cleaned["ingredients"] = normalize_ingredients(cleaned["ingredients"])
    if cleaned.get("difficulty") and cleaned["difficulty"] not in DIFFICULTIES:
        raise AppError.validation(f"difficulty must be one of: {', '.join(DIFFICULTIES)}")
    if cleaned.get("prep_time_category") and cleaned["prep_time_category"] not in PREP_TIME_CATEGORIES:
        raise AppError.validation(f"prep_time_category must be one of: {', '.join(PREP_TIME_CATEGORIES)}")
    for list_field in ("meal_types", "dietary_restrictions", "tags"):
        if list_field in cleaned and not isinstance(cleaned[list_field], list):
            raise AppError.validation(f"{list_field} must be a list")
    return cleaned


def _newest_first(rows: list[dict]) -> list[Recipe]:
    rows = sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)
    return [Recipe.from_dict(r) for r in rows]


class RecipeService:
    def __init__(self, store: JsonStore, categorizer: RecipeCategorizer | None = None):
        self.store = store
        self.categorizer = categorizer or RecipeCategorizer()

    def create_recipe(self, owner_id: str, data: dict[str, Any]) -> Recipe:
        for required in ("name", "instructions"):
            if not data.get(required):
                raise AppError(f"Recipe {required} is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)

        row = _validate_fields(data)
        row.setdefault("ingredients", [])
        row["owner_id"] = owner_id
        self.categorizer.apply_auto_categorization(row)

        saved = self.store.insert(RECIPES, row)
        logger.info("Recipe created", extra={"recipe_id": saved["id"], "recipe_name": saved["name"]})
        return Recipe.from_dict(saved)

    def get_user_recipes(self, owner_id: str) -> list[Recipe]:
        return _newest_first(self.store.select(RECIPES, lambda r: r.get("owner_id") == owner_id))

    def get_recipe(self, recipe_id: str, user_id: str) -> Recipe:
        row = self.store.get(RECIPES, recipe_id)
        if row is None:
            raise AppError.not_found("Recipe", ErrorCode.RECIPE_NOT_FOUND)
        if row.get("owner_id") != user_id:
            raise AppError.authorization("You do not have access to this recipe")
        return Recipe.from_dict(row)

    def update_recipe(self, recipe_id: str, user_id: str, changes: dict[str, Any]) -> Recipe:
        current = self.get_recipe(recipe_id, user_id).to_dict()
        cleaned = _validate_fields(changes)
        current.update(cleaned)
        self.categorizer.apply_auto_categorization(current)

        updates = {k: current[k] for k in EDITABLE_FIELDS if k in current}
        row = self.store.update(RECIPES, recipe_id, updates)
        logger.info("Recipe updated", extra={"recipe_id": recipe_id, "fields": sorted(cleaned)})
        return Recipe.from_dict(row)

    def delete_recipe(self, recipe_id: str, user_id: str) -> None:
        self.get_recipe(recipe_id, user_id)
        with self.store.transaction():
            removed = self.store.delete_where(PLANNED_MEALS, lambda m: m.get("recipe_id") == recipe_id)
            self.store.delete(RECIPES, recipe_id)
        logger.info("Recipe deleted", extra={"recipe_id": recipe_id, "planned_meals_removed": removed})

    def search_recipes(self, owner_id: str, query: str) -> list[Recipe]:
        """Recipes whose name or any ingredient name contains `query` (case-insensitive)."""
        needle = (query or "").strip().lower()
        if not needle:
            return self.get_user_recipes(owner_id)

        def matches(row):
            if row.get("owner_id") != owner_id:
                return False
            if needle in (row.get("name") or "").lower():
                return True
            return any(needle in (i.get("name") or "").lower() for i in row.get("ingredients") or [])

        return _newest_first(self.store.select(RECIPES, matches))

    def get_recipes_by_cuisine(self, owner_id: str, cuisine: str) -> list[Recipe]:
        wanted = (cuisine or "").lower()
        return _newest_first(self.store.select(
            RECIPES,
            lambda r: r.get("owner_id") == owner_id and (r.get("cuisine") or "").lower() == wanted,
        ))

    def filter_recipes(self, owner_id: str, cuisine: str | None = None, tags: list[str] | None = None,
                       prep_time_category: str | None = None, query: str | None = None) -> list[Recipe]:
        recipes = self.search_recipes(owner_id, query) if query else self.get_user_recipes(owner_id)
        if cuisine:
            recipes = [r for r in recipes if (r.cuisine or "").lower() == cuisine.lower()]
        if tags:
            recipes = [r for r in recipes if all(tag in r.tags for tag in tags)]
        if prep_time_category:
            recipes = [r for r in recipes if r.prep_time_category == prep_time_category]
        return recipes

    def create_from_parsed(self, owner_id: str, parsed: ParsedRecipe, featured_image: str | None = None) -> Recipe:
        """Save a recipe produced by the URL or text parser."""
        best_image = parsed.available_images[0] if parsed.available_images else None
        if featured_image is None and best_image is not None:
            featured_image = best_image.url

        image_alt_text = None
        if best_image is not None and best_image.url == featured_image:
            image_alt_text = best_image.alt_text or None

        category = (parsed.category or "").lower()
        data = {
            "name": parsed.name or "Untitled Recipe",
            "ingredients": [ingredient.to_dict() for ingredient in parsed.ingredients],
            "instructions": parsed.instructions or "See original recipe for instructions.",
            "source_url": parsed.source_url or None,
            "prep_time": parsed.prep_time or parsed.total_time,
            "cuisine": parsed.cuisine,
            "estimated_nutrition": parsed.nutrition.to_dict() if parsed.nutrition else None,
            "featured_image": featured_image,
            "image_alt_text": image_alt_text,
            "meal_types": [category] if category in MEAL_TYPES else [],
            "difficulty": parsed.difficulty if parsed.difficulty in DIFFICULTIES else None,
        }
        return self.create_recipe(owner_id, data)
