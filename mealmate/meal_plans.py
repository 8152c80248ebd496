"""
Weekly meal plans, the meals planned in them, and sharing.

Access rules: the owner can do anything with a plan; a user the plan is
shared with can view it, and can edit its meals when the share has
``can_edit``. Only the owner can delete or share a plan.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timedelta, timezone
from typing import Any

from mealmate.errors import AppError, ErrorCode
from mealmate.grocery_list import GroceryItem, generate_grocery_list
from mealmate.recipes import MEAL_TYPES, PLANNED_MEALS, RECIPES
from mealmate.store import JsonStore

logger = logging.getLogger(__name__)

MEAL_PLANS = "meal_plans"
MEAL_PLAN_SHARES = "meal_plan_shares"
STAPLES_USAGE = "staples_usage_history"

DAYS_OF_WEEK = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

BATCH_COOK_MIN_USES = 3
CUISINE_REPETITION_MIN_USES = 3

VEGETABLE_KEYWORDS = [
    'tomato', 'onion', 'garlic', 'carrot', 'celery', 'pepper', 'spinach',
    'broccoli', 'cauliflower', 'zucchini', 'mushroom', 'lettuce', 'cucumber',
    'avocado', 'corn', 'peas', 'beans', 'kale', 'cabbage', 'potato',
]
HEALTHY_KEYWORDS = ['vegetable', 'fruit', 'whole grain', 'lean', 'olive oil', 'quinoa']
UNHEALTHY_KEYWORDS = ['fried', 'butter', 'cream', 'sugar', 'processed']

MEAL_PLAN_TEMPLATES = [
    {
        "id": "quick-weeknight",
        "name": "Quick Weeknight Meals",
        "description": "Fast and easy meals for busy weeknights",
        "template_type": "system",
        "meals": [
            {"day_of_week": "monday", "meal_type": "dinner", "recipe_name": "Quick Pasta"},
            {"day_of_week": "tuesday", "meal_type": "dinner", "recipe_name": "Stir Fry"},
            {"day_of_week": "wednesday", "meal_type": "dinner", "recipe_name": "Tacos"},
            {"day_of_week": "thursday", "meal_type": "dinner", "recipe_name": "Grilled Chicken"},
            {"day_of_week": "friday", "meal_type": "dinner", "recipe_name": "Pizza Night"},
        ],
    },
    {
        "id": "kids-favorites",
        "name": "Kids Favorites",
        "description": "Kid-friendly meals the whole family will love",
        "template_type": "system",
        "meals": [
            {"day_of_week": "monday", "meal_type": "dinner", "recipe_name": "Mac and Cheese"},
            {"day_of_week": "tuesday", "meal_type": "dinner", "recipe_name": "Chicken Nuggets"},
            {"day_of_week": "wednesday", "meal_type": "dinner", "recipe_name": "Spaghetti"},
            {"day_of_week": "thursday", "meal_type": "dinner", "recipe_name": "Grilled Cheese"},
            {"day_of_week": "friday", "meal_type": "dinner", "recipe_name": "Hot Dogs"},
        ],
    },
    {
        "id": "healthy-week",
        "name": "Healthy Week",
        "description": "Nutritious and balanced meals",
        "template_type": "system",
        "meals": [
            {"day_of_week": "monday", "meal_type": "dinner", "recipe_name": "Salmon with Vegetables"},
            {"day_of_week": "tuesday", "meal_type": "dinner", "recipe_name": "Quinoa Bowl"},
            {"day_of_week": "wednesday", "meal_type": "dinner", "recipe_name": "Chicken Salad"},
            {"day_of_week": "thursday", "meal_type": "dinner", "recipe_name": "Vegetable Curry"},
            {"day_of_week": "friday", "meal_type": "dinner", "recipe_name": "Lean Beef Stir Fry"},
        ],
    },
]


def day_to_int(day_of_week: str) -> int:
    """monday -> 0 ... sunday -> 6"""
    try:
        return DAYS_OF_WEEK.index(day_of_week.lower())
    except (ValueError, AttributeError):
        raise AppError.validation(f"day_of_week must be one of: {', '.join(DAYS_OF_WEEK)}")


def int_to_day(day: int) -> str:
    if not 0 <= day <= 6:
        raise ValueError(f"Day index out of range: {day}")
    return DAYS_OF_WEEK[day]


def get_week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def _parse_date(value, field_name: str = "start_date") -> str:
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise AppError.validation(f"{field_name} must be a date in YYYY-MM-DD format")


def _validate_meal_type(meal_type: str) -> str:
    if meal_type not in MEAL_TYPES:
        raise AppError.validation(f"meal_type must be one of: {', '.join(MEAL_TYPES)}")
    return meal_type


def _validate_serving_size(serving_size) -> int:
    if isinstance(serving_size, bool) or not isinstance(serving_size, int) or serving_size < 1:
        raise AppError.validation("serving_size must be a positive integer")
    return serving_size


@dataclass
class PlannedMeal:
    id: str
    meal_plan_id: str
    recipe_id: str
    day_of_week: str
    meal_type: str
    day_of_week_int: int = 0
    serving_size: int = 1
    notes: str | None = None
    is_batch_cook: bool = False
    created_at: str | None = None
    recipe: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], recipe: dict[str, Any] | None = None) -> "PlannedMeal":
        known = {f.name for f in fields(cls)} - {"recipe"}
        return cls(recipe=recipe, **{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MealPlanShare:
    id: str
    meal_plan_id: str
    shared_with_user_id: str
    can_edit: bool = False
    created_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MealPlanShare":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MealPlan:
    id: str
    plan_name: str
    start_date: str
    owner_id: str
    grocery_list: list[dict[str, Any]] | None = None
    staples_included: bool = False
    staples_reviewed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    planned_meals: list[PlannedMeal] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], planned_meals: list[PlannedMeal] | None = None) -> "MealPlan":
        known = {f.name for f in fields(cls)} - {"planned_meals"}
        return cls(planned_meals=planned_meals or [], **{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


class MealPlanService:
    def __init__(self, store: JsonStore, staples=None):
        self.store = store
        # StaplesService, used to add due household staples to grocery lists
        self.staples = staples

    # -- access --------------------------------------------------------------

    def _plan_row(self, plan_id: str) -> dict:
        row = self.store.get(MEAL_PLANS, plan_id)
        if row is None:
            raise AppError.not_found("Meal plan", ErrorCode.MEAL_PLAN_NOT_FOUND)
        return row

    def _share_row(self, plan_id: str, user_id: str) -> dict | None:
        shares = self.store.select(
            MEAL_PLAN_SHARES,
            lambda s: s["meal_plan_id"] == plan_id and s["shared_with_user_id"] == user_id,
        )
        return shares[0] if shares else None

    def can_view(self, plan: dict, user_id: str) -> bool:
        return plan["owner_id"] == user_id or self._share_row(plan["id"], user_id) is not None

    def can_edit(self, plan: dict, user_id: str) -> bool:
        if plan["owner_id"] == user_id:
            return True
        share = self._share_row(plan["id"], user_id)
        return share is not None and bool(share.get("can_edit"))

    def _viewable_plan(self, plan_id: str, user_id: str) -> dict:
        plan = self._plan_row(plan_id)
        if not self.can_view(plan, user_id):
            raise AppError.authorization("You do not have access to this meal plan")
        return plan

    def _editable_plan(self, plan_id: str, user_id: str) -> dict:
        plan = self._viewable_plan(plan_id, user_id)
        if not self.can_edit(plan, user_id):
            raise AppError.authorization("You do not have permission to edit this meal plan")
        return plan

    def _owned_plan(self, plan_id: str, user_id: str) -> dict:
        plan = self._plan_row(plan_id)
        if plan["owner_id"] != user_id:
            raise AppError.authorization("Only the owner can do this")
        return plan

    def _planned_meal_row(self, planned_meal_id: str) -> dict:
        row = self.store.get(PLANNED_MEALS, planned_meal_id)
        if row is None:
            raise AppError.not_found("Planned meal")
        return row

    # -- reads ---------------------------------------------------------------

    def _hydrate(self, plan: dict) -> MealPlan:
        rows = self.store.select(PLANNED_MEALS, lambda m: m["meal_plan_id"] == plan["id"])
        rows.sort(key=lambda m: (m.get("day_of_week_int", 0), MEAL_TYPES.index(m["meal_type"]),
                                 m.get("created_at") or ""))
        meals = [PlannedMeal.from_dict(row, self.store.get(RECIPES, row["recipe_id"])) for row in rows]
        return MealPlan.from_dict(plan, meals)

    def get_user_meal_plans(self, user_id: str) -> list[MealPlan]:
        """Plans the user owns or that are shared with them, newest week first."""
        shared_ids = {
            s["meal_plan_id"]
            for s in self.store.select(MEAL_PLAN_SHARES, lambda s: s["shared_with_user_id"] == user_id)
        }
        plans = self.store.select(MEAL_PLANS, lambda p: p["owner_id"] == user_id or p["id"] in shared_ids)
        plans.sort(key=lambda p: p["start_date"], reverse=True)
        return [self._hydrate(plan) for plan in plans]

    def get_meal_plan(self, plan_id: str, user_id: str) -> MealPlan:
        return self._hydrate(self._viewable_plan(plan_id, user_id))

    def get_meal_plan_for_week(self, user_id: str, start_date) -> MealPlan | None:
        start = _parse_date(start_date)
        plans = self.store.select(MEAL_PLANS, lambda p: p["owner_id"] == user_id and p["start_date"] == start)
        if not plans:
            return None
        plans.sort(key=lambda p: p.get("created_at") or "")
        return self._hydrate(plans[0])

    def get_or_create_current_week_meal_plan(self, user_id: str, today: date | None = None) -> MealPlan:
        week_start = get_week_start(today or date.today())
        plan = self.get_meal_plan_for_week(user_id, week_start)
        if plan is None:
            plan_name = f"Week of {week_start.month}/{week_start.day}/{week_start.year}"
            plan = self.create_meal_plan(user_id, plan_name, week_start)
        return plan

    @staticmethod
    def get_meal_plan_templates() -> list[dict]:
        return [dict(template, meals=[dict(m) for m in template["meals"]]) for template in MEAL_PLAN_TEMPLATES]

    # -- writes --------------------------------------------------------------

    def create_meal_plan(self, owner_id: str, plan_name: str, start_date) -> MealPlan:
        plan_name = (plan_name or "").strip()
        if not plan_name:
            raise AppError("plan_name is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)

        row = self.store.insert(MEAL_PLANS, {
            "plan_name": plan_name,
            "start_date": _parse_date(start_date),
            "owner_id": owner_id,
            "grocery_list": None,
            "staples_included": False,
            "staples_reviewed_at": None,
        })
        logger.info("Meal plan created", extra={"meal_plan_id": row["id"], "user_id": owner_id})
        return MealPlan.from_dict(row)

    def update_meal_plan(self, plan_id: str, user_id: str, changes: dict[str, Any]) -> MealPlan:
        self._editable_plan(plan_id, user_id)

        allowed = {"plan_name", "start_date", "grocery_list"}
        unknown = set(changes) - allowed
        if unknown:
            raise AppError.validation(f"Unknown meal plan fields: {', '.join(sorted(unknown))}")

        updates = dict(changes)
        if "plan_name" in updates:
            updates["plan_name"] = str(updates["plan_name"] or "").strip()
            if not updates["plan_name"]:
                raise AppError("plan_name is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)
        if "start_date" in updates:
            updates["start_date"] = _parse_date(updates["start_date"])
        if "grocery_list" in updates and updates["grocery_list"] is not None \
                and not isinstance(updates["grocery_list"], list):
            raise AppError.validation("grocery_list must be a list")

        self.store.update(MEAL_PLANS, plan_id, updates)
        return self.get_meal_plan(plan_id, user_id)

    def delete_meal_plan(self, plan_id: str, user_id: str) -> None:
        self._owned_plan(plan_id, user_id)
        with self.store.transaction():
            self.store.delete_where(PLANNED_MEALS, lambda m: m["meal_plan_id"] == plan_id)
            self.store.delete_where(MEAL_PLAN_SHARES, lambda s: s["meal_plan_id"] == plan_id)
            self.store.delete_where(STAPLES_USAGE, lambda u: u["meal_plan_id"] == plan_id)
            self.store.delete(MEAL_PLANS, plan_id)
        logger.info("Meal plan deleted", extra={"meal_plan_id": plan_id})

    def add_meal_to_plan(self, plan_id: str, user_id: str, recipe_id: str, day_of_week: str,
                         meal_type: str, serving_size: int = 1, notes: str | None = None,
                         is_batch_cook: bool = False) -> PlannedMeal:
        plan = self._editable_plan(plan_id, user_id)
        day_int = day_to_int(day_of_week)
        _validate_meal_type(meal_type)
        _validate_serving_size(serving_size)

        recipe = self.store.get(RECIPES, recipe_id)
        if recipe is None:
            raise AppError.not_found("Recipe", ErrorCode.RECIPE_NOT_FOUND)
        if recipe["owner_id"] not in (plan["owner_id"], user_id):
            raise AppError.authorization("Recipe must belong to the plan owner or to you")

        row = self.store.insert(PLANNED_MEALS, {
            "meal_plan_id": plan_id,
            "recipe_id": recipe_id,
            "day_of_week": DAYS_OF_WEEK[day_int],
            "day_of_week_int": day_int,
            "meal_type": meal_type,
            "serving_size": serving_size,
            "notes": notes,
            "is_batch_cook": bool(is_batch_cook),
        })
        logger.info(
            "Meal added to plan",
            extra={"meal_plan_id": plan_id, "recipe_id": recipe_id, "day": row["day_of_week"], "meal_type": meal_type},
        )
        return PlannedMeal.from_dict(row, recipe)

    def update_planned_meal(self, planned_meal_id: str, user_id: str, changes: dict[str, Any]) -> PlannedMeal:
        meal = self._planned_meal_row(planned_meal_id)
        self._editable_plan(meal["meal_plan_id"], user_id)

        allowed = {"day_of_week", "meal_type", "serving_size", "notes", "is_batch_cook"}
        unknown = set(changes) - allowed
        if unknown:
            raise AppError.validation(f"Unknown planned meal fields: {', '.join(sorted(unknown))}")

        updates = dict(changes)
        if "day_of_week" in updates:
            day_int = day_to_int(updates["day_of_week"])
            updates["day_of_week"] = DAYS_OF_WEEK[day_int]
            updates["day_of_week_int"] = day_int
        if "meal_type" in updates:
            _validate_meal_type(updates["meal_type"])
        if "serving_size" in updates:
            _validate_serving_size(updates["serving_size"])
        if "is_batch_cook" in updates:
            updates["is_batch_cook"] = bool(updates["is_batch_cook"])

        row = self.store.update(PLANNED_MEALS, planned_meal_id, updates)
        return PlannedMeal.from_dict(row, self.store.get(RECIPES, row["recipe_id"]))

    def move_meal(self, planned_meal_id: str, user_id: str, day_of_week: str, meal_type: str) -> PlannedMeal:
        return self.update_planned_meal(planned_meal_id, user_id, {"day_of_week": day_of_week, "meal_type": meal_type})

    def remove_meal_from_plan(self, planned_meal_id: str, user_id: str) -> None:
        meal = self._planned_meal_row(planned_meal_id)
        self._editable_plan(meal["meal_plan_id"], user_id)
        self.store.delete(PLANNED_MEALS, planned_meal_id)

    def copy_meal_plan(self, source_plan_id: str, user_id: str, plan_name: str, start_date) -> MealPlan:
        """Copy a plan's meals into a new plan owned by `user_id`."""
        source = self.get_meal_plan(source_plan_id, user_id)

        with self.store.transaction():
            new_plan = self.create_meal_plan(user_id, plan_name, start_date)
            for meal in source.planned_meals:
                self.store.insert(PLANNED_MEALS, {
                    "meal_plan_id": new_plan.id,
                    "recipe_id": meal.recipe_id,
                    "day_of_week": meal.day_of_week,
                    "day_of_week_int": meal.day_of_week_int,
                    "meal_type": meal.meal_type,
                    "serving_size": meal.serving_size,
                    "notes": meal.notes,
                    "is_batch_cook": meal.is_batch_cook,
                })

        logger.info(
            "Meal plan copied",
            extra={"source_meal_plan_id": source_plan_id, "meal_plan_id": new_plan.id,
                   "meal_count": len(source.planned_meals)},
        )
        return self.get_meal_plan(new_plan.id, user_id)

    # -- sharing -------------------------------------------------------------

    def share_meal_plan(self, plan_id: str, owner_id: str, shared_with_user_id: str,
                        can_edit: bool = False) -> MealPlanShare:
        self._owned_plan(plan_id, owner_id)
        if shared_with_user_id == owner_id:
            raise AppError.validation("You cannot share a meal plan with yourself")
        if self.store.get("users", shared_with_user_id) is None:
            raise AppError.not_found("User", ErrorCode.USER_NOT_FOUND)

        existing = self._share_row(plan_id, shared_with_user_id)
        if existing is not None:
            row = self.store.update(MEAL_PLAN_SHARES, existing["id"], {"can_edit": bool(can_edit)})
        else:
            row = self.store.insert(MEAL_PLAN_SHARES, {
                "meal_plan_id": plan_id,
                "shared_with_user_id": shared_with_user_id,
                "can_edit": bool(can_edit),
            })
        logger.info(
            "Meal plan shared",
            extra={"meal_plan_id": plan_id, "shared_with_user_id": shared_with_user_id, "can_edit": bool(can_edit)},
        )
        return MealPlanShare.from_dict(row)

    def unshare_meal_plan(self, plan_id: str, owner_id: str, shared_with_user_id: str) -> None:
        self._owned_plan(plan_id, owner_id)
        existing = self._share_row(plan_id, shared_with_user_id)
        if existing is None:
            raise AppError.not_found("Share")
        self.store.delete(MEAL_PLAN_SHARES, existing["id"])

    def list_shares(self, plan_id: str, owner_id: str) -> list[MealPlanShare]:
        self._owned_plan(plan_id, owner_id)
        rows = self.store.select(MEAL_PLAN_SHARES, lambda s: s["meal_plan_id"] == plan_id)
        return [MealPlanShare.from_dict(row) for row in rows]

    # -- analysis ------------------------------------------------------------

    def get_recipe_usage_analysis(self, plan_id: str, user_id: str) -> list[dict]:
        """Per-recipe usage within a plan, most used first."""
        plan = self.get_meal_plan(plan_id, user_id)

        usage: dict[str, dict] = {}
        for meal in plan.planned_meals:
            if meal.recipe is None:
                continue
            entry = usage.setdefault(meal.recipe_id, {"recipe": meal.recipe, "meals": []})
            entry["meals"].append(meal)

        analysis = []
        for recipe_id, entry in usage.items():
            recipe, meals = entry["recipe"], entry["meals"]
            analysis.append({
                "recipe_id": recipe_id,
                "recipe_name": recipe["name"],
                "usage_count": len(meals),
                "is_batch_cook_candidate": len(meals) >= BATCH_COOK_MIN_USES,
                "meal_slots": [
                    {
                        "day_of_week": meal.day_of_week,
                        "meal_type": meal.meal_type,
                        "serving_size": meal.serving_size,
                        "planned_meal_id": meal.id,
                    }
                    for meal in meals
                ],
                "nutritional_contribution": {
                    "primary_vegetables": extract_vegetables(recipe.get("ingredients") or []),
                    "cuisine_type": recipe.get("cuisine") or "Other",
                    "health_score": calculate_health_score(recipe.get("ingredients") or []),
                },
            })

        analysis.sort(key=lambda a: a["usage_count"], reverse=True)
        return analysis

    def get_weekly_analysis(self, plan_id: str, user_id: str) -> dict:
        """Variety warnings and suggestions for a week's plan."""
        recipe_usage = self.get_recipe_usage_analysis(plan_id, user_id)

        cuisine_count: Counter = Counter()
        cuisines_by_day: dict[str, set] = {}
        for usage in recipe_usage:
            cuisine = usage["nutritional_contribution"]["cuisine_type"]
            cuisine_count[cuisine] += usage["usage_count"]
            for slot in usage["meal_slots"]:
                cuisines_by_day.setdefault(slot["day_of_week"], set()).add(cuisine)

        cuisine_repetition = [
            {
                "cuisine": cuisine,
                "day_count": sum(1 for day_cuisines in cuisines_by_day.values() if cuisine in day_cuisines),
            }
            for cuisine, count in cuisine_count.items()
            if count >= CUISINE_REPETITION_MIN_USES and cuisine != "Other"
        ]

        total_vegetables = sum(len(u["nutritional_contribution"]["primary_vegetables"]) for u in recipe_usage)
        vegetable_deficiency = total_vegetables < len(recipe_usage) * 0.5

        batch_cook_opportunities = [u["recipe_name"] for u in recipe_usage if u["is_batch_cook_candidate"]]

        return {
            "variety_warnings": {
                "cuisine_repetition": cuisine_repetition,
                "vegetable_deficiency": vegetable_deficiency,
            },
            "suggestions": {
                "add_vegetables": vegetable_deficiency,
                "diversify_cuisine": [c["cuisine"] for c in cuisine_repetition],
                "batch_cook_opportunities": batch_cook_opportunities,
            },
            "recipe_usage": recipe_usage,
        }

    # -- grocery list --------------------------------------------------------

    def generate_grocery_list(self, plan_id: str, user_id: str, now: datetime | None = None) -> list[GroceryItem]:
        """Build the plan's grocery list from its meals and the household's due staples, and store it."""
        plan = self._editable_plan(plan_id, user_id)
        now = now or datetime.now(timezone.utc)
        hydrated = self._hydrate(plan)

        recipes = [meal.recipe for meal in hydrated.planned_meals if meal.recipe is not None]

        staples = []
        owner = self.store.get("users", plan["owner_id"])
        household_id = owner.get("household_id") if owner else None
        if self.staples is not None and household_id:
            staples = [s.to_dict() for s in self.staples.get_due_staples(household_id, now, exclude_plan_id=plan_id)]

        items = generate_grocery_list(recipes, staples)

        reviewed = self.staples is not None and bool(household_id)
        with self.store.transaction():
            if reviewed:
                self.staples.record_staples_added(plan_id, [s["id"] for s in staples], now)
            self.store.update(MEAL_PLANS, plan_id, {
                "grocery_list": [item.to_dict() for item in items],
                "staples_included": bool(staples),
                "staples_reviewed_at": now.isoformat() if reviewed else None,
            })

        logger.info(
            "Grocery list stored on meal plan",
            extra={"meal_plan_id": plan_id, "item_count": len(items), "staple_count": len(staples)},
        )
        return items


def extract_vegetables(ingredients: list[dict]) -> list[str]:
    vegetables = []
    for ingredient in ingredients:
        name = (ingredient.get("name") or "").lower()
        for veggie in VEGETABLE_KEYWORDS:
            if veggie in name and veggie not in vegetables:
                vegetables.append(veggie)
    return vegetables


def calculate_health_score(ingredients: list[dict]) -> int:
    """Rough 0-100 score: +10 per healthy keyword present, -10 per unhealthy one."""
    score = 50
    names = [(ingredient.get("name") or "").lower() for ingredient in ingredients]
    if not names:
        return score

    for keyword in HEALTHY_KEYWORDS:
        if any(keyword in name for name in names):
            score += 10
    for keyword in UNHEALTHY_KEYWORDS:
        if any(keyword in name for name in names):
            score -= 10
    return max(0, min(100, score))


