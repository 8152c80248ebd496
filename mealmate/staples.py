"""
Household staples: items a household buys on a schedule (milk, eggs, coffee...).

Each time a staple goes onto a meal plan's grocery list a usage row is
recorded; suggestions and due dates are worked out from those rows.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta, timezone
from typing import Any

from mealmate.errors import AppError, ErrorCode
from mealmate.households import HouseholdService
from mealmate.meal_plans import MEAL_PLANS, STAPLES_USAGE
from mealmate.store import JsonStore

logger = logging.getLogger(__name__)

HOUSEHOLD_STAPLES = "household_staples"

FREQUENCIES = {"weekly": 7, "biweekly": 14, "monthly": 30}
CATEGORIES = ["produce", "meat", "dairy", "bakery", "pantry", "frozen", "spices", "other"]

SUGGESTION_LOOKBACK_DAYS = 30
NOT_PURCHASED_RECENTLY_DAYS = 21

DEFAULT_STAPLES = [
    # Breakfast
    ("Eggs", "dairy", "weekly"),
    ("Milk", "dairy", "weekly"),
    ("Bread", "bakery", "weekly"),
    ("Cereal", "pantry", "biweekly"),
    ("Orange Juice", "dairy", "weekly"),
    ("Coffee", "pantry", "biweekly"),
    # Common
    ("Bananas", "produce", "weekly"),
    ("Chicken Breast", "meat", "weekly"),
    ("Ground Beef", "meat", "biweekly"),
    ("Rice", "pantry", "monthly"),
    ("Pasta", "pantry", "monthly"),
    ("Olive Oil", "pantry", "monthly"),
]

EDITABLE_FIELDS = {"item_name", "category", "frequency", "is_active", "notes"}


@dataclass
class HouseholdStaple:
    id: str
    household_id: str
    item_name: str
    category: str = "other"
    frequency: str = "weekly"
    is_active: bool = True
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HouseholdStaple":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StapleUsage:
    id: str
    household_staple_id: str
    meal_plan_id: str
    added_to_list_at: str
    quantity: str | None = None
    was_purchased: bool = False
    purchased_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StapleUsage":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StapleSuggestion:
    staple: HouseholdStaple
    suggested: bool
    reason: str
    last_purchased: str | None
    days_since_last_purchase: int

    def to_dict(self) -> dict:
        return asdict(self)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _suggestion_reason(frequency: str, days_since: int) -> str:
    if frequency == "weekly" and days_since >= 7:
        return "weekly_due"
    if frequency == "biweekly" and days_since >= 14:
        return "biweekly_due"
    if frequency == "monthly" and days_since >= 30:
        return "monthly_due"
    if days_since >= NOT_PURCHASED_RECENTLY_DAYS:
        return "not_purchased_recently"
    return ""


def _validate_fields(data: dict[str, Any]) -> dict[str, Any]:
    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise AppError.validation(f"Unknown staple fields: {', '.join(sorted(unknown))}")

    cleaned = dict(data)
    if "item_name" in cleaned:
        cleaned["item_name"] = str(cleaned["item_name"] or "").strip()
        if not cleaned["item_name"]:
            raise AppError("item_name is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)
    if "category" in cleaned:
        cleaned["category"] = cleaned["category"] or "other"
        if cleaned["category"] not in CATEGORIES:
            raise AppError.validation(f"category must be one of: {', '.join(CATEGORIES)}")
    if "frequency" in cleaned and cleaned["frequency"] not in FREQUENCIES:
        raise AppError.validation(f"frequency must be one of: {', '.join(FREQUENCIES)}")
    if "is_active" in cleaned:
        cleaned["is_active"] = bool(cleaned["is_active"])
    return cleaned


class StaplesService:
    def __init__(self, store: JsonStore, households: HouseholdService):
        self.store = store
        self.households = households

    def _staple_row(self, staple_id: str, user_id: str) -> dict:
        row = self.store.get(HOUSEHOLD_STAPLES, staple_id)
        if row is None:
            raise AppError.not_found("Staple")
        self.households.require_member(user_id, row["household_id"])
        return row

    def _name_taken(self, household_id: str, item_name: str, exclude_id: str | None = None) -> bool:
        wanted = item_name.lower()
        return bool(self.store.select(
            HOUSEHOLD_STAPLES,
            lambda s: s["household_id"] == household_id
            and s["item_name"].lower() == wanted
            and s["id"] != exclude_id,
        ))

    def _active_staples(self, household_id: str) -> list[HouseholdStaple]:
        rows = self.store.select(
            HOUSEHOLD_STAPLES,
            lambda s: s["household_id"] == household_id and s.get("is_active", True),
        )
        rows.sort(key=lambda s: s["item_name"].lower())
        return [HouseholdStaple.from_dict(row) for row in rows]

    def _last_usage(self, staple_ids: set[str], exclude_plan_id: str | None = None) -> dict[str, str]:
        """Most recent added_to_list_at per staple."""
        last: dict[str, str] = {}
        for usage in self.store.select(STAPLES_USAGE, lambda u: u["household_staple_id"] in staple_ids):
            if exclude_plan_id and usage["meal_plan_id"] == exclude_plan_id:
                continue
            staple_id = usage["household_staple_id"]
            if staple_id not in last or _parse_timestamp(usage["added_to_list_at"]) > _parse_timestamp(last[staple_id]):
                last[staple_id] = usage["added_to_list_at"]
        return last

    # -- CRUD ----------------------------------------------------------------

    def get_household_staples(self, household_id: str, user_id: str) -> list[HouseholdStaple]:
        self.households.require_member(user_id, household_id)
        return self._active_staples(household_id)

    def create_staple(self, household_id: str, user_id: str, data: dict[str, Any]) -> HouseholdStaple:
        self.households.require_member(user_id, household_id)
        if not data.get("item_name"):
            raise AppError("item_name is required", ErrorCode.MISSING_REQUIRED_FIELD, 400)

        row = _validate_fields(data)
        if self._name_taken(household_id, row["item_name"]):
            raise AppError.conflict(f"Staple '{row['item_name']}' already exists for this household")

        row.setdefault("category", "other")
        row.setdefault("frequency", "weekly")
        row.setdefault("is_active", True)
        row.setdefault("notes", None)
        row["household_id"] = household_id

        saved = self.store.insert(HOUSEHOLD_STAPLES, row)
        logger.info("Staple created", extra={"staple_id": saved["id"], "household_id": household_id})
        return HouseholdStaple.from_dict(saved)

    def update_staple(self, staple_id: str, user_id: str, changes: dict[str, Any]) -> HouseholdStaple:
        current = self._staple_row(staple_id, user_id)
        cleaned = _validate_fields(changes)
        if "item_name" in cleaned and self._name_taken(current["household_id"], cleaned["item_name"], staple_id):
            raise AppError.conflict(f"Staple '{cleaned['item_name']}' already exists for this household")

        row = self.store.update(HOUSEHOLD_STAPLES, staple_id, cleaned)
        return HouseholdStaple.from_dict(row)

    def delete_staple(self, staple_id: str, user_id: str) -> None:
        """Deactivate a staple. Its usage history is kept."""
        self._staple_row(staple_id, user_id)
        self.store.update(HOUSEHOLD_STAPLES, staple_id, {"is_active": False})
        logger.info("Staple deactivated", extra={"staple_id": staple_id})

    def bulk_update_staples(self, user_id: str, updates: list[dict[str, Any]]) -> list[HouseholdStaple]:
        """Apply [{"id": ..., "updates": {...}}, ...] all-or-nothing."""
        if not isinstance(updates, list):
            raise AppError.validation("updates must be a list")

        with self.store.transaction():
            result = []
            for entry in updates:
                if not isinstance(entry, dict) or "id" not in entry or not isinstance(entry.get("updates"), dict):
                    raise AppError.validation("Each update needs an id and an updates object")
                result.append(self.update_staple(entry["id"], user_id, entry["updates"]))
        return result

    def get_staples_by_category(self, household_id: str, user_id: str) -> dict[str, list[HouseholdStaple]]:
        groups: dict[str, list[HouseholdStaple]] = defaultdict(list)
        for staple in self.get_household_staples(household_id, user_id):
            groups[staple.category or "other"].append(staple)
        return dict(groups)

    def setup_default_staples(self, household_id: str, user_id: str) -> list[HouseholdStaple]:
        """Add the default staples the household doesn't already have."""
        self.households.require_member(user_id, household_id)

        created = []
        with self.store.transaction():
            for item_name, category, frequency in DEFAULT_STAPLES:
                if self._name_taken(household_id, item_name):
                    continue
                row = self.store.insert(HOUSEHOLD_STAPLES, {
                    "household_id": household_id,
                    "item_name": item_name,
                    "category": category,
                    "frequency": frequency,
                    "is_active": True,
                    "notes": None,
                })
                created.append(HouseholdStaple.from_dict(row))

        logger.info("Default staples added", extra={"household_id": household_id, "staple_count": len(created)})
        return created

    # -- scheduling ----------------------------------------------------------

    def get_staple_suggestions(self, household_id: str, user_id: str,
                               now: datetime | None = None) -> list[StapleSuggestion]:
        """One suggestion per active staple, based on its last use in the past 30 days."""
        staples = self.get_household_staples(household_id, user_id)
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=SUGGESTION_LOOKBACK_DAYS)

        last_usage = {
            staple_id: added_at
            for staple_id, added_at in self._last_usage({s.id for s in staples}).items()
            if _parse_timestamp(added_at) >= cutoff
        }

        suggestions = []
        for staple in staples:
            last = last_usage.get(staple.id)
            if last:
                days_since = int((now - _parse_timestamp(last)).total_seconds() // 86400)
            else:
                days_since = SUGGESTION_LOOKBACK_DAYS

            reason = _suggestion_reason(staple.frequency, days_since)
            suggestions.append(StapleSuggestion(
                staple=staple,
                suggested=bool(reason),
                reason=reason,
                last_purchased=last,
                days_since_last_purchase=days_since,
            ))
        return suggestions

    def get_due_staples(self, household_id: str, now: datetime | None = None,
                        exclude_plan_id: str | None = None) -> list[HouseholdStaple]:
        """Active staples not added to any list within their frequency window.

        Usage recorded against `exclude_plan_id` is ignored, so regenerating a
        plan's list keeps the staples it already had.
        """
        now = now or datetime.now(timezone.utc)
        staples = self._active_staples(household_id)
        last_usage = self._last_usage({s.id for s in staples}, exclude_plan_id)

        due = []
        for staple in staples:
            window = timedelta(days=FREQUENCIES.get(staple.frequency, FREQUENCIES["weekly"]))
            last = last_usage.get(staple.id)
            if last is None or now - _parse_timestamp(last) >= window:
                due.append(staple)
        return due

    def record_staples_added(self, plan_id: str, staple_ids: list[str], now: datetime | None = None,
                             quantities: dict[str, str] | None = None) -> list[StapleUsage]:
        """Record that staples went onto a plan's list. One usage row per staple and plan."""
        now = now or datetime.now(timezone.utc)
        quantities = quantities or {}

        usages = []
        with self.store.transaction():
            for staple_id in staple_ids:
                existing = self.store.select(
                    STAPLES_USAGE,
                    lambda u: u["household_staple_id"] == staple_id and u["meal_plan_id"] == plan_id,
                )
                if existing:
                    row = existing[0]
                    if staple_id in quantities:
                        row = self.store.update(STAPLES_USAGE, row["id"], {"quantity": quantities[staple_id]})
                else:
                    row = self.store.insert(STAPLES_USAGE, {
                        "household_staple_id": staple_id,
                        "meal_plan_id": plan_id,
                        "added_to_list_at": now.isoformat(),
                        "quantity": quantities.get(staple_id),
                        "was_purchased": False,
                        "purchased_at": None,
                    })
                usages.append(StapleUsage.from_dict(row))
        return usages

    def add_staples_to_grocery_list(self, plan_id: str, user_id: str, staple_ids: list[str],
                                    quantities: dict[str, str] | None = None,
                                    now: datetime | None = None) -> list[StapleUsage]:
        plan = self.store.get(MEAL_PLANS, plan_id)
        if plan is None:
            raise AppError.not_found("Meal plan", ErrorCode.MEAL_PLAN_NOT_FOUND)
        if not isinstance(staple_ids, list) or not staple_ids:
            raise AppError.validation("staple_ids must be a non-empty list")

        owner = self.store.get("users", plan["owner_id"])
        plan_household = owner.get("household_id") if owner else None
        for staple_id in staple_ids:
            staple = self._staple_row(staple_id, user_id)
            if staple["household_id"] != plan_household:
                raise AppError.authorization("Staples must belong to the meal plan owner's household")

        usages = self.record_staples_added(plan_id, staple_ids, now, quantities)
        logger.info("Staples added to grocery list", extra={"meal_plan_id": plan_id, "staple_count": len(usages)})
        return usages

    def mark_staples_purchased(self, user_id: str, usage_ids: list[str],
                               now: datetime | None = None) -> list[StapleUsage]:
        if not isinstance(usage_ids, list) or not usage_ids:
            raise AppError.validation("usage_ids must be a non-empty list")
        now = now or datetime.now(timezone.utc)

        with self.store.transaction():
            result = []
            for usage_id in usage_ids:
                usage = self.store.get(STAPLES_USAGE, usage_id)
                if usage is None:
                    raise AppError.not_found("Staple usage")
                self._staple_row(usage["household_staple_id"], user_id)
                row = self.store.update(STAPLES_USAGE, usage_id, {
                    "was_purchased": True,
                    "purchased_at": now.isoformat(),
                })
                result.append(StapleUsage.from_dict(row))
        return result
