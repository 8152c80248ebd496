from datetime import datetime, timedelta, timezone

import pytest

from mealmate.errors import AppError, ErrorCode
from mealmate.meal_plans import STAPLES_USAGE
from mealmate.staples import DEFAULT_STAPLES

NOW = datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)


def days_ago(days: int) -> datetime:
    return NOW - timedelta(days=days)


class TestStapleCrud:
    """Test creating, updating and removing household staples."""

    def test_create_with_defaults(self, staples, household, alice):
        staple = staples.create_staple(household.id, alice.id, {"item_name": " Eggs "})

        assert staple.item_name == "Eggs"
        assert staple.category == "other"
        assert staple.frequency == "weekly"
        assert staple.is_active is True
        assert staple.household_id == household.id

    def test_duplicate_name_is_a_conflict(self, staples, household, alice):
        staples.create_staple(household.id, alice.id, {"item_name": "Milk"})

        with pytest.raises(AppError) as exc_info:
            staples.create_staple(household.id, alice.id, {"item_name": "MILK"})

        assert exc_info.value.code == ErrorCode.CONFLICT
        assert exc_info.value.status_code == 409

    def test_item_name_required(self, staples, household, alice):
        with pytest.raises(AppError) as exc_info:
            staples.create_staple(household.id, alice.id, {"category": "dairy"})
        assert exc_info.value.code == ErrorCode.MISSING_REQUIRED_FIELD

    @pytest.mark.parametrize("data", [
        {"item_name": "Milk", "frequency": "daily"},
        {"item_name": "Milk", "category": "beverages"},
        {"item_name": "Milk", "household_id": "elsewhere"},
    ])
    def test_invalid_fields(self, staples, household, alice, data):
        with pytest.raises(AppError) as exc_info:
            staples.create_staple(household.id, alice.id, data)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_non_member_is_forbidden(self, staples, household, bob):
        with pytest.raises(AppError) as exc_info:
            staples.create_staple(household.id, bob.id, {"item_name": "Milk"})
        assert exc_info.value.status_code == 403

    def test_list_is_sorted_and_skips_inactive(self, staples, household, alice):
        staples.create_staple(household.id, alice.id, {"item_name": "milk"})
        bread = staples.create_staple(household.id, alice.id, {"item_name": "Bread"})
        staples.create_staple(household.id, alice.id, {"item_name": "Apples"})

        staples.delete_staple(bread.id, alice.id)

        assert [s.item_name for s in staples.get_household_staples(household.id, alice.id)] == ["Apples", "milk"]

    def test_update(self, staples, household, alice):
        staple = staples.create_staple(household.id, alice.id, {"item_name": "Coffee"})

        updated = staples.update_staple(staple.id, alice.id, {"frequency": "biweekly", "notes": "decaf"})

        assert updated.frequency == "biweekly"
        assert updated.notes == "decaf"

    def test_rename_to_existing_name(self, staples, household, alice):
        staples.create_staple(household.id, alice.id, {"item_name": "Coffee"})
        tea = staples.create_staple(household.id, alice.id, {"item_name": "Tea"})

        with pytest.raises(AppError) as exc_info:
            staples.update_staple(tea.id, alice.id, {"item_name": "coffee"})
        assert exc_info.value.status_code == 409

    def test_unknown_staple(self, staples, alice):
        with pytest.raises(AppError) as exc_info:
            staples.update_staple("missing", alice.id, {"notes": "x"})
        assert exc_info.value.status_code == 404

    def test_bulk_update(self, staples, household, alice):
        milk = staples.create_staple(household.id, alice.id, {"item_name": "Milk"})
        eggs = staples.create_staple(household.id, alice.id, {"item_name": "Eggs"})

        result = staples.bulk_update_staples(alice.id, [
            {"id": milk.id, "updates": {"category": "dairy"}},
            {"id": eggs.id, "updates": {"is_active": False}},
        ])

        assert [s.item_name for s in result] == ["Milk", "Eggs"]
        assert [s.item_name for s in staples.get_household_staples(household.id, alice.id)] == ["Milk"]

    def test_bulk_update_is_all_or_nothing(self, staples, household, alice):
        milk = staples.create_staple(household.id, alice.id, {"item_name": "Milk"})

        with pytest.raises(AppError):
            staples.bulk_update_staples(alice.id, [
                {"id": milk.id, "updates": {"category": "dairy"}},
                {"id": "missing", "updates": {"category": "dairy"}},
            ])

        assert staples.get_household_staples(household.id, alice.id)[0].category == "other"

    def test_by_category(self, staples, household, alice):
        staples.create_staple(household.id, alice.id, {"item_name": "Milk", "category": "dairy"})
        staples.create_staple(household.id, alice.id, {"item_name": "Butter", "category": "dairy"})
        staples.create_staple(household.id, alice.id, {"item_name": "Rice", "category": "pantry"})

        groups = staples.get_staples_by_category(household.id, alice.id)

        assert {k: [s.item_name for s in v] for k, v in groups.items()} == {
            "dairy": ["Butter", "Milk"],
            "pantry": ["Rice"],
        }


class TestDefaultStaples:
    def test_adds_missing_defaults_only(self, staples, household, alice):
        staples.create_staple(household.id, alice.id, {"item_name": "eggs"})

        created = staples.setup_default_staples(household.id, alice.id)
        again = staples.setup_default_staples(household.id, alice.id)

        assert len(created) == len(DEFAULT_STAPLES) - 1
        assert "Eggs" not in [s.item_name for s in created]
        assert again == []
        coffee = [s for s in created if s.item_name == "Coffee"][0]
        assert (coffee.category, coffee.frequency) == ("pantry", "biweekly")


class TestScheduling:
    """Test suggestions and due staples."""

    def test_suggestions(self, staples, household, alice):
        weekly_new = staples.create_staple(household.id, alice.id, {"item_name": "Bananas"})
        weekly_recent = staples.create_staple(household.id, alice.id, {"item_name": "Milk"})
        biweekly_old = staples.create_staple(household.id, alice.id, {"item_name": "Coffee", "frequency": "biweekly"})
        monthly = staples.create_staple(household.id, alice.id, {"item_name": "Rice", "frequency": "monthly"})
        staples.record_staples_added("plan-1", [weekly_recent.id], now=days_ago(2))
        staples.record_staples_added("plan-0", [biweekly_old.id], now=days_ago(40))
        staples.record_staples_added("plan-2", [monthly.id], now=days_ago(25))

        suggestions = {s.staple.id: s for s in staples.get_staple_suggestions(household.id, alice.id, now=NOW)}

        assert (suggestions[weekly_new.id].reason, suggestions[weekly_new.id].days_since_last_purchase) == \
            ("weekly_due", 30)
        assert suggestions[weekly_recent.id].suggested is False
        assert suggestions[weekly_recent.id].days_since_last_purchase == 2
        assert suggestions[weekly_recent.id].last_purchased == days_ago(2).isoformat()
        assert suggestions[biweekly_old.id].reason == "biweekly_due"
        assert suggestions[biweekly_old.id].last_purchased is None
        assert suggestions[monthly.id].reason == "not_purchased_recently"
        assert suggestions[monthly.id].suggested is True

    def test_due_staples(self, staples, household, alice):
        milk = staples.create_staple(household.id, alice.id, {"item_name": "Milk"})
        rice = staples.create_staple(household.id, alice.id, {"item_name": "Rice", "frequency": "monthly"})
        staples.record_staples_added("plan-1", [milk.id, rice.id], now=days_ago(10))

        due = staples.get_due_staples(household.id, now=NOW)

        assert [s.item_name for s in due] == ["Milk"]

    def test_due_staples_ignore_the_current_plan(self, staples, household, alice):
        milk = staples.create_staple(household.id, alice.id, {"item_name": "Milk"})
        staples.record_staples_added("plan-1", [milk.id], now=days_ago(1))

        assert staples.get_due_staples(household.id, now=NOW) == []
        assert [s.id for s in staples.get_due_staples(household.id, now=NOW, exclude_plan_id="plan-1")] == [milk.id]


class TestGroceryListStaples:
    """Test adding staples to a meal plan's list and marking them purchased."""

    @pytest.fixture
    def plan(self, meal_plans, household, alice):
        return meal_plans.create_meal_plan(alice.id, "Week 1", "2026-10-12")

    @pytest.fixture
    def milk(self, staples, household, alice):
        return staples.create_staple(household.id, alice.id, {"item_name": "Milk", "category": "dairy"})

    def test_add_to_grocery_list(self, staples, store, plan, alice, milk):
        usages = staples.add_staples_to_grocery_list(plan.id, alice.id, [milk.id], quantities={milk.id: "2 gal"},
                                                     now=NOW)
        again = staples.add_staples_to_grocery_list(plan.id, alice.id, [milk.id], quantities={milk.id: "1 gal"})

        assert usages[0].quantity == "2 gal"
        assert usages[0].added_to_list_at == NOW.isoformat()
        assert again[0].id == usages[0].id
        assert again[0].quantity == "1 gal"
        assert len(store.select(STAPLES_USAGE)) == 1

    def test_unknown_plan(self, staples, alice, milk):
        with pytest.raises(AppError) as exc_info:
            staples.add_staples_to_grocery_list("missing", alice.id, [milk.id])
        assert exc_info.value.code == ErrorCode.MEAL_PLAN_NOT_FOUND

    def test_staple_ids_required(self, staples, plan, alice):
        with pytest.raises(AppError) as exc_info:
            staples.add_staples_to_grocery_list(plan.id, alice.id, [])
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_staple_from_another_household(self, staples, households, plan, alice, bob):
        bobs_household = households.create_household("Bob's place", bob.id)
        coffee = staples.create_staple(bobs_household.id, bob.id, {"item_name": "Coffee"})

        with pytest.raises(AppError) as exc_info:
            staples.add_staples_to_grocery_list(plan.id, alice.id, [coffee.id])
        assert exc_info.value.status_code == 403

    def test_mark_purchased(self, staples, plan, alice, bob, milk):
        usage = staples.add_staples_to_grocery_list(plan.id, alice.id, [milk.id], now=days_ago(1))[0]

        with pytest.raises(AppError):
            staples.mark_staples_purchased(bob.id, [usage.id])
        purchased = staples.mark_staples_purchased(alice.id, [usage.id], now=NOW)

        assert purchased[0].was_purchased is True
        assert purchased[0].purchased_at == NOW.isoformat()

    def test_mark_unknown_usage(self, staples, alice):
        with pytest.raises(AppError) as exc_info:
            staples.mark_staples_purchased(alice.id, ["missing"])
        assert exc_info.value.status_code == 404
