import pytest

from mealmate.grocery_list import GroceryItem, amount_to_float, generate_grocery_list, infer_category


def _recipe(*ingredients) -> dict:
    """Build a recipe dict from (name, amount, unit[, extra fields]) tuples."""
    rows = []
    for name, amount, unit, *extra in ingredients:
        rows.append({"name": name, "amount": amount, "unit": unit, **(extra[0] if extra else {})})
    return {"name": "Test", "ingredients": rows}


def _by_item(items: list[GroceryItem]) -> dict[str, GroceryItem]:
    return {item.item: item for item in items}


class TestAmountToFloat:
    @pytest.mark.parametrize("amount,expected", [
        ("1 1/2", 1.5),
        ("½", 0.5),
        ("1½", 1.5),
        ("2-3", 3.0),
        ("0.5", 0.5),
        (2, 2.0),
    ])
    def test_numeric_amounts(self, amount, expected):
        assert amount_to_float(amount) == pytest.approx(expected)

    @pytest.mark.parametrize("amount", ["a handful", "1/0", "", None, "to taste"])
    def test_non_numeric_amounts(self, amount):
        assert amount_to_float(amount) is None


class TestInferCategory:
    @pytest.mark.parametrize("name,expected", [
        ("eggplant", "produce"),
        ("large eggs", "dairy"),
        ("frozen peas", "frozen"),
        ("ground beef", "meat"),
        ("black pepper", "spices"),
        ("cherry tomatoes", "produce"),
        ("all-purpose flour", "pantry"),
        ("dish soap", "other"),
    ])
    def test_categories(self, name, expected):
        assert infer_category(name) == expected


class TestGenerateGroceryList:
    def test_same_unit_is_summed_across_recipes(self):
        items = generate_grocery_list([
            _recipe(("flour", "2", "cups")),
            _recipe(("flour", "1", "cup")),
        ])

        assert len(items) == 1
        assert items[0].quantity == "3 cup"
        assert items[0].category == "pantry"
        assert items[0].source == "recipe"

    def test_recipe_planned_twice_counts_twice(self):
        recipe = _recipe(("flour", "2", "cups"))

        items = generate_grocery_list([recipe, recipe])

        assert items[0].quantity == "4 cup"

    def test_volume_units_are_converted(self):
        items = generate_grocery_list([_recipe(("milk", "1", "cup")), _recipe(("milk", "4", "tbsp"))])

        assert _by_item(items)["milk"].quantity == "1.25 cup"

    def test_weight_units_are_converted(self):
        items = generate_grocery_list([_recipe(("chicken thighs", "1", "lb")), _recipe(("chicken thighs", "8", "oz"))])

        assert _by_item(items)["chicken thighs"].quantity == "1.5 lb"

    def test_unit_spellings_are_normalized(self):
        items = generate_grocery_list([_recipe(("olive oil", "1", "Tablespoons")), _recipe(("olive oil", "2", "tbsp."))])

        assert _by_item(items)["olive oil"].quantity == "3 tbsp"

    def test_unconvertible_units_stay_separate(self):
        items = generate_grocery_list([_recipe(("garlic", "3", "cloves")), _recipe(("garlic", "1", "head"))])

        assert sorted(i.quantity for i in items) == ["1 head", "3 cloves"]

    def test_plural_names_are_merged(self):
        items = generate_grocery_list([_recipe(("tomato", "2", "")), _recipe(("tomatoes", "3", ""))])

        assert len(items) == 1
        assert items[0].item == "tomato"
        assert items[0].quantity == "5"
        assert items[0].category == "produce"

    def test_non_numeric_amount_goes_to_notes(self):
        items = generate_grocery_list([_recipe(("salt", "a pinch", ""))])

        assert items[0].quantity == ""
        assert items[0].notes == "a pinch"

    def test_ingredient_notes_are_kept(self):
        items = generate_grocery_list([_recipe(("onion", "1", "", {"notes": "diced"}))])

        assert items[0].notes == "diced"

    def test_explicit_category_wins(self):
        items = generate_grocery_list([_recipe(("flour", "1", "cup", {"category": "bakery"}))])

        assert items[0].category == "bakery"

    def test_staples_are_appended(self):
        staples = [{"id": "staple-1", "item_name": "Milk", "category": "dairy", "notes": None}]

        items = generate_grocery_list([], staples)

        assert items == [GroceryItem(item="Milk", quantity="1", category="dairy", source="staple",
                                     staple_id="staple-1")]

    def test_sorted_by_category_then_name(self):
        items = generate_grocery_list(
            [_recipe(("flour", "1", "cup"), ("chicken", "1", "lb"), ("apple", "2", ""))],
            [{"id": "s1", "item_name": "Milk", "category": "dairy"}],
        )

        assert [(i.category, i.item) for i in items] == [
            ("dairy", "Milk"),
            ("meat", "chicken"),
            ("pantry", "flour"),
            ("produce", "apple"),
        ]

    def test_empty_plan(self):
        assert generate_grocery_list([]) == []
