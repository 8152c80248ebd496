import pytest

from mealmate.tag_inference import RecipeCategorizer, prep_time_minutes


@pytest.fixture
def categorizer():
    return RecipeCategorizer()


class TestCategorize:
    """Test tag inference from name and ingredients."""

    def test_meat_pasta_dinner(self, categorizer):
        tags = categorizer.categorize(
            "Quick Chicken Pasta",
            [{"name": "chicken breast"}, {"name": "penne pasta"}, {"name": "parmesan"}],
        )
        assert tags == ["dinner", "italian", "quick"]

    def test_vegan_soup(self, categorizer):
        tags = categorizer.categorize(
            "Lentil Soup",
            [{"name": "lentils"}, {"name": "carrots"}, {"name": "vegetable broth"}],
        )
        assert tags == ["lunch", "vegetarian", "vegan", "gluten-free"]

    def test_vegetarian_with_dairy_is_not_vegan(self, categorizer):
        tags = categorizer.categorize("Cheese Omelette", [{"name": "eggs"}, {"name": "cheddar cheese"}])

        assert "vegetarian" in tags
        assert "vegan" not in tags

    def test_ingredient_notes_are_considered(self, categorizer):
        tags = categorizer.categorize("Risotto", [{"name": "broth", "notes": "chicken stock works too"}])
        assert "vegetarian" not in tags

    def test_plain_string_ingredients(self, categorizer):
        tags = categorizer.categorize("Tacos", ["1 lb ground beef", "8 tortillas", "1 lime"])

        assert "mexican" in tags
        assert "vegetarian" not in tags

    def test_healthy(self, categorizer):
        assert "healthy" in categorizer.categorize("Light Summer Salad", [{"name": "lettuce"}])


class TestInference:
    @pytest.mark.parametrize("length,expected", [(0, "easy"), (199, "easy"), (200, "medium"), (500, "hard")])
    def test_difficulty(self, length, expected):
        assert RecipeCategorizer.infer_difficulty("x" * length) == expected

    @pytest.mark.parametrize("prep_time,expected", [
        ("25 minutes", "quick"),
        ("PT30M", "quick"),
        ("45 min", "medium"),
        ("1 hour", "medium"),
        ("1h 15m", "long"),
        ("a while", None),
    ])
    def test_prep_time_category(self, prep_time, expected):
        assert RecipeCategorizer.infer_prep_time_category(prep_time) == expected

    def test_prep_time_minutes(self):
        assert prep_time_minutes("1 hour 15 minutes") == 75
        assert prep_time_minutes("1.5 hours") == 90
        assert prep_time_minutes("PT1H5M") == 65
        assert prep_time_minutes(None) is None


class TestApplyAutoCategorization:
    def test_fills_missing_fields(self, categorizer):
        recipe = {"name": "Pancakes", "ingredients": [{"name": "flour"}], "instructions": "Mix and cook.",
                  "prep_time": "15 minutes"}

        categorizer.apply_auto_categorization(recipe)

        assert recipe["tags"][0] == "breakfast"
        assert recipe["difficulty"] == "easy"
        assert recipe["prep_time_category"] == "quick"

    def test_keeps_user_values(self, categorizer):
        recipe = {"name": "Pancakes", "tags": ["family"], "difficulty": "hard", "prep_time_category": "long",
                  "prep_time": "5 minutes", "instructions": "Mix."}

        categorizer.apply_auto_categorization(recipe)

        assert recipe["tags"] == ["family"]
        assert recipe["difficulty"] == "hard"
        assert recipe["prep_time_category"] == "long"

    def test_no_prep_time_leaves_category_unset(self, categorizer):
        recipe = {"name": "Toast", "instructions": "Toast it."}

        categorizer.apply_auto_categorization(recipe)

        assert "prep_time_category" not in recipe
