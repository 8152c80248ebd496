"""Automatic categorisation of recipes based on their content."""

import logging
import re

logger = logging.getLogger(__name__)


class RecipeCategorizer:
    """Infer tags, difficulty and prep-time category for saved recipes."""

    # Meal types, matched against the recipe name
    MEAL_TYPE_KEYWORDS = {
        'breakfast': ['breakfast', 'pancake', 'waffle', 'cereal', 'oatmeal', 'toast', 'egg', 'bacon'],
        'lunch': ['lunch', 'sandwich', 'salad', 'wrap', 'soup'],
        'dinner': ['dinner', 'steak', 'roast', 'casserole', 'pasta', 'curry'],
        'dessert': ['dessert', 'cake', 'cookie', 'pie', 'ice cream', 'chocolate', 'sweet'],
        'snack': ['snack', 'chip', 'dip', 'appetizer'],
    }

    MEAT_KEYWORDS = ['meat', 'beef', 'pork', 'chicken', 'fish', 'seafood', 'bacon', 'ham']
    DAIRY_AND_EGG_KEYWORDS = ['cheese', 'milk', 'butter', 'cream', 'egg', 'yogurt', 'dairy']
    GLUTEN_KEYWORDS = ['flour', 'bread', 'wheat', 'gluten', 'pasta', 'noodle']

    # Cuisine: (name keywords, ingredient keywords)
    CUISINE_KEYWORDS = {
        'italian': (
            ['italian', 'pasta', 'pizza', 'risotto', 'lasagna'],
            ['parmesan', 'mozzarella', 'basil', 'oregano'],
        ),
        'mexican': (
            ['mexican', 'taco', 'burrito', 'quesadilla', 'salsa'],
            ['cilantro', 'lime', 'jalapeño', 'cumin', 'chili'],
        ),
        'asian': (
            ['asian', 'chinese', 'thai', 'stir fry', 'stir-fry', 'curry'],
            ['soy sauce', 'ginger', 'garlic', 'sesame', 'rice'],
        ),
    }

    QUICK_KEYWORDS = ['quick', 'easy', 'simple', 'fast', 'minute']
    HEALTHY_KEYWORDS = ['healthy', 'light', 'low fat', 'low-fat', 'diet']

    def categorize(self, name: str, ingredients: list) -> list[str]:
        """Infer tags for a recipe from its name and ingredients.

        Args:
            name: Recipe name
            ingredients: Ingredient dicts (with a 'name' key) or plain strings

        Returns:
            Inferred tags, in a stable order
        """
        tags = []
        name_lower = (name or '').lower()
        ingredient_text = self._ingredient_text(ingredients)

        for meal_type, keywords in self.MEAL_TYPE_KEYWORDS.items():
            if any(keyword in name_lower for keyword in keywords):
                tags.append(meal_type)

        if not any(keyword in ingredient_text for keyword in self.MEAT_KEYWORDS):
            tags.append('vegetarian')
            if not any(keyword in ingredient_text for keyword in self.DAIRY_AND_EGG_KEYWORDS):
                tags.append('vegan')

        if not any(keyword in ingredient_text for keyword in self.GLUTEN_KEYWORDS):
            tags.append('gluten-free')

        for cuisine, (name_keywords, ingredient_keywords) in self.CUISINE_KEYWORDS.items():
            if any(keyword in name_lower for keyword in name_keywords) or \
                    any(keyword in ingredient_text for keyword in ingredient_keywords):
                tags.append(cuisine)

        if any(keyword in name_lower for keyword in self.QUICK_KEYWORDS):
            tags.append('quick')
        if any(keyword in name_lower for keyword in self.HEALTHY_KEYWORDS):
            tags.append('healthy')

        logger.debug("Recipe categorized", extra={"recipe_name": name, "tags": tags})
        return tags

    @staticmethod
    def _ingredient_text(ingredients: list) -> str:
        parts = []
        for ingredient in ingredients or []:
            if isinstance(ingredient, dict):
                parts.extend(str(ingredient.get(key) or '') for key in ('name', 'notes'))
            else:
                parts.append(str(ingredient))
        return ' '.join(parts).lower()

    @staticmethod
    def infer_difficulty(instructions: str | None) -> str:
        length = len(instructions or '')
        if length < 200:
            return 'easy'
        if length < 500:
            return 'medium'
        return 'hard'

    @staticmethod
    def infer_prep_time_category(prep_time: str | None) -> str | None:
        """Bucket a free-form prep time ("25 minutes", "1h 10m") into quick/medium/long."""
        minutes = prep_time_minutes(prep_time)
        if minutes is None:
            return None
        if minutes <= 30:
            return 'quick'
        if minutes <= 60:
            return 'medium'
        return 'long'

    def apply_auto_categorization(self, recipe: dict) -> dict:
        """Fill in tags, difficulty and prep_time_category where they are unset."""
        if not recipe.get('tags'):
            recipe['tags'] = self.categorize(recipe.get('name', ''), recipe.get('ingredients') or [])
        if not recipe.get('difficulty'):
            recipe['difficulty'] = self.infer_difficulty(recipe.get('instructions'))
        if not recipe.get('prep_time_category') and recipe.get('prep_time'):
            recipe['prep_time_category'] = self.infer_prep_time_category(recipe['prep_time'])
        return recipe


def prep_time_minutes(prep_time: str | None) -> int | None:
    """Read a duration in minutes from text like "1h 15m", "90 minutes" or "PT20M"."""
    if not prep_time:
        return None
    text = str(prep_time).lower()

    iso = re.fullmatch(r'pt(?:(\d+)h)?(?:(\d+)m)?', text.strip())
    if iso and (iso.group(1) or iso.group(2)):
        return int(iso.group(1) or 0) * 60 + int(iso.group(2) or 0)

    hours = re.search(r'(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hour|hours)\b', text)
    minutes = re.search(r'(\d+)\s*(?:m|min|mins|minute|minutes)\b', text)
    if not hours and not minutes:
        return None

    total = 0.0
    if hours:
        total += float(hours.group(1)) * 60
    if minutes:
        total += int(minutes.group(1))
    return int(total)
