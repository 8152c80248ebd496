"""
AI-powered recipe extraction from unstructured text using OpenAI.

Handles recipe text pasted by users: social media captions, notes, messages.
The model is asked for a JSON object which is validated and converted into a
`ParsedRecipe`.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from openai import OpenAI, OpenAIError

from mealmate import config
from mealmate.recipe_parser import Ingredient, ParsedRecipe, parse_ingredient_line

logger = logging.getLogger(__name__)

SOCIAL_MEDIA_GUIDANCE = """
SOCIAL MEDIA CONTEXT:
The text comes from a social media post. Ignore emojis, hashtags, @mentions,
calls to action ("link in bio", "follow for more", "save this!") and any
promotional text. Only keep content that belongs to the recipe itself."""


class AIExtractionError(Exception):
    """Raised when AI recipe extraction fails."""
    pass


@dataclass
class ExtractedRecipeData:
    """AI-extracted recipe data with confidence score."""
    name: str
    ingredients: list[dict[str, Any]]  # [{"name": str, "amount": str, "unit": str, "notes": str}]
    instructions: list[str]
    prep_time: str | None = None
    cook_time: str | None = None
    servings: int | None = None
    cuisine: str | None = None
    category: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    confidence: float = 0.5  # 0-1


class TextRecipeExtractor:
    """Extracts recipes from free text with an OpenAI chat model."""

    def __init__(self, api_key: str | None = None, model: str | None = None,
                 max_tokens: int | None = None, temperature: float | None = None,
                 client: OpenAI | None = None):
        self.model = model or config.OPENAI_MODEL
        self.max_tokens = max_tokens or config.OPENAI_MAX_TOKENS
        self.temperature = config.OPENAI_TEMPERATURE if temperature is None else temperature
        self.client = client or OpenAI(api_key=api_key or config.OPENAI_API_KEY)

    def _build_system_prompt(self, context: str) -> str:
        """
        Build the extraction prompt with a worked example.

        Args:
            context: Where the text came from ("general" or "social_media")

        Returns:
            System prompt for the chat model
        """
        prompt = """You are a recipe extraction expert. Extract structured recipe data from unstructured text.

OUTPUT FORMAT (JSON):
{
  "name": "Recipe name",
  "description": "One sentence summary",
  "servings": 4,
  "prep_time": "15 minutes",
  "cook_time": "30 minutes",
  "cuisine": "Italian",
  "category": "Dinner",
  "ingredients": [
    {"name": "spaghetti", "amount": "400", "unit": "g", "notes": ""},
    {"name": "garlic", "amount": "2", "unit": "cloves", "notes": "minced"}
  ],
  "instructions": ["Boil the pasta", "Fry the garlic"],
  "tags": ["italian", "pasta", "quick"],
  "confidence": 0.92
}

RULES:
1. **Ingredients**: Separate amount, unit and name. Amounts are strings and may be fractions ("1/2"). Use "" when missing. Preparation details ("chopped", "melted") go in notes.
2. **Instructions**: Ordered list of steps, without leading numbers.
3. **Times**: Human readable ("10 minutes", "1h 15m"). Use null if not stated.
4. **Cuisine / category**: Infer when obvious, otherwise null.
5. **Tags**: Cuisine, dietary info, cooking method, meal type (max 5 tags).
6. **Confidence**: Score 0-1 based on clarity and completeness (0.9+ = very clear, 0.7-0.9 = good, 0.5-0.7 = ambiguous, <0.5 = very unclear).
7. **Missing data**: Use null for scalar fields and empty arrays for lists. Never invent ingredients or steps.

EXAMPLE:

Input:
"Creamy Garlic Pasta 🍝 Serves 4 | Prep: 10 min | Cook: 15 min
- 400g spaghetti
- 4 cloves garlic, minced
- 1 cup heavy cream
- 1/2 cup grated Parmesan
Boil pasta. Sauté garlic in butter, add cream and simmer. Toss with pasta and Parmesan."

Output:
{
  "name": "Creamy Garlic Pasta",
  "description": "Spaghetti in a garlic cream sauce",
  "servings": 4,
  "prep_time": "10 minutes",
  "cook_time": "15 minutes",
  "cuisine": "Italian",
  "category": "Dinner",
  "ingredients": [
    {"name": "spaghetti", "amount": "400", "unit": "g", "notes": ""},
    {"name": "garlic", "amount": "4", "unit": "cloves", "notes": "minced"},
    {"name": "heavy cream", "amount": "1", "unit": "cup", "notes": ""},
    {"name": "Parmesan", "amount": "1/2", "unit": "cup", "notes": "grated"}
  ],
  "instructions": [
    "Boil the pasta",
    "Sauté garlic in butter, add cream and simmer",
    "Toss with the pasta and Parmesan"
  ],
  "tags": ["italian", "pasta", "quick"],
  "confidence": 0.95
}"""
        if context == "social_media":
            prompt += "\n" + SOCIAL_MEDIA_GUIDANCE
        return prompt + "\n\nNow extract the recipe from the following text:"

    def extract_recipe(self, text: str, context: str = "general") -> ExtractedRecipeData:
        """
        Extract a recipe from unstructured text.

        Args:
            text: Unstructured recipe text
            context: "general" or "social_media"

        Returns:
            ExtractedRecipeData object

        Raises:
            AIExtractionError: If the model call fails or the result is unusable
        """
        logger.info("Extracting recipe from text", extra={"text_length": len(text), "context": context})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self._build_system_prompt(context)},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            result = json.loads(response.choices[0].message.content or "")
        except json.JSONDecodeError as e:
            raise AIExtractionError(f"Failed to parse AI response as JSON: {str(e)}") from e
        except OpenAIError as e:
            raise AIExtractionError(f"AI extraction failed: {str(e)}") from e

        if not isinstance(result, dict):
            raise AIExtractionError("AI response was not a JSON object")

        ingredients = [_normalize_ingredient(item) for item in result.get("ingredients") or []]
        ingredients = [item for item in ingredients if item["name"]]
        if not ingredients:
            raise AIExtractionError(
                "Could not extract ingredients from text. "
                "Please ensure the recipe includes an ingredients list."
            )

        instructions = result.get("instructions") or []
        if isinstance(instructions, str):
            instructions = instructions.splitlines()
        instructions = [str(step).strip() for step in instructions if str(step).strip()]
        if not instructions:
            raise AIExtractionError(
                "Could not extract instructions from text. "
                "Please ensure the recipe includes cooking steps."
            )

        data = ExtractedRecipeData(
            name=(result.get("name") or "").strip() or "Untitled Recipe",
            ingredients=ingredients,
            instructions=instructions,
            prep_time=result.get("prep_time"),
            cook_time=result.get("cook_time"),
            servings=_to_int(result.get("servings")),
            cuisine=result.get("cuisine"),
            category=result.get("category"),
            description=result.get("description"),
            tags=[str(tag) for tag in result.get("tags") or []],
            confidence=_clamp_confidence(result.get("confidence")),
        )
        logger.info(
            "Recipe extracted from text",
            extra={"recipe_name": data.name, "ingredient_count": len(ingredients), "confidence": data.confidence},
        )
        return data


def _normalize_ingredient(item) -> dict[str, str]:
    if isinstance(item, str):
        return parse_ingredient_line(item).to_dict()
    if not isinstance(item, dict):
        return {"name": "", "amount": "", "unit": "", "notes": ""}

    amount = item.get("amount")
    return {
        "name": str(item.get("name") or item.get("item") or "").strip(),
        "amount": "" if amount is None else str(amount),
        "unit": str(item.get("unit") or ""),
        "notes": str(item.get("notes") or ""),
    }


def _to_int(value) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _clamp_confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.5
    return max(0.0, min(1.0, confidence))


def to_parsed_recipe(data: ExtractedRecipeData, source_url: str | None = None) -> ParsedRecipe:
    """Convert AI-extracted data into the common recipe shape."""
    return ParsedRecipe(
        name=data.name,
        ingredients=[Ingredient(**item) for item in data.ingredients],
        instructions="\n\n".join(data.instructions),
        prep_time=data.prep_time,
        cook_time=data.cook_time,
        servings=data.servings,
        cuisine=data.cuisine,
        category=data.category,
        source_url=source_url or "",
        description=data.description,
        keywords=list(data.tags),
    )
