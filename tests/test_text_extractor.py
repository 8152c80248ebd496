import json
from unittest.mock import Mock

import pytest
from openai import OpenAIError

from mealmate.text_extractor import (
    AIExtractionError,
    ExtractedRecipeData,
    TextRecipeExtractor,
    to_parsed_recipe,
)


def _client_returning(content: str) -> Mock:
    client = Mock()
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    client.chat.completions.create.return_value = response
    return client


def _payload(**overrides) -> dict:
    payload = {
        "name": "Garlic Noodles",
        "description": "Buttery garlic noodles",
        "servings": 2,
        "prep_time": "5 minutes",
        "cook_time": "10 minutes",
        "cuisine": "Asian",
        "category": "Dinner",
        "ingredients": [
            {"name": "noodles", "amount": "200", "unit": "g", "notes": ""},
            "2 cloves garlic, minced",
        ],
        "instructions": ["Boil the noodles", "Toss with garlic butter"],
        "tags": ["asian", "quick"],
        "confidence": 0.9,
    }
    payload.update(overrides)
    return payload


class TestExtractRecipe:
    def test_successful_extraction(self):
        client = _client_returning(json.dumps(_payload()))
        extractor = TextRecipeExtractor(client=client)

        data = extractor.extract_recipe("garlic noodles caption")

        assert data.name == "Garlic Noodles"
        assert data.servings == 2
        assert data.ingredients[0] == {"name": "noodles", "amount": "200", "unit": "g", "notes": ""}
        assert data.ingredients[1] == {"name": "garlic", "amount": "2", "unit": "cloves", "notes": "minced"}
        assert data.instructions == ["Boil the noodles", "Toss with garlic butter"]
        assert data.confidence == 0.9

    def test_requests_json_object_from_configured_model(self):
        client = _client_returning(json.dumps(_payload()))
        extractor = TextRecipeExtractor(client=client, model="gpt-4o-mini", max_tokens=500, temperature=0)

        extractor.extract_recipe("text")

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 500
        assert kwargs["temperature"] == 0
        assert kwargs["messages"][1] == {"role": "user", "content": "text"}

    def test_social_media_context_adds_guidance(self):
        client = _client_returning(json.dumps(_payload()))
        extractor = TextRecipeExtractor(client=client)

        extractor.extract_recipe("caption #yum", context="social_media")

        system_prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "SOCIAL MEDIA CONTEXT" in system_prompt

    def test_general_context_has_no_social_guidance(self):
        extractor = TextRecipeExtractor(client=Mock())
        assert "SOCIAL MEDIA CONTEXT" not in extractor._build_system_prompt("general")

    def test_invalid_json_raises(self):
        extractor = TextRecipeExtractor(client=_client_returning("not json"))

        with pytest.raises(AIExtractionError, match="JSON"):
            extractor.extract_recipe("text")

    def test_api_error_raises(self):
        client = Mock()
        client.chat.completions.create.side_effect = OpenAIError("quota exceeded")
        extractor = TextRecipeExtractor(client=client)

        with pytest.raises(AIExtractionError, match="quota exceeded"):
            extractor.extract_recipe("text")

    def test_missing_ingredients_raises(self):
        extractor = TextRecipeExtractor(client=_client_returning(json.dumps(_payload(ingredients=[]))))

        with pytest.raises(AIExtractionError, match="ingredients"):
            extractor.extract_recipe("text")

    def test_missing_instructions_raises(self):
        extractor = TextRecipeExtractor(client=_client_returning(json.dumps(_payload(instructions=[]))))

        with pytest.raises(AIExtractionError, match="instructions"):
            extractor.extract_recipe("text")

    def test_instructions_string_is_split_into_steps(self):
        payload = _payload(instructions="Boil the noodles\n\nToss with butter\n")
        extractor = TextRecipeExtractor(client=_client_returning(json.dumps(payload)))

        data = extractor.extract_recipe("text")

        assert data.instructions == ["Boil the noodles", "Toss with butter"]

    def test_defaults_for_name_and_confidence(self):
        payload = _payload(name="", confidence=None)
        extractor = TextRecipeExtractor(client=_client_returning(json.dumps(payload)))

        data = extractor.extract_recipe("text")

        assert data.name == "Untitled Recipe"
        assert data.confidence == 0.5

    def test_confidence_is_clamped(self):
        extractor = TextRecipeExtractor(client=_client_returning(json.dumps(_payload(confidence=1.7))))
        assert extractor.extract_recipe("text").confidence == 1.0

    def test_non_object_response_raises(self):
        extractor = TextRecipeExtractor(client=_client_returning("[1, 2]"))

        with pytest.raises(AIExtractionError):
            extractor.extract_recipe("text")


def test_to_parsed_recipe():
    data = ExtractedRecipeData(
        name="Garlic Noodles",
        ingredients=[{"name": "noodles", "amount": "200", "unit": "g", "notes": ""}],
        instructions=["Boil", "Toss"],
        servings=2,
        cuisine="Asian",
        tags=["asian", "quick"],
    )

    parsed = to_parsed_recipe(data, "https://tiktok.com/@cook/video/1")

    assert parsed.instructions == "Boil\n\nToss"
    assert parsed.ingredients[0].name == "noodles"
    assert parsed.keywords == ["asian", "quick"]
    assert parsed.source_url == "https://tiktok.com/@cook/video/1"
    assert parsed.servings == 2
