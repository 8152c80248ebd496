import logging
import re
import unicodedata
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from rapidfuzz import fuzz

# Similarity threshold (0–100) for fuzzy name merging. 85 catches plural and
# accent variants.
_FUZZY_THRESHOLD = 85

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Units
# Keyed by the name shown on the list. Volume sizes are in ml, weights in g.
# Trailing-"s" plurals of any spelling are recognised without listing them.
# ---------------------------------------------------------------------------

_UNITS: dict[str, tuple[str, float, tuple[str, ...]]] = {
    "ml": ("volume", 1.0, ("milliliter", "millilitre")),
    "tsp": ("volume", 4.92892, ("teaspoon",)),
    "tbsp": ("volume", 14.7868, ("tablespoon", "tbs")),
    "fl oz": ("volume", 29.5735, ("fluid ounce",)),
    "cup": ("volume", 236.588, ("c",)),
    "pt": ("volume", 473.176, ("pint",)),
    "qt": ("volume", 946.353, ("quart",)),
    "l": ("volume", 1000.0, ("liter", "litre")),
    "gal": ("volume", 3785.41, ("gallon",)),
    "g": ("weight", 1.0, ("gram",)),
    "kg": ("weight", 1000.0, ("kilogram",)),
    "oz": ("weight", 28.3495, ("ounce",)),
    "lb": ("weight", 453.592, ("pound",)),
}

_SPELLINGS: dict[str, str] = {
    spelling: name
    for name, (_, _, aliases) in _UNITS.items()
    for spelling in (name, *aliases)
}

# Mixed units of one family are shown in the first unit whose threshold the
# total reaches, so a quarter cup reads as cups rather than a pile of tbsp.
_READABLE_STEPS: dict[str, list[tuple[float, str]]] = {
    "volume": [(1000.0, "l"), (59.1471, "cup"), (14.7868, "tbsp"), (0.0, "tsp")],
    "weight": [(1000.0, "kg"), (453.592, "lb"), (28.3495, "oz"), (0.0, "g")],
}

_UNICODE_FRACTIONS = {
    "½": 0.5, "⅓": 1 / 3, "⅔": 2 / 3, "¼": 0.25, "¾": 0.75,
    "⅕": 0.2, "⅖": 0.4, "⅗": 0.6, "⅘": 0.8, "⅙": 1 / 6, "⅚": 5 / 6,
    "⅛": 0.125, "⅜": 0.375, "⅝": 0.625, "⅞": 0.875,
}

# First match wins, so more specific categories come first
CATEGORY_KEYWORDS: list[tuple[str, list[str]]] = [
    ("frozen", ["frozen", "ice cream"]),
    ("spices", [
        "cumin", "paprika", "chili powder", "cayenne", "turmeric", "coriander",
        "cinnamon", "nutmeg", "cardamom", "allspice", "garlic powder",
        "onion powder", "oregano", "bay leaf", "curry powder", "garam masala",
        "italian seasoning", "red pepper flake", "peppercorn", "black pepper",
    ]),
    ("meat", [
        "beef", "chicken", "pork", "turkey", "lamb", "veal", "duck", "bacon",
        "sausage", "ham", "steak", "fish", "salmon", "tuna", "shrimp", "cod",
        "prosciutto", "pepperoni",
    ]),
    ("dairy", [
        "milk", "cream", "butter", "cheese", "yogurt", "parmesan", "mozzarella",
        "cheddar", "feta", "ricotta", "egg", "orange juice",
    ]),
    ("bakery", ["bread", "bagel", "bun", "roll", "tortilla", "pita", "croissant", "baguette"]),
    ("produce", [
        "onion", "garlic", "tomato", "potato", "carrot", "celery", "pepper",
        "broccoli", "spinach", "lettuce", "cucumber", "zucchini", "mushroom",
        "corn", "peas", "green bean", "cabbage", "kale", "apple", "banana",
        "lemon", "lime", "orange", "berry", "berries", "avocado", "ginger", "parsley",
        "cilantro", "basil", "thyme", "rosemary", "dill", "mint", "scallion",
        "shallot", "leek", "squash", "cauliflower", "asparagus", "eggplant",
    ]),
    ("pantry", [
        "flour", "sugar", "salt", "oil", "vinegar", "rice", "pasta", "noodle",
        "spaghetti", "oat", "quinoa", "stock", "broth", "soy sauce", "honey",
        "syrup", "beans", "lentil", "chickpea", "baking powder", "baking soda",
        "yeast", "vanilla", "cocoa", "chocolate", "cereal", "coffee", "tea",
        "nut", "almond", "walnut", "peanut", "sauce", "paste", "mustard",
    ]),
]


@dataclass
class GroceryItem:
    item: str
    quantity: str
    category: str
    checked: bool = False
    notes: str = ""
    source: str = "recipe"  # recipe, staple, manual
    staple_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def amount_to_float(amount) -> float | None:
    """Parse a recipe amount ("1 1/2", "½", "2-3", "0.5") into a number.

    Ranges resolve to their upper bound. Returns None for non-numeric amounts
    such as "a handful".
    """
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, (int, float)):
        return float(amount)

    text = str(amount).strip()
    if not text:
        return None

    range_parts = re.split(r"\s*(?:-|–|to)\s*", text)
    if len(range_parts) == 2 and all(range_parts):
        return amount_to_float(range_parts[1])

    total = 0.0
    parts = text.split()
    for part in parts:
        value = _number(part)
        if value is None:
            return None
        total += value
    return total


def _number(text: str) -> float | None:
    if text in _UNICODE_FRACTIONS:
        return _UNICODE_FRACTIONS[text]
    # "1½"
    if len(text) > 1 and text[-1] in _UNICODE_FRACTIONS:
        whole = _number(text[:-1])
        return None if whole is None else whole + _UNICODE_FRACTIONS[text[-1]]
    if "/" in text:
        num, _, denom = text.partition("/")
        try:
            return float(num) / float(denom)
        except (ValueError, ZeroDivisionError):
            return None
    try:
        return float(text)
    except ValueError:
        return None


def infer_category(name: str) -> str:
    """Shopping aisle for an ingredient, matched on whole words ("eggplant" is not "egg")."""
    lowered = name.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}(?:e?s)?\b", lowered):
                return category
    return "other"


def _normalize_unit(unit: str | None) -> str:
    """Display name for a unit ("Tablespoons" -> "tbsp"); unknown units are lowercased as-is."""
    if not unit:
        return ""
    spelling = unit.strip().lower().rstrip(".")
    if spelling in _SPELLINGS:
        return _SPELLINGS[spelling]
    if spelling.endswith("s") and spelling[:-1] in _SPELLINGS:
        return _SPELLINGS[spelling[:-1]]
    return spelling


def _readable(family: str, base_total: float) -> tuple[float, str]:
    steps = _READABLE_STEPS[family]
    name = next((unit for threshold, unit in steps if base_total >= threshold), steps[-1][1])
    return base_total / _UNITS[name][1], name


def _combine_entries(entries: list[tuple[float, str]]) -> list[tuple[float, str]]:
    """Collapse one ingredient's (quantity, unit) pairs into as few lines as possible.

    Amounts in the same unit are added up. When one family (volume or weight)
    shows up in several units, its total is converted to a readable unit.
    Unitless counts and units we can't convert ('clove', 'head') each keep a
    line of their own.
    """
    per_unit: dict[str, float] = defaultdict(float)
    for qty, unit in entries:
        per_unit[unit] += qty

    lines: list[tuple[float, str]] = []
    by_family: dict[str, dict[str, float]] = defaultdict(dict)
    for unit, qty in per_unit.items():
        if unit in _UNITS:
            by_family[_UNITS[unit][0]][unit] = qty
        else:
            lines.append((qty, unit))

    for family, amounts in by_family.items():
        if len(amounts) == 1:
            lines.extend((qty, unit) for unit, qty in amounts.items())
        else:
            base_total = sum(qty * _UNITS[unit][1] for unit, qty in amounts.items())
            lines.append(_readable(family, base_total))
    return lines


def _format_quantity(qty: float, unit: str) -> str:
    number = f"{round(qty, 2):g}"
    return f"{number} {unit}".strip()


def _normalize_name(name: str) -> str:
    """Grouping key for an ingredient name: accents stripped, lowercased, simple plural removed."""
    decomposed = unicodedata.normalize("NFKD", name.strip())
    key = "".join(c for c in decomposed if not unicodedata.combining(c)).lower()
    if len(key) > 4 and key.endswith("s") and not key.endswith("ss"):
        key = key[:-1]
    return key


def _fuzzy_merge_items(item_data: dict[str, dict]) -> dict[str, dict]:
    """Fold together entries whose grouping keys score >= _FUZZY_THRESHOLD.

    Each cluster is represented by its earliest key, so the display name and
    category come from the ingredient that appeared first.
    """
    merged: dict[str, dict] = {}
    for key, data in item_data.items():
        target = next((seen for seen in merged if fuzz.WRatio(seen, key) >= _FUZZY_THRESHOLD), None)
        if target is None:
            merged[key] = {**data, "entries": list(data["entries"]), "notes": list(data["notes"])}
            continue
        merged[target]["entries"].extend(data["entries"])
        merged[target]["notes"].extend(n for n in data["notes"] if n not in merged[target]["notes"])
    return merged


def generate_grocery_list(recipes: Iterable[dict[str, Any]],
                          staples: Iterable[dict[str, Any]] = ()) -> list[GroceryItem]:
    """Build a grocery list from the recipes of a meal plan plus due staples.

    `recipes` holds one recipe dict per planned meal, so a recipe planned twice
    contributes its ingredients twice. Ingredients with the same name are
    combined; compatible units are converted. Amounts that aren't numbers
    ("a handful") are kept in the item's notes.
    """
    item_data: dict[str, dict] = {}
    recipe_count = 0

    for recipe in recipes:
        recipe_count += 1
        for ingredient in recipe.get("ingredients") or []:
            name = (ingredient.get("name") or "").strip()
            if not name:
                continue
            key = _normalize_name(name)

            if key not in item_data:
                item_data[key] = {
                    "display_name": name,
                    "category": ingredient.get("category") or infer_category(name),
                    "entries": [],
                    "notes": [],
                }
            data = item_data[key]

            raw_amount = ingredient.get("amount")
            qty = amount_to_float(raw_amount)
            if qty is not None:
                data["entries"].append((qty, _normalize_unit(ingredient.get("unit"))))
            elif raw_amount not in (None, ""):
                note = f"{raw_amount} {ingredient.get('unit') or ''}".strip()
                if note not in data["notes"]:
                    data["notes"].append(note)

            note = (ingredient.get("notes") or "").strip()
            if note and note not in data["notes"]:
                data["notes"].append(note)

    item_data = _fuzzy_merge_items(item_data)

    items: list[GroceryItem] = []
    for data in item_data.values():
        notes = "; ".join(data["notes"])
        if not data["entries"]:
            items.append(GroceryItem(item=data["display_name"], quantity="", category=data["category"], notes=notes))
            continue
        for qty, unit in _combine_entries(data["entries"]):
            items.append(GroceryItem(
                item=data["display_name"],
                quantity=_format_quantity(qty, unit),
                category=data["category"],
                notes=notes,
            ))

    for staple in staples:
        items.append(GroceryItem(
            item=staple["item_name"],
            quantity=staple.get("quantity") or "1",
            category=staple.get("category") or "other",
            notes=staple.get("notes") or "",
            source="staple",
            staple_id=staple.get("id"),
        ))

    items.sort(key=lambda x: (x.category, x.item.lower()))
    logger.info(
        "Grocery list generated",
        extra={"recipe_count": recipe_count, "item_count": len(items)},
    )
    return items
