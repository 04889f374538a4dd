from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from learning.models import AllergyRecord, ConfidenceLevel, Memory, MemoryKind, clean_display_name, normalize_key
from learning.store import MemoryStore, get_min_occurrences

logger = logging.getLogger(__name__)

# allergen / sensitivity category -> foods that commonly cross-react with it
CROSS_REACTIVITIES: dict[str, tuple[str, ...]] = {
    "Birch Pollen": (
        "apple", "apples", "pear", "pears", "peach", "peaches", "plum", "plums",
        "cherry", "cherries", "apricot", "apricots", "nectarine", "nectarines",
        "carrot", "carrots", "celery", "parsley", "parsnip", "parsnips",
        "hazelnut", "hazelnuts", "almond", "almonds", "walnut", "walnuts",
        "kiwi", "kiwis", "kiwifruit",
    ),
    "Ragweed": (
        "melon", "melons", "watermelon", "cantaloupe", "honeydew",
        "banana", "bananas", "zucchini", "cucumber", "cucumbers",
        "sunflower seeds", "chamomile", "echinacea",
    ),
    "Grass Pollen": (
        "tomato", "tomatoes", "potato", "potatoes", "melon", "melons",
        "orange", "oranges", "wheat", "peach", "peaches",
    ),
    "Mugwort": (
        "celery", "carrot", "carrots", "parsley", "coriander", "fennel",
        "aniseed", "cumin", "pepper", "peppers", "sunflower seeds", "mango", "mangoes",
    ),
    "Latex": (
        "banana", "bananas", "avocado", "avocados", "kiwi", "kiwis",
        "chestnut", "chestnuts", "papaya", "papayas", "passion fruit",
        "fig", "figs", "strawberry", "strawberries", "potato", "potatoes",
        "tomato", "tomatoes",
    ),
    "Shellfish": (
        "shrimp", "prawn", "prawns", "crab", "crabs", "lobster", "lobsters",
        "crayfish", "crawfish", "langoustine", "langoustines", "scallop", "scallops",
        "clam", "clams", "mussel", "mussels", "oyster", "oysters",
        "squid", "calamari", "octopus",
    ),
    "Tree Nuts": (
        "almond", "almonds", "cashew", "cashews", "walnut", "walnuts",
        "pecan", "pecans", "pistachio", "pistachios", "brazil nut", "brazil nuts",
        "macadamia", "macadamia nuts", "hazelnut", "hazelnuts",
        "chestnut", "chestnuts", "pine nut", "pine nuts",
    ),
    "Peanuts": (
        "peanut", "peanuts", "peanut butter", "groundnuts",
        "soybeans", "soy", "lentil", "lentils", "chickpea", "chickpeas",
        "beans", "peas", "lupine", "lupin",
    ),
    "Dairy": (
        "milk", "cheese", "butter", "cream", "yogurt", "yoghurt",
        "ice cream", "whey", "casein", "lactose", "ghee", "kefir",
        "sour cream", "cottage cheese", "cream cheese", "parmesan",
        "mozzarella", "cheddar", "brie", "camembert", "ricotta",
    ),
    "Eggs": (
        "egg", "eggs", "egg whites", "egg yolks", "mayonnaise", "mayo",
        "meringue", "albumin", "globulin", "lysozyme", "ovalbumin",
    ),
    "Gluten": (
        "wheat", "bread", "pasta", "noodles", "flour", "baked goods",
        "barley", "rye", "spelt", "semolina", "couscous", "bulgur",
        "farro", "kamut", "triticale", "seitan", "malt", "beer",
    ),
    "Soy": (
        "soy", "soybean", "soybeans", "soy sauce", "tofu", "tempeh",
        "edamame", "miso", "soy milk", "soy protein", "textured vegetable protein",
        "tvp", "soy lecithin",
    ),
    "Fish": (
        "fish", "salmon", "tuna", "cod", "tilapia", "halibut", "haddock",
        "trout", "bass", "mackerel", "sardines", "anchovy", "anchovies",
        "fish sauce", "fish oil", "omega 3", "caviar", "roe",
    ),
    "Sesame": (
        "sesame", "sesame seeds", "tahini", "hummus", "sesame oil", "halvah", "halva",
    ),
    "Sulfites": (
        "wine", "dried fruit", "dried fruits", "grape juice", "pickles",
        "vinegar", "shrimp", "processed potatoes", "beer", "cider",
    ),
    "Histamine": (
        "aged cheese", "fermented foods", "wine", "beer", "champagne",
        "sauerkraut", "kimchi", "yogurt", "kefir", "cured meats",
        "smoked fish", "shellfish", "spinach", "eggplant", "avocado",
        "tomato", "tomatoes", "strawberries", "citrus", "chocolate",
        "vinegar", "soy sauce",
    ),
    "FODMAPs": (
        "garlic", "onion", "onions", "wheat", "rye", "lactose", "milk",
        "apple", "apples", "pear", "pears", "watermelon", "mango",
        "honey", "high fructose corn syrup", "agave", "beans", "lentils",
        "chickpeas", "artichokes", "asparagus", "cauliflower", "mushrooms",
    ),
}

# regional or brand names -> the names used in the tables
FOOD_ALIASES: dict[str, tuple[str, ...]] = {
    "prawns": ("shrimp",),
    "calamari": ("squid",),
    "cheddar": ("cheese",),
    "parmesan": ("cheese",),
    "mozzarella": ("cheese",),
    "brie": ("cheese",),
    "yoghurt": ("yogurt",),
    "groundnuts": ("peanuts",),
    "courgette": ("zucchini",),
    "aubergine": ("eggplant",),
    "capsicum": ("pepper", "bell pepper"),
    "coriander": ("cilantro",),
    "rocket": ("arugula",),
    "chips": ("fries", "potato"),
    "crisps": ("chips", "potato"),
}

# allergy names users type -> the table category they belong to
ALLERGY_CATEGORY_ALIASES: dict[str, tuple[str, ...]] = {
    "Dairy": ("lactose", "milk", "casein", "whey"),
    "Gluten": ("wheat", "celiac", "coeliac"),
    "Tree Nuts": ("almonds", "cashews", "walnuts", "pecans", "pistachios", "hazelnuts", "macadamia"),
    "Shellfish": ("shrimp", "crab", "lobster", "prawn"),
    "Peanuts": ("peanut", "groundnut"),
    "Eggs": ("egg",),
    "Fish": ("salmon", "tuna", "cod"),
    "Soy": ("soya", "soybean"),
    "Sesame": ("tahini",),
}

HIGH_HISTAMINE_FOODS = (
    "aged cheese", "wine", "beer", "fermented", "cured meat", "smoked fish", "avocado",
    "spinach", "eggplant", "tomato", "strawberry", "citrus", "chocolate",
)
HIGH_FODMAP_FOODS = (
    "garlic", "onion", "wheat", "apple", "pear", "watermelon", "mango", "honey",
    "beans", "lentils", "mushroom",
)


class SafetyStatus(str, Enum):
    SAFE = "safe"
    CAUTION = "caution"
    AVOID = "avoid"


@dataclass(frozen=True)
class FoodSafetyResult:
    food_name: str
    status: SafetyStatus
    explanation: str
    cross_reaction_source: str | None = None
    related_allergy: str | None = None
    additional_notes: tuple[str, ...] = ()
    memory_key: str | None = None

    @property
    def is_safe(self) -> bool:
        return self.status == SafetyStatus.SAFE

    def to_dict(self) -> dict[str, Any]:
        return {
            "food_name": self.food_name,
            "status": self.status.value,
            "explanation": self.explanation,
            "cross_reaction_source": self.cross_reaction_source,
            "related_allergy": self.related_allergy,
            "additional_notes": list(self.additional_notes),
            "memory_key": self.memory_key,
        }


def _number_forms(key: str) -> set[str]:
    # singular/plural of the last word only: "prawn" <-> "prawns", "cherry" <-> "cherries"
    forms = {key}
    if key.endswith("ies") and len(key) > 4:
        forms.add(key[:-3] + "y")
    elif key.endswith("oes") and len(key) > 4:
        forms.add(key[:-2])
    elif key.endswith("s") and not key.endswith("ss") and len(key) > 3:
        forms.add(key[:-1])
    else:
        consonant_y = key.endswith("y") and len(key) > 2 and key[-2] not in "aeiou"
        forms.add(key[:-1] + "ies" if consonant_y else key + "s")
    return forms


def _name_variants(key: str) -> set[str]:
    variants: set[str] = set()
    for form in _number_forms(key):
        variants.add(form)
        variants.update(normalize_key(alias) for alias in FOOD_ALIASES.get(form, ()))
    return variants


def _contains_phrase(haystack: str, needle: str | None) -> bool:
    # whole-word containment so "crab" matches "crab cakes" but "cod" never matches "avocado"
    if not needle:
        return False
    return f" {needle} " in f" {haystack} "


def _matches_any(food_variants: set[str], names: Iterable[str]) -> bool:
    for name in names:
        key = normalize_key(name)
        if key is None:
            continue
        if any(variant == key or _contains_phrase(variant, key) for variant in food_variants):
            return True
    return False


def _category_matches(category: str, allergy_key: str) -> bool:
    category_key = normalize_key(category) or ""
    aliases = ALLERGY_CATEGORY_ALIASES.get(category, ())
    return (
        category_key == allergy_key
        or _contains_phrase(allergy_key, category_key)
        or _contains_phrase(category_key, allergy_key)
        or any(_contains_phrase(allergy_key, normalize_key(alias)) for alias in aliases)
    )


def _categories_for_allergy(allergy_name: str) -> list[str]:
    allergy_key = normalize_key(allergy_name)
    if allergy_key is None:
        return []
    variants = _name_variants(allergy_key)
    return [
        category
        for category in CROSS_REACTIVITIES
        if any(_category_matches(category, variant) for variant in variants)
    ]


def _is_exact_allergy(allergy: AllergyRecord, food_variants: set[str]) -> bool:
    allergy_key = normalize_key(allergy.name)
    return allergy_key is not None and not food_variants.isdisjoint(_name_variants(allergy_key))


def _cross_reactive_source(allergy: AllergyRecord, food_variants: set[str]) -> str | None:
    if _matches_any(food_variants, allergy.cross_reactive_items):
        return allergy.name
    for category in _categories_for_allergy(allergy.name):
        if _matches_any(food_variants, CROSS_REACTIVITIES[category]):
            return allergy.name
    return None


def _allergy_notes(allergy: AllergyRecord) -> list[str]:
    notes = []
    if normalize_key(allergy.severity) == "severe":
        notes.append("This is a severe allergy - avoid completely")
    if allergy.known_reactions:
        notes.append(f"Known reactions: {', '.join(allergy.known_reactions)}")
    if allergy.helpful_medications:
        notes.append(f"Keep {', '.join(allergy.helpful_medications)} available")
    return notes


def _general_notes(food_key: str) -> list[str]:
    notes = []
    if any(_contains_phrase(food_key, marker) or food_key.startswith(marker) for marker in HIGH_HISTAMINE_FOODS):
        notes.append("This food is high in histamine - start with small amounts if you are histamine sensitive")
    if any(_contains_phrase(food_key, marker) or food_key.startswith(marker) for marker in HIGH_FODMAP_FOODS):
        notes.append("This food is high in FODMAPs - it may cause digestive issues in sensitive individuals")
    return notes


def _eligible_triggers(learned_triggers: MemoryStore | Iterable[Memory] | None) -> list[Memory]:
    if learned_triggers is None:
        return []
    if isinstance(learned_triggers, MemoryStore):
        return learned_triggers.active_triggers()
    threshold = get_min_occurrences()
    return [
        memory
        for memory in learned_triggers
        if memory.kind == MemoryKind.TRIGGER
        and memory.is_active
        and not memory.user_denied
        and memory.occurrence_count >= threshold
    ]


def _trigger_matches(memory: Memory, food_key: str) -> bool:
    trigger_key = memory.key.trigger or ""
    return trigger_key == food_key or food_key in trigger_key


def check_food(
    name: str,
    allergies: Iterable[AllergyRecord] = (),
    learned_triggers: MemoryStore | Iterable[Memory] | None = None,
) -> FoodSafetyResult:
    """Classify one food as safe, caution or avoid for this user.

    Checks run most severe first and the first decisive match wins: an exact
    allergy name, then a cross-reactive food (the allergy's own list or the
    static table), then a learned trigger of at least medium confidence.
    Nothing here mutates its inputs.
    """
    display = clean_display_name(name) or ""
    food_key = normalize_key(display)
    allergy_list = list(allergies or ())
    if food_key is None:
        return FoodSafetyResult(
            food_name=display,
            status=SafetyStatus.SAFE,
            explanation="No food name given.",
        )
    variants = _name_variants(food_key)

    exact = next((allergy for allergy in allergy_list if _is_exact_allergy(allergy, variants)), None)
    if exact is not None:
        notes = _allergy_notes(exact)
        for other in allergy_list:
            source = _cross_reactive_source(other, variants)
            if source is not None and other is not exact:
                notes.append(f"Also cross-reactive with your {source} allergy")
        if _cross_reactive_source(exact, variants) is not None:
            notes.append(f"Also listed among foods that cross-react with {exact.name}")
        return FoodSafetyResult(
            food_name=display,
            status=SafetyStatus.AVOID,
            explanation=f"You have a {exact.severity.lower()} allergy to {exact.name}.",
            related_allergy=exact.name,
            additional_notes=tuple(notes),
        )

    for allergy in allergy_list:
        source = _cross_reactive_source(allergy, variants)
        if source is None:
            continue
        return FoodSafetyResult(
            food_name=display,
            status=SafetyStatus.CAUTION,
            explanation=f"{display} can cross-react with your {source} allergy.",
            cross_reaction_source=source,
            related_allergy=allergy.name,
            additional_notes=(
                "Reactions may include itchy mouth, throat tingling or mild swelling",
                "Monitor for worsening symptoms",
            ),
        )

    matches = [memory for memory in _eligible_triggers(learned_triggers) if _trigger_matches(memory, food_key)]
    matches.sort(key=lambda memory: (-memory.confidence_score, -memory.occurrence_count, memory.key.as_string()))
    strong = [memory for memory in matches if memory.confidence_level.rank >= ConfidenceLevel.MEDIUM.rank]
    if strong:
        best = strong[0]
        frequency = "often" if best.confidence_level == ConfidenceLevel.HIGH else "sometimes"
        return FoodSafetyResult(
            food_name=display,
            status=SafetyStatus.CAUTION,
            explanation=f"{best.trigger} {frequency} triggers {best.symptom.lower()} for you based on your history.",
            additional_notes=(
                f"Based on {best.occurrence_count} logged occurrences",
                f"Confidence: {int(best.confidence_score * 100)}%",
                "You confirmed this trigger" if best.user_confirmed else "Consider confirming or dismissing this pattern",
            ),
            memory_key=best.key.as_string(),
        )

    notes = [
        f"{memory.trigger} may be linked to {memory.symptom.lower()} (seen {memory.occurrence_count} times, low confidence)"
        for memory in matches
    ]
    notes.extend(_general_notes(food_key))
    return FoodSafetyResult(
        food_name=display,
        status=SafetyStatus.SAFE,
        explanation=f"No known allergies or sensitivities to {display} in your profile.",
        additional_notes=tuple(notes),
    )


def check_foods(
    names: Iterable[str],
    allergies: Iterable[AllergyRecord] = (),
    learned_triggers: MemoryStore | Iterable[Memory] | None = None,
) -> list[FoodSafetyResult]:
    allergy_list = list(allergies or ())
    trigger_list = learned_triggers if isinstance(learned_triggers, MemoryStore) else list(learned_triggers or ())
    results = [check_food(name, allergy_list, trigger_list) for name in names]
    logger.debug("Checked %d foods", len(results))
    return results


def filter_unsafe(
    names: Iterable[str],
    allergies: Iterable[AllergyRecord] = (),
    learned_triggers: MemoryStore | Iterable[Memory] | None = None,
) -> list[FoodSafetyResult]:
    return [result for result in check_foods(names, allergies, learned_triggers) if not result.is_safe]
