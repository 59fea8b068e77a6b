"""Intent Normalizer: turns raw chat text into a structured, sanitized Intent.

The LLM does the first extraction pass; everything after that is
deterministic.  Word-boundary heuristics re-scan the raw query for
dietary words, restaurant names, menu requests and exit phrases, and a
chain of pure ``sanitize`` transforms enforces the safety rules.
"""
import logging
import re
from functools import reduce
from typing import Callable, List, Optional, Sequence

from core.text_matching import _compile_word_patterns, normalize_text
from integrations.llm.client import LLMClient
from integrations.llm.prompts import INTENT_EXTRACTION_PROMPT
from models.chat_state import ChatState
from models.intent import Intent
from models.message import ChatMessage
from config.settings import settings

logger = logging.getLogger(__name__)

_INFRA_ERRORS = (TimeoutError, ConnectionError, OSError)

# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------

_SCRIPT_LANGUAGES = (
    (re.compile(r"[਀-੿]"), "pa"),  # Gurmukhi
    (re.compile(r"[ऀ-ॿ]"), "hi"),  # Devanagari
    (re.compile(r"[؀-ۿ]"), "ar"),
    (re.compile(r"[Ѐ-ӿ]"), "ru"),  # Cyrillic
)

_ROMANIZED_PHRASES = (
    ("pa", ("ki ha", "ki hai", "kee hai", "eh ki", "ki aa", "ki hunda", "ki hega",
            "kithe", "kithon", "kinne", "menu dasso", "dasso")),
    ("hi", ("kya hai", "kya he", "ye kya", "yeh kya", "batao", "bataiye",
            "kaisa hai", "kaise", "kitna", "kitne", "kahaan", "kahan")),
    ("sv", ("vad är", "vad ar", "finns det", "har ni", "visar")),
)


def detect_language(text: str) -> Optional[str]:
    """Script detection first, then romanized phrases. None when undecided."""
    for pattern, lang in _SCRIPT_LANGUAGES:
        if pattern.search(text):
            return lang
    lower = text.lower()
    for lang, phrases in _ROMANIZED_PHRASES:
        if any(p in lower for p in phrases):
            return lang
    return None


# ---------------------------------------------------------------------------
# Dietary vocabulary
# ---------------------------------------------------------------------------

_VEGAN_RE = re.compile(r"\b(vegan|vegansk|vegane|vegaaninen|vegaani)\b", re.IGNORECASE)
_VEGETARIAN_RE = re.compile(
    r"\b(vegetarian|vegetarisk|vegetarisch|vego|veggie|kasvis)\b", re.IGNORECASE
)
_BARE_VEG_RE = re.compile(r"\bveg\b", re.IGNORECASE)

_OTHER_HARD_TAGS = (
    (re.compile(r"\b(satvik|sattvic)\b", re.IGNORECASE), "satvik"),
    (re.compile(r"\b(halal|helal)\b", re.IGNORECASE), "halal"),
    (re.compile(r"\b(gluten[- ]?free|glutenfri(tt)?|glutenfrei|gluteeniton)\b", re.IGNORECASE), "gluten-free"),
    (re.compile(r"\b(nut[- ]?free|peanut[- ]?free|tree nut[- ]?free)\b", re.IGNORECASE), "nut-free"),
    (re.compile(
        r"\b(lactose[- ]?free|dairy[- ]?free|laktosfri|mjölkfri|laktosefrei|laktoositon)\b",
        re.IGNORECASE,
    ), "lactose-free"),
)

# Canonical English term per multilingual dietary word
DIETARY_SYNONYMS = {
    "vegansk": "vegan", "vegane": "vegan", "vegaaninen": "vegan", "vegaani": "vegan",
    "vegetarisk": "vegetarian", "vegetarisch": "vegetarian", "kasvis": "vegetarian",
    "veg": "vegetarian", "veggie": "vegetarian", "ve": "vegetarian", "vego": "vegetarian",
    "glutenfri": "gluten-free", "glutenfrei": "gluten-free", "gluteeniton": "gluten-free",
    "gluten free": "gluten-free",
    "laktosfri": "lactose-free", "mjölkfri": "lactose-free", "laktosefrei": "lactose-free",
    "laktosefri": "lactose-free", "laktoositon": "lactose-free", "lactose free": "lactose-free",
    "dairy-free": "lactose-free", "dairy free": "lactose-free",
    "helal": "halal", "sattvic": "satvik",
}

_DIETARY_VALIDATION = {
    "vegetarian": re.compile(r"\b(veg|vegetarian|vegetarisk|vegetarisch|vego|veggie|kasvis)\b", re.IGNORECASE),
    "vegan": _VEGAN_RE,
    "halal": re.compile(r"\b(halal|helal)\b", re.IGNORECASE),
    "satvik": re.compile(r"\b(satvik|sattvic)\b", re.IGNORECASE),
    "gluten-free": re.compile(r"\b(gluten[- ]?free|glutenfri|glutenfrei|gluteeniton)\b", re.IGNORECASE),
    "lactose-free": re.compile(
        r"\b(lactose[- ]?free|dairy[- ]?free|laktosfri|mjölkfri|laktosefrei|laktoositon)\b", re.IGNORECASE
    ),
    "nut-free": re.compile(r"\b(nut[- ]?free|peanut[- ]?free)\b", re.IGNORECASE),
}

# Words (incl. common misspellings) that mean a dietary requirement
DIETARY_KEYWORD_VARIANTS = {
    "gluten-free": ("gluten free", "gluten-free", "glutenfritt", "glutenfri"),
    "vegetarian": ("vegetarian", "vegetarisk", "veg", "vego", "veggie", "meat-free", "köttfri",
                   "vegeterian", "vegatarian", "vegeratian"),
    "vegan": ("vegan", "vegansk", "plant-based", "växtbaserad"),
    "halal": ("halal", "helal"),
    "kosher": ("kosher",),
    "jain": ("jain",),
    "satvik": ("satvik", "sattvic"),
    "lactose-free": ("lactose free", "lactose-free", "laktosfri", "mjölkfri"),
}

_ALL_DIETARY_VARIANTS = tuple(v for vs in DIETARY_KEYWORD_VARIANTS.values() for v in vs)
_ANY_DIETARY_RE = _compile_word_patterns(sorted(_ALL_DIETARY_VARIANTS, key=len, reverse=True))
_PLANT_WORDS_RE = _compile_word_patterns(sorted(
    DIETARY_KEYWORD_VARIANTS["vegetarian"] + DIETARY_KEYWORD_VARIANTS["vegan"], key=len, reverse=True
))

VAGUE_TERMS = frozenset({"anything", "something", "whatever", "hungry", "surprise me", "random"})

FILLER_WORDS = frozenset({
    "something", "anything", "some", "any", "stuff", "food", "dish", "dishes",
    "items", "options", "thing", "things",
})

_DISH_QUERY_FILLER_RE = _compile_word_patterns(
    ["any", "some", "something", "pls", "please", "want", "looking", "find", "show", "me", "do", "they", "have"]
)

_TAG_ONLY_FILLER_RE = _compile_word_patterns(sorted([
    *VAGUE_TERMS, "food", "dish", "dishes", "options", "option", "restaurant", "restaurants",
    "recommend", "recommended", "recommendation", "suggest", "suggestion", "show", "tell",
    "give", "find", "looking for", "looking", "want", "need", "please", "can", "could",
    "would", "you", "me", "any", "some",
], key=len, reverse=True))

MEAT_RE = _compile_word_patterns([
    "chicken", "lamb", "lamm", "beef", "pork", "fish", "meat", "shrimp", "prawn",
    "kebab", "burger", "kyckling", "biff", "fisk", "kött",
])

_PLANT_TAGS = frozenset({"vegan", "vegetarian"})


def mentions_plant_diet(query: str) -> bool:
    """True when the query itself asks for vegetarian or vegan food, in any known spelling."""
    return bool(
        _VEGAN_RE.search(query)
        or _VEGETARIAN_RE.search(query)
        or _BARE_VEG_RE.search(query)
        or _PLANT_WORDS_RE.search(query)
    )


def detect_hard_tags(query: str) -> List[str]:
    """Hard constraints mentioned in the raw query, matched on word boundaries."""
    tags: List[str] = []
    has_vegan = bool(_VEGAN_RE.search(query))
    if has_vegan:
        tags.append("vegan")
    # bare "veg" means vegetarian, unless the query already says vegan
    if _VEGETARIAN_RE.search(query) or (_BARE_VEG_RE.search(query) and not has_vegan):
        tags.append("vegetarian")
    for pattern, tag in _OTHER_HARD_TAGS:
        if pattern.search(query) and tag not in tags:
            tags.append(tag)
    return tags


def canonical_dietary(term: str) -> str:
    lower = term.lower().strip()
    return DIETARY_SYNONYMS.get(lower, lower)


def validate_dietary(proposed: Sequence[str], query: str) -> List[str]:
    """Keep only dietary terms that really appear in the current query."""
    kept: List[str] = []
    for term in proposed:
        lower = (term or "").lower().strip()
        if not lower:
            continue
        canonical = canonical_dietary(lower)
        pattern = _DIETARY_VALIDATION.get(canonical)
        if pattern and pattern.search(query):
            value = canonical
        elif _contains_phrase(query, lower) or _contains_phrase(query, canonical):
            value = canonical
        else:
            logger.info(f"Cleared dietary '{term}': not found in query")
            continue
        if value not in kept:
            kept.append(value)
    return kept


def _contains_phrase(text: str, phrase: str) -> bool:
    return bool(re.search(rf"(^|\W){re.escape(phrase)}($|\W)", text, re.IGNORECASE))


# ---------------------------------------------------------------------------
# Restaurant / menu heuristics
# ---------------------------------------------------------------------------

_QUESTION_WORDS = frozenset({
    "do", "does", "is", "are", "can", "have", "show", "find", "near", "best", "cheap", "options",
    "what", "where", "how", "any", "some", "get", "want", "looking",
    "har", "finns", "kan", "vill", "något", "vad", "var", "hur", "bästa", "billig", "nära",
    "alternativ", "visa", "hitta", "sök",
})

_NAME_DIETARY_WORDS = frozenset({
    "vegan", "vegansk", "vegetarian", "vegetarisk", "halal", "glutenfri", "gluten-free",
    "laktosfri", "lactose-free", "kosher", "veg", "veggie",
})

DISH_WORDS = frozenset({
    "pizza", "burger", "chicken", "curry", "rice", "naan", "pasta", "salad", "soup", "steak",
    "fish", "lamb", "beef", "pork", "biryani", "tikka", "korma", "vindaloo", "tandoori", "kebab",
    "falafel", "hummus", "sushi", "ramen", "pho", "tacos", "burrito", "wings", "fries", "noodles",
    "butter", "paneer", "dal", "daal", "samosa", "pakora", "paratha", "roti", "dosa", "idli",
    "uttapam", "chutney", "raita", "lassi", "chai", "kulfi", "gulab", "jamun", "kheer", "halwa",
    "jalebi", "ladoo", "barfi", "peda", "sandwich", "wrap", "roll", "bowl", "platter", "combo",
    "meal", "thali", "margherita", "pepperoni", "hawaiian", "vegetable", "mushroom", "funghi",
    "calzone", "garlic", "bread", "nuggets", "strips", "tenders", "anything", "something", "food",
    "dish", "dishes", "options", "roganjosh", "rogan", "josh", "makhani", "masala", "bhuna",
    "balti", "madras", "jalfrezi", "dopiaza", "saag", "palak", "aloo", "gobi", "chana",
})

_FILTER_WORDS = frozenset({
    "veg", "vegan", "vegetarian", "halal", "kosher", "gluten", "dairy", "lactose",
    "spicy", "mild", "hot", "cold", "cheap", "affordable", "best", "good",
})

_CUISINE_WORDS = frozenset({
    "italian", "indian", "chinese", "thai", "mexican", "japanese", "korean",
    "french", "american", "mediterranean", "middle", "eastern", "asian",
})

_LOCATION_WORDS = frozenset({"near", "nearby", "close", "around", "in", "at", "from"})
_ACTION_PREFIXES = frozenset({"show", "find", "get", "what", "where", "how", "is", "are", "do", "does", "any"})

_FOOD_INTENT_PHRASES = (
    "have", "serves", "has", "do they have", "does", "does it have", "find", "menu", "dish",
    "items", "options", "food", "eat", "order", "get", "serve", "offer", "make",
    "halal", "vegan", "vegetarian", "veg", "kosher", "gluten-free", "gluten free",
    "lactose-free", "lactose free", "dairy-free", "dairy free", "nut-free",
    "chicken", "butter", "paneer", "curry", "biryani", "tikka", "korma", "vindaloo",
    "roganjosh", "rogan josh", "masala", "dal", "daal", "naan", "rice", "pizza", "burger",
    "pasta", "salad", "soup", "kebab", "wrap", "makhani", "palak", "saag", "aloo", "gobi",
    "chana", "samosa", "pakora",
)

_PLACE_KEYWORDS = (
    "address", "phone", "call", "number", "website", "site", "opening hours", "open now",
    "hours", "when", "close", "closed", "directions", "location", "where is", "how to get",
    "pet friendly", "pets", "wifi", "parking", "wheelchair", "accessible", "reservation",
    "book", "booking",
)


def looks_like_restaurant_name(query: str) -> bool:
    cleaned = " ".join(query.split())
    words = cleaned.split(" ") if cleaned else []
    if not 1 <= len(words) <= 4:
        return False
    if "?" in cleaned:
        return False
    lower_words = [w.lower() for w in words]
    if any(w in _QUESTION_WORDS for w in lower_words):
        return False
    if any(w in _NAME_DIETARY_WORDS for w in lower_words):
        return False
    # Non-Latin script only → not a name we can look up
    return bool(re.search(r"[A-Za-z]", cleaned))


def detect_restaurant_lookup(query: str) -> bool:
    """True when the query reads like a bare restaurant name ("Indian Bites")."""
    if not looks_like_restaurant_name(query):
        return False

    cleaned = re.sub(r"[?.!]+$", "", query.strip())
    words = cleaned.split()
    lower_words = [w.lower() for w in words]

    if any(w in DISH_WORDS for w in lower_words):
        return False
    if any(w in _FILTER_WORDS for w in lower_words):
        return False
    if len(words) == 1 and lower_words[0] in _CUISINE_WORDS:
        return False
    if any(w in _LOCATION_WORDS for w in lower_words):
        return False
    if lower_words[0] in _ACTION_PREFIXES:
        return False

    if 2 <= len(words) <= 5:
        return True
    return len(words) == 1 and cleaned[:1].isupper()


def has_food_or_dish_intent(query: str) -> bool:
    lower = query.lower()
    return any(p in lower for p in _FOOD_INTENT_PHRASES)


def is_place_level_query(query: str) -> bool:
    lower = query.lower()
    return any(k in lower for k in _PLACE_KEYWORDS)


_BARE_MENU_RE = re.compile(r"^(menu|full\s+menu|entire\s+menu|whole\s+menu)$", re.IGNORECASE)
_MENU_REQUEST_PATTERNS = (
    _BARE_MENU_RE,
    re.compile(r"(pull|show|open|get|display)\s+(me\s+)?(the\s+)?(full|entire|whole)?\s*menu", re.IGNORECASE),
    re.compile(r"see\s+(the\s+)?(full|entire|whole)?\s*menu", re.IGNORECASE),
    re.compile(r"menu\s+(please|pls)", re.IGNORECASE),
    re.compile(r"(need|want)\s+(the\s+)?(full|entire|whole)?\s*menu", re.IGNORECASE),
    re.compile(r"menu\s+of\s+([a-zåäö\s]+)", re.IGNORECASE),
)
_MENU_OF_RE = re.compile(
    r"(?:(?:show|get|open|pull|display)\s+)?(?:me\s+)?(?:the\s+)?(?:full|entire|whole)?\s*menu\s+of\s+([a-zåäö\s]+)",
    re.IGNORECASE,
)

_EXIT_PATTERNS = (
    re.compile(r"^(back|exit)$", re.IGNORECASE),
    re.compile(r"^(search all|other restaurants|back to discovery|show all restaurants)$", re.IGNORECASE),
    re.compile(r"^(go back|return|leave|close)$", re.IGNORECASE),
)

_DRINK_SYNONYMS = {
    "smoothie": ("lassi", "shake", "juice", "drink"),
    "shake": ("lassi", "smoothie", "juice", "drink"),
    "drink": ("lassi", "smoothie", "shake", "juice"),
}
_FLAVOR_WORDS = ("mango", "chocolate", "strawberry", "banana", "vanilla", "coffee", "tea")

_GENERIC_INGREDIENT_QUERY_RE = re.compile(
    r"^((dishes?|items?|options?|food)\s+(with|containing|that have)\s+|with\s+)", re.IGNORECASE
)
_TRAILING_LOCATION_RE = re.compile(r"\b(in|at|near|close to)\s+[a-zåäö]+\b", re.IGNORECASE)


def is_menu_request(text: str) -> bool:
    return any(p.search(text) for p in _MENU_REQUEST_PATTERNS)


def is_exit_phrase(text: str) -> bool:
    return any(p.match(text.strip()) for p in _EXIT_PATTERNS)


def minimal_intent(query: str) -> Intent:
    """Intent built straight from the raw query when extraction fails."""
    trimmed = query.strip()
    return Intent(
        dish_query=trimmed or None,
        original_query=query,
        is_restaurant_lookup=detect_restaurant_lookup(trimmed) if trimmed else False,
    )


# ---------------------------------------------------------------------------
# Pure sanitize transforms (composed left to right)
# ---------------------------------------------------------------------------

def normalize_dietary_terms(intent: Intent, query: str) -> Intent:
    """Map loose dietary words (veg, vego, vegansk, ...) to canonical terms, deduplicated."""
    dietary: List[str] = []
    for term in intent.dietary:
        canonical = canonical_dietary(term)
        if canonical and canonical not in dietary:
            dietary.append(canonical)
    hard_tags: List[str] = []
    for tag in intent.hard_tags:
        canonical = canonical_dietary(tag)
        if canonical and canonical not in hard_tags:
            hard_tags.append(canonical)
    return intent.model_copy(update={"dietary": dietary, "hard_tags": hard_tags})


def drop_inherited_veg_for_meat(intent: Intent, query: str) -> Intent:
    """A meat query without an explicit veg word can't carry vegan/vegetarian tags."""
    if not MEAT_RE.search(query) or mentions_plant_diet(query):
        return intent
    dietary = [d for d in intent.dietary if d.lower() not in _PLANT_TAGS]
    hard_tags = [t for t in intent.hard_tags if t.lower() not in _PLANT_TAGS]
    if len(dietary) != len(intent.dietary) or len(hard_tags) != len(intent.hard_tags):
        logger.info(f"Dropping vegan/vegetarian tags for meat query '{query}'")
    return intent.model_copy(update={"dietary": dietary, "hard_tags": hard_tags})


def strip_filler_dish_query(intent: Intent, query: str) -> Intent:
    """A dish query that is only a filler word ("anything", "food") means no dish."""
    if intent.dish_query and intent.dish_query.strip().lower() in FILLER_WORDS:
        return intent.model_copy(update={"dish_query": None})
    return intent


SANITIZERS: Sequence[Callable[[Intent, str], Intent]] = (
    normalize_dietary_terms,
    drop_inherited_veg_for_meat,
    strip_filler_dish_query,
)


def sanitize(intent: Intent, query: str) -> Intent:
    return reduce(lambda current, rule: rule(current, query), SANITIZERS, intent)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class IntentNormalizer:
    """Extracts an Intent with the LLM and post-processes it deterministically."""

    def __init__(self, llm_client: LLMClient):
        self.llm = llm_client

    async def normalize(
        self,
        text: str,
        history: Sequence[ChatMessage] = (),
        prior_state: Optional[ChatState] = None,
    ) -> Intent:
        prior_state = prior_state or ChatState()
        prompt = INTENT_EXTRACTION_PROMPT.format(
            query=_escape(text),
            history=self._format_history(history),
        )

        try:
            extracted = await self.llm.generate_structured(
                prompt=prompt,
                schema=Intent,
                timeout_s=settings.LLM_INTENT_TIMEOUT,
            )
        except _INFRA_ERRORS as e:
            logger.error(f"LLM infrastructure error during intent extraction: {e}")
            raise
        except ValueError as e:
            logger.error(f"Intent extraction failed, using minimal intent: {e}")
            intent = self._carry_over(minimal_intent(text), prior_state)
            return sanitize(intent, text)

        intent = apply_heuristics(extracted, text, prior_state)
        intent = self._carry_over(intent, prior_state)
        return sanitize(intent, text)

    def _carry_over(self, intent: Intent, state: ChatState) -> Intent:
        """Light carry-over from state: city preference, and the dietary
        filter while browsing a single restaurant."""
        update = {}
        if not intent.city and state.prefs.city:
            update["city"] = state.prefs.city
        if (
            state.mode == "restaurant"
            and not intent.dietary
            and state.prefs.dietary
            and not (intent.show_menu or intent.exit_restaurant or intent.is_restaurant_lookup)
        ):
            update["dietary"] = list(state.prefs.dietary)
        return intent.model_copy(update=update) if update else intent

    def _format_history(self, history: Sequence[ChatMessage]) -> str:
        lines = [
            f"{m.role}: {_escape(m.content)}"
            for m in list(history)[-6:]
            if m.content and m.content.strip()
        ]
        return "\n".join(lines)


def _escape(text: str) -> str:
    return (text or "").replace("<", "&lt;").replace(">", "&gt;")


def apply_heuristics(extracted: Intent, query: str, state: ChatState) -> Intent:
    """Deterministic corrections applied on top of the LLM's extraction."""
    query_lower = query.lower()
    intent = extracted.model_copy(deep=True)
    intent.original_query = query

    language = detect_language(query)
    if language:
        intent.language = language

    hard_tags = detect_hard_tags(query)
    intent.dietary = validate_dietary(extracted.dietary, query_lower)
    for term in intent.dietary:
        for tag in detect_hard_tags(term):
            if tag not in hard_tags:
                hard_tags.append(tag)
    intent.hard_tags = hard_tags

    if intent.dish_query:
        intent.dish_query = intent.dish_query.strip() or None
    if intent.city:
        intent.city = intent.city.strip().title() or None

    # restaurant_name must be grounded in this query, not history
    if intent.restaurant_name:
        name = intent.restaurant_name.strip()
        name_words = [w for w in name.lower().split() if len(w) >= 3]
        if not any(w in query_lower for w in name_words):
            logger.info(f"Cleared restaurant_name '{name}': not found in query")
            intent.restaurant_name = None
        else:
            intent.restaurant_name = name

    if intent.restaurant_name and has_food_or_dish_intent(query) and not is_place_level_query(query):
        # "does indian bites have halal butter chicken" is a scoped dish search
        intent.is_restaurant_lookup = False
    elif detect_restaurant_lookup(query):
        intent.is_restaurant_lookup = True
        if not intent.restaurant_name:
            intent.restaurant_name = re.sub(r"[?!.,]", "", query).strip()
        intent.dish_query = None
    else:
        intent.is_restaurant_lookup = bool(intent.restaurant_name)

    combined = f"{query} {intent.dish_query or ''}".lower().strip()
    in_restaurant_mode = state.mode == "restaurant" and bool(state.current_restaurant_id)
    if in_restaurant_mode and _BARE_MENU_RE.match(query_lower.strip()):
        intent.show_menu = True
        intent.is_vague = False
    elif is_menu_request(combined):
        intent.show_menu = True
        intent.is_vague = False
        intent.dish_query = None
        if not intent.restaurant_name:
            match = _MENU_OF_RE.search(combined)
            if match:
                intent.restaurant_name = match.group(1).strip()

    # Failsafe dietary re-scan over the raw query and the dish query
    for source in (combined, (intent.dish_query or "").lower()):
        for canonical, variants in DIETARY_KEYWORD_VARIANTS.items():
            if any(_contains_phrase(source, v) for v in variants) and canonical not in intent.dietary:
                intent.dietary.append(canonical)

    if intent.dish_query and intent.dietary:
        cleaned = _ANY_DIETARY_RE.sub(" ", intent.dish_query)
        cleaned = _DISH_QUERY_FILLER_RE.sub(" ", cleaned)
        cleaned = " ".join(cleaned.split())
        intent.dish_query = cleaned or None

    if intent.dish_query:
        intent.dish_query = _expand_drink_query(intent.dish_query)

    # Dish query made only of tag words and filler → tag-only
    if intent.dish_query and intent.dietary:
        reduced = _ANY_DIETARY_RE.sub(" ", intent.dish_query.lower())
        reduced = _TAG_ONLY_FILLER_RE.sub(" ", reduced)
        if not reduced.strip():
            intent.dish_query = None

    normalized_dish = (extracted.dish_query or "").lower().strip()
    if intent.dish_query:
        intent.is_vague = False
    elif normalized_dish in VAGUE_TERMS or normalize_text(query) in VAGUE_TERMS:
        intent.dish_query = None
        intent.is_vague = True
    if intent.dietary:
        intent.is_vague = False

    if is_exit_phrase(query_lower):
        intent.exit_restaurant = True

    if (
        not intent.dish_query
        and not intent.is_vague
        and not intent.dietary
        and not (intent.show_menu or intent.exit_restaurant or intent.is_restaurant_lookup or intent.is_followup)
        and query.strip()
    ):
        fallback = _TRAILING_LOCATION_RE.sub("", query)
        fallback = re.sub(r"[?.!]+$", "", fallback).strip()
        intent.dish_query = fallback or None

    if intent.ingredients and intent.dish_query and _GENERIC_INGREDIENT_QUERY_RE.match(intent.dish_query.strip()):
        logger.info(f"Clearing generic dish_query '{intent.dish_query}' for ingredient search")
        intent.dish_query = None

    return intent


def _expand_drink_query(dish_query: str) -> str:
    lower = dish_query.lower()
    flavor = next((f for f in _FLAVOR_WORDS if f in lower), None)
    if not flavor:
        return dish_query
    for drink_word, synonyms in _DRINK_SYNONYMS.items():
        if drink_word in lower:
            return " ".join([dish_query, *(f"{flavor} {s}" for s in synonyms)])
    return dish_query
