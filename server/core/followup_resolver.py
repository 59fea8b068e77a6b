"""Follow-up / Grounding Resolver.

Answers questions about what the user was just shown ("is it halal?",
"show more from Indian Bites", "in english please") before the planner
runs.  Only the grounded results are consulted; a fresh search is never
started from here.

Also hosts the dish explainer used by the EXPLAIN action:

* DEFINITION: general food knowledge ("what is gobi?"), answered by the
  LLM without restaurant data, plus a note listing grounded dishes that
  mention the term.
* MENU_FACT: questions about one shown dish, answered only from that
  dish's stored description.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from config.settings import settings
from core.intent_normalizer import _escape
from core.text_matching import STOPWORDS
from database.repositories.search_repo import SearchRepository
from integrations.llm.client import LLMClient
from integrations.llm.prompts import DEFINITION_PROMPT
from models.chat_state import GroundedDish, GroundedRestaurant, GroundedState, LastResultDish
from models.intent import Intent
from services.i18n import t

logger = logging.getLogger(__name__)

_INFRA_ERRORS = (TimeoutError, ConnectionError, OSError)


class FollowupType(str, Enum):
    PASS = "PASS"
    RESOLVED = "RESOLVED"
    CLARIFY = "CLARIFY"
    TRANSLATE_LAST = "TRANSLATE_LAST"
    PAGINATE = "PAGINATE"
    SHOW_MORE_RESTAURANT = "SHOW_MORE_RESTAURANT"


@dataclass
class FollowupResolution:
    type: FollowupType
    answer: Optional[str] = None
    matched_dish: Optional[LastResultDish] = None
    candidates: List[LastResultDish] = field(default_factory=list)
    tag_found: Optional[bool] = None
    target_language: Optional[str] = None
    restaurant_id: Optional[str] = None
    restaurant_name: Optional[str] = None


_PASS = FollowupResolution(FollowupType.PASS)

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

ALLERGEN_META = "__allergens__"

TAG_KEYWORDS = (
    "halal", "vegan", "vegetarian", "veg", "kosher", "satvik", "satvic",
    "gluten-free", "gluten free", "glutenfri", "nut-free", "dairy-free", "lactose-free",
    "allergen", "allergens", "allergy", "allergies",
)
_ALLERGEN_META_WORDS = frozenset({"allergen", "allergens", "allergy", "allergies"})

KNOWN_ALLERGENS = frozenset({
    "milk", "eggs", "egg", "nuts", "peanuts", "peanut", "tree-nuts", "treenuts",
    "wheat", "gluten", "soy", "soybeans", "soybean", "fish", "shellfish", "crustacean",
    "sesame", "mustard", "celery", "lupin", "molluscs", "sulphites", "sulfites",
})

_PRONOUN_RE = re.compile(r"\b(it|this|that|the dish|the food|these)\b", re.IGNORECASE)

_TRANSLATE_PATTERNS = (
    (re.compile(r"explain\s+in\s+english", re.IGNORECASE), "en"),
    (re.compile(r"in\s+english", re.IGNORECASE), "en"),
    (re.compile(r"english\s+please", re.IGNORECASE), "en"),
    (re.compile(r"translate\s+to\s+english", re.IGNORECASE), "en"),
    (re.compile(r"can\s+you\s+translate", re.IGNORECASE), "en"),
    (re.compile(r"på\s+engelska", re.IGNORECASE), "en"),
    (re.compile(r"på\s+svenska", re.IGNORECASE), "sv"),
    (re.compile(r"in\s+swedish", re.IGNORECASE), "sv"),
)

_PAGINATION_PATTERNS = (
    re.compile(r"show\s+more", re.IGNORECASE),
    re.compile(r"more\s+results", re.IGNORECASE),
    re.compile(r"next\s+page", re.IGNORECASE),
    re.compile(r"load\s+more", re.IGNORECASE),
    re.compile(r"visa\s+fler", re.IGNORECASE),
    re.compile(r"fler\s+resultat", re.IGNORECASE),
)

_SHOW_MORE_RESTAURANT_PATTERNS = (
    re.compile(r"show\s+(?:more|all)\s+from\s+(.+)", re.IGNORECASE),
    re.compile(r"more\s+from\s+(.+)", re.IGNORECASE),
    re.compile(r"show\s+all\s+(?:dishes\s+)?(?:at|from)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:pull|get|view|show|see)\s+(?:menu|dishes)\s+(?:of|from|at)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:pull|get|view|show|see)\s+(?:full|entire|complete)\s+menu\s+(?:of|from|at)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:full|entire|complete)\s+menu\s+(?:of|from|at)\s+(.+)", re.IGNORECASE),
    re.compile(r"visa\s+(?:fler|allt)\s+från\s+(.+)", re.IGNORECASE),
)


@dataclass(frozen=True)
class _Attribute:
    pattern: re.Pattern
    adjective: str
    noun: str
    keywords: Tuple[str, ...]


_SPICY_KEYWORDS = ("spicy", "hot", "chili", "chilli", "stark", "extra stark", "🌶")
_ATTRIBUTES = (
    _Attribute(
        re.compile(r"(?:is it|is this|is the dish|how).*\b(?:spicy|hot|stark)\b", re.IGNORECASE),
        "spicy", "spiciness", _SPICY_KEYWORDS,
    ),
    _Attribute(
        re.compile(r"(?:is it|is this|is the dish|how).*\b(?:creamy|cream)\b", re.IGNORECASE),
        "creamy", "creaminess",
        ("creamy", "cream", "grädde", "smör", "cashew", "korma", "makhani", "malai"),
    ),
    _Attribute(
        re.compile(r"(?:is it|is this|is the dish|how).*\b(?:sweet|söt)\b", re.IGNORECASE),
        "sweet", "sweetness", ("sweet", "söt", "sugar", "honey"),
    ),
    _Attribute(re.compile(r"spice\s*level", re.IGNORECASE), "spicy", "spiciness", _SPICY_KEYWORDS),
)

_ALLERGEN_META_PATTERNS = (
    re.compile(r"(?:any|what|which)\s+allergens?", re.IGNORECASE),
    re.compile(r"allergen\s+info", re.IGNORECASE),
    re.compile(r"contains?\s+allergens?", re.IGNORECASE),
    re.compile(r"has\s+allergens?", re.IGNORECASE),
    re.compile(r"allergi(?:c|es)", re.IGNORECASE),
)
_SINGLE_ALLERGEN_PATTERNS = (
    re.compile(r"(?:contains?|has|have|with|without)\s+(\w+)", re.IGNORECASE),
    re.compile(r"(?:is\s+there|any)\s+(\w+)\s+in", re.IGNORECASE),
    re.compile(r"(\w+)\s+(?:free|allergy)", re.IGNORECASE),
)
_IS_IT_PATTERNS = (
    re.compile(r"is\s+(?:it|this|that)\s+(\w+)", re.IGNORECASE),
    re.compile(r"does\s+(?:it|this|that)\s+(?:have|contain)\s+(\w+)", re.IGNORECASE),
    re.compile(r"is\s+the\s+\w+\s+(\w+)", re.IGNORECASE),
)

_MENU_NOUNS = ("menu", "items", "dishes", "options", "starters", "mains", "desserts",
               "veg", "vegetarian", "vegan", "halal")
_ACTION_WORDS = ("show", "list", "what", "any", "do they have", "are there")


# ---------------------------------------------------------------------------
# Detection helpers
# ---------------------------------------------------------------------------

def detect_translation_request(query: str) -> Optional[str]:
    for pattern, lang in _TRANSLATE_PATTERNS:
        if pattern.search(query):
            return lang
    return None


def is_pagination_request(query: str) -> bool:
    return any(p.search(query) for p in _PAGINATION_PATTERNS)


def detect_tag_question(query: str) -> Optional[str]:
    """Tag the question asks about, ``ALLERGEN_META`` for "any allergens?", or None."""
    lower = query.lower()
    if any(p.search(lower) for p in _ALLERGEN_META_PATTERNS):
        return ALLERGEN_META

    for pattern in _SINGLE_ALLERGEN_PATTERNS:
        match = pattern.search(lower)
        if match and match.group(1) in KNOWN_ALLERGENS:
            return match.group(1)

    for keyword in TAG_KEYWORDS:
        if re.search(rf"\b{re.escape(keyword)}\b", lower):
            return ALLERGEN_META if keyword in _ALLERGEN_META_WORDS else keyword

    for pattern in _IS_IT_PATTERNS:
        match = pattern.search(lower)
        if match:
            candidate = match.group(1)
            if candidate in TAG_KEYWORDS or candidate in KNOWN_ALLERGENS:
                return candidate
    return None


def is_plural_intent(query: str) -> bool:
    """'do they have vegan dishes' wants a list, not one dish."""
    lower = query.lower()
    has_menu_noun = any(n in lower for n in _MENU_NOUNS)
    has_action = any(a in lower for a in _ACTION_WORDS)
    return has_menu_noun and (has_action or " they " in f" {lower} ")


def normalize_tag(tag: str) -> str:
    value = re.sub(r"[^a-z]", "", tag.lower())
    value = re.sub(r"veg$", "vegetarian", value)
    return re.sub(r"free$", "", value)


def _query_words(query: str, exclude: set[str]) -> List[str]:
    words = re.sub(r"[^\w\s-]", " ", query.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOPWORDS and w not in exclude]


def find_dish_reference(
    query: str,
    intent: Intent,
    last_results: List[LastResultDish],
    tag_name: Optional[str] = None,
) -> Tuple[List[LastResultDish], bool]:
    """Candidate dishes the question refers to, and whether a pronoun was used."""
    uses_pronoun = bool(_PRONOUN_RE.search(query))
    if uses_pronoun and len(last_results) == 1:
        return list(last_results), True

    if intent.dish_query:
        dish_query = intent.dish_query.lower()
        by_name = [
            d for d in last_results
            if dish_query in d.dish_name.lower() or d.dish_name.lower() in dish_query
        ]
        if by_name:
            return by_name, False

    exclude = {*TAG_KEYWORDS, *KNOWN_ALLERGENS, "it", "this", "that", "does", "have", "contain", "contains"}
    if tag_name:
        exclude.add(tag_name)
    words = _query_words(query, exclude)
    matches = []
    for dish in last_results:
        name_words = dish.dish_name.lower().split()
        description = (dish.description or "").lower()
        if any(any(w in dw or dw in w for dw in name_words) or w in description for w in words):
            matches.append(dish)

    if uses_pronoun and not matches:
        return list(last_results), True
    return matches, uses_pronoun


def _dish_mismatch(dish: LastResultDish, dish_query: str) -> bool:
    """True when an explicit dish query shares nothing with the matched dish."""
    query = re.sub(r"[^a-z\s]", "", dish_query.lower()).strip()
    name = re.sub(r"[^a-z\s]", "", dish.dish_name.lower()).strip()
    if not query:
        return False
    if query in name or name in query:
        return False
    query_words = [w for w in query.split() if len(w) >= 3]
    name_words = [w for w in name.split() if len(w) >= 3]
    overlap = sum(1 for q in query_words if any(q in n or n in q for n in name_words))
    return overlap == 0


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class FollowupResolver:
    """Resolves follow-ups against ``last_results``; tag facts come from ``dish_tags``."""

    def __init__(self, search_repo: SearchRepository):
        self.search_repo = search_repo

    async def resolve(
        self,
        query: str,
        intent: Intent,
        last_results: List[LastResultDish],
    ) -> FollowupResolution:
        target_language = detect_translation_request(query)
        if target_language:
            return FollowupResolution(FollowupType.TRANSLATE_LAST, target_language=target_language)

        attribute = next((a for a in _ATTRIBUTES if a.pattern.search(query)), None)
        if attribute and last_results:
            return self._answer_attribute(query, attribute, last_results)

        show_more = self._match_show_more_restaurant(query, last_results)
        if show_more:
            return show_more

        if is_pagination_request(query):
            return FollowupResolution(FollowupType.PAGINATE)

        tag_name = detect_tag_question(query)
        if not tag_name:
            return _PASS

        matches, used_pronoun = find_dish_reference(query, intent, last_results, tag_name)
        if not matches:
            return _PASS
        if is_plural_intent(query):
            return _PASS

        if len(matches) > 1 and used_pronoun:
            top = matches[:3]
            names = ", ".join(d.dish_name for d in top)
            return FollowupResolution(
                FollowupType.CLARIFY,
                candidates=top,
                answer=f"Which dish are you asking about? {names}?",
            )

        dish = matches[0]
        if intent.dish_query and _dish_mismatch(dish, intent.dish_query):
            logger.info(f"Dish mismatch: asked '{intent.dish_query}', matched '{dish.dish_name}'")
            return _PASS

        return await self._answer_tag(dish, tag_name, intent.language or "en")

    def _answer_attribute(
        self,
        query: str,
        attribute: _Attribute,
        last_results: List[LastResultDish],
    ) -> FollowupResolution:
        lower = query.lower()
        dish = next(
            (d for d in last_results if any(len(w) > 3 and w in lower for w in d.dish_name.lower().split())),
            last_results[0],
        )
        name_hint = any(k in dish.dish_name.lower() for k in attribute.keywords)
        description_hint = any(k in (dish.description or "").lower() for k in attribute.keywords)

        if name_hint or description_hint:
            source = "name suggests" if name_hint else "description mentions"
            answer = (
                f"Based on the menu, {dish.dish_name} appears to be {attribute.adjective} "
                f"({source}). Please confirm with the restaurant."
            )
        else:
            answer = (
                f"I don't have {attribute.noun} info for {dish.dish_name} in the menu data. "
                f"Please ask the restaurant directly."
            )
        return FollowupResolution(
            FollowupType.RESOLVED,
            answer=answer,
            matched_dish=dish,
            tag_found=name_hint or description_hint,
        )

    def _match_show_more_restaurant(
        self,
        query: str,
        last_results: List[LastResultDish],
    ) -> Optional[FollowupResolution]:
        for pattern in _SHOW_MORE_RESTAURANT_PATTERNS:
            match = pattern.search(query)
            if not match or not match.group(1).strip():
                continue
            raw_name = re.sub(r"[?.!]+$", "", match.group(1).strip())
            wanted = raw_name.lower()
            for dish in last_results:
                name = dish.restaurant_name.lower()
                if wanted in name or name in wanted:
                    return FollowupResolution(
                        FollowupType.SHOW_MORE_RESTAURANT,
                        restaurant_id=dish.restaurant_id,
                        restaurant_name=dish.restaurant_name,
                    )
            # Not shown yet: the engine resolves the name against the catalogue
            return FollowupResolution(FollowupType.SHOW_MORE_RESTAURANT, restaurant_name=raw_name)
        return None

    async def _answer_tag(self, dish: LastResultDish, tag_name: str, lang: str) -> FollowupResolution:
        tags_by_dish = await self.search_repo.get_dish_tags([dish.dish_id])
        db_tags = [
            {"slug": tag.get("slug") or "", "name": tag.get("name") or tag.get("slug") or "",
             "type": tag.get("type") or "diet"}
            for tag in tags_by_dish.get(dish.dish_id, [])
            if tag.get("slug")
        ]
        context = f"{dish.dish_name} at {dish.restaurant_name}"

        if tag_name == ALLERGEN_META:
            allergens = [tag for tag in db_tags if tag["type"] == "allergen"]
            if allergens:
                listing = ", ".join(tag["name"] for tag in allergens)
                answer = f"{t('YES_PREFIX', lang)} {t('ALLERGEN_TAGGED_PREFIX', lang, list=listing)} ({context})"
            else:
                answer = f"{t('NO_PREFIX', lang)} {t('ALLERGEN_NOT_TAGGED', lang, dish=context)}"
            return FollowupResolution(
                FollowupType.RESOLVED, answer=answer, matched_dish=dish, tag_found=bool(allergens)
            )

        wanted = normalize_tag(tag_name)
        matching = next(
            (tag for tag in db_tags if normalize_tag(tag["slug"]) == wanted or normalize_tag(tag["name"]) == wanted),
            None,
        )
        if matching:
            disclaimer = f" {t('TAGS_GUIDANCE_DISCLAIMER', lang)}" if matching["type"] == "allergen" else ""
            answer = f"{t('YES_PREFIX', lang)} {context} is tagged \"{matching['name']}\" in our data.{disclaimer}"
        else:
            answer = f"{t('NO_PREFIX', lang)} {context} is not tagged \"{tag_name}\" in our data."
        return FollowupResolution(
            FollowupType.RESOLVED, answer=answer, matched_dish=dish, tag_found=matching is not None
        )


# ---------------------------------------------------------------------------
# Dish explainer
# ---------------------------------------------------------------------------

class ExplainType(str, Enum):
    DEFINITION = "DEFINITION"
    MENU_FACT = "MENU_FACT"


_QUESTION_STOPWORDS = frozenset({"what", "is", "are", "the", "a", "an", "and", "or", "vad", "är"})
_DEFINITION_RE = re.compile(
    r"^\s*(what is|what's|define|meaning of|translate|vad är|vad betyder|ki ha|ki aa|ki hai|"
    r"kya hai|kya hota hai|ਕੀ ਹੈ|ਕੀ ਆ)(?!\w)",
    re.IGNORECASE,
)
_DISH_SPECIFIC_PATTERNS = (
    re.compile(r"\b(does|do)\s+(it|this|the|that)\s+(contain|have)", re.IGNORECASE),
    re.compile(r"\bis\s+(it|this|the)\s+(spicy|creamy|sweet|sour|vegan|vegetarian|halal|kosher|gluten)", re.IGNORECASE),
    re.compile(r"\b(contain|contains|have|has)\s+(nuts|milk|gluten|dairy|egg|allergen)", re.IGNORECASE),
    re.compile(r"\b(is|are)\s+.*(in|inside)\s+(the|this|that)?\s*(dish|meal|pizza|curry)", re.IGNORECASE),
)
_DEFINITION_STOPWORDS_RE = re.compile(
    r"(?<!\w)(what|is|are|the|a|an|meaning|define|translate|of|vad|är|betyder|det|en|ett|"
    r"ki|ha|aa|hai|kya|hota|ਕੀ|ਹੈ|ਆ)(?!\w)",
    re.IGNORECASE,
)


def classify_explain_type(query: str) -> ExplainType:
    lower = query.lower().strip()
    tokens = lower.split()
    content = [tok for tok in tokens if tok not in _QUESTION_STOPWORDS]
    if 0 < len(content) <= 2:
        return ExplainType.DEFINITION
    if any(p.search(lower) for p in _DISH_SPECIFIC_PATTERNS):
        return ExplainType.MENU_FACT
    if _DEFINITION_RE.search(lower):
        return ExplainType.DEFINITION
    return ExplainType.DEFINITION if len(tokens) <= 4 else ExplainType.MENU_FACT


def extract_definition_term(query: str) -> Optional[str]:
    term = re.sub(r"[?!.,]", "", query.lower())
    term = " ".join(_DEFINITION_STOPWORDS_RE.sub(" ", term).split())
    return term if len(term) > 2 else None


def find_menu_mentions(grounded: Optional[GroundedState], term: str, limit: int = 3) -> List[str]:
    mentions: List[str] = []
    if grounded is None:
        return mentions
    lower = term.lower()
    for restaurant in grounded.restaurants:
        for dish in restaurant.dishes:
            if lower in f"{dish.name} {dish.description or ''}".lower():
                mentions.append(f"{dish.name} ({restaurant.name})")
                if len(mentions) >= limit:
                    return mentions
    return mentions


def find_grounded_dish(
    query: str,
    grounded: Optional[GroundedState],
) -> Optional[Tuple[GroundedRestaurant, GroundedDish]]:
    """The first shown dish whose full name appears in the query."""
    if grounded is None:
        return None
    lower = query.lower()
    for restaurant in grounded.restaurants[:5]:
        for dish in restaurant.dishes[:10]:
            if dish.name and dish.name.lower() in lower:
                return restaurant, dish
    return None


@dataclass
class ExplainAnswer:
    text: str
    explain_type: ExplainType
    dish_name: Optional[str] = None
    restaurant_name: Optional[str] = None


class DishExplainer:
    """Answers EXPLAIN turns. Menu facts never come from the LLM."""

    def __init__(self, llm_client: LLMClient):
        self.llm = llm_client

    async def explain(
        self,
        query: str,
        grounded: Optional[GroundedState],
        language: str = "en",
    ) -> ExplainAnswer:
        explain_type = classify_explain_type(query)
        if explain_type == ExplainType.DEFINITION:
            return await self._define(query, grounded, language)
        return self._menu_fact(query, grounded, language)

    async def _define(self, query: str, grounded: Optional[GroundedState], language: str) -> ExplainAnswer:
        term = extract_definition_term(query)
        prompt = DEFINITION_PROMPT.format(language=language, term=_escape(term or query))
        try:
            text = (await self.llm.generate(
                prompt=prompt,
                temperature=0.3,
                timeout_s=settings.LLM_RESPONSE_TIMEOUT,
            )).strip()
        except _INFRA_ERRORS as e:
            logger.error(f"LLM infrastructure error during definition: {e}")
            raise
        except ValueError as e:
            logger.warning(f"Definition generation failed: {e}")
            text = ""

        answer = text or t("DEFINITION_FALLBACK", language)
        mentions = find_menu_mentions(grounded, term) if term else []
        if mentions:
            answer += f"\n\nOn this menu, I see \"{term}\" mentioned in: {', '.join(mentions)}."
        return ExplainAnswer(answer, ExplainType.DEFINITION)

    def _menu_fact(self, query: str, grounded: Optional[GroundedState], language: str) -> ExplainAnswer:
        match = find_grounded_dish(query, grounded)
        if match is None:
            return ExplainAnswer(t("WHICH_DISH", language), ExplainType.MENU_FACT)

        restaurant, dish = match
        if dish.description:
            fact = f"According to {restaurant.name}'s menu, {dish.name} is described as: \"{dish.description.strip()}\""
        else:
            fact = f"{restaurant.name}'s menu has no description for {dish.name}."
        text = f"{fact}\n\nRecipes vary, so please confirm the details with the restaurant."
        return ExplainAnswer(text, ExplainType.MENU_FACT, dish_name=dish.name, restaurant_name=restaurant.name)
