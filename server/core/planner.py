"""Planner / Action Classifier.

Picks exactly one ``Action`` for a turn.  Order of evaluation:

1. Override rules: deterministic ``(name, predicate, plan)`` entries
   checked before anything else.
2. Classifier: the LLM planner when enabled, else the deterministic rules.
3. Guardrails: applied to every classifier output, in order; each one may
   rewrite the plan produced by the previous one.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from config.settings import settings
from core.intent_normalizer import _escape
from core.text_matching import slugify
from core.trace import RequestTrace
from integrations.llm.client import LLMClient
from integrations.llm.prompts import PLANNER_PROMPT
from models.action import Action, LLMPlan, Plan, SearchOverride
from models.chat_state import ChatState
from models.intent import Intent

logger = logging.getLogger(__name__)

_INFRA_ERRORS = (TimeoutError, ConnectionError, OSError)

GENERIC_FOOD_TERMS = frozenset({
    "something", "anything", "kuch", "any", "some", "något", "mat", "rätt",
    "alternativ", "options", "recommend", "suggest",
})

_EXPLAINER_PREFIXES = ("what is ", "what's ", "whats ", "vad är ")
_EXPLAINER_PHRASES = (
    "is it sweet", "is it creamy", "is it spicy", "mild or spicy", "how does it taste",
    "krämig", "söt", "stark", "smakar",
)

_STRICT_DIET_TERMS = (
    "allergy", "allergi", "nuts", "nut", "nöt", "cashew", "almond", "mandel", "sesame", "sesam",
    "milk", "dairy", "mejeri", "lactose", "laktos", "gluten", "wheat", "vete", "halal", "haram",
    "pork", "fläsk", "vegan", "vegetarian", "vegetarisk", "contains", "ingredient", "ingredien",
)

_NON_WORD_RE = re.compile(r"[^\w]+", re.UNICODE)


def _normalize(text: str) -> str:
    return " ".join(_NON_WORD_RE.sub(" ", (text or "").lower()).split())


def is_generic_food_query(query: str) -> bool:
    return any(token in GENERIC_FOOD_TERMS for token in _normalize(query).split())


def is_dish_explainer_question(query: str) -> bool:
    lower = (query or "").lower().strip()
    if lower.startswith(_EXPLAINER_PREFIXES):
        return True
    return any(phrase in lower for phrase in _EXPLAINER_PHRASES)


def is_strict_diet_allergy_question(query: str) -> bool:
    lower = (query or "").lower()
    return any(term in lower for term in _STRICT_DIET_TERMS)


def looks_like_same_intent(
    query: str,
    last_query: Optional[str],
    last_dietary: List[str],
    dietary: List[str],
) -> bool:
    """Same normalized query (or one containing the other) with the same dietary set."""
    current, previous = _normalize(query), _normalize(last_query or "")
    if not current or not previous:
        return False
    same_query = current == previous or current in previous or previous in current
    same_dietary = sorted(d.lower() for d in dietary) == sorted(d.lower() for d in last_dietary)
    return same_query and same_dietary


def has_grounding(state: ChatState) -> bool:
    return bool((state.grounded and state.grounded.restaurants) or state.last_results)


def _in_restaurant_mode(state: ChatState) -> bool:
    return state.mode == "restaurant" and bool(state.current_restaurant_id)


# ---------------------------------------------------------------------------
# Override rules
# ---------------------------------------------------------------------------

_PLACE_INFO_RE = re.compile(
    r"\b(address|phone|website|hours|opening|open now|directions|location)\b", re.IGNORECASE
)
_MENU_WORD_RE = re.compile(r"\b(menu|list)\b", re.IGNORECASE)
_AVAILABILITY_RE = re.compile(
    r"\b(do they have|does .* have|have you got|serve|serves|items|dishes|options|"
    r"veg|vegetarian|vegan|halal|gluten|allergy)\b",
    re.IGNORECASE,
)


def is_restaurant_scoped_search(query: str, intent: Intent, state: ChatState) -> bool:
    name = intent.restaurant_name
    if not name:
        return False
    if _PLACE_INFO_RE.search(query):
        return False
    if slugify(query) == slugify(name):
        return False
    if _MENU_WORD_RE.search(query):
        return False
    return bool(_AVAILABILITY_RE.search(query) or intent.hard_tags or intent.dish_query)


OverrideRule = Tuple[str, Callable[[str, Intent, ChatState], bool], Plan]

OVERRIDE_RULES: List[OverrideRule] = [
    (
        "restaurant_scoped_search",
        is_restaurant_scoped_search,
        Plan(action=Action.SEARCH, reason="restaurant_scoped_search", restaurant_scoped=True),
    ),
]


def check_overrides(query: str, intent: Intent, state: ChatState) -> Optional[Plan]:
    for name, predicate, plan in OVERRIDE_RULES:
        if predicate(query, intent, state):
            logger.info(f"Override rule '{name}' matched")
            return plan.model_copy(deep=True)
    return None


# ---------------------------------------------------------------------------
# Deterministic classifier
# ---------------------------------------------------------------------------

def deterministic_plan(query: str, intent: Intent, state: ChatState) -> Plan:
    if intent.exit_restaurant:
        return Plan(action=Action.EXIT_RESTAURANT)
    if intent.show_menu:
        return Plan(action=Action.SHOW_MENU)
    if intent.is_restaurant_lookup:
        return Plan(action=Action.RESTAURANT_LOOKUP, confidence=0.9)

    grounded = has_grounding(state)
    if is_dish_explainer_question(query):
        if not is_strict_diet_allergy_question(query):
            return Plan(action=Action.EXPLAIN)
        return Plan(action=Action.FOLLOWUP if grounded else Action.SEARCH)

    if intent.is_followup and grounded:
        return Plan(action=Action.FOLLOWUP)

    # "anything vegan", "something?" search by tags alone; with no tags
    # the ladder reaches its no-results step and says so
    if is_generic_food_query(query) and not intent.dish_query:
        return Plan(action=Action.SEARCH, search=SearchOverride(query_text=None))

    if intent.is_vague and not intent.dish_query and not intent.dietary:
        return Plan(action=Action.CLARIFY)

    return Plan(action=Action.SEARCH)


# ---------------------------------------------------------------------------
# Guardrails
# ---------------------------------------------------------------------------

@dataclass
class PlanContext:
    query: str
    intent: Intent
    state: ChatState

    @property
    def grounded(self) -> bool:
        return has_grounding(self.state)

    @property
    def restaurant_mode(self) -> bool:
        return _in_restaurant_mode(self.state)


Guardrail = Callable[[Plan, PlanContext], Optional[Plan]]


def _lookup_wins(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    if ctx.intent.is_restaurant_lookup and plan.action != Action.RESTAURANT_LOOKUP:
        return Plan(action=Action.RESTAURANT_LOOKUP, confidence=0.9)
    return None


def _strict_diet_not_explain(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    if plan.action == Action.EXPLAIN and is_strict_diet_allergy_question(ctx.query):
        return Plan(action=Action.FOLLOWUP if ctx.grounded else Action.SEARCH)
    return None


def _explain_needs_explainer(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    if plan.action == Action.EXPLAIN and not is_dish_explainer_question(ctx.query):
        return Plan(action=Action.SEARCH)
    return None


def _menu_with_dish_is_search(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    if plan.action == Action.SHOW_MENU and ctx.intent.dish_query:
        return Plan(action=Action.SEARCH)
    return None


def _generic_search_tag_only(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    intent = ctx.intent
    has_tags = bool(intent.dietary or intent.hard_tags or intent.allergy)
    if (
        plan.action == Action.SEARCH
        and has_tags
        and not intent.dish_query
        and is_generic_food_query(ctx.query)
        and not (plan.search and plan.search.query_text is None)
    ):
        return plan.model_copy(update={"search": SearchOverride(query_text=None)})
    return None


def _followup_needs_grounding(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    if plan.action == Action.FOLLOWUP and not ctx.grounded:
        return Plan(action=Action.SEARCH)
    return None


def _restaurant_tag_followup(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    intent = ctx.intent
    if (
        ctx.restaurant_mode
        and plan.action == Action.FOLLOWUP
        and (intent.hard_tags or intent.dietary)
        and not intent.dish_query
    ):
        tags = list(dict.fromkeys([*intent.dietary, *intent.hard_tags]))
        return Plan(action=Action.SEARCH, search=SearchOverride(query_text=None, tags=tags))
    return None


def _restaurant_dish_followup(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    dish = ctx.intent.dish_query
    if ctx.restaurant_mode and plan.action in (Action.FOLLOWUP, Action.CLARIFY) and dish:
        return Plan(action=Action.SEARCH, dish_query=dish, search=SearchOverride(query_text=dish))
    return None


def _restaurant_ingredient_followup(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    ingredients = ctx.intent.ingredients
    if ctx.restaurant_mode and plan.action in (Action.FOLLOWUP, Action.EXPLAIN) and ingredients:
        return Plan(action=Action.SEARCH, search=SearchOverride(query_text=" ".join(ingredients)))
    return None


def _repeat_is_reshow(plan: Plan, ctx: PlanContext) -> Optional[Plan]:
    grounded = ctx.state.grounded
    if (
        plan.action == Action.SEARCH
        and ctx.grounded
        and grounded is not None
        and looks_like_same_intent(ctx.query, grounded.last_query, grounded.last_dietary, ctx.intent.dietary)
    ):
        return Plan(action=Action.RESHOW)
    return None


GUARDRAILS: List[Tuple[str, Guardrail]] = [
    ("lookup_wins", _lookup_wins),
    ("strict_diet_not_explain", _strict_diet_not_explain),
    ("explain_needs_explainer", _explain_needs_explainer),
    ("menu_with_dish_is_search", _menu_with_dish_is_search),
    ("generic_search_tag_only", _generic_search_tag_only),
    ("followup_needs_grounding", _followup_needs_grounding),
    ("restaurant_tag_followup", _restaurant_tag_followup),
    ("restaurant_dish_followup", _restaurant_dish_followup),
    ("restaurant_ingredient_followup", _restaurant_ingredient_followup),
    ("repeat_is_reshow", _repeat_is_reshow),
]


def apply_guardrails(plan: Plan, ctx: PlanContext) -> Tuple[Plan, List[str]]:
    triggered: List[str] = []
    for name, rule in GUARDRAILS:
        rewritten = rule(plan, ctx)
        if rewritten is not None:
            triggered.append(name)
            plan = rewritten.model_copy(update={"reason": name})
    return plan, triggered


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

class Planner:
    """Chooses the action for a turn. Stateless; one instance per request."""

    def __init__(self, llm_client: Optional[LLMClient] = None, use_llm: Optional[bool] = None):
        self.llm = llm_client
        self.use_llm = settings.USE_LLM_PLANNER if use_llm is None else use_llm

    async def plan(
        self,
        query: str,
        intent: Intent,
        state: ChatState,
        trace: Optional[RequestTrace] = None,
    ) -> Plan:
        override = check_overrides(query, intent, state)
        if override is not None:
            if trace is not None:
                trace.add("plan", action=override.action.value, source="override", rule=override.reason)
            return override

        source = "rules"
        raw = deterministic_plan(query, intent, state)
        if self.use_llm and self.llm is not None:
            llm_plan = await self._plan_with_llm(intent, state)
            if llm_plan is not None:
                raw, source = llm_plan, "llm"

        plan, triggered = apply_guardrails(raw, PlanContext(query, intent, state))
        if trace is not None:
            trace.add(
                "plan",
                action=plan.action.value,
                source=source,
                raw=raw.action.value,
                guardrails="+".join(triggered) or "-",
            )
        return plan

    async def _plan_with_llm(self, intent: Intent, state: ChatState) -> Optional[Plan]:
        """LLM classification. None means "use the deterministic plan"."""
        prompt = PLANNER_PROMPT.format(
            state=_escape(json.dumps(self._state_summary(state), ensure_ascii=False)),
            intent=_escape(intent.model_dump_json(exclude={"original_query"})),
        )
        try:
            raw = await self.llm.generate_structured(
                prompt=prompt,
                schema=LLMPlan,
                timeout_s=settings.LLM_PLANNING_TIMEOUT,
                temperature=0.0,
            )
        except _INFRA_ERRORS as e:
            logger.error(f"LLM infrastructure error during planning: {e}")
            raise
        except ValueError as e:
            logger.warning(f"Planner output unusable, using rules: {e}")
            return None

        try:
            action = Action(raw.action.strip().upper())
        except ValueError:
            logger.warning(f"Planner returned unknown action '{raw.action}'")
            return None

        if raw.confidence < settings.PLANNER_MIN_CONFIDENCE:
            logger.info(f"Planner confidence {raw.confidence:.2f} too low for {action.value}")
            return None

        search = None
        if raw.search_query_text and raw.search_query_text.strip():
            search = SearchOverride(query_text=raw.search_query_text.strip())
        return Plan(
            action=action,
            confidence=raw.confidence,
            reason=raw.reason,
            dish_query=raw.dish_query,
            search=search,
        )

    def _state_summary(self, state: ChatState) -> dict:
        grounded = state.grounded
        return {
            "mode": state.mode,
            "current_restaurant": state.current_restaurant_name,
            "has_results": has_grounding(state),
            "last_query": grounded.last_query if grounded else None,
            "last_dietary": grounded.last_dietary if grounded else [],
        }
