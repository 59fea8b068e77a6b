"""Discovery Engine: one chat turn from messages + state to a response.

    ui_action?  ──► load-more page for one card
    message     ──► focus trigger ──► intent ──► follow-up resolver ──► planner ──► handler

Every planner action maps to exactly one handler in ``_HANDLERS``; the
table is checked against ``Action`` at import time.  The caller's
ChatState is copied on entry and never mutated; on any failure the
original state is returned untouched together with an apologetic
message and the "Try again" chip.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from core.finalizer import finalize, truncate_cards
from core.followup_resolver import (
    DishExplainer,
    ExplainType,
    FollowupResolution,
    FollowupResolver,
    FollowupType,
)
from core.intent_normalizer import IntentNormalizer, _escape
from core.planner import Planner, check_overrides, has_grounding, is_generic_food_query
from core.responses import build_human_summary, chips_for, diet_label
from core.search_chain import FallbackSearchChain, SearchResult
from core.tag_resolver import TagResolver
from core.trace import RequestTrace
from config.settings import settings
from integrations.llm.client import LLMClient
from integrations.llm.prompts import TRANSLATION_PROMPT
from models.action import Action, Plan
from models.cards import DishMatch, PublicMenu, RestaurantCard, RestaurantPatch, TruncationMeta
from models.chat_state import (
    ChatState,
    GroundedState,
    LastExplain,
    RestaurantCursor,
    SearchParams,
    cursors_from_cards,
    last_results_from_cards,
)
from models.intent import Intent
from models.message import AssistantMessage, ChatMessage, DiscoverResponse, MessageKind, UIAction
from services.i18n import t
from services.restaurant_service import (
    RestaurantService,
    describe_menu_search,
    status_line,
)

logger = logging.getLogger(__name__)

_INFRA_ERRORS = (TimeoutError, ConnectionError, OSError)

MAX_REROUTE_HOPS = 1

_FOCUS_PHRASES = ("ask about this restaurant", "ask about this place", "browsing this restaurant")
_EXPLICIT_RESTAURANT_RE = re.compile(r"\b(restaurant|restaurang|place|café|cafe|bistro)\b", re.IGNORECASE)


class EngineError(Exception):
    """Typed engine errors so callers can distinguish transient from permanent failures."""
    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class TurnContext:
    query: str
    intent: Intent
    state: ChatState  # working copy, safe to replace
    messages: Sequence[ChatMessage]
    trace: RequestTrace
    plan: Optional[Plan] = None
    hops: int = 0

    @property
    def lang(self) -> str:
        return self.intent.language or self.state.prefs.language or "en"


class DiscoveryEngine:
    """Resolves one turn. Stateless: everything it remembers lives in ChatState."""

    def __init__(
        self,
        normalizer: IntentNormalizer,
        planner: Planner,
        tag_resolver: TagResolver,
        search_chain: FallbackSearchChain,
        followup_resolver: FollowupResolver,
        explainer: DishExplainer,
        restaurant_service: RestaurantService,
        llm_client: LLMClient,
    ):
        self.normalizer = normalizer
        self.planner = planner
        self.tag_resolver = tag_resolver
        self.search_chain = search_chain
        self.followup_resolver = followup_resolver
        self.explainer = explainer
        self.restaurant_service = restaurant_service
        self.llm = llm_client

    async def handle_turn(
        self,
        messages: Sequence[ChatMessage],
        chat_state: Optional[ChatState] = None,
        ui_action: Optional[UIAction] = None,
    ) -> DiscoverResponse:
        trace = RequestTrace()
        original = chat_state or ChatState()
        state = original.model_copy(deep=True)

        try:
            if ui_action is not None:
                trace.add("ui_action", type=ui_action.type, restaurant=ui_action.restaurant_id)
                return await self._load_more_restaurant(
                    state,
                    restaurant_id=ui_action.restaurant_id,
                    lang=state.prefs.language or "en",
                    offset=ui_action.offset,
                    dietary=ui_action.dietary,
                )
            return await self._handle_message(messages, state, trace)

        except Exception as e:
            retryable = getattr(e, "retryable", None)
            if retryable is None:
                retryable = _is_retryable(e)
            error_code = _classify_error(e)
            trace.add("error", code=error_code, retryable=retryable)
            logger.error(
                f"Error in handle_turn (code={error_code}, retryable={retryable}): {e}",
                exc_info=True,
            )
            return DiscoverResponse(
                message=AssistantMessage(
                    content=t("ERROR_TRY_AGAIN", original.prefs.language or "en"),
                    kind=MessageKind.ERROR,
                    followup_chips=chips_for(MessageKind.ERROR),
                ),
                chat_state=original.model_copy(deep=True),
                grounded=original.grounded,
                error_code=error_code,
                error_retryable=retryable,
            )
        finally:
            trace.emit(logger)

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------

    async def _handle_message(
        self,
        messages: Sequence[ChatMessage],
        state: ChatState,
        trace: RequestTrace,
    ) -> DiscoverResponse:
        query = _last_user_text(messages)
        if not query:
            return _respond(state, t("CLARIFY_PROMPT", state.prefs.language or "en"), MessageKind.CLARIFY)

        profile = _focus_target(query, messages)
        if profile is not None:
            trace.add("focus", restaurant=profile.id)
            return self._focus_on_profile(state, profile)

        intent = await self.normalizer.normalize(query, history=messages[:-1], prior_state=state)
        trace.add(
            "intent",
            dish=intent.dish_query,
            dietary="+".join(intent.dietary) or "-",
            lang=intent.language,
        )
        ctx = TurnContext(query=query, intent=intent, state=state, messages=messages, trace=trace)

        if check_overrides(query, intent, state) is None:
            resolution = await self.followup_resolver.resolve(query, intent, state.last_results)
            trace.add("followup", type=resolution.type.value)
            if resolution.type != FollowupType.PASS:
                return await self._handle_resolution(ctx, resolution)

        ctx.plan = await self.planner.plan(query, intent, state, trace)
        ctx.state = _apply_prefs_patch(ctx.state, ctx.plan)
        return await self._dispatch(ctx)

    async def _dispatch(self, ctx: TurnContext) -> DiscoverResponse:
        name = _HANDLERS.get(ctx.plan.action)
        if name is None:
            raise EngineError(f"No handler for action {ctx.plan.action}")
        handler = getattr(self, name)
        return await handler(ctx)

    def _focus_on_profile(self, state: ChatState, card: RestaurantCard) -> DiscoverResponse:
        lang = state.prefs.language or "en"
        state = state.model_copy(update={
            "mode": "restaurant",
            "current_restaurant_id": card.id,
            "current_restaurant_name": card.name,
            "grounded": GroundedState.from_cards([card], last_query=None, last_dietary=[]),
            "last_results": last_results_from_cards([card]),
        })
        return _respond(state, t("BROWSING_RESTAURANT", lang, restaurant=card.name), MessageKind.ANSWER)

    # ------------------------------------------------------------------
    # Follow-up resolutions
    # ------------------------------------------------------------------

    async def _handle_resolution(self, ctx: TurnContext, resolution: FollowupResolution) -> DiscoverResponse:
        if resolution.type == FollowupType.TRANSLATE_LAST:
            return await self._translate_last(ctx, resolution.target_language or "en")
        if resolution.type == FollowupType.PAGINATE:
            return await self._paginate(ctx)
        if resolution.type == FollowupType.SHOW_MORE_RESTAURANT:
            restaurant_id = resolution.restaurant_id
            if restaurant_id is None:
                row = await self.restaurant_service.find_best_restaurant_match(
                    resolution.restaurant_name or "", ctx.intent.city
                )
                if row is None:
                    return _respond(
                        ctx.state,
                        t("RESTAURANT_NOT_FOUND", ctx.lang, name=resolution.restaurant_name or ctx.query),
                        MessageKind.ANSWER,
                    )
                restaurant_id = row["id"]
            return await self._load_more_restaurant(
                ctx.state, restaurant_id, ctx.lang, dietary=_continued_dietary(ctx.state, restaurant_id)
            )

        kind = MessageKind.CLARIFY if resolution.type == FollowupType.CLARIFY else MessageKind.ANSWER
        return _respond(ctx.state, resolution.answer or t("FACT_NO_MATCH", ctx.lang), kind)

    async def _translate_last(self, ctx: TurnContext, language: str) -> DiscoverResponse:
        last = ctx.state.last_explain
        source = last.text if last else _last_assistant_text(ctx.messages)
        if not source:
            return _respond(ctx.state, t("NO_CONTEXT_FOLLOWUP", ctx.lang), MessageKind.ANSWER)

        prompt = TRANSLATION_PROMPT.format(language=language, text=_escape(source))
        try:
            translated = (await self.llm.generate(
                prompt=prompt,
                temperature=0.2,
                timeout_s=settings.LLM_RESPONSE_TIMEOUT,
            )).strip()
        except _INFRA_ERRORS as e:
            logger.error(f"LLM infrastructure error during translation: {e}")
            raise
        except ValueError as e:
            logger.warning(f"Translation failed, repeating the original text: {e}")
            translated = ""

        text = translated or source
        state = ctx.state.model_copy(update={
            "last_explain": LastExplain(
                dish_name=last.dish_name if last else None,
                restaurant_name=last.restaurant_name if last else None,
                text=text,
                language=language,
            ),
        })
        return _respond(state, text, MessageKind.ANSWER)

    async def _paginate(self, ctx: TurnContext) -> DiscoverResponse:
        """Next restaurants for the stored search. Never restarts from zero."""
        params = ctx.state.last_search_params
        offset = ctx.state.next_offset
        if params is None or offset is None:
            return _respond(ctx.state, t("NO_MORE_RESULTS", ctx.lang), MessageKind.ANSWER)

        resolved = await self.tag_resolver.resolve(params.dietary)
        result = await self.search_chain.search(
            [tag.tag_id for tag in resolved], params.dish_query, params.city, trace=ctx.trace
        )
        if result.is_no_results:
            return _respond(ctx.state, t("NO_MORE_RESULTS", ctx.lang), MessageKind.ANSWER)

        intent = Intent(dish_query=params.dish_query, dietary=params.dietary, city=params.city)
        final = finalize(result.cards, ctx.state, intent, result.was_tag_filtered, offset=offset)
        if not final.cards:
            state = ctx.state.model_copy(update={"next_offset": None})
            return _respond(state, t("NO_MORE_RESULTS", ctx.lang), MessageKind.ANSWER)

        state = _ground(ctx.state, final.cards, params.dish_query, params.dietary)
        state = state.model_copy(update={
            "next_offset": final.meta.next_offset,
            "last_search_params": params.model_copy(update={"offset": offset}),
        })
        content = build_human_summary(final.cards, final.meta, params.dish_query or ctx.query, params.city, params.dietary, ctx.lang)
        return _respond(state, content, MessageKind.RESULTS, cards=final.cards, meta=final.meta)

    async def _load_more_restaurant(
        self,
        state: ChatState,
        restaurant_id: str,
        lang: str,
        offset: Optional[int] = None,
        dietary: Sequence[str] = (),
    ) -> DiscoverResponse:
        """Next page of one restaurant's menu as a card patch.

        Starts at the cursor's ``next_offset``.  A cursor without one, or
        one that has shown everything it counted, is exhausted: no patch.
        """
        cursor = state.cursor_for(restaurant_id)
        if cursor is not None and _cursor_exhausted(cursor):
            return _respond(state, t("ALREADY_SHOWN_ALL", lang, restaurant=cursor.restaurant_name), MessageKind.ANSWER)

        if cursor is not None:
            start = max(cursor.next_offset or 0, offset or 0)
        elif offset is not None:
            start = offset
        else:
            start = sum(1 for d in state.last_results if d.restaurant_id == restaurant_id)

        page = await self.restaurant_service.page_menu(restaurant_id, offset=start, dietary=dietary)
        if page is None:
            return _respond(state, t("RESTAURANT_NOT_FOUND", lang, name=restaurant_id), MessageKind.ANSWER)

        if not page.dishes:
            exhausted = RestaurantCursor(
                restaurant_id=restaurant_id,
                restaurant_name=page.restaurant_name,
                shown_count=page.pagination.shown,
                total_matches=page.pagination.total,
                next_offset=None,
            )
            return _respond(
                state.with_cursor(exhausted),
                t("ALREADY_SHOWN_ALL", lang, restaurant=page.restaurant_name),
                MessageKind.ANSWER,
            )

        advanced = RestaurantCursor(
            restaurant_id=restaurant_id,
            restaurant_name=page.restaurant_name,
            shown_count=page.pagination.shown,
            total_matches=page.pagination.total,
            next_offset=page.pagination.next_offset,
        )
        card = RestaurantCard(id=restaurant_id, name=page.restaurant_name, matches=page.dishes)
        state = state.with_cursor(advanced).model_copy(update={"last_results": last_results_from_cards([card])})
        patch = RestaurantPatch(
            restaurant_id=restaurant_id,
            append_matches=page.dishes,
            pagination=page.pagination,
        )
        return _respond(
            state,
            t("MORE_FROM_RESTAURANT", lang, restaurant=page.restaurant_name),
            MessageKind.RESULTS,
            patch=patch,
        )

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    async def _handle_search(self, ctx: TurnContext) -> DiscoverResponse:
        if ctx.plan.restaurant_scoped:
            return await self._restaurant_scoped_search(ctx)
        if ctx.state.mode == "restaurant" and ctx.state.current_restaurant_id:
            restaurant = {"id": ctx.state.current_restaurant_id, "name": ctx.state.current_restaurant_name}
            return await self._restaurant_mode_search(ctx, restaurant)
        return await self._discovery_search(ctx)

    async def _discovery_search(self, ctx: TurnContext) -> DiscoverResponse:
        intent, plan = ctx.intent, ctx.plan
        override = plan.search

        tag_terms = list(dict.fromkeys([*intent.tag_terms, *intent.hard_tags, *(override.tags if override else [])]))
        resolved = await self.tag_resolver.resolve(tag_terms)
        tag_ids = [tag.tag_id for tag in resolved]

        if override is not None:
            search_text = override.query_text  # None means tag-only
        else:
            search_text = plan.dish_query or intent.dish_query
        city = (override.city if override else None) or intent.city

        result = await self.search_chain.search(tag_ids, search_text, city, trace=ctx.trace)

        if search_text and _is_weak(result) and ctx.hops < MAX_REROUTE_HOPS:
            restaurant = await self.restaurant_service.find_best_restaurant_match(search_text, city)
            if restaurant is not None:
                ctx.hops += 1
                ctx.trace.add("reroute", to=Action.RESTAURANT_LOOKUP.value, hops=ctx.hops)
                return await self._restaurant_profile(ctx, restaurant)

        prefs = ctx.state.prefs.model_copy(update={
            "language": ctx.lang,
            "dietary": list(intent.dietary),
            "city": city or ctx.state.prefs.city,
        })
        params = SearchParams(dietary=tag_terms, dish_query=search_text, city=city, offset=0)
        state = ctx.state.model_copy(update={"prefs": prefs, "last_search_params": params})

        if result.is_no_results:
            final = truncate_cards(result.cards)
            if tag_terms:
                content = t("NO_TAGGED_FALLBACK", ctx.lang, tag=diet_label(tag_terms))
            elif search_text is None:
                content = t("NO_EXPLICIT_TAGS", ctx.lang)
            else:
                content = t("NO_RESULTS", ctx.lang)
            grounded = GroundedState.from_cards(final.cards, search_text or ctx.query, list(intent.dietary))
            state = state.model_copy(update={
                "grounded": grounded.model_copy(update={"last_was_no_results": True}),
                "last_results": [],
                "next_offset": None,
                "restaurant_cursors": [],
            })
            return _respond(state, content, MessageKind.NO_RESULTS, cards=final.cards, meta=final.meta)

        filter_intent = intent.model_copy(update={"dish_query": search_text})
        final = finalize(result.cards, state, filter_intent, result.was_tag_filtered)
        if not final.cards:
            state = _ground(state, [], search_text or ctx.query, intent.dietary)
            content = t(
                "NO_MATCH_TRY_AGAIN",
                ctx.lang,
                query=search_text or ctx.query,
                tag=diet_label(tag_terms) or "",
            )
            return _respond(state, content, MessageKind.NO_RESULTS, meta=final.meta)

        state = _ground(state, final.cards, search_text or ctx.query, intent.dietary)
        state = state.model_copy(update={"next_offset": final.meta.next_offset})
        content = build_human_summary(final.cards, final.meta, search_text or ctx.query, city, tag_terms, ctx.lang)
        return _respond(state, content, MessageKind.RESULTS, cards=final.cards, meta=final.meta)

    async def _restaurant_scoped_search(self, ctx: TurnContext) -> DiscoverResponse:
        restaurant = await self.restaurant_service.find_best_restaurant_match(
            ctx.intent.restaurant_name or "", ctx.intent.city
        )
        if restaurant is None:
            logger.info(f"Scoped search: no restaurant named '{ctx.intent.restaurant_name}', searching everywhere")
            ctx.plan = ctx.plan.model_copy(update={"restaurant_scoped": False})
            return await self._discovery_search(ctx)

        ctx.state = ctx.state.model_copy(update={
            "mode": "restaurant",
            "current_restaurant_id": restaurant["id"],
            "current_restaurant_name": restaurant.get("name"),
        })
        if ctx.intent.dish_query and is_generic_food_query(ctx.intent.dish_query):
            ctx.intent = ctx.intent.model_copy(update={"dish_query": None})
        return await self._restaurant_mode_search(ctx, restaurant)

    async def _restaurant_mode_search(self, ctx: TurnContext, restaurant: dict) -> DiscoverResponse:
        intent = ctx.intent
        override = ctx.plan.search
        if override is not None:
            intent = intent.model_copy(update={
                "dish_query": override.query_text,
                "hard_tags": list(dict.fromkeys([*intent.hard_tags, *override.tags])),
            })
        elif ctx.plan.dish_query:
            intent = intent.model_copy(update={"dish_query": ctx.plan.dish_query})

        result = await self.restaurant_service.search_menu_in_restaurant(restaurant, intent)
        ctx.trace.add("menu_search", sub_action=result.sub_action.value, dishes=len(result.dishes))
        content = describe_menu_search(result, intent)

        if not result.dishes:
            return _respond(ctx.state, content, MessageKind.ANSWER)

        card = RestaurantCard(id=result.restaurant_id, name=result.restaurant_name, matches=result.dishes)
        final = truncate_cards([card])
        state = _ground(ctx.state, final.cards, intent.dish_query or ctx.query, intent.dietary)
        return _respond(state, content, MessageKind.RESULTS, cards=final.cards, meta=final.meta)

    async def _handle_followup(self, ctx: TurnContext) -> DiscoverResponse:
        if not has_grounding(ctx.state):
            return _respond(ctx.state, t("NO_CONTEXT_FOLLOWUP", ctx.lang), MessageKind.ANSWER)

        answer = await self.explainer.explain(ctx.query, ctx.state.grounded, ctx.lang)
        text = answer.text
        if answer.explain_type == ExplainType.MENU_FACT and answer.dish_name is None:
            text = t("FACT_NO_MATCH", ctx.lang)
        return self._explained(ctx, answer, text)

    async def _handle_explain(self, ctx: TurnContext) -> DiscoverResponse:
        answer = await self.explainer.explain(ctx.query, ctx.state.grounded, ctx.lang)
        return self._explained(ctx, answer, answer.text)

    def _explained(self, ctx: TurnContext, answer, text: str) -> DiscoverResponse:
        state = ctx.state.model_copy(update={
            "last_explain": LastExplain(
                dish_name=answer.dish_name,
                restaurant_name=answer.restaurant_name,
                text=text,
                language=ctx.lang,
            ),
        })
        return _respond(state, text, MessageKind.ANSWER, cards=_cards_from_grounded(state.grounded))

    async def _handle_reshow(self, ctx: TurnContext) -> DiscoverResponse:
        grounded = ctx.state.grounded
        if grounded is None or grounded.last_was_no_results:
            return _respond(ctx.state, t("NO_EXPLICIT_TAGS", ctx.lang), MessageKind.CLARIFY)
        return _respond(
            ctx.state,
            t("RESHOW_AGAIN", ctx.lang),
            MessageKind.RESULTS,
            cards=_cards_from_grounded(grounded),
        )

    async def _handle_exit_restaurant(self, ctx: TurnContext) -> DiscoverResponse:
        state = ctx.state.model_copy(update={
            "mode": "discovery",
            "current_restaurant_id": None,
            "current_restaurant_name": None,
        })
        return _respond(state, t("BACK_TO_SEARCHING", ctx.lang), MessageKind.ANSWER)

    async def _handle_show_menu(self, ctx: TurnContext) -> DiscoverResponse:
        state, intent = ctx.state, ctx.intent
        restaurant_id = None
        if state.mode == "restaurant" and state.current_restaurant_id and not intent.restaurant_name:
            restaurant_id = state.current_restaurant_id
        else:
            resolution = await self.restaurant_service.resolve_restaurant_for_menu(
                ctx.query, intent.restaurant_name, state.grounded
            )
            if resolution.matched is None:
                content = t("MENU_WHICH_RESTAURANT", ctx.lang)
                if resolution.candidates:
                    content += " " + t("MENU_CANDIDATES", ctx.lang, names=", ".join(c["name"] for c in resolution.candidates))
                return _respond(state, content, MessageKind.CLARIFY)
            restaurant_id = resolution.matched["id"]

        menu = await self.restaurant_service.get_public_menu(restaurant_id)
        if menu is None:
            name = intent.restaurant_name or state.current_restaurant_name or ctx.query
            return _respond(state, t("RESTAURANT_NOT_FOUND", ctx.lang, name=name), MessageKind.ANSWER)

        card = _menu_card(menu)
        state = state.model_copy(update={
            "mode": "restaurant",
            "current_restaurant_id": menu.restaurant_id,
            "current_restaurant_name": menu.restaurant_name,
            "grounded": GroundedState.from_cards([card], last_query=ctx.query, last_dietary=[]),
            "last_results": last_results_from_cards([card]),
        })
        return _respond(
            state,
            t("MENU_HEADER", ctx.lang, restaurant=menu.restaurant_name),
            MessageKind.MENU,
            menu=menu,
        )

    async def _handle_clarify(self, ctx: TurnContext) -> DiscoverResponse:
        return _respond(ctx.state, t("CLARIFY_PROMPT", ctx.lang), MessageKind.CLARIFY)

    async def _handle_restaurant_lookup(self, ctx: TurnContext) -> DiscoverResponse:
        name = ctx.intent.restaurant_name or ctx.query
        restaurant = await self.restaurant_service.find_best_restaurant_match(name, ctx.intent.city)
        if restaurant is not None:
            return await self._restaurant_profile(ctx, restaurant)

        if _EXPLICIT_RESTAURANT_RE.search(ctx.query) or ctx.hops >= MAX_REROUTE_HOPS:
            content = t("RESTAURANT_NOT_FOUND", ctx.lang, name=name)
            resolution = await self.restaurant_service.resolve_restaurant_for_menu(name)
            if resolution.candidates:
                content += " " + t("DID_YOU_MEAN", ctx.lang, names=", ".join(c["name"] for c in resolution.candidates))
            return _respond(ctx.state, content, MessageKind.ANSWER)

        ctx.hops += 1
        ctx.trace.add("reroute", to=Action.SEARCH.value, hops=ctx.hops)
        ctx.plan = Plan(action=Action.SEARCH, reason="lookup_fallback")
        return await self._discovery_search(ctx)

    async def _restaurant_profile(self, ctx: TurnContext, restaurant: dict) -> DiscoverResponse:
        card = await self.restaurant_service.build_profile(restaurant)
        content = f"**{card.name}**\n{status_line(card)}"
        state = ctx.state.model_copy(update={
            "grounded": GroundedState.from_cards([card], last_query=ctx.query, last_dietary=[]),
            "last_results": last_results_from_cards([card]),
        })
        return _respond(state, content, MessageKind.RESTAURANT_PROFILE, cards=[card])


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

_HANDLERS = {
    Action.SEARCH: "_handle_search",
    Action.FOLLOWUP: "_handle_followup",
    Action.EXPLAIN: "_handle_explain",
    Action.RESHOW: "_handle_reshow",
    Action.EXIT_RESTAURANT: "_handle_exit_restaurant",
    Action.SHOW_MENU: "_handle_show_menu",
    Action.CLARIFY: "_handle_clarify",
    Action.RESTAURANT_LOOKUP: "_handle_restaurant_lookup",
}

_missing = [a.value for a in Action if not callable(getattr(DiscoveryEngine, _HANDLERS.get(a, ""), None))]
if _missing:
    raise RuntimeError(f"No handler registered for actions: {', '.join(_missing)}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _respond(
    state: ChatState,
    content: str,
    kind: MessageKind,
    cards: Sequence[RestaurantCard] = (),
    meta: Optional[TruncationMeta] = None,
    patch: Optional[RestaurantPatch] = None,
    menu: Optional[PublicMenu] = None,
) -> DiscoverResponse:
    return DiscoverResponse(
        message=AssistantMessage(
            content=content,
            kind=kind,
            restaurants=list(cards),
            followup_chips=chips_for(kind),
            menu=menu,
        ),
        chat_state=state,
        grounded=state.grounded,
        meta=meta,
        patch=patch,
    )


def _ground(
    state: ChatState,
    cards: List[RestaurantCard],
    last_query: Optional[str],
    dietary: Sequence[str],
) -> ChatState:
    """Point grounding, follow-up targets and cursors at exactly the shown cards."""
    return state.model_copy(update={
        "grounded": GroundedState.from_cards(cards, last_query, list(dietary)),
        "last_results": last_results_from_cards(cards),
        "restaurant_cursors": cursors_from_cards(cards),
    })


def _apply_prefs_patch(state: ChatState, plan: Plan) -> ChatState:
    patch = plan.prefs_patch.model_dump(exclude_none=True)
    if not patch:
        return state
    return state.model_copy(update={"prefs": state.prefs.model_copy(update=patch)})


def _cards_from_grounded(grounded: Optional[GroundedState]) -> List[RestaurantCard]:
    if grounded is None:
        return []
    return [
        RestaurantCard(
            id=r.id,
            name=r.name,
            matches=[
                DishMatch(
                    id=d.id,
                    name=d.name,
                    description=d.description,
                    price=d.price,
                    section_name=d.section_name,
                    tags=list(d.tags),
                )
                for d in r.dishes
            ],
        )
        for r in grounded.restaurants
    ]


def _menu_card(menu: PublicMenu) -> RestaurantCard:
    return RestaurantCard(
        id=menu.restaurant_id,
        name=menu.restaurant_name,
        city=menu.city,
        matches=menu.dishes(),
    )


def _is_weak(result: SearchResult) -> bool:
    return not any(card.matches for card in result.cards)


def _cursor_exhausted(cursor: RestaurantCursor) -> bool:
    if cursor.next_offset is None:
        return True
    return cursor.total_matches > 0 and cursor.shown_count >= cursor.total_matches


def _continued_dietary(state: ChatState, restaurant_id: str) -> List[str]:
    """Diet filter of the last search, when its listing of this restaurant is being continued."""
    params = state.last_search_params
    if params is None or not params.dietary:
        return []
    cursor = state.cursor_for(restaurant_id)
    if cursor is not None and cursor.next_offset:
        return list(params.dietary)
    if any(d.restaurant_id == restaurant_id for d in state.last_results):
        return list(params.dietary)
    return []


def _last_user_text(messages: Sequence[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return (message.content or "").strip()
    return ""


def _last_assistant_text(messages: Sequence[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "assistant" and message.content:
            return message.content
    return ""


def _focus_target(query: str, messages: Sequence[ChatMessage]) -> Optional[RestaurantCard]:
    """The single profile card the user wants to focus on, if this turn is a focus request."""
    lower = query.lower()
    if not any(phrase in lower for phrase in _FOCUS_PHRASES):
        return None
    for message in reversed(messages):
        if message.role != "assistant":
            continue
        if message.kind == MessageKind.RESTAURANT_PROFILE.value and len(message.restaurants) == 1:
            return message.restaurants[0]
        return None
    return None


_RETRYABLE_ERRORS = (
    ConnectionError,
    TimeoutError,
    OSError,
)


def _is_retryable(exc: Exception) -> bool:
    """Classify an exception as transient (retryable) or permanent."""
    if isinstance(exc, _RETRYABLE_ERRORS):
        return True
    msg = str(exc).lower()
    if any(kw in msg for kw in ("timeout", "connection", "unreachable")):
        return True
    if any(kw in msg for kw in ("json", "parse", "no valid json")):
        return True
    return False


def _classify_error(exc: Exception) -> str:
    """Return a machine-readable error code for the exception."""
    if isinstance(exc, TimeoutError):
        return "llm_timeout"
    if isinstance(exc, (ConnectionError, OSError)):
        return "connection_error"
    msg = str(exc).lower()
    if "timeout" in msg:
        return "llm_timeout"
    if "connection" in msg or "unreachable" in msg:
        return "connection_error"
    if "json" in msg or "parse" in msg or "no valid json" in msg:
        return "llm_parse_error"
    return "internal_error"
