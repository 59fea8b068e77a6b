"""End-to-end turn tests for DiscoveryEngine with mocked data access."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.engine import DiscoveryEngine, _cursor_exhausted
from core.followup_resolver import ExplainAnswer, ExplainType, FollowupResolver
from core.planner import Planner
from core.search_chain import SearchResult
from models.cards import CardPagination, DishMatch, MenuSection, PublicMenu, RestaurantCard
from models.chat_state import (
    ChatState,
    GroundedDish,
    GroundedRestaurant,
    GroundedState,
    LastExplain,
    LastResultDish,
    RestaurantCursor,
    SearchParams,
)
from models.intent import Intent
from models.message import ChatMessage, MessageKind, UIAction
from services.i18n import t
from services.restaurant_service import MenuPage, MenuResolution


def _user(text):
    return [ChatMessage(role="user", content=text)]


def _card(restaurant_id, name, dishes=()):
    return RestaurantCard(
        id=restaurant_id,
        name=name,
        matches=[DishMatch(id=d_id, name=d_name) for d_id, d_name in dishes],
    )


def _make_engine(intent=None, search_result=None):
    normalizer = MagicMock()
    normalizer.normalize = AsyncMock(return_value=intent or Intent())

    tag_resolver = MagicMock()
    tag_resolver.resolve = AsyncMock(return_value=[])

    search_chain = MagicMock()
    search_chain.search = AsyncMock(return_value=search_result)

    search_repo = MagicMock()
    search_repo.get_dish_tags = AsyncMock(return_value={})

    explainer = MagicMock()
    explainer.explain = AsyncMock()

    restaurant_service = MagicMock()
    restaurant_service.find_best_restaurant_match = AsyncMock(return_value=None)
    restaurant_service.build_profile = AsyncMock()
    restaurant_service.page_menu = AsyncMock()
    restaurant_service.get_public_menu = AsyncMock()
    restaurant_service.resolve_restaurant_for_menu = AsyncMock()
    restaurant_service.search_menu_in_restaurant = AsyncMock()

    llm = MagicMock()
    llm.generate = AsyncMock(return_value="")

    engine = DiscoveryEngine(
        normalizer=normalizer,
        planner=Planner(llm, use_llm=False),
        tag_resolver=tag_resolver,
        search_chain=search_chain,
        followup_resolver=FollowupResolver(search_repo),
        explainer=explainer,
        restaurant_service=restaurant_service,
        llm_client=llm,
    )
    return engine


def _shown_state(**overrides):
    defaults = dict(
        grounded=GroundedState(
            restaurants=[GroundedRestaurant(id="r1", name="Indian Bites", dishes=[GroundedDish(id="d1", name="Butter Chicken")])],
            last_query="butter chicken",
            last_matches_count=1,
        ),
        last_results=[
            LastResultDish(dish_id="d1", dish_name="Butter Chicken", restaurant_id="r1", restaurant_name="Indian Bites")
        ],
    )
    defaults.update(overrides)
    return ChatState(**defaults)


class TestDiscoverySearch:

    @pytest.mark.asyncio
    async def test_results_are_grounded_on_shown_cards(self):
        cards = [
            _card("r1", "Indian Bites", [("d1", "Butter Chicken")]),
            _card("r2", "Curry House", [("d2", "Butter Chicken"), ("d3", "Butter Chicken Masala")]),
        ]
        engine = _make_engine(
            Intent(dish_query="butter chicken", original_query="butter chicken"),
            SearchResult(cards=cards, step="C", was_tag_filtered=False),
        )
        state = ChatState()

        response = await engine.handle_turn(_user("butter chicken"), state)

        assert response.message.kind == MessageKind.RESULTS
        shown = {m.id for c in response.message.restaurants for m in c.matches}
        assert response.grounded.dish_ids() == shown
        assert {d.dish_id for d in response.chat_state.last_results} == shown
        assert [c.restaurant_id for c in response.chat_state.restaurant_cursors] == ["r2", "r1"]
        assert response.chat_state.last_search_params.dish_query == "butter chicken"
        assert response.grounded.last_query == "butter chicken"
        assert state == ChatState()

    @pytest.mark.asyncio
    async def test_generic_query_without_tags_reaches_no_results(self):
        engine = _make_engine(
            Intent(is_vague=True, original_query="anything"),
            SearchResult(cards=[_card("r1", "Alpha")], step="E", was_tag_filtered=False),
        )

        response = await engine.handle_turn(_user("anything"))

        assert response.message.kind == MessageKind.NO_RESULTS
        assert response.message.content == t("NO_EXPLICIT_TAGS")
        assert response.grounded.last_was_no_results
        assert response.chat_state.last_results == []
        args = engine.search_chain.search.await_args
        assert args.args == ([], None, None)
        engine.restaurant_service.find_best_restaurant_match.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tagged_no_results_names_the_tag(self):
        engine = _make_engine(
            Intent(dietary=["vegan"], hard_tags=["vegan"], original_query="anything vegan"),
            SearchResult(cards=[_card("r1", "Alpha")], step="E", was_tag_filtered=False),
        )

        response = await engine.handle_turn(_user("anything vegan"))

        assert response.message.content == t("NO_TAGGED_FALLBACK", tag="vegan")
        assert response.grounded.last_was_no_results

    @pytest.mark.asyncio
    async def test_weak_result_reroutes_to_restaurant_profile(self):
        engine = _make_engine(
            Intent(dish_query="indian bites", original_query="indian bites"),
            SearchResult(cards=[_card("r9", "Alpha")], step="E", was_tag_filtered=False),
        )
        engine.restaurant_service.find_best_restaurant_match = AsyncMock(return_value={"id": "r1", "name": "Indian Bites"})
        engine.restaurant_service.build_profile = AsyncMock(return_value=_card("r1", "Indian Bites", [("d1", "Samosa")]))

        response = await engine.handle_turn(_user("indian bites"))

        assert response.message.kind == MessageKind.RESTAURANT_PROFILE
        assert response.message.followup_chips == ["Ask about this restaurant"]
        assert response.grounded.dish_ids() == {"d1"}

    @pytest.mark.asyncio
    async def test_repeat_after_no_results_is_not_reshown(self):
        state = ChatState(grounded=GroundedState(
            restaurants=[GroundedRestaurant(id="r1", name="Alpha")],
            last_query="pizza",
            last_was_no_results=True,
        ))
        engine = _make_engine(Intent(dish_query="pizza", original_query="pizza"))

        response = await engine.handle_turn(_user("pizza"), state)

        assert response.message.kind == MessageKind.CLARIFY
        assert response.message.content == t("NO_EXPLICIT_TAGS")
        engine.search_chain.search.assert_not_awaited()


class TestFollowups:

    @pytest.mark.asyncio
    async def test_attribute_question_answered_from_last_results(self):
        engine = _make_engine(Intent(original_query="is it spicy?"))

        response = await engine.handle_turn(_user("is it spicy?"), _shown_state())

        assert response.message.kind == MessageKind.ANSWER
        assert "Butter Chicken" in response.message.content
        engine.search_chain.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_menu_fact_without_dish_asks_which(self):
        engine = _make_engine(Intent(is_followup=True, original_query="tell me about that one"))
        engine.explainer.explain = AsyncMock(return_value=ExplainAnswer(t("WHICH_DISH"), ExplainType.MENU_FACT))

        response = await engine.handle_turn(_user("tell me about that one"), _shown_state())

        assert response.message.content == t("FACT_NO_MATCH")
        assert response.chat_state.last_explain.text == t("FACT_NO_MATCH")

    @pytest.mark.asyncio
    async def test_translate_last_explanation(self):
        state = _shown_state(last_explain=LastExplain(dish_name=None, text="Gobi is cauliflower.", language="en"))
        engine = _make_engine(Intent(original_query="på svenska"))
        engine.llm.generate = AsyncMock(return_value="Gobi är blomkål.")

        response = await engine.handle_turn(_user("på svenska"), state)

        assert response.message.content == "Gobi är blomkål."
        assert response.chat_state.last_explain.language == "sv"

    @pytest.mark.asyncio
    async def test_pagination_continues_from_stored_offset(self):
        cards = [_card(f"r{i}", f"Place {i}", [(f"d{i}", "Dal")]) for i in range(10)]
        state = _shown_state(last_search_params=SearchParams(dietary=[], dish_query=None), next_offset=8)
        engine = _make_engine(Intent(original_query="show more"), SearchResult(cards=cards, step="C", was_tag_filtered=False))

        response = await engine.handle_turn(_user("show more"), state)

        assert [c.id for c in response.message.restaurants] == ["r8", "r9"]
        assert response.chat_state.next_offset is None
        assert response.chat_state.last_search_params.offset == 8

    @pytest.mark.asyncio
    async def test_pagination_without_stored_search(self):
        engine = _make_engine(Intent(original_query="show more"))
        response = await engine.handle_turn(_user("show more"), _shown_state())
        assert response.message.content == t("NO_MORE_RESULTS")
        engine.search_chain.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_focus_trigger_enters_restaurant_mode(self):
        profile = _card("r1", "Indian Bites", [("d1", "Samosa")])
        messages = [
            ChatMessage(role="user", content="Indian Bites"),
            ChatMessage(role="assistant", content="**Indian Bites**", kind="restaurant_profile", restaurants=[profile]),
            ChatMessage(role="user", content="Ask about this restaurant"),
        ]
        engine = _make_engine()

        response = await engine.handle_turn(messages)

        assert response.chat_state.mode == "restaurant"
        assert response.chat_state.current_restaurant_id == "r1"
        engine.normalizer.normalize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exit_restaurant(self):
        state = _shown_state(mode="restaurant", current_restaurant_id="r1", current_restaurant_name="Indian Bites")
        engine = _make_engine(Intent(exit_restaurant=True, original_query="back"))

        response = await engine.handle_turn(_user("back"), state)

        assert response.chat_state.mode == "discovery"
        assert response.chat_state.current_restaurant_id is None
        assert response.message.content == t("BACK_TO_SEARCHING")

    @pytest.mark.asyncio
    async def test_show_menu_of_focused_restaurant(self):
        state = _shown_state(mode="restaurant", current_restaurant_id="r1", current_restaurant_name="Indian Bites")
        engine = _make_engine(Intent(show_menu=True, original_query="show me the menu"))
        engine.restaurant_service.get_public_menu = AsyncMock(return_value=PublicMenu(
            restaurant_id="r1",
            restaurant_name="Indian Bites",
            sections=[MenuSection(name="Mains", items=[DishMatch(id="d1", name="Butter Chicken"), DishMatch(id="d2", name="Dal")])],
        ))

        response = await engine.handle_turn(_user("show me the menu"), state)

        assert response.message.kind == MessageKind.MENU
        assert response.message.menu.restaurant_id == "r1"
        assert response.grounded.dish_ids() == {"d1", "d2"}
        engine.restaurant_service.get_public_menu.assert_awaited_once_with("r1")

    @pytest.mark.asyncio
    async def test_unresolved_menu_lists_candidates_in_user_language(self):
        engine = _make_engine(Intent(show_menu=True, restaurant_name="Indain Bytes", language="sv"))
        engine.restaurant_service.resolve_restaurant_for_menu = AsyncMock(return_value=MenuResolution(
            candidates=[{"id": "r1", "name": "Indian Bites", "score": 64.0}, {"id": "r2", "name": "India Gate", "score": 52.0}],
        ))

        response = await engine.handle_turn(_user("menu for Indain Bytes"), ChatState())

        assert response.message.kind == MessageKind.CLARIFY
        assert response.message.content == (
            t("MENU_WHICH_RESTAURANT", "sv") + " " + t("MENU_CANDIDATES", "sv", names="Indian Bites, India Gate")
        )
        assert "Prova någon av dessa" in response.message.content
        engine.restaurant_service.get_public_menu.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_message_asks_for_more(self):
        engine = _make_engine()
        response = await engine.handle_turn([ChatMessage(role="user", content="   ")])
        assert response.message.kind == MessageKind.CLARIFY
        engine.normalizer.normalize.assert_not_awaited()


class TestLoadMore:

    def _page(self, dishes, shown, total):
        return MenuPage(
            restaurant_id="r1",
            restaurant_name="Indian Bites",
            dishes=[DishMatch(id=d_id, name=d_id) for d_id in dishes],
            pagination=CardPagination(
                shown=shown,
                total=total,
                remaining=total - shown,
                next_offset=shown if shown < total else None,
            ),
        )

    @pytest.mark.asyncio
    async def test_exhausted_cursor_returns_no_patch(self):
        cursor = RestaurantCursor(restaurant_id="r1", restaurant_name="Indian Bites", shown_count=10, total_matches=10, next_offset=10)
        engine = _make_engine()
        action = UIAction(type="LOAD_MORE_RESTAURANT", restaurant_id="r1", offset=10)

        response = await engine.handle_turn([], ChatState(restaurant_cursors=[cursor]), ui_action=action)

        assert response.patch is None
        assert response.message.content == t("ALREADY_SHOWN_ALL", restaurant="Indian Bites")
        engine.restaurant_service.page_menu.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_moves_backwards(self):
        cursor = RestaurantCursor(restaurant_id="r1", restaurant_name="Indian Bites", shown_count=4, total_matches=12, next_offset=4)
        engine = _make_engine()
        engine.restaurant_service.page_menu = AsyncMock(return_value=self._page(["d5", "d6", "d7", "d8"], 8, 12))
        action = UIAction(type="LOAD_MORE_RESTAURANT", restaurant_id="r1", offset=0, dietary=["vegan"])

        response = await engine.handle_turn([], ChatState(restaurant_cursors=[cursor]), ui_action=action)

        engine.restaurant_service.page_menu.assert_awaited_once_with("r1", offset=4, dietary=["vegan"])
        assert [m.id for m in response.patch.append_matches] == ["d5", "d6", "d7", "d8"]
        advanced = response.chat_state.cursor_for("r1")
        assert advanced.shown_count == 8
        assert advanced.next_offset == 8

    @pytest.mark.asyncio
    async def test_empty_page_marks_cursor_exhausted(self):
        engine = _make_engine()
        engine.restaurant_service.page_menu = AsyncMock(return_value=self._page([], 6, 6))
        action = UIAction(type="LOAD_MORE_RESTAURANT", restaurant_id="r1", offset=6)

        response = await engine.handle_turn([], ChatState(), ui_action=action)

        assert response.patch is None
        assert response.chat_state.cursor_for("r1").next_offset is None

    @pytest.mark.asyncio
    async def test_show_more_by_name_keeps_diet_filter(self):
        cursor = RestaurantCursor(restaurant_id="r1", restaurant_name="Indian Bites", shown_count=4, total_matches=9, next_offset=4)
        state = _shown_state(
            last_search_params=SearchParams(dietary=["vegan"], dish_query="curry"),
            restaurant_cursors=[cursor],
        )
        engine = _make_engine()
        engine.restaurant_service.page_menu = AsyncMock(return_value=self._page(["d5", "d6"], 6, 9))

        response = await engine.handle_turn(_user("show more from Indian Bites"), state)

        engine.restaurant_service.page_menu.assert_awaited_once_with("r1", offset=4, dietary=["vegan"])
        assert [m.id for m in response.patch.append_matches] == ["d5", "d6"]

    @pytest.mark.asyncio
    async def test_show_more_without_stored_filter_pages_full_menu(self):
        cursor = RestaurantCursor(restaurant_id="r1", restaurant_name="Indian Bites", shown_count=4, total_matches=9, next_offset=4)
        engine = _make_engine()
        engine.restaurant_service.page_menu = AsyncMock(return_value=self._page(["d5"], 5, 9))

        await engine.handle_turn(_user("show more from Indian Bites"), _shown_state(restaurant_cursors=[cursor]))

        engine.restaurant_service.page_menu.assert_awaited_once_with("r1", offset=4, dietary=[])

    def test_cursor_exhaustion(self):
        def cursor(shown, total, next_offset):
            return RestaurantCursor(restaurant_id="r1", restaurant_name="x", shown_count=shown, total_matches=total, next_offset=next_offset)

        assert _cursor_exhausted(cursor(4, 12, None))
        assert _cursor_exhausted(cursor(12, 12, 12))
        assert not _cursor_exhausted(cursor(4, 12, 4))
        assert not _cursor_exhausted(cursor(0, 0, 0))


class TestErrorRollback:

    @pytest.mark.asyncio
    async def test_infrastructure_error_keeps_original_state(self):
        state = _shown_state()
        engine = _make_engine()
        engine.normalizer.normalize = AsyncMock(side_effect=TimeoutError("LLM request timed out"))

        response = await engine.handle_turn(_user("butter chicken"), state)

        assert response.message.kind == MessageKind.ERROR
        assert response.message.content == t("ERROR_TRY_AGAIN")
        assert response.message.followup_chips == ["Try again"]
        assert response.chat_state == state
        assert response.error_code == "llm_timeout"
        assert response.error_retryable is True

    @pytest.mark.asyncio
    async def test_unexpected_error_is_not_retryable(self):
        engine = _make_engine(Intent(dish_query="naan", original_query="naan"))
        engine.search_chain.search = AsyncMock(side_effect=RuntimeError("rpc returned garbage"))

        response = await engine.handle_turn(_user("naan"))

        assert response.error_code == "internal_error"
        assert response.error_retryable is False
        assert response.chat_state == ChatState()
