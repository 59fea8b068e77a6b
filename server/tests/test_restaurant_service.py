"""Tests for the restaurant service: open status, menus, paging and in-restaurant search."""
import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from config.settings import settings
from models.cards import DishMatch
from models.chat_state import GroundedRestaurant, GroundedState
from models.intent import Intent
from services.restaurant_service import (
    MenuSearchResult,
    MenuSubAction,
    RestaurantService,
    compute_open_status,
    describe_menu_search,
    matches_precision_gate,
    score_restaurant_name,
)

# 2026-10-14 is a Wednesday
WEDNESDAY = datetime(2026, 10, 14, tzinfo=timezone.utc)

MENU_ROWS = [
    {"id": "d1", "name": "Samosa", "section_name": "Starters", "price": 49},
    {"id": "d2", "name": "Dal Tadka", "section_name": "Mains", "price": 129},
    {"id": "d3", "name": "Garlic Naan", "section_name": "Breads", "price": 35},
    {"id": "d4", "name": "Kheer", "section_name": None, "price": 59},
]


def _at(hour, minute=0):
    return WEDNESDAY.replace(hour=hour, minute=minute)


def _make_service(llm=None):
    restaurant_repo = MagicMock()
    restaurant_repo.get_by_id = AsyncMock(return_value={"id": "r1", "name": "Indian Bites", "city": "Stockholm"})
    restaurant_repo.get_public_dishes = AsyncMock(return_value=list(MENU_ROWS))
    restaurant_repo.list_searchable = AsyncMock(return_value=[
        {"id": "r1", "name": "Indian Bites"},
        {"id": "r2", "name": "Pizza Palace"},
    ])
    restaurant_repo.find_by_name = AsyncMock(return_value=[])
    restaurant_repo.search_dishes_by_name = AsyncMock(return_value=[])

    search_repo = MagicMock()
    search_repo.get_dish_tags = AsyncMock(return_value={})
    search_repo.search_by_tags_strict = AsyncMock(return_value=[])
    search_repo.search_fuzzy = AsyncMock(return_value=[])
    search_repo.search_semantic = AsyncMock(return_value=[])
    search_repo.search_restaurant_by_name = AsyncMock(return_value=[])

    tag_resolver = MagicMock()
    tag_resolver.resolve = AsyncMock(return_value=[])

    service = RestaurantService(restaurant_repo, search_repo, tag_resolver, llm)
    return service, restaurant_repo, search_repo, tag_resolver


class TestOpenStatus:

    def test_inside_and_outside_hours(self):
        hours = {"wednesday": "11:00-22:00"}
        assert compute_open_status(hours, "UTC", _at(12)) == (True, "11:00-22:00")
        assert compute_open_status(hours, "UTC", _at(10, 59)) == (False, "11:00-22:00")
        assert compute_open_status(hours, "UTC", _at(22)) == (False, "11:00-22:00")

    def test_range_past_midnight(self):
        hours = {"wed": "18:00-02:00"}
        assert compute_open_status(hours, "UTC", _at(23))[0]
        assert compute_open_status(hours, "UTC", _at(1))[0]
        assert not compute_open_status(hours, "UTC", _at(3))[0]

    def test_closed_day_and_missing_hours(self):
        assert compute_open_status({"wednesday": "Closed"}, "UTC", _at(12)) == (False, "Closed today")
        assert compute_open_status({"monday": "11:00-22:00"}, "UTC", _at(12)) == (False, "Closed today")
        assert compute_open_status(None, "UTC", _at(12)) == (False, None)

    def test_unknown_timezone_falls_back(self):
        assert compute_open_status({"wednesday": "00:00-23:59"}, "Mars/Olympus", _at(12)) == (True, "00:00-23:59")


class TestMatching:

    def test_restaurant_name_scores(self):
        assert score_restaurant_name("indianbites", "indianbites") == 100.0
        assert score_restaurant_name("indian", "indianbites") == 80.0
        assert score_restaurant_name("indianbitesmenu", "indianbites") == 70.0
        assert score_restaurant_name("", "indianbites") == 0.0

    def test_misspelled_name_scores_by_edit_distance(self):
        # one dropped letter out of eleven
        assert score_restaurant_name("indanbites", "indianbites") == pytest.approx(100.0 - 100.0 / 11)
        assert score_restaurant_name("sushibar", "pizzahut") < 40.0

    def test_precision_gate_needs_two_words_for_multiword_query(self):
        assert matches_precision_gate("Butter Chicken", ["butter", "chicken"])
        assert not matches_precision_gate("Chicken Tikka", ["butter", "chicken"])

    def test_precision_gate_single_word(self):
        assert matches_precision_gate("Garlic Naan", ["naan"])
        assert not matches_precision_gate("Mango Lassi", ["naan"])


class TestDescribeMenuSearch:

    def test_verified_tag(self):
        dish = DishMatch(id="d1", name="Butter Chicken")
        result = MenuSearchResult("r1", "Indian Bites", MenuSubAction.VERIFY_TAG, [dish], best_match=dish)
        intent = Intent(dish_query="butter chicken", hard_tags=["halal"], original_query="is the butter chicken halal?")

        assert describe_menu_search(result, intent) == "✅ Yes — Butter Chicken at Indian Bites is tagged halal."

    def test_nothing_tagged(self):
        result = MenuSearchResult("r1", "Indian Bites", MenuSubAction.VERIFY_TAG)
        intent = Intent(dish_query="butter chicken", hard_tags=["halal"], original_query="is the butter chicken halal?")

        assert describe_menu_search(result, intent) == "❌ I can't find any dishes tagged halal at Indian Bites in our database."

    def test_tagged_listing_with_prices(self):
        dishes = [DishMatch(id="d2", name="Dal Tadka", price=129), DishMatch(id="d3", name="Garlic Naan")]
        result = MenuSearchResult("r1", "Indian Bites", MenuSubAction.LIST_TAGGED, dishes)
        intent = Intent(hard_tags=["vegan"], original_query="vegan options?")

        assert describe_menu_search(result, intent) == (
            "Here are vegan options I found at Indian Bites:\n"
            f"- Dal Tadka (129 {settings.CURRENCY_LABEL})\n"
            "- Garlic Naan"
        )

    def test_no_dishes(self):
        result = MenuSearchResult("r1", "Indian Bites", MenuSubAction.SEARCH_NAME)
        text = describe_menu_search(result, Intent(dish_query="sushi", original_query="sushi"))
        assert text == "No dishes found matching your search at Indian Bites."


class TestMenus:

    @pytest.mark.asyncio
    async def test_resolve_menu_from_grounded_results(self):
        service, restaurant_repo, _, _ = _make_service()
        grounded = GroundedState(restaurants=[GroundedRestaurant(id="r1", name="Indian Bites")])

        resolution = await service.resolve_restaurant_for_menu("menu", "indian bites", grounded)

        assert resolution.matched == {"id": "r1", "name": "Indian Bites"}
        restaurant_repo.list_searchable.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resolve_menu_tolerates_typos(self):
        service, _, _, _ = _make_service()
        resolution = await service.resolve_restaurant_for_menu("menu", "Indian Bytes")
        assert resolution.matched["id"] == "r1"

    @pytest.mark.asyncio
    async def test_resolve_menu_unknown_name(self):
        service, _, _, _ = _make_service()
        resolution = await service.resolve_restaurant_for_menu("menu", "Qwxyz Grill House")
        assert resolution.matched is None

    @pytest.mark.asyncio
    async def test_public_menu_grouped_by_section(self):
        service, _, search_repo, _ = _make_service()
        search_repo.get_dish_tags = AsyncMock(return_value={"d2": [{"slug": "vegan", "name": "Vegan"}]})

        menu = await service.get_public_menu("r1")

        assert [s.name for s in menu.sections] == ["Breads", "Mains", "Other", "Starters"]
        assert menu.sections[1].items[0].tags == ["vegan"]

    @pytest.mark.asyncio
    async def test_public_menu_missing_restaurant(self):
        service, restaurant_repo, _, _ = _make_service()
        restaurant_repo.get_by_id = AsyncMock(return_value=None)
        assert await service.get_public_menu("nope") is None

    @pytest.mark.asyncio
    async def test_page_menu_walks_pages_in_menu_order(self):
        service, _, _, _ = _make_service()

        first = await service.page_menu("r1", offset=0, page_size=2)
        second = await service.page_menu("r1", offset=2, page_size=2)

        assert [d.name for d in first.dishes] == ["Garlic Naan", "Dal Tadka"]
        assert first.pagination.model_dump() == {"shown": 2, "total": 4, "remaining": 2, "next_offset": 2}
        assert [d.name for d in second.dishes] == ["Kheer", "Samosa"]
        assert second.pagination.next_offset is None

    @pytest.mark.asyncio
    async def test_page_menu_dietary_filter(self):
        service, _, search_repo, _ = _make_service()
        search_repo.get_dish_tags = AsyncMock(return_value={"d2": [{"slug": "vegan"}]})

        page = await service.page_menu("r1", dietary=["vegan"])

        assert [d.id for d in page.dishes] == ["d2"]
        assert page.pagination.total == 1


class TestLookup:

    @pytest.mark.asyncio
    async def test_exact_name_preferred(self):
        service, restaurant_repo, _, _ = _make_service()
        restaurant_repo.find_by_name = AsyncMock(return_value=[
            {"id": "r2", "name": "Indian Bites Express"},
            {"id": "r1", "name": "Indian Bites"},
        ])

        match = await service.find_best_restaurant_match("Indian Bites")

        assert match["id"] == "r1"

    @pytest.mark.asyncio
    async def test_trigram_fallback(self):
        service, restaurant_repo, search_repo, _ = _make_service()
        search_repo.search_restaurant_by_name = AsyncMock(return_value=[{"id": "r1", "name": "Indian Bites"}])

        match = await service.find_best_restaurant_match("indain bites")

        assert match["name"] == "Indian Bites"
        restaurant_repo.get_by_id.assert_awaited_once_with("r1")

    @pytest.mark.asyncio
    async def test_blank_name(self):
        service, restaurant_repo, _, _ = _make_service()
        assert await service.find_best_restaurant_match("   ") is None
        restaurant_repo.find_by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profile_has_preview_and_status(self):
        service, restaurant_repo, _, _ = _make_service()
        restaurant_repo.get_public_dishes = AsyncMock(return_value=MENU_ROWS[:3])

        card = await service.build_profile({"id": "r1", "name": "Indian Bites", "accepts_takeaway": True})

        assert [m.id for m in card.matches] == ["d1", "d2", "d3"]
        assert card.service_options == {"accepts_takeaway": True}
        assert card.is_open_now is False
        restaurant_repo.get_public_dishes.assert_awaited_once_with("r1", offset=0, limit=3)


class TestSearchInRestaurant:

    @pytest.mark.asyncio
    async def test_verify_tag_keeps_only_this_restaurant(self):
        service, _, search_repo, tag_resolver = _make_service()
        tag_resolver.resolve = AsyncMock(return_value=[SimpleNamespace(tag_id="t-halal")])
        search_repo.search_by_tags_strict = AsyncMock(return_value=[
            {"restaurant_id": "r1", "dish_id": "d1", "dish_name": "Butter Chicken"},
            {"restaurant_id": "r1", "dish_id": "d2", "dish_name": "Chicken Tikka"},
            {"restaurant_id": "r2", "dish_id": "d3", "dish_name": "Butter Chicken"},
        ])
        search_repo.get_dish_tags = AsyncMock(return_value={"d1": [{"slug": "halal"}]})
        intent = Intent(dish_query="butter chicken", hard_tags=["halal"])

        result = await service.search_menu_in_restaurant({"id": "r1", "name": "Indian Bites"}, intent)

        assert result.sub_action == MenuSubAction.VERIFY_TAG
        assert [d.id for d in result.dishes] == ["d1"]
        assert result.best_match.id == "d1"
        assert result.dishes[0].tags == ["halal"]

    @pytest.mark.asyncio
    async def test_list_tagged(self):
        service, _, search_repo, tag_resolver = _make_service()
        tag_resolver.resolve = AsyncMock(return_value=[SimpleNamespace(tag_id="t-vegan")])
        search_repo.search_by_tags_strict = AsyncMock(return_value=[
            {"restaurant_id": "r1", "dish_id": "d2", "dish_name": "Dal Tadka"},
            {"restaurant_id": "r1", "dish_id": "d3", "dish_name": "Garlic Naan"},
        ])

        result = await service.search_menu_in_restaurant({"id": "r1", "name": "Indian Bites"}, Intent(hard_tags=["vegan"]))

        assert result.sub_action == MenuSubAction.LIST_TAGGED
        assert len(result.dishes) == 2
        assert result.best_match is None

    @pytest.mark.asyncio
    async def test_tag_search_is_narrowed_to_restaurant_city(self):
        service, _, search_repo, tag_resolver = _make_service()
        tag_resolver.resolve = AsyncMock(return_value=[SimpleNamespace(tag_id="t-vegan")])
        search_repo.search_by_tags_strict = AsyncMock(return_value=[
            {"restaurant_id": "r1", "dish_id": "d2", "dish_name": "Dal Tadka"},
        ])
        restaurant = {"id": "r1", "name": "Indian Bites", "city": "Uppsala"}

        result = await service.search_menu_in_restaurant(restaurant, Intent(hard_tags=["vegan"]))

        search_repo.search_by_tags_strict.assert_awaited_once_with(["t-vegan"], city="Uppsala", limit=50)
        assert [d.id for d in result.dishes] == ["d2"]

    @pytest.mark.asyncio
    async def test_name_search_falls_back_to_direct_match(self):
        service, restaurant_repo, search_repo, tag_resolver = _make_service()
        restaurant_repo.search_dishes_by_name = AsyncMock(return_value=[{"id": "d3", "name": "Garlic Naan", "price": 35}])

        result = await service.search_menu_in_restaurant({"id": "r1", "name": "Indian Bites"}, Intent(dish_query="naan"))

        assert result.sub_action == MenuSubAction.SEARCH_NAME
        assert result.best_match.name == "Garlic Naan"
        search_repo.search_fuzzy.assert_awaited_once()
        tag_resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_semantic_search_when_embeddings_available(self):
        llm = MagicMock()
        llm.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
        service, _, search_repo, _ = _make_service(llm)
        search_repo.search_semantic = AsyncMock(return_value=[
            {"restaurant_id": "r1", "dish_id": "d3", "dish_name": "Garlic Naan"},
            {"restaurant_id": "r2", "dish_id": "d9", "dish_name": "Plain Naan"},
        ])

        result = await service.search_menu_in_restaurant({"id": "r1", "name": "Indian Bites"}, Intent(dish_query="naan"))

        assert [d.id for d in result.dishes] == ["d3"]
        search_repo.search_fuzzy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_failure_uses_fuzzy(self):
        llm = MagicMock()
        llm.embed = AsyncMock(side_effect=ValueError("bad embedding response"))
        service, _, search_repo, _ = _make_service(llm)
        search_repo.search_fuzzy = AsyncMock(return_value=[
            {"restaurant_id": "r1", "matching_dishes": [{"id": "d3", "name": "Garlic Naan"}]},
        ])

        result = await service.search_menu_in_restaurant({"id": "r1", "name": "Indian Bites"}, Intent(dish_query="naan"))

        assert [d.id for d in result.dishes] == ["d3"]
        search_repo.search_semantic.assert_not_awaited()
