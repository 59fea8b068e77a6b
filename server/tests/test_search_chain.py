"""Tests for the fallback search ladder (steps A→E) and row grouping."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from config.settings import settings
from core.finalizer import finalize
from core.search_chain import FallbackSearchChain, fuzzy_rows_to_cards, rows_to_cards
from core.trace import RequestTrace
from models.chat_state import ChatState
from models.intent import Intent


def _make_repo(strict=None, fuzzy=None, fallback=None, tags=None, owners=None):
    repo = MagicMock()
    repo.search_by_tags_strict = AsyncMock(side_effect=strict or [[], []])
    repo.search_fuzzy = AsyncMock(side_effect=fuzzy or [[], []])
    repo.list_searchable_restaurants = AsyncMock(return_value=fallback or [])
    repo.get_dish_tags = AsyncMock(return_value=tags or {})
    repo.get_owner_ids = AsyncMock(return_value=owners or {})
    return repo


def _row(restaurant_id, dish_id, dish_name, section=None, restaurant_name=None):
    return {
        "restaurant_id": restaurant_id,
        "restaurant_name": restaurant_name or f"Restaurant {restaurant_id}",
        "dish_id": dish_id,
        "dish_name": dish_name,
        "section_name": section,
        "dish_price": 129,
    }


def _fuzzy_row(restaurant_id, dishes):
    return {
        "restaurant_id": restaurant_id,
        "restaurant_name": f"Restaurant {restaurant_id}",
        "matching_dishes": [{"id": d_id, "name": name} for d_id, name in dishes],
    }


class TestLadderOrder:

    @pytest.mark.asyncio
    async def test_step_a_stops_the_ladder(self):
        repo = _make_repo(strict=[[_row("r1", "d1", "Vegan Pizza")]])
        result = await FallbackSearchChain(repo).search(["t-vegan"], "pizza", "Stockholm")

        assert result.step == "A"
        assert result.was_tag_filtered
        assert repo.search_by_tags_strict.await_count == 1
        repo.search_fuzzy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_step_b_drops_query_text(self):
        repo = _make_repo(strict=[[], [_row("r1", "d1", "Vegan Margherita", "Pizza")]])
        result = await FallbackSearchChain(repo).search(["t-vegan"], "pizza", "Stockholm")

        assert result.step == "B"
        second = repo.search_by_tags_strict.await_args_list[1]
        assert second.kwargs["query_text"] is None
        assert second.kwargs["city"] == "Stockholm"

    @pytest.mark.asyncio
    async def test_without_tags_starts_at_fuzzy(self):
        repo = _make_repo(fuzzy=[[_fuzzy_row("r1", [("d1", "Naan")])]])
        result = await FallbackSearchChain(repo).search([], "naan", "Uppsala")

        assert result.step == "C"
        assert not result.was_tag_filtered
        repo.search_by_tags_strict.assert_not_awaited()
        assert repo.search_fuzzy.await_args.kwargs == {
            "city": "Uppsala",
            "threshold": settings.FUZZY_STRICT_THRESHOLD,
        }

    @pytest.mark.asyncio
    async def test_step_d_is_loose_and_city_free(self):
        repo = _make_repo(fuzzy=[[], [_fuzzy_row("r9", [("d9", "Garlic Naan")])]])
        result = await FallbackSearchChain(repo).search([], "naan", "Uppsala")

        assert result.step == "D"
        assert repo.search_fuzzy.await_args.kwargs == {
            "city": None,
            "threshold": settings.FUZZY_LOOSE_THRESHOLD,
        }

    @pytest.mark.asyncio
    async def test_step_e_has_no_matches(self):
        repo = _make_repo(fallback=[{"id": "r1", "name": "Alpha"}, {"id": "r2", "name": "Beta"}])
        trace = RequestTrace()

        result = await FallbackSearchChain(repo).search([], None, None, trace=trace)

        assert result.step == "E"
        assert result.is_no_results
        assert [c.name for c in result.cards] == ["Alpha", "Beta"]
        assert all(not c.matches for c in result.cards)
        repo.search_fuzzy.assert_not_awaited()
        assert trace.last("search")["step"] == "E"

    @pytest.mark.asyncio
    async def test_primitive_errors_propagate(self):
        repo = _make_repo()
        repo.search_by_tags_strict = AsyncMock(side_effect=ConnectionError("rpc unreachable"))
        with pytest.raises(ConnectionError):
            await FallbackSearchChain(repo).search(["t-vegan"], "pizza", None)


class TestEnrichment:

    @pytest.mark.asyncio
    async def test_owner_ids_and_tag_slugs_attached(self):
        repo = _make_repo(
            strict=[[_row("r1", "d1", "Vegan Pizza")]],
            tags={"d1": [{"slug": "vegan", "name": "Vegan"}]},
            owners={"r1": "owner-1"},
        )
        result = await FallbackSearchChain(repo).search(["t-vegan"], "pizza", None)

        card = result.cards[0]
        assert card.owner_id == "owner-1"
        assert card.matches[0].tags == ["vegan"]


class TestRowGrouping:

    def test_dishes_sorted_by_name_within_restaurant(self):
        cards = rows_to_cards([
            _row("r1", "d2", "Zucchini Pizza"),
            _row("r2", "d3", "Naan"),
            _row("r1", "d1", "Aloo Pizza"),
        ])
        assert [c.id for c in cards] == ["r1", "r2"]
        assert [m.name for m in cards[0].matches] == ["Aloo Pizza", "Zucchini Pizza"]

    def test_duplicate_dish_rows_collapsed(self):
        cards = rows_to_cards([_row("r1", "d1", "Naan"), _row("r1", "d1", "Naan")])
        assert len(cards[0].matches) == 1

    def test_negative_price_becomes_unknown(self):
        row = _row("r1", "d1", "Naan")
        row["dish_price"] = -5
        assert rows_to_cards([row])[0].matches[0].price is None

    def test_fuzzy_restaurants_without_dishes_dropped(self):
        cards = fuzzy_rows_to_cards([
            {"restaurant_id": "r1", "matching_dishes": []},
            _fuzzy_row("r2", [("d1", "Dal")]),
        ])
        assert [c.id for c in cards] == ["r2"]


class TestVeganPizzaScenario:

    @pytest.mark.asyncio
    async def test_tag_only_step_relevance_filtered(self):
        repo = _make_repo(
            strict=[
                [],
                [
                    _row("r1", "d1", "Vegan Margherita", "Pizza"),
                    _row("r1", "d2", "Tofu Curry", "Mains"),
                    _row("r2", "d3", "Vegan Burger"),
                ],
            ],
            tags={
                "d1": [{"slug": "vegan"}],
                "d2": [{"slug": "vegan"}],
                "d3": [{"slug": "vegan"}],
            },
        )
        result = await FallbackSearchChain(repo).search(["t-vegan"], "pizza", "Stockholm")
        intent = Intent(dish_query="pizza", dietary=["vegan"], city="Stockholm")

        final = finalize(result.cards, ChatState(), intent, result.was_tag_filtered)

        assert result.step == "B"
        assert result.was_tag_filtered
        assert [c.id for c in final.cards] == ["r1"]
        assert [m.name for m in final.cards[0].matches] == ["Vegan Margherita"]
