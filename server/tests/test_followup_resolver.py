"""Tests for follow-up resolution against shown results, and the dish explainer."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.followup_resolver import (
    ALLERGEN_META,
    DishExplainer,
    ExplainType,
    FollowupResolver,
    FollowupType,
    classify_explain_type,
    detect_tag_question,
    detect_translation_request,
    extract_definition_term,
    is_plural_intent,
)
from models.chat_state import GroundedDish, GroundedRestaurant, GroundedState, LastResultDish
from models.intent import Intent
from services.i18n import t


def _dish(dish_id="d1", name="Butter Chicken", restaurant_id="r1", restaurant_name="Indian Bites", description=None):
    return LastResultDish(
        dish_id=dish_id,
        dish_name=name,
        restaurant_id=restaurant_id,
        restaurant_name=restaurant_name,
        description=description,
    )


def _make_resolver(tags=None):
    repo = MagicMock()
    repo.get_dish_tags = AsyncMock(return_value=tags or {})
    return FollowupResolver(repo), repo


def _grounded():
    return GroundedState(
        restaurants=[
            GroundedRestaurant(
                id="r1",
                name="Indian Bites",
                dishes=[
                    GroundedDish(id="d1", name="Butter Chicken", description="Chicken in a tomato and cashew gravy"),
                    GroundedDish(id="d2", name="Aloo Gobi"),
                ],
            )
        ],
        last_query="curry",
    )


class TestDetection:

    def test_translation_targets(self):
        assert detect_translation_request("in english please") == "en"
        assert detect_translation_request("kan du skriva på svenska") == "sv"
        assert detect_translation_request("is it spicy?") is None

    def test_tag_question(self):
        assert detect_tag_question("is the butter chicken halal?") == "halal"
        assert detect_tag_question("any allergens?") == ALLERGEN_META
        assert detect_tag_question("does it contain sesame") == "sesame"
        assert detect_tag_question("thanks!") is None

    def test_plural_intent(self):
        assert is_plural_intent("do they have vegan dishes?")
        assert not is_plural_intent("is it halal?")


class TestResolve:

    @pytest.mark.asyncio
    async def test_attribute_question_about_single_shown_dish(self):
        resolver, repo = _make_resolver()

        result = await resolver.resolve("is it spicy?", Intent(), [_dish()])

        assert result.type == FollowupType.RESOLVED
        assert result.matched_dish.dish_name == "Butter Chicken"
        assert result.tag_found is False
        assert "spiciness" in result.answer
        repo.get_dish_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attribute_from_description(self):
        resolver, _ = _make_resolver()
        dish = _dish(description="A fiery chili gravy")

        result = await resolver.resolve("is it spicy?", Intent(), [dish])

        assert result.tag_found is True
        assert "description mentions" in result.answer

    @pytest.mark.asyncio
    async def test_translation_request(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("in english please", Intent(), [_dish()])
        assert result.type == FollowupType.TRANSLATE_LAST
        assert result.target_language == "en"

    @pytest.mark.asyncio
    async def test_pagination(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("show more", Intent(), [_dish()])
        assert result.type == FollowupType.PAGINATE

    @pytest.mark.asyncio
    async def test_show_more_from_shown_restaurant(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("show more from Indian Bites", Intent(), [_dish()])
        assert result.type == FollowupType.SHOW_MORE_RESTAURANT
        assert result.restaurant_id == "r1"

    @pytest.mark.asyncio
    async def test_show_more_from_unseen_restaurant_keeps_name(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("more from Spice Garden?", Intent(), [_dish()])
        assert result.type == FollowupType.SHOW_MORE_RESTAURANT
        assert result.restaurant_id is None
        assert result.restaurant_name == "Spice Garden"

    @pytest.mark.asyncio
    async def test_tag_answer_comes_from_dish_tags(self):
        resolver, repo = _make_resolver({"d1": [{"slug": "halal", "name": "Halal", "type": "diet"}]})

        result = await resolver.resolve(
            "is the butter chicken halal?", Intent(dish_query="butter chicken"), [_dish()]
        )

        assert result.type == FollowupType.RESOLVED
        assert result.tag_found is True
        assert result.answer.startswith(t("YES_PREFIX"))
        assert "Indian Bites" in result.answer
        repo.get_dish_tags.assert_awaited_once_with(["d1"])

    @pytest.mark.asyncio
    async def test_missing_tag_is_a_no(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve(
            "is the butter chicken halal?", Intent(dish_query="butter chicken"), [_dish()]
        )
        assert result.tag_found is False
        assert result.answer.startswith(t("NO_PREFIX"))

    @pytest.mark.asyncio
    async def test_allergen_listing(self):
        resolver, _ = _make_resolver({"d1": [
            {"slug": "milk", "name": "Milk", "type": "allergen"},
            {"slug": "halal", "name": "Halal", "type": "diet"},
        ]})

        result = await resolver.resolve(
            "any allergens in the butter chicken?", Intent(dish_query="butter chicken"), [_dish()]
        )

        assert result.tag_found is True
        assert "Milk" in result.answer
        assert "Halal" not in result.answer

    @pytest.mark.asyncio
    async def test_pronoun_with_several_dishes_asks_which(self):
        resolver, repo = _make_resolver()
        shown = [_dish(), _dish("d2", "Dal Makhani")]

        result = await resolver.resolve("is it halal?", Intent(), shown)

        assert result.type == FollowupType.CLARIFY
        assert [d.dish_id for d in result.candidates] == ["d1", "d2"]
        repo.get_dish_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plural_question_passes_to_search(self):
        resolver, repo = _make_resolver()
        result = await resolver.resolve(
            "do they have vegan butter chicken dishes?", Intent(dish_query="butter chicken"), [_dish()]
        )
        assert result.type == FollowupType.PASS
        repo.get_dish_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dish_mismatch_passes(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("is it halal?", Intent(dish_query="naan"), [_dish()])
        assert result.type == FollowupType.PASS

    @pytest.mark.asyncio
    async def test_unrelated_query_passes(self):
        resolver, _ = _make_resolver()
        result = await resolver.resolve("thanks!", Intent(), [_dish()])
        assert result.type == FollowupType.PASS


class TestExplainer:

    def test_classification(self):
        assert classify_explain_type("what is gobi?") == ExplainType.DEFINITION
        assert classify_explain_type("does the butter chicken contain nuts?") == ExplainType.MENU_FACT

    def test_definition_term(self):
        assert extract_definition_term("what is gobi?") == "gobi"
        assert extract_definition_term("what is it?") is None

    @pytest.mark.asyncio
    async def test_definition_lists_menu_mentions(self):
        llm = MagicMock()
        llm.generate = AsyncMock(return_value="Gobi is cauliflower. ")

        answer = await DishExplainer(llm).explain("what is gobi?", _grounded())

        assert answer.explain_type == ExplainType.DEFINITION
        assert answer.text.startswith("Gobi is cauliflower.")
        assert "Aloo Gobi (Indian Bites)" in answer.text

    @pytest.mark.asyncio
    async def test_definition_failure_uses_fallback(self):
        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=ValueError("empty response"))

        answer = await DishExplainer(llm).explain("what is jalfrezi?", None)

        assert answer.text == t("DEFINITION_FALLBACK")

    @pytest.mark.asyncio
    async def test_definition_infrastructure_errors_propagate(self):
        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=TimeoutError("LLM request timed out"))
        with pytest.raises(TimeoutError):
            await DishExplainer(llm).explain("what is gobi?", None)

    @pytest.mark.asyncio
    async def test_menu_fact_quotes_description(self):
        llm = MagicMock()
        llm.generate = AsyncMock()

        answer = await DishExplainer(llm).explain("does the butter chicken contain nuts?", _grounded())

        assert answer.explain_type == ExplainType.MENU_FACT
        assert answer.dish_name == "Butter Chicken"
        assert "tomato and cashew gravy" in answer.text
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_menu_fact_without_shown_dish_asks_which(self):
        answer = await DishExplainer(MagicMock()).explain("does the paneer tikka contain nuts?", _grounded())
        assert answer.text == t("WHICH_DISH")
        assert answer.dish_name is None
