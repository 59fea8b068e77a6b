"""Result Finalizer & Truncator.

Every search response passes through ``finalize`` before it is shown or
recorded as grounding.  The pass is idempotent: feeding its output back
in, together with its meta, returns the same cards and meta.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from config.settings import settings
from core.text_matching import is_similar, normalize_text, tokenize_query
from models.cards import CardPagination, RestaurantCard, TruncationMeta
from models.chat_state import ChatState
from models.intent import Intent

logger = logging.getLogger(__name__)

PIZZA_DISH_NAMES = (
    "margherita", "marinara", "funghi", "capricciosa", "quattro formaggi",
    "quattro stagioni", "diavola", "calzone", "prosciutto", "pepperoni", "hawaiian",
    "napoletana", "vegetariana", "vesuvio", "kebabpizza", "pizza",
)


@dataclass
class FinalizedCards:
    cards: List[RestaurantCard]
    meta: TruncationMeta

    @property
    def matches_count(self) -> int:
        return sum(len(c.matches) for c in self.cards)


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------

def isolate_focus(cards: List[RestaurantCard], state: ChatState) -> List[RestaurantCard]:
    """In restaurant mode only the focused restaurant may appear."""
    if state.mode == "restaurant" and state.current_restaurant_id:
        return [c for c in cards if c.id == state.current_restaurant_id]
    return cards


def _words(text: str) -> List[str]:
    return [w for w in text.split() if len(w) >= 2]


def _is_relevant(dish, query: str, query_words: List[str], pizza_search: bool) -> bool:
    name = dish.name.lower()
    description = (dish.description or "").lower()
    section = (dish.section_name or "").lower()

    if query in name or query in description or (section and query in section):
        return True
    dish_words = _words(name) + _words(section)
    if any(is_similar(q, w) for q in query_words for w in dish_words):
        return True
    if pizza_search:
        return "pizza" in section or any(p in name for p in PIZZA_DISH_NAMES)
    return False


def filter_relevant(cards: List[RestaurantCard], dish_query: Optional[str]) -> List[RestaurantCard]:
    """Text re-filter for tag-filtered results (the strict RPC ignores spelling)."""
    query = (dish_query or "").strip().lower()
    if not query:
        return cards
    query_words = _words(query)
    pizza_search = "pizza" in query

    out = []
    for card in cards:
        matches = [m for m in card.matches if _is_relevant(m, query, query_words, pizza_search)]
        if matches:
            out.append(card.model_copy(update={"matches": matches}))
    return out


def matches_dish_query(dish, dish_query: str) -> bool:
    tokens = tokenize_query(dish_query)
    if not tokens:
        return True
    haystack = " ".join(
        normalize_text(part) for part in (dish.name, dish.description, dish.section_name) if part
    ).split()
    found = sum(1 for tok in tokens if any(is_similar(tok, word, positional=False) for word in haystack))
    required = 1 if len(tokens) <= 1 else min(2, len(tokens))
    return found >= required


def _is_vegan_strict(intent: Intent) -> bool:
    return "vegan" in {normalize_text(d) for d in intent.dietary}


def _dish_is_vegan(dish) -> bool:
    return "vegan" in {normalize_text(t) for t in dish.tags}


def filter_dish_query(cards: List[RestaurantCard], intent: Intent) -> List[RestaurantCard]:
    """Token filter on the dish query plus vegan strictness.

    Cards with no surviving dishes are dropped, but only when one of the
    two rules was active.
    """
    dish_query = (intent.dish_query or "").strip()
    vegan_strict = _is_vegan_strict(intent)
    if not dish_query and not vegan_strict:
        return cards

    out = []
    for card in cards:
        matches = [
            m for m in card.matches
            if (not dish_query or matches_dish_query(m, dish_query))
            and (not vegan_strict or _dish_is_vegan(m))
        ]
        if matches:
            out.append(card.model_copy(update={"matches": matches}))
    return out


def dedupe_cards(cards: List[RestaurantCard]) -> List[RestaurantCard]:
    """Merge cards by restaurant id, first occurrence order; dishes merged by id."""
    merged: dict[str, RestaurantCard] = {}
    for card in cards:
        existing = merged.get(card.id)
        if existing is None:
            merged[card.id] = card.model_copy(update={"matches": list(card.matches)})
            continue
        seen = {m.id for m in existing.matches}
        existing.matches.extend(m for m in card.matches if m.id not in seen)
    return list(merged.values())


def sort_by_match_count(cards: List[RestaurantCard]) -> List[RestaurantCard]:
    return sorted(cards, key=lambda c: len(c.matches), reverse=True)


def truncate_cards(
    cards: List[RestaurantCard],
    max_restaurants: Optional[int] = None,
    max_dishes: Optional[int] = None,
    offset: int = 0,
) -> FinalizedCards:
    """Cap restaurants and dishes per restaurant, recording pagination.

    A card that already carries pagination for exactly its visible
    dishes keeps its original total, so re-truncating is a no-op.
    """
    max_restaurants = max_restaurants or settings.MAX_RESTAURANTS
    max_dishes = max_dishes or settings.MAX_DISHES_PER_RESTAURANT

    total_restaurants = len(cards)
    total_matches = sum(_card_total(c) for c in cards)

    sliced = []
    for card in cards[offset:offset + max_restaurants]:
        total = _card_total(card)
        shown_matches = card.matches[:max_dishes]
        shown = len(shown_matches)
        sliced.append(card.model_copy(update={
            "matches": shown_matches,
            "more_dishes_count": max(0, total - max_dishes),
            "pagination": CardPagination(
                shown=shown,
                total=total,
                remaining=total - shown,
                next_offset=shown if total > shown else None,
            ),
        }))

    returned_matches = sum(len(c.matches) for c in sliced)
    has_more_restaurants = offset + len(sliced) < total_restaurants
    meta = TruncationMeta(
        total_restaurants=total_restaurants,
        total_matches=total_matches,
        truncated=has_more_restaurants or total_matches > returned_matches,
        restaurants_returned=len(sliced),
        dishes_per_restaurant=max_dishes,
        next_offset=offset + len(sliced) if has_more_restaurants else None,
    )
    return FinalizedCards(cards=sliced, meta=meta)


def _card_total(card: RestaurantCard) -> int:
    if card.pagination and card.pagination.shown == len(card.matches):
        return max(card.pagination.total, len(card.matches))
    return len(card.matches)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def finalize(
    cards: List[RestaurantCard],
    state: ChatState,
    intent: Intent,
    was_tag_filtered: bool = False,
    offset: int = 0,
    prior: Optional[TruncationMeta] = None,
) -> FinalizedCards:
    """Run the rules in order and truncate.

    ``prior`` is the meta of the pass that produced ``cards``.  Restaurants
    and dishes that pass cut away stay counted in the new meta.
    """
    out = isolate_focus(cards, state)
    if was_tag_filtered:
        out = filter_relevant(out, intent.dish_query)
    out = filter_dish_query(out, intent)
    out = dedupe_cards(out)
    out = sort_by_match_count(out)
    result = truncate_cards(out, offset=offset)
    if prior is not None:
        result.meta = _carry_over(result.meta, prior, cards, result.cards)
    logger.debug(
        f"Finalized {len(cards)} → {len(result.cards)} cards "
        f"({result.matches_count} dishes, truncated={result.meta.truncated})"
    )
    return result


def _carry_over(
    meta: TruncationMeta,
    prior: TruncationMeta,
    page: List[RestaurantCard],
    shown: List[RestaurantCard],
) -> TruncationMeta:
    if prior.next_offset is not None:
        page_start = prior.next_offset - prior.restaurants_returned
    else:
        page_start = max(0, prior.total_restaurants - prior.restaurants_returned)
    later = max(0, prior.total_restaurants - page_start - prior.restaurants_returned)
    cut_matches = max(0, prior.total_matches - sum(_card_total(c) for c in page))

    total_matches = meta.total_matches + cut_matches
    has_more = later > 0 or meta.next_offset is not None
    return meta.model_copy(update={
        "total_restaurants": page_start + meta.total_restaurants + later,
        "total_matches": total_matches,
        "truncated": has_more or total_matches > sum(len(c.matches) for c in shown),
        "next_offset": page_start + meta.restaurants_returned if has_more else None,
    })
