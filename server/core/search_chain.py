"""Fallback Search Chain: a strict ladder of search primitives.

Steps run sequentially and stop at the first one that yields cards:

    A  strict tags + query text + city
    B  strict tags only (same city)
    C  fuzzy query, strict threshold, city filtered
    D  fuzzy query, loose threshold, no city filter
    E  a few public restaurants with no dish matches ("no results")

Only A and B count as tag-filtered.  Errors from the primitives
propagate; an empty step simply moves on to the next.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from config.settings import settings
from core.trace import RequestTrace
from database.repositories.search_repo import SearchRepository
from models.cards import DishMatch, RestaurantCard

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    cards: List[RestaurantCard]
    step: str  # "A" | "B" | "C" | "D" | "E"
    was_tag_filtered: bool

    @property
    def is_no_results(self) -> bool:
        return self.step == "E"


def _price(value) -> Optional[float]:
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price >= 0 else None


def _sort_matches(card: RestaurantCard) -> RestaurantCard:
    card.matches.sort(key=lambda d: d.name.lower())
    return card


def rows_to_cards(rows: List[dict]) -> List[RestaurantCard]:
    """Group flat per-dish rows into restaurant cards, first-seen restaurant order."""
    cards: dict[str, RestaurantCard] = {}
    for row in rows:
        restaurant_id = row.get("restaurant_id")
        if not restaurant_id:
            continue
        card = cards.get(restaurant_id)
        if card is None:
            card = RestaurantCard(
                id=restaurant_id,
                name=row.get("restaurant_name") or "",
                city=row.get("restaurant_city") or row.get("city"),
                address=row.get("restaurant_address"),
            )
            cards[restaurant_id] = card
        if not row.get("dish_id"):
            continue
        if any(m.id == row["dish_id"] for m in card.matches):
            continue
        card.matches.append(DishMatch(
            id=row["dish_id"],
            name=row.get("dish_name") or "",
            description=row.get("dish_description"),
            price=_price(row.get("dish_price", row.get("price"))),
            section_name=row.get("section_name"),
            tags=list(row.get("matched_tags") or []),
        ))
    return [_sort_matches(card) for card in cards.values()]


def fuzzy_rows_to_cards(rows: List[dict]) -> List[RestaurantCard]:
    """Fuzzy rows are per restaurant with a ``matching_dishes`` list.

    Restaurants without matching dishes are dropped.
    """
    cards = []
    for row in rows:
        dishes = row.get("matching_dishes")
        if not isinstance(dishes, list) or not dishes:
            continue
        card = RestaurantCard(
            id=row["restaurant_id"],
            name=row.get("restaurant_name") or "",
            city=row.get("restaurant_city"),
            address=row.get("restaurant_address"),
            service_options=row.get("service_options") or {},
            matches=[
                DishMatch(
                    id=d["id"],
                    name=d.get("name") or "",
                    description=d.get("description"),
                    price=_price(d.get("price")),
                    section_name=d.get("section_name"),
                )
                for d in dishes
                if d.get("id")
            ],
        )
        if card.matches:
            cards.append(_sort_matches(card))
    return cards


class FallbackSearchChain:
    """Runs the A→E ladder against the search repository."""

    def __init__(self, search_repo: SearchRepository):
        self.search_repo = search_repo

    async def search(
        self,
        tag_ids: List[str],
        query_text: Optional[str],
        city: Optional[str],
        trace: Optional[RequestTrace] = None,
    ) -> SearchResult:
        result = await self._run_steps(tag_ids, (query_text or "").strip() or None, city)
        if result.cards:
            await self._enrich(result.cards)
        if trace is not None:
            trace.add(
                "search",
                step=result.step,
                tags=len(tag_ids),
                cards=len(result.cards),
                tag_filtered=result.was_tag_filtered,
            )
        return result

    async def _run_steps(
        self,
        tag_ids: List[str],
        query_text: Optional[str],
        city: Optional[str],
    ) -> SearchResult:
        if tag_ids:
            rows = await self.search_repo.search_by_tags_strict(
                tag_ids, query_text=query_text, city=city, limit=settings.SEARCH_LIMIT
            )
            cards = rows_to_cards(rows)
            if cards:
                return SearchResult(cards, "A", True)

            rows = await self.search_repo.search_by_tags_strict(
                tag_ids, query_text=None, city=city, limit=settings.SEARCH_LIMIT
            )
            cards = rows_to_cards(rows)
            if cards:
                return SearchResult(cards, "B", True)

        if query_text:
            rows = await self.search_repo.search_fuzzy(
                query_text, city=city, threshold=settings.FUZZY_STRICT_THRESHOLD
            )
            cards = fuzzy_rows_to_cards(rows)
            if cards:
                return SearchResult(cards, "C", False)

            rows = await self.search_repo.search_fuzzy(
                query_text, city=None, threshold=settings.FUZZY_LOOSE_THRESHOLD
            )
            cards = fuzzy_rows_to_cards(rows)
            if cards:
                return SearchResult(cards, "D", False)

        rows = await self.search_repo.list_searchable_restaurants(
            limit=settings.FALLBACK_RESTAURANT_LIMIT
        )
        cards = [
            RestaurantCard(id=r["id"], name=r.get("name") or "", city=r.get("city"), address=r.get("address"))
            for r in rows
        ]
        logger.info(f"Search fell through to step E ({len(cards)} restaurants)")
        return SearchResult(cards, "E", False)

    async def _enrich(self, cards: List[RestaurantCard]) -> None:
        """Owner ids and dish tag slugs, fetched concurrently. Never filters."""
        dish_ids = [m.id for card in cards for m in card.matches]
        owners, tags_by_dish = await asyncio.gather(
            self.search_repo.get_owner_ids([c.id for c in cards]),
            self.search_repo.get_dish_tags(dish_ids),
        )
        for card in cards:
            card.owner_id = owners.get(card.id, card.owner_id)
            for match in card.matches:
                tags = tags_by_dish.get(match.id)
                if tags:
                    slugs = [t.get("slug") or t.get("name") for t in tags]
                    match.tags = [s for s in slugs if s]
