"""Conversation state threaded through every turn.

The caller owns this record and sends it back on every request.  The
engine reads it, never mutates it in place, and returns a new version.
"""
from pydantic import BaseModel
from typing import Literal, Optional

from models.cards import RestaurantCard


class GroundedDish(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    section_name: Optional[str] = None
    tags: list[str] = []


class GroundedRestaurant(BaseModel):
    id: str
    name: str
    dishes: list[GroundedDish] = []


class GroundedState(BaseModel):
    """What the user was just shown (post-truncation, never raw retrieval)"""
    restaurants: list[GroundedRestaurant] = []
    last_query: Optional[str] = None
    last_dietary: list[str] = []
    last_matches_count: int = 0
    last_was_no_results: bool = False

    @classmethod
    def from_cards(
        cls,
        cards: list[RestaurantCard],
        last_query: Optional[str],
        last_dietary: list[str],
    ) -> "GroundedState":
        restaurants = [
            GroundedRestaurant(
                id=card.id,
                name=card.name,
                dishes=[
                    GroundedDish(
                        id=d.id,
                        name=d.name,
                        description=d.description,
                        price=d.price,
                        section_name=d.section_name,
                        tags=list(d.tags),
                    )
                    for d in card.matches
                ],
            )
            for card in cards
        ]
        return cls(
            restaurants=restaurants,
            last_query=last_query,
            last_dietary=list(last_dietary),
            last_matches_count=sum(len(r.dishes) for r in restaurants),
            last_was_no_results=not cards,
        )

    def dish_ids(self) -> set[str]:
        return {d.id for r in self.restaurants for d in r.dishes}


class LastResultDish(BaseModel):
    """Flattened per-dish grounding record matched by follow-ups"""
    dish_id: str
    dish_name: str
    restaurant_id: str
    restaurant_name: str
    tag_slugs: list[str] = []
    price: Optional[float] = None
    description: Optional[str] = None


class RestaurantCursor(BaseModel):
    """Per-restaurant pagination position; next_offset None = exhausted"""
    restaurant_id: str
    restaurant_name: str
    shown_count: int = 0
    total_matches: int = 0
    next_offset: Optional[int] = None


class SearchParams(BaseModel):
    dietary: list[str] = []
    dish_query: Optional[str] = None
    city: Optional[str] = None
    offset: int = 0


class LastExplain(BaseModel):
    dish_name: Optional[str] = None
    restaurant_name: Optional[str] = None
    text: str
    language: str = "en"


class Prefs(BaseModel):
    language: Optional[str] = None
    dietary: list[str] = []
    city: Optional[str] = None
    budget_max: Optional[float] = None


class ChatState(BaseModel):
    mode: Literal["discovery", "restaurant"] = "discovery"
    current_restaurant_id: Optional[str] = None
    current_restaurant_name: Optional[str] = None
    grounded: Optional[GroundedState] = None
    last_results: list[LastResultDish] = []
    last_search_params: Optional[SearchParams] = None
    next_offset: Optional[int] = None
    restaurant_cursors: list[RestaurantCursor] = []
    prefs: Prefs = Prefs()
    last_explain: Optional[LastExplain] = None

    def cursor_for(self, restaurant_id: str) -> Optional[RestaurantCursor]:
        for cursor in self.restaurant_cursors:
            if cursor.restaurant_id == restaurant_id:
                return cursor
        return None

    def with_cursor(self, cursor: RestaurantCursor) -> "ChatState":
        """Return a copy with ``cursor`` replacing any cursor for the same restaurant."""
        others = [c for c in self.restaurant_cursors if c.restaurant_id != cursor.restaurant_id]
        return self.model_copy(update={"restaurant_cursors": [*others, cursor]}, deep=True)


def last_results_from_cards(cards: list[RestaurantCard]) -> list[LastResultDish]:
    return [
        LastResultDish(
            dish_id=d.id,
            dish_name=d.name,
            restaurant_id=card.id,
            restaurant_name=card.name,
            tag_slugs=list(d.tags),
            price=d.price,
            description=d.description,
        )
        for card in cards
        for d in card.matches
    ]


def cursors_from_cards(cards: list[RestaurantCard]) -> list[RestaurantCursor]:
    cursors = []
    for card in cards:
        shown = card.pagination.shown if card.pagination else len(card.matches)
        total = card.pagination.total if card.pagination else len(card.matches)
        cursors.append(
            RestaurantCursor(
                restaurant_id=card.id,
                restaurant_name=card.name,
                shown_count=shown,
                total_matches=total,
                next_offset=card.pagination.next_offset if card.pagination else None,
            )
        )
    return cursors
