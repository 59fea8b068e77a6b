"""Result card models shown to the user"""
from pydantic import BaseModel, Field
from typing import Optional, Any


class DishMatch(BaseModel):
    """A dish matched by a search, as rendered inside a restaurant card"""
    id: str
    name: str
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)  # menu currency, None if unknown
    section_name: Optional[str] = None
    tags: list[str] = []  # tag slugs


class CardPagination(BaseModel):
    shown: int
    total: int
    remaining: int
    next_offset: Optional[int] = None  # None means nothing left to load


class RestaurantCard(BaseModel):
    """Restaurant identity plus the dishes that matched the query"""
    id: str
    name: str
    city: Optional[str] = None
    address: Optional[str] = None
    owner_id: Optional[str] = None
    service_options: dict[str, Any] = {}
    # profile fields, filled for restaurant lookups only
    cuisine_type: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    opening_hours: dict[str, str] = {}
    amenities: dict[str, Any] = {}
    is_open_now: Optional[bool] = None
    today_hours: Optional[str] = None
    matches: list[DishMatch] = []
    more_dishes_count: int = 0
    pagination: Optional[CardPagination] = None


class TruncationMeta(BaseModel):
    total_restaurants: int = 0
    total_matches: int = 0
    truncated: bool = False
    restaurants_returned: int = 0
    dishes_per_restaurant: int = 0
    next_offset: Optional[int] = None


class RestaurantPatch(BaseModel):
    """Incremental update for a single card ("load more" inside a card)"""
    restaurant_id: str
    append_matches: list[DishMatch] = []
    pagination: Optional[CardPagination] = None


class MenuSection(BaseModel):
    name: str
    items: list[DishMatch] = []


class PublicMenu(BaseModel):
    """A restaurant's public dishes grouped by menu section"""
    restaurant_id: str
    restaurant_name: str
    city: Optional[str] = None
    sections: list[MenuSection] = []

    def dishes(self) -> list[DishMatch]:
        return [item for section in self.sections for item in section.items]
