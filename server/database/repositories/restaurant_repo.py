"""Restaurant and menu repository for the public catalogue."""
from asyncio import to_thread
from typing import Optional, List
from supabase import Client
import logging

logger = logging.getLogger(__name__)

RESTAURANT_COLUMNS = (
    "id, name, city, address, cuisine_type, phone, email, website, opening_hours, "
    "accepts_dine_in, accepts_takeaway, accepts_delivery, accepts_reservations, "
    "amenities, timezone, owner_id"
)

DISH_COLUMNS = "id, name, description, price, sections(name), menus!inner(restaurant_id)"


def _flatten_dish(row: dict) -> dict:
    section = row.get("sections") or {}
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row.get("description"),
        "price": row.get("price"),
        "section_name": section.get("name") if isinstance(section, dict) else None,
    }


class RestaurantRepository:
    """Read-only access to public restaurants and their dishes. Raises on DB errors."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def find_by_name(
        self,
        name: str,
        city: Optional[str] = None,
        limit: int = 5,
    ) -> List[dict]:
        def _query():
            query = (
                self.supabase.table("restaurants")
                .select(RESTAURANT_COLUMNS)
                .eq("public_searchable", True)
                .ilike("name", f"%{name}%")
            )
            if city:
                query = query.ilike("city", f"%{city}%")
            return query.limit(limit).execute()

        try:
            response = await to_thread(_query)
            return response.data or []
        except Exception as e:
            logger.error(f"Error finding restaurant by name '{name}': {e}")
            raise

    async def get_by_id(self, restaurant_id: str) -> Optional[dict]:
        try:
            response = await to_thread(
                lambda: self.supabase.table("restaurants")
                .select(RESTAURANT_COLUMNS)
                .eq("id", restaurant_id)
                .limit(1)
                .execute()
            )
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting restaurant {restaurant_id}: {e}")
            raise

    async def list_searchable(self) -> List[dict]:
        """All publicly searchable restaurants (id, name, city) for name resolution."""
        try:
            response = await to_thread(
                lambda: self.supabase.table("restaurants")
                .select("id, name, city")
                .eq("public_searchable", True)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Error listing restaurants: {e}")
            raise

    async def get_public_dishes(
        self,
        restaurant_id: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[dict]:
        """Public dishes of a restaurant in stable menu order, optionally paged."""
        def _query():
            query = (
                self.supabase.table("dishes")
                .select(DISH_COLUMNS)
                .eq("menus.restaurant_id", restaurant_id)
                .eq("public", True)
                .order("created_at")
                .order("id")
            )
            if limit is not None:
                query = query.range(offset, offset + limit - 1)
            return query.execute()

        try:
            response = await to_thread(_query)
            return [_flatten_dish(row) for row in (response.data or [])]
        except Exception as e:
            logger.error(f"Error loading dishes for restaurant {restaurant_id}: {e}")
            raise

    async def search_dishes_by_name(
        self,
        restaurant_id: str,
        text: str,
        limit: int = 10,
    ) -> List[dict]:
        """Direct substring match on dish names within one restaurant."""
        try:
            response = await to_thread(
                lambda: self.supabase.table("dishes")
                .select(DISH_COLUMNS)
                .eq("menus.restaurant_id", restaurant_id)
                .eq("public", True)
                .ilike("name", f"%{text}%")
                .limit(limit)
                .execute()
            )
            return [_flatten_dish(row) for row in (response.data or [])]
        except Exception as e:
            logger.error(f"Error searching dishes in restaurant {restaurant_id}: {e}")
            raise
