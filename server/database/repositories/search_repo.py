"""Search primitives: stored procedures and catalogue reads used by the search ladder."""
from asyncio import to_thread
from typing import Optional, List
from supabase import Client
import logging

logger = logging.getLogger(__name__)


class SearchRepository:
    """Thin async wrappers around the public search RPCs.

    Every method raises on database errors.  An empty list always means
    "no rows", never "the call failed".
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def search_by_tags_strict(
        self,
        tag_ids: List[str],
        query_text: Optional[str] = None,
        city: Optional[str] = None,
        limit: int = 20,
    ) -> List[dict]:
        """Dishes carrying ALL ``tag_ids``, optionally narrowed by a substring query.

        Rows are flat (one per dish) and ordered by dish name.
        """
        params = {
            "dietary_tag_ids": tag_ids or None,
            "query_text": query_text or None,
            "target_city": city or None,
            "service_filters": None,
            "limit_count": limit,
        }
        try:
            response = await to_thread(
                lambda: self.supabase.rpc("search_public_dishes_by_tags_strict", params).execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Strict tag search failed: {e}")
            raise

    async def search_fuzzy(
        self,
        text: str,
        city: Optional[str] = None,
        threshold: float = 0.3,
        tag_ids: Optional[List[str]] = None,
    ) -> List[dict]:
        """Trigram search. Rows are per restaurant with a ``matching_dishes`` JSON list."""
        params = {
            "search_text": text,
            "target_city": city or None,
            "similarity_threshold": threshold,
            "dietary_tag_ids": tag_ids or None,
            "service_filters": None,
        }
        try:
            response = await to_thread(
                lambda: self.supabase.rpc("search_public_dishes_fuzzy", params).execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Fuzzy search failed: {e}")
            raise

    async def search_semantic(
        self,
        embedding: List[float],
        city: Optional[str] = None,
        tag_ids: Optional[List[str]] = None,
        limit: int = 50,
    ) -> List[dict]:
        """Vector similarity search. Rows are flat (one per dish)."""
        params = {
            "query_embedding": embedding,
            "target_city": city or None,
            "dietary_tag_ids": tag_ids or None,
            "service_filters": None,
            "limit_count": limit,
        }
        try:
            response = await to_thread(
                lambda: self.supabase.rpc("search_public_dishes_semantic", params).execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Semantic search failed: {e}")
            raise

    async def search_restaurant_by_name(self, text: str) -> List[dict]:
        """Trigram restaurant name search: ``[{id, name, city, similarity_score}]``."""
        try:
            response = await to_thread(
                lambda: self.supabase.rpc(
                    "search_restaurant_by_name", {"search_text": text}
                ).execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Restaurant name search failed: {e}")
            raise

    async def list_searchable_restaurants(self, limit: int = 5) -> List[dict]:
        """Alphabetical list of publicly searchable restaurants."""
        try:
            response = await to_thread(
                lambda: self.supabase.table("restaurants")
                .select("id, name, city, address")
                .eq("public_searchable", True)
                .order("name")
                .limit(limit)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Error listing searchable restaurants: {e}")
            raise

    async def get_owner_ids(self, restaurant_ids: List[str]) -> dict[str, str]:
        if not restaurant_ids:
            return {}
        try:
            response = await to_thread(
                lambda: self.supabase.table("restaurants")
                .select("id, owner_id")
                .in_("id", restaurant_ids)
                .execute()
            )
            return {
                row["id"]: row["owner_id"]
                for row in (response.data or [])
                if row.get("owner_id")
            }
        except Exception as e:
            logger.error(f"Error loading restaurant owners: {e}")
            raise

    async def get_dish_tags(self, dish_ids: List[str]) -> dict[str, List[dict]]:
        """Map dish id → ``[{name, slug, type}]`` for the given dishes."""
        if not dish_ids:
            return {}
        try:
            response = await to_thread(
                lambda: self.supabase.table("dish_tags")
                .select("dish_id, tags(name, slug, type)")
                .in_("dish_id", dish_ids)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading dish tags: {e}")
            raise

        tags_by_dish: dict[str, List[dict]] = {}
        for row in response.data or []:
            tag = row.get("tags")
            if not tag:
                continue
            tags_by_dish.setdefault(row["dish_id"], []).append(tag)
        return tags_by_dish
