"""Tag catalogue repository (tags and tag_aliases tables)."""
from asyncio import to_thread
from typing import Optional, Sequence
from supabase import Client
import logging

logger = logging.getLogger(__name__)


class TagRepository:
    """Lookups against the canonical tag catalogue. All methods raise on DB errors."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def find_alias(self, term: str) -> Optional[dict]:
        """Case-insensitive alias lookup → ``{tag_type, tag_slug}`` or None."""
        response = await to_thread(
            lambda: self.supabase.table("tag_aliases")
            .select("tag_type, tag_slug")
            .ilike("alias", term)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_tag(self, tag_type: str, slug: str) -> Optional[dict]:
        response = await to_thread(
            lambda: self.supabase.table("tags")
            .select("id, name, slug, type")
            .eq("type", tag_type)
            .eq("slug", slug)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_tag_by_slug(self, slug: str, allowed_types: Sequence[str]) -> Optional[dict]:
        response = await to_thread(
            lambda: self.supabase.table("tags")
            .select("id, name, slug, type")
            .eq("slug", slug)
            .in_("type", list(allowed_types))
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_tag_by_name(self, term: str) -> Optional[dict]:
        response = await to_thread(
            lambda: self.supabase.table("tags")
            .select("id, name, slug, type")
            .ilike("name", term)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None
