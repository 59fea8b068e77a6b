"""Tag Resolver: maps loose dietary/allergen words to canonical catalogue tags."""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from core.text_matching import slugify
from database.repositories.tag_repo import TagRepository

logger = logging.getLogger(__name__)

ALLOWED_TAG_TYPES = ("diet", "dietary", "religious", "allergen")

# Last-resort ids for the tags every deployment seeds
CANONICAL_TAG_IDS = {
    "vegetarian": "a445264b-a969-4606-9507-ba77d0d6fc0c",
    "vegan": "3706cb32-a6e3-415e-8a45-31880a484e4d",
    "halal": "e37ac27a-9114-423e-ae51-633f2e279e41",
    "satvik": "3225bfa4-b07c-4d83-a8d6-67abba545bb7",
}


@dataclass(frozen=True)
class ResolvedTag:
    term: str
    tag_id: str
    slug: str
    name: str
    method: str  # alias | alias_swapped | slug | name | canonical


class TagResolver:
    """
    Resolves each term by trying, in order:
    1. exact alias lookup
    2. alias lookup with spaces and hyphens swapped
    3. slug match restricted to diet/dietary/religious/allergen tags
    4. fuzzy name lookup
    5. the static canonical map

    The first method that succeeds wins.  Results are de-duplicated by
    tag id.  A failing lookup is logged and the next method is tried, so
    resolution never raises; terms nothing matches are omitted.
    """

    def __init__(self, tag_repo: TagRepository):
        self.tag_repo = tag_repo

    async def resolve(self, terms: List[str]) -> List[ResolvedTag]:
        resolved: List[ResolvedTag] = []
        seen_ids: set[str] = set()

        for raw in terms:
            term = (raw or "").strip()
            if not term:
                continue
            tag = await self._resolve_term(term)
            if tag is None:
                logger.info(f"No tag found for '{term}'")
                continue
            if tag.tag_id in seen_ids:
                continue
            seen_ids.add(tag.tag_id)
            resolved.append(tag)

        return resolved

    async def _resolve_term(self, term: str) -> Optional[ResolvedTag]:
        strategies: List[tuple[str, Callable[[str], Awaitable[Optional[dict]]]]] = [
            ("alias", self._by_alias),
            ("alias_swapped", self._by_swapped_alias),
            ("slug", self._by_slug),
            ("name", self.tag_repo.find_tag_by_name),
        ]
        for method, strategy in strategies:
            try:
                tag = await strategy(term)
            except Exception as e:
                logger.warning(f"Tag lookup '{method}' failed for '{term}': {e}")
                continue
            if tag:
                return ResolvedTag(
                    term=term,
                    tag_id=tag["id"],
                    slug=tag.get("slug") or slugify(term),
                    name=tag.get("name") or term,
                    method=method,
                )

        canonical = CANONICAL_TAG_IDS.get(term.lower())
        if canonical:
            return ResolvedTag(
                term=term,
                tag_id=canonical,
                slug=term.lower(),
                name=term.lower(),
                method="canonical",
            )
        return None

    async def _by_alias(self, term: str) -> Optional[dict]:
        alias = await self.tag_repo.find_alias(term)
        if not alias:
            return None
        return await self.tag_repo.find_tag(alias["tag_type"], alias["tag_slug"])

    async def _by_swapped_alias(self, term: str) -> Optional[dict]:
        if " " in term:
            variant = term.replace(" ", "-")
        elif "-" in term:
            variant = term.replace("-", " ")
        else:
            return None
        return await self._by_alias(variant)

    async def _by_slug(self, term: str) -> Optional[dict]:
        slug = slugify(term)
        if not slug:
            return None
        return await self.tag_repo.find_tag_by_slug(slug, ALLOWED_TAG_TYPES)
