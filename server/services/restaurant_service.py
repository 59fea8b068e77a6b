"""Restaurant service: lookups, profiles, public menus and in-restaurant search."""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rapidfuzz.distance import Levenshtein

from config.settings import settings
from core.search_chain import _price
from core.tag_resolver import TagResolver
from core.text_matching import is_similar, normalize_text
from database.repositories.restaurant_repo import RestaurantRepository
from database.repositories.search_repo import SearchRepository
from integrations.llm.client import LLMClient
from models.cards import CardPagination, DishMatch, MenuSection, PublicMenu, RestaurantCard
from models.chat_state import GroundedState
from models.intent import Intent

logger = logging.getLogger(__name__)

_HOURS_RE = re.compile(r"(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})")
_MENU_NAME_RE = re.compile(r"[^a-z0-9]")
_TAG_QUESTION_RE = re.compile(r"\b(halal|vegan|vegetarian|is it|is the|does|is this)\b", re.IGNORECASE)

OTHER_SECTION = "Other"


class MenuSubAction(str, Enum):
    VERIFY_TAG = "VERIFY_TAG"      # dish + hard tag: "is the butter chicken halal?"
    LIST_TAGGED = "LIST_TAGGED"    # hard tag only: "vegan options?"
    SEARCH_NAME = "SEARCH_NAME"    # dish only: "do they have naan?"
    BROWSE = "BROWSE"


@dataclass
class MenuResolution:
    matched: Optional[dict] = None  # {id, name}
    candidates: List[dict] = field(default_factory=list)  # [{id, name, score}]


@dataclass
class MenuSearchResult:
    restaurant_id: str
    restaurant_name: str
    sub_action: MenuSubAction
    dishes: List[DishMatch] = field(default_factory=list)
    best_match: Optional[DishMatch] = None


@dataclass
class MenuPage:
    restaurant_id: str
    restaurant_name: str
    dishes: List[DishMatch]
    pagination: CardPagination


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def compute_open_status(
    opening_hours: Optional[dict],
    timezone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[bool, Optional[str]]:
    """(is_open, today's hours text) for ``"HH:MM-HH:MM"`` day entries.

    A closing time at or before the opening time means the range runs
    past midnight.
    """
    if not opening_hours:
        return False, None

    try:
        tz = ZoneInfo(timezone or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{timezone}', using {settings.DEFAULT_TIMEZONE}")
        tz = ZoneInfo(settings.DEFAULT_TIMEZONE)
    local = now.astimezone(tz) if now else datetime.now(tz)

    day = local.strftime("%A").lower()
    today = opening_hours.get(day) or opening_hours.get(day[:3])
    if not today or str(today).strip().lower() == "closed":
        return False, "Closed today"

    match = _HOURS_RE.search(str(today))
    if not match:
        return False, str(today)

    open_h, open_m, close_h, close_m = (int(g) for g in match.groups())
    current = local.hour * 60 + local.minute
    opens, closes = open_h * 60 + open_m, close_h * 60 + close_m
    if closes <= opens:
        is_open = current >= opens or current < closes
    else:
        is_open = opens <= current < closes
    return is_open, str(today)


def status_line(card: RestaurantCard) -> str:
    if card.is_open_now:
        return "Open now" + (f" • {card.today_hours}" if card.today_hours else "")
    return "Closed" + (f" • Opens: {card.today_hours}" if card.today_hours else "")


def normalize_restaurant_name(name: str) -> str:
    return _MENU_NAME_RE.sub("", (name or "").lower().replace("'", "").replace("`", ""))


def score_restaurant_name(search: str, name: str) -> float:
    """100 exact, 80/70 containment, otherwise Levenshtein similarity (0-100)."""
    if not search or not name:
        return 0.0
    if name == search:
        return 100.0
    if search in name:
        return 80.0
    if name in search:
        return 70.0
    distance = Levenshtein.distance(search, name)
    return max(0.0, 100.0 - distance / max(len(search), len(name)) * 100.0)


def matches_precision_gate(dish_name: str, query_words: Sequence[str]) -> bool:
    """Two query words must match a multi-word query; one (of similar length) otherwise."""
    dish_words = [w for w in dish_name.lower().split() if len(w) >= 2]
    if not query_words or not dish_words:
        return False
    if len(query_words) >= 2:
        matched = sum(1 for q in query_words if any(is_similar(q, d) for d in dish_words))
        return matched >= 2
    return any(
        is_similar(q, d) and abs(len(q) - len(d)) <= 2
        for q in query_words
        for d in dish_words
    )


def best_matching_dish(dishes: Sequence[DishMatch], query: str) -> Optional[DishMatch]:
    query_words = [w for w in query.lower().split() if len(w) >= 2]
    best, best_score = None, 0
    for dish in dishes:
        dish_words = [w for w in dish.name.lower().split() if len(w) >= 2]
        score = sum(1 for q in query_words if any(is_similar(q, d) for d in dish_words))
        if score > best_score:
            best, best_score = dish, score
    return best


def _row_to_dish(row: dict) -> DishMatch:
    return DishMatch(
        id=row.get("dish_id") or row["id"],
        name=row.get("dish_name") or row.get("name") or "",
        description=row.get("dish_description", row.get("description")),
        price=_price(row.get("dish_price", row.get("price"))),
        section_name=row.get("section_name"),
    )


def _format_price(price: Optional[float]) -> str:
    if price is None:
        return ""
    amount = int(price) if float(price).is_integer() else price
    return f" ({amount} {settings.CURRENCY_LABEL})"


def describe_menu_search(result: MenuSearchResult, intent: Intent) -> str:
    """Deterministic reply for a restaurant-mode search."""
    restaurant = result.restaurant_name
    query = intent.original_query or ""
    tag = (intent.hard_tags or intent.dietary or [None])[0]

    if tag and _TAG_QUESTION_RE.search(query) and result.sub_action != MenuSubAction.LIST_TAGGED:
        if result.best_match is not None:
            return f"✅ Yes — {result.best_match.name} at {restaurant} is tagged {tag}."
        if result.dishes:
            return (
                f"❌ I can't confirm {intent.dish_query or 'that dish'} at {restaurant} as {tag}. "
                f"It's not tagged {tag} in our data. But I found {len(result.dishes)} other {tag} options."
            )
        return f"❌ I can't find any dishes tagged {tag} at {restaurant} in our database."

    if not result.dishes:
        return f"No dishes found matching your search at {restaurant}."

    header = f"Here are {tag} options I found at {restaurant}:" if tag else f"Here's what I found at {restaurant}:"
    lines = [f"- {d.name}{_format_price(d.price)}" for d in result.dishes[:5]]
    return "\n".join([header, *lines])


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class RestaurantService:
    """Restaurant-level operations. Database errors propagate to the caller."""

    def __init__(
        self,
        restaurant_repo: RestaurantRepository,
        search_repo: SearchRepository,
        tag_resolver: TagResolver,
        llm_client: Optional[LLMClient] = None,
    ):
        self.restaurant_repo = restaurant_repo
        self.search_repo = search_repo
        self.tag_resolver = tag_resolver
        self.llm = llm_client

    # -- lookup / profile -------------------------------------------------

    async def find_best_restaurant_match(self, name: str, city: Optional[str] = None) -> Optional[dict]:
        """Best public restaurant row for ``name``: ilike first, trigram RPC second."""
        query = (name or "").strip()
        if not query:
            return None

        rows = await self.restaurant_repo.find_by_name(query, city=city, limit=5)
        if rows:
            wanted = query.lower()
            return max(rows, key=lambda r: 1000 if r["name"].lower() == wanted else len(r["name"]))

        fuzzy = await self.search_repo.search_restaurant_by_name(query)
        if not fuzzy:
            logger.info(f"No restaurant matches '{query}'")
            return None
        return await self.restaurant_repo.get_by_id(fuzzy[0]["id"])

    async def build_profile(self, restaurant: dict) -> RestaurantCard:
        """Profile card with open status and a three-dish preview."""
        is_open, today_hours = compute_open_status(
            restaurant.get("opening_hours"), restaurant.get("timezone")
        )
        preview = await self.restaurant_repo.get_public_dishes(restaurant["id"], offset=0, limit=3)
        service_options = {
            key: restaurant[key]
            for key in ("accepts_dine_in", "accepts_takeaway", "accepts_delivery", "accepts_reservations")
            if restaurant.get(key) is not None
        }
        return RestaurantCard(
            id=restaurant["id"],
            name=restaurant.get("name") or "",
            city=restaurant.get("city"),
            address=restaurant.get("address"),
            owner_id=restaurant.get("owner_id"),
            service_options=service_options,
            cuisine_type=restaurant.get("cuisine_type"),
            phone=restaurant.get("phone"),
            website=restaurant.get("website"),
            opening_hours=restaurant.get("opening_hours") or {},
            amenities=restaurant.get("amenities") or {},
            is_open_now=is_open,
            today_hours=today_hours,
            matches=[_row_to_dish(row) for row in preview],
        )

    # -- menus ------------------------------------------------------------

    async def resolve_restaurant_for_menu(
        self,
        query: str,
        restaurant_name: Optional[str] = None,
        grounded: Optional[GroundedState] = None,
    ) -> MenuResolution:
        search = normalize_restaurant_name(restaurant_name or query)
        if not search:
            return MenuResolution()

        if grounded is not None:
            for r in grounded.restaurants:
                if normalize_restaurant_name(r.name) == search:
                    return MenuResolution(matched={"id": r.id, "name": r.name})
            for r in grounded.restaurants:
                name = normalize_restaurant_name(r.name)
                if name and (search in name or name in search):
                    return MenuResolution(matched={"id": r.id, "name": r.name})

        rows = await self.restaurant_repo.list_searchable()
        scored = [
            {"id": r["id"], "name": r["name"], "score": score_restaurant_name(search, normalize_restaurant_name(r["name"]))}
            for r in rows
        ]
        candidates = sorted((c for c in scored if c["score"] > 40), key=lambda c: c["score"], reverse=True)[:3]
        if candidates and candidates[0]["score"] >= 60:
            top = candidates[0]
            return MenuResolution(matched={"id": top["id"], "name": top["name"]}, candidates=candidates)
        return MenuResolution(candidates=candidates)

    async def get_public_menu(self, restaurant_id: str) -> Optional[PublicMenu]:
        restaurant = await self.restaurant_repo.get_by_id(restaurant_id)
        if restaurant is None:
            return None

        rows = await self.restaurant_repo.get_public_dishes(restaurant_id)
        tags_by_dish = await self.search_repo.get_dish_tags([row["id"] for row in rows])

        sections: dict[str, List[DishMatch]] = {}
        for row in rows:
            dish = _row_to_dish(row)
            dish.tags = [t.get("slug") or t.get("name") for t in tags_by_dish.get(dish.id, []) if t.get("slug") or t.get("name")]
            sections.setdefault(row.get("section_name") or OTHER_SECTION, []).append(dish)

        return PublicMenu(
            restaurant_id=restaurant["id"],
            restaurant_name=restaurant.get("name") or "",
            city=restaurant.get("city"),
            sections=[
                MenuSection(name=name, items=items)
                for name, items in sorted(sections.items(), key=lambda item: item[0].lower())
                if items
            ],
        )

    async def page_menu(
        self,
        restaurant_id: str,
        offset: int = 0,
        dietary: Sequence[str] = (),
        page_size: Optional[int] = None,
    ) -> Optional[MenuPage]:
        """One page of the public menu in stable menu order, optionally diet-filtered."""
        menu = await self.get_public_menu(restaurant_id)
        if menu is None:
            return None

        page_size = page_size or settings.MENU_PAGE_SIZE
        dishes = menu.dishes()
        wanted = [d.lower() for d in dietary if d]
        if wanted:
            dishes = [d for d in dishes if any(w in slug.lower() for w in wanted for slug in d.tags)]

        start = max(0, offset)
        page = dishes[start:start + page_size]
        shown = start + len(page)
        total = len(dishes)
        return MenuPage(
            restaurant_id=menu.restaurant_id,
            restaurant_name=menu.restaurant_name,
            dishes=page,
            pagination=CardPagination(
                shown=shown,
                total=total,
                remaining=max(0, total - shown),
                next_offset=shown if shown < total else None,
            ),
        )

    # -- in-restaurant search --------------------------------------------

    async def search_menu_in_restaurant(self, restaurant: dict, intent: Intent) -> MenuSearchResult:
        restaurant_id = restaurant["id"]
        query = normalize_text(intent.dish_query or "")
        if not query and intent.ingredients:
            query = normalize_text(" ".join(intent.ingredients))
        query_words = [w for w in query.split() if len(w) >= 2]

        hard_tags = bool(intent.hard_tags)
        if hard_tags and query:
            sub_action = MenuSubAction.VERIFY_TAG
        elif hard_tags:
            sub_action = MenuSubAction.LIST_TAGGED
        elif query:
            sub_action = MenuSubAction.SEARCH_NAME
        else:
            sub_action = MenuSubAction.BROWSE

        terms = list(dict.fromkeys([*intent.hard_tags, *intent.dietary, *intent.allergy]))
        resolved = await self.tag_resolver.resolve(terms) if terms else []
        tag_ids = [tag.tag_id for tag in resolved]

        dishes: List[DishMatch] = []
        if hard_tags and tag_ids:
            dishes = await self._tagged_dishes(restaurant, tag_ids)
            if query:
                dishes = [d for d in dishes if matches_precision_gate(d.name, query_words)]
        elif query:
            dishes = await self._search_by_text(restaurant_id, query, query_words, tag_ids)
        elif tag_ids:
            dishes = await self._tagged_dishes(restaurant, tag_ids)

        dishes = dishes[:settings.RESTAURANT_SEARCH_LIMIT]
        if dishes:
            tags_by_dish = await self.search_repo.get_dish_tags([d.id for d in dishes])
            for dish in dishes:
                dish.tags = [t.get("slug") or t.get("name") for t in tags_by_dish.get(dish.id, []) if t.get("slug") or t.get("name")]

        return MenuSearchResult(
            restaurant_id=restaurant_id,
            restaurant_name=restaurant.get("name") or "",
            sub_action=sub_action,
            dishes=dishes,
            best_match=best_matching_dish(dishes, query) if query else None,
        )

    async def _tagged_dishes(self, restaurant: dict, tag_ids: List[str]) -> List[DishMatch]:
        """Dishes of this restaurant carrying every tag, searched within the restaurant's city."""
        rows = await self.search_repo.search_by_tags_strict(tag_ids, city=restaurant.get("city"), limit=50)
        return [_row_to_dish(r) for r in rows if r.get("restaurant_id") == restaurant["id"]]

    async def _search_by_text(
        self,
        restaurant_id: str,
        query: str,
        query_words: List[str],
        tag_ids: List[str],
    ) -> List[DishMatch]:
        """Semantic, then fuzzy, then a direct name match; each limited to one restaurant."""
        if self.llm is not None:
            try:
                embedding = await self.llm.embed(query, timeout_s=settings.LLM_EMBEDDING_TIMEOUT)
            except ValueError as e:
                logger.warning(f"Embedding unavailable for '{query}': {e}")
                embedding = None
            if embedding:
                rows = await self.search_repo.search_semantic(embedding, tag_ids=tag_ids or None, limit=50)
                dishes = [
                    _row_to_dish(r) for r in rows
                    if r.get("restaurant_id") == restaurant_id and matches_precision_gate(r.get("dish_name") or "", query_words)
                ]
                if dishes:
                    return dishes

        rows = await self.search_repo.search_fuzzy(
            query, city=None, threshold=settings.FUZZY_LOOSE_THRESHOLD, tag_ids=tag_ids or None
        )
        dishes = [
            _row_to_dish(d)
            for r in rows
            if r.get("restaurant_id") == restaurant_id
            for d in (r.get("matching_dishes") or [])
            if d.get("id") and matches_precision_gate(d.get("name") or "", query_words)
        ]
        if dishes:
            return dishes

        rows = await self.restaurant_repo.search_dishes_by_name(restaurant_id, query, limit=20)
        return [_row_to_dish(r) for r in rows]
