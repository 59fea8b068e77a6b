"""
Shared singleton dependencies for the application.

The LLM client (one httpx.AsyncClient) is created once at startup and
reused across requests.  Everything else the engine needs is cheap and
built per request on top of the shared Supabase client.
"""
import logging
from typing import Optional

from database.client import get_supabase
from database.repositories.restaurant_repo import RestaurantRepository
from database.repositories.search_repo import SearchRepository
from database.repositories.tag_repo import TagRepository
from core.engine import DiscoveryEngine
from core.followup_resolver import DishExplainer, FollowupResolver
from core.intent_normalizer import IntentNormalizer
from core.planner import Planner
from core.search_chain import FallbackSearchChain
from core.tag_resolver import TagResolver
from integrations.llm.client import LLMClient
from services.restaurant_service import RestaurantService

logger = logging.getLogger(__name__)

# Module-level singleton — initialized once via init_dependencies()
_llm_client: Optional[LLMClient] = None


def init_dependencies() -> None:
    """
    Initialize all shared singletons. Called once at application startup.
    """
    global _llm_client

    logger.info("Initializing shared dependencies...")
    _llm_client = LLMClient()
    logger.info(f"Dependencies initialized: LLM model {_llm_client.model}")


async def shutdown_dependencies() -> None:
    """Clean up resources on shutdown."""
    global _llm_client
    if _llm_client:
        await _llm_client.close()
        _llm_client = None
        logger.info("LLMClient closed")


def get_llm_client() -> LLMClient:
    if _llm_client is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _llm_client


def get_engine() -> DiscoveryEngine:
    """
    Build a DiscoveryEngine using shared singletons.

    WARNING: the engine, its collaborators and the repositories are created
    per-request and MUST remain stateless.  Cross-turn memory belongs in
    ChatState, which the caller sends back on every request.
    """
    supabase = get_supabase()
    llm = get_llm_client()

    search_repo = SearchRepository(supabase)
    tag_resolver = TagResolver(TagRepository(supabase))

    return DiscoveryEngine(
        normalizer=IntentNormalizer(llm),
        planner=Planner(llm),
        tag_resolver=tag_resolver,
        search_chain=FallbackSearchChain(search_repo),
        followup_resolver=FollowupResolver(search_repo),
        explainer=DishExplainer(llm),
        restaurant_service=RestaurantService(
            RestaurantRepository(supabase), search_repo, tag_resolver, llm
        ),
        llm_client=llm,
    )
