"""Supabase database client"""
from typing import Optional
from urllib.parse import urlparse
from supabase import create_client, Client
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def init_supabase(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """Initialize the shared Supabase client.

    The menu catalogue is read-only for this service, so one client
    (anon or service key) is shared by every repository.
    """
    global _supabase_client

    if _supabase_client is None:
        url = url or settings.SUPABASE_URL
        key = key or settings.SUPABASE_KEY
        logger.info(f"Initializing Supabase client for {urlparse(url).netloc or url}...")
        _supabase_client = create_client(url, key)
        logger.info("✓ Supabase client initialized")

    return _supabase_client


def get_supabase() -> Client:
    """Get Supabase client instance, creating it lazily."""
    if _supabase_client is None:
        return init_supabase()
    return _supabase_client
