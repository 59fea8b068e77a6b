"""Health check routes"""
from asyncio import to_thread
from fastapi import APIRouter
from database.client import get_supabase
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

_REQUIRED_TABLES = ("restaurants", "dishes", "tags", "dish_tags")


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "ok", "service": "discovery-api"}


@router.get("/health/db")
async def database_health():
    """Check database connectivity and the catalogue tables"""
    try:
        supabase = get_supabase()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "error",
            "database": {"connected": False, "error": str(e)},
            "message": "Database connection failed. Check SUPABASE_URL and SUPABASE_KEY in .env",
        }

    tables = {}
    for table in _REQUIRED_TABLES:
        try:
            await to_thread(lambda: supabase.table(table).select("id").limit(1).execute())
            tables[table] = True
        except Exception as e:
            tables[table] = False
            logger.error(f"{table} table error: {e}")

    schema_ready = all(tables.values())
    return {
        "status": "ok" if schema_ready else "degraded",
        "database": {"connected": True, "schema_ready": schema_ready, "tables": tables},
        "message": "Catalogue tables ready" if schema_ready else "Catalogue tables missing",
    }
