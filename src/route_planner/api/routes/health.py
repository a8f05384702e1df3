"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_osrm_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.routing.osrm_client import check_health as osrm_health_check
    return osrm_health_check


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing() -> dict:
    """Report the configured routing provider and, for OSRM, whether it answers."""
    if settings.routing_provider != "osrm":
        return {"provider": settings.routing_provider, "healthy": True}
    try:
        osrm_health_check = _get_osrm_health_check()
        return {"provider": "osrm", "healthy": osrm_health_check()}
    except Exception as e:
        return {"provider": "osrm", "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check which record store backs the API and whether Supabase answers."""
    from ...db.supabase import get_supabase_client

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "store": "memory",
            "message": "Supabase not configured. Set ROUTES_SUPABASE_URL and ROUTES_SUPABASE_KEY environment variables.",
        }

    try:
        supabase.table("routes").select("id").limit(1).execute()
        return {"configured": True, "connected": True, "store": "supabase"}
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "store": "supabase",
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
