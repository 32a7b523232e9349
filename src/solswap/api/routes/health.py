"""Health check endpoints."""

from fastapi import APIRouter

from solswap import __version__
from solswap.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "solswap"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with configuration info (secrets redacted)."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "solswap",
        "version": __version__,
        "config": settings.get_safe_dict(),
    }
