"""HTTP controllers for web API endpoints."""

from solswap.web.controllers.swaps import router as swaps_router

__all__ = ["swaps_router"]
