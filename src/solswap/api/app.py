"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from solswap import __version__
from solswap.config import get_settings
from solswap.errors import SwapError
from solswap.web.services.swap_service import SwapService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    http = httpx.AsyncClient(timeout=settings.http_timeout)
    app.state.swap_service = SwapService.from_settings(http, settings)
    logger.info(f"Swap service ready (rpc commitment: {settings.commitment})")
    yield
    # Shutdown
    await http.aclose()


async def swap_error_handler(request: Request, exc: SwapError) -> JSONResponse:
    """Render typed pipeline errors as {status, error, message, details}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Solswap API",
        description="Solana token swap orchestration API",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SwapError, swap_error_handler)

    # Register routes
    from solswap.api.routes import health
    from solswap.web.controllers import swaps

    app.include_router(health.router, tags=["Health"])
    app.include_router(swaps.router)

    return app


# Default app instance
app = create_app()
