"""FastAPI application factory and configuration."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.config import settings
from app.database import init_db
from app.dependencies import get_chain_client, get_notification_service
from app.schemas.common import error_body
from app.services.notification_service import log_domain_event

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting ONS Resolver in {settings.ENVIRONMENT} mode")
    logger.info(f"Chain RPC: {settings.CHAIN_RPC_URL}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")  # Hide credentials
    await init_db()
    unsubscribe = get_notification_service().subscribe(log_domain_event)
    yield
    # Shutdown
    unsubscribe()
    await get_chain_client().aclose()
    logger.info("Shutting down ONS Resolver")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return API errors in the standard envelope instead of under ``detail``."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("HTTP_ERROR", str(exc.detail)),
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed requests are 400s in the standard envelope."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            "INVALID_REQUEST",
            "Request validation failed",
            {"errors": jsonable_errors(exc)},
        ),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="ONS Resolver",
        description="Name service resolver backed by on-chain payments",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure based on environment in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "ons-resolver",
            "version": "0.1.0",
            "environment": settings.ENVIRONMENT,
        }

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "message": "ONS Resolver API",
            "docs": "/docs",
            "health": "/health",
        }

    # Mount routes
    from app.routes import domains, registrations, wallets

    app.include_router(domains.router, prefix="/api", tags=["Domains"])
    app.include_router(registrations.router, prefix="/api", tags=["Registrations"])
    app.include_router(wallets.router, prefix="/api", tags=["Wallets"])

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
