"""
FastAPI application entry point.
Mounts the resolver, passport and status list routers.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dpp_anchor.core.config import get_settings
from dpp_anchor.core.logging import configure_logging, get_logger
from dpp_anchor.db.session import close_db, init_db
from dpp_anchor.dependencies import get_did_resolver, get_schema_loader
from dpp_anchor.modules.passports.router import router as passports_router
from dpp_anchor.modules.resolver.public_router import router as public_resolver_router
from dpp_anchor.modules.status_list.public_router import router as public_status_list_router

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database for SQL status list storage; close HTTP clients on shutdown."""
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
        storage_backend=settings.storage_backend,
        status_list_storage=settings.status_list_storage,
    )

    if settings.status_list_storage == "sql":
        await init_db()
        logger.info("database_initialized")

    yield

    await get_did_resolver().aclose()
    await get_schema_loader().aclose()
    await close_db()
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """
    Application factory function.

    Creates the FastAPI application with all routers mounted.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        lifespan=lifespan,
    )

    # Public resolver endpoints (linksets, redirects)
    app.include_router(public_resolver_router, prefix="/idr", tags=["Resolver"])
    app.include_router(passports_router, prefix="/api", tags=["Passports"])
    app.include_router(public_status_list_router, prefix="/api", tags=["Status List"])

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.version}

    return app


app = create_application()
