"""
restbind - FastAPI application factory.

Builds an application that serves a set of ResourceBinders:

    from restbind.app.main import create_app

    app = create_app(resources=[("/items", items_binder)])

Run with:
    uvicorn restbind.app.main:create_app --factory
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from restbind import __version__
from restbind.app.dependencies import get_settings
from restbind.app.errors import register_error_handlers

if TYPE_CHECKING:
    from restbind.config import AppSettings, DatabaseService
    from restbind.resource import ResourceBinder

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: "AppSettings | None" = None,
    *,
    resources: Iterable[tuple[str, "ResourceBinder"]] = (),
    database: "DatabaseService | None" = None,
    serve_options: Any = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings (environment if not provided)
        resources: ``(path, binder)`` pairs served on the app
        database: Database service opened on startup and closed on shutdown
        serve_options: ServeOptions applied to every resource

    Returns:
        Configured FastAPI instance
    """
    settings = settings or get_settings()
    logging.getLogger("restbind").setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Handles startup and shutdown events.
        """
        # Startup
        logger.info(f"Starting {settings.service_name} ({settings.environment})...")
        if database is not None:
            database.connect()

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.service_name}...")
        if database is not None:
            database.close()

    app = FastAPI(
        title=settings.service_name,
        description="REST resources generated from document collections",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Link", "Location"],
    )

    register_error_handlers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """
        Health check endpoint.

        Reports MongoDB reachability when a database service is configured.
        """
        if database is None:
            return {"status": "healthy", "database": "disabled"}
        reachable = await database.ping()
        return {
            "status": "healthy" if reachable else "unhealthy",
            "database": "connected" if reachable else "unreachable",
        }

    for path, binder in resources:
        binder.serve(path, app, serve_options)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "restbind.app.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
    )
