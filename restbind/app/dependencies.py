"""
Dependency Injection for restbind applications.

Provides singleton instances of settings and the database service.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Optional

from restbind.config import AppSettings, DatabaseService

logger = logging.getLogger(__name__)


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern; call get_settings.cache_clear()
    after changing the environment.
    """
    return AppSettings(
        # Service
        service_name=os.getenv("RESTBIND_SERVICE_NAME", "restbind"),
        environment=os.getenv("RESTBIND_ENVIRONMENT", "development"),
        debug=os.getenv("RESTBIND_DEBUG", "false").lower() == "true",
        log_level=os.getenv("RESTBIND_LOG_LEVEL", "INFO").upper(),
        # MongoDB
        mongodb_url=os.getenv("RESTBIND_MONGODB_URL", "mongodb://localhost:27017"),
        mongodb_database=os.getenv("RESTBIND_MONGODB_DATABASE", "restbind"),
        # Resource defaults
        page_size=int(os.getenv("RESTBIND_PAGE_SIZE", "100")),
        base_url=os.getenv("RESTBIND_BASE_URL", ""),
        # HTTP
        cors_origins=_split(os.getenv("RESTBIND_CORS_ORIGINS", "*")),
    )


# Global instance (initialized on first access)
_database_service: Optional[DatabaseService] = None


def get_database_service() -> DatabaseService:
    """
    Get the database service.

    The motor client is created on first call; motor itself connects
    lazily on the first operation.
    """
    global _database_service
    if _database_service is None:
        settings = get_settings()
        _database_service = DatabaseService(
            mongodb_url=settings.mongodb_url.get_secret_value(),
            database_name=settings.mongodb_database,
        )
    return _database_service


def set_database_service(service: Optional[DatabaseService]) -> None:
    """Replace the database service (tests, custom clients)."""
    global _database_service
    _database_service = service


def shutdown_services() -> None:
    """Close the database connection if one was opened."""
    global _database_service
    if _database_service is not None:
        _database_service.close()
        _database_service = None
        logger.info("Database service shut down")
