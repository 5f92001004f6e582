"""
Configuration Schemas for restbind.

Security:
    The MongoDB URL may embed credentials and uses SecretStr to prevent
    accidental logging. Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, SecretStr


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access. Loaded from RESTBIND_* environment
    variables by restbind.app.dependencies.get_settings().
    """

    # Service identity
    service_name: str = "restbind"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # MongoDB
    mongodb_url: SecretStr = Field(
        default=SecretStr("mongodb://localhost:27017"),
        description="MongoDB connection URL",
    )
    mongodb_database: str = "restbind"

    # Resource defaults
    page_size: int = Field(100, ge=1, description="Default records per list page")
    base_url: str = Field("", description="Prefix for pagination Link hrefs")

    # HTTP
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    class Config:
        env_prefix = "RESTBIND_"
        case_sensitive = False
