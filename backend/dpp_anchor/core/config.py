"""
Application configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, RedisDsn, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Collaborator backends (content storage, status-list storage, prepared
    session store) are selected here once and resolved at construction time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Core Application Settings
    # ==========================================================================
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    project_name: str = "DPP Anchor"
    version: str = "0.1.0"

    # ==========================================================================
    # Public URLs
    # ==========================================================================
    idr_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the identity resolver (linkset self/untp:dpp links)",
    )
    render_base_url: str | None = Field(
        default=None,
        description="Base URL of the human-readable passport renderer (defaults to idr_base_url)",
    )
    status_list_base_url: str | None = Field(
        default=None,
        description="Base URL serving status list credentials (defaults to render base)",
    )

    # ==========================================================================
    # Status List Configuration
    # ==========================================================================
    status_list_enabled: bool = Field(default=True)
    status_list_size: int = Field(default=131072, ge=8)
    status_list_storage: Literal["memory", "file", "sql"] = "memory"
    status_list_file_path: str = Field(default="./data/status-list.json")

    # ==========================================================================
    # Database Configuration (SQL status list storage)
    # ==========================================================================
    database_url: str = Field(default="sqlite+aiosqlite:///./data/dpp_anchor.db")

    # ==========================================================================
    # Prepared Session Configuration
    # ==========================================================================
    prepared_session_backend: Literal["memory", "redis"] = "memory"
    prepared_session_ttl_seconds: int = Field(default=600, ge=1)
    redis_url: RedisDsn = Field(default=RedisDsn("redis://localhost:6379/0"))

    # ==========================================================================
    # Content-Addressed Storage
    # ==========================================================================
    storage_backend: Literal["memory", "kubo"] = "memory"
    ipfs_api_url: str = Field(default="http://127.0.0.1:5001")
    ipfs_gateway_url: str = Field(default="https://ipfs.io/ipfs")
    collaborator_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Default timeout applied to ledger/storage/DID collaborator calls",
    )

    # ==========================================================================
    # Credential Issuance
    # ==========================================================================
    untp_dpp_context_url: str = Field(
        default="https://test.uncefact.org/vocabulary/untp/dpp/0.6.0/",
    )
    untp_schema_url: str = Field(
        default="https://test.uncefact.org/vocabulary/untp/dpp/untp-dpp-schema-0.6.0.json",
    )
    untp_schema_sha256: str | None = Field(default=None)
    credential_id_prefix: str = Field(default="urn:dpp-anchor:vc:")
    default_network: str = Field(default="westend-asset-hub")

    # ==========================================================================
    # Schema Loader
    # ==========================================================================
    schema_cache_ttl_seconds: int = Field(default=86400, ge=0)
    schema_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)
    schema_fetch_timeout_seconds: float = Field(default=10.0, gt=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def render_base_url_effective(self) -> str:
        """Render base URL without trailing slash."""
        return (self.render_base_url or self.idr_base_url).rstrip("/")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_list_base_url_effective(self) -> str:
        """Status list base URL without trailing slash."""
        return (self.status_list_base_url or self.render_base_url_effective).rstrip("/")

    @model_validator(mode="after")
    def _validate_production_settings(self) -> Self:
        """Reject in-process backends where state would not survive restarts."""
        if self.environment == "production":
            if self.debug:
                raise ValueError("debug must be False in production environment")
            if self.storage_backend == "memory":
                raise ValueError("storage_backend 'memory' is not allowed in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated environment variable parsing.
    """
    return Settings()
