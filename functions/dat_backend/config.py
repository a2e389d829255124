"""
Configuration and settings for the alumni backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from urllib.parse import quote

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SHEETS_EXPORT_URL = (
    "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv&sheet={tab}"
)


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing for the requested operation."""


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(default="production", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="SHOW_DAT_DEBUG")

    # Google Sheet used as the row store
    alumni_sheet_id: Optional[str] = Field(default=None, alias="ALUMNI_SHEET_ID")
    alumni_tab: Optional[str] = Field(default=None, alias="ALUMNI_TAB")
    slugs_tab: str = Field(default="Profile-Slugs", alias="SLUGS_TAB")
    changes_tab: str = Field(default="Profile-Changes", alias="ALUMNI_CHANGES_TAB")
    gcp_sa_json: Optional[str] = Field(default=None, alias="GCP_SA_JSON")

    # CSV exports
    slugs_csv_url_env: Optional[str] = Field(default=None, alias="SLUGS_CSV_URL")
    public_slugs_csv_url: Optional[str] = Field(
        default=None, alias="NEXT_PUBLIC_SLUGS_CSV_URL"
    )
    alumni_csv_url_env: Optional[str] = Field(default=None, alias="ALUMNI_CSV_URL")
    public_alumni_csv_url: Optional[str] = Field(
        default=None, alias="NEXT_PUBLIC_ALUMNI_CSV_URL"
    )
    fallback_dir: str = Field(default="public/fallback", alias="FALLBACK_DIR")

    # Slug canonicalization
    auto_canonicalize_slugs: bool = Field(
        default=False, alias="AUTO_CANONICALIZE_SLUGS"
    )
    admin_api_key: Optional[str] = Field(default=None, alias="ADMIN_API_KEY")
    admin_header_name: str = Field(default="X-Admin-Key", alias="ADMIN_HEADER_NAME")
    site_origin: Optional[str] = Field(default=None, alias="SITE_ORIGIN")
    forward_lookup_timeout: float = Field(default=3.0, alias="FORWARD_LOOKUP_TIMEOUT")

    # Rate limiting
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="DAT_USE_IN_MEMORY_BACKENDS"
    )

    # Write-back queue (Redis)
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    redis_write_queue_key: str = Field(
        default="dat:slug-writes", alias="REDIS_WRITE_QUEUE_KEY"
    )
    write_max_attempts: int = Field(default=3, alias="WRITE_MAX_ATTEMPTS")

    @property
    def slugs_csv_url(self) -> str:
        """Forward-map CSV location, falling back to the sheet's CSV export."""
        if self.slugs_csv_url_env:
            return self.slugs_csv_url_env
        if self.public_slugs_csv_url:
            return self.public_slugs_csv_url
        if self.alumni_sheet_id:
            return SHEETS_EXPORT_URL.format(
                sheet_id=self.alumni_sheet_id, tab=quote(self.slugs_tab, safe="")
            )
        return ""

    @property
    def alumni_csv_url(self) -> str:
        return self.alumni_csv_url_env or self.public_alumni_csv_url or ""

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    def require_sheet_id(self) -> str:
        if not self.alumni_sheet_id:
            raise ConfigurationError("Missing ALUMNI_SHEET_ID")
        return self.alumni_sheet_id


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
