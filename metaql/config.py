"""Engine configuration.

Values come from keyword arguments or from ``METAQL_*`` environment variables
(``METAQL_PAGE_SIZE=50``); keyword arguments win.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["EngineConfig", "DEFAULT_PAGE_SIZE", "DEFAULT_GC_TIME", "DEFAULT_STALE_TIME"]

DEFAULT_PAGE_SIZE = 100
DEFAULT_STALE_TIME = 5 * 60.0
DEFAULT_GC_TIME = 10 * 60.0


class EngineConfig(BaseSettings):
    """Pagination engine and transport settings."""

    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0, description="Rows per page")
    prefetch_pages: int = Field(default=1, ge=0, description="Buffer pages fetched past the visible range")
    nested_relation_first: int = Field(default=20, ge=0, description="Default `first` for nested collections")
    stale_time: Optional[float] = Field(default=DEFAULT_STALE_TIME, description="Seconds before a page is refetched")
    gc_time: Optional[float] = Field(default=DEFAULT_GC_TIME, description="Seconds an unused page stays cached")
    endpoint: Optional[str] = Field(default=None, description="GraphQL endpoint URL")
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    use_edges: bool = Field(default=False, description="Select `edges { cursor node }` instead of `nodes`")

    model_config = SettingsConfigDict(
        env_prefix="METAQL_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    @field_validator("stale_time", "gc_time", mode="before")
    @classmethod
    def _empty_disables(cls, value: Any) -> Any:
        # METAQL_GC_TIME= (empty) turns expiry off
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("endpoint", mode="before")
    @classmethod
    def _empty_endpoint(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls, prefix: str = "METAQL_", **overrides: Any) -> "EngineConfig":
        """Read ``<prefix><FIELD>`` variables; explicit ``overrides`` win."""
        return cls(_env_prefix=prefix, **overrides)
