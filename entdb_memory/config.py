"""
Configuration for the in-memory entity store.

Settings are read from environment variables prefixed with ``ENTDB_MEMORY_``:

    ENTDB_MEMORY_LOG_LEVEL: Logging level (default WARNING)
    ENTDB_MEMORY_LOG_FORMAT: text or json (default text)
    ENTDB_MEMORY_STRICT_WHERE_FIELDS: Reject unknown where() keys (default true)
    ENTDB_MEMORY_MAX_LISTENERS: Listener count per hook before a leak warning (0 disables)
"""

from __future__ import annotations

import logging
from functools import lru_cache

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings


class StoreSettings(BaseSettings):
    """Store configuration."""

    # Logging
    log_level: str = Field(default="WARNING")
    log_format: str = Field(default="text", description="text or json")

    # Queries
    strict_where_fields: bool = Field(
        default=True,
        description="Raise UnknownFieldError for where() keys the collection does not declare",
    )

    # Hooks
    max_listeners: int = Field(default=10, ge=0, description="Leak warning threshold (0=disabled)")

    model_config = {"env_prefix": "ENTDB_MEMORY_"}


@lru_cache
def get_settings() -> StoreSettings:
    """Get the process-wide settings, read once from the environment."""
    return StoreSettings()


def setup_logging(settings: StoreSettings | None = None) -> None:
    """Configure logging for the store's loggers.

    Args:
        settings: Store settings; defaults to get_settings()
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.WARNING)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    store_logger = logging.getLogger("entdb_memory")
    store_logger.setLevel(level)
    store_logger.handlers = [handler]
