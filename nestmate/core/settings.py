"""Operator configuration for Nestmate.

Each field is read from the upper-cased env var of the same name
(``BOOST_DURATION_HOURS`` for ``boost_duration_hours``), then from ``.env``,
then from the default below.

Listing lifetime and boost duration are operator policy.  They are read from
here, never from a caller's request.

Typical usage::

    from nestmate.core.settings import Settings

    settings = Settings()                    # loads from env + .env
    print(settings.listing_lifetime)         # timedelta(days=30)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/nestmate.db",
        description="Path to the SQLite database file.",
    )
    gateway_timeout_s: float = Field(
        default=5.0,
        gt=0.0,
        description="Default upper bound (seconds) for a single gateway call.",
    )
    conflict_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for an operation whose conditional write keeps losing races.",
    )

    # ------------------------------------------------------------------
    # Listing and boost policy
    # ------------------------------------------------------------------
    listing_lifetime_days: int = Field(
        default=30,
        ge=1,
        description="How long a new listing stays active.",
    )
    boost_duration_hours: int = Field(
        default=48,
        ge=1,
        description="Length of one boost window.",
    )
    boost_fee: int = Field(
        default=49,
        ge=0,
        description="Fee charged for one boost.",
    )
    disclosure_fee: int = Field(
        default=49,
        ge=0,
        description="One-time fee to reveal contact details in a chat.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("log_level", "log_format")
    @classmethod
    def _normalise_logging(cls, v: str, info: ValidationInfo) -> str:
        if info.field_name == "log_level":
            allowed, value = ("DEBUG", "INFO", "WARNING", "ERROR"), v.upper()
        else:
            allowed, value = ("text", "json"), v.lower()
        if value not in allowed:
            raise ValueError(f"{info.field_name} must be one of {allowed}, got {v!r}")
        return value

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def listing_lifetime(self) -> timedelta:
        return timedelta(days=self.listing_lifetime_days)

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()
