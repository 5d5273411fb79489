"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into a strongly-typed Pydantic model.
- Validating values and providing actionable error messages.
"""

from __future__ import annotations

import os
from typing import TypeVar

import dotenv
from pydantic import BaseModel, Field, field_validator

from .levels import LEVEL_RANKS, LevelSetting

_T = TypeVar("_T", int, float)

DEFAULT_FLUSH_INTERVAL_MS = 60_000


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T | None, cast: type[_T]) -> _T | None:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def _get_env_str(name: str) -> str | None:
    """Read an optional string env var, treating blank values as unset."""
    raw = os.getenv(name, "").strip()
    return raw or None


class MonitorSettings(BaseModel):
    """Tuning knobs for a flush engine (everything except the sink itself)."""

    flush_interval_ms: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, gt=0, description="Automatic flush period")
    max_buffer_size: int | None = Field(default=None, ge=1, description="Flush proactively at this many records")
    level: LevelSetting = Field(default="trace", description="Minimum level that gets recorded")
    capture_errors: bool = Field(default=True, description="Store failures in record params['err']")
    duckdb_path: str | None = Field(default=None, description="Database file for the DuckDB sink")

    @field_validator("level", mode="before")
    def validate_level(cls, v: object) -> object:
        """Normalize case and reject unknown labels with the list of valid ones."""
        if isinstance(v, str):
            v = v.strip().lower()
        if v not in LEVEL_RANKS:
            raise ValueError(f"level must be one of {' | '.join(LEVEL_RANKS)}. Got: {v!r}")
        return v


def load_config() -> MonitorSettings:
    """Load engine settings from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages for malformed values.
    """
    dotenv.load_dotenv()

    return MonitorSettings(
        flush_interval_ms=_get_env_number("CALLMETER_FLUSH_INTERVAL_MS", DEFAULT_FLUSH_INTERVAL_MS, int),
        max_buffer_size=_get_env_number("CALLMETER_MAX_BUFFER_SIZE", None, int),
        level=os.getenv("CALLMETER_LEVEL", "").strip() or "trace",
        capture_errors=_get_env_bool("CALLMETER_CAPTURE_ERRORS", True),
        duckdb_path=_get_env_str("CALLMETER_DUCKDB_PATH"),
    )
