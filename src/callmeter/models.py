"""Timing record model.

Records are:
- Immutable once created (the engine only ever moves them between buffers).
- Produced either by a wrapped function completing or by a manual `log_time` call.
- Opaque to the engine beyond `level`; the sink decides how they are stored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Level = Literal["trace", "debug", "info"]


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


def from_epoch_ms(ms: float) -> datetime:
    """Convert epoch milliseconds into a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


class TimingRecord(BaseModel):
    """One completed measurement of a monitored call."""

    # `params` may hold arbitrary exception objects.
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    # Logical name of the monitored unit (what `new_monitor` was called with).
    service: str

    # Name of the specific function/operation.
    fn_name: str

    # Elapsed milliseconds between call start and completion.
    time: int = Field(ge=0)

    level: Level | None = None

    # Wall-clock time at which the call started.
    created: datetime = Field(default_factory=utc_now)

    # Open metadata; `err` holds the captured error object when the call failed.
    params: dict[str, Any] = Field(default_factory=dict)
