"""Severity levels and the minimum-level gate."""

from __future__ import annotations

import math
from typing import Literal

from .errors import InvalidLevelError

LevelSetting = Literal["trace", "debug", "info", "off"]

LEVEL_RANKS: dict[str, float] = {
    "trace": 10,
    "debug": 20,
    "info": 30,
    "off": math.inf,
}


def level_rank(label: object) -> float:
    """Return the numeric rank of a label; unknown labels rank above everything."""
    if isinstance(label, str):
        return LEVEL_RANKS.get(label, math.inf)
    return math.inf


class LevelFilter:
    """Answers "is this level enabled?" against a mutable minimum.

    The minimum is read on every call, so changes apply immediately to wrappers
    created earlier.
    """

    def __init__(self, minimum: LevelSetting = "trace") -> None:
        self._minimum: str = "trace"
        self._rank: float = LEVEL_RANKS["trace"]
        self._disabled_from: str | None = None
        self.set_level(minimum)

    @property
    def minimum(self) -> str:
        return self._minimum

    def set_level(self, label: LevelSetting) -> None:
        """Set the minimum enabled level.

        Raises:
            InvalidLevelError: if `label` is not one of trace/debug/info/off.
        """
        if not isinstance(label, str) or label not in LEVEL_RANKS:
            raise InvalidLevelError(label, list(LEVEL_RANKS))
        self._minimum = label
        self._rank = LEVEL_RANKS[label]
        self._disabled_from = None

    def is_enabled(self, label: object) -> bool:
        """Return True iff records at `label` pass the current minimum.

        Never raises: unknown labels (and "off" itself) are treated as never enabled.
        """
        rank = level_rank(label)
        if rank == math.inf:
            return False
        return rank >= self._rank

    def disable(self) -> None:
        """Turn everything off, remembering the current minimum for `enable()`."""
        if self._disabled_from is not None:
            return
        previous = self._minimum
        self.set_level("off")
        self._disabled_from = previous

    def enable(self) -> None:
        """Restore the minimum that was active before `disable()`."""
        if self._disabled_from is None:
            return
        self.set_level(self._disabled_from)  # type: ignore[arg-type]
