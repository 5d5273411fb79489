"""Exceptions raised synchronously to callers of the configuration surface.

Delivery failures and failures of instrumented functions are not represented
here: the former are logged and re-buffered by the engine, the latter propagate
unchanged to the original caller.
"""

from __future__ import annotations


class CallmeterError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(CallmeterError, ValueError):
    """Raised when the engine is configured without a usable sink or with invalid options."""


class InvalidLevelError(CallmeterError, ValueError):
    """Raised when an unrecognized level label is passed to an explicit level setter."""

    def __init__(self, label: object, valid: list[str]) -> None:
        """Create an error naming the rejected label and the accepted ones."""
        self.label = label
        self.valid = valid
        super().__init__(f"Must provide a valid level: {' | '.join(valid)}. Got: {label!r}")
