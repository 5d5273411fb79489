"""Function wrappers that time calls and report them to a flush engine.

A wrapped function keeps the calling contract of the original: same arguments,
same return value, same exceptions. Call shapes are recognized in this order:

- Callback style: the last positional argument is callable. It is treated as a
  `(err, *results)` completion callback and the record is emitted when it fires.
- Coroutine functions, returned awaitables and futures: the record is emitted
  when the result settles. Cancellation counts as a failure (`CancelledError`).
  Executor futures settle on a worker thread; the engine moves those records
  onto its own loop.
- Plain synchronous calls.

Whether a level is enabled is looked up on every call, so level changes apply to
wrappers that already exist.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from .models import Level, TimingRecord, from_epoch_ms, utc_now

if TYPE_CHECKING:
    from .engine import FlushEngine

F = TypeVar("F", bound=Callable[..., Any])

ANONYMOUS = "<anonymous>"

_NO_ERROR = object()


def _resolve_name(fn: Callable[..., Any], fn_name: str | None) -> str:
    """Pick the operation name: explicit, then the function's own, then a placeholder."""
    if fn_name:
        return fn_name
    name = getattr(fn, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return ANONYMOUS


class Monitor:
    """Wrapper factory bound to one engine and one service name.

    Calling the monitor directly wraps at `info` level.
    """

    def __init__(self, engine: FlushEngine, service: str) -> None:
        self._engine = engine
        self.service = service

    def __call__(self, fn: F, fn_name: str | None = None, *, callbacks: bool = True) -> F:
        return self._wrap("info", fn, fn_name, callbacks)

    def trace(self, fn: F, fn_name: str | None = None, *, callbacks: bool = True) -> F:
        return self._wrap("trace", fn, fn_name, callbacks)

    def debug(self, fn: F, fn_name: str | None = None, *, callbacks: bool = True) -> F:
        return self._wrap("debug", fn, fn_name, callbacks)

    def info(self, fn: F, fn_name: str | None = None, *, callbacks: bool = True) -> F:
        return self._wrap("info", fn, fn_name, callbacks)

    def log_time(self, level: Level, fn_name: str, start_ms: float, end_ms: float) -> None:
        """Record a call the caller timed itself (epoch milliseconds)."""
        if not self._engine.is_enabled(level):
            return
        if end_ms < start_ms:
            raise ValueError(f"end_ms must not be before start_ms. Got: {start_ms!r} -> {end_ms!r}")
        self._engine.push(
            TimingRecord(
                service=self.service,
                fn_name=fn_name,
                time=int(round(end_ms - start_ms)),
                level=level,
                created=from_epoch_ms(start_ms),
            )
        )

    def _finish(self, level: Level, name: str, created: datetime, started_ns: int, err: Any = _NO_ERROR) -> None:
        elapsed_ms = (time.monotonic_ns() - started_ns) // 1_000_000
        params: dict[str, Any] = {}
        if err is not _NO_ERROR and self._engine.capture_errors:
            params["err"] = err
        self._engine.push(
            TimingRecord(
                service=self.service,
                fn_name=name,
                time=elapsed_ms,
                level=level,
                created=created,
                params=params,
            )
        )

    def _wrap(self, level: Level, fn: F, fn_name: str | None, callbacks: bool) -> F:
        name = _resolve_name(fn, fn_name)
        engine = self._engine

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapped(*args: Any, **kwargs: Any) -> Any:
                if not engine.is_enabled(level):
                    return await fn(*args, **kwargs)
                created = utc_now()
                started = time.monotonic_ns()
                try:
                    result = await fn(*args, **kwargs)
                except (Exception, asyncio.CancelledError) as exc:
                    self._finish(level, name, created, started, exc)
                    raise
                self._finish(level, name, created, started)
                return result

            return async_wrapped  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapped(*args: Any, **kwargs: Any) -> Any:
            if not engine.is_enabled(level):
                return fn(*args, **kwargs)

            created = utc_now()
            started = time.monotonic_ns()

            if callbacks and args and callable(args[-1]):
                done = args[-1]

                def on_done(*cb_args: Any, **cb_kwargs: Any) -> Any:
                    err = cb_args[0] if cb_args else None
                    if err:
                        self._finish(level, name, created, started, err)
                    else:
                        self._finish(level, name, created, started)
                    return done(*cb_args, **cb_kwargs)

                return fn(*args[:-1], on_done, **kwargs)

            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                self._finish(level, name, created, started, exc)
                raise

            return self._settle(result, level, name, created, started)

        return wrapped  # type: ignore[return-value]

    def _settle(self, result: Any, level: Level, name: str, created: datetime, started_ns: int) -> Any:
        """Emit the record now, or once an asynchronous result completes."""
        if isinstance(result, (asyncio.Future, concurrent.futures.Future)):

            def on_settled(fut: Any) -> None:
                if fut.cancelled():
                    self._finish(level, name, created, started_ns, asyncio.CancelledError())
                    return
                exc = fut.exception()
                if exc is not None:
                    self._finish(level, name, created, started_ns, exc)
                else:
                    self._finish(level, name, created, started_ns)

            result.add_done_callback(on_settled)
            return result

        if inspect.isawaitable(result):
            return self._timed(result, level, name, created, started_ns)

        self._finish(level, name, created, started_ns)
        return result

    async def _timed(self, pending: Awaitable[Any], level: Level, name: str, created: datetime, started_ns: int) -> Any:
        try:
            value = await pending
        except (Exception, asyncio.CancelledError) as exc:
            self._finish(level, name, created, started_ns, exc)
            raise
        self._finish(level, name, created, started_ns)
        return value
