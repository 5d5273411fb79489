"""Buffering flush engine.

The engine owns three things:

- The pending buffer: an insertion-ordered list of `TimingRecord`s.
- The automatic flush timer (an `asyncio` timer handle on the running loop).
- The sink: a caller-supplied callable that receives each batch.

A flush swaps the buffer for a fresh list in a single step before calling the
sink, so records pushed while a delivery is in flight always land in the new
buffer. A failed delivery (the sink raised, or the awaitable/future it returned
failed) puts the batch back in front of whatever has been buffered since, and
the next flush retries everything as one batch. There is no retry limit and no
backoff.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import DEFAULT_FLUSH_INTERVAL_MS, MonitorSettings
from .errors import ConfigurationError, InvalidLevelError
from .levels import LEVEL_RANKS, LevelFilter, LevelSetting
from .models import TimingRecord
from .monitor import Monitor
from .sinks import DuckDBSink, to_thread

log = logging.getLogger(__name__)

SinkFn = Callable[[Sequence[TimingRecord]], Any]


class EngineOptions(BaseModel):
    """Validated engine options (the result of `FlushEngine.configure`)."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    sink: Callable[..., Any]
    flush_interval_ms: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, gt=0)
    max_buffer_size: int | None = Field(default=None, ge=1)
    capture_errors: bool = True


class FlushEngine:
    """Accumulates timing records and hands them to a sink in batches.

    An engine that has not been configured is valid but inert: records are
    buffered, and flush attempts log a warning and keep them.
    """

    def __init__(self) -> None:
        self._buffer: list[TimingRecord] = []
        self._options: EngineOptions | None = None
        self._levels = LevelFilter()
        self._log: Any = log

        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._stopped = False

        # Async deliveries that have not settled yet.
        self._inflight: set[asyncio.Task[None]] = set()

        # Resources created by the engine itself, released by `aclose()`.
        self._closers: list[Callable[[], None]] = []

    @classmethod
    def from_settings(cls, settings: MonitorSettings, *, sink: SinkFn | None = None, logger: Any = None) -> FlushEngine:
        """Create and configure an engine from loaded settings.

        Without an explicit `sink`, a `duckdb_path` setting selects a DuckDB sink
        that writes from a worker thread and is closed by `aclose()`.
        """
        engine = cls()
        if sink is None and settings.duckdb_path:
            db = DuckDBSink(path=settings.duckdb_path)
            engine._closers.append(db.close)
            sink = to_thread(db)
        return engine.configure(
            sink=sink,
            flush_interval_ms=settings.flush_interval_ms,
            max_buffer_size=settings.max_buffer_size,
            min_level=settings.level,
            capture_errors=settings.capture_errors,
            logger=logger,
        )

    def configure(
        self,
        *,
        sink: SinkFn | None = None,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        max_buffer_size: int | None = None,
        min_level: LevelSetting = "trace",
        capture_errors: bool = True,
        logger: Any = None,
    ) -> FlushEngine:
        """Configure the sink and tuning options, then (re)start the timer.

        Args:
            sink: Receives each batch. May return None, an awaitable, or a
                `concurrent.futures.Future`; raising or failing re-buffers the batch.
            flush_interval_ms: Automatic flush period.
            max_buffer_size: Flush as soon as this many records are buffered.
            min_level: Minimum recorded level (trace | debug | info | off).
            capture_errors: Store failures in `params["err"]` of wrapped-call records.
            logger: A `logging.Logger`-like object; defaults to this module's logger.

        Raises:
            ConfigurationError: if `sink` is missing or the options are invalid.
            InvalidLevelError: if `min_level` is not a known label.
        """
        if sink is None:
            raise ConfigurationError("You must provide a `sink` callable to configure()")
        if not callable(sink):
            raise ConfigurationError(f"`sink` must be callable. Got: {sink!r}")
        if min_level not in LEVEL_RANKS:
            raise InvalidLevelError(min_level, list(LEVEL_RANKS))

        try:
            options = EngineOptions(
                sink=sink,
                flush_interval_ms=flush_interval_ms,
                max_buffer_size=max_buffer_size,
                capture_errors=capture_errors,
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid engine options: {exc}") from exc

        self._cancel_timer()
        self._options = options
        self._log = logger or log
        self._levels.set_level(min_level)
        self.start()
        return self

    # -- state -------------------------------------------------------------

    @property
    def ready(self) -> bool:
        """True once `configure()` has succeeded."""
        return self._options is not None

    @property
    def running(self) -> bool:
        """True while the automatic flush timer is armed."""
        return self._timer is not None

    @property
    def pending(self) -> int:
        """Number of buffered records not yet handed to the sink."""
        return len(self._buffer)

    @property
    def capture_errors(self) -> bool:
        return True if self._options is None else self._options.capture_errors

    @property
    def min_level(self) -> str:
        return self._levels.minimum

    # -- levels ------------------------------------------------------------

    def set_level(self, label: LevelSetting) -> None:
        """Change the minimum level; applies immediately to existing wrappers."""
        self._levels.set_level(label)

    def is_enabled(self, label: object) -> bool:
        return self._levels.is_enabled(label)

    def disable(self) -> None:
        """Stop recording anything until `enable()` is called."""
        self._levels.disable()

    def enable(self) -> None:
        self._levels.enable()

    def new_monitor(self, name: str) -> Monitor:
        """Return a wrapper factory whose records carry `name` as their service."""
        return Monitor(self, name)

    # -- buffering ---------------------------------------------------------

    def push(self, record: TimingRecord) -> None:
        """Append a record, flushing proactively once the size threshold is reached.

        Safe to call from other threads (executor callbacks, for instance): the
        record is handed to the engine's loop instead of touching the buffer
        and timer from the foreign thread.
        """
        if self._off_loop_thread():
            self._loop.call_soon_threadsafe(self.push, record)  # type: ignore[union-attr]
            return

        if record.level is None:
            if self._levels.minimum == "off":
                return
        elif not self._levels.is_enabled(record.level):
            return

        self._buffer.append(record)

        limit = self._options.max_buffer_size if self._options is not None else None
        if limit is not None and not self._stopped and len(self._buffer) >= limit:
            self.flush()

    def flush(self) -> asyncio.Task[None] | None:
        """Hand every buffered record to the sink as one batch.

        Never raises. Returns a task tracking the delivery when the sink settles
        asynchronously on the running loop; awaiting it never raises either.
        Once the timer is armed, call it from the loop's thread.
        """
        # Any flush pushes the next automatic one a full interval out.
        if self._timer is not None:
            self._arm()

        if not self._buffer:
            return None

        if self._options is None:
            self._log.warning(
                "Trying to flush %d records, but the engine has not been configured yet", len(self._buffer)
            )
            return None

        batch, self._buffer = self._buffer, []

        try:
            result = self._options.sink(batch)
        except Exception as exc:  # noqa: BLE001 - delivery failures are re-buffered, never raised
            self._restore(batch, exc)
            return None

        return self._track(batch, result)

    def _track(self, batch: list[TimingRecord], result: Any) -> asyncio.Task[None] | None:
        """Watch an asynchronous sink result so a failure re-buffers the batch."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if isinstance(result, concurrent.futures.Future):
            if loop is None:
                result.add_done_callback(lambda fut: self._settle_future(batch, fut))
                return None
            result = asyncio.wrap_future(result)

        if not inspect.isawaitable(result):
            return None

        if loop is None:
            if inspect.iscoroutine(result):
                result.close()
            self._restore(batch, RuntimeError("sink returned an awaitable but no event loop is running"))
            return None

        task = loop.create_task(self._await_delivery(batch, result), name="callmeter-delivery")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _await_delivery(self, batch: list[TimingRecord], pending: Awaitable[Any]) -> None:
        try:
            await pending
        except asyncio.CancelledError:
            self._restore(batch, None)
            raise
        except Exception as exc:  # noqa: BLE001 - delivery failures are re-buffered, never raised
            self._restore(batch, exc)

    def _settle_future(self, batch: list[TimingRecord], fut: concurrent.futures.Future[Any]) -> None:
        if fut.cancelled():
            self._restore(batch, None)
            return
        exc = fut.exception()
        if exc is not None:
            self._restore(batch, exc)

    def _restore(self, batch: list[TimingRecord], exc: BaseException | None) -> None:
        """Put a failed batch back ahead of anything buffered since it was taken."""
        if exc is None:
            self._log.error("Delivery of %d records was cancelled", len(batch))
        else:
            self._log.error("Error sending %d records", len(batch), exc_info=exc)
        self._buffer[:0] = batch

    # -- timer -------------------------------------------------------------

    def start(self) -> bool:
        """Arm the automatic flush timer on the running event loop.

        Idempotent. Returns True when the timer is armed; False when the engine is
        not configured or no event loop is running (size-triggered and manual
        flushes still work in that case).
        """
        self._stopped = False
        if self._timer is not None:
            return True
        if self._options is None:
            self._log.debug("start() called before configure(); timer not armed")
            return False
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.debug("No running event loop; automatic flushing is disarmed")
            return False
        self._arm()
        return True

    def stop(self) -> asyncio.Task[None] | None:
        """Flush once more, then disarm the timer.

        Records pushed afterwards are buffered but not flushed automatically until
        `start()` is called again. Returns the final flush's delivery task, if any.
        """
        pending = self.flush()
        self._cancel_timer()
        self._stopped = True
        return pending

    async def aclose(self) -> None:
        """Stop the engine and wait for in-flight deliveries to settle.

        Safe to call multiple times.
        """
        self.stop()
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        while self._closers:
            await asyncio.to_thread(self._closers.pop())

    def _off_loop_thread(self) -> bool:
        """True when called from a thread other than the one running the engine's loop."""
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            return False
        try:
            return asyncio.get_running_loop() is not loop
        except RuntimeError:
            return True

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._loop is None or self._loop.is_closed() or self._options is None:
            return
        self._timer = self._loop.call_later(self._options.flush_interval_ms / 1000.0, self._on_timer)

    def _on_timer(self) -> None:
        # flush() re-arms while the handle is still set.
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
