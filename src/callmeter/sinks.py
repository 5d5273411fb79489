"""Sinks (batch delivery backends).

Any callable taking a sequence of records works as a sink. The classes here cover
tests/local debugging and embedded local persistence; `to_thread` keeps a
blocking sink off the event loop.
"""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import duckdb

from .models import TimingRecord


class Sink(Protocol):
    """Receives one batch per successful flush.

    Raising, or returning an awaitable/future that fails, marks the delivery as
    failed and the engine keeps the batch for the next flush.
    """

    def __call__(self, records: Sequence[TimingRecord]) -> Any:
        """Deliver a batch of records."""


class InMemorySink:
    """In-memory sink for tests and local debugging."""

    def __init__(self) -> None:
        """Create an empty in-memory sink."""
        self._lock = threading.Lock()
        self._batches: list[list[TimingRecord]] = []

    def __call__(self, records: Sequence[TimingRecord]) -> None:
        """Keep a copy of the batch (thread-safe)."""
        with self._lock:
            self._batches.append(list(records))

    def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    @property
    def batches(self) -> list[list[TimingRecord]]:
        """Return a point-in-time copy of the delivered batches."""
        with self._lock:
            return [list(b) for b in self._batches]

    def snapshot(self) -> Sequence[TimingRecord]:
        """Return every delivered record, in delivery order."""
        with self._lock:
            return [r for batch in self._batches for r in batch]


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "timing_records"


class DuckDBSink:
    """DuckDB sink for durable local persistence.

    Each batch is inserted with a single `executemany`; `params` is stored as JSON
    with non-serializable values (exceptions, mostly) rendered via `repr`.
    """

    def __init__(self, *, path: str | Path, table: str = "timing_records") -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          created timestamptz not null,
          service varchar not null,
          fn_name varchar not null,
          time_ms bigint not null,
          level varchar,
          params_json varchar not null
        )
        """
        with self._lock:
            self._conn.execute(create_sql)

    def __call__(self, records: Sequence[TimingRecord]) -> None:
        """Insert a batch of records."""
        if not records:
            return
        insert_sql = f"""
        insert into {self._opts.table}
        (created, service, fn_name, time_ms, level, params_json)
        values (?, ?, ?, ?, ?, ?)
        """
        rows = [
            [
                r.created,
                r.service,
                r.fn_name,
                r.time,
                r.level,
                json.dumps(r.params, separators=(",", ":"), sort_keys=True, default=repr),
            ]
            for r in records
        ]
        with self._lock:
            self._conn.executemany(insert_sql, rows)

    def count(self) -> int:
        """Return the number of stored records."""
        with self._lock:
            row = self._conn.execute(f"select count(*) from {self._opts.table}").fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()


def to_thread(sink: Callable[[Sequence[TimingRecord]], Any]) -> Callable[[Sequence[TimingRecord]], Any]:
    """Wrap a blocking sink so each delivery runs in a worker thread.

    The returned sink produces a coroutine, so the engine treats the delivery as
    asynchronous and re-buffers the batch if the worker raises.
    """

    async def _deliver(records: Sequence[TimingRecord]) -> None:
        await asyncio.to_thread(sink, records)

    return _deliver
