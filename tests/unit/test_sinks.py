from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Sequence
from pathlib import Path

import duckdb
import pytest

from callmeter import DuckDBSink, FlushEngine, InMemorySink, MonitorSettings, TimingRecord, to_thread


def _record(fn_name: str, **params: object) -> TimingRecord:
    return TimingRecord(service="svc", fn_name=fn_name, time=7, level="debug", params=dict(params))


def test_in_memory_sink_keeps_batches_separately():
    sink = InMemorySink()

    sink([_record("a"), _record("b")])
    sink([_record("c")])

    assert [[r.fn_name for r in b] for b in sink.batches] == [["a", "b"], ["c"]]
    assert [r.fn_name for r in sink.snapshot()] == ["a", "b", "c"]

    # Snapshots are copies.
    sink.batches[0].clear()
    assert len(sink.snapshot()) == 3
    sink.close()


def test_duckdb_sink_persists_batches(tmp_path: Path):
    db_path = tmp_path / "timings.duckdb"
    sink = DuckDBSink(path=db_path)
    engine = FlushEngine().configure(sink=sink)
    monitor = engine.new_monitor("orders")

    def place(count: int) -> int:
        if count <= 0:
            raise ValueError("count must be positive")
        return count

    monitor.debug(place)(3)
    with pytest.raises(ValueError):
        monitor.debug(place)(0)
    engine.flush()

    assert sink.count() == 2
    sink([])
    sink.close()

    conn = duckdb.connect(str(db_path))
    rows = conn.execute(
        "select service, fn_name, level, params_json from timing_records order by params_json"
    ).fetchall()
    conn.close()

    assert [r[:3] for r in rows] == [("orders", "place", "debug"), ("orders", "place", "debug")]
    params = [json.loads(r[3]) for r in rows]
    assert {} in params
    errors = [p["err"] for p in params if p]
    assert len(errors) == 1
    assert "count must be positive" in errors[0]


def test_duckdb_sink_custom_table(tmp_path: Path):
    sink = DuckDBSink(path=tmp_path / "t.duckdb", table="custom_timings")
    sink([_record("a", attempt=1)])
    assert sink.count() == 1
    sink.close()


@pytest.mark.asyncio
async def test_to_thread_sink_delivers_and_rebuffers_failures() -> None:
    delivered: list[list[str]] = []
    fail = True

    def blocking_sink(records: Sequence[TimingRecord]) -> None:
        if fail:
            raise OSError("disk full")
        delivered.append([r.fn_name for r in records])

    engine = FlushEngine().configure(sink=to_thread(blocking_sink))
    engine.push(_record("a"))

    delivery = engine.flush()
    assert delivery is not None
    await delivery
    assert engine.pending == 1

    fail = False
    engine.push(_record("b"))
    await engine.aclose()

    assert delivered == [["a", "b"]]
    assert engine.pending == 0


@pytest.mark.real_threads
@pytest.mark.asyncio
async def test_to_thread_sink_runs_off_the_event_loop_thread() -> None:
    sink = InMemorySink()
    seen: list[int] = []

    def blocking_sink(records: Sequence[TimingRecord]) -> None:
        seen.append(threading.get_ident())
        sink(records)

    engine = FlushEngine().configure(sink=to_thread(blocking_sink))
    engine.new_monitor("svc")(lambda: None, "tick")()

    delivery = engine.flush()
    assert delivery is not None
    await delivery
    await engine.aclose()

    assert len(seen) == 1
    assert seen[0] != threading.get_ident()
    assert [r.fn_name for r in sink.snapshot()] == ["tick"]


@pytest.mark.real_threads
@pytest.mark.asyncio
async def test_duckdb_path_setting_selects_a_threaded_duckdb_sink(tmp_path: Path) -> None:
    db_path = tmp_path / "settings.duckdb"
    engine = FlushEngine.from_settings(MonitorSettings(duckdb_path=str(db_path), max_buffer_size=2))
    monitor = engine.new_monitor("orders")

    monitor.log_time("info", "place", 0, 12)
    monitor.log_time("debug", "cancel", 0, 3)
    await asyncio.sleep(0)
    monitor.log_time("info", "refund", 0, 5)
    await engine.aclose()

    con = duckdb.connect(str(db_path))
    try:
        rows = con.execute("select fn_name, time_ms from timing_records order by fn_name").fetchall()
    finally:
        con.close()
    assert rows == [("cancel", 3), ("place", 12), ("refund", 5)]
