"""Call-level timing instrumentation.

This package provides:
- Wrappers that time synchronous, awaitable and callback-style calls.
- An in-memory buffer that hands records to a caller-supplied sink in batches,
  on a timer, on demand, or when a size threshold is reached.
- Best-effort, never-drop retry: failed batches are kept for the next flush.
"""

from .config import MonitorSettings, load_config
from .engine import EngineOptions, FlushEngine
from .errors import CallmeterError, ConfigurationError, InvalidLevelError
from .levels import LEVEL_RANKS, LevelFilter
from .models import Level, TimingRecord
from .monitor import ANONYMOUS, Monitor
from .sinks import DuckDBSink, InMemorySink, Sink, to_thread

__all__ = [
    "ANONYMOUS",
    "CallmeterError",
    "ConfigurationError",
    "DuckDBSink",
    "EngineOptions",
    "FlushEngine",
    "InMemorySink",
    "InvalidLevelError",
    "LEVEL_RANKS",
    "Level",
    "LevelFilter",
    "Monitor",
    "MonitorSettings",
    "Sink",
    "TimingRecord",
    "load_config",
    "to_thread",
]
