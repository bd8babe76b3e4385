"""Lightweight structured diagnostics.

Records are plain dicts (ts, level, event, **fields) handed to a caller supplied
sink. With no sink the library stays silent; stderr_sink gives the JSON lines
on stderr behaviour for callers that want it.
"""
from __future__ import annotations
import os, sys, json, time, threading
from typing import Any, Callable, Dict, Optional

Sink = Callable[[Dict[str, Any]], None]

_lock = threading.Lock()
LEVEL_ORDER = ["DEBUG", "INFO", "WARN", "ERROR"]


def _threshold() -> str:
    # Read per call so LOG_LEVEL changes apply without re-creating loggers
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def _should(level: str) -> bool:
    try:
        return LEVEL_ORDER.index(level) >= LEVEL_ORDER.index(_threshold())
    except ValueError:
        return True


def stderr_sink(record: Dict[str, Any]) -> None:
    line = json.dumps(record, separators=(',', ':'), default=str)
    with _lock:
        sys.stderr.write(line + "\n")
        sys.stderr.flush()


class DiagnosticLog:
    """Routes structured events to a sink. A None sink drops everything."""

    def __init__(self, sink: Optional[Sink] = None):
        self.sink = sink

    def log(self, level: str, event: str, **fields) -> None:
        level = level.upper()
        if self.sink is None or not _should(level):
            return
        record: Dict[str, Any] = {
            "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
            "level": level,
            "event": event,
        }
        record.update(fields)
        self.sink(record)

    def debug(self, event: str, **fields): self.log("DEBUG", event, **fields)
    def info(self, event: str, **fields): self.log("INFO", event, **fields)
    def warn(self, event: str, **fields): self.log("WARN", event, **fields)
    def error(self, event: str, **fields): self.log("ERROR", event, **fields)


def as_log(log: "DiagnosticLog | Sink | None") -> DiagnosticLog:
    """Accept either a DiagnosticLog, a bare sink callable, or None."""
    if isinstance(log, DiagnosticLog):
        return log
    return DiagnosticLog(log)
