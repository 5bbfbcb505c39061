#!/usr/bin/env python3
"""
Event tracing for the Value Matrix pipeline
===========================================
Records timed events (NET for the record fetch, CALC for the Stage A /
Stage B recomputations, WRITE for exported files) in memory and flushes
them to CSV/Markdown at the end of a CLI run.

Usage:
    from instrumentation import EventLog, trace_event

    events = EventLog()
    with trace_event(events, "CALC", "Stage A: segregate + medians"):
        plottable, outliers = segregate_outliers(df, thresholds)

    events.flush_all(run_dir)
"""

import csv
import inspect
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

EVENT_COLS = ["#", "Time", "Type", "Duration_ms", "Operation",
              "Caller", "Status", "Details"]


class Event:
    """Single traced event."""
    __slots__ = ("seq", "wall_time", "event_type", "duration_ms",
                 "operation", "caller", "status", "details")

    def __init__(self, seq: int, wall_time: str, event_type: str,
                 duration_ms: float, operation: str, caller: str,
                 status: str, details: str):
        self.seq = seq
        self.wall_time = wall_time
        self.event_type = event_type
        self.duration_ms = duration_ms
        self.operation = operation
        self.caller = caller
        self.status = status
        self.details = details

    def to_dict(self) -> dict:
        return {
            "#": self.seq,
            "Time": self.wall_time,
            "Type": self.event_type,
            "Duration_ms": self.duration_ms,
            "Operation": self.operation,
            "Caller": self.caller,
            "Status": self.status,
            "Details": self.details,
        }


class EventLog:
    """In-memory event list with CSV / Markdown writers."""

    def __init__(self):
        self.events: list[Event] = []
        self._seq = 0

    def record(self, event_type: str, operation: str, duration_ms: float,
               status: str = "OK", details: str = "",
               caller: Optional[str] = None) -> Event:
        if caller is None:
            caller = _get_caller(skip=2)
        self._seq += 1
        evt = Event(
            seq=self._seq,
            wall_time=datetime.now().strftime("%H:%M:%S"),
            event_type=event_type,
            duration_ms=round(duration_ms, 1),
            operation=operation,
            caller=caller,
            status=status,
            details=details,
        )
        self.events.append(evt)
        return evt

    def failures(self) -> list[Event]:
        return [e for e in self.events if e.status != "OK"]

    def flush_csv(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=EVENT_COLS)
            w.writeheader()
            for evt in self.events:
                w.writerow(evt.to_dict())
        return str(path)

    def flush_md(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("# Value Matrix Event Trace\n\n")
            f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")
            f.write(f"- Events: {len(self.events)}\n")
            f.write(f"- Traced time: {sum(e.duration_ms for e in self.events):.1f} ms\n")
            f.write(f"- Failures: {len(self.failures())}\n\n")
            f.write("| " + " | ".join(EVENT_COLS) + " |\n")
            f.write("| " + " | ".join("---" for _ in EVENT_COLS) + " |\n")
            for evt in self.events:
                d = evt.to_dict()
                row = " | ".join(str(d[c]).replace("|", "\\|") for c in EVENT_COLS)
                f.write(f"| {row} |\n")
        return str(path)

    def flush_all(self, report_dir: str | Path):
        d = Path(report_dir)
        self.flush_csv(d / "events.csv")
        self.flush_md(d / "events.md")


def _get_caller(skip: int = 2) -> str:
    """Caller as file:function:line."""
    try:
        frame = inspect.stack()[skip]
        return f"{Path(frame.filename).name}:{frame.function}:{frame.lineno}"
    except (IndexError, AttributeError):
        return "unknown"


@contextmanager
def trace_event(log: EventLog, event_type: str, operation: str,
                details: str = "", caller: Optional[str] = None):
    """Time the enclosed block and record it; exceptions are marked FAIL and re-raised."""
    if caller is None:
        # trace_event -> contextmanager wrapper -> actual caller
        caller = _get_caller(skip=3)
    t0 = time.monotonic()
    status = "OK"
    try:
        yield
    except Exception as exc:
        status = "FAIL"
        err = f"ERROR: {type(exc).__name__}: {exc}"
        details = f"{details}; {err}" if details else err
        raise
    finally:
        log.record(event_type, operation, (time.monotonic() - t0) * 1000,
                   status=status, details=details, caller=caller)


def trace_net_call(log: EventLog, operation: str, hostname: str = "",
                   status_code: int = 0, nbytes: int = 0,
                   duration_ms: float = 0, status: str = "OK",
                   caller: Optional[str] = None):
    """Record a network call. Only the hostname is kept, never the full URL."""
    parts = []
    if hostname:
        parts.append(f"host={hostname}")
    if status_code:
        parts.append(f"status={status_code}")
    if nbytes:
        parts.append(f"bytes={nbytes}")
    if caller is None:
        caller = _get_caller(skip=2)
    log.record("NET", operation, duration_ms,
               status=status, details="; ".join(parts), caller=caller)


def trace_io(log: EventLog, operation: str, path: str = "",
             duration_ms: float = 0, status: str = "OK"):
    """Record a file write."""
    p = Path(path) if path else None
    details = f"path={p.name}; bytes={p.stat().st_size}" if p and p.exists() else ""
    log.record("WRITE", operation, duration_ms, status=status,
               details=details, caller=_get_caller(skip=2))
