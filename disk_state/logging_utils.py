"""Structured event log for disk-state operations.

Every inspect, test and converge step reports what it looked at or changed
through :func:`log_event`. Events are plain records handed to the active
sink, so nothing in the core depends on how or whether they are written.

The default sink, :func:`json_sink`, writes one JSON line per event to
``stderr`` and to an append-only log file when ``DISK_STATE_LOG_EVENTS`` is
set. Embedding hosts install their own sink with :func:`set_event_sink`;
:func:`null_sink` discards everything.
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

EventRecord = Dict[str, Any]
EventSink = Callable[[EventRecord], None]

_FALSE_VALUES = {"", "0", "false", "no", "off"}


def _plain(value: Any) -> Any:
    """Reduce *value* to JSON types, falling back to ``repr``."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return repr(value)


def event_logging_enabled() -> bool:
    """Return whether ``DISK_STATE_LOG_EVENTS`` asks for the JSON event log."""

    value = os.environ.get("DISK_STATE_LOG_EVENTS")
    return value is not None and value.strip().lower() not in _FALSE_VALUES


def log_file_path() -> Path:
    """Return ``DISK_STATE_LOG_FILE`` or the per-host default location."""

    value = os.environ.get("DISK_STATE_LOG_FILE", "").strip()
    if value:
        return Path(value)
    program_data = os.environ.get("ProgramData") or os.environ.get("PROGRAMDATA")
    if program_data:
        return Path(program_data) / "disk-state" / "actions.log"
    return Path("/var/log/disk-state/actions.log")


def json_sink(record: EventRecord) -> None:
    """Write *record* as a JSON line to ``stderr`` and the log file.

    Does nothing unless :func:`event_logging_enabled`. A log file that cannot
    be written is reported on ``stderr`` and otherwise ignored.
    """

    if not event_logging_enabled():
        return
    line = json.dumps(record, sort_keys=True)
    sys.stderr.write(line + "\n")
    sys.stderr.flush()

    path = log_file_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    except OSError as exc:
        sys.stderr.write(f"disk-state: cannot append to {path}: {exc}\n")
        sys.stderr.flush()


def null_sink(record: EventRecord) -> None:
    """Discard *record*."""


_sink: EventSink = json_sink


def set_event_sink(sink: Optional[EventSink]) -> EventSink:
    """Install *sink* for all later events and return the previous one.

    ``None`` restores :func:`json_sink`.
    """

    global _sink
    previous = _sink
    _sink = sink if sink is not None else json_sink
    return previous


@contextlib.contextmanager
def captured_events() -> Iterator[List[EventRecord]]:
    """Collect the events logged inside the ``with`` block into a list."""

    records: List[EventRecord] = []
    previous = set_event_sink(records.append)
    try:
        yield records
    finally:
        set_event_sink(previous)


def log_event(event: str, **fields: Any) -> None:
    """Hand a timestamped record for *event* to the active sink.

    *event* is a dotted name such as ``disk_state.reconciler.disk.online``.
    Field values are reduced to JSON types before the sink sees them.
    """

    record: EventRecord = {
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        record[str(key)] = _plain(value)
    _sink(record)

