"""
Log Stream

Append-only, capped console log. Two sources feed it at the same time:
local notices (append() directly, or any logger through LogStreamHandler)
and `log-event` / `log-batch` pushes from the background process.

Entries are never updated. Display order (newest first) is imposed by the
live query, not by insertion; ties on timestamp fall back to the per-stream
sequence number.
"""

import asyncio
import itertools
import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

from egdata_client.constants import Event, LEVEL_ALIASES, LOG_LEVELS
from egdata_client.errors import NotFoundError
from egdata_client.gateway import BackendGateway
from egdata_client.logger import setup_logger
from egdata_client.models import LogBatchPayload, LogEntry, LogEventPayload
from egdata_client.store.context import StoreContext
from egdata_client.store.live_query import LiveQuery

logger = setup_logger()

DEFAULT_MAX_ENTRIES = 1000


def _order_key(entry: LogEntry):
    return (entry.timestamp, entry.sequence)


def newest_first(entries: List[LogEntry]) -> List[LogEntry]:
    return sorted(entries, key=_order_key, reverse=True)


def format_entry(level: str, message: str, timestamp: datetime, source_timestamp: Optional[str] = None) -> str:
    return f"[{source_timestamp or timestamp.strftime('%H:%M:%S')}] {level}: {message}"


class LogStream:
    def __init__(self, context: StoreContext, gateway: Optional[BackendGateway] = None,
                 max_entries: int = DEFAULT_MAX_ENTRIES):
        self._logs = context.logs
        self._gateway = gateway
        self.max_entries = max_entries
        self._sequence = itertools.count(1)
        self._unsubscribers: list[Callable[[], None]] = []

    def query(self) -> LiveQuery[List[LogEntry]]:
        return LiveQuery(newest_first, self._logs)

    def append(self, level: str, message: str, timestamp: Optional[datetime] = None,
               source_timestamp: Optional[str] = None) -> LogEntry:
        """
        Insert a new entry with a unique key.

        Keys combine the millisecond clock with a sequence number, so entries
        created within the same millisecond never collide.
        """
        level = level.upper()
        level = LEVEL_ALIASES.get(level, level)
        if level not in LOG_LEVELS:
            level = "INFO"
        timestamp = timestamp or datetime.now()
        sequence = next(self._sequence)
        entry = LogEntry(
            id=f"{time.time_ns() // 1_000_000}-{sequence}",
            level=level,
            message=message,
            timestamp=timestamp,
            sequence=sequence,
            formatted=format_entry(level, message, timestamp, source_timestamp),
            source_timestamp=source_timestamp,
        )
        self._logs.insert(entry)
        self._enforce_cap()
        return entry

    def clear(self) -> int:
        """
        Delete every entry known at call time.

        Entries appended while clearing (by a subscriber reacting to a delete)
        may survive; keys that vanished in the meantime are skipped.
        """
        removed = 0
        for key in self._logs.keys():
            try:
                self._logs.delete(key)
            except NotFoundError:
                continue
            removed += 1
        return removed

    def _enforce_cap(self) -> None:
        excess = len(self._logs) - self.max_entries
        if excess <= 0:
            return
        for entry in sorted(self._logs.values(), key=_order_key)[:excess]:
            try:
                self._logs.delete(entry.id)
            except NotFoundError:
                continue

    # -------------------------------------------------------------------------
    # Push events
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        if self._gateway is None or self._unsubscribers:
            return
        self._unsubscribers = [
            self._gateway.subscribe(Event.LOG_EVENT, self._on_log_event),
            self._gateway.subscribe(Event.LOG_BATCH, self._on_log_batch),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_log_event(self, event: LogEventPayload) -> None:
        self.append(event.level, event.message, source_timestamp=event.timestamp)

    def _on_log_batch(self, event: LogBatchPayload) -> None:
        for item in event.entries:
            self.append(item.level, item.message, source_timestamp=item.timestamp)


class LogStreamHandler(logging.Handler):
    """
    Logging handler that mirrors records into a LogStream.

    Records emitted from another thread are handed to the event loop the
    handler was created on, since the store is only mutated from the loop.
    """

    def __init__(self, stream: LogStream, loop: Optional[asyncio.AbstractEventLoop] = None,
                 level=logging.INFO):
        super().__init__(level)
        self.stream = stream
        self._loop = loop
        self._loop_thread_id = threading.get_ident()
        self._local = threading.local()

    def emit(self, record: logging.LogRecord):
        # Appending may itself log; don't feed those back into the stream
        if getattr(self._local, "emitting", False):
            return
        try:
            message = record.getMessage()
            timestamp = datetime.fromtimestamp(record.created)
            if self._loop is not None and threading.get_ident() != self._loop_thread_id:
                self._loop.call_soon_threadsafe(self._append, record.levelname, message, timestamp)
            else:
                self._append(record.levelname, message, timestamp)
        except Exception:
            self.handleError(record)

    def _append(self, level: str, message: str, timestamp: datetime) -> None:
        self._local.emitting = True
        try:
            self.stream.append(level, message, timestamp=timestamp)
        finally:
            self._local.emitting = False


def add_stream_handler(logger_to_extend: logging.Logger, stream: LogStream,
                       loop: Optional[asyncio.AbstractEventLoop] = None) -> LogStreamHandler:
    """
    Add a LogStreamHandler to an existing logger instance, replacing any
    previous one so records are not mirrored twice.
    """
    for handler in logger_to_extend.handlers[:]:
        if isinstance(handler, LogStreamHandler):
            logger_to_extend.removeHandler(handler)

    handler = LogStreamHandler(stream, loop)
    logger_to_extend.addHandler(handler)
    return handler
