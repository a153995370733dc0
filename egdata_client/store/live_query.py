"""
Live queries: derived values that follow their source Collections.

A LiveQuery runs `reader(*snapshots)` (one list of records per source, in
the order the sources were given) and re-runs it synchronously after every
committed change to any source. Subscribers are called in registration order
with the new value, and only when the value actually changed.
"""

from typing import Any, Callable, Generic, TypeVar

from egdata_client.logger import setup_logger
from egdata_client.store.collection import Change, Collection

logger = setup_logger()

T = TypeVar("T")


class LiveQuery(Generic[T]):
    """
    Usage:
        newest_first = LiveQuery(
            lambda logs: sorted(logs, key=lambda e: e.timestamp, reverse=True),
            context.logs,
        )
        unsubscribe = newest_first.subscribe(render)
        newest_first.value  # always current
    """

    def __init__(self, reader: Callable[..., T], *sources: Collection):
        if not sources:
            raise ValueError("LiveQuery needs at least one source collection")
        self._reader = reader
        self._sources = sources
        self._callbacks: list[Callable[[T], Any]] = []
        self._detach: list[Callable[[], None]] = []
        self._value: T = None

    @property
    def value(self) -> T:
        if not self._detach:
            # Not attached to the sources, so nothing keeps the cache fresh
            return self._evaluate()
        return self._value

    @property
    def is_attached(self) -> bool:
        return bool(self._detach)

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        """Register `callback(value)`; the first subscriber attaches the query to its sources."""
        if not self._detach:
            self._attach()
        self._callbacks.append(callback)

        def unsubscribe():
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return
            if not self._callbacks:
                self.close()

        return unsubscribe

    def close(self) -> None:
        """Detach from every source; `value` falls back to evaluating on access."""
        for detach in self._detach:
            detach()
        self._detach = []
        self._callbacks = []

    def _attach(self) -> None:
        self._value = self._evaluate()
        self._detach = [source.subscribe(self._on_change) for source in self._sources]

    def _evaluate(self) -> T:
        return self._reader(*(source.values() for source in self._sources))

    def _on_change(self, changes: list[Change]) -> None:
        value = self._evaluate()
        if value == self._value:
            return
        self._value = value
        errors = []
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Live query subscriber failed: {e}", exc_info=e)
                errors.append(e)
        if errors:
            raise errors[0]


def query(reader: Callable[..., T], *sources: Collection) -> LiveQuery[T]:
    return LiveQuery(reader, *sources)
