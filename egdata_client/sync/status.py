import asyncio
from contextlib import contextmanager
from datetime import datetime

from egdata_client.models import OperationStatus
from egdata_client.store.collection import Collection
from egdata_client.store.live_query import LiveQuery


class OperationTracker:
    """
    Records pending/succeeded/failed for the in-flight call of each named
    operation in the `operations` collection, so the UI can follow it live.
    """

    def __init__(self, operations: Collection[OperationStatus]):
        self._operations = operations

    def get(self, name: str) -> OperationStatus:
        return self._operations.get(name) or OperationStatus(id=name)

    def query(self, name: str) -> LiveQuery[OperationStatus]:
        return LiveQuery(lambda ops: next((op for op in ops if op.id == name), OperationStatus(id=name)),
                         self._operations)

    def started(self, name: str) -> None:
        self._operations.insert(OperationStatus(id=name, state="pending", started_at=datetime.now()))

    def succeeded(self, name: str) -> None:
        self._finish(name, "succeeded", None)

    def failed(self, name: str, error: BaseException | str) -> None:
        self._finish(name, "failed", str(error))

    def _finish(self, name: str, state: str, error) -> None:
        current = self.get(name)
        self._operations.insert(OperationStatus(
            id=name,
            state=state,
            started_at=current.started_at,
            finished_at=datetime.now(),
            error=error,
        ))

    @contextmanager
    def track(self, name: str):
        """Mark `name` pending for the duration of the block, then succeeded or failed."""
        self.started(name)
        try:
            yield
        except asyncio.CancelledError:
            self.failed(name, "cancelled")
            raise
        except Exception as e:
            self.failed(name, e)
            raise
        self.succeeded(name)
