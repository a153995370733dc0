"""
Settings Synchronizer

One settings record, edited optimistically:

1. update_settings(partial) merges `partial` into the local record and
   commits it immediately, so the UI reflects the edit with no latency.
2. The merged record is then persisted to the backend in a background task.
3. If persisting fails, the authoritative record is re-fetched and written
   over the local one (rollback by refetch).

Overlapping edits are last-write-wins per field: each call merges against
the record as it is at call time. Known limitation: a rollback overwrites
unconditionally, so edits made optimistically after the failed one and not
yet persisted are lost along with it.
"""

import asyncio
from typing import Any, Mapping, Optional

import msgspec

from egdata_client.constants import Operation, SETTINGS_KEY
from egdata_client.errors import BackendRejection, ClientError, NotFoundError, ValidationError
from egdata_client.gateway import BackendGateway
from egdata_client.logger import setup_logger
from egdata_client.models import Settings, convert
from egdata_client.store.context import StoreContext
from egdata_client.store.live_query import LiveQuery
from egdata_client.sync.status import OperationTracker

logger = setup_logger()

LOAD = "load_settings"
PERSIST = "update_settings"

EDITABLE_FIELDS = frozenset(f for f in Settings.__struct_fields__ if f != "id")


class SettingsSynchronizer:
    def __init__(self, context: StoreContext, gateway: BackendGateway, tracker: Optional[OperationTracker] = None):
        self._settings = context.settings
        self._gateway = gateway
        self._tasks = context.tasks
        self._tracker = tracker or OperationTracker(context.operations)

    @property
    def current(self) -> Optional[Settings]:
        return self._settings.get(SETTINGS_KEY)

    def query(self) -> LiveQuery[Optional[Settings]]:
        return LiveQuery(
            lambda records: next((s for s in records if s.id == SETTINGS_KEY), None),
            self._settings,
        )

    async def fetch(self) -> Settings:
        """Authoritative settings from the backend (not written to the store)."""
        raw = await self._gateway.call(Operation.GET_SETTINGS)
        if not isinstance(raw, Mapping):
            raise BackendRejection(Operation.GET_SETTINGS, f"expected an object, got {type(raw).__name__}")
        try:
            return convert({**raw, "id": SETTINGS_KEY}, Settings)
        except msgspec.ValidationError as e:
            raise BackendRejection(Operation.GET_SETTINGS, f"malformed settings: {e}") from e

    async def load(self) -> Settings:
        """Fetch the settings and replace the local record with them."""
        with self._tracker.track(LOAD):
            settings = await self.fetch()
            self._settings.insert(settings)
        logger.info(f"Settings loaded: {settings.to_backend()}")
        return settings

    def update_settings(self, partial: Mapping[str, Any]) -> asyncio.Task:
        """
        Optimistically apply `partial` and start persisting it.

        The local record is updated before this returns. The returned task
        resolves to True once the backend accepted the settings, or False
        after a failed write was rolled back.

        Raises:
            ValidationError: unknown field or out-of-range value (nothing applied)
            NotFoundError: settings were never loaded
        """
        unknown = set(partial) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")
        if SETTINGS_KEY not in self._settings:
            raise NotFoundError(self._settings.name, SETTINGS_KEY)

        merged = self._settings.update(SETTINGS_KEY, lambda draft: draft.update(partial))
        logger.debug(f"Settings updated locally: {dict(partial)}")
        self._tracker.started(PERSIST)
        return self._tasks.spawn(self._persist(merged), name="persist-settings")

    async def _persist(self, merged: Settings) -> bool:
        try:
            await self._gateway.call(Operation.SET_SETTINGS, {"new_settings": merged.to_backend()})
        except ClientError as e:
            logger.warning(f"Failed to save settings, reverting to backend values: {e}")
            self._tracker.failed(PERSIST, e)
            await self._rollback()
            return False
        self._tracker.succeeded(PERSIST)
        logger.info("Settings saved")
        return True

    async def _rollback(self) -> None:
        try:
            settings = await self.fetch()
        except ClientError as e:
            # Nothing authoritative to roll back to; the optimistic value stays
            logger.error(f"Failed to revert settings: {e}")
            return
        self._settings.insert(settings)
        logger.info("Settings reverted to backend values")
