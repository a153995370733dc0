"""
EGData Client Coordinator
Wires the synchronizers to one Backend Gateway and one StoreContext and
exposes the entry points the rendering layer uses
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional

from egdata_client.config import ClientConfig, get_client_config, get_data_dir
from egdata_client.errors import ClientError
from egdata_client.gateway import BackendGateway
from egdata_client.models import InstalledItem, LogEntry, OperationStatus, Settings, UploadRecord, UploadStatus
from egdata_client.store.context import StoreContext
from egdata_client.store.live_query import LiveQuery
from egdata_client.sync.library import GameLibrarySynchronizer
from egdata_client.sync.logs import LogStream, LogStreamHandler, add_stream_handler
from egdata_client.sync.progress import ScanProgressEstimator
from egdata_client.sync.settings import SettingsSynchronizer
from egdata_client.sync.status import OperationTracker
from egdata_client.sync.uploads import MIRROR_FILE_NAME, UploadMirror, UploadReconciler


class EGDataClient:
    """
    Coordinates the client-side store with the background process.

    Usage:
        client = EGDataClient(gateway, logger)
        await client.initialize()
        games = client.games()            # LiveQuery
        await client.scan_games()
        task = client.update_settings({"concurrency": 5})
        result = await client.upload(item.id, item.installation_guid)
        await client.close()
    """

    def __init__(
        self,
        gateway: BackendGateway,
        logger: logging.Logger,
        context: Optional[StoreContext] = None,
        config: Optional[ClientConfig] = None,
        mirror_path: Optional[Path] = None,
    ):
        self.logger = logger
        self.gateway = gateway
        self.context = context or StoreContext()
        self.config = config or get_client_config()

        self.tracker = OperationTracker(self.context.operations)
        self.library = GameLibrarySynchronizer(self.context, gateway, self.tracker)
        self.settings_sync = SettingsSynchronizer(self.context, gateway, self.tracker)
        self.log_stream = LogStream(self.context, gateway, max_entries=self.config.max_entries)

        mirror = None
        if self.config.mirror_enabled:
            mirror = UploadMirror(mirror_path or get_data_dir() / MIRROR_FILE_NAME)
        self.uploads_sync = UploadReconciler(self.context, gateway, mirror, self.tracker)

        self.progress = ScanProgressEstimator(
            duration_ms=self.config.nominal_duration_ms,
            tick_ms=self.config.tick_interval_ms,
            hold_ms=self.config.hold_ms,
            tasks=self.context.tasks,
        )
        self._log_handler: Optional[LogStreamHandler] = None

    async def initialize(self):
        """
        Load initial state and start listening for push events.

        Each step is independent: a failing one is logged and the client
        keeps working with whatever did load.
        """
        self.logger.info("Initializing store...")

        self._log_handler = add_stream_handler(self.logger, self.log_stream, asyncio.get_running_loop())

        self.library.attach()
        self.log_stream.attach()
        self.uploads_sync.attach()

        try:
            await self.library.refresh()
        except ClientError as e:
            self.logger.error(f"Failed to load installed games: {e}")

        try:
            await self.settings_sync.load()
        except ClientError as e:
            self.logger.error(f"Failed to load settings: {e}")

        await self.uploads_sync.load_mirror()
        self.logger.info("Store initialized")

    async def close(self):
        """Detach from the gateway and cancel this client's background tasks; the gateway stays usable."""
        self.library.detach()
        self.log_stream.detach()
        self.uploads_sync.detach()
        if self._log_handler is not None:
            self.logger.removeHandler(self._log_handler)
            self._log_handler = None
        await self.context.tasks.cancel_all()

    # -------------------------------------------------------------------------
    # Live reads
    # -------------------------------------------------------------------------

    def games(self) -> LiveQuery[List[InstalledItem]]:
        return self.library.query()

    def search_games(self, term: str) -> LiveQuery[List[InstalledItem]]:
        return self.library.search(term)

    def settings(self) -> LiveQuery[Optional[Settings]]:
        return self.settings_sync.query()

    def logs(self) -> LiveQuery[List[LogEntry]]:
        return self.log_stream.query()

    def uploads(self) -> LiveQuery[List[UploadRecord]]:
        return self.uploads_sync.query()

    def operation_status(self, name: str) -> LiveQuery[OperationStatus]:
        return self.tracker.query(name)

    def is_uploaded(self, manifest_hash: str) -> bool:
        return self.uploads_sync.is_uploaded(manifest_hash)

    # -------------------------------------------------------------------------
    # Intents
    # -------------------------------------------------------------------------

    async def scan_games(self) -> List[InstalledItem]:
        try:
            games = await self.library.scan(self.progress)
        except ClientError as e:
            self.logger.error(f"Scan failed: {e}")
            raise
        self.logger.info(f"Scan complete: {len(games)} games found")
        return games

    async def refresh_games(self) -> List[InstalledItem]:
        return await self.library.refresh()

    def update_settings(self, partial: Mapping[str, Any]) -> asyncio.Task:
        return self.settings_sync.update_settings(partial)

    async def upload(self, item_id: str, installation_guid: str) -> UploadStatus:
        return await self.uploads_sync.upload(item_id, installation_guid)

    async def upload_all(self) -> List[UploadStatus]:
        return await self.uploads_sync.upload_all()

    async def clear_uploads(self) -> int:
        return await self.uploads_sync.clear()

    def log(self, level: str, message: str) -> LogEntry:
        return self.log_stream.append(level, message)

    def clear_logs(self) -> int:
        return self.log_stream.clear()
