"""
Upload Reconciler

Tracks which manifests (by content hash) the backend has already accepted,
so the UI can hint that uploading again is pointless. The backend is the only
authority on duplicates: upload() may come back `already_uploaded` even when
nothing is cached locally (e.g. after the cache was lost), and that is a
normal result, not an error. A `failed` result is returned, never raised; its
message is passed through untouched for the presentation layer to interpret.

Accepted hashes are mirrored, best effort, into a JSON file in the user data
directory so the hint survives restarts when the backend cache is gone.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles
import msgspec

from egdata_client.constants import Event, Operation
from egdata_client.errors import BackendRejection, ClientError, NotFoundError, TransportError
from egdata_client.gateway import BackendGateway
from egdata_client.logger import setup_logger
from egdata_client.models import (
    UploadBatchPayload,
    UploadRecord,
    UploadStatus,
    convert,
    decode_json,
    encode_json,
)
from egdata_client.store.collection import Change
from egdata_client.store.context import StoreContext
from egdata_client.store.live_query import LiveQuery
from egdata_client.sync.status import OperationTracker

logger = setup_logger()

UPLOAD = "upload"
UPLOAD_ALL = "upload_all"

MIRROR_FILE_NAME = "uploaded-manifests.json"


class UploadMirror:
    """
    Durable copy of accepted manifest hashes, stored as a plain JSON array of
    strings. Every failure is logged and ignored: the mirror is a fallback
    hint and never required for correctness.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._hashes: set[str] = set()

    @property
    def hashes(self) -> frozenset[str]:
        return frozenset(self._hashes)

    def __contains__(self, manifest_hash) -> bool:
        return manifest_hash in self._hashes

    async def load(self) -> None:
        if not self.path.exists():
            return
        try:
            async with aiofiles.open(self.path, "rb") as f:
                data = await f.read()
            self._hashes = set(decode_json(data, type=List[str]))
            logger.debug(f"Loaded {len(self._hashes)} uploaded manifest hashes from {self.path}")
        except (OSError, msgspec.DecodeError) as e:
            logger.warning(f"Could not read upload mirror {self.path}: {e}")

    async def add(self, manifest_hash: str) -> None:
        if manifest_hash in self._hashes:
            return
        self._hashes.add(manifest_hash)
        await self._save()

    async def discard(self, manifest_hash: str) -> None:
        if manifest_hash not in self._hashes:
            return
        self._hashes.discard(manifest_hash)
        await self._save()

    async def clear(self) -> None:
        self._hashes.clear()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove upload mirror {self.path}: {e}")

    async def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "wb") as f:
                await f.write(encode_json(sorted(self._hashes)))
        except OSError as e:
            logger.warning(f"Could not write upload mirror {self.path}: {e}")


class UploadReconciler:
    def __init__(self, context: StoreContext, gateway: BackendGateway,
                 mirror: Optional[UploadMirror] = None, tracker: Optional[OperationTracker] = None):
        self._uploads = context.uploads
        self._games = context.games
        self._gateway = gateway
        self._mirror = mirror
        self._tracker = tracker or OperationTracker(context.operations)
        self._unsubscribe = None
        if mirror is not None:
            self._uploads.set_hook("insert", self._mirror_insert)
            self._uploads.set_hook("delete", self._mirror_delete)

    def query(self) -> LiveQuery[List[UploadRecord]]:
        return LiveQuery(lambda records: sorted(records, key=lambda r: r.uploaded_at, reverse=True), self._uploads)

    def is_uploaded(self, manifest_hash: str) -> bool:
        """
        UI hint only (e.g. to disable an upload button). Never use this to
        decide whether the backend will accept or reject an upload.
        """
        if manifest_hash in self._uploads:
            return True
        return self._mirror is not None and manifest_hash in self._mirror

    async def load_mirror(self) -> None:
        if self._mirror is not None:
            await self._mirror.load()

    async def upload(self, item_id: str, installation_guid: str) -> UploadStatus:
        """
        Upload one item's manifest and record the outcome.

        Always returns an UploadStatus; transport and backend errors become a
        `failed` result carrying the error text.
        """
        self._tracker.started(UPLOAD)
        try:
            raw = await self._gateway.call(
                Operation.UPLOAD_MANIFEST,
                {"game_id": item_id, "installation_guid": installation_guid},
            )
            result = self._convert_result(Operation.UPLOAD_MANIFEST, raw)
        except (TransportError, BackendRejection) as e:
            logger.error(f"Upload error for {item_id}: {e}")
            result = UploadStatus(status="failed", message=str(e))

        self.merge(result, item_id=item_id, installation_guid=installation_guid)
        if result.status == "failed":
            self._tracker.failed(UPLOAD, result.message or "upload failed")
        else:
            self._tracker.succeeded(UPLOAD)
        return result

    async def upload_all(self) -> List[UploadStatus]:
        """Upload every installed manifest; returns one result per game."""
        with self._tracker.track(UPLOAD_ALL):
            raw = await self._gateway.call(Operation.UPLOAD_ALL_MANIFESTS)
            try:
                results = convert(raw, List[UploadStatus])
            except msgspec.ValidationError as e:
                raise BackendRejection(Operation.UPLOAD_ALL_MANIFESTS, f"malformed results: {e}") from e
        self.merge_batch(results)
        return results

    def merge(self, result: UploadStatus, item_id: Optional[str] = None,
              installation_guid: Optional[str] = None) -> Optional[UploadRecord]:
        """
        Record an accepted manifest. The hash comes from the result, or from
        the installed item when the result omits it; failures and results
        with no resolvable hash leave the cache unchanged.
        """
        if result.status == "failed":
            return None

        manifest_hash = result.manifest_hash
        if not manifest_hash and item_id is not None:
            item = self._games.get(item_id)
            manifest_hash = item.manifest_hash if item is not None else None
        if not manifest_hash:
            return None

        if item_id is None:
            item = next((g for g in self._games.values() if g.manifest_hash == manifest_hash), None)
            if item is not None:
                item_id, installation_guid = item.id, item.installation_guid

        return self._uploads.insert(UploadRecord(
            id=manifest_hash,
            manifest_hash=manifest_hash,
            status=result.status,
            uploaded_at=datetime.now(),
            item_id=item_id,
            installation_guid=installation_guid,
        ))

    def merge_batch(self, results: Iterable[UploadStatus]) -> dict[str, int]:
        counts = {"uploaded": 0, "already_uploaded": 0, "failed": 0}
        for result in results:
            counts[result.status] += 1
            self.merge(result)
        logger.info(
            f"Upload batch completed: {counts['uploaded']} uploaded, "
            f"{counts['already_uploaded']} already uploaded, {counts['failed']} failed"
        )
        return counts

    async def clear(self) -> int:
        """Forget every cached upload, locally and on the backend's side."""
        removed = 0
        for key in self._uploads.keys():
            try:
                self._uploads.delete(key)
            except NotFoundError:
                continue
            removed += 1
        if self._mirror is not None:
            await self._mirror.clear()
        try:
            await self._gateway.call(Operation.CLEAR_UPLOADED_MANIFESTS)
        except ClientError as e:
            logger.warning(f"Backend did not clear its uploaded manifest records: {e}")
        return removed

    # -------------------------------------------------------------------------
    # Push events
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._gateway.subscribe(Event.UPLOAD_BATCH_COMPLETED, self._on_batch_completed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_batch_completed(self, event: UploadBatchPayload) -> None:
        self.merge_batch(event.results)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _convert_result(operation: str, raw) -> UploadStatus:
        try:
            return convert(raw, UploadStatus)
        except msgspec.ValidationError as e:
            raise BackendRejection(operation, f"malformed upload result: {e}") from e

    def _mirror_insert(self, change: Change):
        return self._mirror.add(change.key)

    def _mirror_delete(self, change: Change):
        return self._mirror.discard(change.key)
