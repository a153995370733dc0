"""
Game Library Synchronizer

Keeps the `games` collection equal to the background process's list of
installed games. Every refresh fetches the full list and reconciles it into
the collection in a single commit: new keys are inserted, known keys updated
in place, vanished keys deleted. A live query over the library therefore
never sees a transient empty list while a refresh is applied.

Refreshes are numbered. A result that arrives after a newer refresh has
already been applied is stale and is dropped instead of overwriting fresher
data.
"""

import itertools
from datetime import datetime
from typing import Iterable, List, Optional

import msgspec

from egdata_client.constants import (
    Event,
    KEY_IMAGE_TALL,
    KEY_IMAGE_WIDE,
    Operation,
    PLACEHOLDER_COVER_URL,
    PLACEHOLDER_ICON_URL,
    SIZE_UNITS,
)
from egdata_client.errors import BackendRejection, ClientError
from egdata_client.gateway import BackendGateway
from egdata_client.logger import setup_logger
from egdata_client.models import GameInfo, GamesUpdatedPayload, InstalledItem, convert
from egdata_client.store.context import StoreContext
from egdata_client.store.live_query import LiveQuery
from egdata_client.sync.progress import ScanProgressEstimator
from egdata_client.sync.status import OperationTracker

logger = setup_logger()

REFRESH = "refresh"
SCAN = "scan"


# =============================================================================
# Conversion helpers
# =============================================================================

def format_file_size(size_bytes: int) -> str:
    """Human-readable size, base 1024, at most two decimals (1536 -> '1.5 KB')."""
    if size_bytes <= 0:
        return "0 Bytes"
    i = 0
    while size_bytes >= 1024 ** (i + 1) and i < len(SIZE_UNITS) - 1:
        i += 1
    value = round(size_bytes / 1024 ** i, 2)
    return f"{value:g} {SIZE_UNITS[i]}"


def resolve_images(info: GameInfo) -> tuple[str, str]:
    """
    Pick (cover, icon) for a game.

    Prefers the tall box art, then the wide box art; without either, both
    fall back to generated placeholders seeded by the app name so the same
    game always gets the same placeholder.
    """
    if info.metadata is not None:
        images = {}
        for image in info.metadata.keyImages:
            images.setdefault(image.type, image.url)
        for image_type in (KEY_IMAGE_TALL, KEY_IMAGE_WIDE):
            url = images.get(image_type)
            if url:
                return url, url
    return (
        PLACEHOLDER_COVER_URL.format(seed=info.app_name),
        PLACEHOLDER_ICON_URL.format(seed=info.app_name),
    )


def to_installed_item(info: GameInfo, scanned_at: Optional[datetime] = None) -> InstalledItem:
    cover, icon = resolve_images(info)
    name = info.metadata.title if info.metadata is not None and info.metadata.title else info.display_name
    return InstalledItem(
        id=info.catalog_item_id,
        name=name,
        app_name=info.app_name,
        icon=icon,
        cover_image=cover,
        size=format_file_size(info.install_size),
        install_size=info.install_size,
        install_path=info.install_location,
        version=info.version,
        last_scanned=scanned_at or datetime.now(),
        installation_guid=info.installation_guid,
        manifest_hash=info.manifest_hash,
    )


def fuzzy_match(text: str, term: str) -> bool:
    """Case-insensitive substring match, or every character of `term` appearing in order."""
    if not term:
        return True
    term = term.lower()
    text = text.lower()
    if term in text:
        return True
    remaining = iter(text)
    return all(char in remaining for char in term)


def search_items(items: Iterable[InstalledItem], term: str) -> List[InstalledItem]:
    term = term.strip()
    if not term:
        return list(items)
    return [
        item for item in items
        if fuzzy_match(item.name, term) or fuzzy_match(item.id, term) or fuzzy_match(item.install_path, term)
    ]


# =============================================================================
# Synchronizer
# =============================================================================

class GameLibrarySynchronizer:
    """Read-mostly cache of installed games, replaced on every refresh."""

    def __init__(self, context: StoreContext, gateway: BackendGateway, tracker: Optional[OperationTracker] = None):
        self._games = context.games
        self._gateway = gateway
        self._tasks = context.tasks
        self._tracker = tracker or OperationTracker(context.operations)
        self._generations = itertools.count(1)
        self._applied_generation = 0
        self._unsubscribe = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def query(self) -> LiveQuery[List[InstalledItem]]:
        return LiveQuery(lambda games: sorted(games, key=lambda g: g.name.lower()), self._games)

    def search(self, term: str) -> LiveQuery[List[InstalledItem]]:
        return LiveQuery(
            lambda games: search_items(sorted(games, key=lambda g: g.name.lower()), term),
            self._games,
        )

    def find_by_manifest_hash(self, manifest_hash: str) -> Optional[InstalledItem]:
        return next((item for item in self._games.values() if item.manifest_hash == manifest_hash), None)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def refresh(self) -> List[InstalledItem]:
        """
        Fetch the full list of installed games and reconcile the collection.

        Raises:
            TransportError / BackendRejection: the fetch failed; the
                collection is left exactly as it was
        """
        generation = next(self._generations)
        with self._tracker.track(REFRESH):
            raw = await self._gateway.call(Operation.GET_INSTALLED_GAMES)
            try:
                infos = convert(raw, List[GameInfo])
            except msgspec.ValidationError as e:
                raise BackendRejection(Operation.GET_INSTALLED_GAMES, f"malformed games list: {e}") from e

            if generation < self._applied_generation:
                logger.info(
                    f"Discarding stale library refresh #{generation} "
                    f"(#{self._applied_generation} already applied)"
                )
                return self._games.values()

            scanned_at = datetime.now()
            changes = self._games.reconcile(to_installed_item(info, scanned_at) for info in infos)
            self._applied_generation = generation

        added = sum(1 for c in changes if c.kind == "insert")
        removed = sum(1 for c in changes if c.kind == "delete")
        logger.info(
            f"Library refreshed: {len(self._games)} games "
            f"({added} added, {removed} removed, {len(changes) - added - removed} updated)"
        )
        return self._games.values()

    async def scan(self, estimator: Optional[ScanProgressEstimator] = None) -> List[InstalledItem]:
        """Ask the backend to rescan now, then refresh the library from its result."""
        logger.info("Starting scan for installed games...")
        with self._tracker.track(SCAN):
            if estimator is not None:
                await estimator.track(self._gateway.call(Operation.SCAN_GAMES_NOW))
            else:
                await self._gateway.call(Operation.SCAN_GAMES_NOW)
            return await self.refresh()

    # -------------------------------------------------------------------------
    # Push events
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        """Refresh whenever the backend reports the library changed out-of-band."""
        if self._unsubscribe is None:
            self._unsubscribe = self._gateway.subscribe(Event.GAMES_UPDATED, self._on_games_updated)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_games_updated(self, event: GamesUpdatedPayload) -> None:
        self._tasks.spawn(self._refresh_after_event(), name="games-updated-refresh")

    async def _refresh_after_event(self) -> None:
        try:
            await self.refresh()
        except ClientError as e:
            logger.error(f"Failed to update games from backend: {e}")
