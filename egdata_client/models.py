"""
msgspec-based data models for the client-side store.

This module provides:
- Backend payload structures (what the background process returns)
- Store records (what Collections hold)
- Push event payloads, one Struct per event name
- Convenience functions for JSON encoding/decoding and payload conversion

Store records are frozen and hold tuples, never lists: a Collection can hand
out references without callers being able to mutate committed state behind
its back. Sequences become lists again only in backend payloads.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Tuple

import msgspec

from .constants import DEFAULT_ENVIRONMENTS, Event, SETTINGS_KEY


# =============================================================================
# Custom Encoder/Decoder Hooks
# =============================================================================

def datetime_enc_hook(obj):
    """
    Custom encoder hook for datetime objects.
    Converts datetime to ISO 8601 string format.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise NotImplementedError(f"Cannot encode {type(obj)}")


def datetime_dec_hook(type, obj):
    """
    Custom decoder hook for datetime objects.
    Converts ISO 8601 string back to datetime.
    """
    if type is datetime:
        return datetime.fromisoformat(obj)
    raise NotImplementedError(f"Cannot decode {type}")


json_encoder = msgspec.json.Encoder(enc_hook=datetime_enc_hook)
json_decoder = msgspec.json.Decoder(dec_hook=datetime_dec_hook)


def encode_json(obj) -> bytes:
    """
    Encode object to JSON bytes using msgspec.

    Args:
        obj: Any msgspec.Struct or serializable object

    Returns:
        JSON as bytes
    """
    return json_encoder.encode(obj)


def decode_json(data: bytes, type=None):
    """
    Decode JSON bytes to object using msgspec.

    Args:
        data: JSON as bytes
        type: Optional msgspec.Struct type for validation

    Returns:
        Decoded object (validated if type provided)
    """
    if type:
        decoder = msgspec.json.Decoder(type, dec_hook=datetime_dec_hook)
        return decoder.decode(data)
    return json_decoder.decode(data)


def convert(obj: Any, type):
    """Validate builtin data (dicts, lists) into `type`. Raises msgspec.ValidationError."""
    return msgspec.convert(obj, type, dec_hook=datetime_dec_hook)


def to_builtins(obj) -> Any:
    """Fresh builtin copy of a Struct (dicts and lists), keeping datetimes as-is."""
    return msgspec.to_builtins(obj, builtin_types=(datetime,), enc_hook=datetime_enc_hook)


# =============================================================================
# Backend Payloads
# =============================================================================

class KeyImage(msgspec.Struct, frozen=True):
    type: str
    url: str
    md5: str = ""


class GameMetadata(msgspec.Struct, frozen=True):
    """Catalog metadata the background process attaches to a scanned game."""
    id: str
    title: str
    description: str = ""
    keyImages: Tuple[KeyImage, ...] = ()
    developer: Optional[str] = None
    developerId: Optional[str] = None


class GameInfo(msgspec.Struct, frozen=True):
    """
    One installed game as reported by `get_installed_games`.

    The background process builds this from the launcher's .item manifest
    and enriches it with catalog metadata when available.
    """
    display_name: str
    app_name: str
    install_location: str
    install_size: int
    version: str
    catalog_namespace: str
    catalog_item_id: str
    installation_guid: str
    manifest_hash: str
    metadata: Optional[GameMetadata] = None


UploadState = Literal["uploaded", "already_uploaded", "failed"]


class UploadStatus(msgspec.Struct, frozen=True):
    """Result of one manifest upload. `failed` is a valid terminal result, not an error."""
    status: UploadState
    message: Optional[str] = None
    manifest_hash: Optional[str] = None


# =============================================================================
# Store Records
# =============================================================================

class InstalledItem(msgspec.Struct, frozen=True, kw_only=True):
    """
    Client-side cache of one installed game, keyed by catalog item id.

    Fully replaced on every refresh; the background process owns the truth.
    """
    id: str
    name: str
    app_name: str
    icon: str
    cover_image: str
    size: str
    install_size: int
    install_path: str
    version: str
    last_scanned: datetime
    installation_guid: str
    manifest_hash: str


class Settings(msgspec.Struct, frozen=True, kw_only=True):
    """
    Single settings record (key "current").

    Range constraints mirror what the settings editor allows and are
    enforced whenever the record is built from a dict.
    """
    id: str = SETTINGS_KEY
    concurrency: Annotated[int, msgspec.Meta(ge=1, le=10)] = 3
    upload_speed_limit: Annotated[int, msgspec.Meta(ge=0, le=10000)] = 0
    allowed_environments: Tuple[str, ...] = DEFAULT_ENVIRONMENTS
    upload_interval: Annotated[int, msgspec.Meta(ge=1, le=10080)] = 60
    scan_interval_minutes: Annotated[int, msgspec.Meta(ge=1)] = 1

    def to_backend(self) -> Dict[str, Any]:
        """Payload for `set_settings`; the store key is not part of it."""
        payload = msgspec.structs.asdict(self)
        payload.pop("id")
        payload["allowed_environments"] = list(self.allowed_environments)
        return payload


class LogEntry(msgspec.Struct, frozen=True, kw_only=True):
    """Append-only log line. Never updated; only removed by clear or by the cap."""
    id: str
    level: str
    message: str
    timestamp: datetime
    sequence: int
    formatted: str
    source_timestamp: Optional[str] = None


class UploadRecord(msgspec.Struct, frozen=True, kw_only=True):
    """Local hint that the backend has accepted a manifest, keyed by manifest hash."""
    id: str
    manifest_hash: str
    status: Literal["uploaded", "already_uploaded"]
    uploaded_at: datetime
    item_id: Optional[str] = None
    installation_guid: Optional[str] = None


OperationState = Literal["idle", "pending", "succeeded", "failed"]


class OperationStatus(msgspec.Struct, frozen=True, kw_only=True):
    """Transient status of the latest call of one named operation."""
    id: str
    state: OperationState = "idle"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


# =============================================================================
# Push Event Payloads
# =============================================================================

class LogEventPayload(msgspec.Struct, frozen=True):
    level: str
    message: str
    timestamp: Optional[str] = None


class LogBatchPayload(msgspec.Struct, frozen=True):
    entries: Tuple[LogEventPayload, ...]


class GamesUpdatedPayload(msgspec.Struct, frozen=True):
    """The games list may ride along; receivers always refetch instead of trusting it."""
    games: Optional[Tuple[GameInfo, ...]] = None


class UploadBatchPayload(msgspec.Struct, frozen=True):
    results: Tuple[UploadStatus, ...]


# Payload type per event name, validated at the gateway boundary
EVENT_PAYLOAD_TYPES: Dict[str, type] = {
    Event.GAMES_UPDATED: GamesUpdatedPayload,
    Event.LOG_EVENT: LogEventPayload,
    Event.LOG_BATCH: LogBatchPayload,
    Event.UPLOAD_BATCH_COMPLETED: UploadBatchPayload,
}


def normalize_event_payload(event_name: str, payload: Any) -> Any:
    """
    Reshape the bare forms the background process emits into the Struct layout.

    `games-updated` carries a bare list of games, `periodic-upload-completed`
    a bare list of upload results, and either may be sent with no payload.
    """
    if event_name == Event.GAMES_UPDATED:
        if payload is None:
            return {}
        if isinstance(payload, list):
            return {"games": payload}
    elif event_name == Event.UPLOAD_BATCH_COMPLETED:
        if isinstance(payload, list):
            return {"results": payload}
    elif event_name == Event.LOG_BATCH:
        if isinstance(payload, list):
            return {"entries": payload}
    return payload
