from enum import StrEnum


class Operation(StrEnum):
    """Request/response operations understood by the background process."""
    GET_INSTALLED_GAMES = "get_installed_games"
    SCAN_GAMES_NOW = "scan_games_now"
    GET_SETTINGS = "get_settings"
    SET_SETTINGS = "set_settings"
    UPLOAD_MANIFEST = "upload_manifest"
    UPLOAD_ALL_MANIFESTS = "upload_all_manifests"
    CLEAR_UPLOADED_MANIFESTS = "clear_uploaded_manifests"


class Event(StrEnum):
    """Push events emitted by the background process."""
    GAMES_UPDATED = "games-updated"
    LOG_EVENT = "log-event"
    LOG_BATCH = "log-batch"
    UPLOAD_BATCH_COMPLETED = "periodic-upload-completed"


SETTINGS_KEY = "current"

# keyImages types, in order of preference
KEY_IMAGE_TALL = "DieselGameBoxTall"
KEY_IMAGE_WIDE = "DieselGameBox"

PLACEHOLDER_COVER_URL = "https://img.heroui.chat/image/game?w=400&h=600&seed={seed}"
PLACEHOLDER_ICON_URL = "https://img.heroui.chat/image/game?w=100&h=100&seed={seed}"

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]

LOG_LEVELS = frozenset({"DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"})
LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

DEFAULT_ENVIRONMENTS = ("Live", "Production")
KNOWN_ENVIRONMENTS = ("Live", "Staging", "Production", "Development", "Testing")
