from .library import GameLibrarySynchronizer, format_file_size, to_installed_item
from .settings import SettingsSynchronizer
from .logs import LogStream, LogStreamHandler
from .uploads import UploadMirror, UploadReconciler
from .progress import ScanProgressEstimator
from .status import OperationTracker

__all__ = [
    "GameLibrarySynchronizer",
    "format_file_size",
    "to_installed_item",
    "SettingsSynchronizer",
    "LogStream",
    "LogStreamHandler",
    "UploadMirror",
    "UploadReconciler",
    "ScanProgressEstimator",
    "OperationTracker",
]
