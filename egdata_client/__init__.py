from .version import __version__
from .logger import setup_logger
from .config import config_manager, get_client_config
from .errors import ClientError, ValidationError, NotFoundError, TransportError, BackendRejection
from .gateway import BackendGateway, InProcessGateway
from .store import Collection, LiveQuery, StoreContext, query
from .client import EGDataClient

__all__ = [
    "__version__",
    "setup_logger",
    "config_manager",
    "get_client_config",
    "ClientError",
    "ValidationError",
    "NotFoundError",
    "TransportError",
    "BackendRejection",
    "BackendGateway",
    "InProcessGateway",
    "Collection",
    "LiveQuery",
    "StoreContext",
    "query",
    "EGDataClient",
]
