from .collection import Change, Collection
from .live_query import LiveQuery, query
from .context import StoreContext

__all__ = [
    "Change",
    "Collection",
    "LiveQuery",
    "query",
    "StoreContext",
]
