from dataclasses import dataclass, field

from egdata_client.models import InstalledItem, LogEntry, OperationStatus, Settings, UploadRecord
from egdata_client.store.collection import Collection
from egdata_client.task_registry import TaskRegistry


@dataclass
class StoreContext:
    """
    Owns every Collection the client keeps, and the registry of background
    tasks they and the synchronizers start.

    Synchronizers receive the context at construction instead of reaching for
    module-level stores, so each client (and each test) gets isolated state.
    """
    tasks: TaskRegistry = field(default_factory=lambda: TaskRegistry("store"))
    games: Collection[InstalledItem] = field(init=False)
    settings: Collection[Settings] = field(init=False)
    logs: Collection[LogEntry] = field(init=False)
    uploads: Collection[UploadRecord] = field(init=False)
    operations: Collection[OperationStatus] = field(init=False)

    def __post_init__(self):
        self.games = Collection("games", InstalledItem, tasks=self.tasks)
        self.settings = Collection("settings", Settings, tasks=self.tasks)
        self.logs = Collection("logs", LogEntry, tasks=self.tasks)
        self.uploads = Collection("uploads", UploadRecord, tasks=self.tasks)
        self.operations = Collection("operations", OperationStatus, tasks=self.tasks)

    def collections(self) -> list[Collection]:
        return [self.games, self.settings, self.logs, self.uploads, self.operations]
