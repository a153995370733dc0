"""
Observable keyed record store.

A Collection maps a string key to one immutable msgspec record. Every
mutation commits first and notifies afterwards, so a subscriber always sees
the complete post-mutation state. Callers reading with get()/values() receive
snapshots; iterating them while other code mutates the collection is safe.

Semantics:
- insert() is an upsert
- update() and delete() raise NotFoundError for a missing key
- reconcile() replaces the whole contents in one commit and one notification
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Literal, Mapping, Optional, TypeVar

import msgspec

from egdata_client.errors import NotFoundError, ValidationError
from egdata_client.logger import setup_logger
from egdata_client.models import convert, to_builtins
from egdata_client.task_registry import TaskRegistry

logger = setup_logger()

R = TypeVar("R", bound=msgspec.Struct)

ChangeKind = Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class Change(Generic[R]):
    """
    One committed change.

    Attributes:
        kind: insert, update or delete
        key: Key of the affected record
        record: Record after the change (None for delete)
        previous: Record before the change (None for insert)
    """
    kind: ChangeKind
    key: str
    record: Optional[R] = None
    previous: Optional[R] = None


Subscriber = Callable[[list[Change]], None]
Hook = Callable[[Change], Any]


class Collection(Generic[R]):
    """
    Keyed, observable container of records of one msgspec type.

    Usage:
        games = Collection("games", InstalledItem)
        unsubscribe = games.subscribe(lambda changes: print(changes))
        games.insert(item)
        games.update(item.id, lambda draft: draft.update(version="2.0"))
        games.delete(item.id)
        unsubscribe()
    """

    def __init__(
        self,
        name: str,
        record_type: type[R],
        key_field: str = "id",
        on_insert: Optional[Hook] = None,
        on_update: Optional[Hook] = None,
        on_delete: Optional[Hook] = None,
        tasks: Optional[TaskRegistry] = None,
    ):
        self.name = name
        self.record_type = record_type
        self.key_field = key_field
        self.tasks = tasks or TaskRegistry(name)
        self._records: dict[str, R] = {}
        self._subscribers: list[Subscriber] = []
        self._hooks: dict[ChangeKind, Optional[Hook]] = {
            "insert": on_insert,
            "update": on_update,
            "delete": on_delete,
        }

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[R]:
        return self._records.get(key)

    def values(self) -> list[R]:
        return list(self._records.values())

    def keys(self) -> list[str]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key) -> bool:
        return key in self._records

    def __repr__(self) -> str:
        return f"Collection({self.name!r}, {len(self._records)} records)"

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert(self, record: R | Mapping[str, Any]) -> R:
        """
        Upsert a record by key.

        Raises:
            ValidationError: record is not of the collection's type, cannot be
                converted to it, or has an empty key
        """
        record = self._validate(record)
        key = self._key_of(record)
        previous = self._records.get(key)
        self._records[key] = record

        if previous is None:
            change = Change("insert", key, record, None)
        else:
            change = Change("update", key, record, previous)
        self._commit([change])
        return record

    def update(self, key: str, mutator: Callable[[dict], Any]) -> R:
        """
        Apply `mutator` to a dict draft of the record and commit the result.

        The draft is a fresh builtin copy; if the mutator raises or the draft
        does not validate, the stored record is left as it was.
        """
        previous = self._records.get(key)
        if previous is None:
            raise NotFoundError(self.name, key)

        draft = to_builtins(previous)
        mutator(draft)
        record = self._validate(draft)
        if self._key_of(record) != key:
            raise ValidationError(f"{self.name}: update may not change the key of {key!r}")

        self._records[key] = record
        self._commit([Change("update", key, record, previous)])
        return record

    def delete(self, key: str) -> R:
        """Remove a record. NotFoundError on a missing key is safe for callers to ignore."""
        previous = self._records.pop(key, None)
        if previous is None:
            raise NotFoundError(self.name, key)
        self._commit([Change("delete", key, None, previous)])
        return previous

    def reconcile(self, records: Iterable[R | Mapping[str, Any]]) -> list[Change]:
        """
        Make the collection contain exactly `records`.

        Keys in `records` are upserted, keys missing from it are deleted. The
        new contents are validated in full before anything changes and are
        swapped in as one commit, so observers never see an intermediate or
        empty state. Records equal to the stored ones are not reported.

        Returns:
            The committed changes (empty if nothing differed)
        """
        incoming: dict[str, R] = {}
        for record in records:
            record = self._validate(record)
            incoming[self._key_of(record)] = record

        changes: list[Change] = []
        for key, record in incoming.items():
            previous = self._records.get(key)
            if previous is None:
                changes.append(Change("insert", key, record, None))
            elif previous != record:
                changes.append(Change("update", key, record, previous))
        for key, previous in self._records.items():
            if key not in incoming:
                changes.append(Change("delete", key, None, previous))

        if not changes:
            return changes

        self._records = incoming
        self._commit(changes)
        return changes

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register `callback(changes)`; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def set_hook(self, kind: ChangeKind, hook: Optional[Hook]) -> None:
        """Install (or with None, remove) the write-through hook for one kind of change."""
        if kind not in self._hooks:
            raise ValueError(f"Unknown change kind: {kind}")
        self._hooks[kind] = hook

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate(self, record) -> R:
        """
        Build the record that will be stored.

        Instances are round-tripped through builtins as well as mappings, so
        their field constraints are checked and the stored record shares no
        container with the caller.
        """
        if isinstance(record, self.record_type):
            record = to_builtins(record)
        elif not isinstance(record, Mapping):
            raise ValidationError(
                f"{self.name}: expected {self.record_type.__name__}, got {type(record).__name__}"
            )
        try:
            record = convert(dict(record), self.record_type)
        except msgspec.ValidationError as e:
            raise ValidationError(f"{self.name}: invalid record: {e}") from e

        key = getattr(record, self.key_field, None)
        if not isinstance(key, str) or not key:
            raise ValidationError(f"{self.name}: record has no usable '{self.key_field}' key")
        return record

    def _key_of(self, record: R) -> str:
        return getattr(record, self.key_field)

    def _commit(self, changes: list[Change]) -> None:
        """
        Notify every subscriber, then run every hook.

        A failing callback or hook does not stop the others; each failure is
        logged and the first one is re-raised once all have run.
        """
        errors: list[Exception] = []

        # Iterate over a copy so callbacks may unsubscribe while being notified
        for callback in list(self._subscribers):
            try:
                callback(changes)
            except Exception as e:
                logger.error(f"{self.name}: subscriber failed: {e}", exc_info=e)
                errors.append(e)

        for change in changes:
            hook = self._hooks[change.kind]
            if hook is None:
                continue
            try:
                result = hook(change)
            except Exception as e:
                logger.error(f"{self.name}: {change.kind} hook failed for {change.key!r}: {e}", exc_info=e)
                errors.append(e)
                continue
            if inspect.isawaitable(result):
                self.tasks.spawn(_await(result), name=f"{self.name}-{change.kind}-{change.key}")

        if errors:
            raise errors[0]


async def _await(awaitable):
    return await awaitable
