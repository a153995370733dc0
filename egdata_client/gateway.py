"""
Backend Gateway: the boundary to the background process that owns ground truth.

Two primitives are all the synchronizers use:
- call(operation, args) -> result       request/response
- subscribe(event_name, handler)         push events, returns unsubscribe()

Push payloads are validated against the Struct registered for their event
name before any handler sees them, so the store only ever receives typed,
well-formed events.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional

import msgspec

from egdata_client.config import ClientConfig
from egdata_client.errors import BackendRejection, TransportError
from egdata_client.logger import setup_logger
from egdata_client.models import EVENT_PAYLOAD_TYPES, convert, normalize_event_payload
from egdata_client.task_registry import TaskRegistry

logger = setup_logger()

EventHandler = Callable[[Any], Any]
OperationHandler = Callable[..., Awaitable[Any]]


def decode_event(event_name: str, payload: Any) -> Any:
    """
    Validate a raw push payload into the Struct registered for `event_name`.

    Unregistered event names pass through unchanged.

    Raises:
        msgspec.ValidationError: payload does not match the event's Struct
    """
    payload_type = EVENT_PAYLOAD_TYPES.get(event_name)
    if payload_type is None:
        return payload
    return convert(normalize_event_payload(event_name, payload), payload_type)


class BackendGateway(ABC):
    """
    Abstract gateway. Subclasses provide the transport; this base class owns
    push-event fan-out and payload validation.

    Awaitable handler results run on the gateway's own TaskRegistry, which
    close() cancels.
    """

    def __init__(self, tasks: Optional[TaskRegistry] = None):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self.tasks = tasks or TaskRegistry("gateway")

    @abstractmethod
    async def call(self, operation: str, args: Optional[dict] = None) -> Any:
        """
        Perform one request/response round trip.

        Raises:
            TransportError: the call did not complete
            BackendRejection: the backend reported a domain failure
        """

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Register `handler(payload)` for `event_name`; returns a function that removes it."""
        self._handlers[event_name].append(handler)

        def unsubscribe():
            try:
                self._handlers[event_name].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def dispatch(self, event_name: str, payload: Any = None) -> int:
        """
        Deliver a push event to every handler of `event_name`.

        Invalid payloads are logged and dropped here, at the boundary.
        Handlers returning awaitables are run as tracked background tasks.

        Returns:
            Number of handlers the event was delivered to
        """
        handlers = list(self._handlers.get(event_name, ()))
        if not handlers:
            logger.debug(f"No handlers for event '{event_name}'")
            return 0

        try:
            event = decode_event(event_name, payload)
        except msgspec.ValidationError as e:
            logger.warning(f"Dropping malformed '{event_name}' event: {e}")
            return 0

        errors: list[Exception] = []
        for handler in handlers:
            try:
                result = handler(event)
            except Exception as e:
                logger.error(f"Handler for '{event_name}' failed: {e}", exc_info=e)
                errors.append(e)
                continue
            if inspect.isawaitable(result):
                self.tasks.spawn(_await(result), name=f"event-{event_name}")
        if errors:
            raise errors[0]
        return len(handlers)

    def handler_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, ()))

    async def close(self) -> None:
        """Cancel handler tasks still running."""
        await self.tasks.cancel_all()


class InProcessGateway(BackendGateway):
    """
    Gateway whose operations are async callables living in the same process.

    Used to embed a backend directly and as the fake backend in tests.
    Unexpected handler failures and timeouts become TransportError;
    BackendRejection raised by a handler passes through unchanged.

    Usage:
        gateway = InProcessGateway(call_timeout=30)
        gateway.register("get_settings", get_settings_handler)
        settings = await gateway.call("get_settings")
        gateway.emit("games-updated")
    """

    def __init__(self, call_timeout: Optional[float] = None, tasks: Optional[TaskRegistry] = None):
        super().__init__(tasks)
        self.call_timeout = call_timeout
        self._operations: dict[str, OperationHandler] = {}

    @classmethod
    def from_config(cls, config: ClientConfig) -> "InProcessGateway":
        """Gateway using the `[Gateway] call_timeout_seconds` setting; 0 disables the timeout."""
        return cls(call_timeout=config.call_timeout_seconds or None)

    def register(self, operation: str, handler: OperationHandler) -> None:
        self._operations[operation] = handler

    def unregister(self, operation: str) -> None:
        self._operations.pop(operation, None)

    async def call(self, operation: str, args: Optional[dict] = None) -> Any:
        handler = self._operations.get(operation)
        if handler is None:
            raise TransportError(operation, "no handler registered")

        logger.debug(f"Gateway call: {operation}")
        try:
            if self.call_timeout:
                return await asyncio.wait_for(handler(**(args or {})), timeout=self.call_timeout)
            return await handler(**(args or {}))
        except BackendRejection:
            raise
        except asyncio.TimeoutError as e:
            raise TransportError(operation, f"timed out after {self.call_timeout}s") from e
        except Exception as e:
            raise TransportError(operation, str(e)) from e

    def emit(self, event_name: str, payload: Any = None) -> int:
        """Push an event from the embedded backend to the client."""
        return self.dispatch(event_name, payload)


async def _await(awaitable):
    return await awaitable
