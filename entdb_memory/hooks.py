"""
Lifecycle hooks for collections.

Every collection owns a HooksEmitter. The collection is the only producer:
it publishes one event per created record, one per changed path of an
updated record, and one per deleted record.

Events:
    create: CreateEvent(record, initial_values), after the record is stored
    update: UpdateEvent(prev_record, next_record, path, prev_value, next_value),
            after the new record is stored
    delete: DeleteEvent(deleted_record), before the record is removed;
            prevent_default() keeps the record

Invariants:
    - Listeners run in registration order
    - Listener exceptions propagate to the caller of the operation
    - stop_immediate_propagation() skips the remaining listeners
    - delete listeners must be synchronous

Example:
    >>> unsubscribe = users.hooks.on("create", lambda event: print(event.record))
    >>> unsubscribe()
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

EVENT_NAMES = ("create", "update", "delete")

Listener = Callable[[Any], Any]


@dataclass
class HookEvent:
    """Base class for lifecycle events."""

    name: ClassVar[str] = ""

    _default_prevented: bool = field(default=False, init=False, repr=False)
    _propagation_stopped: bool = field(default=False, init=False, repr=False)

    @property
    def default_prevented(self) -> bool:
        return self._default_prevented

    def prevent_default(self) -> None:
        """Cancel the default action. Only delete events honor this."""
        self._default_prevented = True

    def stop_immediate_propagation(self) -> None:
        self._propagation_stopped = True


@dataclass
class CreateEvent(HookEvent):
    name: ClassVar[str] = "create"

    record: Any = None
    initial_values: Any = None


@dataclass
class UpdateEvent(HookEvent):
    name: ClassVar[str] = "update"

    prev_record: Any = None
    next_record: Any = None
    path: Tuple[Any, ...] = ()
    prev_value: Any = None
    next_value: Any = None


@dataclass
class DeleteEvent(HookEvent):
    name: ClassVar[str] = "delete"

    deleted_record: Any = None


class HooksEmitter:
    """Typed publish/subscribe surface for collection lifecycle events.

    Args:
        max_listeners: Listener count per event above which a leak warning
            is logged (0 disables)
        owner: Name used in log messages
    """

    def __init__(self, max_listeners: int = 10, owner: str = "collection") -> None:
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in EVENT_NAMES}
        self._max_listeners = max_listeners
        self._owner = owner
        self._warned: set[str] = set()

    def on(self, name: str, listener: Listener) -> Callable[[], None]:
        """Subscribe a listener.

        Returns:
            A function that removes the listener
        """
        self._listeners_for(name).append(listener)
        self._check_leak(name)
        return lambda: self.off(name, listener)

    def off(self, name: str, listener: Listener) -> None:
        listeners = self._listeners_for(name)
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, name: str) -> int:
        return len(self._listeners_for(name))

    def remove_all_listeners(self, name: Optional[str] = None) -> None:
        names = [name] if name is not None else list(EVENT_NAMES)
        for event_name in names:
            self._listeners_for(event_name).clear()

    def emit(self, event: HookEvent) -> bool:
        """Publish an event to synchronous listeners.

        Returns:
            False if a listener called prevent_default()

        Raises:
            TypeError: If a listener returns an awaitable
        """
        for listener in list(self._listeners_for(event.name)):
            result = listener(event)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError(f"'{event.name}' listeners must be synchronous")
            if event._propagation_stopped:
                break
        return not event.default_prevented

    async def emit_async(self, event: HookEvent) -> bool:
        """Publish an event, awaiting listeners that return awaitables."""
        for listener in list(self._listeners_for(event.name)):
            result = listener(event)
            if inspect.isawaitable(result):
                await result
            if event._propagation_stopped:
                break
        return not event.default_prevented

    def _listeners_for(self, name: str) -> List[Listener]:
        try:
            return self._listeners[name]
        except KeyError:
            raise ValueError(
                f"Unknown hook event '{name}' (expected one of: {', '.join(EVENT_NAMES)})"
            ) from None

    def _check_leak(self, name: str) -> None:
        count = len(self._listeners[name])
        if self._max_listeners and count > self._max_listeners and name not in self._warned:
            self._warned.add(name)
            logger.warning(
                f"Possible hook listener leak: {count} '{name}' listeners on {self._owner}",
                extra={"event": name, "listeners": count, "owner": self._owner},
            )
