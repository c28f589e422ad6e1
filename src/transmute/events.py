"""Lifecycle events for transformations and a small typed dispatcher."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping
import dataclasses
import logging
from typing import Any

from transmute.core.types import Content, TransformResult

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class TransformationStarted:
    """Emitted once a request has been admitted, before the cache lookup."""

    content: Content
    context: Mapping[str, Any]


@dataclasses.dataclass(frozen=True, slots=True)
class TransformationCompleted:
    """Emitted with the final result (including failed results returned inline)."""

    result: TransformResult
    context: Mapping[str, Any]


@dataclasses.dataclass(frozen=True, slots=True)
class TransformationFailed:
    """Emitted when an exception escapes a transformation."""

    error: BaseException
    content: Content
    context: Mapping[str, Any]


type TransformationEvent = (
    TransformationStarted | TransformationCompleted | TransformationFailed
)
type Listener = Callable[[Any], None]


class EventDispatcher:
    """Delivers events to listeners subscribed by event type.

    Listener errors are logged and never reach the emitter, so observers
    cannot change the outcome of a transformation.
    """

    def __init__(self) -> None:  # noqa: D107
        self._listeners: dict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``event_type``; returns an unsubscribe callable."""
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, event: TransformationEvent) -> None:
        """Deliver ``event`` to every listener subscribed to its type."""
        for listener in tuple(self._listeners.get(type(event), ())):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Event listener %r failed for %s: %s",
                    listener,
                    type(event).__name__,
                    e,
                    exc_info=True,
                )


class RecordingListener:
    """Collects every event it receives; handy for tests and debugging."""

    def __init__(self) -> None:  # noqa: D107
        self.events: list[TransformationEvent] = []

    def __call__(self, event: TransformationEvent) -> None:
        self.events.append(event)

    def attach(self, dispatcher: EventDispatcher) -> RecordingListener:
        """Subscribe to all three lifecycle events."""
        for event_type in (
            TransformationStarted,
            TransformationCompleted,
            TransformationFailed,
        ):
            dispatcher.subscribe(event_type, self)
        return self

    def of_type(self, event_type: type) -> list[Any]:  # noqa: D102
        return [e for e in self.events if isinstance(e, event_type)]
