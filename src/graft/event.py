"""Progress notifications of transplant runs.

Events are emitted by the :class:`~graft.transplant.engine.Transplanter`
once the outcome they describe has been checkpointed, so a handler never
observes progress that could still be lost.
"""

from __future__ import annotations

import logging
from abc import ABC
from time import perf_counter_ns
from typing import Any
from typing import Callable
from typing import Literal
from typing import Protocol
from typing import TypeAlias
from typing import runtime_checkable

logger = logging.getLogger(__name__)


# public
@runtime_checkable
class EventLike(Protocol):
    """Protocol defining the interface for all event types."""

    type: str
    """Event type identifier (e.g., 'commit-applied')."""

    def emit(self, context: Any | None = None) -> None:
        """Emit this event to all registered handlers.

        :param context:
            Optional metadata passed to handlers.
        """
        ...


# public
@runtime_checkable
class EventHandler(Protocol):
    """Protocol for event handler functions."""

    def __call__(
        self,
        event: EventLike,
        timestamp: int,
        context: Any | None = None,
    ) -> None:
        """Handle an emitted event.

        :param event:
            The emitted event instance.
        :param timestamp:
            Nanosecond-precision timestamp from perf_counter_ns() captured
            at emission time.
        :param context:
            Optional metadata passed by emitter via emit(context=...).
        """
        ...


class Event(ABC):
    """Abstract base class for graft events.

    Subclasses set :attr:`type`; handlers register per type through
    :meth:`handler`.

    **Example Usage**::

        from graft.event import TransplantEvent


        @TransplantEvent.handler("commit-applied")
        def on_applied(event, timestamp, context=None):
            print(f"{event.source} -> {event.target}")
    """

    type: str
    """Event type identifier set by subclass."""

    _handlers: dict[str, list[EventHandler]] = {}
    """Class-level handler registry shared across all event instances."""

    def __init__(self, type: str, /) -> None:
        self.type = type

    def emit(self, context: Any | None = None) -> None:
        """Invoke every handler registered for this event type, in
        registration order, before returning.

        A handler raising an exception is logged and does not prevent the
        remaining handlers from running, nor does the exception reach the
        emitter.

        :param context:
            Optional metadata passed to handlers.
        """
        if handlers := self._handlers.get(self.type):
            timestamp = perf_counter_ns()
            for handler in list(handlers):
                try:
                    handler(self, timestamp, context)
                except Exception:
                    logger.exception(f"Handler {handler!r} failed on {self.type}")

    @classmethod
    def handler(cls, *event_types: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator for registering event handlers.

        :param event_types:
            One or more event type strings to handle.
        :returns:
            Decorator function that registers the handler.
        """

        def decorator(fn: EventHandler) -> EventHandler:
            for event_type in event_types:
                cls._handlers.setdefault(event_type, []).append(fn)
            return fn

        return decorator

    @classmethod
    def unregister(cls, fn: EventHandler) -> None:
        """Remove *fn* from every event type it was registered for."""
        for handlers in cls._handlers.values():
            while fn in handlers:
                handlers.remove(fn)


# public
TransplantEventType: TypeAlias = Literal[
    "run-started",
    "commit-applied",
    "commit-skipped",
    "commit-conflicted",
    "conflict-resolved",
    "run-completed",
]


# public
class TransplantEvent(Event):
    """Event describing the progress of a transplant run.

    :param type:
        What happened.
    :param source:
        Source commit concerned, if any.
    :param target:
        Target commit created, if any.
    :param paths:
        Conflicting paths of a ``commit-conflicted`` event.
    :param reason:
        Why a commit was skipped.
    """

    type: TransplantEventType

    def __init__(
        self,
        type: TransplantEventType,
        /,
        *,
        source: str | None = None,
        target: str | None = None,
        paths: tuple[str, ...] = (),
        reason: str | None = None,
    ) -> None:
        super().__init__(type)
        self.source = source
        self.target = target
        self.paths = paths
        self.reason = reason

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.type!r}, source={self.source!r}, "
            f"target={self.target!r})"
        )
