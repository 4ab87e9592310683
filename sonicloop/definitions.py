"""Core event-loop types: event kinds, slots and the errors raised by the loop."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, List, Optional

Handler = Callable[[Optional[BaseException]], None]


class EventType(enum.IntEnum):
    """Kind of readiness a handler waits for; indexes a slot's handlers."""

    READ = 0
    WRITE = 1


class PollerEvent(enum.IntFlag):
    """Bitmask of the events a slot is registered for with the poller."""

    NONE = 0
    READ = 1
    WRITE = 2


class SonicError(Exception):
    """Base class of the errors raised by the event loop."""

    default_message = "event loop error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class WouldBlock(SonicError):
    """The operation cannot complete without blocking."""

    default_message = "operation would block"


class Timeout(SonicError):
    """The operation did not complete within the allotted time."""

    default_message = "operation timed out"


class Cancelled(SonicError):
    """The pending operation was cancelled."""

    default_message = "operation cancelled"


def _empty_handlers() -> List[Optional[Handler]]:
    return [None] * len(EventType)


@dataclass(eq=False)
class Slot:
    """A file descriptor together with its registered events and handlers.

    Slots compare and hash by identity, so two slots on the same descriptor
    are distinct.
    """

    fd: int
    events: PollerEvent = PollerEvent.NONE
    handlers: List[Optional[Handler]] = field(default_factory=_empty_handlers)

    def set(self, event_type: EventType, handler: Handler) -> None:
        """Install the handler called when ``event_type`` fires."""
        self.handlers[EventType(event_type)] = handler

    def dispatch(self, event_type: EventType, error: Optional[BaseException] = None) -> None:
        """Call the handler installed for ``event_type`` with ``error``."""
        handler = self.handlers[EventType(event_type)]
        if handler is None:
            raise LookupError(
                f"no {EventType(event_type).name.lower()} handler on slot fd={self.fd}"
            )
        handler(error)