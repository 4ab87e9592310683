"""The event loop that runs asynchronous operations in the calling thread."""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, List, Optional, Set, Union

from .definitions import Slot, Timeout
from .poller import Poller
from .timer import Timer

MAX_CALLBACK_DISPATCH = 32
"""Callbacks an object may nest on the stack before it schedules instead."""

STATIC_SLOTS = 4096
"""Descriptors below this number are tracked in a flat table."""

WARM_DEFAULT_BUSY_CYCLES = 10
WARM_DEFAULT_TIMEOUT = timedelta(milliseconds=1)

Duration = Union[float, timedelta]


def _seconds(duration: Duration) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def _timeout_ms(duration: Duration) -> int:
    """Validate a timeout and return it in whole milliseconds."""
    seconds = _seconds(duration)
    if seconds < 0.001:
        raise ValueError(
            "the provided duration's unit cannot be lower than a millisecond"
        )
    return int(round(seconds * 1_000_000)) // 1000


class IO:
    """Executor of asynchronous operations, run entirely in the calling thread.

    A thread should own at most one IO; several may exist in one process,
    each in its own thread. Slots with an operation in flight are kept here
    so their owners stay alive until the operation completes.
    """

    def __init__(self) -> None:
        self.poller = Poller()
        self._static: List[Optional[Slot]] = [None] * STATIC_SLOTS
        self._dynamic: Set[Slot] = set()

    def __enter__(self) -> "IO":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self.closed():
            self.close()

    def __contains__(self, slot: Slot) -> bool:
        if 0 <= slot.fd < STATIC_SLOTS:
            return self._static[slot.fd] is slot
        return slot in self._dynamic

    # -- slot bookkeeping ----------------------------------------------------

    def register(self, slot: Slot) -> None:
        """Keep ``slot`` alive while an operation on it is in flight."""
        if 0 <= slot.fd < STATIC_SLOTS:
            self._static[slot.fd] = slot
        else:
            self._dynamic.add(slot)

    def deregister(self, slot: Slot) -> None:
        """Forget ``slot`` once its operation has completed."""
        if 0 <= slot.fd < STATIC_SLOTS:
            self._static[slot.fd] = None
        else:
            self._dynamic.discard(slot)

    def set_read(self, slot: Slot) -> None:
        self.poller.set_read(slot)

    def set_write(self, slot: Slot) -> None:
        self.poller.set_write(slot)

    # -- running -------------------------------------------------------------

    def run(self) -> None:
        """Run the event loop forever; return only by raising an error."""
        while True:
            try:
                self.run_one()
            except Timeout:
                pass

    def run_pending(self) -> None:
        """Run the event loop until no operation is left to complete."""
        while self.poller.pending() > 0:
            try:
                self.run_one()
            except Timeout:
                pass

    def run_one(self) -> None:
        """Block until at least one event occurs and dispatch it."""
        self.poller.poll(-1)

    def run_one_for(self, duration: Duration) -> None:
        """Wait at most ``duration`` (at least one millisecond) for events.

        Raises :class:`Timeout` if nothing happened in that time.
        """
        self.poller.poll(_timeout_ms(duration))

    def run_warm(
        self,
        busy_cycles: int = WARM_DEFAULT_BUSY_CYCLES,
        timeout: Duration = WARM_DEFAULT_TIMEOUT,
    ) -> None:
        """Run forever, busy-polling for ``busy_cycles`` idle cycles, then yielding.

        After ``busy_cycles`` cycles that processed nothing the loop waits up
        to ``timeout`` per cycle; any processed event returns it to busy
        polling. Returns only by raising an error.
        """
        if busy_cycles <= 0:
            raise ValueError("busy_cycles must be greater than 0")
        timeout_ms = _timeout_ms(timeout)

        idle = 0
        while True:
            try:
                n = self.poller.poll(0 if idle < busy_cycles else timeout_ms)
            except Timeout:
                n = 0
            idle = 0 if n > 0 else idle + 1

    def poll(self) -> None:
        """Dispatch ready handlers until none is ready, then raise :class:`Timeout`."""
        while True:
            self.poll_one()

    def poll_one(self) -> int:
        """Dispatch the handlers that are ready now without waiting.

        Returns the number of events processed; raises :class:`Timeout` if
        nothing was ready.
        """
        return self.poller.poll(0)

    # -- posting -------------------------------------------------------------

    def post(self, handler: Callable[[], None]) -> None:
        """Schedule ``handler`` to run in the loop's thread. Thread-safe."""
        self.poller.post(handler)

    def posted(self) -> int:
        """Number of posted handlers not yet run. Thread-safe."""
        return self.poller.posted()

    def pending(self) -> int:
        """Number of operations that have not completed yet."""
        return self.poller.pending()

    def new_timer(self) -> Timer:
        """Create a one-shot timer driven by this loop."""
        return Timer(self.poller)

    # -- lifetime ------------------------------------------------------------

    def close(self) -> None:
        """Close the loop; raises :class:`EOFError` if already closed."""
        self.poller.close()

    def closed(self) -> bool:
        return self.poller.closed()