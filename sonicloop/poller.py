"""Readiness poller dispatching slot handlers, posted callbacks and timers."""

from __future__ import annotations

import errno
import heapq
import selectors
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from .definitions import EventType, PollerEvent, Slot, Timeout
from .waker import EventFd, make_waker

_DRAIN_SIZE = 512


def _selector_mask(events: PollerEvent) -> int:
    mask = 0
    if events & PollerEvent.READ:
        mask |= selectors.EVENT_READ
    if events & PollerEvent.WRITE:
        mask |= selectors.EVENT_WRITE
    return mask


def _poller_events(mask: int) -> PollerEvent:
    events = PollerEvent.NONE
    if mask & selectors.EVENT_READ:
        events |= PollerEvent.READ
    if mask & selectors.EVENT_WRITE:
        events |= PollerEvent.WRITE
    return events


def _closed_error(what: str) -> OSError:
    return OSError(errno.EBADF, f"{what} on a closed poller")


class Poller:
    """Waits for registered events and runs their handlers in the calling thread.

    Read and write interest is one-shot: a slot's interest is dropped just
    before its handler runs. Timers are one-shot as well and are dispatched
    as read events on their slot. ``pending`` counts registered events,
    armed timers and posted callbacks that have not completed yet.
    """

    def __init__(self) -> None:
        self._selector = selectors.DefaultSelector()
        try:
            self._waker = make_waker()
        except BaseException:
            self._selector.close()
            raise
        self._waker_slot = self._waker.slot
        try:
            self._selector.register(
                self._waker_slot.fd, selectors.EVENT_READ, self._waker_slot
            )
        except BaseException:
            self._waker.close()
            self._selector.close()
            raise
        self._waker_slot.events = PollerEvent.READ

        self._lock = threading.Lock()
        self._posts: List[Callable[[], None]] = []
        self._pending = 0
        self._closed = False

        self._timers: List[Tuple[float, int, Slot]] = []
        self._armed: Dict[Slot, int] = {}
        self._next_seq = 0

    def __enter__(self) -> "Poller":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self.closed():
            self.close()

    # -- running -----------------------------------------------------------

    def poll(self, timeout_ms: int) -> int:
        """Wait for events and dispatch their handlers.

        A negative ``timeout_ms`` waits until something happens. Returns the
        number of events that occurred; raises :class:`Timeout` when a
        non-negative timeout expires with nothing to do.
        """
        if self.closed():
            raise _closed_error("poll")

        ready = self._selector.select(self._select_timeout(timeout_ms))

        n = 0
        for key, mask in ready:
            if self._closed:
                break
            n += 1
            slot: Slot = key.data
            if slot is self._waker_slot:
                self._dispatch_posts()
                continue

            events = _poller_events(mask)
            if events & slot.events & PollerEvent.READ:
                self.del_read(slot)
                slot.dispatch(EventType.READ)
            if events & slot.events & PollerEvent.WRITE:
                self.del_write(slot)
                slot.dispatch(EventType.WRITE)

        n += self._fire_timers()

        if n == 0 and timeout_ms >= 0:
            raise Timeout()
        return n

    def _select_timeout(self, timeout_ms: int) -> Optional[float]:
        wait = None if timeout_ms < 0 else timeout_ms / 1000.0
        deadline = self._next_deadline()
        if deadline is not None:
            until = max(0.0, deadline - time.monotonic())
            wait = until if wait is None else min(wait, until)
        return wait

    def _next_deadline(self) -> Optional[float]:
        while self._timers:
            deadline, seq, slot = self._timers[0]
            if self._armed.get(slot) == seq:
                return deadline
            heapq.heappop(self._timers)
        return None

    def _fire_timers(self) -> int:
        fired = 0
        now = time.monotonic()
        limit = self._next_seq  # timers armed by the callbacks below wait for the next poll
        while self._timers and not self._closed:
            deadline, seq, slot = self._timers[0]
            if self._armed.get(slot) != seq:
                heapq.heappop(self._timers)
                continue
            if deadline > now or seq >= limit:
                break
            heapq.heappop(self._timers)
            self.del_timer(slot)
            slot.dispatch(EventType.READ)
            fired += 1
        return fired

    # -- posted callbacks ---------------------------------------------------

    def pending(self) -> int:
        """Number of registered events, timers and posts not yet completed."""
        return self._pending

    def post(self, handler: Callable[[], None]) -> None:
        """Schedule ``handler`` to run in the polling thread on the next poll.

        Safe to call from any thread.
        """
        with self._lock:
            if self._closed:
                raise _closed_error("post")
            self._posts.append(handler)
            self._pending += 1
        self._wake()

    def posted(self) -> int:
        """Number of posted handlers that have not run yet."""
        with self._lock:
            return len(self._posts)

    def _wake(self) -> None:
        try:
            if isinstance(self._waker, EventFd):
                self._waker.write(1)
            else:
                self._waker.write(b"\x00")
        except BlockingIOError:
            pass  # the waker is already readable

    def _drain_waker(self) -> None:
        while True:
            try:
                if isinstance(self._waker, EventFd):
                    self._waker.read()
                elif not self._waker.read(_DRAIN_SIZE):
                    return
            except BlockingIOError:
                return

    def _dispatch_posts(self) -> None:
        self._drain_waker()
        with self._lock:
            posts, self._posts = self._posts, []
        for handler in posts:
            try:
                handler()
            finally:
                self._pending -= 1

    # -- read and write interest ---------------------------------------------

    def set_read(self, slot: Slot) -> None:
        """Register interest in the slot's descriptor becoming readable."""
        self._set(slot, PollerEvent.READ)

    def set_write(self, slot: Slot) -> None:
        """Register interest in the slot's descriptor becoming writable."""
        self._set(slot, PollerEvent.WRITE)

    def _set(self, slot: Slot, flag: PollerEvent) -> None:
        if slot.events & flag:
            return
        if self.closed():
            raise _closed_error("register")
        old = slot.events
        slot.events = old | flag
        try:
            if old:
                self._selector.modify(slot.fd, _selector_mask(slot.events), slot)
            else:
                self._selector.register(slot.fd, _selector_mask(slot.events), slot)
        except BaseException:
            slot.events = old
            raise
        self._pending += 1

    def del_read(self, slot: Slot) -> None:
        """Drop interest in read events on the slot."""
        self._del(slot, PollerEvent.READ)

    def del_write(self, slot: Slot) -> None:
        """Drop interest in write events on the slot."""
        self._del(slot, PollerEvent.WRITE)

    def delete(self, slot: Slot) -> None:
        """Drop interest in every event on the slot."""
        self.del_read(slot)
        self.del_write(slot)

    def _del(self, slot: Slot, flag: PollerEvent) -> None:
        if not slot.events & flag:
            return
        self._pending -= 1
        slot.events ^= flag
        if self._closed:
            return
        if slot.events:
            self._selector.modify(slot.fd, _selector_mask(slot.events), slot)
        else:
            self._selector.unregister(slot.fd)

    # -- timers ---------------------------------------------------------------

    def set_timer(self, slot: Slot, delay: float) -> None:
        """Arm a one-shot timer that dispatches the slot's read handler after ``delay`` seconds."""
        if delay < 0:
            raise ValueError("timer delay must not be negative")
        if self.closed():
            raise _closed_error("set_timer")
        self.del_timer(slot)
        seq = self._next_seq
        self._next_seq += 1
        heapq.heappush(self._timers, (time.monotonic() + delay, seq, slot))
        self._armed[slot] = seq
        slot.events |= PollerEvent.READ
        self._pending += 1

    def del_timer(self, slot: Slot) -> None:
        """Disarm the timer on the slot, if armed."""
        if not slot.events & PollerEvent.READ:
            return
        slot.events ^= PollerEvent.READ
        self._pending -= 1
        self._armed.pop(slot, None)

    # -- lifetime -------------------------------------------------------------

    def close(self) -> None:
        """Close the poller; raises :class:`EOFError` if already closed."""
        with self._lock:
            if self._closed:
                raise EOFError("poller already closed")
            self._closed = True
        try:
            self._selector.close()
        finally:
            self._waker.close()

    def closed(self) -> bool:
        with self._lock:
            return self._closed