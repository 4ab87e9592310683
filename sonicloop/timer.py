"""One-shot timers driven by a poller."""

from __future__ import annotations

import errno
import itertools
from datetime import timedelta
from typing import Callable, Union

from .definitions import EventType, PollerEvent, Slot
from .poller import Poller

_timer_ids = itertools.count(1)


class Timer:
    """A one-shot timer whose callback runs inside the poller's ``poll``.

    Each timer owns a slot with a unique negative descriptor number, since
    no kernel descriptor backs it.
    """

    def __init__(self, poller: Poller) -> None:
        self._poller = poller
        self.slot = Slot(fd=-next(_timer_ids))
        self._closed = False

    def set(self, delay: Union[float, timedelta], callback: Callable[[], None]) -> None:
        """Arm the timer to call ``callback`` after ``delay`` seconds.

        A timer already armed is disarmed first.
        """
        if self._closed:
            raise OSError(errno.EBADF, "timer is closed")
        seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
        if seconds < 0:
            raise ValueError("timer delay must not be negative")
        self.unset()
        self.slot.set(EventType.READ, lambda _error: callback())
        self._poller.set_timer(self.slot, seconds)

    def unset(self) -> None:
        """Disarm the timer; does nothing if it is not armed."""
        if self.armed():
            self._poller.del_timer(self.slot)

    def armed(self) -> bool:
        return bool(self.slot.events & PollerEvent.READ)

    def close(self) -> None:
        """Disarm the timer and refuse further use."""
        self.unset()
        self._closed = True

    def __enter__(self) -> "Timer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()