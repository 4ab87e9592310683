"""Descriptors used to wake a blocked poller: a pipe and a Linux eventfd."""

from __future__ import annotations

import errno
import os
from typing import Union

from .definitions import Slot

_COUNTER_SIZE = 8


class Pipe:
    """An anonymous pipe whose read end is tracked by a slot."""

    def __init__(self) -> None:
        self._read_fd, self._write_fd = os.pipe()
        self.slot = Slot(fd=self._read_fd)

    def set_read_nonblock(self) -> None:
        """Make reads from the pipe non-blocking."""
        os.set_blocking(self._read_fd, False)

    def set_write_nonblock(self) -> None:
        """Make writes to the pipe non-blocking."""
        os.set_blocking(self._write_fd, False)

    def write(self, data: bytes) -> int:
        """Write ``data`` to the write end; return the number of bytes written."""
        return os.write(self._write_fd, data)

    def read(self, size: int) -> bytes:
        """Read at most ``size`` bytes from the read end."""
        return os.read(self._read_fd, size)

    def read_fd(self) -> int:
        return self._read_fd

    def write_fd(self) -> int:
        return self._write_fd

    def close(self) -> None:
        """Close both ends of the pipe."""
        try:
            os.close(self._read_fd)
        finally:
            os.close(self._write_fd)

    def __enter__(self) -> "Pipe":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventFd:
    """A Linux eventfd counter tracked by a slot."""

    def __init__(self, nonblocking: bool = True) -> None:
        if not hasattr(os, "eventfd"):
            raise OSError(errno.ENOSYS, "eventfd is not available on this platform")
        flags = os.EFD_NONBLOCK if nonblocking else 0
        self._fd = os.eventfd(0, flags)
        self.slot = Slot(fd=self._fd)

    def write(self, value: int) -> int:
        """Add ``value`` to the counter; return the number of bytes written."""
        os.eventfd_write(self._fd, value)
        return _COUNTER_SIZE

    def read(self) -> int:
        """Read and reset the counter."""
        return os.eventfd_read(self._fd)

    def fileno(self) -> int:
        return self._fd

    def close(self) -> None:
        os.close(self._fd)

    def __enter__(self) -> "EventFd":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def make_waker() -> Union[EventFd, Pipe]:
    """Return a non-blocking waker: an eventfd where available, else a pipe."""
    if hasattr(os, "eventfd"):
        return EventFd(nonblocking=True)
    pipe = Pipe()
    pipe.set_read_nonblock()
    pipe.set_write_nonblock()
    return pipe