"""Files and other descriptors read and written through the event loop."""

from __future__ import annotations

import os
from typing import Callable, Optional

from .definitions import Cancelled, EventType, PollerEvent, Slot, SonicError, WouldBlock
from .reactor import IO, MAX_CALLBACK_DISPATCH

AsyncCallback = Callable[[Optional[BaseException], int], None]

_OperationErrors = (OSError, EOFError, SonicError)


def open_file(ioc: IO, path: str, flags: int, mode: int = 0o644) -> "File":
    """Open ``path`` with ``os.open`` flags and wrap it for use with ``ioc``."""
    return File(ioc, os.open(path, flags, mode))


class File:
    """A descriptor whose reads and writes can complete asynchronously.

    Async callbacks receive ``(error, n)``: ``error`` is ``None`` on success
    and ``n`` is the number of bytes transferred.
    """

    def __init__(self, ioc: IO, fd: int) -> None:
        self._ioc = ioc
        self.slot = Slot(fd=fd)
        self._closed = False
        # Callbacks currently nested on the stack; past the limit operations
        # are scheduled on the loop instead so the stack unwinds.
        self._dispatched = 0

    def __enter__(self) -> "File":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()

    # -- synchronous ---------------------------------------------------------

    def readinto(self, buffer) -> int:
        """Read into ``buffer``; return the byte count.

        Raises :class:`WouldBlock` if no data is ready and :class:`EOFError`
        at end of file.
        """
        try:
            n = os.readv(self.slot.fd, [buffer])
        except BlockingIOError:
            raise WouldBlock() from None
        if n == 0:
            raise EOFError("end of file")
        return max(n, 0)

    def write(self, data) -> int:
        """Write ``data``; return the byte count.

        Raises :class:`WouldBlock` if the descriptor cannot take data now and
        :class:`EOFError` if nothing was written.
        """
        try:
            n = os.write(self.slot.fd, data)
        except BlockingIOError:
            raise WouldBlock() from None
        if n == 0:
            raise EOFError("nothing written")
        return max(n, 0)

    # -- asynchronous --------------------------------------------------------

    def async_read(self, buffer, callback: AsyncCallback) -> None:
        """Read some bytes into ``buffer``, then call ``callback``."""
        self._start(EventType.READ, buffer, False, callback)

    def async_read_all(self, buffer, callback: AsyncCallback) -> None:
        """Read into ``buffer`` until it is full, then call ``callback``."""
        self._start(EventType.READ, buffer, True, callback)

    def async_write(self, data, callback: AsyncCallback) -> None:
        """Write some of ``data``, then call ``callback``."""
        self._start(EventType.WRITE, data, False, callback)

    def async_write_all(self, data, callback: AsyncCallback) -> None:
        """Write all of ``data``, then call ``callback``."""
        self._start(EventType.WRITE, data, True, callback)

    def _start(self, event: EventType, buffer, whole: bool, callback: AsyncCallback) -> None:
        if self._dispatched < MAX_CALLBACK_DISPATCH:
            def nested(error: Optional[BaseException], n: int) -> None:
                self._dispatched += 1
                try:
                    callback(error, n)
                finally:
                    self._dispatched -= 1

            self._now(event, memoryview(buffer), 0, whole, nested)
        else:
            self._schedule(event, memoryview(buffer), 0, whole, callback)

    def _now(
        self, event: EventType, view: memoryview, done: int, whole: bool, callback: AsyncCallback
    ) -> None:
        operation = self.readinto if event is EventType.READ else self.write
        error: Optional[BaseException] = None
        try:
            done += operation(view[done:])
        except _OperationErrors as exc:
            error = exc

        if error is None and not (whole and done != len(view)):
            callback(None, done)
        elif isinstance(error, WouldBlock):
            self._schedule(event, view, done, whole, callback)
        else:
            callback(error, done)

    def _schedule(
        self, event: EventType, view: memoryview, done: int, whole: bool, callback: AsyncCallback
    ) -> None:
        if self.closed():
            callback(EOFError("file closed"), 0)
            return

        def handler(error: Optional[BaseException]) -> None:
            self._ioc.deregister(self.slot)
            if error is not None:
                callback(error, done)
            else:
                self._now(event, view, done, whole, callback)

        self.slot.set(event, handler)
        arm = self._ioc.set_read if event is EventType.READ else self._ioc.set_write
        try:
            arm(self.slot)
        except OSError as exc:
            callback(exc, done)
        else:
            self._ioc.register(self.slot)

    # -- control -------------------------------------------------------------

    def close(self) -> None:
        """Close the descriptor; raises :class:`EOFError` if already closed."""
        if self._closed:
            raise EOFError("file already closed")
        self._closed = True
        self._ioc.poller.delete(self.slot)
        os.close(self.slot.fd)

    def closed(self) -> bool:
        return self._closed

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the file position; return the new position."""
        return os.lseek(self.slot.fd, offset, whence)

    def cancel(self) -> None:
        """Cancel pending reads and writes; their callbacks get :class:`Cancelled`."""
        self._cancel(EventType.READ, PollerEvent.READ)
        self._cancel(EventType.WRITE, PollerEvent.WRITE)

    def _cancel(self, event: EventType, flag: PollerEvent) -> None:
        if not self.slot.events & flag:
            return
        poller = self._ioc.poller
        remove = poller.del_read if event is EventType.READ else poller.del_write
        error: BaseException
        try:
            remove(self.slot)
            error = Cancelled()
        except OSError as exc:
            error = exc
        self.slot.dispatch(event, error)

    def fileno(self) -> int:
        return self.slot.fd