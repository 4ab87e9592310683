"""Listening stream sockets whose connections are accepted through the event loop."""

from __future__ import annotations

import socket
from typing import Callable, Optional

from . import sockets
from .definitions import EventType, Slot, SonicError, WouldBlock
from .file import File
from .reactor import IO, MAX_CALLBACK_DISPATCH
from .sockets import Address, Option, socket_address

AcceptCallback = Callable[[Optional[BaseException], Optional["Connection"]], None]

_AcceptErrors = (OSError, SonicError)


class Connection(File):
    """An accepted, non-blocking stream connection."""

    def __init__(self, ioc: IO, fd: int, local_addr: Address, remote_addr: Address) -> None:
        super().__init__(ioc, fd)
        self.local_addr = local_addr
        self.remote_addr = remote_addr

    def __repr__(self) -> str:
        return (
            f"Connection(fd={self.fileno()}, local={self.local_addr!r}, "
            f"remote={self.remote_addr!r})"
        )


def listen(ioc: IO, network: str, addr: str, *opts: Option) -> "Listener":
    """Listen for connections on ``addr``.

    The listener blocks in :meth:`Listener.accept` unless the
    ``nonblocking(True)`` option is given, in which case
    :meth:`Listener.async_accept` should be used.
    """
    sock, bound = sockets.listen(network, addr, *opts)
    return Listener(ioc, sock, bound)


class Listener:
    """A listening socket that accepts connections synchronously or through the loop."""

    def __init__(self, ioc: IO, sock: socket.socket, addr: Address) -> None:
        self._ioc = ioc
        self._sock = sock
        self._addr = addr
        self.slot = Slot(fd=sock.fileno())
        # Accept callbacks currently nested on the stack.
        self._dispatched = 0

    def __enter__(self) -> "Listener":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def accept(self) -> Connection:
        """Accept one connection; the connection is made non-blocking.

        Raises :class:`WouldBlock` on a non-blocking listener with nothing queued.
        """
        try:
            conn_sock, remote = self._sock.accept()
        except BlockingIOError:
            raise WouldBlock() from None
        try:
            local = socket_address(conn_sock)
            conn_sock.setblocking(False)
        except BaseException:
            conn_sock.close()
            raise
        if isinstance(remote, tuple):
            remote = tuple(remote[:2])
        return Connection(self._ioc, conn_sock.detach(), local, remote)

    def async_accept(self, callback: AcceptCallback) -> None:
        """Accept a connection and call ``callback(error, connection)``.

        If no connection is queued the accept waits on the event loop.
        """
        if self._dispatched >= MAX_CALLBACK_DISPATCH:
            self._schedule(callback)
            return
        try:
            conn = self.accept()
        except WouldBlock:
            self._schedule(callback)
            return
        except _AcceptErrors as exc:
            self._deliver(callback, exc, None)
            return
        self._deliver(callback, None, conn)

    def _deliver(
        self,
        callback: AcceptCallback,
        error: Optional[BaseException],
        conn: Optional[Connection],
    ) -> None:
        self._dispatched += 1
        try:
            callback(error, conn)
        finally:
            self._dispatched -= 1

    def _schedule(self, callback: AcceptCallback) -> None:
        def handler(error: Optional[BaseException]) -> None:
            self._ioc.deregister(self.slot)
            if error is not None:
                callback(error, None)
                return
            try:
                conn = self.accept()
            except _AcceptErrors as exc:
                callback(exc, None)
            else:
                callback(None, conn)

        self.slot.set(EventType.READ, handler)
        try:
            self._ioc.set_read(self.slot)
        except OSError as exc:
            callback(exc, None)
        else:
            self._ioc.register(self.slot)

    def close(self) -> None:
        """Stop listening and close the socket."""
        try:
            self._ioc.poller.delete(self.slot)
        except OSError:
            pass
        self._ioc.deregister(self.slot)
        self._sock.close()

    def addr(self) -> Address:
        """The local address the listener is bound to."""
        return self._addr

    def fileno(self) -> int:
        return self.slot.fd