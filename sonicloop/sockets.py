"""Socket creation, connection, listening and option helpers for IPv4/IPv6."""

from __future__ import annotations

import enum
import errno
import fcntl
import os
import select
import socket
from dataclasses import dataclass
from typing import Any, Callable, Tuple, Union

from .definitions import Timeout

LISTEN_BACKLOG = 2048
DEFAULT_CONNECT_TIMEOUT = 10.0

_FAMILIES = {
    "tcp": (socket.SOCK_STREAM, socket.AF_INET),
    "tcp4": (socket.SOCK_STREAM, socket.AF_INET),
    "tcp6": (socket.SOCK_STREAM, socket.AF_INET6),
    "udp": (socket.SOCK_DGRAM, socket.AF_INET),
    "udp4": (socket.SOCK_DGRAM, socket.AF_INET),
    "udp6": (socket.SOCK_DGRAM, socket.AF_INET6),
}

Address = Union[tuple, str]


class OptionType(enum.Enum):
    NONBLOCKING = "nonblocking"
    REUSE_PORT = "reuse_port"
    REUSE_ADDR = "reuse_addr"
    NO_DELAY = "no_delay"
    BIND_SOCKET = "bind_socket"


@dataclass(frozen=True)
class Option:
    """A socket option applied when a socket is set up."""

    type: OptionType
    value: Any


def nonblocking(value: bool) -> Option:
    return Option(OptionType.NONBLOCKING, value)


def reuse_port(value: bool) -> Option:
    return Option(OptionType.REUSE_PORT, value)


def reuse_addr(value: bool) -> Option:
    return Option(OptionType.REUSE_ADDR, value)


def no_delay(value: bool) -> Option:
    return Option(OptionType.NO_DELAY, value)


def bind_socket(addr: tuple) -> Option:
    """Bind the socket to the local ``(host, port)`` address before use."""
    return Option(OptionType.BIND_SOCKET, addr)


def _family(network: str, socktype: int) -> int:
    entry = _FAMILIES.get(network)
    if entry is None or entry[0] != socktype:
        raise ValueError(f"unknown network {network!r}")
    return entry[1]


def _any_address(family: int) -> tuple:
    return ("::", 0, 0, 0) if family == socket.AF_INET6 else ("0.0.0.0", 0)


def _split_host_port(addr: str) -> Tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0:
            raise ValueError(f"address {addr}: missing ']' in address")
        host, rest = addr[1:end], addr[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"address {addr}: missing port in address")
        return host, rest[1:]
    if ":" not in addr:
        raise ValueError(f"address {addr}: missing port in address")
    host, port = addr.rsplit(":", 1)
    if ":" in host:
        raise ValueError(f"address {addr}: too many colons in address")
    return host, port


def _resolve(network: str, addr: str, socktype: int) -> Tuple[int, tuple]:
    family = _family(network, socktype)
    if not addr:
        return family, _any_address(family)
    host, port = _split_host_port(addr)
    if "%" in host:
        family = socket.AF_INET6
    flags = 0 if host else socket.AI_PASSIVE
    infos = socket.getaddrinfo(host or None, port or 0, family, socktype, 0, flags)
    if not infos:
        raise OSError(errno.EADDRNOTAVAIL, f"no address for {addr}")
    return family, infos[0][4]


def _address(sockaddr: Address) -> Address:
    if isinstance(sockaddr, tuple):
        return tuple(sockaddr[:2])
    return sockaddr


def create_socket_tcp(network: str, addr: str, nonblocking: bool) -> Tuple[socket.socket, tuple]:
    """Create a stream socket for ``addr``; an empty address means any address."""
    family, sockaddr = _resolve(network, addr, socket.SOCK_STREAM)
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setblocking(not nonblocking)
    return sock, sockaddr


def create_socket_udp(network: str, addr: str) -> Tuple[socket.socket, tuple]:
    """Create a non-blocking datagram socket for ``addr``."""
    family, sockaddr = _resolve(network, addr, socket.SOCK_DGRAM)
    sock = socket.socket(family, socket.SOCK_DGRAM)
    sock.setblocking(False)
    return sock, sockaddr


def connect(network: str, addr: str, *opts: Option):
    """Connect to ``addr`` with the default timeout.

    Returns ``(socket, local_address, remote_address)``. For UDP the remote
    address is the default destination and the only accepted source.
    """
    return connect_timeout(network, addr, DEFAULT_CONNECT_TIMEOUT, *opts)


def connect_timeout(network: str, addr: str, timeout: float, *opts: Option):
    """Connect to ``addr``, waiting at most ``timeout`` seconds."""
    kind = network[:3]
    if kind == "tcp":
        return connect_tcp(network, addr, timeout, *opts)
    if kind == "udp":
        return connect_udp(network, addr, timeout, *opts)
    if kind == "uni":
        raise ValueError("unix domain not supported")
    raise ValueError("unknown network argument")


def _connect_socket(sock: socket.socket, remote: tuple, timeout: float, opts) -> None:
    apply_opts(sock, *opts)
    code = sock.connect_ex(remote)
    if code == 0:
        return
    if code not in (errno.EINPROGRESS, errno.EAGAIN):
        raise OSError(code, f"connect: {os.strerror(code)}")
    _, writable, _ = select.select([], [sock], [], timeout)
    if not writable:
        raise Timeout()
    code = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    if code:
        raise OSError(code, f"connect: {os.strerror(code)}")


def _connected(create: Callable[[], Tuple[socket.socket, tuple]], timeout: float, opts):
    sock, remote = create()
    try:
        _connect_socket(sock, remote, timeout, opts)
        local = socket_address(sock)
    except BaseException:
        sock.close()
        raise
    return sock, local, _address(remote)


def connect_tcp(network: str, addr: str, timeout: float, *opts: Option):
    return _connected(lambda: create_socket_tcp(network, addr, True), timeout, opts)


def connect_udp(network: str, addr: str, timeout: float, *opts: Option):
    return _connected(lambda: create_socket_udp(network, addr), timeout, opts)


def listen(network: str, addr: str, *opts: Option) -> Tuple[socket.socket, Address]:
    """Create a blocking listening stream socket bound to ``addr``."""
    kind = network[:3]
    if kind not in ("tcp", "uni"):
        raise ValueError(f"network {kind} not supported")
    sock, local = create_socket_tcp(network, addr, False)
    try:
        apply_opts(sock, *opts)
        sock.bind(local)
        sock.listen(LISTEN_BACKLOG)
        bound = socket_address(sock)
    except BaseException:
        sock.close()
        raise
    return sock, bound


def listen_udp(network: str, addr: str, *opts: Option) -> Tuple[socket.socket, Address]:
    """Create a non-blocking datagram socket bound to ``addr``."""
    kind = network[:3]
    if kind != "udp":
        raise ValueError(f"network {kind} not supported")
    sock, local = create_socket_udp(network, addr)
    try:
        apply_opts(sock, *opts)
        sock.bind(local)
        bound = socket_address(sock)
    except BaseException:
        sock.close()
        raise
    return sock, bound


def _set_flag(sock: socket.socket, level: int, name: int, value: Any) -> None:
    sock.setsockopt(level, name, 1 if value else 0)


def apply_opts(sock: socket.socket, *opts: Option) -> None:
    """Apply each option to ``sock`` in order."""
    for opt in opts:
        kind = opt.type
        if kind is OptionType.NONBLOCKING:
            sock.setblocking(not opt.value)
        elif kind is OptionType.REUSE_PORT:
            name = getattr(socket, "SO_REUSEPORT", None)
            if name is None:
                raise OSError(errno.ENOPROTOOPT, "reuse_port not supported")
            _set_flag(sock, socket.SOL_SOCKET, name, opt.value)
        elif kind is OptionType.REUSE_ADDR:
            _set_flag(sock, socket.SOL_SOCKET, socket.SO_REUSEADDR, opt.value)
        elif kind is OptionType.NO_DELAY:
            _set_flag(sock, socket.IPPROTO_TCP, socket.TCP_NODELAY, opt.value)
        elif kind is OptionType.BIND_SOCKET:
            sock.bind(opt.value)
        else:
            raise ValueError(f"unsupported socket option {kind}")


def socket_address(sock: socket.socket) -> Address:
    """Return the local address of ``sock``."""
    return _address(sock.getsockname())


def _fileno(fd: Any) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


def is_nonblocking(fd: Any) -> bool:
    """Report whether the descriptor (or object with ``fileno``) is non-blocking."""
    flags = fcntl.fcntl(_fileno(fd), fcntl.F_GETFL)
    return flags & os.O_NONBLOCK == os.O_NONBLOCK


def is_no_delay(fd: Any) -> bool:
    """Report whether Nagle's algorithm is disabled on the socket."""
    if isinstance(fd, socket.socket):
        value = fd.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY)
    else:
        with socket.fromfd(_fileno(fd), socket.AF_INET, socket.SOCK_STREAM) as dup:
            value = dup.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY)
    return value & socket.TCP_NODELAY == socket.TCP_NODELAY