import select

import pytest

from sonicloop.waker import EventFd, Pipe, make_waker


def _readable(fd, timeout=0.0):
    ready, _, _ = select.select([fd], [], [], timeout)
    return bool(ready)


def test_pipe_round_trip():
    with Pipe() as pipe:
        assert pipe.write(b"wake") == 4
        assert pipe.read(16) == b"wake"


def test_pipe_slot_tracks_read_end():
    with Pipe() as pipe:
        assert pipe.slot.fd == pipe.read_fd()
        assert pipe.read_fd() != pipe.write_fd()


def test_pipe_nonblocking_read_on_empty_raises():
    with Pipe() as pipe:
        pipe.set_read_nonblock()
        with pytest.raises(BlockingIOError):
            pipe.read(1)


def test_pipe_nonblocking_write_fills_up():
    with Pipe() as pipe:
        pipe.set_write_nonblock()
        with pytest.raises(BlockingIOError):
            while True:
                pipe.write(b"\x00" * 65536)


def test_pipe_write_after_close_fails():
    pipe = Pipe()
    pipe.close()
    with pytest.raises(OSError):
        pipe.write(b"x")


def test_eventfd_accumulates_counter():
    with EventFd() as efd:
        assert efd.write(1) == 8
        efd.write(1)
        assert efd.read() == 2


def test_eventfd_nonblocking_read_on_empty_raises():
    with EventFd(nonblocking=True) as efd:
        with pytest.raises(BlockingIOError):
            efd.read()


def test_eventfd_slot_and_readiness():
    with EventFd() as efd:
        assert efd.slot.fd == efd.fileno()
        assert not _readable(efd.fileno())
        efd.write(3)
        assert _readable(efd.fileno(), 1.0)
        assert efd.read() == 3
        assert not _readable(efd.fileno())


def test_make_waker_wakes_select():
    waker = make_waker()
    try:
        assert not _readable(waker.slot.fd)
        written = waker.write(1)
        assert written > 0
        assert _readable(waker.slot.fd, 1.0)
    finally:
        waker.close()