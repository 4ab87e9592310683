import os

import pytest

from sonicloop.definitions import Cancelled, WouldBlock
from sonicloop.file import File, open_file
from sonicloop.reactor import IO

DATA = b"hello, sonic!"


@pytest.fixture
def ioc():
    loop = IO()
    yield loop
    if not loop.closed():
        loop.close()


@pytest.fixture
def path(tmp_path):
    return str(tmp_path / "tmp.log")


@pytest.fixture
def pipe():
    r, w = os.pipe()
    os.set_blocking(r, False)
    os.set_blocking(w, False)
    yield r, w
    os.close(w)


def _rw_flags():
    return os.O_RDWR | os.O_TRUNC | os.O_CREAT


def test_write_then_read_round_trip(ioc, path):
    with open_file(ioc, path, _rw_flags(), 0o644) as f:
        assert f.write(DATA) == len(DATA)
        assert f.seek(0, os.SEEK_SET) == 0
        buf = bytearray(len(DATA))
        assert f.readinto(buf) == len(DATA)
        assert bytes(buf) == DATA


def test_readinto_at_end_raises_eof(ioc, path):
    with open_file(ioc, path, _rw_flags(), 0o644) as f:
        with pytest.raises(EOFError):
            f.readinto(bytearray(len(DATA)))


def test_seek_end_reports_size(ioc, path):
    with open_file(ioc, path, _rw_flags(), 0o644) as f:
        f.write(DATA)
        assert f.seek(0, os.SEEK_END) == len(DATA)


def test_async_write_then_async_read(ioc, path):
    results = []
    with open_file(ioc, path, _rw_flags(), 0o644) as f:
        f.async_write(DATA, lambda err, n: results.append((err, n)))
        assert results == [(None, len(DATA))]

        f.seek(0)
        buf = bytearray(len(DATA))
        f.async_read(buf, lambda err, n: results.append((err, n)))
        assert results[1] == (None, len(DATA))
        assert bytes(buf) == DATA
    assert ioc.pending() == 0


def test_async_read_at_end_reports_eof(ioc, path):
    results = []
    with open_file(ioc, path, _rw_flags(), 0o644) as f:
        f.async_read(bytearray(len(DATA)), lambda err, n: results.append((err, n)))
    assert len(results) == 1
    assert isinstance(results[0][0], EOFError)
    assert results[0][1] == 0


def test_readinto_empty_pipe_would_block(ioc, pipe):
    r, _ = pipe
    with File(ioc, r) as f:
        with pytest.raises(WouldBlock):
            f.readinto(bytearray(len(DATA)))


def test_async_read_waits_for_data(ioc, pipe):
    r, w = pipe
    results = []
    with File(ioc, r) as f:
        buf = bytearray(len(DATA))
        f.async_read(buf, lambda err, n: results.append((err, n)))

        assert results == []
        assert ioc.pending() == 1
        assert f.slot in ioc

        os.write(w, DATA)
        ioc.run_one()

        assert results == [(None, len(DATA))]
        assert bytes(buf) == DATA
        assert f.slot not in ioc
        assert ioc.pending() == 0


def test_async_read_all_collects_full_buffer(ioc, pipe):
    r, w = pipe
    results = []
    with File(ioc, r) as f:
        buf = bytearray(len(DATA))
        f.async_read_all(buf, lambda err, n: results.append((err, n)))
        os.write(w, DATA)
        ioc.run_pending()
        assert results == [(None, len(DATA))]
        assert bytes(buf) == DATA


def test_async_write_all_to_pipe(ioc, pipe):
    r, w = pipe
    results = []
    writer = File(ioc, w)
    writer.async_write_all(DATA, lambda err, n: results.append((err, n)))
    assert results == [(None, len(DATA))]
    assert os.read(r, len(DATA)) == DATA
    os.close(r)


def test_cancel_pending_read(ioc, pipe):
    r, _ = pipe
    results = []
    with File(ioc, r) as f:
        f.async_read(bytearray(len(DATA)), lambda err, n: results.append((err, n)))
        assert ioc.pending() == 1

        f.cancel()

        assert len(results) == 1
        assert isinstance(results[0][0], Cancelled)
        assert results[0][1] == 0
        assert ioc.pending() == 0
        assert f.slot not in ioc


def test_cancel_without_pending_does_nothing(ioc, pipe):
    r, _ = pipe
    with File(ioc, r) as f:
        f.cancel()
        assert ioc.pending() == 0
        assert not f.closed()


def test_close_twice_raises(ioc, path):
    f = open_file(ioc, path, _rw_flags(), 0o644)
    assert not f.closed()
    f.close()
    assert f.closed()
    with pytest.raises(EOFError):
        f.close()


def test_close_drops_pending_interest(ioc, pipe):
    r, _ = pipe
    f = File(ioc, r)
    f.async_read(bytearray(len(DATA)), lambda err, n: None)
    assert ioc.pending() == 1
    f.close()
    assert ioc.pending() == 0


def test_fileno_matches_descriptor(ioc, pipe):
    r, _ = pipe
    with File(ioc, r) as f:
        assert f.fileno() == r