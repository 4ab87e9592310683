import pytest

from sonicloop.sequencing import PoolProcessor, SimpleProcessor


@pytest.mark.parametrize("factory", [SimpleProcessor, PoolProcessor])
def test_processor_sequence(factory):
    p = factory()

    assert p.process(1, b"abcdef") == 0
    assert (p.expected, p.buffered()) == (2, 0)

    p.process(5, b"abcdef")
    assert (p.expected, p.buffered()) == (2, 1)

    p.process(6, b"abcdef")
    assert (p.expected, p.buffered()) == (2, 2)

    p.process(7, b"abcdef")
    assert (p.expected, p.buffered()) == (2, 3)

    p.process(4, b"abcdef")
    assert (p.expected, p.buffered()) == (2, 4)

    # duplicate out of order
    p.process(4, b"abcdef")
    assert (p.expected, p.buffered()) == (2, 4)

    p.process(2, b"abcdef")
    assert (p.expected, p.buffered()) == (3, 4)

    # in order, also drains everything buffered
    p.process(3, b"abcdef")
    assert (p.expected, p.buffered()) == (8, 0)

    # older packets are ignored
    p.process(2, b"abc")
    assert (p.expected, p.buffered()) == (8, 0)

    p.process(3, b"abc")
    assert (p.expected, p.buffered()) == (8, 0)


@pytest.mark.parametrize("factory", [SimpleProcessor, PoolProcessor])
def test_gap_keeps_later_packets_buffered(factory):
    p = factory()
    p.process(3, b"c")
    p.process(5, b"e")
    p.process(1, b"a")
    assert (p.expected, p.buffered()) == (2, 2)
    p.process(2, b"b")
    assert (p.expected, p.buffered()) == (4, 1)
    p.process(4, b"d")
    assert (p.expected, p.buffered()) == (6, 0)


def test_pool_processor_returns_buffers_to_pool():
    p = PoolProcessor()
    p.process(1, b"x")
    for seq in (3, 4, 5):
        p.process(seq, b"payload")
    assert len(p.pool) == 0
    p.process(2, b"y")
    assert p.expected == 6
    assert len(p.pool) == 3


def test_pool_processor_reuses_buffers():
    p = PoolProcessor()
    p.process(1, b"x")
    p.process(3, b"abc")
    p.process(2, b"y")
    assert len(p.pool) == 1
    p.process(5, b"defg")
    assert len(p.pool) == 0
    assert p.buffered() == 1
    p.process(4, b"z")
    assert p.expected == 6
    assert len(p.pool) == 1