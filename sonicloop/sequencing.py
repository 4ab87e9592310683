"""Processors that deliver sequenced packets in order, buffering those that arrive early."""

from __future__ import annotations

import bisect
import logging
from typing import List, Optional, Tuple

_log = logging.getLogger(__name__)


class _SequencedProcessor:
    """Tracks the next expected sequence number and buffers out-of-order payloads.

    Early payloads are stored as plain copies unless a subclass stores them
    differently.
    """

    def __init__(self) -> None:
        self.expected = 1
        self._buffer: List[Tuple[int, object]] = []

    def _process(self, seq: int, payload: bytes) -> int:
        if seq < self.expected:
            _log.debug(
                "ignoring seq=%d(%d) as we are on %d n_buffered=%d",
                seq, len(payload), self.expected, len(self._buffer),
            )
            return 0

        if seq == self.expected:
            _log.debug(
                "processing live seq=%d(%d) n_buffered=%d",
                seq, len(payload), len(self._buffer),
            )
            self.expected += 1
            self._walk_buffer()
        elif self._add_to_buffer(seq, payload):
            _log.debug(
                "buffering seq=%d(%d) n_buffered=%d",
                seq, len(payload), len(self._buffer),
            )
        return 0

    def _count(self) -> int:
        return len(self._buffer)

    def _add_to_buffer(self, seq: int, payload: bytes) -> bool:
        i = bisect.bisect_left(self._buffer, seq, key=lambda entry: entry[0])
        if i < len(self._buffer) and self._buffer[i][0] == seq:
            return False
        self._buffer.insert(i, (seq, self._store(payload)))
        return True

    def _walk_buffer(self) -> None:
        kept: List[Tuple[int, object]] = []
        for seq, data in self._buffer:
            if seq == self.expected:
                _log.debug(
                    "processing buffered seq=%d n_buffered=%d",
                    self.expected, len(self._buffer),
                )
                self.expected += 1
                self._release(data)
            else:
                kept.append((seq, data))
        self._buffer = kept

    def _store(self, payload: bytes) -> object:
        return bytes(payload)

    def _release(self, data: object) -> None:
        """Give back storage of a delivered payload; plain copies need nothing."""


class SimpleProcessor(_SequencedProcessor):
    """Buffers early packets as freshly allocated copies."""

    def process(self, seq: int, payload: bytes) -> int:
        """Handle one packet; return how many buffered packets were discarded."""
        return self._process(seq, payload)

    def buffered(self) -> int:
        """Number of packets held until their turn comes."""
        return self._count()


class _BytePool:
    """A free list of reusable byte buffers."""

    def __init__(self) -> None:
        self._free: List[bytearray] = []

    def get(self) -> bytearray:
        return self._free.pop() if self._free else bytearray()

    def put(self, buf: bytearray) -> None:
        buf.clear()
        self._free.append(buf)

    def __len__(self) -> int:
        return len(self._free)


class PoolProcessor(_SequencedProcessor):
    """Buffers early packets in byte buffers drawn from a reusable pool."""

    def __init__(self, pool: Optional[_BytePool] = None) -> None:
        super().__init__()
        self.pool = pool if pool is not None else _BytePool()

    def process(self, seq: int, payload: bytes) -> int:
        """Handle one packet; return how many buffered packets were discarded."""
        return self._process(seq, payload)

    def buffered(self) -> int:
        """Number of packets held until their turn comes."""
        return self._count()

    def _store(self, payload: bytes) -> bytearray:
        buf = self.pool.get()
        buf.extend(payload)
        return buf

    def _release(self, data: object) -> None:
        self.pool.put(data)  # type: ignore[arg-type]