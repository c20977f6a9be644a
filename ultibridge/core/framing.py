"""Delimited frame accumulation for the BMS notification stream.

Frame layout::

    +-------+---------+--------+--------+----------+----------+------+
    | Start | Command | Status | Length |   Data   | Checksum | End  |
    | 0xDD  | 1 byte  | 1 byte | 1 byte | variable | 2 bytes  | 0x77 |
    +-------+---------+--------+--------+----------+----------+------+

Notifications arrive in radio-MTU sized chunks. A frame is closed when the
accumulated bytes start with the start marker and the most recent chunk ends
with the end marker; no scan for an end marker inside the buffer is made.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

START_BYTE = 0xDD
END_BYTE = 0x77
MIN_FRAME_LENGTH = 5

LOGGER = logging.getLogger(__name__)


class FrameDecoder:
    """Accumulates chunks and emits complete frames.

    ``max_buffer`` optionally bounds the accumulator: once exceeded without a
    frame closing, the buffered bytes are discarded. It does not change which
    byte sequences count as frames.
    """

    def __init__(self, *, max_buffer: int | None = None) -> None:
        if max_buffer is not None and max_buffer < MIN_FRAME_LENGTH:
            raise ValueError(f"max_buffer must be at least {MIN_FRAME_LENGTH} bytes")
        self._buffer = bytearray()
        self._max_buffer = max_buffer

    @property
    def buffered(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """Append ``chunk`` and return an iterator over frames it completed."""
        self._buffer.extend(chunk)

        frames: list[bytes] = []
        if (
            len(self._buffer) >= MIN_FRAME_LENGTH
            and self._buffer[0] == START_BYTE
            and self._buffer[-1] == END_BYTE
        ):
            frames.append(bytes(self._buffer))
            self._buffer.clear()
        elif self._max_buffer is not None and len(self._buffer) > self._max_buffer:
            LOGGER.warning(
                "Discarding %d buffered bytes without a complete frame",
                len(self._buffer),
            )
            LOGGER.debug("Discarded bytes: %s", self._buffer.hex())
            self._buffer.clear()

        return iter(frames)

    def reset(self) -> None:
        self._buffer.clear()
