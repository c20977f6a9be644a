"""Fixed-layout decoders for BMS response frames.

All multi-byte fields are big-endian signed 16-bit integers addressed by
their offset from the start marker. Decoding never raises: short frames and
unknown command bytes come back as a ``DecodeFailure``.
"""

from __future__ import annotations

from collections.abc import Callable

from ultibridge.core.model import (
    BatteryState,
    CellState,
    DecodeFailure,
    DecodeResult,
    DeviceInfo,
    FailureKind,
    Message,
)

COMMAND_BATTERY_STATE = 3
COMMAND_CELL_STATE = 4
COMMAND_DEVICE_INFO = 5

_KELVIN_OFFSET = 273.15
_FOOTER_LENGTH = 4


class _OutOfBounds(Exception):
    pass


class FrameReader:
    """Bounds-checked reads over an immutable frame."""

    def __init__(self, frame: bytes) -> None:
        self._frame = bytes(frame)

    def __len__(self) -> int:
        return len(self._frame)

    def byte(self, offset: int) -> int:
        if offset < 0 or offset >= len(self._frame):
            raise _OutOfBounds(offset)
        return self._frame[offset]

    def int16(self, offset: int) -> int:
        if offset < 0 or offset + 2 > len(self._frame):
            raise _OutOfBounds(offset)
        return int.from_bytes(self._frame[offset : offset + 2], "big", signed=True)

    def slice(self, start: int, stop: int) -> bytes:
        return self._frame[start:stop]


def _decode_battery_state(reader: FrameReader) -> BatteryState:
    status = reader.byte(24)
    return BatteryState(
        voltage=reader.int16(4) / 100,
        current=reader.int16(6) / 100,
        temp1=reader.int16(27) / 10 - _KELVIN_OFFSET,
        temp2=reader.int16(29) / 10 - _KELVIN_OFFSET,
        charge=reader.int16(8),
        full=reader.int16(10),
        charge_on=bool(status & 0x01),
        discharge_on=bool(status & 0x02),
    )


def _decode_cell_state(reader: FrameReader) -> CellState:
    numcells = reader.int16(2) // 2
    if numcells < 0:
        raise _OutOfBounds(2)
    cells = tuple(reader.int16(4 + index * 2) for index in range(numcells))
    return CellState(numcells=numcells, cells=cells)


def _decode_device_info(reader: FrameReader) -> DeviceInfo:
    trimmed = reader.slice(4, len(reader) - _FOOTER_LENGTH)
    return DeviceInfo(name=trimmed.decode("utf-8", errors="replace"))


_DECODERS: dict[int, Callable[[FrameReader], Message]] = {
    COMMAND_BATTERY_STATE: _decode_battery_state,
    COMMAND_CELL_STATE: _decode_cell_state,
    COMMAND_DEVICE_INFO: _decode_device_info,
}


def decode(frame: bytes) -> DecodeResult:
    """Decode one complete frame, selected by its command byte."""
    frame = bytes(frame)
    if len(frame) < 2:
        return DecodeFailure(kind=FailureKind.TRUNCATED, command=None, frame=frame)

    command = frame[1]
    decoder = _DECODERS.get(command)
    if decoder is None:
        return DecodeFailure(kind=FailureKind.UNSUPPORTED_COMMAND, command=command, frame=frame)

    try:
        return decoder(FrameReader(frame))
    except _OutOfBounds:
        return DecodeFailure(kind=FailureKind.TRUNCATED, command=command, frame=frame)
