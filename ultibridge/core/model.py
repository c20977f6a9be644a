"""Core data models used across decoders, session, bridge, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class CommandName(str, Enum):
    DISCHARGE_ON = "discharge_on"
    DISCHARGE_OFF = "discharge_off"
    CHARGE_ON = "charge_on"
    CHARGE_OFF = "charge_off"
    REQUEST_READ = "request_read"
    REQUEST_CELL_VOLTAGE = "request_cell_voltage"
    REQUEST_INFO = "request_info"


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"


class FailureKind(str, Enum):
    TRUNCATED = "truncated"
    UNSUPPORTED_COMMAND = "unsupported_command"


@dataclass(frozen=True)
class BatteryState:
    voltage: float
    current: float
    temp1: float
    temp2: float
    charge: int
    full: int
    charge_on: bool
    discharge_on: bool


@dataclass(frozen=True)
class CellState:
    numcells: int
    cells: tuple[int, ...]


@dataclass(frozen=True)
class DeviceInfo:
    name: str


@dataclass(frozen=True)
class DecodeFailure:
    kind: FailureKind
    command: int | None
    frame: bytes

    def describe(self) -> str:
        if self.kind is FailureKind.UNSUPPORTED_COMMAND:
            return f"no decoder for command {self.command}"
        return f"truncated frame for command {self.command}: {self.frame.hex()}"


Message = Union[BatteryState, CellState, DeviceInfo]
DecodeResult = Union[BatteryState, CellState, DeviceInfo, DecodeFailure]


@dataclass(frozen=True)
class DiscoveredDevice:
    address: str
    name: str | None
    handle: Any = None
