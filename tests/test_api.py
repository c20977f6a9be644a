from __future__ import annotations

import struct

import pytest

from ultibridge.api import Client, Snapshot
from ultibridge.core.config import BridgeConfig, DeviceSettings, MQTTSettings, PollingSettings
from ultibridge.core.errors import ConfigValidationError, TransportSetupFailure, TransportTimeoutError
from ultibridge.core.model import DiscoveredDevice
from ultibridge.transports.base import Channels

BATTERY_FRAME = bytes.fromhex(
    "dd0300" "1b" "052a" "fff6" "1388" "2710" "0000" "0000" "0000" "0000" "0000" "0000" "03" "0000" "0bb8" "0bc2" "00" "fa0077"
)


def _cell_frame(cells: list[int]) -> bytes:
    data = b"".join(struct.pack(">h", cell) for cell in cells)
    return bytes([0xDD, 0x04, 0x00, len(data)]) + data + bytes.fromhex("fa0077")


class ScriptedReadChannel:
    async def subscribe(self, on_data) -> None:
        self.on_data = on_data


class ScriptedWriteChannel:
    """Answers read requests the way the battery does, in two notifications."""

    def __init__(self, read_channel: ScriptedReadChannel, *, answer_cells: bool = True) -> None:
        self.read_channel = read_channel
        self.answer_cells = answer_cells
        self.writes: list[bytes] = []

    def write(self, payload: bytes) -> None:
        self.writes.append(payload)
        if payload == bytes.fromhex("dda50300fffd77"):
            response = BATTERY_FRAME
        elif payload == bytes.fromhex("dda50400fffc77") and self.answer_cells:
            response = _cell_frame([3300, 3301, 3302, 3303])
        else:
            return
        self.read_channel.on_data(response[:20])
        self.read_channel.on_data(response[20:])

    async def drain(self) -> None:
        return None


class ScriptedTransport:
    def __init__(self, *, write: bool = True, answer_cells: bool = True) -> None:
        self.read_channel = ScriptedReadChannel()
        self.write_channel = (
            ScriptedWriteChannel(self.read_channel, answer_cells=answer_cells) if write else None
        )
        self.disconnects = 0

    async def start_scan(self, on_discover) -> None:
        on_discover(DiscoveredDevice(address="AA:BB:CC:11:22:33", name="UT-BMS"))

    async def stop_scan(self) -> None:
        return None

    async def connect(self, device, on_disconnect) -> None:
        return None

    async def discover_channels(self) -> Channels:
        return Channels(read=self.read_channel, write=self.write_channel)

    async def disconnect(self) -> None:
        self.disconnects += 1


class FakePublisher:
    def __init__(self) -> None:
        self.events: list[str] = []

    def start(self) -> None:
        self.events.append("start")

    def stop(self) -> None:
        self.events.append("stop")

    def publish(self, topic: str, payload: str) -> None:
        self.events.append(topic)


def _config(name: str = "UT-BMS") -> BridgeConfig:
    return BridgeConfig(
        device=DeviceSettings(name=name),
        polling=PollingSettings(),
        mqtt=MQTTSettings(),
    )


def test_read_snapshot() -> None:
    transport = ScriptedTransport()
    client = Client(config=_config(), transport=transport)

    snapshot = client.read_snapshot(timeout_s=1.0)
    assert isinstance(snapshot, Snapshot)
    assert snapshot.battery_state.voltage == 13.22
    assert snapshot.battery_state.current == -0.1
    assert snapshot.battery_state.charge == 5000
    assert snapshot.battery_state.full == 10000
    assert snapshot.battery_state.charge_on and snapshot.battery_state.discharge_on
    assert snapshot.cell_state.cells == (3300, 3301, 3302, 3303)
    assert transport.disconnects >= 1


def test_read_snapshot_times_out_without_cell_state() -> None:
    transport = ScriptedTransport(answer_cells=False)
    client = Client(config=_config(), transport=transport)

    with pytest.raises(TransportTimeoutError):
        client.read_snapshot(timeout_s=0.05)
    assert transport.disconnects >= 1


def test_set_charge_sends_command() -> None:
    transport = ScriptedTransport()
    client = Client(config=_config(), transport=transport)

    payload = client.set_charge(False, timeout_s=1.0)
    assert payload.hex() == "dd5ae1020001ff1c77"
    assert transport.write_channel.writes == [payload]


def test_missing_device_name_rejected() -> None:
    client = Client(config=_config(name=""), transport=ScriptedTransport())
    with pytest.raises(ConfigValidationError):
        client.read_snapshot(timeout_s=1.0)


def test_run_bridge_stops_on_setup_failure() -> None:
    publisher = FakePublisher()
    client = Client(
        config=_config(),
        transport=ScriptedTransport(write=False),
        publisher_factory=lambda config: publisher,
    )

    with pytest.raises(TransportSetupFailure):
        client.run_bridge()
    assert publisher.events == ["start", "stop"]
