from __future__ import annotations

import asyncio
import json

import pytest

from ultibridge.core.bridge import Bridge, battery_state_payload, charged_percentage
from ultibridge.core.errors import TransportSetupFailure
from ultibridge.core.model import BatteryState, CellState, CommandName, DeviceInfo, DiscoveredDevice, SessionState
from ultibridge.core.session import BMSSession
from ultibridge.transports.base import Channels


class FakeReadChannel:
    async def subscribe(self, on_data) -> None:
        self.on_data = on_data


class FakeWriteChannel:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, payload: bytes) -> None:
        self.writes.append(payload)

    async def drain(self) -> None:
        return None


class FakeTransport:
    def __init__(self, *, write: bool = True) -> None:
        self.read_channel = FakeReadChannel()
        self.write_channel = FakeWriteChannel() if write else None
        self.on_discover = None

    async def start_scan(self, on_discover) -> None:
        self.on_discover = on_discover

    async def stop_scan(self) -> None:
        return None

    async def connect(self, device, on_disconnect) -> None:
        return None

    async def discover_channels(self) -> Channels:
        return Channels(read=self.read_channel, write=self.write_channel)

    async def disconnect(self) -> None:
        return None


class FakePublisher:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def publish(self, topic: str, payload: str) -> None:
        self.messages.append((topic, payload))


def _state(**overrides) -> BatteryState:
    fields = dict(
        voltage=50.0,
        current=2.0,
        temp1=21.5,
        temp2=22.0,
        charge=80,
        full=100,
        charge_on=True,
        discharge_on=False,
    )
    fields.update(overrides)
    return BatteryState(**fields)


def test_battery_payload_derived_fields() -> None:
    payload = battery_state_payload(_state())
    assert payload["power"] == 100.0
    assert payload["charged_percentage"] == 80
    assert payload["voltage"] == 50.0
    assert payload["charge_on"] is True


def test_charged_percentage_rounds_half_up() -> None:
    assert charged_percentage(1, 8) == 13
    assert charged_percentage(2, 3) == 67
    assert charged_percentage(5, 0) is None


def test_messages_published_under_prefix() -> None:
    async def scenario() -> None:
        publisher = FakePublisher()
        session = BMSSession(FakeTransport(), "UT-BMS")
        bridge = Bridge(session, publisher, topic_prefix="home/battery/")

        bridge.on_battery_state(_state())
        bridge.on_cell_state(CellState(numcells=2, cells=(3300, 3301)))
        bridge.on_device_info(DeviceInfo(name="UT-12V100"))

        topics = [topic for topic, _ in publisher.messages]
        assert topics == ["home/battery/batterystate", "home/battery/cellstate", "home/battery/info"]
        assert json.loads(publisher.messages[0][1])["charged_percentage"] == 80
        assert json.loads(publisher.messages[1][1]) == {"numcells": 2, "cells": [3300, 3301]}
        assert json.loads(publisher.messages[2][1]) == {"name": "UT-12V100"}

    asyncio.run(scenario())


def test_device_info_requested_once_subscribed() -> None:
    async def scenario() -> None:
        transport = FakeTransport()
        session = BMSSession(transport, "UT-BMS")
        Bridge(session, FakePublisher(), topic_prefix="ultimatron")

        await session.connect_device(DiscoveredDevice(address="AA:BB", name="UT-BMS"))
        assert session.state is SessionState.SUBSCRIBED
        assert transport.write_channel.writes == [bytes.fromhex("dda50500fffb77")]

    asyncio.run(scenario())


def test_run_starts_pollers_with_configured_intervals() -> None:
    async def scenario() -> None:
        session = BMSSession(FakeTransport(), "UT-BMS")
        bridge = Bridge(
            session,
            FakePublisher(),
            topic_prefix="ultimatron",
            battery_state_interval_s=5,
            cell_state_interval_s=60,
        )
        task = asyncio.ensure_future(bridge.run())
        await asyncio.sleep(0)
        assert session.state is SessionState.SCANNING
        assert session.poll_interval(CommandName.REQUEST_READ) == 5
        assert session.poll_interval(CommandName.REQUEST_CELL_VOLTAGE) == 60

        await session.close()
        await task

    asyncio.run(scenario())


def test_run_surfaces_setup_failure() -> None:
    async def scenario() -> None:
        transport = FakeTransport(write=False)
        session = BMSSession(transport, "UT-BMS")
        bridge = Bridge(session, FakePublisher(), topic_prefix="ultimatron")

        task = asyncio.ensure_future(bridge.run())
        await asyncio.sleep(0)
        transport.on_discover(DiscoveredDevice(address="AA:BB", name="UT-BMS"))

        with pytest.raises(TransportSetupFailure):
            await task
        assert session.active_pollers == ()

    asyncio.run(scenario())
