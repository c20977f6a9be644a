"""Stable public API for building tooling on top of ultibridge.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from ultibridge.core.bridge import Bridge, battery_state_payload, cell_state_payload
from ultibridge.core.commands import COMMANDS, encode
from ultibridge.core.config import BridgeConfig, LoadedConfig, load_config, require_device_name
from ultibridge.core.decoders import decode
from ultibridge.core.errors import (
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    PublisherError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportSetupFailure,
    TransportTimeoutError,
    UltibridgeError,
)
from ultibridge.core.framing import FrameDecoder
from ultibridge.core.model import (
    BatteryState,
    CellState,
    CommandName,
    DecodeFailure,
    DeviceInfo,
    FailureKind,
    SessionState,
)
from ultibridge.core.session import BMSSession, SessionListener
from ultibridge.publishers.base import Publisher
from ultibridge.publishers.mqtt import MQTTPublisher
from ultibridge.transports.base import Transport
from ultibridge.transports.ble_gatt import BLEGATTTransport

__all__ = [
    "UltibridgeError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "PublisherError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportSetupFailure",
    "TransportTimeoutError",
    "BatteryState",
    "CellState",
    "CommandName",
    "DecodeFailure",
    "DeviceInfo",
    "FailureKind",
    "SessionState",
    "BridgeConfig",
    "LoadedConfig",
    "load_config",
    "COMMANDS",
    "encode",
    "decode",
    "FrameDecoder",
    "BMSSession",
    "SessionListener",
    "Bridge",
    "battery_state_payload",
    "cell_state_payload",
    "BLEGATTTransport",
    "MQTTPublisher",
    "Snapshot",
    "Client",
]


@dataclass(frozen=True)
class Snapshot:
    """One battery and cell reading taken over a short-lived connection."""

    battery_state: BatteryState
    cell_state: CellState


class _Collector:
    def __init__(self) -> None:
        self.subscribed = asyncio.Event()
        self.battery_state: BatteryState | None = None
        self.cell_state: CellState | None = None
        self.received = asyncio.Event()

    def on_battery_state(self, state: BatteryState) -> None:
        self.battery_state = state
        self._check()

    def on_cell_state(self, state: CellState) -> None:
        self.cell_state = state
        self._check()

    def on_device_info(self, info: DeviceInfo) -> None:
        pass

    def on_state_changed(self, state: SessionState) -> None:
        if state is SessionState.SUBSCRIBED:
            self.subscribed.set()

    def _check(self) -> None:
        if self.battery_state is not None and self.cell_state is not None:
            self.received.set()


async def _wait_subscribed(session: BMSSession, collector: _Collector, timeout_s: float) -> None:
    subscribed = asyncio.ensure_future(collector.subscribed.wait())
    closed = asyncio.ensure_future(session.wait_closed())
    done, pending = await asyncio.wait(
        {subscribed, closed},
        timeout=timeout_s,
        return_when=asyncio.FIRST_COMPLETED,
    )
    for task in pending:
        task.cancel()
    if closed in done:
        closed.result()
    if subscribed not in done:
        raise TransportTimeoutError(
            f"Timed out after {timeout_s}s waiting for {session.device_name}"
        )


class Client:
    """Public client for interacting with a battery over BLE.

    A `Client` wraps session setup, one-shot commands, and the MQTT bridge
    behind a stable API intended for third-party tools (scripts/services).
    """

    def __init__(
        self,
        *,
        config: BridgeConfig,
        transport: Transport | None = None,
        publisher_factory: Callable[[BridgeConfig], Publisher] | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._publisher_factory = publisher_factory

    @property
    def config(self) -> BridgeConfig:
        return self._config

    def _new_session(self) -> BMSSession:
        transport = self._transport or BLEGATTTransport(
            read_char_uuid=self._config.device.read_char_uuid,
            write_char_uuid=self._config.device.write_char_uuid,
            timeout_s=self._config.device.connect_timeout_s,
        )
        return BMSSession(
            transport,
            require_device_name(self._config),
            max_buffer=self._config.device.max_buffer_bytes,
            scan_retry_s=self._config.device.scan_retry_s,
        )

    def read_snapshot(self, *, timeout_s: float = 30.0) -> Snapshot:
        return asyncio.run(self._read_snapshot(timeout_s))

    async def _read_snapshot(self, timeout_s: float) -> Snapshot:
        session = self._new_session()
        collector = _Collector()
        session.subscribe(collector)
        try:
            await session.start_scanning()
            await _wait_subscribed(session, collector, timeout_s)
            session.send_command(CommandName.REQUEST_READ)
            session.send_command(CommandName.REQUEST_CELL_VOLTAGE)
            try:
                await asyncio.wait_for(collector.received.wait(), timeout_s)
            except asyncio.TimeoutError as exc:
                raise TransportTimeoutError(
                    f"{session.device_name} did not report battery and cell state within {timeout_s}s"
                ) from exc
        finally:
            await session.close()
        battery_state, cell_state = collector.battery_state, collector.cell_state
        if battery_state is None or cell_state is None:
            raise TransportTimeoutError(f"{session.device_name} closed before reporting its state")
        return Snapshot(battery_state=battery_state, cell_state=cell_state)

    def send_command(self, name: CommandName | str, *, timeout_s: float = 30.0) -> bytes:
        return asyncio.run(self._send_command(CommandName(name), timeout_s))

    async def _send_command(self, name: CommandName, timeout_s: float) -> bytes:
        session = self._new_session()
        collector = _Collector()
        session.subscribe(collector)
        try:
            await session.start_scanning()
            await _wait_subscribed(session, collector, timeout_s)
            session.send_command(name)
            await session.drain()
        finally:
            await session.close()
        return encode(name)

    def set_charge(self, on: bool, *, timeout_s: float = 30.0) -> bytes:
        return self.send_command(CommandName.CHARGE_ON if on else CommandName.CHARGE_OFF, timeout_s=timeout_s)

    def set_discharge(self, on: bool, *, timeout_s: float = 30.0) -> bytes:
        return self.send_command(
            CommandName.DISCHARGE_ON if on else CommandName.DISCHARGE_OFF, timeout_s=timeout_s
        )

    def run_bridge(self) -> None:
        """Run the BLE to MQTT bridge until the session fails or is interrupted."""
        factory = self._publisher_factory or (lambda config: MQTTPublisher(config.mqtt))
        publisher = factory(self._config)
        start = getattr(publisher, "start", None)
        if start is not None:
            start()
        try:
            asyncio.run(self._run_bridge(publisher))
        finally:
            stop = getattr(publisher, "stop", None)
            if stop is not None:
                stop()

    async def _run_bridge(self, publisher: Publisher) -> None:
        session = self._new_session()
        bridge = Bridge(
            session,
            publisher,
            topic_prefix=self._config.mqtt.topic_prefix,
            battery_state_interval_s=self._config.polling.battery_state_interval_s,
            cell_state_interval_s=self._config.polling.cell_state_interval_s,
        )
        try:
            await bridge.run()
        finally:
            await session.close()
