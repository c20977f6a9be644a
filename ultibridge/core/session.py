"""Device session: BLE lifecycle, frame dispatch, and command polling.

All state is owned by the event loop the session runs on. Transport callbacks
(notifications, discovery, disconnect) and poll timers are delivered on that
loop, so frames are decoded strictly in arrival order without locking.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from ultibridge.core.commands import encode
from ultibridge.core.decoders import decode
from ultibridge.core.errors import TransportError, TransportSetupFailure
from ultibridge.core.framing import FrameDecoder
from ultibridge.core.model import (
    BatteryState,
    CellState,
    CommandName,
    DecodeFailure,
    DecodeResult,
    DeviceInfo,
    DiscoveredDevice,
    SessionState,
)
from ultibridge.transports.base import Transport, WriteChannel

LOGGER = logging.getLogger(__name__)


class SessionListener(Protocol):
    def on_battery_state(self, state: BatteryState) -> None: ...

    def on_cell_state(self, state: CellState) -> None: ...

    def on_device_info(self, info: DeviceInfo) -> None: ...

    def on_state_changed(self, state: SessionState) -> None: ...


@dataclass
class _Poller:
    interval_s: float
    task: asyncio.Task[None]


class BMSSession:
    def __init__(
        self,
        transport: Transport,
        device_name: str,
        *,
        max_buffer: int | None = None,
        scan_retry_s: float = 5.0,
    ) -> None:
        self._transport = transport
        self._device_name = device_name
        self._decoder = FrameDecoder(max_buffer=max_buffer)
        self._listeners: list[SessionListener] = []
        self._state = SessionState.IDLE
        self._write_channel: WriteChannel | None = None
        self._setup_task: asyncio.Task[None] | None = None
        self._pollers: dict[CommandName, _Poller] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._scan_retry: asyncio.Task[None] | None = None
        self._scan_retry_s = scan_retry_s
        self._closed = asyncio.Event()
        self._failure: TransportSetupFailure | None = None
        self.want_connected = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def has_write_channel(self) -> bool:
        return self._write_channel is not None

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    # Lifecycle

    async def start_scanning(self) -> None:
        self.want_connected = True
        if self._state is not SessionState.IDLE or self._scan_retry_pending:
            return
        await self._try_scan()

    @property
    def _scan_retry_pending(self) -> bool:
        return self._scan_retry is not None and not self._scan_retry.done()

    async def _try_scan(self) -> None:
        if not self.want_connected or self._state is not SessionState.IDLE:
            return
        try:
            await self._begin_scan()
        except TransportError as exc:
            LOGGER.warning(
                "Unable to start scanning: %s; retrying in %.1fs", exc, self._scan_retry_s
            )
            if not self._scan_retry_pending:
                self._scan_retry = asyncio.get_running_loop().create_task(self._retry_scan())

    async def _retry_scan(self) -> None:
        await asyncio.sleep(self._scan_retry_s)
        self._scan_retry = None
        await self._try_scan()

    async def _begin_scan(self) -> None:
        self._set_state(SessionState.SCANNING)
        try:
            await self._transport.start_scan(self._on_discover)
        except TransportError:
            self._set_state(SessionState.IDLE)
            raise
        LOGGER.info("Started scanning for %s", self._device_name)

    def _on_discover(self, device: DiscoveredDevice) -> None:
        if device.name != self._device_name:
            return
        if self._state is not SessionState.SCANNING or self._setup_task is not None:
            return
        LOGGER.info("Device %s discovered at %s", self._device_name, device.address)
        self._setup_task = asyncio.get_running_loop().create_task(self._setup(device))

    async def _setup(self, device: DiscoveredDevice) -> None:
        try:
            await self.connect_device(device)
        except TransportSetupFailure as exc:
            LOGGER.error("%s", exc)
            await self._fail(exc)
        except TransportError as exc:
            LOGGER.warning("Connection to %s failed: %s", device.address, exc)
            await self._abandon_link()
        except Exception:
            LOGGER.exception("Unexpected error while setting up %s", device.address)
            await self._abandon_link()
        finally:
            self._setup_task = None

    async def connect_device(self, device: DiscoveredDevice) -> None:
        """Connect, resolve both characteristics, and subscribe to notifications."""
        await self._transport.stop_scan()
        await self._transport.connect(device, self.on_disconnected)
        self._set_state(SessionState.CONNECTED)
        LOGGER.info("Connected to %s", device.address)

        channels = await self._transport.discover_channels()
        if channels.read is None or channels.write is None:
            raise TransportSetupFailure(
                f"Read or write characteristic not found on BLE device {self._device_name}"
            )

        self._decoder.reset()
        self._write_channel = channels.write
        await channels.read.subscribe(self.on_data)
        self._set_state(SessionState.SUBSCRIBED)
        LOGGER.info("Subscribed to notifications from %s", self._device_name)

    def on_disconnected(self) -> None:
        if self._state is SessionState.IDLE:
            return
        LOGGER.warning("Disconnected from %s", self._device_name)
        self._reset_link()
        if self.want_connected:
            self._spawn(self._try_scan())

    async def _abandon_link(self) -> None:
        await self._transport.disconnect()
        self._reset_link()
        await self._try_scan()

    async def _fail(self, exc: TransportSetupFailure) -> None:
        self._failure = exc
        self.want_connected = False
        self._stop_pollers()
        await self._transport.disconnect()
        self._reset_link()
        self._closed.set()

    async def close(self) -> None:
        self.want_connected = False
        self._stop_pollers()
        task = self._setup_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        for background in list(self._background):
            background.cancel()
        if self._scan_retry_pending and self._scan_retry is not asyncio.current_task():
            self._scan_retry.cancel()
        self._scan_retry = None
        await self._transport.stop_scan()
        await self._transport.disconnect()
        self._reset_link()
        self._closed.set()

    async def wait_closed(self) -> None:
        """Return once the session is closed; raise if setup failed."""
        await self._closed.wait()
        if self._failure is not None:
            raise self._failure

    def _reset_link(self) -> None:
        self._write_channel = None
        self._decoder.reset()
        self._set_state(SessionState.IDLE)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            listener.on_state_changed(state)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Inbound data

    def on_data(self, data: bytes) -> None:
        if self._state is SessionState.IDLE:
            return
        for frame in self._decoder.feed(data):
            self._dispatch(decode(frame))

    def _dispatch(self, result: DecodeResult) -> None:
        if isinstance(result, DecodeFailure):
            LOGGER.warning("Discarding frame: %s", result.describe())
            return

        for listener in list(self._listeners):
            if isinstance(result, BatteryState):
                listener.on_battery_state(result)
            elif isinstance(result, CellState):
                listener.on_cell_state(result)
            elif isinstance(result, DeviceInfo):
                listener.on_device_info(result)

    # Commands

    def send_command(self, name: CommandName | str) -> bool:
        payload = encode(name)
        if self._write_channel is None:
            LOGGER.debug("No write channel; dropping %s", CommandName(name).value)
            return False
        self._write_channel.write(payload)
        return True

    async def drain(self) -> None:
        if self._write_channel is not None:
            await self._write_channel.drain()

    def request_battery_info(self) -> bool:
        return self.send_command(CommandName.REQUEST_INFO)

    def set_charge(self, on: bool) -> bool:
        return self.send_command(CommandName.CHARGE_ON if on else CommandName.CHARGE_OFF)

    def set_discharge(self, on: bool) -> bool:
        return self.send_command(CommandName.DISCHARGE_ON if on else CommandName.DISCHARGE_OFF)

    # Polling

    def start_reading_battery_state(self, interval_s: float) -> None:
        self._start_poller(CommandName.REQUEST_READ, interval_s)

    def stop_reading_battery_state(self) -> None:
        self._stop_poller(CommandName.REQUEST_READ)

    def start_reading_cell_state(self, interval_s: float) -> None:
        self._start_poller(CommandName.REQUEST_CELL_VOLTAGE, interval_s)

    def stop_reading_cell_state(self) -> None:
        self._stop_poller(CommandName.REQUEST_CELL_VOLTAGE)

    def poll_interval(self, command: CommandName) -> float | None:
        poller = self._pollers.get(command)
        return poller.interval_s if poller else None

    @property
    def active_pollers(self) -> tuple[CommandName, ...]:
        return tuple(self._pollers)

    def _start_poller(self, command: CommandName, interval_s: float) -> None:
        if command in self._pollers:
            return
        if interval_s <= 0:
            raise ValueError("Poll interval must be positive")
        task = asyncio.get_running_loop().create_task(self._poll(command, interval_s))
        self._pollers[command] = _Poller(interval_s=interval_s, task=task)

    async def _poll(self, command: CommandName, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.send_command(command)

    def _stop_poller(self, command: CommandName) -> None:
        poller = self._pollers.pop(command, None)
        if poller is not None:
            poller.task.cancel()

    def _stop_pollers(self) -> None:
        for command in list(self._pollers):
            self._stop_poller(command)
