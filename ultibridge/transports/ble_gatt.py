"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ultibridge.core.errors import TransportConnectError, TransportSendError
from ultibridge.core.model import DiscoveredDevice
from ultibridge.transports.base import Channels

LOGGER = logging.getLogger(__name__)


def _import_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


def _uuid_matches(char_uuid: str, wanted: str) -> bool:
    char_uuid = char_uuid.lower()
    if len(wanted) == 4:
        return char_uuid == wanted or char_uuid.startswith(f"0000{wanted}-")
    if len(wanted) == 8:
        return char_uuid == wanted or char_uuid.startswith(f"{wanted}-")
    return char_uuid == wanted


class BLEReadChannel:
    def __init__(self, client: Any, characteristic: Any) -> None:
        self._client = client
        self._characteristic = characteristic

    async def subscribe(self, on_data: Callable[[bytes], None]) -> None:
        def _notify_handler(_: Any, data: bytearray) -> None:
            on_data(bytes(data))

        try:
            await self._client.start_notify(self._characteristic, _notify_handler)
        except Exception as exc:
            raise TransportSendError(
                f"Could not subscribe to {self._characteristic.uuid}: {exc}"
            ) from exc


class BLEWriteChannel:
    def __init__(self, client: Any, characteristic: Any, *, with_response: bool = True) -> None:
        self._client = client
        self._characteristic = characteristic
        self._with_response = with_response
        self._pending: set[asyncio.Task[None]] = set()

    def write(self, payload: bytes) -> None:
        task = asyncio.get_running_loop().create_task(self._write(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def _write(self, payload: bytes) -> None:
        try:
            await self._client.write_gatt_char(
                self._characteristic,
                payload,
                response=self._with_response,
            )
        except Exception as exc:
            LOGGER.warning("BLE write of %s failed: %s", payload.hex(), exc)


class BLEGATTTransport:
    """``bleak`` backed transport for a single peripheral."""

    def __init__(
        self,
        *,
        read_char_uuid: str = "ff01",
        write_char_uuid: str = "ff02",
        timeout_s: float = 10.0,
    ) -> None:
        self._read_char_uuid = read_char_uuid.lower()
        self._write_char_uuid = write_char_uuid.lower()
        self._timeout_s = timeout_s
        self._scanner: Any = None
        self._client: Any = None

    async def start_scan(self, on_discover: Callable[[DiscoveredDevice], None]) -> None:
        bleak = _import_bleak()

        def _detection_callback(device: Any, advertisement: Any) -> None:
            name = advertisement.local_name or device.name
            on_discover(DiscoveredDevice(address=device.address, name=name, handle=device))

        if self._scanner is not None:
            return
        scanner = bleak.BleakScanner(detection_callback=_detection_callback)
        try:
            await scanner.start()
        except Exception as exc:
            raise TransportConnectError(f"BLE scan failed to start: {exc}") from exc
        self._scanner = scanner

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except Exception as exc:
            LOGGER.debug("Ignoring scanner stop failure: %s", exc)

    async def connect(self, device: DiscoveredDevice, on_disconnect: Callable[[], None]) -> None:
        bleak = _import_bleak()

        def _disconnected(_: Any) -> None:
            on_disconnect()

        client = bleak.BleakClient(
            device.handle if device.handle is not None else device.address,
            disconnected_callback=_disconnected,
            timeout=self._timeout_s,
        )
        try:
            await client.connect()
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {device.address}: {exc}") from exc
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {device.address}")
        self._client = client

    async def discover_channels(self) -> Channels:
        if self._client is None:
            raise TransportConnectError("BLE channels requested before connect")

        read_char = None
        write_char = None
        try:
            for service in self._client.services:
                for characteristic in service.characteristics:
                    if read_char is None and _uuid_matches(characteristic.uuid, self._read_char_uuid):
                        read_char = characteristic
                    if write_char is None and _uuid_matches(characteristic.uuid, self._write_char_uuid):
                        write_char = characteristic
        except Exception as exc:
            raise TransportConnectError(f"BLE service discovery failed: {exc}") from exc

        return Channels(
            read=BLEReadChannel(self._client, read_char) if read_char is not None else None,
            write=BLEWriteChannel(self._client, write_char) if write_char is not None else None,
        )

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as exc:
            LOGGER.debug("Ignoring BLE disconnect failure: %s", exc)
