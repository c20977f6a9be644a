"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ultibridge.core.model import DiscoveredDevice


class ReadChannel(Protocol):
    async def subscribe(self, on_data: Callable[[bytes], None]) -> None:
        """Deliver every inbound notification to ``on_data`` in arrival order."""


class WriteChannel(Protocol):
    def write(self, payload: bytes) -> None:
        """Queue ``payload`` for writing; must not block the caller."""

    async def drain(self) -> None:
        """Wait for queued writes to finish."""


@dataclass(frozen=True)
class Channels:
    read: ReadChannel | None
    write: WriteChannel | None


class Transport(Protocol):
    async def start_scan(self, on_discover: Callable[[DiscoveredDevice], None]) -> None: ...

    async def stop_scan(self) -> None: ...

    async def connect(self, device: DiscoveredDevice, on_disconnect: Callable[[], None]) -> None: ...

    async def discover_channels(self) -> Channels: ...

    async def disconnect(self) -> None: ...
