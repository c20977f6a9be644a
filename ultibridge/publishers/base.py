"""Publisher interfaces."""

from __future__ import annotations

from typing import Protocol


class Publisher(Protocol):
    def publish(self, topic: str, payload: str) -> None:
        """Forward one telemetry message; delivery is best effort."""
