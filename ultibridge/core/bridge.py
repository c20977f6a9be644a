"""Bridge between a BMS session and a telemetry publisher."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict
from typing import Any

from ultibridge.core.errors import TransportSetupFailure
from ultibridge.core.model import BatteryState, CellState, DeviceInfo, SessionState
from ultibridge.core.session import BMSSession
from ultibridge.publishers.base import Publisher

LOGGER = logging.getLogger(__name__)

BATTERY_STATE_TOPIC = "batterystate"
CELL_STATE_TOPIC = "cellstate"
DEVICE_INFO_TOPIC = "info"


def charged_percentage(charge: int, full: int) -> int | None:
    if full == 0:
        return None
    return math.floor(charge / full * 100 + 0.5)


def battery_state_payload(state: BatteryState) -> dict[str, Any]:
    payload = asdict(state)
    payload["power"] = state.voltage * state.current
    payload["charged_percentage"] = charged_percentage(state.charge, state.full)
    return payload


def cell_state_payload(state: CellState) -> dict[str, Any]:
    return {"numcells": state.numcells, "cells": list(state.cells)}


class Bridge:
    def __init__(
        self,
        session: BMSSession,
        publisher: Publisher,
        *,
        topic_prefix: str,
        battery_state_interval_s: float = 5.0,
        cell_state_interval_s: float = 60.0,
    ) -> None:
        self._session = session
        self._publisher = publisher
        self._topic_prefix = topic_prefix.rstrip("/")
        self._battery_state_interval_s = battery_state_interval_s
        self._cell_state_interval_s = cell_state_interval_s
        session.subscribe(self)

    def topic(self, suffix: str) -> str:
        return f"{self._topic_prefix}/{suffix}"

    def on_battery_state(self, state: BatteryState) -> None:
        self._publisher.publish(self.topic(BATTERY_STATE_TOPIC), json.dumps(battery_state_payload(state)))

    def on_cell_state(self, state: CellState) -> None:
        self._publisher.publish(self.topic(CELL_STATE_TOPIC), json.dumps(cell_state_payload(state)))

    def on_device_info(self, info: DeviceInfo) -> None:
        LOGGER.info("Battery reports name %r", info.name)
        self._publisher.publish(self.topic(DEVICE_INFO_TOPIC), json.dumps(asdict(info)))

    def on_state_changed(self, state: SessionState) -> None:
        if state is SessionState.SUBSCRIBED:
            self._session.request_battery_info()

    async def run(self) -> None:
        """Scan, poll, and forward telemetry until the session closes."""
        await self._session.start_scanning()
        self._session.start_reading_battery_state(self._battery_state_interval_s)
        self._session.start_reading_cell_state(self._cell_state_interval_s)
        try:
            await self._session.wait_closed()
        except TransportSetupFailure as exc:
            LOGGER.error("Stopping telemetry for %s: %s", self._session.device_name, exc)
            raise
