"""Ultimatron-style BLE battery management system to MQTT bridge."""

__version__ = "0.1.0"
