"""MQTT publisher built on paho-mqtt."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt
import socks

from ultibridge.core.config import MQTTSettings
from ultibridge.core.errors import PublisherError

LOGGER = logging.getLogger(__name__)

ONLINE_SUFFIX = "online"


def _proxy_type(name: str) -> int:
    return {
        "socks4": socks.SOCKS4,
        "socks5": socks.SOCKS5,
        "http": socks.HTTP,
    }[name]


def _default_client_factory(client_id: str) -> Any:
    return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)


class MQTTPublisher:
    """Publishes telemetry and an ``<prefix>/online`` availability flag.

    paho's network loop thread handles reconnects once :meth:`start` has
    connected the first time.
    """

    def __init__(
        self,
        settings: MQTTSettings,
        *,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._availability_topic = f"{settings.topic_prefix}/{ONLINE_SUFFIX}"
        self._client = (client_factory or _default_client_factory)(settings.client_id)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.will_set(self._availability_topic, "false", qos=1, retain=True)
        if settings.username:
            self._client.username_pw_set(settings.username, settings.password)
        if settings.proxy is not None:
            self._client.proxy_set(
                proxy_type=_proxy_type(settings.proxy.type),
                proxy_addr=settings.proxy.host,
                proxy_port=settings.proxy.port,
                proxy_username=settings.proxy.username,
                proxy_password=settings.proxy.password,
            )
        self.connected = False

    @property
    def availability_topic(self) -> str:
        return self._availability_topic

    def start(self) -> None:
        try:
            self._client.connect(
                self._settings.host,
                self._settings.port,
                self._settings.keepalive_s,
            )
        except OSError as exc:
            raise PublisherError(
                f"MQTT connect to {self._settings.host}:{self._settings.port} failed: {exc}"
            ) from exc
        self._client.loop_start()

    def stop(self) -> None:
        if self.connected:
            self._client.publish(self._availability_topic, "false", qos=1, retain=True)
        self._client.disconnect()
        self._client.loop_stop()

    def publish(self, topic: str, payload: str) -> None:
        info = self._client.publish(topic, payload, qos=0, retain=self._settings.retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.debug("MQTT publish to %s not queued (rc=%s)", topic, info.rc)

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if getattr(reason_code, "is_failure", False):
            LOGGER.warning("MQTT connection refused: %s", reason_code)
            return
        LOGGER.info("MQTT connection to %s:%s successful", self._settings.host, self._settings.port)
        self.connected = True
        client.publish(self._availability_topic, "true", qos=1, retain=True)

    def _on_disconnect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        self.connected = False
        LOGGER.warning("MQTT disconnected (%s); paho will reconnect", reason_code)
