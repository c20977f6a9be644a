"""Configuration loading and validation for the YAML bridge config."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from ultibridge.core.errors import ConfigLoadError, ConfigValidationError

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class DeviceSettings:
    name: str
    read_char_uuid: str = "ff01"
    write_char_uuid: str = "ff02"
    connect_timeout_s: float = 10.0
    max_buffer_bytes: int | None = None
    scan_retry_s: float = 5.0


@dataclass(frozen=True)
class PollingSettings:
    battery_state_interval_s: float = 5.0
    cell_state_interval_s: float = 60.0


@dataclass(frozen=True)
class ProxySettings:
    type: str
    host: str
    port: int
    username: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class MQTTSettings:
    host: str = "localhost"
    port: int = 1883
    client_id: str = "ultibridge"
    username: str | None = None
    password: str | None = None
    keepalive_s: int = 60
    topic_prefix: str = "ultimatron"
    retain: bool = False
    proxy: ProxySettings | None = None


@dataclass(frozen=True)
class BridgeConfig:
    device: DeviceSettings
    polling: PollingSettings
    mqtt: MQTTSettings


@dataclass(frozen=True)
class LoadedConfig:
    config: BridgeConfig
    sources: tuple[str, ...]
    document: dict[str, Any]


def _load_schema_validator() -> Any:
    schema_text = resources.files("ultibridge.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "ultibridge/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ConfigValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _build_config(doc: dict[str, Any], source: str) -> BridgeConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    device = doc["device"]
    polling = doc["polling"]
    mqtt = doc["mqtt"]

    proxy = None
    if mqtt.get("proxy"):
        proxy = ProxySettings(
            type=mqtt["proxy"]["type"],
            host=mqtt["proxy"]["host"],
            port=int(mqtt["proxy"]["port"]),
            username=mqtt["proxy"].get("username"),
            password=mqtt["proxy"].get("password"),
        )

    return BridgeConfig(
        device=DeviceSettings(
            name=device["name"].strip(),
            read_char_uuid=_normalize_uuid(device["read_char_uuid"], context="device.read_char_uuid"),
            write_char_uuid=_normalize_uuid(device["write_char_uuid"], context="device.write_char_uuid"),
            connect_timeout_s=float(device.get("connect_timeout_s", 10.0)),
            max_buffer_bytes=device.get("max_buffer_bytes"),
            scan_retry_s=float(device.get("scan_retry_s", 5.0)),
        ),
        polling=PollingSettings(
            battery_state_interval_s=float(polling["battery_state_interval_s"]),
            cell_state_interval_s=float(polling["cell_state_interval_s"]),
        ),
        mqtt=MQTTSettings(
            host=mqtt["host"],
            port=int(mqtt["port"]),
            client_id=mqtt.get("client_id", "ultibridge"),
            username=mqtt.get("username"),
            password=mqtt.get("password"),
            keepalive_s=int(mqtt.get("keepalive_s", 60)),
            topic_prefix=mqtt["topic_prefix"].rstrip("/"),
            retain=_normalize_bool(mqtt.get("retain", False), context="mqtt.retain"),
            proxy=proxy,
        ),
    )


def load_config(path: Path | None = None) -> LoadedConfig:
    packaged = resources.files("ultibridge.defaults").joinpath("config.yaml")
    doc = _read_yaml(packaged)
    sources = ["<packaged defaults>"]

    user_path = _user_config_path()
    if user_path.is_file():
        doc = _merge(doc, _read_yaml(user_path))
        sources.append(str(user_path))

    if path is not None:
        if not path.is_file():
            raise ConfigLoadError(f"Config file {path} does not exist")
        doc = _merge(doc, _read_yaml(path))
        sources.append(str(path))

    LOGGER.debug("Loaded config from %s", ", ".join(sources))
    config = _build_config(doc, sources[-1])
    return LoadedConfig(config=config, sources=tuple(sources), document=doc)


def require_device_name(config: BridgeConfig) -> str:
    if not config.device.name:
        raise ConfigValidationError(
            "device.name must be set to the BMS advertised name (see 'ultibridge config')."
        )
    return config.device.name
