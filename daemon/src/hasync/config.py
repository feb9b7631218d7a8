"""Configuration management for the hasync daemon."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


@dataclass
class PairingConfig:
    """PIN pairing configuration."""

    pin_ttl: float = 300.0  # seconds a PIN stays valid
    sweep_interval: float = 60.0  # seconds between expired-session sweeps


@dataclass
class RealtimeConfig:
    """Realtime WebSocket channel configuration."""

    heartbeat_interval: float = 30.0  # seconds between pings
    send_timeout: float = 5.0  # per-connection broadcast timeout


@dataclass
class HomeAssistantConfig:
    """Upstream Home Assistant connection."""

    url: str | None = None
    token: str | None = None
    request_timeout: float = 10.0


@dataclass
class Config:
    """Daemon configuration."""

    port: int = 8099
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    database_file: str = "~/.config/hasync/hasync.db"
    admin_token: str | None = None
    pairing: PairingConfig = field(default_factory=PairingConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    homeassistant: HomeAssistantConfig = field(default_factory=HomeAssistantConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "hasync" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        pin_ttl=pairing_data.get("pin_ttl", PairingConfig.pin_ttl),
        sweep_interval=pairing_data.get(
            "sweep_interval", PairingConfig.sweep_interval
        ),
    )

    realtime_data = data.get("realtime") or {}
    realtime_config = RealtimeConfig(
        heartbeat_interval=realtime_data.get(
            "heartbeat_interval", RealtimeConfig.heartbeat_interval
        ),
        send_timeout=realtime_data.get("send_timeout", RealtimeConfig.send_timeout),
    )

    ha_data = data.get("homeassistant") or {}
    ha_config = HomeAssistantConfig(
        url=ha_data.get("url", HomeAssistantConfig.url),
        token=ha_data.get("token", HomeAssistantConfig.token),
        request_timeout=ha_data.get(
            "request_timeout", HomeAssistantConfig.request_timeout
        ),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        database_file=data.get("database_file", Config.database_file),
        admin_token=data.get("admin_token", Config.admin_token),
        pairing=pairing_config,
        realtime=realtime_config,
        homeassistant=ha_config,
    )
