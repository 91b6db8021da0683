"""Configuration loading for config.json (prefix -> backend mapping and listen port)"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger("stproxy.config")

DEFAULT_CONFIG_FILE = "config.json"
DEFAULT_PORT = "8081"
DEFAULT_HOSTS = {"1": "https://www.alarm.com"}


class ConfigError(Exception):
    """Raised when a configuration file exists but cannot be used."""


def _freeze(hosts: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(hosts))


@dataclass(frozen=True)
class Configuration:
    """
    Routing configuration, built once at startup and read-only afterwards.

    Attributes:
        hosts: path prefix -> absolute backend base URL
        port: listen port as given in the file (string form)
    """

    hosts: Mapping[str, str] = field(default_factory=lambda: _freeze({}))
    port: str = DEFAULT_PORT

    def __post_init__(self):
        # Always hold a private read-only copy, whatever mapping the caller passed.
        object.__setattr__(self, "hosts", _freeze(self.hosts))

    @property
    def port_number(self) -> int:
        return int(self.port)

    @classmethod
    def from_dict(cls, data: Any) -> "Configuration":
        """
        Build a Configuration from decoded JSON.

        Raises:
            ConfigError: if the document does not have the expected shape
        """
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a JSON object")

        hosts = data.get("Hosts", {})
        if hosts is None:
            hosts = {}
        if not isinstance(hosts, dict):
            raise ConfigError("'Hosts' must be an object mapping path prefixes to URLs")
        for prefix, target in hosts.items():
            if not isinstance(target, str):
                raise ConfigError(f"target for prefix '{prefix}' must be a string")
            if "/" in prefix or not prefix:
                raise ConfigError(f"invalid path prefix '{prefix}' (must be a single non-empty segment)")

        port = data.get("Port", DEFAULT_PORT)
        if isinstance(port, bool) or not isinstance(port, (str, int)):
            raise ConfigError("'Port' must be a string or integer")
        port = str(port).strip()
        if not port.isdigit() or not 0 <= int(port) <= 65535:
            raise ConfigError(f"invalid port '{port}'")

        return cls(hosts=hosts, port=port)

    def to_dict(self) -> dict:
        return {"Hosts": dict(self.hosts), "Port": self.port}


def default_config() -> Configuration:
    """Configuration used when no file is present."""
    return Configuration(hosts=DEFAULT_HOSTS, port=DEFAULT_PORT)


def resolve_config_path(path: str | os.PathLike | None = None) -> Path:
    """Pick the config file: explicit path, then STPROXY_CONFIG, then ./config.json."""
    if path:
        return Path(path)
    env_path = os.getenv("STPROXY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path(DEFAULT_CONFIG_FILE)


def load_config(path: str | os.PathLike | None = None) -> Configuration:
    """
    Load the proxy configuration.

    A missing file falls back to the defaults with a warning. A file that is
    present but unreadable or malformed raises ConfigError.

    Args:
        path: Optional explicit config file path

    Returns:
        Loaded Configuration
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        logger.warning("Config file %s not found; using defaults", config_path)
        return default_config()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load {config_path}: {e}") from e

    try:
        config = Configuration.from_dict(data)
    except ConfigError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    logger.info("Read proxy configuration from %s: %d hosts, port %s", config_path, len(config.hosts), config.port)
    return config
