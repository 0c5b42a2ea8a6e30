"""
Sync client configuration.

Configuration can be provided directly, from environment variables, or
from the `sync:` section of a YAML settings file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import yaml

from .exceptions import ConfigurationError

DEFAULT_API_URL = "http://localhost:3000/api"
DEFAULT_CREDENTIALS_DIR = Path.home() / ".hackterm"


@dataclass
class SyncConfig:
    """Configuration for the sync client.

    Environment Variables:
        HACKTERM_API_URL: Request/reply base URL (default: http://localhost:3000/api)
        HACKTERM_WS_URL: Realtime URL (default: derived from the API URL)
        HACKTERM_CREDENTIALS_DIR: Credential cache directory (default: ~/.hackterm)
        HACKTERM_REQUEST_TIMEOUT: Request/reply timeout in seconds (default: 5)
        HACKTERM_LOG_LEVEL: Log level name for the CLI (default: INFO)

    Attributes:
        api_url: Base address of the request/reply API
        ws_url: Explicit realtime address, None to derive from api_url
        credentials_dir: Directory holding credentials.json and .client_id
        request_timeout: Total timeout for one request/reply call

        probe_base_interval: Probe interval while online and after any success
        probe_max_interval: Ceiling for the post-contact exponential backoff
        probe_initial_interval: First retry interval before first contact
        probe_initial_step: Linear step added per failure before first contact
        probe_initial_cap: Ceiling for the first-contact linear ramp

        reconnect_initial_delay: First realtime reconnect delay
        reconnect_max_delay: Ceiling for the realtime reconnect delay
        keepalive_interval: Idle seconds before a realtime ping is sent

        log_level: Log level name used by the CLI
    """

    api_url: str = DEFAULT_API_URL
    ws_url: str | None = None
    credentials_dir: Path = DEFAULT_CREDENTIALS_DIR
    request_timeout: float = 5.0

    # Connectivity supervisor
    probe_base_interval: float = 30.0
    probe_max_interval: float = 300.0
    probe_initial_interval: float = 3.0
    probe_initial_step: float = 2.0
    probe_initial_cap: float = 15.0

    # Realtime channel
    reconnect_initial_delay: float = 2.0
    reconnect_max_delay: float = 30.0
    keepalive_interval: float = 25.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.api_url = self.api_url.rstrip("/")
        self.credentials_dir = Path(self.credentials_dir).expanduser()
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigurationError("api_url", "must start with http:// or https://", self.api_url)
        for f in fields(self):
            if f.type == "float" and getattr(self, f.name) <= 0:
                raise ConfigurationError(f.name, "must be positive", str(getattr(self, f.name)))

    @property
    def realtime_url(self) -> str:
        """Realtime address, derived from api_url unless set explicitly.

        http(s)://host:3000/api becomes ws(s)://host:3000/ws.
        """
        if self.ws_url:
            return self.ws_url

        parts = urlsplit(self.api_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = parts.path.rstrip("/")
        if path.endswith("/api"):
            path = path[: -len("/api")]
        return urlunsplit((scheme, parts.netloc, f"{path}/ws", "", ""))

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create configuration from environment variables."""
        values: dict[str, Any] = {}
        if api_url := os.environ.get("HACKTERM_API_URL"):
            values["api_url"] = api_url
        if ws_url := os.environ.get("HACKTERM_WS_URL"):
            values["ws_url"] = ws_url
        if credentials_dir := os.environ.get("HACKTERM_CREDENTIALS_DIR"):
            values["credentials_dir"] = Path(credentials_dir)
        if timeout := os.environ.get("HACKTERM_REQUEST_TIMEOUT"):
            values["request_timeout"] = _parse_float("request_timeout", timeout)
        if log_level := os.environ.get("HACKTERM_LOG_LEVEL"):
            values["log_level"] = log_level.upper()
        return cls(**values)

    @classmethod
    def from_file(cls, config_path: Path) -> SyncConfig:
        """Load configuration from the `sync:` section of a YAML file.

        ```yaml
        sync:
          api_url: "https://hackterm.example.com/api"
          credentials_dir: "~/.hackterm"
          request_timeout: 5
          probe_base_interval: 30
        ```

        Unknown keys are ignored. A missing file yields the defaults.
        """
        config = _load_yaml(config_path)
        section = config.get("sync") or {}
        if not isinstance(section, dict):
            raise ConfigurationError("sync", "must be a mapping")

        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in section.items():
            if key not in known or value is None:
                continue
            if known[key].type == "float":
                values[key] = _parse_float(key, value)
            elif key == "credentials_dir":
                values[key] = Path(str(value))
            else:
                values[key] = str(value)
        return cls(**values)


def _parse_float(field_name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(field_name, "must be a number", str(value)) from e


def _load_yaml(config_path: Path) -> dict[str, Any]:
    """Load a YAML settings file, returning {} when it does not exist."""
    if not config_path.exists():
        return {}

    try:
        content = config_path.read_text()
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(str(config_path), "top level must be a mapping")
    return data
