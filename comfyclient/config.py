"""Connection settings for a ComfyUI server.

Settings come from (lowest to highest precedence): model defaults, an optional
YAML file, and ``COMFYUI_HOST`` / ``COMFYUI_PORT`` / ``COMFYUI_SCHEME``.
The YAML file may keep the settings at the top level or under a ``comfyui:`` key::

    comfyui:
      host: 127.0.0.1
      port: 8188
      scheme: http
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import httpx
import yaml
from pydantic import BaseModel, Field, ValidationError

from comfyclient.errors import ConfigError

CONFIG_ENV_VAR = "COMFYUI_CLIENT_CONFIG"

ENV_OVERRIDES = {
    "COMFYUI_HOST": "host",
    "COMFYUI_PORT": "port",
    "COMFYUI_SCHEME": "scheme",
}


class ComfyConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(default=9712, gt=0, le=65535)
    scheme: Literal["http", "https"] = "http"
    connect_timeout_s: float = Field(default=10.0, gt=0)
    read_timeout_s: float = Field(default=300.0, gt=0)
    ws_open_timeout_s: float = Field(default=10.0, gt=0)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def ws_url(self) -> str:
        ws_scheme = "wss" if self.scheme == "https" else "ws"
        return f"{ws_scheme}://{self.host}:{self.port}/ws"

    def http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout_s,
            read=self.read_timeout_s,
            write=60.0,
            pool=10.0,
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    section = data.get("comfyui", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'comfyui' section in {path} must be a mapping")
    return dict(section)


def load_config(path: Optional[Union[str, Path]] = None) -> ComfyConfig:
    """Build a ComfyConfig from an optional YAML file and the environment."""
    values: Dict[str, Any] = {}

    config_path = path or os.environ.get(CONFIG_ENV_VAR)
    if config_path:
        values.update(_read_yaml(Path(config_path)))

    for env_key, field_name in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_key)
        if env_value:
            values[field_name] = env_value.strip()

    try:
        return ComfyConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid ComfyUI client config: {exc}") from exc
