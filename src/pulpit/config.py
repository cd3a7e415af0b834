"""Runtime configuration for the Pulpit gateway.

Settings are plain pydantic models; ``from_env`` builds them from PULPIT_*
environment variables so the CLI, tests and embedding applications can all
construct them the same way.

Environment variables:
    PULPIT_HOST, PULPIT_PORT, PULPIT_WS_PATH
    PULPIT_AUTH_TIMEOUT, PULPIT_HEARTBEAT_INTERVAL
    PULPIT_EXECUTION_TIMEOUT, PULPIT_SCHEDULER_POLL_INTERVAL
    PULPIT_STORAGE_BACKEND (memory | sqlite), PULPIT_STORAGE_PATH
    PULPIT_DEVICES_FILE (JSON list of devices for the in-memory directory)
    PULPIT_APNS_KEY_PATH, PULPIT_APNS_KEY_ID, PULPIT_APNS_TEAM_ID,
    PULPIT_APNS_BUNDLE_ID, PULPIT_APNS_PRODUCTION
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError

from pulpit.models.base import PulpitBaseModel
from pulpit.models.constants import (
    AUTH_TIMEOUT_SECONDS,
    DEFAULT_EXECUTION_TIMEOUT_SECONDS,
    DEFAULT_PORT,
    DEFAULT_WS_PATH,
    HEARTBEAT_INTERVAL_SECONDS,
    MAX_EXECUTION_TIMEOUT_SECONDS,
    MIN_EXECUTION_TIMEOUT_SECONDS,
    SCHEDULER_POLL_INTERVAL_SECONDS,
    STALE_HEARTBEAT_INTERVALS,
)
from pulpit.models.entities import Device

ENV_PREFIX = "PULPIT_"
DEFAULT_DB_PATH = "pulpit.db"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class APNsSettings(PulpitBaseModel):
    """Apple Push Notification service credentials."""

    key_path: Path = Field(..., description="Path to the .p8 signing key")
    key_id: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    bundle_id: str = Field(..., min_length=1, description="App bundle id, used as apns-topic")
    production: bool = Field(default=False, description="Use the production APNs host")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> APNsSettings | None:
        """Build APNs settings, or None when no key path is configured."""
        env = os.environ if environ is None else environ
        key_path = env.get(f"{ENV_PREFIX}APNS_KEY_PATH", "").strip()
        if not key_path:
            return None
        return cls(
            key_path=Path(key_path),
            key_id=env.get(f"{ENV_PREFIX}APNS_KEY_ID", "").strip(),
            team_id=env.get(f"{ENV_PREFIX}APNS_TEAM_ID", "").strip(),
            bundle_id=env.get(f"{ENV_PREFIX}APNS_BUNDLE_ID", "").strip(),
            production=_parse_bool(env.get(f"{ENV_PREFIX}APNS_PRODUCTION", "")),
        )


class PulpitSettings(PulpitBaseModel):
    """Gateway settings.

    Example:
        >>> settings = PulpitSettings(port=9000, heartbeat_interval=5)
        >>> settings.stale_after
        10.0
    """

    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    ws_path: str = DEFAULT_WS_PATH
    auth_timeout: float = Field(default=AUTH_TIMEOUT_SECONDS, gt=0)
    heartbeat_interval: float = Field(default=HEARTBEAT_INTERVAL_SECONDS, gt=0)
    execution_timeout: float = Field(
        default=DEFAULT_EXECUTION_TIMEOUT_SECONDS,
        ge=MIN_EXECUTION_TIMEOUT_SECONDS,
        le=MAX_EXECUTION_TIMEOUT_SECONDS,
    )
    scheduler_poll_interval: float = Field(default=SCHEDULER_POLL_INTERVAL_SECONDS, gt=0)
    storage_backend: Literal["memory", "sqlite"] = "memory"
    storage_path: Path = Path(DEFAULT_DB_PATH)
    devices_file: Path | None = None
    apns: APNsSettings | None = None

    @property
    def stale_after(self) -> float:
        return self.heartbeat_interval * STALE_HEARTBEAT_INTERVALS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PulpitSettings:
        """Build settings from PULPIT_* variables; unset variables keep defaults.

        Raises:
            ValueError: If a variable holds a value that fails validation
        """
        env = os.environ if environ is None else environ
        fields = {
            "host": "HOST",
            "port": "PORT",
            "ws_path": "WS_PATH",
            "auth_timeout": "AUTH_TIMEOUT",
            "heartbeat_interval": "HEARTBEAT_INTERVAL",
            "execution_timeout": "EXECUTION_TIMEOUT",
            "scheduler_poll_interval": "SCHEDULER_POLL_INTERVAL",
            "storage_backend": "STORAGE_BACKEND",
            "storage_path": "STORAGE_PATH",
            "devices_file": "DEVICES_FILE",
        }
        values: dict[str, object] = {}
        for field_name, suffix in fields.items():
            raw = env.get(f"{ENV_PREFIX}{suffix}")
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()
        if "storage_backend" in values:
            values["storage_backend"] = str(values["storage_backend"]).lower()
        try:
            return cls(apns=APNsSettings.from_env(env), **values)
        except ValidationError as e:
            raise ValueError(f"Invalid {ENV_PREFIX}* configuration: {e}") from e


def load_devices(path: Path) -> list[Device]:
    """Read a JSON list of device objects (snake_case or camelCase keys)."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of devices")
    return [Device.model_validate(_snake_keys(item)) for item in data]


def _snake_keys(item: object) -> object:
    if not isinstance(item, dict):
        return item
    aliases = {
        "pushToken": "push_token",
        "apnsToken": "push_token",
        "registrationCredential": "registration_credential",
        "registrationToken": "registration_credential",
        "isAutomationServer": "is_automation_server",
        "lastSeenAt": "last_seen_at",
        "createdAt": "created_at",
    }
    return {aliases.get(k, k): v for k, v in item.items()}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


__all__ = ["APNsSettings", "PulpitSettings", "load_devices"]
