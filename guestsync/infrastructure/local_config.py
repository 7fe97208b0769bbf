from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR_NAME = "GuestSync"


def resolve_appdata_dir() -> Path:
    env_dir = os.environ.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / APP_DIR_NAME


@dataclass(frozen=True)
class ClientConfig:
    device_id: str
    auth_token: str | None = None
    api_base_url: str | None = None


class ClientConfigStore:
    """Per-user `config.json` holding the device id and the optional API token."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> ClientConfig:
        payload: dict[str, str] = {}
        if self._config_path.exists():
            try:
                payload = json.loads(self._config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.exception("Could not read config.json: %s", exc)
                payload = {}
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = self._generate_device_id()
            payload["device_id"] = device_id
            self._write_payload(payload)
        return ClientConfig(
            device_id=device_id,
            auth_token=str(payload.get("auth_token", "")).strip() or None,
            api_base_url=str(payload.get("api_base_url", "")).strip() or None,
        )

    def save(self, config: ClientConfig) -> ClientConfig:
        payload = {"device_id": config.device_id or self._generate_device_id()}
        if config.auth_token:
            payload["auth_token"] = config.auth_token
        if config.api_base_url:
            payload["api_base_url"] = config.api_base_url
        self._write_payload(payload)
        return ClientConfig(
            device_id=payload["device_id"],
            auth_token=payload.get("auth_token"),
            api_base_url=payload.get("api_base_url"),
        )

    def _write_payload(self, payload: dict[str, str]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
