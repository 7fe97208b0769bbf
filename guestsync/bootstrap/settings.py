from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from guestsync.infrastructure.api_client import DEFAULT_API_BASE_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS
from guestsync.infrastructure.health_probes import DEFAULT_PROBE_TIMEOUT_SECONDS
from guestsync.infrastructure.local_config import resolve_appdata_dir

DEFAULT_PROBE_INTERVAL_SECONDS = 30.0
DEFAULT_LOG_MAX_BYTES = 1_048_576
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class SyncSettings:
    api_base_url: str = DEFAULT_API_BASE_URL
    force_offline: bool = False
    db_path: Path | None = None
    log_dir: Path | None = None
    config_dir: Path | None = None
    probe_interval_seconds: float = DEFAULT_PROBE_INTERVAL_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    resolve_temporary_ids: bool = False
    log_max_bytes: int = DEFAULT_LOG_MAX_BYTES


def _safe_int(raw_value: str | None, default: int) -> int:
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _safe_float(raw_value: str | None, default: float) -> float:
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        return default
    return value if value > 0 else default


def _safe_bool(raw_value: str | None, default: bool) -> bool:
    if raw_value is None:
        return default
    normalized = raw_value.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    return default


def _optional_path(raw_value: str | None) -> Path | None:
    if raw_value is None or not raw_value.strip():
        return None
    return Path(raw_value.strip()).expanduser()


def load_settings(environ: Mapping[str, str] | None = None) -> SyncSettings:
    env = os.environ if environ is None else environ
    api_base_url = (env.get("GUESTSYNC_API_URL") or "").strip() or DEFAULT_API_BASE_URL
    return SyncSettings(
        api_base_url=api_base_url.rstrip("/"),
        force_offline=_safe_bool(env.get("GUESTSYNC_FORCE_OFFLINE"), False),
        db_path=_optional_path(env.get("GUESTSYNC_DB_PATH")),
        log_dir=_optional_path(env.get("GUESTSYNC_LOG_DIR")),
        config_dir=_optional_path(env.get("GUESTSYNC_CONFIG_DIR")),
        probe_interval_seconds=_safe_float(env.get("GUESTSYNC_PROBE_INTERVAL_SECONDS"), DEFAULT_PROBE_INTERVAL_SECONDS),
        probe_timeout_seconds=_safe_float(env.get("GUESTSYNC_PROBE_TIMEOUT_SECONDS"), DEFAULT_PROBE_TIMEOUT_SECONDS),
        request_timeout_seconds=_safe_float(
            env.get("GUESTSYNC_REQUEST_TIMEOUT_SECONDS"), DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
        resolve_temporary_ids=_safe_bool(env.get("GUESTSYNC_RESOLVE_TEMP_IDS"), False),
        log_max_bytes=_safe_int(env.get("GUESTSYNC_LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
    )


def resolve_log_dir(preferred: Path | None = None) -> Path:
    candidates: list[Path] = []
    if preferred is not None:
        candidates.append(preferred)
    env_dir = os.environ.get("GUESTSYNC_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(resolve_appdata_dir() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "GuestSync" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    return Path(tempfile.gettempdir())
