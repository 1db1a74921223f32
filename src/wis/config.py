from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys

from wis.domain.errors import ValidationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class SyncSettings:
    remote_url: str = ""
    probe_url: str = ""
    check_interval: float = 30.0
    probe_timeout: float = 5.0
    replay_timeout: float = 30.0
    retry_backoff_base: float = 2.0
    retry_backoff_max: float = 300.0
    staff_name: str = "Staff"


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "WarehouseInventorySync") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "warehouse.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{key} must be a number. Received: {raw}") from exc
    if value < 0:
        raise ValidationError(f"{key} must be >= 0. Received: {raw}")
    return value


def load_sync_settings(environ: Optional[Mapping[str, str]] = None) -> SyncSettings:
    env = os.environ if environ is None else environ
    defaults = SyncSettings()
    return SyncSettings(
        remote_url=env.get("WIS_REMOTE_URL", "").strip(),
        probe_url=env.get("WIS_PROBE_URL", "").strip() or env.get("WIS_REMOTE_URL", "").strip(),
        check_interval=_float(env, "WIS_CHECK_INTERVAL", defaults.check_interval),
        probe_timeout=_float(env, "WIS_PROBE_TIMEOUT", defaults.probe_timeout),
        replay_timeout=_float(env, "WIS_REPLAY_TIMEOUT", defaults.replay_timeout),
        retry_backoff_base=_float(env, "WIS_RETRY_BACKOFF_BASE", defaults.retry_backoff_base),
        retry_backoff_max=_float(env, "WIS_RETRY_BACKOFF_MAX", defaults.retry_backoff_max),
        staff_name=env.get("WIS_STAFF_NAME", "").strip() or defaults.staff_name,
    )
