"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``COMEDOR_DATA_DIR`` wins over the platform defaults when set.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    override = environ.get("COMEDOR_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = home_dir / "Library" / "Application Support"
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return base.expanduser() / sanitized


APP_NAME = "Comedor"


DATA_DIR = get_default_data_dir(APP_NAME)
SECRETS_DIR = DATA_DIR / "secrets"
BACKUP_DIR = DATA_DIR / "backups"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, SECRETS_DIR, BACKUP_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "journal.db"
TOKEN_PATH = DATA_DIR / "token.json"
CLIENT_SECRET_PATH = SECRETS_DIR / "client_secret.json"
SERVICE_ACCOUNT_PATH = SECRETS_DIR / "service_account.json"
OFFLINE_LOG_PATH = LOG_DIR / "offline.log"


@dataclass(frozen=True)
class OfflineSettings:
    max_attempts: int = 5
    journal_key: str = "pendingOperations"
    backoff_enabled: bool = False
    backoff_cap_sec: int = 30
    probe_host: str = "firestore.googleapis.com"
    probe_port: int = 443
    probe_interval_sec: float = 15.0
    probe_timeout_sec: float = 5.0


OFFLINE = OfflineSettings()


@dataclass(frozen=True)
class FirestoreSettings:
    project_id: Optional[str] = os.environ.get("COMEDOR_FIRESTORE_PROJECT")
    database: str = os.environ.get("COMEDOR_FIRESTORE_DATABASE", "(default)")
    scopes: tuple[str, ...] = ("https://www.googleapis.com/auth/datastore",)
    attendance_collection: str = "attendanceConfirmations"


FIRESTORE = FirestoreSettings()


@dataclass(frozen=True)
class ThemeColors:
    offline_bg: str = "#B45309"
    online_bg: str = "#15803D"
    banner_text: str = "#FFFFFF"


@dataclass(frozen=True)
class UISettings:
    app_title: str = "Comedor - Confirmación de asistencia"
    theme_mode: str = "system"
    color_scheme_seed: str = "#4F46E5"
    window_min_width: int = 720
    window_min_height: int = 480
    theme: ThemeColors = field(default_factory=ThemeColors)


UI = UISettings()


@dataclass(frozen=True)
class BackupSettings:
    enabled: bool = True
    directory: Path = BACKUP_DIR
    keep_days: int = 7


BACKUP = BackupSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "SECRETS_DIR",
    "BACKUP_DIR",
    "LOG_DIR",
    "DB_PATH",
    "TOKEN_PATH",
    "CLIENT_SECRET_PATH",
    "SERVICE_ACCOUNT_PATH",
    "OFFLINE_LOG_PATH",
    "OFFLINE",
    "FIRESTORE",
    "UI",
    "BACKUP",
    "get_default_data_dir",
]
