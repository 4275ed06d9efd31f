from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional


DEFAULT_SETTINGS_PATH = "config.json"

REQUIRED_KEYS = ("frpcConfigPath", "username", "passwordHash", "sessionSecret")


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    """Process configuration, loaded once at startup and read-only afterwards."""

    frpc_config_path: str
    username: str
    password_hash: str
    session_secret: str
    secure_cookie: bool = False
    enable_backups: bool = False
    backup_dir: Optional[str] = None
    service_name: str = "frpc"
    port: int = 8080
    use_sudo: bool = True
    service_command_timeout: float = 15.0
    trust_proxy: bool = False

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> "Settings":
        if not isinstance(raw, dict):
            raise SettingsError("Settings file must contain a JSON object")
        missing = [k for k in REQUIRED_KEYS if not raw.get(k)]
        if missing:
            raise SettingsError("Missing required settings: " + ", ".join(missing))

        try:
            port = int(raw.get("port") or 8080)
            timeout = float(raw.get("serviceCommandTimeout") or 15.0)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid numeric setting: {e}") from e

        return cls(
            frpc_config_path=str(raw["frpcConfigPath"]),
            username=str(raw["username"]),
            password_hash=str(raw["passwordHash"]),
            session_secret=str(raw["sessionSecret"]),
            secure_cookie=bool(raw.get("secureCookie", False)),
            enable_backups=bool(raw.get("enableBackups", False)),
            backup_dir=(str(raw["backupDir"]) if raw.get("backupDir") else None),
            service_name=str(raw.get("frpcServiceName") or "frpc"),
            port=port,
            use_sudo=bool(raw.get("useSudo", True)),
            service_command_timeout=timeout,
            trust_proxy=bool(raw.get("trustProxy", False)),
        )


def settings_path() -> str:
    return (os.environ.get("FRPC_WEB_SETTINGS") or "").strip() or DEFAULT_SETTINGS_PATH


def load_settings(path: Optional[str] = None) -> Settings:
    path = path or settings_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise SettingsError(f"Error loading {path}: {e}") from e
    return Settings.from_mapping(raw)
