"""Application settings stored as JSON in the per-user app folder."""
from __future__ import annotations

import ipaddress
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

APP_FOLDER_NAME = "DCS-SC-Bridge"
SETTINGS_FILE_NAME = "appsettings.json"

DEFAULT_LISTENER_IP = "127.0.0.1"
DEFAULT_LISTENER_PORT = 10310


class SettingsError(Exception):
    """Settings could not be persisted."""


class SettingsValidationError(ValueError):
    """User supplied settings were rejected; the message is user facing."""


@dataclass
class AppSettings:
    listener_ip: str = DEFAULT_LISTENER_IP
    listener_port: int = DEFAULT_LISTENER_PORT
    api_url: str = ""
    api_token: str = ""

    @property
    def is_complete(self) -> bool:
        """True once the remote API has been configured."""
        return bool(self.api_url.strip() and self.api_token.strip())


def _clamp_port(value: int) -> int:
    return max(1, min(65535, int(value)))


def _as_str(value, default: str) -> str:
    return value if isinstance(value, str) else default


def default_settings_path() -> Path:
    if sys.platform.startswith("win") and os.environ.get("APPDATA"):
        base = Path(os.environ["APPDATA"])
    elif os.environ.get("XDG_CONFIG_HOME"):
        base = Path(os.environ["XDG_CONFIG_HOME"])
    else:
        base = Path.home() / ".config"
    return base / APP_FOLDER_NAME / SETTINGS_FILE_NAME


def settings_from_mapping(data) -> AppSettings:
    """Build settings from a decoded JSON object, tolerating bad fields."""

    if not isinstance(data, dict):
        return AppSettings()

    port_raw = data.get("listener_port", DEFAULT_LISTENER_PORT)
    try:
        if isinstance(port_raw, bool):
            raise TypeError("boolean port")
        port = _clamp_port(int(port_raw))
    except (TypeError, ValueError):
        port = DEFAULT_LISTENER_PORT

    return AppSettings(
        listener_ip=_as_str(data.get("listener_ip"), DEFAULT_LISTENER_IP).strip() or DEFAULT_LISTENER_IP,
        listener_port=port,
        api_url=_as_str(data.get("api_url"), ""),
        api_token=_as_str(data.get("api_token"), ""),
    )


class SettingsStore:
    """Loads and saves :class:`AppSettings` from a JSON file."""

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self.path = Path(path) if path is not None else default_settings_path()

    def load(self) -> AppSettings:
        """Return the stored settings, or defaults if none are usable."""

        if not self.path.exists():
            return AppSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
            return AppSettings()
        return settings_from_mapping(data)

    def save(self, settings: AppSettings) -> None:
        """Persist *settings*, raising :class:`SettingsError` on failure."""

        payload = asdict(settings)
        payload["listener_port"] = _clamp_port(settings.listener_port)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise SettingsError(f"Failed to save settings to {self.path}: {exc}") from exc
        logger.info("Settings saved to %s", self.path)


def validate_settings(ip: str, port_text: str, api_url: str, api_token: str) -> AppSettings:
    """Validate configuration form input and build settings from it."""

    ip = (ip or "").strip()
    if not ip:
        raise SettingsValidationError("Listener IP is required")
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        raise SettingsValidationError("Invalid listener IP address") from None

    try:
        port = int(str(port_text).strip())
    except ValueError:
        raise SettingsValidationError("Invalid port number (1-65535)") from None
    if not 1 <= port <= 65535:
        raise SettingsValidationError("Invalid port number (1-65535)")

    if not (api_url or "").strip():
        raise SettingsValidationError("API URL is required")
    if not (api_token or "").strip():
        raise SettingsValidationError("API Token is required")

    return AppSettings(
        listener_ip=ip,
        listener_port=port,
        api_url=api_url.strip(),
        api_token=api_token,
    )
