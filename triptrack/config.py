"""Configuration loader for the trip tracking client."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from dotenv import load_dotenv
import yaml

DEFAULT_LOCATION_INTERVAL_MS = 60000
DEFAULT_LOCATION_DISTANCE_M = 50
DEFAULT_MONITOR_INTERVAL_SECONDS = 30
DEFAULT_BACKGROUND_INTERVAL_MS = 10000
DEFAULT_BACKGROUND_DISTANCE_M = 20


@dataclass(frozen=True)
class ApiConfig:
    """Booking API endpoint configuration."""

    base_url: str
    token: str
    timeout_seconds: int

    @property
    def socket_url(self) -> str:
        return socket_url_from_api_url(self.base_url)


@dataclass(frozen=True)
class TrackingConfig:
    """Sampling and polling knobs for live trip tracking."""

    location_interval_ms: int
    location_distance_m: float
    monitor_interval_seconds: float
    background_interval_ms: int
    background_distance_m: float


@dataclass(frozen=True)
class RealtimeConfig:
    """Socket connection and reconnection policy."""

    reconnection_attempts: int
    reconnection_delay_seconds: float
    reconnection_delay_max_seconds: float
    connect_timeout_seconds: float
    supervisor_max_backoff_seconds: float


@dataclass(frozen=True)
class PermissionsConfig:
    """Location permission grants for this device."""

    foreground: bool
    background: bool


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str
    log_dir: str


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    api: ApiConfig
    tracking: TrackingConfig
    realtime: RealtimeConfig
    permissions: PermissionsConfig
    log: LoggingConfig


def socket_url_from_api_url(api_url: str) -> str:
    """Strip the path suffix from the API URL (``http://h:5000/api`` -> ``http://h:5000``)."""
    parts = urlsplit(api_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid API URL: {api_url!r}")
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def _require_key(mapping: dict[str, Any], key: str, context: str) -> Any:
    if key not in mapping:
        raise ValueError(f"Missing required key '{key}' in {context} config")
    return mapping[key]


def _section(data: dict[str, Any], name: str, required: bool = True) -> dict[str, Any]:
    if name not in data:
        if required:
            raise ValueError(f"Missing required '{name}' section")
        return {}
    section = data[name]
    if section is None and not required:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' config must be a mapping")
    return section


def _env_number(name: str, fallback: Any, cast: type) -> Any:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def _resolve_api_url(api_section: dict[str, Any]) -> str:
    api_url = os.environ.get("API_URL", "").strip()
    if api_url:
        return api_url
    server_ip = os.environ.get("SERVER_IP", "").strip()
    server_port = os.environ.get("SERVER_PORT", "").strip()
    if server_ip and server_port:
        return f"http://{server_ip}:{server_port}/api"
    base_url = api_section.get("base_url")
    if not base_url:
        raise ValueError("No API URL configured: set API_URL, SERVER_IP + SERVER_PORT, or api.base_url")
    return str(base_url)


def _positive(value: Any, key: str) -> Any:
    if value <= 0:
        raise ValueError(f"'{key}' must be positive, got {value}")
    return value


def load_config(path: str = "config/config.yaml") -> AppConfig:
    """Load application configuration from a YAML file and the environment."""
    load_dotenv()
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ValueError(f"Config file not found: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a mapping at the top level")

    api_section = _section(data, "api", required=False)
    tracking_section = _section(data, "tracking", required=False)
    realtime_section = _section(data, "realtime", required=False)
    permissions_section = _section(data, "permissions", required=False)
    logging_section = _section(data, "logging")

    api_url = _resolve_api_url(api_section)
    socket_url_from_api_url(api_url)
    api = ApiConfig(
        base_url=api_url.rstrip("/"),
        token=os.environ.get("API_TOKEN", "").strip() or str(api_section.get("token", "")),
        timeout_seconds=_positive(api_section.get("timeout_seconds", 10), "timeout_seconds"),
    )

    tracking = TrackingConfig(
        location_interval_ms=_positive(
            _env_number(
                "LOCATION_INTERVAL_MS",
                tracking_section.get("location_interval_ms", DEFAULT_LOCATION_INTERVAL_MS),
                int,
            ),
            "location_interval_ms",
        ),
        location_distance_m=_env_number(
            "LOCATION_DISTANCE_M",
            tracking_section.get("location_distance_m", DEFAULT_LOCATION_DISTANCE_M),
            float,
        ),
        monitor_interval_seconds=_positive(
            tracking_section.get("monitor_interval_seconds", DEFAULT_MONITOR_INTERVAL_SECONDS),
            "monitor_interval_seconds",
        ),
        background_interval_ms=_positive(
            tracking_section.get("background_interval_ms", DEFAULT_BACKGROUND_INTERVAL_MS),
            "background_interval_ms",
        ),
        background_distance_m=tracking_section.get(
            "background_distance_m", DEFAULT_BACKGROUND_DISTANCE_M
        ),
    )
    if tracking.location_distance_m < 0 or tracking.background_distance_m < 0:
        raise ValueError("Location distance thresholds must not be negative")

    realtime = RealtimeConfig(
        reconnection_attempts=realtime_section.get("reconnection_attempts", 10),
        reconnection_delay_seconds=realtime_section.get("reconnection_delay_seconds", 1),
        reconnection_delay_max_seconds=realtime_section.get("reconnection_delay_max_seconds", 5),
        connect_timeout_seconds=realtime_section.get("connect_timeout_seconds", 20),
        supervisor_max_backoff_seconds=realtime_section.get("supervisor_max_backoff_seconds", 60),
    )

    permissions = PermissionsConfig(
        foreground=bool(permissions_section.get("foreground", True)),
        background=bool(permissions_section.get("background", True)),
    )

    logging = LoggingConfig(
        level=_require_key(logging_section, "level", "logging"),
        log_dir=_require_key(logging_section, "log_dir", "logging"),
    )

    return AppConfig(
        api=api,
        tracking=tracking,
        realtime=realtime,
        permissions=permissions,
        log=logging,
    )
