"""Configuration helpers for the simulation viewer client."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from simview_client.color_mapper import AlphaPolicy

ENDPOINT_ENV_VAR = "SIMVIEW_ENDPOINT"
RECONNECT_DELAY_ENV_VAR = "SIMVIEW_RECONNECT_DELAY_MS"
LOG_RETENTION_MIN = 1
LOG_RETENTION_MAX = 20


@dataclass(frozen=True)
class ClientSettings:
    """Values used to bootstrap the session before any data arrives."""

    endpoint: str = "ws://127.0.0.1:8000"
    reconnect_delay_ms: int = 3000
    quiescence_ms: int = 1000
    summary_history_limit: int = 5
    plain_history_limit: int = 20
    summary_max_length: int = 50
    alpha_policy: AlphaPolicy = AlphaPolicy.PLATEAU
    tracked_series: Tuple[str, ...] = field(default_factory=lambda: ("res", "force"))
    scene_tick_ms: int = 250
    log_retention: int = 5


def _int(value: Any, fallback: int, minimum: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return fallback


def _endpoint(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    token = value.strip()
    if not token.startswith(("ws://", "wss://")):
        return fallback
    return token


def _series_names(value: Any, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return fallback
    cleaned = tuple(str(item).strip() for item in value if isinstance(item, str) and item.strip())
    return cleaned or fallback


def _clamp_retention(value: int) -> int:
    return max(LOG_RETENTION_MIN, min(LOG_RETENTION_MAX, value))


def settings_from_mapping(data: Mapping[str, Any]) -> ClientSettings:
    """Build settings from a parsed mapping; invalid entries keep their defaults."""
    defaults = ClientSettings()
    return ClientSettings(
        endpoint=_endpoint(data.get("endpoint"), defaults.endpoint),
        reconnect_delay_ms=_int(data.get("reconnect_delay_ms"), defaults.reconnect_delay_ms, 100),
        quiescence_ms=_int(data.get("quiescence_ms"), defaults.quiescence_ms, 0),
        summary_history_limit=_int(data.get("summary_history_limit"), defaults.summary_history_limit, 1),
        plain_history_limit=_int(data.get("plain_history_limit"), defaults.plain_history_limit, 1),
        summary_max_length=_int(data.get("summary_max_length"), defaults.summary_max_length, 1),
        alpha_policy=AlphaPolicy.coerce(data.get("alpha_policy"), defaults.alpha_policy),
        tracked_series=_series_names(data.get("tracked_series"), defaults.tracked_series),
        scene_tick_ms=_int(data.get("scene_tick_ms"), defaults.scene_tick_ms, 16),
        log_retention=_clamp_retention(_int(data.get("log_retention"), defaults.log_retention, LOG_RETENTION_MIN)),
    )


def load_client_settings(settings_path: Optional[Path]) -> ClientSettings:
    """Read settings from a JSON file, falling back to defaults on any error."""
    if settings_path is None:
        return ClientSettings()
    try:
        raw = settings_path.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return ClientSettings()
    try:
        data: Dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError:
        return ClientSettings()
    if not isinstance(data, dict):
        return ClientSettings()
    return settings_from_mapping(data)


def apply_env_overrides(settings: ClientSettings, environ: Optional[Mapping[str, str]] = None) -> ClientSettings:
    env = os.environ if environ is None else environ
    endpoint = _endpoint(env.get(ENDPOINT_ENV_VAR), settings.endpoint)
    delay = _int(env.get(RECONNECT_DELAY_ENV_VAR), settings.reconnect_delay_ms, 100)
    if endpoint == settings.endpoint and delay == settings.reconnect_delay_ms:
        return settings
    return replace(settings, endpoint=endpoint, reconnect_delay_ms=delay)
