"""Dev-mode flag and troubleshooting settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

DEV_MODE_ENV_VAR = "SIMVIEW_DEV_MODE"
PROPAGATE_ENV_VAR = "SIMVIEW_PROPAGATE_LOGS"
LOG_RETENTION_MIN = 1
LOG_RETENTION_MAX = 20


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    token = value.strip().lower()
    if token in {"1", "true", "yes", "on"}:
        return True
    if token in {"0", "false", "no", "off"}:
        return False
    return default


DEBUG_CONFIG_ENABLED = env_flag(DEV_MODE_ENV_VAR)


@dataclass(frozen=True)
class TroubleshootingConfig:
    logs_to_keep: Optional[int] = None
    trace_frames: bool = False


def _coerce_log_retention(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return None
    if numeric <= 0:
        return LOG_RETENTION_MIN
    if numeric > LOG_RETENTION_MAX:
        return LOG_RETENTION_MAX
    return numeric


def load_troubleshooting_config(path: Path, *, enabled: bool = DEBUG_CONFIG_ENABLED) -> TroubleshootingConfig:
    """Read troubleshooting flags (log retention, frame tracing) from debug.json."""

    if not enabled:
        return TroubleshootingConfig()
    try:
        raw_text = path.read_text(encoding="utf-8")
        data = json.loads(raw_text)
    except (FileNotFoundError, OSError, json.JSONDecodeError):
        data = {}
    if not isinstance(data, dict):
        return TroubleshootingConfig()
    return TroubleshootingConfig(
        logs_to_keep=_coerce_log_retention(data.get("logs_to_keep")),
        trace_frames=bool(data.get("trace_frames", False)),
    )
