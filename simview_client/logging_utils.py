from __future__ import annotations

import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from simview_client.debug_config import DEBUG_CONFIG_ENABLED, PROPAGATE_ENV_VAR, env_flag

CLIENT_LOGGER_NAME = "SimView.Client"
LOG_DIR_ENV_VAR = "SIMVIEW_LOG_DIR"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class _ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self._release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging shim
        if self._release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def resolve_logs_dir(log_dir_name: str = "SimView") -> Path:
    """
    Resolve the directory to store client logs.

    Strategy:
    - Use SIMVIEW_LOG_DIR if set.
    - Fall back to XDG state/cache locations, then `cwd/logs/<log_dir_name>`.
    - Final fallback: tempdir/<log_dir_name>.
    """
    candidates = []

    env_override = os.environ.get(LOG_DIR_ENV_VAR)
    if env_override:
        candidates.append(Path(env_override).expanduser())

    state_home = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))
    cache_home = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    candidates.append(state_home / "simview" / "logs")
    candidates.append(cache_home / "simview" / "logs")
    candidates.append(Path.cwd() / "logs")

    for base in candidates:
        try:
            target = base / log_dir_name
            target.mkdir(parents=True, exist_ok=True)
            return target
        except OSError:
            continue

    temp_fallback = Path(tempfile.gettempdir()) / log_dir_name
    temp_fallback.mkdir(parents=True, exist_ok=True)
    return temp_fallback


def build_rotating_file_handler(
    log_dir: Path,
    filename: str,
    *,
    retention: int = 5,
    max_bytes: int = 512 * 1024,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler with sane defaults."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler


def resolve_log_level(debug_enabled: bool) -> int:
    return logging.DEBUG if debug_enabled else logging.INFO


def configure_client_logger(
    *,
    retention: int = 5,
    log_dir: Optional[Path] = None,
    debug_enabled: bool = DEBUG_CONFIG_ENABLED,
) -> logging.Logger:
    """Attach file and console handlers to the client logger once."""
    logger = logging.getLogger(CLIENT_LOGGER_NAME)
    logger.setLevel(resolve_log_level(debug_enabled))
    # Opt-in propagation for environments/tests that want client logs upstream.
    logger.propagate = env_flag(PROPAGATE_ENV_VAR)
    if not any(isinstance(item, _ReleaseLogLevelFilter) for item in logger.filters):
        logger.addFilter(_ReleaseLogLevelFilter(release_mode=not debug_enabled))
    if getattr(logger, "_simview_configured", False):
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    try:
        target_dir = log_dir or resolve_logs_dir()
        logger.addHandler(build_rotating_file_handler(target_dir, "simview-client.log", retention=retention, formatter=formatter))
    except OSError as exc:
        logger.warning("File logging unavailable: %s", exc)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    setattr(logger, "_simview_configured", True)
    return logger
