"""Command-line entry point: runs a viewer session on a Qt event loop."""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QCoreApplication, QTimer

from simview_client.client_config import ClientSettings, apply_env_overrides, load_client_settings
from simview_client.connection_manager import ConnectionStatus
from simview_client.data_client import open_websocket
from simview_client.debug_config import DEBUG_CONFIG_ENABLED, DEV_MODE_ENV_VAR, load_troubleshooting_config
from simview_client.logging_utils import configure_client_logger
from simview_client.qt_timers import QtScheduler
from simview_client.session import Session


def resolve_settings(args: argparse.Namespace) -> ClientSettings:
    settings_path = Path(args.settings).expanduser().resolve() if args.settings else None
    settings = apply_env_overrides(load_client_settings(settings_path))
    if args.endpoint:
        settings = replace(settings, endpoint=args.endpoint)
    return settings


def _write_scene(session: Session, target: Path) -> None:
    scene = session.scene()
    payload = scene.to_dict()
    payload["status"] = session.status.value
    payload["store_status"] = session.store.status.value
    tmp_path = target.with_suffix(target.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload), encoding="utf-8")
    os.replace(tmp_path, target)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Simulation field viewer client")
    parser.add_argument("--endpoint", help="WebSocket endpoint of the simulation broadcaster")
    parser.add_argument("--settings", help="Path to a JSON settings file")
    parser.add_argument("--scene-out", help="Write the projected scene as JSON to this path on every tick")
    parser.add_argument("--debug-config", help="Path to debug.json (dev mode only)")
    parser.add_argument("--field", help="Value-on-mesh field to color cells by")
    args = parser.parse_args(argv)

    settings = resolve_settings(args)
    troubleshooting = load_troubleshooting_config(Path(args.debug_config)) if args.debug_config else None
    retention = settings.log_retention
    if troubleshooting is not None and troubleshooting.logs_to_keep is not None:
        retention = troubleshooting.logs_to_keep
    logger = configure_client_logger(retention=retention)
    if troubleshooting is not None and troubleshooting.trace_frames:
        logging.getLogger("SimView.Client.Payload").setLevel(logging.DEBUG)
    if not DEBUG_CONFIG_ENABLED:
        logger.debug("Release mode logging. Export %s=1 to enable debug output.", DEV_MODE_ENV_VAR)

    logger.info("Starting viewer client (pid=%s)", os.getpid())
    logger.debug(
        "Settings: endpoint=%s reconnect=%dms quiescence=%dms alpha=%s series=%s",
        settings.endpoint,
        settings.reconnect_delay_ms,
        settings.quiescence_ms,
        settings.alpha_policy.value,
        ",".join(settings.tracked_series),
    )

    app = QCoreApplication(sys.argv)
    scheduler = QtScheduler()

    def _log_status(status: ConnectionStatus) -> None:
        logger.info("Connection status: %s", status.value)

    session = Session(
        settings,
        socket_factory=open_websocket,
        after=scheduler.after,
        after_cancel=scheduler.after_cancel,
        on_status=_log_status,
    )
    session.select_field(args.field)

    scene_out = Path(args.scene_out).expanduser().resolve() if args.scene_out else None

    def _tick() -> None:
        if scene_out is not None:
            try:
                _write_scene(session, scene_out)
            except OSError as exc:
                logger.warning("Failed to write scene to %s: %s", scene_out, exc)
            return
        scene = session.scene()
        logger.debug(
            "Scene tick: cells=%d geometry=%d field=%s status=%s",
            len(scene.cells),
            len(scene.geometry),
            scene.selected_field or "-",
            session.status.value,
        )

    tick_timer = QTimer()
    tick_timer.timeout.connect(_tick)
    tick_timer.start(settings.scene_tick_ms)

    signal.signal(signal.SIGINT, lambda *_args: app.quit())
    # Python signal handlers only run when the interpreter regains control.
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(200)

    session.initialize()
    exit_code = app.exec()
    tick_timer.stop()
    session.teardown()
    scheduler.cancel_all()
    logger.info("Viewer client exiting with code %s", exit_code)
    return int(exit_code)
