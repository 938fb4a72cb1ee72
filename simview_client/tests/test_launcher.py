import argparse
import json
from pathlib import Path

from simview_client.client_config import ClientSettings
from simview_client.launcher import _write_scene, resolve_settings
from simview_client.session import Session


def _args(**overrides) -> argparse.Namespace:
    values = {"endpoint": None, "settings": None, "scene_out": None, "debug_config": None, "field": None}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_cli_endpoint_wins_over_file_and_env(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"endpoint": "ws://file:1", "reconnect_delay_ms": 700}), encoding="utf-8")
    monkeypatch.setenv("SIMVIEW_ENDPOINT", "ws://env:2")

    settings = resolve_settings(_args(settings=str(path), endpoint="ws://cli:3"))
    assert settings.endpoint == "ws://cli:3"
    assert settings.reconnect_delay_ms == 700

    monkeypatch.delenv("SIMVIEW_ENDPOINT")
    assert resolve_settings(_args(settings=str(path))).endpoint == "ws://file:1"


def test_write_scene_replaces_target_atomically(tmp_path: Path, harness, sockets, clock) -> None:
    session = Session(
        ClientSettings(),
        socket_factory=sockets,
        after=harness.after,
        after_cancel=harness.cancel,
        time_source=clock.now,
    )
    session.initialize()
    sockets.latest.sink.opened()
    sockets.latest.sink.message(json.dumps({"type": "replace", "field": "mesh", "value": {"r": {"points": [[0, 0]]}}}))

    target = tmp_path / "scene.json"
    _write_scene(session, target)

    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["status"] == "connected"
    assert payload["store_status"] == "updating"
    assert len(payload["cells"]) == 1
    assert not (tmp_path / "scene.json.tmp").exists()


def test_launcher_module_is_documented() -> None:
    from simview_client import launcher

    assert launcher.__doc__ and "entry point" in launcher.__doc__
