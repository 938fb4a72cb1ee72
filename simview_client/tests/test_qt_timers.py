from PyQt6.QtCore import QEventLoop, QTimer

from simview_client.qt_timers import QtScheduler


def test_after_and_cancel_track_pending_timers(qt_app) -> None:
    scheduler = QtScheduler()
    fired = []
    first = scheduler.after(10_000, lambda: fired.append("first"))
    scheduler.after(10_000, lambda: fired.append("second"))
    assert scheduler.pending == 2

    scheduler.after_cancel(first)
    scheduler.after_cancel(first)
    assert scheduler.pending == 1

    scheduler.cancel_all()
    assert scheduler.pending == 0
    assert fired == []


def test_fire_runs_callback_once_and_contains_errors(qt_app) -> None:
    scheduler = QtScheduler()
    calls = []

    def boom() -> None:
        calls.append("boom")
        raise RuntimeError("callback failed")

    handle = scheduler.after(10_000, boom)
    scheduler._fire(handle, boom)  # type: ignore[attr-defined]
    scheduler._fire(handle, boom)  # type: ignore[attr-defined]
    assert calls == ["boom"]
    assert scheduler.pending == 0


def test_single_shot_fires_on_event_loop(qt_app) -> None:
    scheduler = QtScheduler()
    loop = QEventLoop()
    fired = []

    def _done() -> None:
        fired.append(True)
        loop.quit()

    scheduler.after(0, _done)
    QTimer.singleShot(2000, loop.quit)
    loop.exec()
    assert fired == [True]
    assert scheduler.pending == 0
