"""``after`` / ``after_cancel`` scheduling backed by single-shot QTimers."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from PyQt6.QtCore import QObject, QTimer

_LOGGER = logging.getLogger("SimView.Client.Timers")


class QtScheduler(QObject):
    """Owns pending single-shot timers so they can be cancelled by handle."""

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._timers: Dict[int, QTimer] = {}
        self._next_handle = 0

    def after(self, delay_ms: int, callback: Callable[[], None]) -> int:
        self._next_handle += 1
        handle = self._next_handle
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: self._fire(handle, callback))
        self._timers[handle] = timer
        timer.start(max(0, int(delay_ms)))
        return handle

    def after_cancel(self, handle: object) -> None:
        timer = self._timers.pop(handle, None)  # type: ignore[arg-type]
        if timer is None:
            return
        timer.stop()
        timer.deleteLater()

    def cancel_all(self) -> None:
        for handle in list(self._timers):
            self.after_cancel(handle)

    @property
    def pending(self) -> int:
        return len(self._timers)

    def _fire(self, handle: int, callback: Callable[[], None]) -> None:
        timer = self._timers.pop(handle, None)
        if timer is None:
            return
        timer.deleteLater()
        try:
            callback()
        except Exception:
            _LOGGER.exception("Scheduled callback failed")
