from __future__ import annotations

import os
from typing import Callable, List, Optional, Tuple

import pytest

from simview_client.connection_manager import SocketSink


class TimeStub:
    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def now(self) -> float:
        return self.value


class AfterHarness:
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, int, Callable[[], None]]] = []
        self.cancelled: list[object] = []
        self.fired: list[str] = []

    def after(self, ms: int, cb) -> str:
        handle = f"h{len(self.scheduled) + 1}"
        self.scheduled.append((handle, ms, cb))
        return handle

    def cancel(self, handle: object) -> None:
        self.cancelled.append(handle)

    def pending(self) -> List[Tuple[str, int, Callable[[], None]]]:
        return [entry for entry in self.scheduled if entry[0] not in self.cancelled and entry[0] not in self.fired]

    def run(self, handle: str) -> None:
        for h, _ms, cb in list(self.scheduled):
            if h == handle:
                self.fired.append(h)
                cb()
                return
        raise AssertionError(f"Handle {handle} not found")

    def run_pending(self) -> int:
        ran = 0
        for handle, _ms, _cb in self.pending():
            self.run(handle)
            ran += 1
        return ran


class FakeSocket:
    def __init__(self, endpoint: str, sink: SocketSink) -> None:
        self.endpoint = endpoint
        self.sink = sink
        self.closed = False
        self.sent: list[str] = []

    def close(self) -> None:
        self.closed = True

    def send(self, text: str) -> bool:
        self.sent.append(text)
        return True


class SocketRecorder:
    """Socket factory that records every connection attempt."""

    def __init__(self, on_open: Optional[Callable[[SocketSink], None]] = None) -> None:
        self.sockets: list[FakeSocket] = []
        self._on_open = on_open

    def __call__(self, endpoint: str, sink: SocketSink) -> FakeSocket:
        sock = FakeSocket(endpoint, sink)
        self.sockets.append(sock)
        if self._on_open is not None:
            self._on_open(sink)
        return sock

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]

    def live(self) -> list[FakeSocket]:
        return [sock for sock in self.sockets if not sock.closed and sock.sink.attached]


@pytest.fixture
def harness() -> AfterHarness:
    return AfterHarness()


@pytest.fixture
def clock() -> TimeStub:
    return TimeStub(1000.0)


@pytest.fixture
def sockets() -> SocketRecorder:
    return SocketRecorder()


@pytest.fixture(scope="module")
def qt_app():
    # Force Qt to run headless for CI/CLI test runs.
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app


@pytest.fixture
def recorder_factory():
    return SocketRecorder
