"""WebSocket transport that runs on a background asyncio loop and hands events to the Qt thread."""
from __future__ import annotations

import asyncio
import logging
import queue
import threading
from typing import Any, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from PyQt6.QtCore import QObject, pyqtSignal

from simview_client.connection_manager import SocketSink

_LOGGER = logging.getLogger("SimView.Client.DataClient")

TransportEvent = Tuple[str, Any]


class WebSocketDataClient(QObject):
    """One WebSocket connection attempt; events are re-emitted on the Qt thread.

    The instance never reconnects by itself. Connection policy belongs to the
    ConnectionManager, which creates a fresh client per attempt.
    """

    event_ready = pyqtSignal(object)

    def __init__(self, endpoint: str, sink: SocketSink, *, open_timeout: float = 5.0) -> None:
        super().__init__()
        self._endpoint = endpoint
        self._sink = sink
        self._open_timeout = open_timeout
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event = threading.Event()
        self._outgoing: Optional[asyncio.Queue[Optional[str]]] = None
        self._pending: "queue.Queue[str]" = queue.Queue(maxsize=32)
        self._closing: Optional[asyncio.Event] = None
        # Queued across threads: the slot runs on the thread that owns this object.
        self.event_ready.connect(self._dispatch)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._thread_main, name="SimView-DataClient", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Request shutdown without blocking the caller."""
        self._stop_event.set()
        loop = self._loop
        closing = self._closing
        if loop is not None and closing is not None and loop.is_running():
            try:
                loop.call_soon_threadsafe(closing.set)
            except RuntimeError as exc:
                _LOGGER.debug("Loop already closed while requesting shutdown: %s", exc)

    def join(self, timeout: float = 5.0) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None

    def send(self, text: str) -> bool:
        message = str(text)
        loop = self._loop
        queue_ref = self._outgoing
        if loop is not None and queue_ref is not None:
            try:
                loop.call_soon_threadsafe(queue_ref.put_nowait, message)
                return True
            except (RuntimeError, asyncio.QueueFull) as exc:
                _LOGGER.warning("Failed to enqueue outgoing message on running loop; falling back to pending queue: %s", exc)
        try:
            self._pending.put_nowait(message)
        except queue.Full:
            return False
        return True

    # Qt thread -------------------------------------------------------------

    def _dispatch(self, event: TransportEvent) -> None:
        kind, detail = event
        if kind == "open":
            self._sink.opened()
        elif kind == "message":
            self._sink.message(detail)
        elif kind == "close":
            self._sink.closed(str(detail or ""))
        elif kind == "error":
            self._sink.failed(str(detail or ""))

    # Background thread -----------------------------------------------------

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._run())
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._loop = None

    async def _run(self) -> None:
        self._closing = asyncio.Event()
        if self._stop_event.is_set():
            return
        try:
            connection = await websockets.connect(self._endpoint, open_timeout=self._open_timeout)
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as exc:
            _LOGGER.warning("Connect failed to %s: %s", self._endpoint, exc)
            self.event_ready.emit(("error", str(exc)))
            return

        self.event_ready.emit(("open", None))
        outgoing_queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._outgoing = outgoing_queue
        while not self._pending.empty():
            try:
                outgoing_queue.put_nowait(self._pending.get_nowait())
            except queue.Empty:
                break
        sender_task = asyncio.create_task(self._flush_outgoing(connection, outgoing_queue))
        closer_task = asyncio.create_task(self._close_when_requested(connection))
        reason = "Server closed the connection"
        try:
            async for frame in connection:
                self.event_ready.emit(("message", frame))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            reason = f"Connection closed: {exc}"
        except OSError as exc:
            reason = f"Disconnected: {exc}"
        finally:
            self._outgoing = None
            outgoing_queue.put_nowait(None)
            closer_task.cancel()
            try:
                await sender_task
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - unexpected sender failures
                _LOGGER.warning("Sender task terminated with error: %s", exc)
            try:
                await connection.close()
            except OSError as exc:
                _LOGGER.debug("Error closing websocket: %s", exc)
        _LOGGER.info("WebSocket to %s finished: %s", self._endpoint, reason)
        self.event_ready.emit(("close", reason))

    async def _close_when_requested(self, connection: Any) -> None:
        closing = self._closing
        if closing is None:
            return
        await closing.wait()
        try:
            await connection.close()
        except OSError as exc:
            _LOGGER.debug("Error closing websocket on request: %s", exc)

    async def _flush_outgoing(self, connection: Any, queue_ref: "asyncio.Queue[Optional[str]]") -> None:
        while not self._stop_event.is_set():
            payload = await queue_ref.get()
            if payload is None:
                break
            try:
                await connection.send(payload)
            except (ConnectionClosed, OSError) as exc:
                _LOGGER.warning("Failed to write outgoing message: %s", exc)
                break


def open_websocket(endpoint: str, sink: SocketSink) -> WebSocketDataClient:
    """Socket factory used by the ConnectionManager in production."""
    client = WebSocketDataClient(endpoint, sink)
    client.start()
    return client
