"""Connection lifecycle state machine feeding decoded frames into the field store.

Socket callbacks never mutate state directly. Each transport event is posted
to a queue tagged with the generation of the socket that produced it; the
queue is drained in order and events from a detached (stale) socket are
dropped. This keeps at most one live socket per manager and makes teardown
immune to late callbacks.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, List, Optional, Protocol, Union

from simview_client.field_store import FieldStore
from simview_client.payload_model import (
    DEFAULT_SUMMARY_LENGTH,
    FieldUpdate,
    MessageHistory,
    PlainText,
    decode_frame,
    summarize_update,
    truncate_text,
)

_LOGGER = logging.getLogger("SimView.Client.Connection")

AfterFn = Callable[[int, Callable[[], None]], object]
AfterCancelFn = Callable[[object], None]

DEFAULT_RECONNECT_DELAY_MS = 3000


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SocketHandle(Protocol):
    def close(self) -> None: ...
    def send(self, text: str) -> bool: ...


# Transport events ---------------------------------------------------------


@dataclass(frozen=True)
class SocketOpened:
    generation: int


@dataclass(frozen=True)
class FrameReceived:
    generation: int
    data: Union[str, bytes]


@dataclass(frozen=True)
class SocketClosed:
    generation: int
    reason: str = ""


@dataclass(frozen=True)
class SocketFailed:
    generation: int
    error: str = ""


SocketEvent = Union[SocketOpened, FrameReceived, SocketClosed, SocketFailed]


class SocketSink:
    """Callback surface handed to a transport for one connection attempt."""

    def __init__(self, post: Callable[[SocketEvent], None], generation: int) -> None:
        self._post: Optional[Callable[[SocketEvent], None]] = post
        self.generation = generation

    @property
    def attached(self) -> bool:
        return self._post is not None

    def detach(self) -> None:
        self._post = None

    def opened(self) -> None:
        self._emit(SocketOpened(self.generation))

    def message(self, data: Union[str, bytes]) -> None:
        self._emit(FrameReceived(self.generation, data))

    def closed(self, reason: str = "") -> None:
        self._emit(SocketClosed(self.generation, reason))

    def failed(self, error: str = "") -> None:
        self._emit(SocketFailed(self.generation, error))

    def _emit(self, event: SocketEvent) -> None:
        post = self._post
        if post is not None:
            post(event)


SocketFactory = Callable[[str, SocketSink], SocketHandle]


@dataclass
class ConnectionState:
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    message_summaries: MessageHistory = field(default_factory=lambda: MessageHistory(5))
    plain_messages: MessageHistory = field(default_factory=lambda: MessageHistory(20))
    last_message: Optional[FieldUpdate] = None
    last_error: str = ""
    reconnect_attempts: int = 0

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


class ConnectionManager:
    """Owns one logical socket connection to the simulation broadcaster."""

    def __init__(
        self,
        endpoint: str,
        store: FieldStore,
        *,
        socket_factory: SocketFactory,
        after: AfterFn,
        after_cancel: AfterCancelFn,
        reconnect_delay_ms: int = DEFAULT_RECONNECT_DELAY_MS,
        summary_history_limit: int = 5,
        plain_history_limit: int = 20,
        summary_max_length: int = DEFAULT_SUMMARY_LENGTH,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        autostart: bool = True,
    ) -> None:
        self._endpoint = endpoint
        self._store = store
        self._socket_factory = socket_factory
        self._after = after
        self._after_cancel = after_cancel
        self._reconnect_delay_ms = max(0, int(reconnect_delay_ms))
        self._summary_max_length = max(1, int(summary_max_length))
        self._on_status = on_status

        self.state = ConnectionState(
            message_summaries=MessageHistory(summary_history_limit),
            plain_messages=MessageHistory(plain_history_limit),
        )
        self._socket: Optional[SocketHandle] = None
        self._sink: Optional[SocketSink] = None
        self._generation = 0
        self._reconnect_handle: object | None = None
        self._torn_down = False
        self._events: Deque[SocketEvent] = deque()
        self._draining = False

        if autostart:
            self.connect()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def status(self) -> ConnectionStatus:
        return self.state.status

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def has_socket(self) -> bool:
        return self._socket is not None

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    # Public operations -----------------------------------------------------

    def connect(self) -> None:
        """Open a connection unless one is already live or pending."""
        if self._torn_down:
            _LOGGER.debug("Ignoring connect request after teardown")
            return
        if self._socket is not None and self.state.status is not ConnectionStatus.DISCONNECTED:
            _LOGGER.debug("Connect skipped; socket already %s", self.state.status.value)
            return
        self._cancel_reconnect()
        self._generation += 1
        sink = SocketSink(self._post, self._generation)
        self._sink = sink
        self._set_status(ConnectionStatus.CONNECTING)
        _LOGGER.info("Connecting to %s (attempt generation %d)", self._endpoint, self._generation)
        try:
            sock = self._socket_factory(self._endpoint, sink)
        except Exception as exc:
            _LOGGER.warning("Failed to open socket to %s: %s", self._endpoint, exc)
            sink.detach()
            self._sink = None
            self._handle_failure(str(exc))
            return
        if not sink.attached:
            # The transport already reported close/error before returning.
            sock.close()
            return
        self._socket = sock

    def reconnect(self) -> None:
        """Force-close any current socket and connect again."""
        if self._torn_down:
            return
        _LOGGER.info("Manual reconnect requested")
        self._cancel_reconnect()
        self._drop_socket()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.connect()

    def teardown(self) -> None:
        """Cancel timers, detach callbacks, then close the socket."""
        if self._torn_down:
            return
        self._torn_down = True
        self._cancel_reconnect()
        self._events.clear()
        self._drop_socket()
        self._set_status(ConnectionStatus.DISCONNECTED)
        _LOGGER.info("Connection manager torn down")

    def send(self, text: str) -> bool:
        if self._socket is None or self.state.status is not ConnectionStatus.CONNECTED:
            return False
        return bool(self._socket.send(text))

    # Event queue -----------------------------------------------------------

    def _post(self, event: SocketEvent) -> None:
        self._events.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._events:
                self._dispatch(self._events.popleft())
        finally:
            self._draining = False

    def _dispatch(self, event: SocketEvent) -> None:
        if self._torn_down or event.generation != self._generation or self._sink is None:
            _LOGGER.debug("Dropped stale %s from generation %d", type(event).__name__, event.generation)
            return
        if isinstance(event, SocketOpened):
            self._on_opened()
        elif isinstance(event, FrameReceived):
            self._on_frame(event.data)
        elif isinstance(event, SocketClosed):
            _LOGGER.warning("Disconnected from %s: %s", self._endpoint, event.reason or "closed")
            self._drop_socket(close=False)
            self._handle_failure(event.reason)
        elif isinstance(event, SocketFailed):
            _LOGGER.warning("Socket error on %s: %s", self._endpoint, event.error or "unknown error")
            self._drop_socket()
            self._handle_failure(event.error)

    # Transitions -----------------------------------------------------------

    def _on_opened(self) -> None:
        self._cancel_reconnect()
        self.state.last_error = ""
        self._set_status(ConnectionStatus.CONNECTED)
        _LOGGER.info("Connected to %s", self._endpoint)

    def _on_frame(self, data: Union[str, bytes]) -> None:
        frame = decode_frame(data)
        if isinstance(frame, PlainText):
            self.state.plain_messages.append(truncate_text(frame.text, self._summary_max_length))
            return
        self.state.last_message = frame
        self.state.message_summaries.append(summarize_update(frame, self._summary_max_length))
        self._store.apply_update(frame)

    def _handle_failure(self, reason: str) -> None:
        self.state.last_error = reason
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._torn_down or self._reconnect_handle is not None:
            return
        _LOGGER.info("Reconnecting to %s in %d ms", self._endpoint, self._reconnect_delay_ms)
        self._reconnect_handle = self._after(self._reconnect_delay_ms, self._run_reconnect)

    def _run_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._torn_down:
            return
        self.state.reconnect_attempts += 1
        self.connect()

    def _cancel_reconnect(self) -> None:
        handle = self._reconnect_handle
        self._reconnect_handle = None
        if handle is not None:
            self._after_cancel(handle)

    def _drop_socket(self, *, close: bool = True) -> None:
        sink = self._sink
        sock = self._socket
        self._sink = None
        self._socket = None
        if sink is not None:
            sink.detach()
        if sock is not None and close:
            try:
                sock.close()
            except Exception as exc:
                _LOGGER.debug("Error closing socket: %s", exc)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self.state.status:
            return
        self.state.status = status
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception:
            _LOGGER.exception("Connection status listener failed")

    def history(self) -> List[str]:
        return self.state.message_summaries.entries()

    def plain_history(self) -> List[str]:
        return self.state.plain_messages.entries()

    def describe(self) -> dict[str, Any]:
        return {
            "endpoint": self._endpoint,
            "status": self.state.status.value,
            "reconnect_pending": self.reconnect_pending,
            "reconnect_attempts": self.state.reconnect_attempts,
            "last_error": self.state.last_error,
        }
