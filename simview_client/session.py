"""Explicitly owned session tying the store, connection and derived views together."""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from simview_client.client_config import ClientSettings
from simview_client.connection_manager import (
    AfterCancelFn,
    AfterFn,
    ConnectionManager,
    ConnectionStatus,
    SocketFactory,
)
from simview_client.field_store import FieldStore, StoreSnapshot
from simview_client.scene_projector import SceneDescription, SceneProjector
from simview_client.series_window import LINEAR, SeriesWindow, SeriesWindower

_LOGGER = logging.getLogger("SimView.Client.Session")


class Session:
    """Lifecycle owner for one viewer session; UI glue reads and writes state here."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        socket_factory: SocketFactory,
        after: AfterFn,
        after_cancel: AfterCancelFn,
        time_source: Callable[[], float] = time.time,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        on_fields_changed: Optional[Callable[[List[str]], None]] = None,
    ) -> None:
        self._settings = settings
        self._socket_factory = socket_factory
        self._after = after
        self._after_cancel = after_cancel
        self._on_status = on_status
        self._on_fields_changed = on_fields_changed

        self.store = FieldStore(
            after=after,
            after_cancel=after_cancel,
            quiescence_ms=settings.quiescence_ms,
            time_source=time_source,
            on_change=self._fields_changed,
        )
        self.projector = SceneProjector(alpha_policy=settings.alpha_policy)
        self.windower = SeriesWindower(settings.tracked_series)
        self.connection: Optional[ConnectionManager] = None

        self._selected_field: Optional[str] = None
        self._visibility_overrides: Dict[str, bool] = {}

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def active(self) -> bool:
        return self.connection is not None and not self.connection.torn_down

    # Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        if self.active:
            return
        _LOGGER.info("Initialising session for %s", self._settings.endpoint)
        self.connection = ConnectionManager(
            self._settings.endpoint,
            self.store,
            socket_factory=self._socket_factory,
            after=self._after,
            after_cancel=self._after_cancel,
            reconnect_delay_ms=self._settings.reconnect_delay_ms,
            summary_history_limit=self._settings.summary_history_limit,
            plain_history_limit=self._settings.plain_history_limit,
            summary_max_length=self._settings.summary_max_length,
            on_status=self._on_status,
        )

    def teardown(self) -> None:
        if self.connection is not None:
            self.connection.teardown()
        self.store.teardown()
        _LOGGER.info("Session torn down")

    def reconnect(self) -> None:
        if self.connection is None:
            self.initialize()
            return
        self.connection.reconnect()

    def send(self, text: str) -> bool:
        return self.connection is not None and self.connection.send(text)

    @property
    def status(self) -> ConnectionStatus:
        if self.connection is None:
            return ConnectionStatus.DISCONNECTED
        return self.connection.status

    # UI state --------------------------------------------------------------

    @property
    def selected_field(self) -> Optional[str]:
        return self._selected_field

    def select_field(self, name: Optional[str]) -> None:
        self._selected_field = name or None

    def set_visibility(self, name: str, visible: bool) -> None:
        self._visibility_overrides[str(name)] = bool(visible)

    def toggle_visibility(self, name: str) -> bool:
        current = self.visibility().get(name, True)
        self.set_visibility(name, not current)
        return not current

    def visibility(self, snapshot: Optional[StoreSnapshot] = None) -> Dict[str, bool]:
        return dict(self.scene(snapshot).visibility)

    def set_start_index(self, start_index: int) -> int:
        return self.windower.set_start_index(start_index, self.store.snapshot())

    # Derived views ---------------------------------------------------------

    def scene(self, snapshot: Optional[StoreSnapshot] = None) -> SceneDescription:
        snap = self.store.snapshot() if snapshot is None else snapshot
        return self.projector.project(snap, self._selected_field, self._visibility_overrides)

    def series_window(
        self,
        name: str,
        *,
        visible: Optional[Iterable[str]] = None,
        scale: str = LINEAR,
        snapshot: Optional[StoreSnapshot] = None,
    ) -> SeriesWindow:
        snap = self.store.snapshot() if snapshot is None else snapshot
        return self.windower.window(snap, name, visible=visible, scale=scale)

    def _fields_changed(self, names: List[str]) -> None:
        if self._on_fields_changed is not None:
            self._on_fields_changed(names)
