"""In-memory store of named fields with replace/append merge semantics."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from simview_client.mesh_model import changed_regions
from simview_client.payload_model import AppendUpdate, FieldUpdate, ReplaceUpdate, update_from_mapping

_LOGGER = logging.getLogger("SimView.Client.FieldStore")

AfterFn = Callable[[int, Callable[[], None]], object]
AfterCancelFn = Callable[[object], None]
ChangeCallback = Callable[[List[str]], None]

DEFAULT_QUIESCENCE_MS = 1000


class StoreStatus(str, Enum):
    IDLE = "idle"
    UPDATING = "updating"
    ERROR = "error"


@dataclass(frozen=True)
class Field:
    name: str
    kind: str
    value: Any
    last_updated: float
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only view of every field at one revision.

    Field values are shared with the store, which never mutates a value in
    place after publishing it; treat them as read-only.
    """

    fields: Mapping[str, Field]
    status: StoreStatus
    last_update: Optional[float]
    revision: int

    def get(self, name: str, default: Any = None) -> Any:
        field = self.fields.get(name)
        return default if field is None else field.value

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def names(self) -> List[str]:
        return list(self.fields)


def is_array_shaped(value: Any) -> bool:
    return isinstance(value, Mapping) and all(isinstance(item, list) for item in value.values())


def classify_value(value: Any) -> str:
    if value is None or isinstance(value, (str, int, float, bool)):
        return "scalar"
    if isinstance(value, Mapping):
        if value and is_array_shaped(value):
            return "series"
        return "mapping"
    if isinstance(value, list):
        return "sequence"
    return "opaque"


def replace_value(current: Any, incoming: Any) -> Any:
    """Overwrite, shallow-merging mappings so untouched sub-keys survive."""
    if isinstance(current, Mapping) and isinstance(incoming, Mapping):
        merged = dict(current)
        merged.update(incoming)
        return merged
    return incoming


def append_arrays(current: Mapping[str, list], incoming: Mapping[str, Any]) -> Dict[str, Any]:
    """Concatenate every list payload in ``incoming`` onto ``current``.

    New lists are built so previously published values stay untouched.
    Non-list payloads are ignored.
    """
    merged: Dict[str, Any] = dict(current)
    for key, items in incoming.items():
        if not isinstance(items, list):
            continue
        merged[key] = list(merged.get(key, [])) + items
    return merged


class FieldStore:
    """Owns the current value of every named field."""

    def __init__(
        self,
        *,
        after: Optional[AfterFn] = None,
        after_cancel: Optional[AfterCancelFn] = None,
        quiescence_ms: int = DEFAULT_QUIESCENCE_MS,
        time_source: Callable[[], float] = time.time,
        mesh_field: str = "mesh",
        values_field: str = "value_on_mesh",
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        self._after = after
        self._after_cancel = after_cancel
        self._quiescence_ms = max(0, int(quiescence_ms))
        self._time = time_source
        self._mesh_field = mesh_field
        self._values_field = values_field
        self._on_change = on_change

        self._fields: Dict[str, Field] = {}
        self._status = StoreStatus.IDLE
        self._last_update: Optional[float] = None
        self._revision = 0
        self._idle_handle: object | None = None
        self._updating_until = 0.0

    @property
    def status(self) -> StoreStatus:
        if (
            self._status is StoreStatus.UPDATING
            and self._after is None
            and self._time() >= self._updating_until
        ):
            self._status = StoreStatus.IDLE
        return self._status

    @property
    def revision(self) -> int:
        return self._revision

    def get(self, name: str, default: Any = None) -> Any:
        field = self._fields.get(name)
        return default if field is None else field.value

    def field(self, name: str) -> Optional[Field]:
        return self._fields.get(name)

    def snapshot(self) -> StoreSnapshot:
        # _fields is replaced, never mutated, so the proxy is a stable view.
        return StoreSnapshot(
            fields=MappingProxyType(self._fields),
            status=self.status,
            last_update=self._last_update,
            revision=self._revision,
        )

    def apply_update(self, update: Union[FieldUpdate, Mapping[str, Any]]) -> bool:
        """Merge one update into the store. Returns True when state changed.

        Malformed updates are logged and dropped; this never raises.
        """
        if isinstance(update, Mapping):
            coerced = update_from_mapping(update)
            if coerced is None:
                _LOGGER.warning("Dropped update without a field key: keys=%s", sorted(map(str, update.keys())))
                return False
            update = coerced
        if not isinstance(update, (ReplaceUpdate, AppendUpdate)):
            _LOGGER.warning("Dropped unsupported update object of type %s", type(update).__name__)
            return False

        try:
            changed = self._merge(update)
        except (TypeError, ValueError, KeyError):
            _LOGGER.warning("Failed to merge %s update for field '%s'", update.type, update.field, exc_info=True)
            self._status = StoreStatus.ERROR
            return False

        self._mark_updating()
        self._notify(changed)
        return True

    def clear(self) -> None:
        self._fields = {}
        self._revision += 1
        self._notify([])

    def teardown(self) -> None:
        self._cancel_idle()
        self._status = StoreStatus.IDLE

    # Merge ---------------------------------------------------------------

    def _merge(self, update: FieldUpdate) -> List[str]:
        now = self._time()
        existing = self._fields.get(update.field)
        previous = existing.value if existing is not None else None

        if isinstance(update, AppendUpdate) and is_array_shaped(previous) and isinstance(update.value, Mapping):
            value = append_arrays(previous, update.value)
        else:
            if isinstance(update, AppendUpdate):
                _LOGGER.debug("Append on '%s' degraded to replace (no array-shaped value to extend)", update.field)
            value = replace_value(previous, update.value)

        staged: Dict[str, Field] = {
            update.field: Field(update.field, classify_value(value), value, now, update.timestamp),
        }
        if update.field == self._mesh_field:
            invalidated = self._invalidate_stale_values(previous, value, now)
            if invalidated is not None:
                staged[self._values_field] = invalidated

        fields = dict(self._fields)
        fields.update(staged)
        self._fields = fields
        self._revision += 1
        self._last_update = now
        return list(staged)

    def _invalidate_stale_values(self, previous_mesh: Any, mesh: Any, now: float) -> Optional[Field]:
        """Drop per-mesh values whose mesh region changed its point list."""
        regions = changed_regions(previous_mesh, mesh)
        values_field = self._fields.get(self._values_field)
        if not regions or values_field is None or not isinstance(values_field.value, Mapping):
            return None
        stale = set(regions)
        pruned: Dict[str, Any] = {}
        removed = 0
        for field_name, per_mesh in values_field.value.items():
            if isinstance(per_mesh, Mapping):
                kept = {name: values for name, values in per_mesh.items() if name not in stale}
                removed += len(per_mesh) - len(kept)
                pruned[field_name] = kept
            else:
                pruned[field_name] = per_mesh
        if not removed:
            return None
        _LOGGER.warning(
            "Mesh topology changed for %s; discarded %d stale value arrays",
            ", ".join(sorted(stale)),
            removed,
        )
        return Field(self._values_field, classify_value(pruned), pruned, now, values_field.timestamp)

    # Status --------------------------------------------------------------

    def _mark_updating(self) -> None:
        self._status = StoreStatus.UPDATING
        if self._after is None:
            self._updating_until = self._time() + self._quiescence_ms / 1000.0
            return
        self._cancel_idle()
        self._idle_handle = self._after(self._quiescence_ms, self._revert_to_idle)

    def _revert_to_idle(self) -> None:
        self._idle_handle = None
        if self._status is StoreStatus.UPDATING:
            self._status = StoreStatus.IDLE

    def _cancel_idle(self) -> None:
        handle = self._idle_handle
        self._idle_handle = None
        if handle is not None and self._after_cancel is not None:
            self._after_cancel(handle)

    def _notify(self, names: Iterable[str]) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(list(names))
        except Exception:
            _LOGGER.exception("Field change listener failed")
