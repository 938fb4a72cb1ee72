"""Boundary decoding of inbound socket frames into tagged update variants."""
from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Iterator, List, Mapping, Optional, Union

_LOGGER = logging.getLogger("SimView.Client.Payload")

APPEND = "append"
REPLACE = "replace"
DEFAULT_SUMMARY_LENGTH = 50


@dataclass(frozen=True)
class ReplaceUpdate:
    field: str
    value: Any
    timestamp: Optional[float] = None

    @property
    def type(self) -> str:
        return REPLACE


@dataclass(frozen=True)
class AppendUpdate:
    field: str
    value: Any
    timestamp: Optional[float] = None

    @property
    def type(self) -> str:
        return APPEND


@dataclass(frozen=True)
class PlainText:
    text: str


FieldUpdate = Union[ReplaceUpdate, AppendUpdate]
Frame = Union[ReplaceUpdate, AppendUpdate, PlainText]


def _coerce_timestamp(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def update_from_mapping(payload: Mapping[str, Any]) -> Optional[FieldUpdate]:
    """Build a tagged update from an already-parsed mapping.

    Returns None when the mapping has no usable ``field`` key. Any ``type``
    other than ``append`` (including the broadcaster's legacy ``update``) is
    handled with replace semantics.
    """
    field = payload.get("field")
    if not isinstance(field, str) or not field:
        return None
    value = payload.get("value")
    timestamp = _coerce_timestamp(payload.get("timestamp"))
    if payload.get("type") == APPEND:
        return AppendUpdate(field, value, timestamp)
    return ReplaceUpdate(field, value, timestamp)


def decode_frame(raw: Union[str, bytes]) -> Frame:
    """Decode one text frame; anything that is not a field update is plain text."""
    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    else:
        text = str(raw)
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        _LOGGER.debug("Frame is not JSON; routing to plain history: %.80s", text)
        return PlainText(text)
    if not isinstance(payload, Mapping):
        _LOGGER.debug("Quarantined non-mapping JSON frame: %.80s", text)
        return PlainText(text)
    update = update_from_mapping(payload)
    if update is None:
        _LOGGER.debug("Quarantined frame without a field key: %.80s", text)
        return PlainText(text)
    _LOGGER.debug("Decoded %s update for field '%s'", update.type, update.field)
    return update


def truncate_text(text: str, max_length: int = DEFAULT_SUMMARY_LENGTH) -> str:
    if len(text) > max_length:
        return f"{text[:max_length]}..."
    return text


def summarize_update(update: FieldUpdate, max_length: int = DEFAULT_SUMMARY_LENGTH) -> str:
    """Compact history entry keeping only field, type and timestamp."""
    field = truncate_text(update.field, max_length)
    return json.dumps({"field": field, "type": update.type, "timestamp": update.timestamp})


class MessageHistory:
    """Bounded, ordered history of short message strings."""

    def __init__(self, limit: int) -> None:
        self._entries: Deque[str] = deque(maxlen=max(1, int(limit)))

    @property
    def limit(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: str) -> str:
        self._entries.append(entry)
        return entry

    def entries(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
