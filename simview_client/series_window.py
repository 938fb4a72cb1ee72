"""Bounded plotting windows over append-only numeric series."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from simview_client.color_mapper import finite_number
from simview_client.field_store import StoreSnapshot

LINEAR = "linear"
LOG = "log"
DEFAULT_TRACKED_SERIES: Tuple[str, ...] = ("res", "force")

SeriesRecord = Dict[str, Any]


def _as_series(value: Any) -> Mapping[str, Sequence[Any]]:
    if not isinstance(value, Mapping):
        return {}
    return {
        str(name): values
        for name, values in value.items()
        if isinstance(values, Sequence) and not isinstance(values, (str, bytes))
    }


def max_series_length(groups: Iterable[Any]) -> int:
    """Longest array across every series group (0 when there is none)."""
    longest = 0
    for group in groups:
        for values in _as_series(group).values():
            longest = max(longest, len(values))
    return longest


def clamp_start_index(start_index: int, max_length: int) -> int:
    return max(0, min(int(start_index), max(0, max_length - 1)))


def window_records(
    series: Any,
    start_index: int,
    max_length: int,
    *,
    visible: Optional[Iterable[str]] = None,
    scale: str = LINEAR,
) -> List[SeriesRecord]:
    """One record per index in [start_index, max_length).

    A series without a plottable value at an index contributes None there;
    consumers draw no point and no connecting segment across it. On a log
    scale non-positive values are gaps too.
    """
    named = _as_series(series)
    shown = set(named) if visible is None else set(visible)
    records: List[SeriesRecord] = []
    for index in range(max(0, start_index), max_length):
        record: SeriesRecord = {"index": index}
        for name, values in named.items():
            if name not in shown:
                continue
            value = finite_number(values[index]) if index < len(values) else None
            if scale == LOG and value is not None and value <= 0:
                value = None
            record[name] = value
        records.append(record)
    return records


def gap_segments(records: Sequence[SeriesRecord], name: str) -> List[List[Tuple[int, float]]]:
    """Split one series into contiguous runs; gaps are never bridged."""
    segments: List[List[Tuple[int, float]]] = []
    current: List[Tuple[int, float]] = []
    for record in records:
        value = record.get(name)
        if value is None:
            if current:
                segments.append(current)
                current = []
            continue
        current.append((int(record["index"]), float(value)))
    if current:
        segments.append(current)
    return segments


def axis_ticks(start_index: int, max_length: int) -> List[int]:
    span = max_length - start_index
    if span <= 0:
        return []
    interval = math.ceil(span / 5)
    rounded = 10 ** math.floor(math.log10(interval))
    first = (start_index // rounded) * rounded
    count = math.ceil(span / rounded) + 1
    return [tick for tick in (first + i * rounded for i in range(count)) if start_index <= tick <= max_length]


def format_scientific(value: Optional[float]) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "N/A"
    return f"{value:.3e}"


@dataclass(frozen=True)
class SeriesWindow:
    name: str
    series_names: Tuple[str, ...]
    start_index: int
    max_length: int
    records: Tuple[SeriesRecord, ...]
    ticks: Tuple[int, ...]

    @property
    def empty(self) -> bool:
        return self.max_length == 0

    def segments(self, series_name: str) -> List[List[Tuple[int, float]]]:
        return gap_segments(self.records, series_name)


class SeriesWindower:
    """Shared start index and max length across every tracked series field."""

    def __init__(self, tracked: Sequence[str] = DEFAULT_TRACKED_SERIES) -> None:
        self._tracked = tuple(tracked)
        self._start_index = 0
        self._lengths_key: Optional[Tuple[int, ...]] = None
        self._max_length = 0

    @property
    def tracked(self) -> Tuple[str, ...]:
        return self._tracked

    @property
    def start_index(self) -> int:
        return self._start_index

    def set_start_index(self, start_index: int, snapshot: Optional[StoreSnapshot] = None) -> int:
        max_length = self.max_length(snapshot) if snapshot is not None else self._max_length
        self._start_index = clamp_start_index(start_index, max_length)
        return self._start_index

    def max_length(self, snapshot: StoreSnapshot) -> int:
        lengths = tuple(
            len(values)
            for name in self._tracked
            for values in _as_series(snapshot.get(name)).values()
        )
        if lengths != self._lengths_key:
            self._lengths_key = lengths
            self._max_length = max(lengths, default=0)
        return self._max_length

    def window(
        self,
        snapshot: StoreSnapshot,
        name: str,
        *,
        visible: Optional[Iterable[str]] = None,
        scale: str = LINEAR,
    ) -> SeriesWindow:
        series = snapshot.get(name)
        max_length = self.max_length(snapshot)
        start = clamp_start_index(self._start_index, max_length)
        records = window_records(series, start, max_length, visible=visible, scale=scale) if max_length else []
        return SeriesWindow(
            name=name,
            series_names=tuple(_as_series(series)),
            start_index=start,
            max_length=max_length,
            records=tuple(records),
            ticks=tuple(axis_ticks(start, max_length)),
        )
