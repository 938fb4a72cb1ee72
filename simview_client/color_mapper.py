"""Scalar value to color/opacity mapping for mesh shading and the legend."""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

NEUTRAL_RGB: Tuple[int, int, int] = (128, 128, 128)
CONSTANT_ALPHA = 0.7
LEGEND_GRADIENT = "linear-gradient(to right, #0000ff, #ffffff, #ff0000)"


class AlphaPolicy(str, Enum):
    """Opacity as a pure function of the normalised position ``t``.

    plateau: 1.0 for t < 0.25 and t >= 0.75, linear down to 0.0 at t = 0.5.
    taper:   |2t - 1|, fully transparent at the midpoint only.
    constant: CONSTANT_ALPHA everywhere.
    """

    PLATEAU = "plateau"
    TAPER = "taper"
    CONSTANT = "constant"

    @classmethod
    def coerce(cls, value: object, fallback: Optional["AlphaPolicy"] = None) -> "AlphaPolicy":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        return fallback if fallback is not None else cls.PLATEAU


@dataclass(frozen=True)
class ValueRange:
    min: float
    max: float

    @property
    def span(self) -> float:
        return self.max - self.min

    @classmethod
    def from_values(cls, values: Iterable[object]) -> Optional["ValueRange"]:
        """Global range over finite numeric values; None when there are none."""
        low = math.inf
        high = -math.inf
        for value in values:
            number = finite_number(value)
            if number is None:
                continue
            if number < low:
                low = number
            if number > high:
                high = number
        if low > high:
            return None
        return cls(low, high)

    def label(self) -> Tuple[str, str]:
        return f"{self.min:.2f}", f"{self.max:.2f}"


@dataclass(frozen=True)
class ColorSample:
    red: int
    green: int
    blue: int
    alpha: float

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return self.red, self.green, self.blue

    @property
    def hex(self) -> str:
        return f"#{self.red:02x}{self.green:02x}{self.blue:02x}"

    def as_floats(self) -> Tuple[float, float, float, float]:
        return self.red / 255.0, self.green / 255.0, self.blue / 255.0, self.alpha


def finite_number(value: object) -> Optional[float]:
    """Return ``value`` as a float when it is a finite real number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalise(value: float, value_range: ValueRange) -> float:
    clamped = max(value_range.min, min(value_range.max, value))
    return (clamped - value_range.min) / value_range.span


def alpha_for(t: float, policy: AlphaPolicy = AlphaPolicy.PLATEAU) -> float:
    if policy is AlphaPolicy.CONSTANT:
        return CONSTANT_ALPHA
    if policy is AlphaPolicy.TAPER:
        return abs(2.0 * t - 1.0)
    if t < 0.25:
        return 1.0
    if t < 0.5:
        return (0.5 - t) * 4.0
    if t < 0.75:
        return (t - 0.5) * 4.0
    return 1.0


def map_value(
    value: float,
    value_range: ValueRange,
    policy: AlphaPolicy = AlphaPolicy.PLATEAU,
) -> ColorSample:
    """Map ``value`` onto the diverging blue -> white -> red scale.

    Channels are integers in [0, 255] obtained with ``floor(255 * factor)``,
    so identical inputs always produce identical output. A degenerate range
    (min == max) yields the neutral gray at full opacity.
    """
    if value_range.span <= 0:
        return ColorSample(*NEUTRAL_RGB, 1.0)

    t = normalise(value, value_range)
    if t < 0.5:
        factor = t * 2.0
        red = green = math.floor(255 * factor)
        blue = 255
    else:
        factor = (t - 0.5) * 2.0
        red = 255
        green = blue = math.floor(255 * (1.0 - factor))
    return ColorSample(red, green, blue, alpha_for(t, policy))


def legend_stops(
    value_range: ValueRange,
    count: int = 5,
    policy: AlphaPolicy = AlphaPolicy.PLATEAU,
) -> List[Tuple[float, ColorSample]]:
    """Evenly spaced (value, color) stops across the range for a legend bar."""
    count = max(2, int(count))
    if value_range.span <= 0:
        return [(value_range.min, map_value(value_range.min, value_range, policy))]
    step = value_range.span / (count - 1)
    stops = []
    for index in range(count):
        value = value_range.max if index == count - 1 else value_range.min + index * step
        stops.append((value, map_value(value, value_range, policy)))
    return stops
