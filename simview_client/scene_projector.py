"""Renderer-agnostic scene description derived from mesh, geometry and field values."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from simview_client.color_mapper import (
    LEGEND_GRADIENT,
    NEUTRAL_RGB,
    AlphaPolicy,
    ColorSample,
    ValueRange,
    legend_stops,
    map_value,
)
from simview_client.field_store import StoreSnapshot
from simview_client.mesh_model import (
    MeshRegion,
    Segment,
    Vector3,
    parse_geometry,
    parse_meshes,
    parse_values_on_mesh,
)

_LOGGER = logging.getLogger("SimView.Client.Scene")

COLORS: Dict[str, str] = {
    "north": "#0000ff",
    "south": "#ff0000",
    "east": "#00ff00",
    "west": "#ff00ff",
    "cylinder": "#000000",
    "wireframe": "#000000",
    "default": "#808080",
    "values": "#4287f5",
}
WIREFRAME_KEY = "wireframe"
VALUES_KEY = "values"
MISSING_VALUE_COLOR = ColorSample(*NEUTRAL_RGB, 1.0)
FILL_DEPTH_OFFSET = 0.001

Matrix3 = Tuple[Vector3, Vector3, Vector3]
Edge3 = Tuple[Vector3, Vector3]
_IDENTITY: Matrix3 = ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0))


def layer_color(name: str) -> str:
    return COLORS.get(name, COLORS["default"])


def layer_width(name: str) -> int:
    return 1 if name == "cylinder" else 2


@dataclass(frozen=True)
class CellVisual:
    mesh: str
    index: int
    center: Vector3
    corners: Tuple[Vector3, Vector3, Vector3, Vector3]
    edges: Tuple[Edge3, ...]
    fill_center: Vector3
    fill: Optional[ColorSample]
    value: Optional[float]
    show_wireframe: bool
    show_fill: bool

    @property
    def fill_alpha(self) -> float:
        if not self.show_fill or self.fill is None:
            return 0.0
        return self.fill.alpha


@dataclass(frozen=True)
class GeometryLayer:
    name: str
    color: str
    width: int
    segments: Tuple[Segment, ...]


@dataclass(frozen=True)
class LegendItem:
    name: str
    color: str
    visible: bool


@dataclass(frozen=True)
class SceneDescription:
    cells: Tuple[CellVisual, ...]
    geometry: Tuple[GeometryLayer, ...]
    visibility: Mapping[str, bool]
    selected_field: Optional[str]
    value_range: Optional[ValueRange]
    value_names: Tuple[str, ...]
    legend: Tuple[LegendItem, ...] = ()
    gradient: Tuple[Tuple[float, ColorSample], ...] = field(default_factory=tuple)

    @property
    def wireframe_edges(self) -> List[Edge3]:
        return [edge for cell in self.cells for edge in cell.edges]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form for renderers living outside this process."""
        return {
            "selected_field": self.selected_field,
            "value_range": None if self.value_range is None else [self.value_range.min, self.value_range.max],
            "value_names": list(self.value_names),
            "visibility": dict(self.visibility),
            "cells": [
                {
                    "mesh": cell.mesh,
                    "index": cell.index,
                    "center": list(cell.center),
                    "corners": [list(corner) for corner in cell.corners],
                    "wireframe": cell.show_wireframe,
                    "color": None if cell.fill is None else cell.fill.hex,
                    "alpha": cell.fill_alpha,
                    "value": cell.value,
                }
                for cell in self.cells
            ],
            "geometry": [
                {
                    "name": layer.name,
                    "color": layer.color,
                    "width": layer.width,
                    "segments": [[list(start), list(end)] for start, end in layer.segments],
                }
                for layer in self.geometry
            ],
            "legend": [{"name": item.name, "color": item.color, "visible": item.visible} for item in self.legend],
            "gradient": LEGEND_GRADIENT if self.gradient else None,
        }


# Orientation ----------------------------------------------------------------


def _unit(vector: Vector3) -> Vector3:
    length = math.sqrt(sum(component * component for component in vector))
    if length == 0:
        return 0.0, 0.0, 1.0
    return vector[0] / length, vector[1] / length, vector[2] / length


def rotation_from_z(normal: Vector3) -> Matrix3:
    """Rotation taking +z onto ``normal`` (Rodrigues form with axis z x n)."""
    nx, ny, nz = _unit(normal)
    if math.isclose(nz, 1.0, abs_tol=1e-12):
        return _IDENTITY
    if math.isclose(nz, -1.0, abs_tol=1e-12):
        return (1.0, 0.0, 0.0), (0.0, -1.0, 0.0), (0.0, 0.0, -1.0)
    vx, vy = -ny, nx
    k = 1.0 / (1.0 + nz)
    return (
        (1.0 - k * vy * vy, k * vx * vy, vy),
        (k * vx * vy, 1.0 - k * vx * vx, -vx),
        (-vy, vx, 1.0 - k * (vx * vx + vy * vy)),
    )


def _apply(matrix: Matrix3, x: float, y: float, z: float) -> Vector3:
    return (
        matrix[0][0] * x + matrix[0][1] * y + matrix[0][2] * z,
        matrix[1][0] * x + matrix[1][1] * y + matrix[1][2] * z,
        matrix[2][0] * x + matrix[2][1] * y + matrix[2][2] * z,
    )


def _offset(origin: Vector3, delta: Vector3) -> Vector3:
    return origin[0] + delta[0], origin[1] + delta[1], origin[2] + delta[2]


# Visibility -----------------------------------------------------------------


def default_visibility(meshes: Mapping[str, Any], geometry: Mapping[str, Any]) -> Dict[str, bool]:
    visibility: Dict[str, bool] = {}
    if meshes:
        visibility[WIREFRAME_KEY] = True
        visibility[VALUES_KEY] = True
    for name in geometry:
        visibility[str(name)] = True
    return visibility


def resolve_visibility(
    meshes: Mapping[str, Any],
    geometry: Mapping[str, Any],
    overrides: Optional[Mapping[str, bool]],
) -> Dict[str, bool]:
    """Data-derived defaults with user toggles layered on top."""
    visibility = {WIREFRAME_KEY: True, VALUES_KEY: True}
    visibility.update(default_visibility(meshes, geometry))
    if overrides:
        visibility.update({str(key): bool(value) for key, value in overrides.items()})
    return visibility


# Projection -----------------------------------------------------------------


def field_value_range(values: Mapping[str, Dict[str, List[Optional[float]]]], selected: str) -> Optional[ValueRange]:
    per_mesh = values.get(selected)
    if not per_mesh:
        return None
    return ValueRange.from_values(value for series in per_mesh.values() for value in series)


def project_cells(
    meshes: Mapping[str, MeshRegion],
    values: Optional[Mapping[str, Sequence[Optional[float]]]],
    value_range: Optional[ValueRange],
    *,
    show_wireframe: bool,
    show_fill: bool,
    policy: AlphaPolicy = AlphaPolicy.PLATEAU,
) -> List[CellVisual]:
    per_mesh: Mapping[str, Sequence[Optional[float]]] = values if isinstance(values, Mapping) else {}
    cells: List[CellVisual] = []
    for mesh_name, region in meshes.items():
        rotation = rotation_from_z(region.normal)
        half = region.cell_size / 2.0
        local = ((-half, -half), (half, -half), (half, half), (-half, half))
        offsets = tuple(_apply(rotation, x, y, 0.0) for x, y in local)
        fill_shift = _apply(rotation, 0.0, 0.0, -FILL_DEPTH_OFFSET)
        mesh_values = per_mesh.get(mesh_name) or ()
        if value_range is not None and len(mesh_values) != len(region.points):
            _LOGGER.debug(
                "Mesh '%s' has %d points but %d values; unmatched cells use the default color",
                mesh_name,
                len(region.points),
                len(mesh_values),
            )
        for index, point in enumerate(region.points):
            if point is None:
                continue
            center: Vector3 = (point[0], point[1], 0.0)
            corners = tuple(_offset(center, delta) for delta in offsets)
            edges: Tuple[Edge3, ...] = ()
            if show_wireframe:
                edges = tuple((corners[i], corners[(i + 1) % 4]) for i in range(4))
            value = mesh_values[index] if index < len(mesh_values) else None
            fill: Optional[ColorSample] = None
            if value_range is not None:
                fill = MISSING_VALUE_COLOR if value is None else map_value(value, value_range, policy)
            cells.append(
                CellVisual(
                    mesh=mesh_name,
                    index=index,
                    center=center,
                    corners=corners,  # type: ignore[arg-type]
                    edges=edges,
                    fill_center=_offset(center, fill_shift),
                    fill=fill,
                    value=value,
                    show_wireframe=show_wireframe,
                    show_fill=show_fill and value_range is not None,
                )
            )
    return cells


def project_scene(
    mesh_raw: Any,
    geometry_raw: Any,
    values_raw: Any,
    selected_field: Optional[str],
    visibility: Optional[Mapping[str, bool]] = None,
    *,
    policy: AlphaPolicy = AlphaPolicy.PLATEAU,
) -> SceneDescription:
    """Build a scene from raw field values. Never raises on inconsistent data."""
    return _project(
        parse_meshes(mesh_raw),
        parse_geometry(geometry_raw),
        parse_values_on_mesh(values_raw),
        selected_field,
        visibility,
        policy,
    )


def _project(
    meshes: Mapping[str, MeshRegion],
    geometry: Mapping[str, List[Segment]],
    values: Mapping[str, Dict[str, List[Optional[float]]]],
    selected_field: Optional[str],
    overrides: Optional[Mapping[str, bool]],
    policy: AlphaPolicy,
    value_range_cache: Optional[Dict[str, Optional[ValueRange]]] = None,
) -> SceneDescription:
    visibility = resolve_visibility(meshes, geometry, overrides)

    effective_field: Optional[str] = selected_field or None
    value_range: Optional[ValueRange] = None
    if effective_field is not None:
        if value_range_cache is not None and effective_field in value_range_cache:
            value_range = value_range_cache[effective_field]
        else:
            value_range = field_value_range(values, effective_field)
            if value_range_cache is not None:
                value_range_cache[effective_field] = value_range
        if value_range is None:
            _LOGGER.debug("Selected field '%s' has no values; rendering wireframe only", effective_field)
            effective_field = None

    cells = project_cells(
        meshes,
        values.get(effective_field) if effective_field else None,
        value_range,
        show_wireframe=visibility.get(WIREFRAME_KEY, True),
        show_fill=visibility.get(VALUES_KEY, True),
        policy=policy,
    )

    layers = tuple(
        GeometryLayer(name, layer_color(name), layer_width(name), tuple(segments))
        for name, segments in geometry.items()
        if visibility.get(name, True)
    )

    legend: List[LegendItem] = [LegendItem(WIREFRAME_KEY, COLORS[WIREFRAME_KEY], visibility.get(WIREFRAME_KEY, True))]
    legend.extend(LegendItem(name, layer_color(name), visibility.get(name, True)) for name in geometry)
    if effective_field is not None:
        legend.append(LegendItem(VALUES_KEY, COLORS[VALUES_KEY], visibility.get(VALUES_KEY, True)))

    gradient: Tuple[Tuple[float, ColorSample], ...] = ()
    if value_range is not None:
        gradient = tuple(legend_stops(value_range, policy=policy))

    return SceneDescription(
        cells=tuple(cells),
        geometry=layers,
        visibility=visibility,
        selected_field=effective_field,
        value_range=value_range,
        value_names=tuple(values),
        legend=tuple(legend),
        gradient=gradient,
    )


class SceneProjector:
    """Projects store snapshots into scenes, caching parsed inputs by identity.

    The field store publishes a new value object on every change, so an
    unchanged object identity means the parsed form is still valid.
    """

    def __init__(
        self,
        *,
        alpha_policy: AlphaPolicy = AlphaPolicy.PLATEAU,
        mesh_field: str = "mesh",
        geometry_field: str = "geometry",
        values_field: str = "value_on_mesh",
    ) -> None:
        self.alpha_policy = alpha_policy
        self._mesh_field = mesh_field
        self._geometry_field = geometry_field
        self._values_field = values_field
        self._parsed: Dict[str, Tuple[Any, Any]] = {}
        self._ranges: Dict[str, Optional[ValueRange]] = {}
        self._last_key: Optional[Tuple[Any, ...]] = None
        # Held strongly so identity checks never match a recycled object.
        self._last_inputs: Tuple[Any, ...] = ()
        self._last_scene: Optional[SceneDescription] = None

    def _parse(self, key: str, raw: Any, parser: Any) -> Any:
        cached = self._parsed.get(key)
        if cached is not None and cached[0] is raw:
            return cached[1]
        parsed = parser(raw)
        self._parsed[key] = (raw, parsed)
        if key == self._values_field:
            self._ranges = {}
        return parsed

    def project(
        self,
        snapshot: StoreSnapshot,
        selected_field: Optional[str] = None,
        visibility: Optional[Mapping[str, bool]] = None,
    ) -> SceneDescription:
        mesh_raw = snapshot.get(self._mesh_field)
        geometry_raw = snapshot.get(self._geometry_field)
        values_raw = snapshot.get(self._values_field)
        inputs = (mesh_raw, geometry_raw, values_raw)
        key = (
            selected_field or None,
            tuple(sorted((visibility or {}).items())),
            self.alpha_policy,
        )
        if (
            self._last_scene is not None
            and key == self._last_key
            and all(new is old for new, old in zip(inputs, self._last_inputs))
        ):
            return self._last_scene
        meshes = self._parse(self._mesh_field, mesh_raw, parse_meshes)
        geometry = self._parse(self._geometry_field, geometry_raw, parse_geometry)
        values = self._parse(self._values_field, values_raw, parse_values_on_mesh)
        scene = _project(meshes, geometry, values, selected_field, visibility, self.alpha_policy, self._ranges)
        self._last_key = key
        self._last_inputs = inputs
        self._last_scene = scene
        return scene

    def value_names(self, snapshot: StoreSnapshot) -> List[str]:
        values_raw = snapshot.get(self._values_field)
        return list(self._parse(self._values_field, values_raw, parse_values_on_mesh))
