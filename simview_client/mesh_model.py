"""Typed views over the mesh, geometry and value_on_mesh fields."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from simview_client.color_mapper import finite_number

Point2D = Tuple[float, float]
Segment = Tuple[Point2D, Point2D]
Vector3 = Tuple[float, float, float]

DEFAULT_NORMAL: Vector3 = (0.0, 0.0, 1.0)
DEFAULT_CELL_SIZE = 1.0


@dataclass(frozen=True)
class MeshRegion:
    """One named mesh: square cells of ``cell_size`` centred on ``points``.

    Unparseable points are kept as None so that point index ``i`` still
    lines up with value index ``i``.
    """

    name: str
    cell_size: float
    normal: Vector3
    points: Tuple[Optional[Point2D], ...]

    def __len__(self) -> int:
        return len(self.points)


def parse_point(raw: Any) -> Optional[Point2D]:
    if isinstance(raw, Mapping):
        x = finite_number(raw.get("x"))
        y = finite_number(raw.get("y"))
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)) and len(raw) >= 2:
        x = finite_number(raw[0])
        y = finite_number(raw[1])
    else:
        return None
    if x is None or y is None:
        return None
    return x, y


def _parse_normal(raw: Any) -> Vector3:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)) or len(raw) != 3:
        return DEFAULT_NORMAL
    components = [finite_number(item) for item in raw]
    if any(item is None for item in components):
        return DEFAULT_NORMAL
    x, y, z = components  # type: ignore[misc]
    if x == 0 and y == 0 and z == 0:
        return DEFAULT_NORMAL
    return x, y, z


def _parse_cell_size(raw: Mapping[str, Any]) -> float:
    for key in ("dx", "cell_size", "cellSize"):
        size = finite_number(raw.get(key))
        if size is not None and size > 0:
            return size
    return DEFAULT_CELL_SIZE


def parse_mesh_region(name: str, raw: Any) -> Optional[MeshRegion]:
    if not isinstance(raw, Mapping):
        return None
    raw_points = raw.get("points")
    if not isinstance(raw_points, Sequence) or isinstance(raw_points, (str, bytes)):
        raw_points = ()
    return MeshRegion(
        name=name,
        cell_size=_parse_cell_size(raw),
        normal=_parse_normal(raw.get("normal")),
        points=tuple(parse_point(point) for point in raw_points),
    )


def parse_meshes(raw: Any) -> Dict[str, MeshRegion]:
    if not isinstance(raw, Mapping):
        return {}
    meshes: Dict[str, MeshRegion] = {}
    for name, region_raw in raw.items():
        region = parse_mesh_region(str(name), region_raw)
        if region is not None:
            meshes[region.name] = region
    return meshes


def parse_geometry(raw: Any) -> Dict[str, List[Segment]]:
    """Geometry name -> line segments; malformed segments are skipped."""
    if not isinstance(raw, Mapping):
        return {}
    geometry: Dict[str, List[Segment]] = {}
    for name, simplices in raw.items():
        segments: List[Segment] = []
        if isinstance(simplices, Sequence) and not isinstance(simplices, (str, bytes)):
            for simplex in simplices:
                if not isinstance(simplex, Sequence) or isinstance(simplex, (str, bytes)) or len(simplex) < 2:
                    continue
                start = parse_point(simplex[0])
                end = parse_point(simplex[1])
                if start is not None and end is not None:
                    segments.append((start, end))
        geometry[str(name)] = segments
    return geometry


def parse_values_on_mesh(raw: Any) -> Dict[str, Dict[str, List[Optional[float]]]]:
    """Field name -> mesh name -> positional values (None where not numeric)."""
    if not isinstance(raw, Mapping):
        return {}
    parsed: Dict[str, Dict[str, List[Optional[float]]]] = {}
    for field_name, per_mesh in raw.items():
        if not isinstance(per_mesh, Mapping):
            continue
        regions: Dict[str, List[Optional[float]]] = {}
        for mesh_name, values in per_mesh.items():
            if isinstance(values, Sequence) and not isinstance(values, (str, bytes)):
                regions[str(mesh_name)] = [finite_number(value) for value in values]
        parsed[str(field_name)] = regions
    return parsed


def changed_regions(previous: Any, current: Any) -> List[str]:
    """Names of mesh regions present in both values whose point lists differ."""
    if not isinstance(previous, Mapping) or not isinstance(current, Mapping):
        return []
    changed = []
    for name, region in current.items():
        if name not in previous:
            continue
        old_region = previous[name]
        old_points = old_region.get("points") if isinstance(old_region, Mapping) else None
        new_points = region.get("points") if isinstance(region, Mapping) else None
        if old_points != new_points:
            changed.append(str(name))
    return changed
