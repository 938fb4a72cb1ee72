import gc
import json

import pytest

from simview_client.color_mapper import AlphaPolicy, ValueRange
from simview_client.field_store import FieldStore
from simview_client.payload_model import ReplaceUpdate
from simview_client.scene_projector import (
    COLORS,
    FILL_DEPTH_OFFSET,
    MISSING_VALUE_COLOR,
    SceneProjector,
    layer_color,
    layer_width,
    project_scene,
    rotation_from_z,
)

MESH = {"region1": {"dx": 1.0, "normal": [0, 0, 1], "points": [[0, 0], [1, 0], [2, 0]]}}
GEOMETRY = {
    "north": [[[0, 1], [2, 1]]],
    "south": [[[0, -1], [2, -1]]],
}


def test_selected_field_colors_cells_across_global_range() -> None:
    scene = project_scene(MESH, GEOMETRY, {"temp": {"region1": [10, 20, 30]}}, "temp")

    assert scene.selected_field == "temp"
    assert scene.value_range == ValueRange(10.0, 30.0)
    assert [cell.fill.rgb for cell in scene.cells] == [(0, 0, 255), (255, 255, 255), (255, 0, 0)]
    assert scene.cells[1].value == 20.0


def test_value_range_spans_every_mesh() -> None:
    meshes = {
        "region1": {"points": [[0, 0], [1, 0]]},
        "region2": {"points": [[5, 5]]},
    }
    scene = project_scene(meshes, None, {"temp": {"region1": [0, 5], "region2": [10]}}, "temp")
    assert scene.value_range == ValueRange(0.0, 10.0)
    by_mesh = {(cell.mesh, cell.index): cell for cell in scene.cells}
    assert by_mesh[("region2", 0)].fill.rgb == (255, 0, 0)
    assert by_mesh[("region1", 1)].fill.rgb == (255, 255, 255)


def test_short_value_arrays_use_default_color() -> None:
    scene = project_scene(MESH, None, {"temp": {"region1": [10, 30]}}, "temp")
    assert len(scene.cells) == 3
    assert scene.cells[2].fill == MISSING_VALUE_COLOR
    assert scene.cells[2].value is None


def test_extra_values_are_ignored() -> None:
    scene = project_scene(MESH, None, {"temp": {"region1": [1, 2, 3, 4, 5]}}, "temp")
    assert len(scene.cells) == 3
    assert scene.value_range == ValueRange(1.0, 5.0)


def test_missing_selected_field_degrades_to_wireframe_only() -> None:
    scene = project_scene(MESH, GEOMETRY, {"temp": {"region1": [1, 2, 3]}}, "pressure")
    assert scene.selected_field is None
    assert scene.value_range is None
    assert all(cell.fill is None and cell.fill_alpha == 0.0 for cell in scene.cells)
    assert len(scene.wireframe_edges) == 12
    assert scene.value_names == ("temp",)


def test_no_mesh_yields_empty_scene() -> None:
    scene = project_scene(None, None, None, "temp")
    assert scene.cells == ()
    assert scene.geometry == ()
    assert scene.selected_field is None


def test_unparseable_points_skip_their_cell_but_keep_alignment() -> None:
    mesh = {"region1": {"points": [[0, 0], "bad", [2, 0]]}}
    scene = project_scene(mesh, None, {"temp": {"region1": [1, 2, 3]}}, "temp")
    assert [cell.index for cell in scene.cells] == [0, 2]
    assert scene.cells[1].value == 3.0


def test_cells_are_square_and_fill_sits_behind_wireframe() -> None:
    scene = project_scene({"m": {"dx": 2.0, "points": [[1, 2]]}}, None, None, None)
    cell = scene.cells[0]
    assert cell.center == (1.0, 2.0, 0.0)
    xs = sorted({corner[0] for corner in cell.corners})
    ys = sorted({corner[1] for corner in cell.corners})
    assert xs == [0.0, 2.0]
    assert ys == [1.0, 3.0]
    assert cell.fill_center[2] == pytest.approx(-FILL_DEPTH_OFFSET)
    assert len(cell.edges) == 4


def test_cells_are_oriented_by_mesh_normal() -> None:
    scene = project_scene({"m": {"dx": 2.0, "normal": [1, 0, 0], "points": [[1, 2]]}}, None, None, None)
    cell = scene.cells[0]
    assert all(corner[0] == pytest.approx(1.0) for corner in cell.corners)
    assert cell.fill_center[0] == pytest.approx(1.0 - FILL_DEPTH_OFFSET)


def test_rotation_maps_z_onto_normal() -> None:
    for normal in [(0.0, 0.0, 1.0), (0.0, 0.0, -1.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]:
        matrix = rotation_from_z(normal)
        mapped = tuple(row[2] for row in matrix)
        assert mapped == pytest.approx(normal)


def test_visibility_defaults_and_overrides() -> None:
    scene = project_scene(MESH, GEOMETRY, {"temp": {"region1": [1, 2, 3]}}, "temp", {"north": False, "wireframe": False})

    assert scene.visibility == {"wireframe": False, "values": True, "north": False, "south": True}
    assert [layer.name for layer in scene.geometry] == ["south"]
    assert scene.geometry[0].color == COLORS["south"]
    assert scene.geometry[0].segments == (((0.0, -1.0), (2.0, -1.0)),)
    assert scene.wireframe_edges == []
    assert all(cell.fill is not None for cell in scene.cells)


def test_hiding_values_keeps_colors_but_zeroes_alpha() -> None:
    scene = project_scene(MESH, None, {"temp": {"region1": [10, 20, 30]}}, "temp", {"values": False})
    assert scene.cells[0].fill is not None
    assert all(cell.fill_alpha == 0.0 for cell in scene.cells)


def test_legend_lists_wireframe_geometry_and_values() -> None:
    scene = project_scene(MESH, GEOMETRY, {"temp": {"region1": [1, 2, 3]}}, "temp")
    assert [item.name for item in scene.legend] == ["wireframe", "north", "south", "values"]
    assert scene.legend[-1].color == COLORS["values"]
    assert len(scene.gradient) == 5

    plain = project_scene(MESH, GEOMETRY, None, None)
    assert [item.name for item in plain.legend] == ["wireframe", "north", "south"]
    assert plain.gradient == ()


def test_layer_styles() -> None:
    assert layer_color("east") == "#00ff00"
    assert layer_color("inlet") == COLORS["default"]
    assert layer_width("cylinder") == 1
    assert layer_width("north") == 2


def test_alpha_policy_is_applied() -> None:
    values = {"temp": {"region1": [10, 20, 30]}}
    scene = project_scene(MESH, None, values, "temp", policy=AlphaPolicy.CONSTANT)
    assert {cell.fill.alpha for cell in scene.cells} == {0.7}


def test_scene_to_dict_is_json_serialisable() -> None:
    scene = project_scene(MESH, GEOMETRY, {"temp": {"region1": [10, 20, 30]}}, "temp")
    payload = json.loads(json.dumps(scene.to_dict()))
    assert payload["value_range"] == [10.0, 30.0]
    assert payload["cells"][1]["color"] == "#ffffff"
    assert payload["geometry"][0]["name"] == "north"


def test_projector_reads_store_snapshots_and_caches_by_identity() -> None:
    store = FieldStore()
    store.apply_update(ReplaceUpdate("mesh", MESH))
    store.apply_update(ReplaceUpdate("value_on_mesh", {"temp": {"region1": [10, 20, 30]}}))
    projector = SceneProjector()

    snap = store.snapshot()
    first = projector.project(snap, "temp")
    assert projector.project(snap, "temp") is first
    assert projector.value_names(snap) == ["temp"]

    store.apply_update(ReplaceUpdate("value_on_mesh", {"temp": {"region1": [0, 20, 40]}}))
    second = projector.project(store.snapshot(), "temp")
    assert second is not first
    assert second.value_range == ValueRange(0.0, 40.0)
    assert first.value_range == ValueRange(10.0, 30.0)


def test_projector_never_reuses_scene_for_recycled_values() -> None:
    store = FieldStore()
    store.apply_update(ReplaceUpdate("mesh", MESH))
    projector = SceneProjector()

    for step in range(200):
        low = float(step)
        store.apply_update(ReplaceUpdate("value_on_mesh", {"temp": {"region1": [low, low + 1, low + 2]}}))
        scene = projector.project(store.snapshot(), "temp")
        assert scene.value_range == ValueRange(low, low + 2)

        store.apply_update(ReplaceUpdate("value_on_mesh", {"other": {"region1": [0, 1, 2]}}))
        projector.value_names(store.snapshot())
        gc.collect()
