from simview_client.mesh_model import (
    DEFAULT_NORMAL,
    changed_regions,
    parse_geometry,
    parse_meshes,
    parse_point,
    parse_values_on_mesh,
)


def test_parse_point_accepts_pairs_and_xy_mappings() -> None:
    assert parse_point([1, 2]) == (1.0, 2.0)
    assert parse_point([1, 2, 3]) == (1.0, 2.0)
    assert parse_point({"x": 0.5, "y": -1}) == (0.5, -1.0)
    assert parse_point("12") is None
    assert parse_point([1]) is None
    assert parse_point([1, "a"]) is None


def test_parse_meshes_keeps_point_indices_aligned() -> None:
    meshes = parse_meshes(
        {
            "region1": {"dx": 0.5, "normal": [0, 1, 0], "points": [[0, 0], "bad", [1, 1]]},
            "region2": {"points": [[2, 2]]},
            "broken": "not a mesh",
        }
    )
    region1 = meshes["region1"]
    assert region1.cell_size == 0.5
    assert region1.normal == (0.0, 1.0, 0.0)
    assert region1.points == ((0.0, 0.0), None, (1.0, 1.0))
    assert len(region1) == 3
    assert meshes["region2"].cell_size == 1.0
    assert meshes["region2"].normal == DEFAULT_NORMAL
    assert "broken" not in meshes


def test_zero_normal_falls_back_to_z() -> None:
    meshes = parse_meshes({"m": {"normal": [0, 0, 0], "points": []}})
    assert meshes["m"].normal == DEFAULT_NORMAL


def test_parse_geometry_skips_malformed_segments() -> None:
    geometry = parse_geometry({"north": [[[0, 1], [1, 1]], [[0, 0]], "junk"], "south": "nope"})
    assert geometry == {"north": [((0.0, 1.0), (1.0, 1.0))], "south": []}
    assert parse_geometry(None) == {}


def test_parse_values_on_mesh_marks_non_numeric_entries() -> None:
    values = parse_values_on_mesh({"temp": {"region1": [1, None, "x", 2.5]}, "bad": 3})
    assert values == {"temp": {"region1": [1.0, None, None, 2.5]}}


def test_changed_regions_reports_only_shared_regions_with_new_points() -> None:
    before = {"a": {"points": [[0, 0]]}, "b": {"points": [[1, 1]]}}
    after = {"a": {"points": [[0, 0], [1, 0]]}, "b": {"points": [[1, 1]]}, "c": {"points": []}}
    assert changed_regions(before, after) == ["a"]
    assert changed_regions(None, after) == []
