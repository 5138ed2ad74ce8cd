"""Unit tests for geometry.py: Overpass element parsing and location resolution.

Tests cover: element conversion, malformed-element skipping, center
preference, member-mean fallback, and silent drops of unresolvable features.
"""

import pytest

from geometry import (
    GeometryKind,
    RawFeature,
    build_point_lookup,
    parse_elements,
    raw_feature_from_element,
    resolve_location,
)


# =========================================================================
# Element conversion
# =========================================================================

class TestRawFeatureFromElement:
    def test_node_becomes_point(self):
        f = raw_feature_from_element(
            {"type": "node", "id": 7, "lat": 49.28, "lon": -123.12, "tags": {"amenity": "police"}}
        )
        assert f.kind is GeometryKind.POINT
        assert (f.lat, f.lon) == (49.28, -123.12)
        assert f.tags["amenity"] == "police"

    def test_way_keeps_node_refs(self):
        f = raw_feature_from_element({"type": "way", "id": 9, "nodes": [1, 2, 3]})
        assert f.kind is GeometryKind.LINE
        assert f.member_ids == (1, 2, 3)

    def test_relation_keeps_only_node_members(self):
        f = raw_feature_from_element({
            "type": "relation",
            "id": 11,
            "members": [
                {"type": "node", "ref": 1},
                {"type": "way", "ref": 50},
                {"type": "node", "ref": 2},
            ],
        })
        assert f.kind is GeometryKind.AREA
        assert f.member_ids == (1, 2)

    def test_center_parsed(self):
        f = raw_feature_from_element(
            {"type": "way", "id": 3, "center": {"lat": 49.2, "lon": -123.1}}
        )
        assert f.center == (49.2, -123.1)

    def test_unknown_type_rejected(self):
        assert raw_feature_from_element({"type": "area", "id": 1}) is None

    def test_missing_id_rejected(self):
        assert raw_feature_from_element({"type": "node", "lat": 1.0, "lon": 2.0}) is None

    def test_non_dict_rejected(self):
        assert raw_feature_from_element("node") is None

    def test_tags_are_read_only(self):
        f = raw_feature_from_element({"type": "node", "id": 1, "tags": {"name": "A"}})
        with pytest.raises(TypeError):
            f.tags["name"] = "B"

    def test_bad_coordinates_left_none(self):
        f = raw_feature_from_element({"type": "node", "id": 1, "lat": "49.2", "lon": None})
        assert f.lat is None
        assert f.lon is None


class TestParseElements:
    def test_skips_malformed(self):
        features = parse_elements([
            {"type": "node", "id": 1, "lat": 49.0, "lon": -123.0},
            {"type": "bogus"},
            None,
            {"type": "way", "id": 2, "nodes": [1]},
        ])
        assert [f.feature_id for f in features] == [1, 2]

    def test_none_input(self):
        assert parse_elements(None) == []


# =========================================================================
# Resolution
# =========================================================================

def _point(fid, lat, lon):
    return RawFeature(feature_id=fid, kind=GeometryKind.POINT, lat=lat, lon=lon)


class TestResolveLocation:
    def test_point_uses_own_coordinate(self):
        p = _point(1, 49.25, -123.1)
        loc = resolve_location(p, {})
        assert (loc.lat, loc.lon) == (49.25, -123.1)

    def test_point_without_coordinates_unresolvable(self):
        p = RawFeature(feature_id=1, kind=GeometryKind.POINT)
        assert resolve_location(p, {}) is None

    def test_center_preferred_over_members(self):
        lookup = {1: (49.0, -123.0), 2: (49.2, -123.2)}
        line = RawFeature(
            feature_id=5, kind=GeometryKind.LINE,
            center=(49.5, -123.5), member_ids=(1, 2),
        )
        loc = resolve_location(line, lookup)
        assert (loc.lat, loc.lon) == (49.5, -123.5)

    def test_mean_of_members(self):
        lookup = {1: (49.0, -123.0), 2: (49.2, -123.2)}
        line = RawFeature(feature_id=5, kind=GeometryKind.LINE, member_ids=(1, 2))
        loc = resolve_location(line, lookup)
        assert loc.lat == pytest.approx(49.1)
        assert loc.lon == pytest.approx(-123.1)

    def test_missing_members_skipped_not_zeroed(self):
        lookup = {1: (49.0, -123.0)}
        line = RawFeature(feature_id=5, kind=GeometryKind.LINE, member_ids=(1, 99))
        loc = resolve_location(line, lookup)
        assert (loc.lat, loc.lon) == (49.0, -123.0)

    def test_area_members_averaged(self):
        lookup = {1: (49.0, -123.0), 2: (49.1, -123.1), 3: (49.2, -123.2)}
        area = RawFeature(feature_id=8, kind=GeometryKind.AREA, member_ids=(1, 2, 3))
        loc = resolve_location(area, lookup)
        assert loc.lat == pytest.approx(49.1)

    def test_no_resolvable_members_dropped(self):
        line = RawFeature(feature_id=5, kind=GeometryKind.LINE, member_ids=(98, 99))
        assert resolve_location(line, {}) is None

    def test_empty_members_dropped(self):
        area = RawFeature(feature_id=5, kind=GeometryKind.AREA)
        assert resolve_location(area, {1: (49.0, -123.0)}) is None


class TestBuildPointLookup:
    def test_only_points_with_coordinates(self):
        features = [
            _point(1, 49.0, -123.0),
            RawFeature(feature_id=2, kind=GeometryKind.POINT),
            RawFeature(feature_id=3, kind=GeometryKind.LINE, center=(49.1, -123.1)),
        ]
        assert build_point_lookup(features) == {1: (49.0, -123.0)}
