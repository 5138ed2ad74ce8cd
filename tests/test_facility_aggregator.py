"""Unit tests for facility_aggregator.py: indexing, radius filter, ranking.

Tests cover: name/address precedence, index drops, zero-filled counts,
visibility vs. counts, multi-category expansion, tie ordering, radius
validation, and determinism.
"""

import math

import pytest

from conftest import CENTER_LAT, CENTER_LON, build_index, node, way
from facility_aggregator import (
    FALLBACK_NAME,
    aggregate_facilities,
    extract_address,
    extract_name,
    validate_radius,
)
from scouting_config import DEFAULT_CONFIG, ScoutingPoint

CENTER = ScoutingPoint(CENTER_LAT, CENTER_LON)
METERS_PER_DEG_LAT = 6371000 * math.pi / 180


def _north(meters):
    return CENTER_LAT + meters / METERS_PER_DEG_LAT


# =========================================================================
# Name / address extraction
# =========================================================================

class TestExtractName:
    def test_name_first(self):
        assert extract_name({"name": "VGH", "ref": "H1"}) == "VGH"

    def test_ref_fallback(self):
        assert extract_name({"ref": "99"}) == "99"

    def test_unnamed(self):
        assert extract_name({}) == FALLBACK_NAME


class TestExtractAddress:
    def test_full_address_wins(self):
        tags = {"addr:full": "899 W 12th Ave", "addr:housenumber": "1", "addr:street": "Main"}
        assert extract_address(tags) == "899 W 12th Ave"

    def test_number_and_street(self):
        assert extract_address({"addr:housenumber": "900", "addr:street": "Burrard St"}) == "900 Burrard St"

    def test_street_only(self):
        assert extract_address({"addr:street": "Burrard St"}) == "Burrard St"

    def test_no_address(self):
        assert extract_address({"name": "x"}) == ""


# =========================================================================
# Indexing
# =========================================================================

class TestIndexFeatures:
    def test_drops_untracked_and_unresolvable(self):
        index = build_index([
            node(1, CENTER_LAT, CENTER_LON, amenity="hospital"),
            node(2, CENTER_LAT, CENTER_LON, amenity="cafe"),
            way(3, nodes=[404], amenity="school"),
        ])
        assert [f.feature_id for f in index.features] == [1]
        assert index.skipped_untracked == 1
        assert index.skipped_unresolvable == 1

    def test_way_resolved_through_untagged_nodes(self):
        index = build_index([
            node(10, 49.2800, -123.1200),
            node(11, 49.2810, -123.1200),
            way(20, nodes=[10, 11], highway="primary", name="Burrard St"),
        ])
        assert len(index) == 1
        feature = index.features[0]
        assert feature.lat == pytest.approx(49.2805)
        assert feature.categories == ("traffic",)

    def test_categories_in_config_order(self):
        index = build_index([
            node(1, CENTER_LAT, CENTER_LON, building="construction", amenity="school"),
        ])
        assert index.features[0].categories == ("schools", "construction")


# =========================================================================
# Aggregation
# =========================================================================

class TestAggregateFacilities:
    def test_hospital_in_school_out(self):
        index = build_index([
            node(1, _north(100), CENTER_LON, amenity="hospital", name="Near Clinic"),
            node(2, _north(5000), CENTER_LON, amenity="school", name="Far School"),
        ])
        result = aggregate_facilities(index, CENTER, 250)

        assert result.counts["hospitals"] == 1
        assert result.counts["schools"] == 0
        assert [f.name for f in result.facilities] == ["Near Clinic"]
        assert result.facilities[0].distance_m == 100

    def test_counts_zero_filled(self):
        index = build_index([])
        result = aggregate_facilities(index, CENTER, 250)
        assert result.counts == DEFAULT_CONFIG.zero_counts()
        assert result.facilities == ()
        assert result.total == 0

    def test_no_point_yields_zero_counts(self):
        index = build_index([node(1, CENTER_LAT, CENTER_LON, amenity="police")])
        result = aggregate_facilities(index, None, 250)
        assert result.total == 0
        assert set(result.counts) == set(DEFAULT_CONFIG.category_keys())

    def test_sorted_by_distance(self, downtown_index):
        result = aggregate_facilities(downtown_index, CENTER, 1500)
        distances = [f.distance_m for f in result.facilities]
        assert distances == sorted(distances)
        assert result.facilities[0].name == "St. Paul's"

    def test_boundary_distance_included(self):
        index = build_index([node(1, _north(200), CENTER_LON, amenity="police")])
        distance = aggregate_facilities(index, CENTER, 1000).facilities[0].distance_m
        assert aggregate_facilities(index, CENTER, distance).counts["police_stations"] == 1
        assert aggregate_facilities(index, CENTER, distance - 1).counts["police_stations"] == 0

    def test_zero_radius_keeps_colocated_facility(self):
        index = build_index([node(1, CENTER_LAT, CENTER_LON, amenity="police")])
        assert aggregate_facilities(index, CENTER, 0).counts["police_stations"] == 1

    def test_multi_category_feature_emits_one_record_per_category(self):
        index = build_index([
            node(7, CENTER_LAT, CENTER_LON, amenity="school", building="construction"),
        ])
        result = aggregate_facilities(index, CENTER, 100)

        assert [f.category for f in result.facilities] == ["schools", "construction"]
        assert {f.feature_id for f in result.facilities} == {7}
        assert len({(f.lat, f.lon) for f in result.facilities}) == 1
        assert result.counts["schools"] == 1
        assert result.counts["construction"] == 1

    def test_ties_keep_category_then_discovery_order(self):
        index = build_index([
            node(1, CENTER_LAT, CENTER_LON, amenity="fire_station", name="Hall A"),
            node(2, CENTER_LAT, CENTER_LON, amenity="hospital", name="Clinic"),
            node(3, CENTER_LAT, CENTER_LON, amenity="fire_station", name="Hall B"),
        ])
        result = aggregate_facilities(index, CENTER, 50)
        assert [f.name for f in result.facilities] == ["Clinic", "Hall A", "Hall B"]

    def test_hidden_category_keeps_count(self, downtown_index):
        shown = aggregate_facilities(downtown_index, CENTER, 1500)
        hidden = aggregate_facilities(downtown_index, CENTER, 1500, {"hospitals": False})

        assert hidden.counts == shown.counts
        assert all(f.category != "hospitals" for f in hidden.facilities)
        assert len(hidden.facilities) == len(shown.facilities) - 1

    def test_unknown_visibility_key_ignored(self, downtown_index):
        result = aggregate_facilities(downtown_index, CENTER, 1500, {"volcanoes": False})
        assert len(result.facilities) == 5

    def test_deterministic(self, downtown_index):
        first = aggregate_facilities(downtown_index, CENTER, 900, {"schools": False})
        second = aggregate_facilities(downtown_index, CENTER, 900, {"schools": False})
        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_to_dict_limit(self, downtown_index):
        payload = aggregate_facilities(downtown_index, CENTER, 1500).to_dict(limit=2)
        assert len(payload["facilities"]) == 2
        assert payload["total"] == 5
        assert payload["facilities"][0]["distance_label"].endswith(" m")


class TestValidateRadius:
    @pytest.mark.parametrize("bad", [-1, float("nan"), "250", None, True])
    def test_rejects_bad_radius(self, bad):
        with pytest.raises(ValueError):
            validate_radius(bad)

    def test_aggregate_rejects_negative_radius(self, downtown_index):
        with pytest.raises(ValueError):
            aggregate_facilities(downtown_index, CENTER, -5)

    def test_accepts_int(self):
        assert validate_radius(250) == 250.0
