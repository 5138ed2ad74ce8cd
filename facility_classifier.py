"""
Facility classification from OSM tags.

Each tracked category has one independent predicate over a feature's tag
set (and, for traffic corridors, its geometry kind).  A feature belongs to
every category whose predicate matches; nothing forces a single "best"
category.  Route definitions are metadata, not places, and are excluded
before any predicate runs.
"""

from typing import Callable, FrozenSet, Mapping, Optional, Tuple

from geometry import GeometryKind
from scouting_config import DEFAULT_CONFIG, ScoutingConfig

Tags = Mapping[str, str]
Predicate = Callable[[Tags, GeometryKind], bool]


# =============================================================================
# TAG VALUE SETS
# =============================================================================

ROUTE_TYPES = frozenset({"route", "route_master"})

HOSPITAL_AMENITIES = frozenset({"hospital", "clinic", "doctors"})

AEROWAY_VALUES = frozenset({
    "aerodrome", "airport", "heliport", "helipad", "runway", "taxiway",
})

SCHOOL_AMENITIES = frozenset({"school", "college", "university", "kindergarten"})
SCHOOL_LEVEL_TAGS = ("school", "isced:level")

TRANSIT_AMENITIES = frozenset({"bus_station", "ferry_terminal", "public_transport"})
PUBLIC_TRANSPORT_VALUES = frozenset({"station", "stop_position", "platform", "stop_area"})
RAILWAY_VALUES = frozenset({
    "station", "stop", "halt", "tram_stop", "light_rail", "subway_entrance",
})

MAJOR_HIGHWAYS = frozenset({
    "motorway", "motorway_link",
    "trunk", "trunk_link",
    "primary", "primary_link",
    "secondary", "secondary_link",
})


# =============================================================================
# PREDICATES
# =============================================================================

def _has_value(tags: Tags, key: str) -> bool:
    return bool(tags.get(key))


def is_route_definition(tags: Tags) -> bool:
    return tags.get("type") in ROUTE_TYPES


def is_hospital(tags: Tags, kind: GeometryKind) -> bool:
    return (
        tags.get("amenity") in HOSPITAL_AMENITIES
        or tags.get("healthcare") == "hospital"
    )


def is_fire_station(tags: Tags, kind: GeometryKind) -> bool:
    return tags.get("amenity") == "fire_station"


def is_police_station(tags: Tags, kind: GeometryKind) -> bool:
    return tags.get("amenity") == "police"


def is_airport(tags: Tags, kind: GeometryKind) -> bool:
    return tags.get("aeroway") in AEROWAY_VALUES


def is_school(tags: Tags, kind: GeometryKind) -> bool:
    if tags.get("amenity") in SCHOOL_AMENITIES:
        return True
    return any(_has_value(tags, key) for key in SCHOOL_LEVEL_TAGS)


def is_transit_hub(tags: Tags, kind: GeometryKind) -> bool:
    return (
        tags.get("amenity") in TRANSIT_AMENITIES
        or tags.get("public_transport") in PUBLIC_TRANSPORT_VALUES
        or tags.get("highway") == "bus_stop"
        or tags.get("railway") in RAILWAY_VALUES
    )


def is_construction(tags: Tags, kind: GeometryKind) -> bool:
    return (
        tags.get("landuse") == "construction"
        or _has_value(tags, "construction")
        or tags.get("building") == "construction"
    )


def is_traffic_corridor(tags: Tags, kind: GeometryKind) -> bool:
    # Area-kind highways are route aggregates, not road segments.
    return tags.get("highway") in MAJOR_HIGHWAYS and kind is not GeometryKind.AREA


# Evaluated in order; the order matches CATEGORY_CONFIG.
CATEGORY_PREDICATES: Tuple[Tuple[str, Predicate], ...] = (
    ("hospitals", is_hospital),
    ("fire_stations", is_fire_station),
    ("police_stations", is_police_station),
    ("airports", is_airport),
    ("schools", is_school),
    ("transit", is_transit_hub),
    ("construction", is_construction),
    ("traffic", is_traffic_corridor),
)


# =============================================================================
# PUBLIC API
# =============================================================================

def classify_feature(
    tags: Optional[Tags],
    kind: GeometryKind,
    config: ScoutingConfig = DEFAULT_CONFIG,
) -> FrozenSet[str]:
    """Return the set of configured categories a feature belongs to.

    An empty set means "not a tracked facility".  Categories missing from
    *config* are never returned, so a synthetic config can narrow the set.
    """
    if not tags or is_route_definition(tags):
        return frozenset()

    configured = set(config.category_keys())
    return frozenset(
        key
        for key, predicate in CATEGORY_PREDICATES
        if key in configured and predicate(tags, kind)
    )
