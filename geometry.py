"""
Geometry resolution for raw map features.

Turns the loosely-typed elements of an Overpass JSON response into
immutable RawFeature records and derives one representative coordinate
per feature:

  - Points use their own coordinate.
  - Lines and areas use the upstream-supplied center when present.  Exact
    polygon centroids are materially better than a vertex mean and differ
    from it for non-convex shapes, so the center always wins.
  - Otherwise, the arithmetic mean of the member points that resolve
    against the same response's point table.  Members missing from the
    table are skipped, not treated as zero.

Features that cannot be resolved are dropped silently. Upstream map data is
noisy and partial; one bad element must never fail a batch.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class GeometryKind(str, Enum):
    POINT = "point"
    LINE = "line"
    AREA = "area"


# Overpass element type -> geometry kind
ELEMENT_KINDS = {
    "node": GeometryKind.POINT,
    "way": GeometryKind.LINE,
    "relation": GeometryKind.AREA,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class RawFeature:
    """One upstream feature, exactly as received (never mutated)."""
    feature_id: Any
    kind: GeometryKind
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    lat: Optional[float] = None
    lon: Optional[float] = None
    center: Optional[Tuple[float, float]] = None
    member_ids: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class ResolvedLocation:
    feature_id: Any
    lat: float
    lon: float


# =============================================================================
# PARSING: Overpass JSON elements -> RawFeature
# =============================================================================

def _coerce_coord(value) -> Optional[float]:
    """Return value as a finite float, or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _is_ref(value) -> bool:
    """Element ids are ints upstream; strings are accepted for synthetic data."""
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def _coerce_tags(raw) -> Mapping[str, str]:
    if not isinstance(raw, dict):
        return MappingProxyType({})
    tags = {
        str(k): str(v)
        for k, v in raw.items()
        if v is not None
    }
    return MappingProxyType(tags)


def raw_feature_from_element(element: Dict[str, Any]) -> Optional[RawFeature]:
    """Convert one Overpass element into a RawFeature.

    Returns None for elements that are not usable at all (unknown type,
    missing id).  Missing coordinates are left as None for the resolver
    to deal with.
    """
    if not isinstance(element, dict):
        return None

    kind = ELEMENT_KINDS.get(element.get("type"))
    feature_id = element.get("id")
    if kind is None or not _is_ref(feature_id):
        return None

    center = None
    raw_center = element.get("center")
    if isinstance(raw_center, dict):
        c_lat = _coerce_coord(raw_center.get("lat"))
        c_lon = _coerce_coord(raw_center.get("lon"))
        if c_lat is not None and c_lon is not None:
            center = (c_lat, c_lon)

    member_ids: Tuple[Any, ...] = ()
    if kind is GeometryKind.LINE:
        nodes = element.get("nodes")
        if isinstance(nodes, list):
            member_ids = tuple(n for n in nodes if _is_ref(n))
    elif kind is GeometryKind.AREA:
        members = element.get("members")
        if isinstance(members, list):
            member_ids = tuple(
                m.get("ref")
                for m in members
                if isinstance(m, dict) and m.get("type") == "node" and _is_ref(m.get("ref"))
            )

    return RawFeature(
        feature_id=feature_id,
        kind=kind,
        tags=_coerce_tags(element.get("tags")),
        lat=_coerce_coord(element.get("lat")),
        lon=_coerce_coord(element.get("lon")),
        center=center,
        member_ids=member_ids,
    )


def parse_elements(elements: Iterable[Any]) -> List[RawFeature]:
    """Convert a batch of Overpass elements, skipping malformed entries."""
    features: List[RawFeature] = []
    malformed = 0
    for element in elements or []:
        feature = raw_feature_from_element(element)
        if feature is None:
            malformed += 1
            logger.debug("Skipping malformed element: %r", element)
            continue
        features.append(feature)

    if malformed:
        logger.info(
            "Parsed %d features, skipped %d malformed elements",
            len(features), malformed,
        )
    return features


# =============================================================================
# RESOLUTION
# =============================================================================

def build_point_lookup(features: Iterable[RawFeature]) -> Dict[Any, Tuple[float, float]]:
    """Build the id -> (lat, lon) table of point features.

    Built once per fetch and shared by every line/area resolution.
    """
    lookup: Dict[Any, Tuple[float, float]] = {}
    for feature in features:
        if (
            feature.kind is GeometryKind.POINT
            and feature.lat is not None
            and feature.lon is not None
        ):
            lookup[feature.feature_id] = (feature.lat, feature.lon)
    return lookup


def resolve_location(
    feature: RawFeature,
    point_lookup: Mapping[Any, Tuple[float, float]],
) -> Optional[ResolvedLocation]:
    """Derive one representative coordinate, or None if unresolvable."""
    if feature.kind is GeometryKind.POINT:
        if feature.lat is None or feature.lon is None:
            return None
        return ResolvedLocation(feature.feature_id, feature.lat, feature.lon)

    if feature.center is not None:
        lat, lon = feature.center
        return ResolvedLocation(feature.feature_id, lat, lon)

    sum_lat = 0.0
    sum_lon = 0.0
    count = 0
    for member_id in feature.member_ids:
        coord = point_lookup.get(member_id)
        if coord is None:
            continue
        sum_lat += coord[0]
        sum_lon += coord[1]
        count += 1

    if count == 0:
        return None

    return ResolvedLocation(feature.feature_id, sum_lat / count, sum_lon / count)
