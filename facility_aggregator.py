"""
Facility aggregation: per-category counts and a distance-ranked list.

Two stages:

  1. index_features() runs once per fetched feature set.  It builds the
     point lookup table once, then resolves and classifies every feature
     exactly once, dropping anything unresolvable or untracked.
  2. aggregate_facilities() runs on every change of scouting point,
     radius or visibility flags.  It is a pure function of its inputs and
     rebuilds the whole result from scratch; nothing is patched in place.

A feature matching several categories yields one Facility per category,
all sharing the same feature_id and coordinates.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from distance import distance_in_meters, format_distance
from facility_classifier import classify_feature
from geometry import RawFeature, build_point_lookup, resolve_location
from scouting_config import DEFAULT_CONFIG, ScoutingConfig, ScoutingPoint

logger = logging.getLogger(__name__)

FALLBACK_NAME = "Unnamed"


# =============================================================================
# NAME / ADDRESS EXTRACTION
# =============================================================================

def _addr_full(tags: Mapping[str, str]) -> str:
    return tags.get("addr:full", "")


def _addr_number_street(tags: Mapping[str, str]) -> str:
    parts = [tags.get("addr:housenumber", ""), tags.get("addr:street", "")]
    return " ".join(p for p in parts if p)


def _addr_street(tags: Mapping[str, str]) -> str:
    return tags.get("addr:street", "")


# Evaluated in order; the first non-empty result wins.
ADDRESS_RULES: Tuple[Callable[[Mapping[str, str]], str], ...] = (
    _addr_full,
    _addr_number_street,
    _addr_street,
)

NAME_KEYS = ("name", "ref")


def extract_name(tags: Mapping[str, str]) -> str:
    for key in NAME_KEYS:
        if tags.get(key):
            return tags[key]
    return FALLBACK_NAME


def extract_address(tags: Mapping[str, str]) -> str:
    """Best-effort street address; "" when no rule produces one."""
    for rule in ADDRESS_RULES:
        value = rule(tags)
        if value:
            return value
    return ""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ClassifiedFeature:
    """A feature resolved to one coordinate and tagged with its categories."""
    feature_id: Any
    lat: float
    lon: float
    name: str
    address: str
    categories: Tuple[str, ...]  # configuration order


@dataclass(frozen=True)
class FeatureIndex:
    """Every tracked, resolvable feature of one fetch."""
    features: Tuple[ClassifiedFeature, ...]
    config: ScoutingConfig = DEFAULT_CONFIG
    skipped_unresolvable: int = 0
    skipped_untracked: int = 0

    def __len__(self) -> int:
        return len(self.features)


@dataclass(frozen=True)
class Facility:
    """One (feature, category) pair within the radius, ready to render."""
    feature_id: Any
    category: str
    lat: float
    lon: float
    name: str
    address: str
    distance_m: int
    category_label: str
    color: str
    type_label: str

    @property
    def distance_label(self) -> str:
        return format_distance(self.distance_m)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "category": self.category,
            "category_label": self.category_label,
            "type_label": self.type_label,
            "color": self.color,
            "name": self.name,
            "address": self.address,
            "lat": self.lat,
            "lon": self.lon,
            "distance_m": self.distance_m,
            "distance_label": self.distance_label,
        }


@dataclass(frozen=True)
class FacilityAggregation:
    """Counts for every configured category plus the visible, sorted list."""
    counts: Dict[str, int]
    facilities: Tuple[Facility, ...] = ()

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def top(self, limit: int) -> Tuple[Facility, ...]:
        return self.facilities[:limit]

    def to_dict(self, limit: Optional[int] = None) -> Dict[str, Any]:
        shown = self.facilities if limit is None else self.top(limit)
        return {
            "counts": dict(self.counts),
            "total": self.total,
            "facilities": [f.to_dict() for f in shown],
        }


# =============================================================================
# INDEXING
# =============================================================================

def index_features(
    raw_features: Iterable[RawFeature],
    config: ScoutingConfig = DEFAULT_CONFIG,
) -> FeatureIndex:
    """Resolve and classify every feature once.

    The point lookup table is built once for the whole batch.  Untracked
    and unresolvable features are counted and dropped, never raised.
    """
    raw_features = list(raw_features)
    point_lookup = build_point_lookup(raw_features)
    order = {key: i for i, key in enumerate(config.category_keys())}

    indexed: List[ClassifiedFeature] = []
    untracked = 0
    unresolvable = 0

    for feature in raw_features:
        categories = classify_feature(feature.tags, feature.kind, config)
        if not categories:
            untracked += 1
            continue

        location = resolve_location(feature, point_lookup)
        if location is None:
            unresolvable += 1
            continue

        indexed.append(ClassifiedFeature(
            feature_id=feature.feature_id,
            lat=location.lat,
            lon=location.lon,
            name=extract_name(feature.tags),
            address=extract_address(feature.tags),
            categories=tuple(sorted(categories, key=order.__getitem__)),
        ))

    logger.info(
        "Indexed %d facilities (%d untracked, %d unresolvable)",
        len(indexed), untracked, unresolvable,
    )
    return FeatureIndex(
        features=tuple(indexed),
        config=config,
        skipped_unresolvable=unresolvable,
        skipped_untracked=untracked,
    )


# =============================================================================
# AGGREGATION
# =============================================================================

def validate_radius(radius_m) -> float:
    """Return radius_m as a float, or raise ValueError.

    A bad radius is a caller bug, not noisy data, so it fails fast instead
    of being clamped.
    """
    if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)):
        raise ValueError(f"radius must be a number of meters, got {radius_m!r}")
    if math.isnan(radius_m) or radius_m < 0:
        raise ValueError(f"radius must be non-negative, got {radius_m!r}")
    return float(radius_m)


def aggregate_facilities(
    index: FeatureIndex,
    point: Optional[ScoutingPoint],
    radius_m: float,
    visibility: Optional[Mapping[str, bool]] = None,
    config: Optional[ScoutingConfig] = None,
) -> FacilityAggregation:
    """Filter the index to a radius around *point* and rank by distance.

    Counts cover every configured category (zero-filled) and ignore
    visibility: they mean "within radius", not "currently shown".  The
    facility list holds only visible categories, ascending by distance,
    with category-then-discovery order breaking ties.

    A missing point is a valid idle state and yields all-zero counts.
    """
    radius_m = validate_radius(radius_m)
    config = config or index.config
    visibility = visibility or {}

    buckets: Dict[str, List[Tuple[int, ClassifiedFeature]]] = {
        key: [] for key in config.category_keys()
    }
    if point is None:
        return FacilityAggregation(counts=config.zero_counts())

    for feature in index.features:
        distance = distance_in_meters(point.lat, point.lon, feature.lat, feature.lon)
        if distance > radius_m:
            continue
        for key in feature.categories:
            bucket = buckets.get(key)
            if bucket is not None:
                bucket.append((distance, feature))

    counts = {key: len(bucket) for key, bucket in buckets.items()}

    facilities: List[Facility] = []
    for category in config.categories:
        if not visibility.get(category.key, True):
            continue
        for distance, feature in buckets[category.key]:
            facilities.append(Facility(
                feature_id=feature.feature_id,
                category=category.key,
                lat=feature.lat,
                lon=feature.lon,
                name=feature.name,
                address=feature.address,
                distance_m=distance,
                category_label=category.label,
                color=category.color,
                type_label=category.type_label,
            ))

    # list.sort is stable, so equal distances keep category-then-discovery order.
    facilities.sort(key=lambda f: f.distance_m)

    return FacilityAggregation(counts=counts, facilities=tuple(facilities))
