"""
Scouting configuration for SoundScout.

Owns the fixed category enumeration (with its display metadata), the
geographic boundary every scouting point must fall inside, and the radius
limits the UI offers.  Core functions take a ``config`` argument that
defaults to DEFAULT_CONFIG, so tests can swap in synthetic boundaries and
category sets.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import math
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


class OutOfBoundsError(ValueError):
    """Raised when a point falls outside the scouting boundary."""

    pass


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class CategoryConfig:
    """Static display metadata for one facility category."""
    key: str          # stable identifier, e.g. "fire_stations"
    label: str        # plural heading, e.g. "Fire Stations"
    icon_key: str     # marker icon used by the map layer
    color: str        # marker / badge color (hex)
    type_label: str   # singular, e.g. "Fire Station"


@dataclass(frozen=True)
class ScoutingPoint:
    """The location under analysis, in decimal degrees."""
    lat: float
    lon: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon rectangle approximating a city boundary."""
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat, lon) -> bool:
        """True if (lat, lon) is a real coordinate inside the box (edges included)."""
        if isinstance(lat, bool) or isinstance(lon, bool):
            return False
        if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            return False
        if math.isnan(lat) or math.isnan(lon):
            return False
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lon <= lon <= self.max_lon
        )

    def require(self, lat, lon) -> Tuple[float, float]:
        """Return (lat, lon) unchanged, or raise OutOfBoundsError.

        Never clamps: a point outside the box is rejected, not moved.
        """
        if not self.contains(lat, lon):
            raise OutOfBoundsError(
                f"Point ({lat}, {lon}) is outside the scouting boundary"
            )
        return float(lat), float(lon)

    def point(self, lat, lon) -> ScoutingPoint:
        """Build a ScoutingPoint, rejecting anything outside the box."""
        lat, lon = self.require(lat, lon)
        return ScoutingPoint(lat=lat, lon=lon)

    def viewbox(self) -> str:
        """Nominatim viewbox string: left,top,right,bottom."""
        return f"{self.min_lon},{self.max_lat},{self.max_lon},{self.min_lat}"


@dataclass(frozen=True)
class ScoutingConfig:
    """Top-level container for category metadata and boundary settings.

    A single module-level instance (DEFAULT_CONFIG) is the source of truth
    for the running service.
    """
    categories: Tuple[CategoryConfig, ...]
    bounds: BoundingBox
    area_name: str
    default_radius_m: int = 250
    min_radius_m: int = 50
    max_radius_m: int = 1500
    top_facilities_limit: int = 20

    def category_keys(self) -> Tuple[str, ...]:
        return tuple(c.key for c in self.categories)

    def category(self, key: str) -> CategoryConfig:
        for c in self.categories:
            if c.key == key:
                return c
        raise KeyError(f"Unknown category {key!r}")

    def zero_counts(self) -> Dict[str, int]:
        return {c.key: 0 for c in self.categories}


# =============================================================================
# DEFAULT_CONFIG: Vancouver, BC
# =============================================================================

CATEGORY_CONFIG = (
    CategoryConfig("hospitals", "Hospitals & Clinics", "hospital", "#ef4444", "Hospital or Clinic"),
    CategoryConfig("fire_stations", "Fire Stations", "fire_station", "#f97316", "Fire Station"),
    CategoryConfig("police_stations", "Police Stations", "police", "#3b82f6", "Police Station"),
    CategoryConfig("airports", "Airports & Helipads", "airport", "#8b5cf6", "Airport or Airfield"),
    CategoryConfig("schools", "Schools", "school", "#10b981", "School"),
    CategoryConfig("transit", "Public Transport", "transit", "#0ea5e9", "Transit Hub"),
    CategoryConfig("construction", "Construction Activity", "construction", "#facc15", "Construction Site"),
    CategoryConfig("traffic", "Traffic Corridors", "traffic", "#94a3b8", "Major Traffic Corridor"),
)

VANCOUVER_BOUNDS = BoundingBox(
    min_lat=49.198,
    max_lat=49.315,
    min_lon=-123.27,
    max_lon=-123.02,
)

DEFAULT_CONFIG = ScoutingConfig(
    categories=CATEGORY_CONFIG,
    bounds=VANCOUVER_BOUNDS,
    area_name=os.environ.get("SOUNDSCOUT_AREA_NAME", "Vancouver"),
)

# Validate at import time (ValueError, not assert, so validation is never
# stripped by python -O).
if len(set(DEFAULT_CONFIG.category_keys())) != len(CATEGORY_CONFIG):
    raise ValueError("Category keys in CATEGORY_CONFIG must be unique")


# =============================================================================
# Environment settings
# =============================================================================

def env_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read a setting from the environment (``.env`` loaded at import)."""
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()
