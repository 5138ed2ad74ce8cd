"""
City-wide facility data source.

Fetches every tracked facility inside the configured administrative area
with a single Overpass query, indexes it once, and keeps the index in
memory for the lifetime of the process.  Nothing is written to disk:
facility data never outlives the session that fetched it.

A failed fetch leaves the store empty and raises FacilityDataUnavailable;
the next call tries again.
"""

import logging
import threading
from typing import Optional

from facility_aggregator import FeatureIndex, index_features
from geometry import parse_elements
from overpass_http import OverpassQueryError, OverpassRateLimitError, overpass_query
from scout_trace import get_trace
from scouting_config import DEFAULT_CONFIG, ScoutingConfig

logger = logging.getLogger(__name__)

CITY_QUERY_TIMEOUT_S = 60


class FacilityDataUnavailable(Exception):
    """Raised when the facility feature set could not be fetched."""

    pass


# (element types, tag filter) pairs; one union member per combination.
_QUERY_FILTERS = (
    (("node", "way", "relation"), '["amenity"~"^(hospital|clinic)$"]'),
    (("node",), '["amenity"="doctors"]'),
    (("node", "way", "relation"), '["healthcare"="hospital"]'),
    (("node", "way", "relation"), '["amenity"="fire_station"]'),
    (("node", "way", "relation"), '["amenity"="police"]'),
    (("node", "way", "relation"), '["aeroway"~"^(aerodrome|airport|heliport|helipad|runway|taxiway)$"]'),
    (("node", "way", "relation"), '["amenity"~"^(school|college|university|kindergarten)$"]'),
    (("node", "way", "relation"), '["public_transport"]'),
    (("node", "way"), '["highway"="bus_stop"]'),
    (("node", "way", "relation"), '["amenity"~"^(bus_station|ferry_terminal)$"]'),
    (("node", "way"), '["railway"~"^(station|stop|halt|tram_stop|light_rail|subway_entrance)$"]'),
    (("node", "way", "relation"), '["landuse"="construction"]'),
    (("node", "way", "relation"), '["building"="construction"]'),
    (("way",), '["highway"~"^(motorway|motorway_link|trunk|trunk_link|primary|primary_link|secondary|secondary_link)$"]'),
)


def build_city_query(area_name: str, timeout_s: int = CITY_QUERY_TIMEOUT_S) -> str:
    """Overpass QL for every tracked tag family inside *area_name*."""
    lines = [
        f"[out:json][timeout:{timeout_s}];",
        f'area["name"="{area_name}"]["admin_level"="8"]["boundary"="administrative"]->.searchArea;',
        "(",
    ]
    for element_types, tag_filter in _QUERY_FILTERS:
        for element_type in element_types:
            lines.append(f"  {element_type}{tag_filter}(area.searchArea);")
    lines.append(");")
    lines.append("out center;")
    return "\n".join(lines)


def fetch_city_features(config: ScoutingConfig = DEFAULT_CONFIG) -> FeatureIndex:
    """Fetch, parse and index the city's facilities.

    Raises:
        FacilityDataUnavailable: if the Overpass request fails.
    """
    query = build_city_query(config.area_name)
    try:
        data = overpass_query(
            query,
            caller="city_facilities",
            timeout=CITY_QUERY_TIMEOUT_S + 30,
        )
    except (OverpassQueryError, OverpassRateLimitError) as e:
        logger.warning("Facility fetch failed for %s: %s", config.area_name, e)
        raise FacilityDataUnavailable(str(e)) from e

    elements = data.get("elements") if isinstance(data, dict) else None
    if not isinstance(elements, list):
        logger.warning("Overpass response for %s has no element list", config.area_name)
        elements = []

    features = parse_elements(elements)
    return index_features(features, config)


class FacilityStore:
    """Holds the facility index for one process session.

    Fetches lazily on first use and at most once at a time; concurrent
    callers wait for the in-flight fetch instead of issuing their own.
    """

    def __init__(self, config: ScoutingConfig = DEFAULT_CONFIG, fetcher=fetch_city_features):
        self.config = config
        self._fetcher = fetcher
        self._lock = threading.Lock()
        self._index: Optional[FeatureIndex] = None

    @property
    def loaded(self) -> bool:
        return self._index is not None

    def get_index(self) -> FeatureIndex:
        """Return the cached index, fetching it on first use (or after a failure)."""
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is None:
                self._index = self._load()
            return self._index

    def refresh(self) -> FeatureIndex:
        """Force a re-fetch.  On failure the previous index is kept."""
        with self._lock:
            self._index = self._load()
            return self._index

    def _load(self) -> FeatureIndex:
        trace = get_trace()
        if trace:
            with trace.stage("fetch_facilities"):
                index = self._fetcher(self.config)
        else:
            index = self._fetcher(self.config)
        logger.info("Facility store loaded %d facilities", len(index))
        return index


# Module-level singleton used by app.py
facility_store = FacilityStore()
