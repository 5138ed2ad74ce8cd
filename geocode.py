"""
Address search and reverse lookup, restricted to the scouting boundary.

Data source:
  - Nominatim (nominatim.openstreetmap.org).  The usage policy requires an
    identifying User-Agent; set NOMINATIM_USER_AGENT in production.

Forward results outside the bounding box are rejected: a geocoded point
must pass the same boundary check as a clicked one before it reaches the
facility pipeline.
"""

import logging
import time
from typing import Optional

import requests

from scout_trace import get_trace
from scouting_config import DEFAULT_CONFIG, ScoutingConfig, ScoutingPoint, env_setting

logger = logging.getLogger(__name__)

_API_BASE = "https://nominatim.openstreetmap.org"
_API_TIMEOUT = 10  # seconds


class GeocodeError(Exception):
    """Raised when an address cannot be turned into an in-bounds point."""

    pass


def _headers() -> dict:
    return {
        "Accept": "application/json",
        "User-Agent": env_setting("NOMINATIM_USER_AGENT", "soundscout/0.1"),
    }


def _get(path: str, params: dict, endpoint: str) -> requests.Response:
    trace = get_trace()
    t0 = time.time()
    resp = requests.get(
        f"{_API_BASE}/{path}",
        params=params,
        headers=_headers(),
        timeout=_API_TIMEOUT,
    )
    if trace:
        trace.record_api_call(
            service="nominatim",
            endpoint=endpoint,
            elapsed_ms=(time.time() - t0) * 1000,
            status_code=resp.status_code,
        )
    return resp


def search_address(query: str, config: ScoutingConfig = DEFAULT_CONFIG) -> ScoutingPoint:
    """Geocode *query* to a point inside the scouting boundary.

    Raises:
        GeocodeError: blank query, service failure, no match, or a match
            outside the boundary.
    """
    query = (query or "").strip()
    if not query:
        raise GeocodeError(f"Enter an address in {config.area_name} to search.")

    params = {
        "format": "json",
        "addressdetails": 1,
        "limit": 1,
        "city": config.area_name,
        "bounded": 1,
        "viewbox": config.bounds.viewbox(),
        "q": query,
    }
    try:
        resp = _get("search", params, "search")
        resp.raise_for_status()
        results = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Nominatim search failed for %r", query, exc_info=True)
        raise GeocodeError("Unable to reach the geocoding service.") from e

    if not isinstance(results, list) or not results:
        raise GeocodeError(f"No {config.area_name} matches found for that address.")

    top = results[0]
    try:
        lat = float(top["lat"])
        lon = float(top["lon"])
    except (KeyError, TypeError, ValueError) as e:
        raise GeocodeError("Geocoding service returned an unusable result.") from e

    if not config.bounds.contains(lat, lon):
        raise GeocodeError(f"Please choose an address located within {config.area_name}.")
    return ScoutingPoint(lat=lat, lon=lon)


def reverse_lookup(lat: float, lon: float) -> Optional[str]:
    """Display name for a point, or None.  Failures are logged, not raised."""
    params = {
        "format": "json",
        "lat": lat,
        "lon": lon,
        "zoom": 18,
        "addressdetails": 1,
    }
    try:
        resp = _get("reverse", params, "reverse")
        if not resp.ok:
            return None
        data = resp.json()
    except (requests.RequestException, ValueError):
        logger.info("Reverse geocoding failed for (%.4f, %.4f)", lat, lon, exc_info=True)
        return None

    if isinstance(data, dict) and data.get("display_name"):
        return data["display_name"]
    return None
