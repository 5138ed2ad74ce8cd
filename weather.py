"""
Current weather at the scouting point.

Wind and rain are the two weather conditions that matter most for an
outdoor recording, so the scouting report shows a one-line summary of
current conditions next to the facility list.

Data source:
  - Open-Meteo Forecast API (api.open-meteo.com), current_weather block.
    Free, no key required.

Returns None on any failure; weather is optional context and must never
block a facility analysis.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from scout_trace import get_trace

logger = logging.getLogger(__name__)

_API_BASE = "https://api.open-meteo.com/v1/forecast"
_API_TIMEOUT = 10  # seconds
_TIMEZONE = "America/Vancouver"

# WMO weather interpretation codes used by Open-Meteo
WEATHER_CODE_SUMMARY = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Rime fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Heavy drizzle",
    61: "Light rain",
    63: "Rain",
    65: "Heavy rain",
    66: "Freezing rain",
    67: "Heavy freezing rain",
    71: "Light snow",
    73: "Snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Light showers",
    81: "Showers",
    82: "Heavy showers",
    85: "Snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Severe thunderstorm",
}

CARDINALS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


@dataclass(frozen=True)
class CurrentWeather:
    temperature_c: Optional[float]
    wind_speed_kmh: Optional[float]
    wind_direction_deg: Optional[float]
    condition: str
    observed_at: str          # local ISO timestamp from the API, e.g. "2024-05-01T14:00"

    @property
    def wind_cardinal(self) -> str:
        return to_cardinal(self.wind_direction_deg)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature_c": self.temperature_c,
            "wind_speed_kmh": self.wind_speed_kmh,
            "wind_direction_deg": self.wind_direction_deg,
            "wind_cardinal": self.wind_cardinal,
            "condition": self.condition,
            "observed_at": self.observed_at,
        }


def describe_weather(code) -> str:
    return WEATHER_CODE_SUMMARY.get(code, "Conditions unavailable")


def to_cardinal(degrees) -> str:
    """Nearest 8-point compass direction, or "N/A"."""
    if isinstance(degrees, bool) or not isinstance(degrees, (int, float)):
        return "N/A"
    if not math.isfinite(degrees):
        return "N/A"
    return CARDINALS[int(math.floor(degrees / 45 + 0.5)) % 8]


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_current_weather(raw: Dict[str, Any]) -> Optional[CurrentWeather]:
    """Build CurrentWeather from an Open-Meteo response, or None."""
    current = raw.get("current_weather") if isinstance(raw, dict) else None
    if not isinstance(current, dict):
        return None
    return CurrentWeather(
        temperature_c=_number(current.get("temperature")),
        wind_speed_kmh=_number(current.get("windspeed")),
        wind_direction_deg=_number(current.get("winddirection")),
        condition=describe_weather(current.get("weathercode")),
        observed_at=str(current.get("time") or ""),
    )


def get_current_weather(lat: float, lon: float) -> Optional[CurrentWeather]:
    """Fetch current conditions for a point.  None on any failure."""
    trace = get_trace()
    t0 = time.time()
    params = {
        "latitude": lat,
        "longitude": lon,
        "current_weather": "true",
        "timezone": _TIMEZONE,
    }

    try:
        resp = requests.get(_API_BASE, params=params, timeout=_API_TIMEOUT)
        elapsed_ms = (time.time() - t0) * 1000

        if trace:
            trace.record_api_call(
                service="open_meteo",
                endpoint="forecast",
                elapsed_ms=elapsed_ms,
                status_code=resp.status_code,
                provider_status="OK" if resp.ok else "ERROR",
            )

        if not resp.ok:
            logger.warning(
                "Open-Meteo API returned %d for (%.4f, %.4f)",
                resp.status_code, lat, lon,
            )
            return None

        return parse_current_weather(resp.json())

    except requests.Timeout:
        logger.warning("Open-Meteo API timed out for (%.4f, %.4f)", lat, lon)
        if trace:
            trace.record_api_call(
                service="open_meteo",
                endpoint="forecast",
                elapsed_ms=(time.time() - t0) * 1000,
                status_code=0,
                provider_status="TIMEOUT",
            )
        return None
    except (requests.RequestException, ValueError):
        logger.warning(
            "Open-Meteo API request failed for (%.4f, %.4f)",
            lat, lon, exc_info=True,
        )
        return None


def serialize_for_result(weather: Optional[CurrentWeather]) -> Optional[dict]:
    if not weather:
        return None
    return weather.to_dict()
