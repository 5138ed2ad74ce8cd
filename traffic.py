"""
Traffic flow near the scouting point.

Road traffic is the steadiest background noise source in a city, so the
scouting report pairs the facility list with the current (or time-of-day)
flow on the nearest road segment.

Data source:
  - TomTom Traffic Flow Segment Data API (requires TOMTOM_API_KEY).

Lookups return None on failure.  A missing key is reported as a reason
string by traffic_unavailable_reason() instead of making a request.
"""

import datetime as dt
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from scout_trace import get_trace
from scouting_config import env_setting
from time_window import TimeSelection, selection_datetime

logger = logging.getLogger(__name__)

_API_BASE = "https://api.tomtom.com/traffic/services/4/flowSegmentData/absolute/10/json"
_API_TIMEOUT = 10  # seconds

# currentSpeed / freeFlowSpeed ratios
LIGHT_TRAFFIC_RATIO = 0.8
MODERATE_TRAFFIC_RATIO = 0.55


@dataclass(frozen=True)
class TrafficFlow:
    current_speed: Optional[float]       # km/h
    free_flow_speed: Optional[float]     # km/h
    current_travel_time: Optional[float]     # seconds
    free_flow_travel_time: Optional[float]   # seconds
    confidence: Optional[float] = None
    road_closure: bool = False

    @property
    def level(self) -> str:
        return describe_traffic_level(self)

    @property
    def delay_label(self) -> str:
        return format_traffic_delay(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_speed_kmh": self.current_speed,
            "free_flow_speed_kmh": self.free_flow_speed,
            "current_travel_time_s": self.current_travel_time,
            "free_flow_travel_time_s": self.free_flow_travel_time,
            "confidence": self.confidence,
            "road_closure": self.road_closure,
            "level": self.level,
            "delay": self.delay_label,
        }


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def describe_traffic_level(flow: Optional[TrafficFlow]) -> str:
    if flow is None or flow.current_speed is None or flow.free_flow_speed is None:
        return "Unavailable"
    if flow.current_speed <= 0 or flow.free_flow_speed <= 0:
        return "Unavailable"

    ratio = flow.current_speed / flow.free_flow_speed
    if ratio >= LIGHT_TRAFFIC_RATIO:
        return "Light traffic"
    if ratio >= MODERATE_TRAFFIC_RATIO:
        return "Moderate traffic"
    return "Heavy congestion"


def format_traffic_delay(flow: Optional[TrafficFlow]) -> str:
    """Delay versus free flow: "45 sec", "2.5 min", "12 min"; em dash if unknown."""
    if (
        flow is None
        or flow.current_travel_time is None
        or flow.free_flow_travel_time is None
    ):
        return "—"

    delay_s = max(flow.current_travel_time - flow.free_flow_travel_time, 0)
    if delay_s >= 60:
        minutes = delay_s / 60
        if minutes >= 10:
            return f"{int(minutes + 0.5)} min"
        return f"{minutes:.1f} min"
    return f"{int(delay_s + 0.5)} sec"


def parse_flow_segment(raw: Dict[str, Any]) -> Optional[TrafficFlow]:
    segment = raw.get("flowSegmentData") if isinstance(raw, dict) else None
    if not isinstance(segment, dict):
        return None
    return TrafficFlow(
        current_speed=_number(segment.get("currentSpeed")),
        free_flow_speed=_number(segment.get("freeFlowSpeed")),
        current_travel_time=_number(segment.get("currentTravelTime")),
        free_flow_travel_time=_number(segment.get("freeFlowTravelTime")),
        confidence=_number(segment.get("confidence")),
        road_closure=bool(segment.get("roadClosure", False)),
    )


def traffic_unavailable_reason() -> Optional[str]:
    if not env_setting("TOMTOM_API_KEY"):
        return "Add TOMTOM_API_KEY to load traffic insights."
    return None


def get_traffic_flow(
    lat: float,
    lon: float,
    selection: Optional[TimeSelection] = None,
    on_date: Optional[dt.date] = None,
) -> Optional[TrafficFlow]:
    """Fetch flow for the road segment nearest to (lat, lon).

    With a time selection, asks for that local time on *on_date* (today
    by default).  Returns None when the key is missing or the call fails.
    """
    api_key = env_setting("TOMTOM_API_KEY")
    if not api_key:
        logger.info("TOMTOM_API_KEY not set; skipping traffic lookup")
        return None

    params = {
        "point": f"{lat},{lon}",
        "unit": "KMPH",
        "key": api_key,
    }
    if selection is not None:
        params["dateTime"] = selection_datetime(selection, on_date).isoformat()

    trace = get_trace()
    t0 = time.time()
    try:
        resp = requests.get(_API_BASE, params=params, timeout=_API_TIMEOUT)
        if trace:
            trace.record_api_call(
                service="tomtom",
                endpoint="flow_segment",
                elapsed_ms=(time.time() - t0) * 1000,
                status_code=resp.status_code,
                provider_status="OK" if resp.ok else "ERROR",
            )
        if not resp.ok:
            logger.warning(
                "TomTom flow API returned %d for (%.4f, %.4f)",
                resp.status_code, lat, lon,
            )
            return None

        flow = parse_flow_segment(resp.json())
        if flow is None:
            logger.info("No TomTom flow data for (%.4f, %.4f)", lat, lon)
        return flow

    except (requests.RequestException, ValueError):
        logger.warning(
            "TomTom flow request failed for (%.4f, %.4f)",
            lat, lon, exc_info=True,
        )
        return None


def serialize_for_result(flow: Optional[TrafficFlow]) -> Optional[dict]:
    if not flow:
        return None
    return flow.to_dict()
