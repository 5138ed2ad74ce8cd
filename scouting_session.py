"""
Scouting session state.

Owns the inputs a user can change (scouting point, radius, layer
visibility, time fields) and re-derives the facility aggregation from
scratch whenever one of them changes.  The aggregation attribute is
swapped in one assignment, so readers see either the old result or the
new one, never a mix.

Weather and traffic lookups run outside the session.  Each lookup takes a
FetchToken before it starts and hands its result back with that token;
if the point or radius (or, for traffic, the time) changed in the
meantime the result is discarded instead of overwriting newer state.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from facility_aggregator import (
    FacilityAggregation,
    FeatureIndex,
    aggregate_facilities,
    validate_radius,
)
from report import AnalysisResult, build_narrative_context, compose_analysis
from scouting_config import ScoutingConfig, ScoutingPoint
from time_window import TimeInputState, TimeSelection, parse_time_input, time_input_state

logger = logging.getLogger(__name__)

FETCH_WEATHER = "weather"
FETCH_TRAFFIC = "traffic"


class NoScoutingPointError(Exception):
    """Raised when an analysis is requested before a point is selected."""

    pass


@dataclass(frozen=True)
class FetchToken:
    kind: str
    location_generation: int
    time_generation: int


class ScoutingSession:
    def __init__(self, index: FeatureIndex, config: Optional[ScoutingConfig] = None):
        self.config = config or index.config
        self._index = index
        self._lock = threading.Lock()

        self.point: Optional[ScoutingPoint] = None
        self.radius_m: float = self.config.default_radius_m
        self.visibility: Dict[str, bool] = {key: True for key in self.config.category_keys()}
        self.hour_text = ""
        self.minute_text = ""
        self.period = "PM"

        self._location_generation = 0
        self._time_generation = 0

        self.weather: Optional[Any] = None
        self.traffic: Optional[Any] = None
        self.analysis_result: Optional[AnalysisResult] = None
        self.aggregation: FacilityAggregation = self._aggregate()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _aggregate(self) -> FacilityAggregation:
        return aggregate_facilities(
            self._index, self.point, self.radius_m, self.visibility, self.config,
        )

    def _recompute(self) -> None:
        self.aggregation = self._aggregate()

    @property
    def time_selection(self) -> Optional[TimeSelection]:
        return parse_time_input(self.hour_text, self.minute_text, self.period)

    @property
    def time_state(self) -> TimeInputState:
        return time_input_state(self.hour_text, self.minute_text, self.period)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _location_changed(self) -> None:
        with self._lock:
            self._location_generation += 1
            self.weather = None
            self.traffic = None
        self.analysis_result = None
        self._recompute()

    def select_point(self, lat, lon) -> ScoutingPoint:
        """Move the scouting point.

        Raises OutOfBoundsError (leaving the current point in place) when
        the new point is outside the configured boundary.
        """
        point = self.config.bounds.point(lat, lon)
        if point != self.point:
            self.point = point
            self._location_changed()
        return point

    def clear_point(self) -> None:
        if self.point is not None:
            self.point = None
            self._location_changed()

    def set_radius(self, radius_m) -> None:
        radius_m = validate_radius(radius_m)
        if radius_m != self.radius_m:
            self.radius_m = radius_m
            self._location_changed()

    def set_visibility(self, key: str, visible: bool) -> None:
        self.config.category(key)  # KeyError for unknown categories
        self.visibility = {**self.visibility, key: bool(visible)}
        self._recompute()

    def toggle_layer(self, key: str) -> bool:
        visible = not self.visibility.get(key, True)
        self.set_visibility(key, visible)
        return visible

    def set_time_fields(self, hour_text="", minute_text="", period="PM") -> None:
        self.hour_text = hour_text if hour_text is not None else ""
        self.minute_text = minute_text if minute_text is not None else ""
        self.period = period
        with self._lock:
            self._time_generation += 1
            self.traffic = None

    def replace_index(self, index: FeatureIndex) -> None:
        """Swap in a re-fetched feature set and recompute."""
        self._index = index
        self._recompute()

    # ------------------------------------------------------------------
    # Dependent fetches
    # ------------------------------------------------------------------

    def begin_fetch(self, kind: str) -> FetchToken:
        with self._lock:
            return FetchToken(kind, self._location_generation, self._time_generation)

    def is_current(self, token: FetchToken) -> bool:
        if token.location_generation != self._location_generation:
            return False
        if token.kind == FETCH_TRAFFIC and token.time_generation != self._time_generation:
            return False
        return True

    def _apply(self, token: FetchToken, attr: str, value) -> bool:
        with self._lock:
            if self.point is None or not self.is_current(token):
                logger.info(
                    "Discarding superseded %s result (generation %d, now %d)",
                    token.kind, token.location_generation, self._location_generation,
                )
                return False
            setattr(self, attr, value)
            return True

    def apply_weather(self, token: FetchToken, weather) -> bool:
        return self._apply(token, "weather", weather)

    def apply_traffic(self, token: FetchToken, traffic) -> bool:
        return self._apply(token, "traffic", traffic)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self) -> AnalysisResult:
        """Compose a fresh AnalysisResult from the current state.

        Radius and time selection are frozen into the result; later edits
        clear it rather than changing it.
        """
        if self.point is None:
            raise NoScoutingPointError("Choose a location before running the analysis")
        result = compose_analysis(
            self.aggregation, self.radius_m, self.time_selection, self.config,
        )
        self.analysis_result = result
        return result

    def narrative_context(self) -> Dict[str, Any]:
        result = self.analysis_result or self.analyze()
        weather = self.weather.to_dict() if self.weather is not None else None
        traffic = self.traffic.to_dict() if self.traffic is not None else None
        return build_narrative_context(
            result, self.aggregation, weather=weather, traffic=traffic, config=self.config,
        )
