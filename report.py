"""
Analysis report composition.

Turns a FacilityAggregation into an AnalysisResult: an immutable snapshot
of the totals, the busiest category, and the radius and time selection in
effect when the user asked for the analysis.  Later changes to radius or
time never touch an existing snapshot; callers compose a new one.

Also builds the plain-dict context handed to the external narrative
generator.  Nothing here holds live references or network handles, so
every output can be JSON-serialized as an audit record.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from facility_aggregator import FacilityAggregation
from scouting_config import DEFAULT_CONFIG, ScoutingConfig
from time_window import TimeSelection, overlaps_school_peak

NARRATIVE_NEAREST_LIMIT = 10


@dataclass(frozen=True)
class BusiestCategory:
    key: str
    label: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "count": self.count}


@dataclass(frozen=True)
class AnalysisResult:
    total: int
    radius_m: float
    time_selection: Optional[TimeSelection]
    busiest: Optional[BusiestCategory]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "radius_m": self.radius_m,
            "time_selection": self.time_selection.to_dict() if self.time_selection else None,
            "busiest": self.busiest.to_dict() if self.busiest else None,
        }


def busiest_category(
    counts: Mapping[str, int],
    config: ScoutingConfig = DEFAULT_CONFIG,
) -> Optional[BusiestCategory]:
    """Category with the strictly highest non-zero count.

    Walks categories in configuration order and only replaces the leader on
    a strictly greater count, so ties go to the earlier category.  Returns
    None when every count is zero.
    """
    best: Optional[BusiestCategory] = None
    for category in config.categories:
        count = counts.get(category.key, 0)
        if count > 0 and (best is None or count > best.count):
            best = BusiestCategory(key=category.key, label=category.label, count=count)
    return best


def compose_analysis(
    aggregation: FacilityAggregation,
    radius_m: float,
    time_selection: Optional[TimeSelection],
    config: ScoutingConfig = DEFAULT_CONFIG,
) -> AnalysisResult:
    return AnalysisResult(
        total=aggregation.total,
        radius_m=radius_m,
        time_selection=time_selection,
        busiest=busiest_category(aggregation.counts, config),
    )


def summarize_time_selection(result: Optional[AnalysisResult]) -> str:
    if result is None or result.time_selection is None:
        return "Not specified"
    return result.time_selection.label


def build_narrative_context(
    result: AnalysisResult,
    aggregation: FacilityAggregation,
    weather: Optional[Mapping[str, Any]] = None,
    traffic: Optional[Mapping[str, Any]] = None,
    config: ScoutingConfig = DEFAULT_CONFIG,
) -> Dict[str, Any]:
    """Plain-dict payload for the narrative/advice generator.

    Weather and traffic are optional serialized summaries; they are left
    out when the lookups had nothing (or were superseded).
    """
    counts_by_label = {
        category.label: aggregation.counts.get(category.key, 0)
        for category in config.categories
    }
    nearest = [
        {
            "name": f.name,
            "type": f.type_label,
            "distance": f.distance_label,
        }
        for f in aggregation.top(NARRATIVE_NEAREST_LIMIT)
    ]

    schools_nearby = aggregation.counts.get("schools", 0) > 0
    context: Dict[str, Any] = {
        "analysis": result.to_dict(),
        "time": summarize_time_selection(result),
        "counts_by_category": counts_by_label,
        "nearest_facilities": nearest,
        "school_peak_overlap": schools_nearby and overlaps_school_peak(result.time_selection),
    }
    if weather:
        context["weather"] = dict(weather)
    if traffic:
        context["traffic"] = dict(traffic)
    return context
