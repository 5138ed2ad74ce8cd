"""
Time input parsing for scouting sessions.

Two input forms:

  - Clock time: hour (1-12), minute (0-59) and an AM/PM flag, as typed
    into the scouting form.  Parses to a TimeSelection or None.  "Both
    fields blank" is not an error; it means no time constraint, and
    callers tell the two apart with time_input_state().
  - Duration: a days/hours pair.  Never fails; bad fields become 0.
"""

import datetime as dt
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

# School drop-off (8-9 AM) and pick-up (3-4 PM) windows, as hour24 values.
SCHOOL_PEAK_HOURS = (8, 15)

# ASCII digits only; rejects "1_0", " 1 2" and non-Latin numerals.
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


class TimeInputState(str, Enum):
    EMPTY = "empty"       # nothing typed; no time constraint
    VALID = "valid"
    INVALID = "invalid"   # something typed that does not parse


@dataclass(frozen=True)
class TimeSelection:
    hour12: int     # 1-12
    hour24: int     # 0-23
    minute: int     # 0-59
    period: str     # "AM" | "PM"

    @property
    def minute_padded(self) -> str:
        return f"{self.minute:02d}"

    @property
    def label(self) -> str:
        return f"{self.hour12}:{self.minute_padded} {self.period}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour12": self.hour12,
            "hour24": self.hour24,
            "minute": self.minute,
            "minute_padded": self.minute_padded,
            "period": self.period,
            "label": self.label,
        }


@dataclass(frozen=True)
class DurationWindow:
    days: int = 0
    hours: int = 0

    @property
    def total_hours(self) -> int:
        return self.days * 24 + self.hours

    def to_dict(self) -> Dict[str, int]:
        return {"days": self.days, "hours": self.hours, "total_hours": self.total_hours}


# =============================================================================
# PARSING
# =============================================================================

def _parse_int(text) -> Optional[int]:
    """Strict integer parse: "07" -> 7, "7a" / "" / None -> None."""
    if text is None:
        return None
    if isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text
    text = str(text).strip()
    if not _INT_PATTERN.fullmatch(text):
        return None
    return int(text)


def _is_blank(text) -> bool:
    return text is None or str(text).strip() == ""


def normalize_period(period) -> str:
    """"AM" (any case) is AM; anything else, including blank, is PM."""
    if isinstance(period, str) and period.strip().upper() == "AM":
        return "AM"
    return "PM"


def parse_time_input(hour_text, minute_text, period="PM") -> Optional[TimeSelection]:
    """Parse 12-hour clock fields into a TimeSelection.

    Returns None for non-numeric or out-of-range values and when either
    field is blank.  12 AM maps to hour24 0 (midnight), 12 PM to 12.
    """
    hour = _parse_int(hour_text)
    minute = _parse_int(minute_text)
    if hour is None or minute is None:
        return None
    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        return None

    normalized = normalize_period(period)
    hour24 = hour % 12
    if normalized == "PM":
        hour24 += 12

    return TimeSelection(hour12=hour, hour24=hour24, minute=minute, period=normalized)


def has_time_input(hour_text, minute_text) -> bool:
    return not _is_blank(hour_text) or not _is_blank(minute_text)


def time_input_state(hour_text, minute_text, period="PM") -> TimeInputState:
    if not has_time_input(hour_text, minute_text):
        return TimeInputState.EMPTY
    if parse_time_input(hour_text, minute_text, period) is None:
        return TimeInputState.INVALID
    return TimeInputState.VALID


def _parse_non_negative(text) -> int:
    value = _parse_int(text)
    if value is None or value < 0:
        return 0
    return value


def parse_duration(days_text, hours_text) -> DurationWindow:
    """Parse a days/hours pair, clamping blank, invalid or negative fields to 0."""
    return DurationWindow(
        days=_parse_non_negative(days_text),
        hours=_parse_non_negative(hours_text),
    )


# =============================================================================
# HELPERS
# =============================================================================

def selection_datetime(selection: TimeSelection, on_date: Optional[dt.date] = None) -> dt.datetime:
    """Naive local datetime for *selection* on *on_date* (default: today)."""
    on_date = on_date or dt.date.today()
    return dt.datetime.combine(on_date, dt.time(selection.hour24, selection.minute))


def overlaps_school_peak(selection: Optional[TimeSelection]) -> bool:
    """True when the selected time falls in a school drop-off or pick-up hour."""
    if selection is None:
        return False
    return selection.hour24 in SCHOOL_PEAK_HOURS
