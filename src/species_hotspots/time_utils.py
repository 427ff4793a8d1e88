"""
Time-window utilities for splitting observations into analysis periods.

Windows are half-open date ranges [start, end) on the ``observed_on``
column. The windows of one run must not overlap; that precondition is
checked up front so a bad window list fails before any spatial work.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from species_hotspots.errors import ConfigurationError

DateLike = Union[str, date, pd.Timestamp]


@dataclass(frozen=True)
class TimeWindow:
    """A labelled half-open date range [start, end)."""
    label: str
    start: pd.Timestamp
    end: pd.Timestamp

    @classmethod
    def from_bounds(cls, label: str, start: DateLike, end: DateLike) -> "TimeWindow":
        """Build a window from anything pandas can parse as a date."""
        try:
            start_ts = pd.Timestamp(start).normalize()
            end_ts = pd.Timestamp(end).normalize()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Window '{label}': unparseable date ({e})") from e
        if pd.isna(start_ts) or pd.isna(end_ts):
            raise ConfigurationError(f"Window '{label}': start and end are required")
        return cls(label=str(label), start=start_ts, end=end_ts)

    def contains(self, dates: pd.Series) -> pd.Series:
        """Boolean mask of dates inside the window. NaT is never inside."""
        return (dates >= self.start) & (dates < self.end)

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end


# =============================================================================
# Validation
# =============================================================================

def validate_time_windows(windows: Sequence[TimeWindow]) -> List[TimeWindow]:
    """
    Check a window list before any computation starts.

    Raises:
        ConfigurationError: On an empty list, duplicate labels, empty or
            inverted ranges, or overlapping windows
    """
    windows = list(windows)
    if not windows:
        raise ConfigurationError("At least one time window is required")

    labels = [w.label for w in windows]
    duplicates = sorted({l for l in labels if labels.count(l) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate time window labels: {duplicates}")

    for w in windows:
        if w.start >= w.end:
            raise ConfigurationError(
                f"Window '{w.label}' is empty: start {w.start.date()} >= end {w.end.date()}"
            )

    ordered = sorted(windows, key=lambda w: w.start)
    for earlier, later in zip(ordered, ordered[1:]):
        if earlier.overlaps(later):
            raise ConfigurationError(
                f"Time windows overlap: '{earlier.label}' "
                f"[{earlier.start.date()}, {earlier.end.date()}) and '{later.label}' "
                f"[{later.start.date()}, {later.end.date()})"
            )

    return windows


def time_windows_from_config(entries: Iterable[dict]) -> List[TimeWindow]:
    """
    Build windows from config entries such as
    ``{"label": "recent", "start": "2020-01-01", "end": "2025-01-01"}``.
    """
    windows = []
    for entry in entries or []:
        missing = [k for k in ("label", "start", "end") if k not in entry]
        if missing:
            raise ConfigurationError(f"Time window entry {entry} is missing {missing}")
        windows.append(TimeWindow.from_bounds(entry["label"], entry["start"], entry["end"]))
    return validate_time_windows(windows)


# =============================================================================
# Date Parsing
# =============================================================================

def parse_observed_dates(values: pd.Series) -> pd.Series:
    """
    Parse observation dates to midnight timestamps.

    Unparseable values become NaT. Timezone-aware inputs keep their local
    calendar date.
    """
    if pd.api.types.is_datetime64_any_dtype(values):
        parsed = values
    else:
        parsed = pd.to_datetime(values, errors="coerce", format="mixed")
    if getattr(parsed.dt, "tz", None) is not None:
        parsed = parsed.dt.tz_localize(None)
    return parsed.dt.normalize()


# =============================================================================
# Partitioning
# =============================================================================

def partition_by_time_windows(
    frame: pd.DataFrame,
    windows: Sequence[TimeWindow],
    date_col: str = "observed_on",
) -> Dict[str, pd.DataFrame]:
    """
    Split a frame into one subset per window, keyed by label in window order.

    Rows with no date fall in no window. Each row appears in at most one
    subset because the windows are validated as disjoint.

    Raises:
        ConfigurationError: If the window list is invalid
    """
    windows = validate_time_windows(windows)
    dates = parse_observed_dates(frame[date_col])

    return {w.label: frame[w.contains(dates).to_numpy()].copy() for w in windows}


def get_date_range(
    frame: pd.DataFrame,
    date_col: str = "observed_on",
) -> Optional[Tuple[pd.Timestamp, pd.Timestamp]]:
    """(earliest, latest) observed date, or None when no row has a date."""
    dates = frame[date_col].dropna()
    if dates.empty:
        return None
    return dates.min(), dates.max()
