"""
Error taxonomy for the hotspot pipeline.

Structural errors (LoadError, ConfigurationError, boundary-level
ReprojectionError) abort a run. Per-record errors (RecordError, per-point
reprojection failures) are caught at the batch boundary, counted, and
reported next to the successful output.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""
    pass


class LoadError(PipelineError):
    """Raised when a boundary or observation source is unavailable or malformed."""
    pass


class RecordError(PipelineError):
    """Raised when a single observation record cannot be used."""

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)


class ReprojectionError(PipelineError):
    """Raised when geometries cannot be brought into a common CRS."""
    pass


class ConfigurationError(PipelineError, ValueError):
    """Raised when caller-supplied parameters are invalid."""
    pass


def count_reason(counts: dict, reason: str, n: int = 1) -> dict:
    """Increment a drop-reason counter in place and return it."""
    if n:
        counts[reason] = counts.get(reason, 0) + int(n)
    return counts


def merge_counts(*counts: dict) -> dict:
    """Merge several drop-reason counters into a new one."""
    merged: dict = {}
    for c in counts:
        for reason, n in (c or {}).items():
            count_reason(merged, reason, n)
    return merged
