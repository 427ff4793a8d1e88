"""
Structured JSONL logging utilities.

Every script run emits one JSONL file with standard keys (run name, run id,
config digest, inputs, outputs, record counts, drop reasons, CRS info, join
summaries, hotspot summaries, library versions) and mirrors human-readable
lines to the console.

Library functions never create a JSONLLogger themselves. They take an
optional ``logger`` argument and fall back to ``logging.getLogger``.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, Optional

from species_hotspots.paths import LOGS_DIR

# Distributions whose versions matter for reproducing a hotspot surface
TRACKED_DISTRIBUTIONS = [
    "geopandas",
    "pandas",
    "numpy",
    "shapely",
    "pyproj",
    "scipy",
    "libpysal",
    "esda",
]


def generate_run_id() -> str:
    """Generate a unique run ID for this execution."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    short_uuid = uuid.uuid4().hex[:8]
    return f"{timestamp}_{short_uuid}"


def get_versions() -> dict[str, str]:
    """Get versions of key libraries for reproducibility logging."""
    versions = {"python": sys.version.split()[0]}
    for name in TRACKED_DISTRIBUTIONS:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            continue
    return versions


def resolve_logger(logger=None):
    """Return ``logger`` or the package-level stdlib logger."""
    if logger is not None:
        return logger
    return logging.getLogger("species_hotspots")


class JSONLLogger:
    """
    Structured JSONL logger for pipeline scripts.

    Usage:
        with JSONLLogger("02_build_hotspots") as logger:
            logger.info("Starting", extra={"state": "Pennsylvania"})
            logger.log_metrics({"joined_records": 1000})
    """

    def __init__(
        self,
        run_name: str,
        run_id: Optional[str] = None,
        log_dir: Optional[Path] = None,
        console: bool = True,
    ):
        """
        Args:
            run_name: Name of the script (used in log filename)
            run_id: Unique run identifier. Auto-generated if not provided.
            log_dir: Directory for log files. Defaults to LOGS_DIR.
            console: Mirror messages to stdout.
        """
        self.run_name = run_name
        self.run_id = run_id or generate_run_id()
        self.log_dir = Path(log_dir or LOGS_DIR)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = self.log_dir / f"{run_name}_{self.run_id}.jsonl"
        self._file_handle = open(self.log_file, "a", encoding="utf-8")

        self._logger = logging.getLogger(f"species_hotspots.{run_name}")
        self._logger.setLevel(logging.DEBUG)
        self._console_handler = None
        if console:
            self._console_handler = logging.StreamHandler(sys.stdout)
            self._console_handler.setLevel(logging.INFO)
            self._console_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
            )
            self._logger.addHandler(self._console_handler)

        self._write_record(
            level="INFO",
            message="Logger initialized",
            extra={
                "run_name": run_name,
                "run_id": self.run_id,
                "log_file": str(self.log_file),
                "versions": get_versions(),
            },
        )

    def _write_record(
        self,
        level: str,
        message: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        """Write a single JSONL record."""
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_name": self.run_name,
            "run_id": self.run_id,
            "level": level,
            "message": message,
        }
        if extra:
            record["extra"] = extra

        self._file_handle.write(json.dumps(record, default=str) + "\n")
        self._file_handle.flush()

    def debug(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._write_record("DEBUG", message, extra)
        self._logger.debug(message)

    def info(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._write_record("INFO", message, extra)
        self._logger.info(message)

    def warning(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._write_record("WARNING", message, extra)
        self._logger.warning(message)

    def error(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._write_record("ERROR", message, extra)
        self._logger.error(message)

    def log_config(self, config: dict[str, Any], config_digest: Optional[str] = None) -> None:
        """Log the configuration used for this run."""
        self._write_record(
            "INFO",
            "Configuration loaded",
            extra={"config": config, "config_digest": config_digest},
        )

    def log_inputs(self, inputs: dict[str, str]) -> None:
        self._write_record("INFO", "Inputs registered", extra={"inputs": inputs})

    def log_outputs(self, outputs: dict[str, str]) -> None:
        self._write_record("INFO", "Outputs registered", extra={"outputs": outputs})

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        """Log metrics (row counts, hot cell counts, etc.)."""
        self._write_record("INFO", "Metrics recorded", extra={"metrics": metrics})

    def log_crs_info(self, crs_info: dict[str, Any]) -> None:
        self._write_record("INFO", "CRS info recorded", extra={"crs_info": crs_info})

    def log_join_stats(self, join_stats: dict[str, Any]) -> None:
        self._write_record("INFO", "Join stats recorded", extra={"join_stats": join_stats})

    def log_record_errors(self, record_errors: dict[str, int]) -> None:
        """Log per-record drop counts (missing location, bad date, ...)."""
        total = sum(record_errors.values())
        self._write_record(
            "WARNING" if total else "INFO",
            "Record errors summarized",
            extra={"record_errors": record_errors, "total_dropped": total},
        )
        if total:
            self._logger.warning(f"Dropped {total:,} records: {record_errors}")

    def log_hotspot_summary(self, label: str, summary: dict[str, Any]) -> None:
        """Log the hotspot summary for one time window / weighting mode."""
        self._write_record(
            "INFO",
            "Hotspot summary recorded",
            extra={"window": label, "hotspot_summary": summary},
        )

    def close(self) -> None:
        """Close the log file handle."""
        self._write_record("INFO", "Logger closing", extra={"run_id": self.run_id})
        self._file_handle.close()
        if self._console_handler is not None:
            self._logger.removeHandler(self._console_handler)

    def __enter__(self) -> "JSONLLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.error(
                f"Exception occurred: {exc_type.__name__}: {exc_val}",
                extra={"traceback": str(exc_tb)},
            )
        self.close()


def get_logger(run_name: str, run_id: Optional[str] = None) -> JSONLLogger:
    """
    Convenience function to get a configured logger for a script.

    Args:
        run_name: Name of the script
        run_id: Optional run ID (auto-generated if not provided)
    """
    return JSONLLogger(run_name=run_name, run_id=run_id)
