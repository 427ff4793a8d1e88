"""
Canonical path resolution for the species hotspot atlas.

Scripts import their directories from here instead of building relative
'../' paths. The library modules never touch these paths themselves; only
the numbered scripts and the config loader do.

- Root is detected via `.project-root` (primary) and fallback markers
- When no marker is found (package installed outside a checkout), the
  current working directory is used as the root
"""

from pathlib import Path
from typing import Optional

# Markers to detect project root (in priority order)
ROOT_MARKERS = [".project-root", "pyproject.toml", ".git"]


def find_project_root(start_path: Optional[Path] = None) -> Path:
    """
    Find the project root by searching upward for marker files.

    Args:
        start_path: Starting directory for search. Defaults to this file's location.

    Returns:
        Path to project root directory.

    Raises:
        FileNotFoundError: If no root marker is found.
    """
    if start_path is None:
        start_path = Path(__file__).resolve().parent

    start_path = Path(start_path).resolve()
    for candidate in [start_path, *start_path.parents]:
        for marker in ROOT_MARKERS:
            if (candidate / marker).exists():
                return candidate

    raise FileNotFoundError(
        f"Could not find project root. Searched for markers {ROOT_MARKERS} "
        f"starting from {start_path}"
    )


def _resolve_project_root() -> Path:
    """Resolve the root from the package location, then from the working directory."""
    for start in (None, Path.cwd()):
        try:
            return find_project_root(start)
        except FileNotFoundError:
            continue
    return Path.cwd().resolve()


# =============================================================================
# Canonical paths (resolved at import time)
# =============================================================================

PROJECT_ROOT = _resolve_project_root()

# Config
CONFIG_DIR = PROJECT_ROOT / "configs"
PARAMS_FILE = CONFIG_DIR / "params.yml"

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

# Raw subdirectories
RAW_BOUNDARIES_DIR = RAW_DIR / "boundaries"
RAW_OBSERVATIONS_DIR = RAW_DIR / "observations"

# Processed subdirectories
GEO_DIR = PROCESSED_DIR / "geo"
OBSERVATIONS_DIR = PROCESSED_DIR / "observations"
HOTSPOTS_DIR = PROCESSED_DIR / "hotspots"
METADATA_DIR = PROCESSED_DIR / "metadata"

# Logs
LOGS_DIR = PROJECT_ROOT / "logs"


if __name__ == "__main__":
    print(f"PROJECT_ROOT:  {PROJECT_ROOT}")
    print(f"RAW_DIR:       {RAW_DIR}")
    print(f"PROCESSED_DIR: {PROCESSED_DIR}")
    print(f"CONFIG_DIR:    {CONFIG_DIR}")
    print(f"LOGS_DIR:      {LOGS_DIR}")
