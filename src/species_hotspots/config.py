"""
Run parameters from configs/params.yml.

Only the scripts load parameters; library functions take explicit
arguments. Every helper here turns one section of the YAML document into
the objects the library expects and fails with ConfigurationError when a
required key is missing.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from species_hotspots.errors import ConfigurationError
from species_hotspots.hotspots import HotspotConfig
from species_hotspots.io_utils import read_yaml
from species_hotspots.time_utils import TimeWindow, time_windows_from_config

DEFAULT_HOTSPOTS = {
    "grid_type": "hex",
    "neighbor_rings": 1,
    "neighbor_distance": None,
    "significance": 0.05,
    "fdr": False,
    "method": "analytic",
    "permutations": 999,
    "seed": None,
    "weighted": False,
}


def load_params(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Read params.yml (defaults to CONFIG_DIR / "params.yml")."""
    if path is None:
        from species_hotspots.paths import PARAMS_FILE
        path = PARAMS_FILE
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Parameter file not found: {path}")
    params = read_yaml(path)
    if not isinstance(params, dict):
        raise ConfigurationError(f"Parameter file must contain a mapping: {path}")
    return params


def _section(params: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = params.get(name)
    if section is None:
        raise ConfigurationError(f"params.yml has no '{name}' section")
    if not isinstance(section, dict):
        raise ConfigurationError(f"params.yml section '{name}' must be a mapping")
    return section


def hotspot_config_from_params(params: Dict[str, Any]) -> HotspotConfig:
    """Build and validate the HotspotConfig from the ``hotspots`` section."""
    section = {**DEFAULT_HOTSPOTS, **_section(params, "hotspots")}
    if "cell_size" not in section:
        raise ConfigurationError("hotspots.cell_size is required")

    crs = section.get("crs", params.get("analysis_crs"))
    config = HotspotConfig(
        cell_size=section["cell_size"],
        grid_type=section["grid_type"],
        neighbor_rings=int(section["neighbor_rings"]),
        neighbor_distance=section["neighbor_distance"],
        significance=float(section["significance"]),
        fdr=bool(section["fdr"]),
        method=section["method"],
        permutations=int(section["permutations"]),
        seed=section["seed"],
        crs=crs,
    )
    return config.validate()


def time_windows_from_params(params: Dict[str, Any]) -> List[TimeWindow]:
    """Build the validated time windows from the ``time_windows`` list."""
    entries = params.get("time_windows")
    if not entries:
        raise ConfigurationError("params.yml has no 'time_windows'")
    return time_windows_from_config(entries)


def species_query_from_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Observation query settings from the ``species`` section.

    Returns:
        Dict with ``species_query``, ``quality_filter`` and ``max_results``
    """
    section = _section(params, "species")
    query = section.get("taxon_id") or section.get("name")
    if not query:
        raise ConfigurationError("species.name or species.taxon_id is required")
    return {
        "species_query": query,
        "quality_filter": section.get("quality_filter", "research"),
        "max_results": int(section.get("max_results", 10_000)),
    }


def study_area_from_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Region name and boundary source settings from the ``study_area`` section."""
    section = _section(params, "study_area")
    if not section.get("region"):
        raise ConfigurationError("study_area.region is required")
    return {
        "region": section["region"],
        "census_year": int(section.get("census_year", 2023)),
        "resolution": str(section.get("resolution", "500k")),
        "area_crs": section.get("area_crs", 6933),
    }
