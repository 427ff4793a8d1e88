"""
End-to-end run: observations -> study area -> time windows -> hotspots.

Steps:
1. Validate hotspot parameters and time windows (fail before any work)
2. Prepare raw records into an observation layer (if not already one)
3. Join to subregions inside the outer boundary, tally per subregion
4. Partition joined observations by time window
5. Compute hotspots per window on one fixed extent, the boundary bounds in
   the analysis CRS, so every window is scored on the same grid
6. Optionally repeat with subregion record-density weights

The run is pure: nothing is read from or written to disk here.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Sequence, Tuple

import geopandas as gpd
import pandas as pd

from species_hotspots.errors import merge_counts
from species_hotspots.hotspots import (
    HotspotConfig,
    compute_hotspots_by_window,
    summarize_hotspots,
)
from species_hotspots.joins import (
    DEFAULT_AREA_CRS,
    add_region_density_weight,
    spatial_join_observations,
    tally_by_region,
)
from species_hotspots.logging_utils import resolve_logger
from species_hotspots.observations import prepare_observations
from species_hotspots.qa import safe_reproject
from species_hotspots.time_utils import (
    TimeWindow,
    parse_observed_dates,
    partition_by_time_windows,
    validate_time_windows,
)

MODES = ("count", "weighted")
DENSITY_WEIGHT_COL = "region_density"


@dataclass
class PipelineResult:
    """Everything one run produces, keyed for downstream rendering."""
    joined: gpd.GeoDataFrame
    region_tallies: gpd.GeoDataFrame
    partitions: Dict[str, gpd.GeoDataFrame]
    hotspots: Dict[Tuple[str, str], gpd.GeoDataFrame]
    join_stats: Dict = field(default_factory=dict)
    record_errors: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict[str, Dict]:
        """Per (window, mode) hotspot summaries, keyed 'label/mode'."""
        return {
            f"{label}/{mode}": summarize_hotspots(cells)
            for (label, mode), cells in self.hotspots.items()
        }


def run_hotspot_pipeline(
    observations,
    regions: gpd.GeoDataFrame,
    boundary: gpd.GeoDataFrame,
    windows: Sequence[TimeWindow],
    config: HotspotConfig,
    weighted: bool = False,
    region_col: str = "name",
    area_crs=DEFAULT_AREA_CRS,
    max_workers: int = 1,
    logger=None,
) -> PipelineResult:
    """
    Run the full observation-to-hotspot pipeline for one study area.

    Args:
        observations: Observation GeoDataFrame, or a DataFrame of raw records
            with latitude/longitude/observed_on columns
        regions: Subregion polygons with a unique ``region_col``
        boundary: Outer study-area boundary
        windows: Non-overlapping time windows
        config: Hotspot parameters; ``config.crs`` is the analysis CRS
            (defaults to the regions' CRS)
        weighted: Also compute record-density weighted hotspots
        region_col: Name column in ``regions``
        area_crs: Equal-area CRS for subregion areas
        max_workers: Thread count for per-window hotspot runs
        logger: Optional logger

    Returns:
        PipelineResult with hotspots keyed by (window label, mode)

    Raises:
        ConfigurationError: On invalid parameters or windows
        LoadError: On malformed boundary layers
        ReprojectionError: If the boundary cannot be brought into the
            analysis CRS
    """
    logger = resolve_logger(logger)

    config.validate()
    windows = validate_time_windows(windows)

    record_errors: Dict[str, int] = {}
    if isinstance(observations, gpd.GeoDataFrame):
        points = observations
    else:
        points, prep_counts = prepare_observations(pd.DataFrame(observations), logger=logger)
        record_errors = merge_counts(record_errors, prep_counts)

    joined, join_stats = spatial_join_observations(
        points, regions, boundary, region_col=region_col, logger=logger
    )
    record_errors = merge_counts(record_errors, join_stats.get("record_errors", {}))
    undated = int(parse_observed_dates(joined["observed_on"]).isna().sum())
    record_errors = merge_counts(record_errors, {"missing_date": undated})
    tallies = tally_by_region(joined, regions, region_col=region_col, area_crs=area_crs)

    partitions = partition_by_time_windows(joined, windows)
    for label, frame in partitions.items():
        logger.info(f"Window '{label}': {len(frame):,} observations")

    analysis_crs = config.crs if config.crs is not None else regions.crs
    extent = tuple(
        float(v)
        for v in safe_reproject(boundary, analysis_crs, "analysis extent").total_bounds
    )

    hotspots: Dict[Tuple[str, str], gpd.GeoDataFrame] = {}
    count_config = replace(config, weight_col=None, crs=analysis_crs)
    for label, cells in compute_hotspots_by_window(
        partitions, count_config, extent=extent, max_workers=max_workers, logger=logger
    ).items():
        hotspots[(label, "count")] = cells

    if weighted:
        weighted_joined = add_region_density_weight(joined, tallies, DENSITY_WEIGHT_COL)
        weighted_partitions = partition_by_time_windows(weighted_joined, windows)
        weight_config = replace(config, weight_col=DENSITY_WEIGHT_COL, crs=analysis_crs)
        for label, cells in compute_hotspots_by_window(
            weighted_partitions, weight_config, extent=extent, max_workers=max_workers, logger=logger
        ).items():
            hotspots[(label, "weighted")] = cells

    if record_errors:
        logger.warning(
            f"Dropped records: {record_errors}",
            extra={"record_errors": record_errors},
        )

    return PipelineResult(
        joined=joined,
        region_tallies=tallies,
        partitions=partitions,
        hotspots=hotspots,
        join_stats=join_stats,
        record_errors=record_errors,
    )

