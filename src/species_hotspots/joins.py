"""
Point-in-polygon join of observations to administrative regions.

Join rules:
- observations and regions must both carry a CRS; points are reprojected
  into the regions' CRS, never the other way around
- points with no location are dropped and counted before reprojection
- points whose reprojected coordinates are not finite are dropped and counted
- only points inside the outer boundary are kept
- a point inside several regions (shared edges) goes to the first region in
  input order, so repeated runs label it identically
- points inside the boundary but in no region stay, with a null region
"""

from typing import Dict, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from species_hotspots.errors import LoadError, count_reason
from species_hotspots.logging_utils import resolve_logger
from species_hotspots.qa import (
    assert_crs_not_none,
    assert_polygon_layer,
    check_finite_bounds,
    finite_point_mask,
    safe_reproject,
)
from species_hotspots.schemas import (
    JOINED_OBSERVATION_SCHEMA,
    REGION_TALLY_SCHEMA,
    validate_schema,
)

REGION_COL = "region"
DEFAULT_AREA_CRS = 6933  # WGS 84 / NSIDC EASE-Grid 2.0 Global (equal area)


def _check_region_layer(regions: gpd.GeoDataFrame, region_col: str, context: str) -> None:
    assert_polygon_layer(regions, context)
    if region_col not in regions.columns:
        raise LoadError(f"Region layer has no '{region_col}' column ({context})")
    names = regions[region_col]
    if names.isna().any():
        raise LoadError(f"{int(names.isna().sum())} regions without a name ({context})")
    if names.duplicated().any():
        dupes = sorted(names[names.duplicated()].astype(str).unique())[:5]
        raise LoadError(f"Region names must be unique, duplicated: {dupes} ({context})")


def spatial_join_observations(
    observations: gpd.GeoDataFrame,
    regions: gpd.GeoDataFrame,
    boundary: gpd.GeoDataFrame,
    region_col: str = "name",
    logger=None,
) -> Tuple[gpd.GeoDataFrame, Dict]:
    """
    Restrict observations to the boundary and label each with its region.

    Args:
        observations: Point GeoDataFrame (see OBSERVATION_SCHEMA)
        regions: Sub-region polygons (e.g. counties) with a unique name column
        boundary: Outer boundary polygon(s) (e.g. the state outline)
        region_col: Name column in ``regions``
        logger: Optional logger

    Returns:
        Tuple of (joined GeoDataFrame in the regions' CRS with a ``region``
        column, stats dictionary)

    Raises:
        LoadError: If regions or boundary are empty or malformed
        ReprojectionError: If regions/boundary have no CRS or the boundary
            cannot be reprojected
    """
    logger = resolve_logger(logger)

    assert_crs_not_none(regions, "regions")
    assert_crs_not_none(boundary, "boundary")
    assert_crs_not_none(observations, "observations")
    _check_region_layer(regions, region_col, "regions")
    assert_polygon_layer(boundary, "boundary")

    target_crs = regions.crs
    boundary_proj = safe_reproject(boundary, target_crs, "boundary")
    check_finite_bounds(boundary_proj, "boundary")
    boundary_geom = boundary_proj.geometry.union_all()

    stats = {
        "total_points": len(observations),
        "missing_location": 0,
        "reprojection_failed": 0,
        "outside_boundary": 0,
        "matched": 0,
        "unmatched": 0,
        "ties_resolved": 0,
    }
    record_errors: Dict[str, int] = {}

    missing = (observations.geometry.isna() | observations.geometry.is_empty).to_numpy()
    count_reason(record_errors, "missing_location", int(missing.sum()))
    stats["missing_location"] = int(missing.sum())

    points = safe_reproject(observations[~missing], target_crs, "observations").copy()
    finite = finite_point_mask(points)
    count_reason(record_errors, "reprojection_failed", int((~finite).sum()))
    stats["reprojection_failed"] = int((~finite).sum())
    points = points[finite.to_numpy()]

    inside = points.geometry.intersects(boundary_geom).to_numpy()
    stats["outside_boundary"] = int((~inside).sum())
    points = points[inside].copy()

    # Positional keys keep the join stable regardless of the input index
    points["_point_pos"] = np.arange(len(points))
    region_ref = regions[[region_col, "geometry"]].copy()
    region_ref["_region_pos"] = np.arange(len(region_ref))
    region_ref = region_ref.rename(columns={region_col: "_region_name"})

    hits = gpd.sjoin(
        points[["_point_pos", "geometry"]],
        region_ref,
        how="inner",
        predicate="intersects",
    )
    hits = hits.sort_values(["_point_pos", "_region_pos"], kind="mergesort")
    stats["ties_resolved"] = int(hits["_point_pos"].duplicated().sum())
    first_hit = hits.drop_duplicates("_point_pos", keep="first")

    labels = pd.Series(
        first_hit["_region_name"].to_numpy(),
        index=first_hit["_point_pos"].to_numpy(),
        dtype=object,
    )
    points[REGION_COL] = points["_point_pos"].map(labels)
    points = points.drop(columns=["_point_pos"])

    stats["matched"] = int(points[REGION_COL].notna().sum())
    stats["unmatched"] = int(points[REGION_COL].isna().sum())
    stats["record_errors"] = record_errors

    validate_schema(points, JOINED_OBSERVATION_SCHEMA, "spatial join output")
    log_join_stats(stats, logger)

    return points, stats


def tally_by_region(
    joined: gpd.GeoDataFrame,
    regions: gpd.GeoDataFrame,
    region_col: str = "name",
    area_crs=DEFAULT_AREA_CRS,
) -> gpd.GeoDataFrame:
    """
    Count joined observations per region, including regions with none.

    Returns:
        GeoDataFrame (regions' CRS) with ``name``, ``record_count``,
        ``area_km2``, ``records_per_km2`` and geometry, sorted by name
    """
    _check_region_layer(regions, region_col, "regions")

    counts = joined[REGION_COL].dropna().value_counts()

    result = regions[[region_col, "geometry"]].rename(columns={region_col: "name"}).copy()
    result["record_count"] = result["name"].map(counts).fillna(0).astype("int64")

    area_m2 = safe_reproject(result[["geometry"]], area_crs, "region areas").geometry.area
    result["area_km2"] = (area_m2 / 1e6).astype("float64").to_numpy()
    result["records_per_km2"] = np.where(
        result["area_km2"] > 0,
        result["record_count"] / result["area_km2"].where(result["area_km2"] > 0, 1.0),
        0.0,
    ).astype("float64")

    result = result.sort_values("name", kind="mergesort").reset_index(drop=True)
    result = result[["name", "record_count", "area_km2", "records_per_km2", "geometry"]]
    validate_schema(result, REGION_TALLY_SCHEMA, "region tallies")
    return result


def add_region_density_weight(
    joined: gpd.GeoDataFrame,
    tallies: pd.DataFrame,
    weight_col: str = "region_density",
) -> gpd.GeoDataFrame:
    """
    Attach each observation's region record density as a weight.

    Unmatched observations get weight 0.
    """
    density = tallies.set_index("name")["records_per_km2"]
    weighted = joined.copy()
    weighted[weight_col] = weighted[REGION_COL].map(density).fillna(0.0).astype("float64")
    return weighted


def log_join_stats(stats: Dict, logger=None) -> None:
    """Log a one-line spatial join summary."""
    msg = (
        f"Spatial join stats: "
        f"{stats['total_points']} total, "
        f"{stats['matched']} matched, "
        f"{stats['unmatched']} unmatched, "
        f"{stats['outside_boundary']} outside boundary, "
        f"{stats['missing_location']} missing locations, "
        f"{stats['reprojection_failed']} reprojection failures"
    )
    if stats.get("ties_resolved"):
        msg += f" | {stats['ties_resolved']} boundary ties"

    resolve_logger(logger).info(msg, extra={"join_stats": stats})
