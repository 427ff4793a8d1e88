"""
Quality assurance utilities for geospatial data.

CRS problems are hard errors: a frame without a CRS is never silently
assigned one, and reprojection only ever goes through to_crs().
Boundary geometries are checked before any join so that malformed or
empty reference data fails the run up front.
"""

from typing import Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from pyproj import CRS
from pyproj.exceptions import CRSError as PyprojCRSError

from species_hotspots.errors import LoadError, ReprojectionError

CRSLike = Union[int, str, CRS]


# =============================================================================
# CRS Validation
# =============================================================================

class CRSError(ReprojectionError):
    """Raised when CRS validation fails."""
    pass


def to_crs_object(crs: CRSLike) -> CRS:
    """Normalize an EPSG code, string or CRS into a pyproj CRS."""
    try:
        if isinstance(crs, int):
            return CRS.from_epsg(crs)
        return CRS.from_user_input(crs)
    except PyprojCRSError as e:
        raise CRSError(f"Unrecognized CRS {crs!r}: {e}") from e


def assert_crs_not_none(gdf: gpd.GeoDataFrame, context: str = "") -> None:
    """
    Assert that the GeoDataFrame has a CRS set.

    Raises:
        CRSError: If CRS is None
    """
    if gdf.crs is None:
        msg = "GeoDataFrame has no CRS set"
        if context:
            msg = f"{msg} ({context})"
        raise CRSError(msg)


def get_crs_epsg(gdf: gpd.GeoDataFrame) -> Optional[int]:
    """EPSG code of the frame's CRS, or None if unset or not identifiable."""
    if gdf.crs is None:
        return None
    return gdf.crs.to_epsg()


def safe_reproject(
    gdf: gpd.GeoDataFrame,
    target_crs: CRSLike,
    context: str = "",
) -> gpd.GeoDataFrame:
    """
    Reproject a GeoDataFrame to the target CRS.

    Returns the input unchanged when it is already in the target CRS.

    Raises:
        CRSError: If the source CRS is None or the target is unrecognized
        ReprojectionError: If the transformation itself fails
    """
    assert_crs_not_none(gdf, context)
    target = to_crs_object(target_crs)

    if gdf.crs.equals(target):
        return gdf

    try:
        return gdf.to_crs(target)
    except (PyprojCRSError, ValueError) as e:
        msg = f"Cannot reproject from {gdf.crs} to {target}: {e}"
        if context:
            msg = f"{msg} ({context})"
        raise ReprojectionError(msg) from e


def finite_point_mask(gdf: gpd.GeoDataFrame) -> pd.Series:
    """True for point rows whose coordinates are finite (failed transforms give inf)."""
    if len(gdf) == 0:
        return pd.Series([], dtype=bool, index=gdf.index)
    geoms = gdf.geometry
    mask = geoms.notna() & ~geoms.is_empty
    xs = geoms.x.where(mask)
    ys = geoms.y.where(mask)
    return mask & np.isfinite(xs) & np.isfinite(ys)


# =============================================================================
# Bounds Validation
# =============================================================================

def get_bounds(gdf: gpd.GeoDataFrame) -> Tuple[float, float, float, float]:
    """Bounds of a GeoDataFrame as (minx, miny, maxx, maxy)."""
    return tuple(float(v) for v in gdf.total_bounds)


def check_finite_bounds(gdf: gpd.GeoDataFrame, context: str = "") -> bool:
    """
    Check that bounds are finite, e.g. after reprojecting a boundary.

    Raises:
        ReprojectionError: If any bound is NaN or infinite
    """
    bounds = get_bounds(gdf)
    if not all(np.isfinite(bounds)):
        msg = f"Non-finite bounds: {bounds}"
        if context:
            msg = f"{msg} ({context})"
        raise ReprojectionError(msg)
    return True


# =============================================================================
# Geometry Validation
# =============================================================================

def assert_polygon_layer(gdf: gpd.GeoDataFrame, context: str = "") -> None:
    """
    Assert a boundary layer is usable as join reference data.

    Raises:
        LoadError: On an empty layer, or missing, empty, invalid or
            non-polygonal geometries
    """
    ctx = f" ({context})" if context else ""

    if gdf is None or len(gdf) == 0:
        raise LoadError(f"Boundary layer is empty{ctx}")

    geoms = gdf.geometry
    missing = geoms.isna() | geoms.is_empty
    if missing.any():
        raise LoadError(f"{int(missing.sum())} missing or empty geometries{ctx}")

    non_polygon = ~geoms.geom_type.isin(["Polygon", "MultiPolygon"])
    if non_polygon.any():
        kinds = sorted(geoms.geom_type[non_polygon].unique())
        raise LoadError(f"Non-polygon geometries {kinds}{ctx}")

    invalid = ~geoms.is_valid
    if invalid.any():
        raise LoadError(f"{int(invalid.sum())} invalid geometries{ctx}")
