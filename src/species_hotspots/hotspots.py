"""
Getis-Ord Gi* hotspot surfaces on a uniform grid.

For each cell i, with binary weights that include the cell itself:

    X̄ = mean(x),  S = sqrt(mean(x²) − X̄²)
    W_i = Σ_j w_ij
    G*_i = (Σ_j w_ij x_j − X̄ W_i) / (S · sqrt((n·W_i − W_i²) / (n − 1)))

G*_i is read as a z-score with a two-sided normal p-value. When the grid
has fewer than two cells or no dispersion (an empty window, or every cell
holding the same value) the statistic and p-value are NaN and no cell is
significant. A conditional-permutation estimator (esda.G_Local) can be
selected instead of the analytic p-value, and a false discovery rate
cutoff can replace the plain significance level.

Every call is independent: grids, neighbourhoods and statistics are built
fresh from the inputs, so time windows can be processed in parallel.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from esda import fdr as fdr_cutoff
from esda.getisord import G_Local
from libpysal.weights import W
from scipy import sparse
from scipy import stats

from species_hotspots.errors import ConfigurationError
from species_hotspots.grid import (
    GridType,
    build_distance_neighbors,
    build_neighbors,
    create_grid,
    normalize_extent,
)
from species_hotspots.logging_utils import resolve_logger
from species_hotspots.qa import assert_crs_not_none, safe_reproject
from species_hotspots.schemas import HOTSPOT_SCHEMA, validate_schema

METHODS = ("analytic", "permutation")

# Standard confidence bins used for the hotspot_class label
CONFIDENCE_LEVELS = (0.01, 0.05, 0.10)

# Relative tolerance below which the dispersion S is treated as zero
DISPERSION_TOLERANCE = 1e-12


@dataclass
class HotspotConfig:
    """Parameters for one hotspot computation."""
    cell_size: float
    grid_type: str = "hex"
    neighbor_rings: int = 1
    neighbor_distance: Optional[float] = None
    significance: float = 0.05
    fdr: bool = False
    method: str = "analytic"
    permutations: int = 999
    seed: Optional[int] = None
    weight_col: Optional[str] = None
    crs: Optional[object] = None

    def validate(self) -> "HotspotConfig":
        """
        Check every parameter before any computation starts.

        Raises:
            ConfigurationError: On non-positive cell size, unknown grid type
                or method, rings < 1, significance outside (0, 1), or
                permutations < 1
        """
        if self.cell_size is None or not (
            isinstance(self.cell_size, (int, float)) and math.isfinite(self.cell_size)
        ) or self.cell_size <= 0:
            raise ConfigurationError(f"Cell size must be positive, got {self.cell_size!r}")
        GridType.from_value(self.grid_type)
        if int(self.neighbor_rings) < 1:
            raise ConfigurationError(f"Neighbour rings must be >= 1, got {self.neighbor_rings!r}")
        if self.neighbor_distance is not None and not self.neighbor_distance > 0:
            raise ConfigurationError(
                f"Neighbour distance must be positive, got {self.neighbor_distance!r}"
            )
        if not 0 < self.significance < 1:
            raise ConfigurationError(
                f"Significance must be in (0, 1), got {self.significance!r}"
            )
        if self.method not in METHODS:
            raise ConfigurationError(f"Unknown method {self.method!r}; expected one of {METHODS}")
        if self.method == "permutation" and int(self.permutations) < 1:
            raise ConfigurationError(f"Permutations must be >= 1, got {self.permutations!r}")
        return self

    @property
    def mode(self) -> str:
        return "weighted" if self.weight_col else "count"


# =============================================================================
# Aggregation
# =============================================================================

def aggregate_points_to_grid(
    points: gpd.GeoDataFrame,
    grid: gpd.GeoDataFrame,
    weight_col: Optional[str] = None,
) -> Tuple[gpd.GeoDataFrame, int]:
    """
    Count (and optionally weight-sum) points per grid cell.

    Points on a shared cell edge go to the lowest ``cell_id``. Every grid
    cell is kept, with zeros where nothing falls.

    Returns:
        Tuple of (grid with ``count`` and ``value`` columns, number of
        points that fell outside every cell)
    """
    result = grid.copy()
    result["count"] = np.zeros(len(result), dtype="int64")
    result["value"] = np.zeros(len(result), dtype="float64")

    if len(points) == 0:
        return result, 0

    left = gpd.GeoDataFrame(
        {"_point_pos": np.arange(len(points))},
        geometry=points.geometry.to_numpy(),
        crs=points.crs,
    )
    if weight_col is not None:
        left["_weight"] = pd.to_numeric(points[weight_col], errors="coerce").fillna(0.0).to_numpy()

    hits = gpd.sjoin(left, grid[["cell_id", "geometry"]], how="inner", predicate="intersects")
    hits = hits.sort_values(["_point_pos", "cell_id"], kind="mergesort")
    hits = hits.drop_duplicates("_point_pos", keep="first")

    counts = hits.groupby("cell_id").size()
    result["count"] = result["cell_id"].map(counts).fillna(0).astype("int64")

    if weight_col is not None:
        sums = hits.groupby("cell_id")["_weight"].sum()
        result["value"] = result["cell_id"].map(sums).fillna(0.0).astype("float64")
    else:
        result["value"] = result["count"].astype("float64")

    return result, int(len(points) - len(hits))


# =============================================================================
# Gi* statistic
# =============================================================================

def neighbor_matrix(neighbors: Sequence[np.ndarray], include_self: bool = True) -> sparse.csr_matrix:
    """Binary sparse weights matrix from positional neighbour lists."""
    n = len(neighbors)
    rows, cols = [], []
    for i, nb in enumerate(neighbors):
        nb = np.asarray(nb, dtype="int64")
        rows.append(np.full(len(nb), i, dtype="int64"))
        cols.append(nb)
    if include_self:
        rows.append(np.arange(n, dtype="int64"))
        cols.append(np.arange(n, dtype="int64"))
    rows = np.concatenate(rows) if rows else np.array([], dtype="int64")
    cols = np.concatenate(cols) if cols else np.array([], dtype="int64")
    data = np.ones(len(rows), dtype="float64")
    return sparse.csr_matrix((data, (rows, cols)), shape=(n, n))


def _dispersion(x: np.ndarray) -> Tuple[float, float]:
    xbar = float(x.mean())
    s = float(x.std())
    scale = max(1.0, abs(xbar), float(np.abs(x).max()))
    if s <= DISPERSION_TOLERANCE * scale:
        s = 0.0
    return xbar, s


def getis_ord_gi_star(
    values: Sequence[float],
    neighbors: Sequence[np.ndarray],
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Analytic Gi* z-scores and two-sided p-values.

    Args:
        values: Cell values (counts or weight sums)
        neighbors: Positional neighbour indices per cell, self excluded

    Returns:
        Tuple of (statistic, p_value) arrays; NaN where undefined
    """
    x = np.asarray(values, dtype="float64")
    n = len(x)
    statistic = np.full(n, np.nan)
    p_value = np.full(n, np.nan)

    if n < 2:
        return statistic, p_value

    xbar, s = _dispersion(x)
    if s == 0.0:
        return statistic, p_value

    w = neighbor_matrix(neighbors, include_self=True)
    w_sum = np.asarray(w.sum(axis=1)).ravel()
    w_sq_sum = np.asarray(w.multiply(w).sum(axis=1)).ravel()
    numerator = w @ x - xbar * w_sum
    denominator = s * np.sqrt(np.maximum(n * w_sq_sum - w_sum ** 2, 0.0) / (n - 1))

    defined = denominator > 0
    statistic[defined] = numerator[defined] / denominator[defined]
    p_value[defined] = 2.0 * stats.norm.sf(np.abs(statistic[defined]))
    return statistic, p_value


def permutation_gi_star(
    values: Sequence[float],
    neighbors: Sequence[np.ndarray],
    permutations: int = 999,
    seed: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gi* via conditional permutation (esda.G_Local with star=True).

    The folded pseudo p-value is doubled to make it two-sided and clipped
    to 1. Inputs without dispersion return NaN without invoking esda.
    """
    x = np.asarray(values, dtype="float64")
    n = len(x)
    statistic = np.full(n, np.nan)
    p_value = np.full(n, np.nan)

    if n < 3:
        return statistic, p_value
    _, s = _dispersion(x)
    if s == 0.0:
        return statistic, p_value

    w = W(
        {i: [int(j) for j in nb] for i, nb in enumerate(neighbors)},
        id_order=list(range(n)),
        silence_warnings=True,
    )
    gi = G_Local(
        x,
        w,
        transform="B",
        permutations=int(permutations),
        star=True,
        seed=seed,
        n_jobs=1,
    )
    statistic = np.asarray(gi.Zs, dtype="float64")
    p_value = np.minimum(1.0, 2.0 * np.asarray(gi.p_sim, dtype="float64"))
    p_value[~np.isfinite(statistic)] = np.nan
    return statistic, p_value


# =============================================================================
# Classification
# =============================================================================

def _confidence_label(p: float, levels: Sequence[float]) -> str:
    for level in levels:
        if p < level:
            return f"{round((1 - level) * 100)}%"
    return ""


def significance_cutoff(p_values, significance: float = 0.05, fdr: bool = False) -> float:
    """
    p-value below which a cell is significant.

    With ``fdr`` the Benjamini-Hochberg threshold over the finite p-values
    (esda.fdr) replaces the plain level. No finite p-values gives 0.
    """
    if not fdr:
        return significance
    finite = np.asarray(p_values, dtype="float64")
    finite = finite[np.isfinite(finite)]
    if len(finite) == 0:
        return 0.0
    return float(fdr_cutoff(finite, significance))


def classify_hotspots(
    frame: pd.DataFrame,
    significance: float = 0.05,
    fdr: bool = False,
) -> pd.DataFrame:
    """
    Add significance flags and a readable class to a frame with
    ``statistic`` and ``p_value`` columns.

    NaN p-values are never significant. ``fdr`` applies a false discovery
    rate cutoff across all cells; confidence labels still use the raw p-value.
    """
    result = frame.copy()
    p = result["p_value"]
    z = result["statistic"]

    cutoff = significance_cutoff(p, significance, fdr)
    significant = p.notna() & (p < cutoff)
    result["is_significant"] = significant.astype(bool)
    result["is_hot"] = (significant & (z > 0)).astype(bool)
    result["is_cold"] = (significant & (z < 0)).astype(bool)

    levels = sorted({lvl for lvl in CONFIDENCE_LEVELS if lvl <= significance} | {significance})
    classes = []
    for is_sig, z_i, p_i in zip(result["is_significant"], z, p):
        if not is_sig or z_i == 0:
            classes.append("Not Significant")
            continue
        kind = "Hot Spot" if z_i > 0 else "Cold Spot"
        classes.append(f"{kind} {_confidence_label(p_i, levels)}")
    result["hotspot_class"] = classes
    return result


# =============================================================================
# Engine
# =============================================================================

def _resolve_extent(points: gpd.GeoDataFrame, extent, cell_size: float):
    if extent is not None:
        return normalize_extent(extent, cell_size)
    if len(points) == 0:
        raise ConfigurationError(
            "An extent is required when there are no observations to derive one from"
        )
    return normalize_extent(points.total_bounds, cell_size)


def compute_hotspots(
    points: gpd.GeoDataFrame,
    config: HotspotConfig,
    extent: Optional[Sequence[float]] = None,
    logger=None,
) -> gpd.GeoDataFrame:
    """
    Grid, aggregate, score and classify one set of points.

    Args:
        points: Point GeoDataFrame (one time window)
        config: HotspotConfig (validated here)
        extent: Fixed (minx, miny, maxx, maxy) in the analysis CRS; defaults
            to the bounds of ``points``
        logger: Optional logger

    Returns:
        GeoDataFrame with one row per cell (see HOTSPOT_SCHEMA)

    Raises:
        ConfigurationError: On invalid parameters, a missing weight column,
            or no extent for an empty input
    """
    logger = resolve_logger(logger)
    config.validate()
    grid_type = GridType.from_value(config.grid_type)

    if config.weight_col is not None and config.weight_col not in points.columns:
        raise ConfigurationError(f"Weight column '{config.weight_col}' not found in points")

    if config.crs is not None:
        points = safe_reproject(points, config.crs, "hotspot points")
        crs = points.crs
    elif len(points) > 0:
        assert_crs_not_none(points, "hotspot points")
        crs = points.crs
    else:
        crs = points.crs

    bounds = _resolve_extent(points, extent, float(config.cell_size))
    grid = create_grid(bounds, config.cell_size, grid_type, crs=crs)
    cells, outside = aggregate_points_to_grid(points, grid, config.weight_col)
    if outside:
        logger.warning(f"{outside:,} points fell outside the hotspot grid extent")

    if config.neighbor_distance is not None:
        neighbors = build_distance_neighbors(cells, config.neighbor_distance)
    else:
        neighbors = build_neighbors(cells, grid_type, config.neighbor_rings)

    if config.method == "permutation":
        statistic, p_value = permutation_gi_star(
            cells["value"].to_numpy(), neighbors, config.permutations, config.seed
        )
    else:
        statistic, p_value = getis_ord_gi_star(cells["value"].to_numpy(), neighbors)

    cells["n_neighbors"] = np.array([len(nb) for nb in neighbors], dtype="int64")
    cells["statistic"] = statistic
    cells["p_value"] = p_value
    cells = classify_hotspots(cells, config.significance, config.fdr)

    columns = [
        "cell_id", "row", "col", "count", "value", "n_neighbors",
        "statistic", "p_value", "is_significant", "is_hot", "is_cold",
        "hotspot_class", "geometry",
    ]
    cells = gpd.GeoDataFrame(cells[columns], geometry="geometry", crs=crs)
    validate_schema(cells, HOTSPOT_SCHEMA, f"hotspots ({config.mode})")

    summary = summarize_hotspots(cells)
    logger.info(
        f"Hotspots ({config.mode}): {summary['cells']:,} cells, "
        f"{summary['occupied_cells']:,} occupied, {summary['hot_cells']:,} hot, "
        f"{summary['cold_cells']:,} cold",
        extra={"hotspot_summary": summary},
    )
    return cells


def shared_extent(partitions: Mapping[str, gpd.GeoDataFrame]) -> Optional[Tuple[float, float, float, float]]:
    """Union of the bounds of all non-empty partitions, or None if all are empty."""
    bounds = [frame.total_bounds for frame in partitions.values() if len(frame) > 0]
    if not bounds:
        return None
    stacked = np.vstack(bounds)
    return (
        float(stacked[:, 0].min()),
        float(stacked[:, 1].min()),
        float(stacked[:, 2].max()),
        float(stacked[:, 3].max()),
    )


def compute_hotspots_by_window(
    partitions: Mapping[str, gpd.GeoDataFrame],
    config: HotspotConfig,
    extent: Optional[Sequence[float]] = None,
    max_workers: int = 1,
    logger=None,
) -> Dict[str, gpd.GeoDataFrame]:
    """
    Run compute_hotspots independently for each time window.

    Without an explicit extent, all windows share the union of their point
    bounds so their grids match cell for cell. With ``max_workers > 1`` the
    windows run in a thread pool; results are keyed by label either way.
    """
    logger = resolve_logger(logger)
    config.validate()

    if extent is None:
        if config.crs is not None:
            reprojected = {
                label: safe_reproject(frame, config.crs, f"window {label}")
                for label, frame in partitions.items()
                if len(frame) > 0
            }
            extent = shared_extent(reprojected)
        else:
            extent = shared_extent(partitions)
        if extent is None:
            raise ConfigurationError("All time windows are empty and no extent was given")

    labels = list(partitions)
    if max_workers <= 1 or len(labels) <= 1:
        return {
            label: compute_hotspots(partitions[label], config, extent, logger)
            for label in labels
        }

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            label: pool.submit(compute_hotspots, partitions[label], config, extent, logger)
            for label in labels
        }
        return {label: futures[label].result() for label in labels}


def summarize_hotspots(result: pd.DataFrame) -> dict:
    """Cell counts and extreme statistics for logging."""
    statistic = result["statistic"]
    return {
        "cells": int(len(result)),
        "occupied_cells": int((result["count"] > 0).sum()),
        "total_count": int(result["count"].sum()),
        "significant_cells": int(result["is_significant"].sum()),
        "hot_cells": int(result["is_hot"].sum()),
        "cold_cells": int(result["is_cold"].sum()),
        "max_statistic": float(statistic.max()) if statistic.notna().any() else None,
        "min_statistic": float(statistic.min()) if statistic.notna().any() else None,
    }
