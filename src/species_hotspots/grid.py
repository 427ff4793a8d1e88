"""
Uniform tessellations of a study extent.

Grid shape is a small enumerated strategy: each GridType maps to a
tessellation function and a lattice-neighbour function in the registries
below. The same extent, cell size and grid type always produce the same
cells in the same order, so grids built for different time windows line up
cell for cell.

Hex grids use pointy-top hexagons whose flat-to-flat width equals the cell
size; odd rows are shifted right by half a cell ("odd-r" offset layout).
Square grids use cells of side ``cell_size``. Both are anchored at the
lower-left corner of the extent.
"""

import math
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
from libpysal.weights import DistanceBand
from shapely.geometry import Polygon, box

from species_hotspots.errors import ConfigurationError

Extent = Tuple[float, float, float, float]

# Guard against a cell size in the wrong units (e.g. degrees vs metres)
MAX_CELLS = 2_000_000

# Cells sharing less than this fraction of their area with the extent are dropped
MIN_OVERLAP_FRACTION = 1e-6

SQRT3 = math.sqrt(3.0)


class GridType(str, Enum):
    HEX = "hex"
    SQUARE = "square"

    @classmethod
    def from_value(cls, value) -> "GridType":
        """Parse a grid type, accepting the common aliases."""
        if isinstance(value, GridType):
            return value
        key = str(value).strip().lower()
        aliases = {
            "hex": cls.HEX,
            "hexagon": cls.HEX,
            "hexagonal": cls.HEX,
            "square": cls.SQUARE,
            "rectangular": cls.SQUARE,
            "rect": cls.SQUARE,
        }
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown grid type {value!r}; expected one of {sorted(aliases)}"
            )
        return aliases[key]


# =============================================================================
# Extent handling
# =============================================================================

def normalize_extent(extent: Sequence[float], cell_size: float) -> Extent:
    """
    Validate an extent and pad zero-width or zero-height extents by half a cell.

    Raises:
        ConfigurationError: On a non-finite or inverted extent, or a
            non-positive cell size
    """
    validate_cell_size(cell_size)
    try:
        minx, miny, maxx, maxy = (float(v) for v in extent)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Extent must be (minx, miny, maxx, maxy), got {extent!r}") from e

    if not all(math.isfinite(v) for v in (minx, miny, maxx, maxy)):
        raise ConfigurationError(f"Extent has non-finite bounds: {extent!r}")
    if maxx < minx or maxy < miny:
        raise ConfigurationError(f"Extent is inverted: {extent!r}")

    half = cell_size / 2.0
    if maxx == minx:
        minx, maxx = minx - half, maxx + half
    if maxy == miny:
        miny, maxy = miny - half, maxy + half
    return minx, miny, maxx, maxy


def validate_cell_size(cell_size) -> float:
    try:
        size = float(cell_size)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Cell size must be a number, got {cell_size!r}") from e
    if not math.isfinite(size) or size <= 0:
        raise ConfigurationError(f"Cell size must be positive, got {cell_size!r}")
    return size


# =============================================================================
# Tessellations
# =============================================================================

CellSpec = Tuple[int, int, Polygon]


def _hexagon(cx: float, cy: float, cell_size: float) -> Polygon:
    radius = cell_size / SQRT3
    return Polygon([
        (cx + radius * math.cos(math.radians(angle)), cy + radius * math.sin(math.radians(angle)))
        for angle in (30, 90, 150, 210, 270, 330)
    ])


def _check_cell_budget(n_rows: int, n_cols: int) -> None:
    if n_rows * n_cols > MAX_CELLS:
        raise ConfigurationError(
            f"Grid would have {n_rows * n_cols:,} cells (limit {MAX_CELLS:,}); "
            "check that cell size is in the units of the CRS"
        )


def hex_cells(extent: Extent, cell_size: float) -> Iterator[CellSpec]:
    """Pointy-top hexagons in odd-r rows covering the extent."""
    minx, miny, maxx, maxy = extent
    dy = cell_size * SQRT3 / 2.0
    n_rows = int(math.ceil((maxy - miny) / dy)) + 1
    n_cols = int(math.ceil((maxx - minx) / cell_size)) + 1
    _check_cell_budget(n_rows, n_cols)

    for row in range(n_rows):
        cy = miny + row * dy
        offset = cell_size / 2.0 if row % 2 else 0.0
        for col in range(n_cols):
            cx = minx + offset + col * cell_size
            yield row, col, _hexagon(cx, cy, cell_size)


def square_cells(extent: Extent, cell_size: float) -> Iterator[CellSpec]:
    """Axis-aligned squares covering the extent."""
    minx, miny, maxx, maxy = extent
    n_cols = max(1, int(math.ceil((maxx - minx) / cell_size)))
    n_rows = max(1, int(math.ceil((maxy - miny) / cell_size)))
    _check_cell_budget(n_rows, n_cols)

    for row in range(n_rows):
        y0 = miny + row * cell_size
        for col in range(n_cols):
            x0 = minx + col * cell_size
            yield row, col, box(x0, y0, x0 + cell_size, y0 + cell_size)


TESSELLATIONS: Dict[GridType, Callable[[Extent, float], Iterator[CellSpec]]] = {
    GridType.HEX: hex_cells,
    GridType.SQUARE: square_cells,
}


def create_grid(
    extent: Sequence[float],
    cell_size: float,
    grid_type="hex",
    crs=None,
) -> gpd.GeoDataFrame:
    """
    Tessellate an extent into cells of the requested size and shape.

    Args:
        extent: (minx, miny, maxx, maxy) in CRS units
        cell_size: Hex width (flat to flat) or square side, in CRS units
        grid_type: GridType or alias ("hex", "hexagonal", "square", "rectangular")
        crs: CRS of the extent

    Returns:
        GeoDataFrame with ``cell_id`` (0..n-1, row-major), ``row``, ``col``
        and cell geometry; only cells sharing area with the extent are kept

    Raises:
        ConfigurationError: On invalid cell size, grid type or extent
    """
    grid_type = GridType.from_value(grid_type)
    cell_size = validate_cell_size(cell_size)
    extent = normalize_extent(extent, cell_size)

    specs = list(TESSELLATIONS[grid_type](extent, cell_size))
    grid = gpd.GeoDataFrame(
        {
            "row": np.array([s[0] for s in specs], dtype="int64"),
            "col": np.array([s[1] for s in specs], dtype="int64"),
        },
        geometry=[s[2] for s in specs],
        crs=crs,
    )

    extent_box = box(*extent)
    overlap = grid.geometry.intersection(extent_box).area
    keep = (overlap > grid.geometry.area * MIN_OVERLAP_FRACTION).to_numpy()
    grid = grid[keep].reset_index(drop=True)

    grid.insert(0, "cell_id", np.arange(len(grid), dtype="int64"))
    return grid


# =============================================================================
# Neighbourhoods
# =============================================================================

def _hex_ring(row: int, col: int, rings: int) -> Iterator[Tuple[int, int]]:
    # odd-r offset -> axial coordinates
    q = col - (row - (row & 1)) // 2
    r = row
    for dq in range(-rings, rings + 1):
        for dr in range(max(-rings, -dq - rings), min(rings, -dq + rings) + 1):
            if dq == 0 and dr == 0:
                continue
            nr = r + dr
            nc = (q + dq) + (nr - (nr & 1)) // 2
            yield nr, nc


def _square_ring(row: int, col: int, rings: int) -> Iterator[Tuple[int, int]]:
    for dr in range(-rings, rings + 1):
        for dc in range(-rings, rings + 1):
            if dr == 0 and dc == 0:
                continue
            yield row + dr, col + dc


LATTICE_NEIGHBORS: Dict[GridType, Callable[[int, int, int], Iterator[Tuple[int, int]]]] = {
    GridType.HEX: _hex_ring,
    GridType.SQUARE: _square_ring,
}


def build_neighbors(
    grid: gpd.GeoDataFrame,
    grid_type="hex",
    rings: int = 1,
) -> List[np.ndarray]:
    """
    Lattice neighbourhoods: all cells within ``rings`` steps, self excluded.

    Hex grids use hex distance; square grids use queen (Chebyshev) distance.
    Both relations are symmetric.

    Returns:
        One sorted array of positional neighbour indices per grid row
    """
    grid_type = GridType.from_value(grid_type)
    if int(rings) < 1:
        raise ConfigurationError(f"Neighbour rings must be >= 1, got {rings!r}")

    position = {
        (int(r), int(c)): i
        for i, (r, c) in enumerate(zip(grid["row"].to_numpy(), grid["col"].to_numpy()))
    }
    ring = LATTICE_NEIGHBORS[grid_type]

    neighbors = []
    for r, c in zip(grid["row"].to_numpy(), grid["col"].to_numpy()):
        found = [position[key] for key in ring(int(r), int(c), int(rings)) if key in position]
        neighbors.append(np.array(sorted(found), dtype="int64"))
    return neighbors


def build_distance_neighbors(
    grid: gpd.GeoDataFrame,
    threshold: float,
) -> List[np.ndarray]:
    """
    Distance-band neighbourhoods between cell centroids (binary, self excluded).
    """
    if threshold is None or not threshold > 0:
        raise ConfigurationError(f"Neighbour distance must be positive, got {threshold!r}")

    n = len(grid)
    if n < 2:
        return [np.array([], dtype="int64") for _ in range(n)]

    centroids = grid.geometry.centroid
    coords = np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()])
    w = DistanceBand(coords, threshold=float(threshold), binary=True, silence_warnings=True)
    return [np.array(sorted(w.neighbors[i]), dtype="int64") for i in w.id_order]
