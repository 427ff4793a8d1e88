"""
Tests for grid tessellation and lattice neighbourhoods.
"""

import pytest
import numpy as np
from shapely.geometry import Point, box

from species_hotspots.errors import ConfigurationError
from species_hotspots.grid import (
    GridType,
    build_distance_neighbors,
    build_neighbors,
    create_grid,
    normalize_extent,
)


class TestGridType:
    """Grid type parsing."""

    @pytest.mark.parametrize("value", ["hex", "Hexagonal", " HEXAGON "])
    def test_hex_aliases(self, value):
        assert GridType.from_value(value) is GridType.HEX

    @pytest.mark.parametrize("value", ["square", "rectangular"])
    def test_square_aliases(self, value):
        assert GridType.from_value(value) is GridType.SQUARE

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            GridType.from_value("triangle")


class TestCreateGrid:
    """Tessellation of an extent."""

    def test_deterministic(self):
        first = create_grid((0, 0, 1, 1), 0.1, "hex")
        second = create_grid((0, 0, 1, 1), 0.1, "hex")

        assert len(first) == len(second)
        assert list(first["cell_id"]) == list(second["cell_id"])
        assert all(a.equals_exact(b, 0) for a, b in zip(first.geometry, second.geometry))

    def test_cell_ids_sequential(self):
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        assert list(grid["cell_id"]) == list(range(len(grid)))

    def test_square_cell_count(self):
        grid = create_grid((0, 0, 10, 10), 5, "square")
        assert len(grid) == 4
        assert grid.geometry.area.tolist() == [25.0] * 4

    @pytest.mark.parametrize("grid_type", ["hex", "square"])
    def test_grid_covers_extent(self, grid_type):
        extent = (0, 0, 1, 1)
        grid = create_grid(extent, 0.1, grid_type)
        covered = grid.geometry.union_all().intersection(box(*extent)).area
        assert covered == pytest.approx(1.0, rel=1e-6)

    def test_every_cell_touches_extent(self):
        extent = box(0, 0, 1, 1)
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        assert (grid.geometry.intersection(extent).area > 0).all()

    def test_hex_width(self):
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        minx, _, maxx, _ = grid.geometry.iloc[0].bounds
        assert maxx - minx == pytest.approx(0.1)

    def test_crs_attached(self):
        grid = create_grid((0, 0, 1, 1), 0.5, "square", crs="EPSG:4326")
        assert grid.crs.to_epsg() == 4326

    def test_degenerate_extent_padded(self):
        grid = create_grid((5, 5, 5, 5), 1.0, "square")
        assert len(grid) == 1
        assert grid.geometry.iloc[0].contains(Point(5, 5))

    @pytest.mark.parametrize("cell_size", [0, -1, float("nan"), "big"])
    def test_bad_cell_size(self, cell_size):
        with pytest.raises(ConfigurationError):
            create_grid((0, 0, 1, 1), cell_size, "hex")

    def test_inverted_extent(self):
        with pytest.raises(ConfigurationError):
            normalize_extent((1, 1, 0, 0), 0.1)

    def test_non_finite_extent(self):
        with pytest.raises(ConfigurationError):
            normalize_extent((0, 0, np.inf, 1), 0.1)

    def test_cell_budget(self):
        with pytest.raises(ConfigurationError, match="cells"):
            create_grid((0, 0, 1e6, 1e6), 1.0, "square")


class TestLatticeNeighbors:
    """Ring neighbourhoods on hex and square grids."""

    def _cell(self, grid, row, col):
        return int(grid.index[(grid["row"] == row) & (grid["col"] == col)][0])

    def test_hex_interior_has_six(self):
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        neighbors = build_neighbors(grid, "hex")
        assert len(neighbors[self._cell(grid, 4, 4)]) == 6

    def test_hex_second_ring(self):
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        neighbors = build_neighbors(grid, "hex", rings=2)
        assert len(neighbors[self._cell(grid, 5, 5)]) == 18

    def test_square_interior_has_eight(self):
        grid = create_grid((0, 0, 5, 5), 1, "square")
        neighbors = build_neighbors(grid, "square")
        assert len(neighbors[self._cell(grid, 2, 2)]) == 8

    def test_square_corner_has_three(self):
        grid = create_grid((0, 0, 5, 5), 1, "square")
        neighbors = build_neighbors(grid, "square")
        assert len(neighbors[self._cell(grid, 0, 0)]) == 3

    @pytest.mark.parametrize("grid_type", ["hex", "square"])
    def test_symmetric_and_excludes_self(self, grid_type):
        grid = create_grid((0, 0, 1, 1), 0.2, grid_type)
        neighbors = build_neighbors(grid, grid_type)
        for i, nb in enumerate(neighbors):
            assert i not in nb
            for j in nb:
                assert i in neighbors[j]

    def test_hex_neighbors_one_cell_apart(self):
        grid = create_grid((0, 0, 1, 1), 0.1, "hex")
        neighbors = build_neighbors(grid, "hex")
        i = self._cell(grid, 3, 3)
        centroids = grid.geometry.centroid
        for j in neighbors[i]:
            assert centroids.iloc[i].distance(centroids.iloc[j]) == pytest.approx(0.1)

    def test_bad_rings(self):
        grid = create_grid((0, 0, 1, 1), 0.5, "square")
        with pytest.raises(ConfigurationError):
            build_neighbors(grid, "square", rings=0)


class TestDistanceNeighbors:
    """Distance-band neighbourhoods between cell centroids."""

    def test_rook_distance(self):
        grid = create_grid((0, 0, 3, 3), 1, "square")
        neighbors = build_distance_neighbors(grid, 1.01)
        centre = int(grid.index[(grid["row"] == 1) & (grid["col"] == 1)][0])
        assert len(neighbors[centre]) == 4

    def test_queen_distance(self):
        grid = create_grid((0, 0, 3, 3), 1, "square")
        neighbors = build_distance_neighbors(grid, 1.5)
        centre = int(grid.index[(grid["row"] == 1) & (grid["col"] == 1)][0])
        assert len(neighbors[centre]) == 8

    def test_single_cell(self):
        grid = create_grid((0, 0, 1, 1), 1, "square")
        assert [len(nb) for nb in build_distance_neighbors(grid, 2.0)] == [0]

    def test_bad_threshold(self):
        grid = create_grid((0, 0, 3, 3), 1, "square")
        with pytest.raises(ConfigurationError):
            build_distance_neighbors(grid, 0)
