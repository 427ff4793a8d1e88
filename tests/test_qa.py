"""
Tests for CRS and boundary layer checks.
"""

import pytest
import geopandas as gpd
import numpy as np
from shapely.geometry import LineString, Point, Polygon, box

from species_hotspots.errors import LoadError, ReprojectionError
from species_hotspots.qa import (
    CRSError,
    assert_crs_not_none,
    assert_polygon_layer,
    check_finite_bounds,
    finite_point_mask,
    get_crs_epsg,
    safe_reproject,
    to_crs_object,
)


class TestCRS:
    """CRS handling."""

    def test_missing_crs(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])
        with pytest.raises(CRSError, match="regions"):
            assert_crs_not_none(gdf, "regions")

    def test_crs_error_is_reprojection_error(self):
        assert issubclass(CRSError, ReprojectionError)

    def test_epsg(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)], crs="EPSG:4326")
        assert get_crs_epsg(gdf) == 4326
        assert get_crs_epsg(gpd.GeoDataFrame(geometry=[Point(0, 0)])) is None

    def test_unknown_crs(self):
        with pytest.raises(CRSError):
            to_crs_object("EPSG:999999")

    def test_same_crs_returns_input(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(1, 1)], crs="EPSG:4326")
        assert safe_reproject(gdf, 4326) is gdf

    def test_reproject(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)], crs="EPSG:4326")
        out = safe_reproject(gdf, "EPSG:3857")
        assert out.crs.to_epsg() == 3857
        assert out.geometry.iloc[0].x == pytest.approx(0.0)

    def test_reproject_without_crs(self):
        with pytest.raises(CRSError):
            safe_reproject(gpd.GeoDataFrame(geometry=[Point(0, 0)]), 4326)


class TestFinitePoints:
    """Finite coordinate masks."""

    def test_mask(self):
        gdf = gpd.GeoDataFrame(
            geometry=[Point(0, 0), Point(np.inf, 0), None, Point(1, np.nan)],
            crs="EPSG:4326",
        )
        assert finite_point_mask(gdf).tolist() == [True, False, False, False]

    def test_empty(self):
        gdf = gpd.GeoDataFrame(geometry=[], crs="EPSG:4326")
        assert len(finite_point_mask(gdf)) == 0

    def test_bounds(self):
        gdf = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")
        assert check_finite_bounds(gdf)


class TestPolygonLayer:
    """Boundary layers must be non-empty valid polygons."""

    def test_valid(self):
        gdf = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")
        assert_polygon_layer(gdf)

    def test_empty(self):
        with pytest.raises(LoadError, match="empty"):
            assert_polygon_layer(gpd.GeoDataFrame(geometry=[], crs="EPSG:4326"))

    def test_missing_geometry(self):
        gdf = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1), None], crs="EPSG:4326")
        with pytest.raises(LoadError, match="missing"):
            assert_polygon_layer(gdf)

    def test_non_polygon(self):
        gdf = gpd.GeoDataFrame(geometry=[LineString([(0, 0), (1, 1)])], crs="EPSG:4326")
        with pytest.raises(LoadError, match="Non-polygon"):
            assert_polygon_layer(gdf)

    def test_invalid(self):
        bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1)])
        gdf = gpd.GeoDataFrame(geometry=[bowtie], crs="EPSG:4326")
        with pytest.raises(LoadError, match="invalid"):
            assert_polygon_layer(gdf)
