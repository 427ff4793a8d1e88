"""
Shared synthetic fixtures.

Two adjacent unit squares ("West" and "East") sharing the edge x = 1, inside
an outer boundary covering both. Everything is in EPSG:4326 unless a test
reprojects it.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box


def make_points(coords, dates=None, crs="EPSG:4326", ids=None):
    """Observation GeoDataFrame from (x, y) tuples; None makes a null location."""
    n = len(coords)
    if dates is None:
        dates = ["2021-06-01"] * n
    geometry = [Point(c) if c is not None else None for c in coords]
    return gpd.GeoDataFrame(
        {
            "id": list(ids) if ids is not None else list(range(1, n + 1)),
            "observed_on": pd.to_datetime(pd.Series(dates)),
            "quality": ["research"] * n,
        },
        geometry=geometry,
        crs=crs,
    )


@pytest.fixture
def regions():
    """Two adjacent square regions."""
    return gpd.GeoDataFrame(
        {"name": ["West", "East"]},
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)],
        crs="EPSG:4326",
    )


@pytest.fixture
def boundary():
    """Outer boundary covering both regions."""
    return gpd.GeoDataFrame(
        {"name": ["Study Area"]},
        geometry=[box(0, 0, 2, 1)],
        crs="EPSG:4326",
    )


@pytest.fixture
def observations():
    """Points in each region, on the shared edge, and outside the boundary."""
    return make_points(
        [(0.5, 0.5), (0.25, 0.75), (1.5, 0.5), (1.0, 0.5), (3.0, 0.5)],
        dates=["2018-05-01", "2021-07-04", "2021-08-15", "2019-12-31", "2021-01-01"],
    )


@pytest.fixture
def empty_points():
    return make_points([])


@pytest.fixture
def rng():
    return np.random.default_rng(42)
