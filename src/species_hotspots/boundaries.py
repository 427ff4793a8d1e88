"""
Administrative boundary lookup.

A BoundarySource holds two polygon layers: top-level regions (e.g. US
states) and their subregions (e.g. counties), linked by a shared key
column. Layers come from local files or from the US Census cartographic
boundary files, which are downloaded once and cached on disk.

Returned frames always carry ``name`` and ``geometry`` and keep the CRS of
the source layer.
"""

from pathlib import Path
from typing import Tuple, Union

import geopandas as gpd
import requests

from species_hotspots.errors import LoadError
from species_hotspots.io_utils import atomic_write_bytes, read_gdf
from species_hotspots.logging_utils import resolve_logger
from species_hotspots.qa import assert_crs_not_none, assert_polygon_layer, safe_reproject

# US Census cartographic boundary files
# https://www.census.gov/geographies/mapping-files/time-series/geo/cartographic-boundary.html
CENSUS_URL_TEMPLATE = "https://www2.census.gov/geo/tiger/GENZ{year}/shp/cb_{year}_us_{layer}_{resolution}.zip"
CENSUS_RESOLUTIONS = ("500k", "5m", "20m")
DEFAULT_CENSUS_YEAR = 2023

DOWNLOAD_TIMEOUT = 120


class BoundarySource:
    """Region and subregion polygons with name lookup."""

    def __init__(
        self,
        regions: gpd.GeoDataFrame,
        subregions: gpd.GeoDataFrame,
        name_col: str = "NAME",
        key_col: str = "STATEFP",
    ):
        for layer, context in ((regions, "regions"), (subregions, "subregions")):
            assert_crs_not_none(layer, context)
            assert_polygon_layer(layer, context)
            for col in (name_col, key_col):
                if col not in layer.columns:
                    raise LoadError(f"{context} layer has no '{col}' column")

        self.regions = regions
        self.subregions = subregions
        self.name_col = name_col
        self.key_col = key_col

    def _lookup(self, name: str) -> gpd.GeoDataFrame:
        names = self.regions[self.name_col].astype(str).str.strip().str.casefold()
        match = self.regions[(names == str(name).strip().casefold()).to_numpy()]
        if match.empty:
            raise LoadError(f"Unknown region: {name!r}")
        if len(match) > 1:
            raise LoadError(f"Region name {name!r} is ambiguous ({len(match)} matches)")
        return match

    def get_region_boundary(self, name: str) -> gpd.GeoDataFrame:
        """
        Outer boundary of one region as a single-row frame.

        Raises:
            LoadError: If the name is unknown or ambiguous
        """
        match = self._lookup(name)
        result = match[[self.name_col, "geometry"]].rename(columns={self.name_col: "name"})
        return result.reset_index(drop=True)

    def get_subregions(self, parent_name: str) -> gpd.GeoDataFrame:
        """
        All subregions of one region, sorted by name.

        Raises:
            LoadError: If the parent is unknown or has no subregions
        """
        key = self._lookup(parent_name)[self.key_col].iloc[0]
        children = self.subregions[(self.subregions[self.key_col] == key).to_numpy()]
        if children.empty:
            raise LoadError(f"Region {parent_name!r} has no subregions")

        result = children[[self.name_col, "geometry"]].rename(columns={self.name_col: "name"})
        result = result.sort_values("name", kind="mergesort").reset_index(drop=True)
        assert_polygon_layer(result, f"subregions of {parent_name}")
        return result

    @classmethod
    def from_files(
        cls,
        regions_path: Union[str, Path],
        subregions_path: Union[str, Path],
        name_col: str = "NAME",
        key_col: str = "STATEFP",
    ) -> "BoundarySource":
        """Load both layers from any format geopandas can read."""
        return cls(
            _read_layer(regions_path),
            _read_layer(subregions_path),
            name_col=name_col,
            key_col=key_col,
        )

    @classmethod
    def from_census(
        cls,
        cache_dir: Union[str, Path],
        year: int = DEFAULT_CENSUS_YEAR,
        resolution: str = "500k",
        session=None,
        logger=None,
    ) -> "BoundarySource":
        """
        US states and counties from the Census cartographic boundary files.

        Zips already present in ``cache_dir`` are reused.
        """
        regions_zip = download_census_layer("state", cache_dir, year, resolution, session, logger)
        subregions_zip = download_census_layer("county", cache_dir, year, resolution, session, logger)
        return cls.from_files(regions_zip, subregions_zip)


def census_url(layer: str, year: int = DEFAULT_CENSUS_YEAR, resolution: str = "500k") -> str:
    if resolution not in CENSUS_RESOLUTIONS:
        raise ValueError(f"Unknown resolution {resolution!r}; expected one of {CENSUS_RESOLUTIONS}")
    return CENSUS_URL_TEMPLATE.format(year=year, layer=layer, resolution=resolution)


def download_census_layer(
    layer: str,
    cache_dir: Union[str, Path],
    year: int = DEFAULT_CENSUS_YEAR,
    resolution: str = "500k",
    session=None,
    logger=None,
) -> Path:
    """
    Download one Census cartographic boundary zip unless it is cached.

    Raises:
        LoadError: If the download fails
    """
    logger = resolve_logger(logger)
    url = census_url(layer, year, resolution)
    target = Path(cache_dir) / url.rsplit("/", 1)[-1]

    if target.exists() and target.stat().st_size > 0:
        logger.info(f"Using cached {target.name}")
        return target

    logger.info(f"Downloading {url}")
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise LoadError(f"Boundary download failed: {url} ({e})") from e

    atomic_write_bytes(response.content, target)
    logger.info(f"Saved: {target} ({target.stat().st_size:,} bytes)")
    return target


def _read_layer(path: Union[str, Path]) -> gpd.GeoDataFrame:
    path = Path(path)
    if not path.exists():
        raise LoadError(f"Boundary file not found: {path}")
    try:
        return read_gdf(path)
    except Exception as e:
        raise LoadError(f"Could not read boundary file {path}: {e}") from e


def load_study_area(
    source: BoundarySource,
    region_name: str,
    crs=None,
) -> Tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """
    Boundary and subregions of one region, optionally reprojected.

    Returns:
        Tuple of (boundary, subregions) GeoDataFrames
    """
    boundary = source.get_region_boundary(region_name)
    subregions = source.get_subregions(region_name)
    if crs is not None:
        boundary = safe_reproject(boundary, crs, "boundary")
        subregions = safe_reproject(subregions, crs, "subregions")
    return boundary, subregions

