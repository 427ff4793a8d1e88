"""
Observation loading from the iNaturalist API v1.

Records are paged with ``id_above`` + ``order_by=id`` so large queries do
not hit the offset ceiling. A record without a usable location or date is
dropped and counted by reason; it never aborts the batch. A page that keeps
failing after retries aborts the fetch with LoadError.

API docs: https://api.inaturalist.org/v1/docs/
"""

import math
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import requests

from species_hotspots.errors import LoadError, RecordError, count_reason
from species_hotspots.logging_utils import resolve_logger
from species_hotspots.schemas import OBSERVATION_SCHEMA, validate_schema
from species_hotspots.time_utils import parse_observed_dates

# =============================================================================
# Constants
# =============================================================================

API_BASE = "https://api.inaturalist.org/v1"
OBSERVATION_URL = "https://www.inaturalist.org/observations/{id}"

MAX_PER_PAGE = 200  # API maximum for /observations
MAX_RETRIES = 3
RETRY_DELAY = 5  # seconds
PAGE_DELAY = 1.1  # seconds between pages, stays under ~1 req/s
REQUEST_TIMEOUT = 60

OBSERVATION_COLUMNS = ["id", "observed_on", "latitude", "longitude", "quality", "species", "url"]

QUALITY_GRADES = ("research", "needs_id", "casual")


# =============================================================================
# Query Building
# =============================================================================

def build_query_params(
    species_query: Union[str, int],
    bounds: Optional[Sequence[float]] = None,
    quality_filter: Optional[str] = "research",
    d1: Optional[str] = None,
    d2: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build /observations request parameters.

    Args:
        species_query: Scientific name, or numeric iNaturalist taxon id
        bounds: (min_lon, min_lat, max_lon, max_lat) bounding box in degrees
        quality_filter: Quality grade ("research", "needs_id", "casual",
            comma-separated combinations) or None for any
        d1: Optional first observation date (YYYY-MM-DD)
        d2: Optional last observation date (YYYY-MM-DD)
    """
    params: Dict[str, Any] = {
        "verifiable": "true",
        "geo": "true",
        "order_by": "id",
        "order": "asc",
        "per_page": MAX_PER_PAGE,
    }

    if isinstance(species_query, (int, np.integer)) or str(species_query).strip().isdigit():
        params["taxon_id"] = int(species_query)
    else:
        params["taxon_name"] = str(species_query).strip()

    if bounds is not None:
        min_lon, min_lat, max_lon, max_lat = (float(v) for v in bounds)
        params.update({"swlng": min_lon, "swlat": min_lat, "nelng": max_lon, "nelat": max_lat})

    if quality_filter:
        grades = [g.strip() for g in str(quality_filter).split(",") if g.strip()]
        unknown = [g for g in grades if g not in QUALITY_GRADES]
        if unknown:
            raise ValueError(f"Unknown quality grade(s) {unknown}; expected {QUALITY_GRADES}")
        params["quality_grade"] = ",".join(grades)

    if d1:
        params["d1"] = d1
    if d2:
        params["d2"] = d2

    return params


# =============================================================================
# API Fetching
# =============================================================================

def fetch_page(
    session,
    params: Dict[str, Any],
    logger=None,
    retry_count: int = 0,
) -> Dict[str, Any]:
    """
    Fetch one page of observations, retrying transient failures.

    Raises:
        LoadError: When retries are exhausted
    """
    logger = resolve_logger(logger)
    url = f"{API_BASE}/observations"

    try:
        response = session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    except (requests.exceptions.RequestException, ValueError) as e:
        if retry_count < MAX_RETRIES:
            logger.warning(f"Request failed, retrying in {RETRY_DELAY}s... ({e})")
            time.sleep(RETRY_DELAY)
            return fetch_page(session, params, logger, retry_count + 1)
        raise LoadError(f"iNaturalist request failed after {MAX_RETRIES} retries: {e}") from e


def fetch_observation_results(
    params: Dict[str, Any],
    max_results: int = 10_000,
    session=None,
    logger=None,
) -> List[Dict[str, Any]]:
    """
    Page through /observations and return the raw result dicts.

    Stops at ``max_results`` or when a page comes back empty. Fewer results
    than requested is a valid outcome.
    """
    logger = resolve_logger(logger)
    session = session or requests.Session()

    page_params = dict(params)
    page_params.setdefault("order_by", "id")
    page_params.setdefault("order", "asc")

    results: List[Dict[str, Any]] = []
    page = 0
    while len(results) < max_results:
        page_params["per_page"] = min(MAX_PER_PAGE, max_results - len(results))
        if page > 0:
            time.sleep(PAGE_DELAY)
        data = fetch_page(session, page_params, logger)
        batch = data.get("results", []) or []
        page += 1

        if not batch:
            break
        results.extend(batch)
        logger.info(f"  Page {page}: {len(batch)} records (total: {len(results):,})")

        total = data.get("total_results")
        if total is not None and len(results) >= int(total):
            break
        page_params["id_above"] = batch[-1]["id"]

    return results[:max_results]


def fetch_observations(
    species_query: Union[str, int],
    bounds: Optional[Sequence[float]] = None,
    quality_filter: Optional[str] = "research",
    max_results: int = 10_000,
    session=None,
    logger=None,
) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Fetch observations of one species inside a bounding box.

    Args:
        species_query: Scientific name or taxon id
        bounds: (min_lon, min_lat, max_lon, max_lat) in degrees
        quality_filter: iNaturalist quality grade filter
        max_results: Upper bound on records returned
        session: Optional requests-compatible session (``.get``)
        logger: Optional logger

    Returns:
        Tuple of (DataFrame with OBSERVATION_COLUMNS, drop counts by reason)

    Raises:
        LoadError: If the source stays unavailable after retries
    """
    logger = resolve_logger(logger)
    if max_results <= 0:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS), {}

    params = build_query_params(species_query, bounds, quality_filter)
    logger.info(f"Fetching iNaturalist observations for {species_query!r} (max {max_results:,})")

    raw = fetch_observation_results(params, max_results, session, logger)
    frame, counts = records_to_frame(raw)

    logger.info(
        f"Fetched {len(raw):,} records, kept {len(frame):,}",
        extra={"record_errors": counts},
    )
    return frame, counts


# =============================================================================
# Parsing
# =============================================================================

def _parse_location(raw: Dict[str, Any]) -> Tuple[float, float]:
    geojson = raw.get("geojson") or {}
    coords = geojson.get("coordinates") if isinstance(geojson, dict) else None
    if coords and len(coords) == 2:
        lon, lat = coords
    else:
        location = raw.get("location")
        if not location:
            raise RecordError("missing_location", f"Observation {raw.get('id')} has no location")
        parts = str(location).split(",")
        if len(parts) != 2:
            raise RecordError("invalid_location", f"Unparseable location {location!r}")
        lat, lon = parts

    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError) as e:
        raise RecordError("invalid_location", f"Non-numeric location for {raw.get('id')}") from e

    if not (math.isfinite(lat) and math.isfinite(lon)) or abs(lat) > 90 or abs(lon) > 180:
        raise RecordError("invalid_location", f"Location out of range: ({lat}, {lon})")
    return lat, lon


def parse_observation_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Parse one API result into a flat observation row.

    Raises:
        RecordError: For a missing/unparseable location or date
    """
    if raw.get("id") is None:
        raise RecordError("missing_id", "Observation without an id")

    lat, lon = _parse_location(raw)

    observed = raw.get("observed_on")
    if not observed:
        details = raw.get("observed_on_details") or {}
        observed = details.get("date")
    if not observed:
        raise RecordError("missing_date", f"Observation {raw['id']} has no date")
    observed_on = pd.to_datetime(observed, errors="coerce")
    if pd.isna(observed_on):
        raise RecordError("invalid_date", f"Unparseable date {observed!r}")
    if observed_on.tzinfo is not None:
        observed_on = observed_on.tz_localize(None)

    taxon = raw.get("taxon") or {}
    return {
        "id": raw["id"],
        "observed_on": observed_on.normalize(),
        "latitude": lat,
        "longitude": lon,
        "quality": raw.get("quality_grade"),
        "species": taxon.get("name"),
        "url": raw.get("uri") or OBSERVATION_URL.format(id=raw["id"]),
    }


def records_to_frame(results: Iterable[Dict[str, Any]]) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """Parse raw results, dropping and counting unusable records."""
    rows = []
    counts: Dict[str, int] = {}
    for raw in results:
        try:
            rows.append(parse_observation_record(raw))
        except RecordError as e:
            count_reason(counts, e.reason)

    frame = pd.DataFrame(rows, columns=OBSERVATION_COLUMNS)
    dupes = frame["id"].duplicated()
    count_reason(counts, "duplicate_id", int(dupes.sum()))
    frame = frame[~dupes.to_numpy()].reset_index(drop=True)
    frame["observed_on"] = pd.to_datetime(frame["observed_on"])
    return frame, counts


# =============================================================================
# Preparation
# =============================================================================

def prepare_observations(
    records: pd.DataFrame,
    require_date: bool = True,
    crs="EPSG:4326",
    logger=None,
) -> Tuple[gpd.GeoDataFrame, Dict[str, int]]:
    """
    Turn tabular records with latitude/longitude into an observation layer.

    Records with missing, unparseable or out-of-range coordinates are
    dropped and counted. With ``require_date`` records without a parseable
    ``observed_on`` are dropped as well; otherwise they are kept with NaT
    and later fall in no time window.

    Returns:
        Tuple of (GeoDataFrame matching OBSERVATION_SCHEMA, drop counts)
    """
    logger = resolve_logger(logger)
    counts: Dict[str, int] = {}

    missing = [c for c in ("latitude", "longitude") if c not in records.columns]
    if missing:
        raise LoadError(f"Observation records are missing columns {missing}")

    df = records.copy()
    if "id" not in df.columns:
        df["id"] = np.arange(len(df))
    if "quality" not in df.columns:
        df["quality"] = df["quality_grade"] if "quality_grade" in df.columns else None
    if "observed_on" not in df.columns:
        df["observed_on"] = pd.NaT

    raw_lat, raw_lon = df["latitude"], df["longitude"]
    lat = pd.to_numeric(raw_lat, errors="coerce")
    lon = pd.to_numeric(raw_lon, errors="coerce")

    absent = raw_lat.isna() | raw_lon.isna()
    unparseable = ~absent & (lat.isna() | lon.isna())
    out_of_range = ~absent & ~unparseable & (
        ~np.isfinite(lat) | ~np.isfinite(lon) | (lat.abs() > 90) | (lon.abs() > 180)
    )
    count_reason(counts, "missing_location", int(absent.sum()))
    count_reason(counts, "invalid_location", int((unparseable | out_of_range).sum()))

    keep = ~(absent | unparseable | out_of_range)
    df = df[keep.to_numpy()].copy()
    df["latitude"] = lat[keep].astype("float64").to_numpy()
    df["longitude"] = lon[keep].astype("float64").to_numpy()

    df["observed_on"] = parse_observed_dates(df["observed_on"])
    if require_date:
        no_date = df["observed_on"].isna()
        count_reason(counts, "missing_date", int(no_date.sum()))
        df = df[~no_date.to_numpy()]

    dupes = df["id"].duplicated()
    count_reason(counts, "duplicate_id", int(dupes.sum()))
    df = df[~dupes.to_numpy()].reset_index(drop=True)

    gdf = gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df["longitude"], df["latitude"]),
        crs=crs,
    )
    validate_schema(gdf, OBSERVATION_SCHEMA, "prepared observations")

    if counts:
        logger.info(
            f"Prepared {len(gdf):,} observations, dropped {sum(counts.values()):,}",
            extra={"record_errors": counts},
        )
    return gdf, counts
