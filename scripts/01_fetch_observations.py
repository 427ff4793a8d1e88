#!/usr/bin/env python3
"""
01_fetch_observations.py

Fetch species observations from the iNaturalist API v1 for the study area.

- Query by species name (or taxon id) inside the boundary's bounding box
- Keep a raw CSV snapshot for provenance
- Drop records without a usable location or date, counted by reason

Outputs:
- data/raw/observations/inat_<species>_YYYYMMDD.csv (raw snapshot)
- data/processed/observations/observations.parquet (GeoParquet, EPSG:4326)

Data Source:
- iNaturalist: https://api.inaturalist.org/v1/observations
"""

from datetime import datetime, timezone

import requests

from species_hotspots.config import load_params, species_query_from_params
from species_hotspots.errors import merge_counts
from species_hotspots.hashing import hash_file, write_metadata_sidecar
from species_hotspots.io_utils import atomic_write_df, atomic_write_gdf, read_gdf
from species_hotspots.logging_utils import get_logger
from species_hotspots.observations import fetch_observations, prepare_observations
from species_hotspots.paths import GEO_DIR, OBSERVATIONS_DIR, RAW_OBSERVATIONS_DIR
from species_hotspots.qa import safe_reproject
from species_hotspots.time_utils import get_date_range

INPUT_BOUNDARY = GEO_DIR / "boundary.parquet"
OUTPUT_OBSERVATIONS = OBSERVATIONS_DIR / "observations.parquet"


def main():
    """Main entry point."""
    with get_logger("01_fetch_observations") as logger:
        logger.info("Starting 01_fetch_observations.py")

        params = load_params()
        logger.log_config(params)
        query = species_query_from_params(params)

        try:
            if not INPUT_BOUNDARY.exists():
                raise FileNotFoundError(
                    f"{INPUT_BOUNDARY} not found. Run 00_build_boundaries.py first."
                )
            boundary = safe_reproject(read_gdf(INPUT_BOUNDARY), 4326, "boundary")
            bounds = tuple(float(v) for v in boundary.total_bounds)
            logger.info(f"Bounding box (EPSG:4326): {bounds}")

            with requests.Session() as session:
                raw, fetch_errors = fetch_observations(
                    query["species_query"],
                    bounds,
                    quality_filter=query["quality_filter"],
                    max_results=query["max_results"],
                    session=session,
                    logger=logger,
                )

            stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
            slug = str(query["species_query"]).lower().replace(" ", "_")
            raw_path = RAW_OBSERVATIONS_DIR / f"inat_{slug}_{stamp}.csv"
            atomic_write_df(raw, raw_path, index=False)
            logger.info(f"Wrote raw snapshot: {raw_path} ({len(raw):,} rows)")
            logger.log_inputs({"inat_snapshot": str(raw_path)})

            observations, prep_errors = prepare_observations(raw, require_date=True, logger=logger)
            record_errors = merge_counts(fetch_errors, prep_errors)
            logger.log_record_errors(record_errors)

            atomic_write_gdf(observations, OUTPUT_OBSERVATIONS)
            logger.info(f"Wrote: {OUTPUT_OBSERVATIONS} ({len(observations):,} observations)")
            logger.log_outputs({"observations": str(OUTPUT_OBSERVATIONS)})

            date_range = get_date_range(observations)
            metrics = {
                "species_query": query["species_query"],
                "raw_records": len(raw),
                "observations": len(observations),
                "record_errors": record_errors,
                "first_observed": str(date_range[0].date()) if date_range else None,
                "last_observed": str(date_range[1].date()) if date_range else None,
            }
            logger.log_metrics(metrics)

            write_metadata_sidecar(
                output_path=OUTPUT_OBSERVATIONS,
                inputs={"inat_snapshot": str(raw_path), "boundary": str(INPUT_BOUNDARY)},
                config={"species": params["species"]},
                run_id=logger.run_id,
                extra={**metrics, "sha256": hash_file(OUTPUT_OBSERVATIONS)},
            )
            logger.info("SUCCESS: Observations fetched")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
