#!/usr/bin/env python3
"""
00_build_boundaries.py

Build the study-area boundary and county layers.

- Download US Census cartographic boundary files (states, counties) once
- Select the configured state and its counties
- Enforce polygon validity and unique county names

Outputs:
- data/processed/geo/boundary.parquet (GeoParquet, EPSG:4269 as published)
- data/processed/geo/subregions.parquet (GeoParquet)
- data/processed/geo/subregions.geojson (export)
"""

import sys

from species_hotspots.boundaries import BoundarySource, census_url, load_study_area
from species_hotspots.config import load_params, study_area_from_params
from species_hotspots.hashing import hash_file, is_cached_output_valid, write_metadata_sidecar
from species_hotspots.io_utils import atomic_write_gdf
from species_hotspots.logging_utils import get_logger
from species_hotspots.paths import GEO_DIR, RAW_BOUNDARIES_DIR
from species_hotspots.qa import get_crs_epsg

OUTPUT_BOUNDARY = GEO_DIR / "boundary.parquet"
OUTPUT_SUBREGIONS = GEO_DIR / "subregions.parquet"
OUTPUT_SUBREGIONS_GEOJSON = GEO_DIR / "subregions.geojson"


def main():
    """Main entry point."""
    with get_logger("00_build_boundaries") as logger:
        logger.info("Starting 00_build_boundaries.py")

        params = load_params()
        logger.log_config(params)
        area = study_area_from_params(params)
        cache_key = {"study_area": params["study_area"]}

        if "--force" not in sys.argv and all(
            is_cached_output_valid(p, cache_key) for p in (OUTPUT_BOUNDARY, OUTPUT_SUBREGIONS)
        ):
            logger.info("Boundary outputs are current; use --force to rebuild")
            return

        try:
            source = BoundarySource.from_census(
                RAW_BOUNDARIES_DIR,
                year=area["census_year"],
                resolution=area["resolution"],
                logger=logger,
            )
            boundary, subregions = load_study_area(source, area["region"])

            logger.info(f"Study area: {area['region']} ({len(subregions)} counties)")
            logger.log_crs_info({
                "boundary_epsg": get_crs_epsg(boundary),
                "subregions_epsg": get_crs_epsg(subregions),
            })

            duplicates = subregions["name"][subregions["name"].duplicated()]
            if not duplicates.empty:
                # Counties are unique within a state; anything else is a source problem
                raise ValueError(f"Duplicate county names: {sorted(duplicates.unique())}")

            atomic_write_gdf(boundary, OUTPUT_BOUNDARY)
            logger.info(f"Wrote: {OUTPUT_BOUNDARY}")
            atomic_write_gdf(subregions, OUTPUT_SUBREGIONS)
            logger.info(f"Wrote: {OUTPUT_SUBREGIONS} ({len(subregions)} rows)")
            atomic_write_gdf(subregions, OUTPUT_SUBREGIONS_GEOJSON)
            logger.info(f"Wrote: {OUTPUT_SUBREGIONS_GEOJSON}")

            inputs = {
                layer: str(RAW_BOUNDARIES_DIR / census_url(layer, area["census_year"], area["resolution"]).rsplit("/", 1)[-1])
                for layer in ("state", "county")
            }
            logger.log_inputs(inputs)
            logger.log_outputs({
                "boundary": str(OUTPUT_BOUNDARY),
                "subregions": str(OUTPUT_SUBREGIONS),
                "subregions_geojson": str(OUTPUT_SUBREGIONS_GEOJSON),
            })

            for output, rows in ((OUTPUT_BOUNDARY, len(boundary)), (OUTPUT_SUBREGIONS, len(subregions))):
                write_metadata_sidecar(
                    output_path=output,
                    inputs=inputs,
                    config=cache_key,
                    run_id=logger.run_id,
                    extra={"row_count": rows, "sha256": hash_file(output)},
                )

            logger.log_metrics({
                "region": area["region"],
                "subregion_count": len(subregions),
                "boundary_bounds": [float(v) for v in boundary.total_bounds],
            })
            logger.info("SUCCESS: Boundaries built")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
