#!/usr/bin/env python3
"""
02_build_hotspots.py

Build Getis-Ord Gi* hotspot surfaces per time window.

- Join observations to counties inside the state boundary
- Tally records per county (count, area, records per km²)
- Split observations into the configured time windows
- Score every window on the same grid (count mode, and optionally
  county record-density weighted mode)

Outputs:
- data/processed/hotspots/hotspots_<window>_<mode>.parquet (all cells)
- data/processed/hotspots/hotspots_<window>_<mode>.geojson (significant cells)
- data/processed/hotspots/county_tallies.parquet / .csv
- data/processed/hotspots/hotspot_summary.json
"""

from species_hotspots.config import (
    hotspot_config_from_params,
    load_params,
    study_area_from_params,
    time_windows_from_params,
)
from species_hotspots.hashing import hash_file, write_metadata_sidecar
from species_hotspots.io_utils import (
    atomic_write_df,
    atomic_write_gdf,
    atomic_write_json,
    read_gdf,
)
from species_hotspots.logging_utils import get_logger
from species_hotspots.paths import GEO_DIR, HOTSPOTS_DIR, OBSERVATIONS_DIR
from species_hotspots.pipeline import run_hotspot_pipeline
from species_hotspots.qa import get_crs_epsg

INPUT_BOUNDARY = GEO_DIR / "boundary.parquet"
INPUT_SUBREGIONS = GEO_DIR / "subregions.parquet"
INPUT_OBSERVATIONS = OBSERVATIONS_DIR / "observations.parquet"

OUTPUT_TALLIES = HOTSPOTS_DIR / "county_tallies.parquet"
OUTPUT_TALLIES_CSV = HOTSPOTS_DIR / "county_tallies.csv"
OUTPUT_SUMMARY = HOTSPOTS_DIR / "hotspot_summary.json"


def load_inputs(logger):
    """Load boundary, counties and observations written by scripts 00 and 01."""
    for path in (INPUT_BOUNDARY, INPUT_SUBREGIONS, INPUT_OBSERVATIONS):
        if not path.exists():
            raise FileNotFoundError(f"{path} not found. Run scripts 00 and 01 first.")

    boundary = read_gdf(INPUT_BOUNDARY)
    subregions = read_gdf(INPUT_SUBREGIONS)
    observations = read_gdf(INPUT_OBSERVATIONS)

    logger.info(f"Loaded boundary, {len(subregions)} counties, {len(observations):,} observations")
    logger.log_inputs({
        "boundary": str(INPUT_BOUNDARY),
        "subregions": str(INPUT_SUBREGIONS),
        "observations": str(INPUT_OBSERVATIONS),
    })
    return boundary, subregions, observations


def main():
    """Main entry point."""
    with get_logger("02_build_hotspots") as logger:
        logger.info("Starting 02_build_hotspots.py")

        params = load_params()
        logger.log_config(params)

        hotspot_params = params.get("hotspots", {})
        config = hotspot_config_from_params(params)
        windows = time_windows_from_params(params)
        area = study_area_from_params(params)
        weighted = bool(hotspot_params.get("weighted", False))
        max_workers = int(hotspot_params.get("max_workers", 1))

        logger.info(
            f"Grid: {config.grid_type}, cell size {config.cell_size} "
            f"(EPSG:{config.crs}), method {config.method}, alpha {config.significance}"
            f"{' (FDR)' if config.fdr else ''}"
        )
        logger.info(f"Windows: {[w.label for w in windows]}")

        try:
            boundary, subregions, observations = load_inputs(logger)

            result = run_hotspot_pipeline(
                observations,
                subregions,
                boundary,
                windows,
                config,
                weighted=weighted,
                area_crs=area["area_crs"],
                max_workers=max_workers,
                logger=logger,
            )
            logger.log_join_stats(result.join_stats)
            logger.log_record_errors(result.record_errors)

            HOTSPOTS_DIR.mkdir(parents=True, exist_ok=True)

            atomic_write_gdf(result.region_tallies, OUTPUT_TALLIES)
            atomic_write_df(result.region_tallies.drop(columns=["geometry"]), OUTPUT_TALLIES_CSV, index=False)
            logger.info(f"Wrote: {OUTPUT_TALLIES} ({len(result.region_tallies)} counties)")

            outputs = {
                "county_tallies": str(OUTPUT_TALLIES),
                "county_tallies_csv": str(OUTPUT_TALLIES_CSV),
            }
            summary = result.summary()

            for (label, mode), cells in result.hotspots.items():
                cells_path = HOTSPOTS_DIR / f"hotspots_{label}_{mode}.parquet"
                geojson_path = HOTSPOTS_DIR / f"hotspots_{label}_{mode}.geojson"

                atomic_write_gdf(cells, cells_path)
                logger.info(f"Wrote: {cells_path} ({len(cells):,} cells)")

                significant = cells[cells["is_significant"]]
                if len(significant) > 0:
                    atomic_write_gdf(significant.to_crs(4326), geojson_path)
                    logger.info(f"Wrote: {geojson_path} ({len(significant):,} significant cells)")
                    outputs[f"{label}_{mode}_geojson"] = str(geojson_path)
                else:
                    logger.warning(f"No significant cells for window '{label}' ({mode})")

                outputs[f"{label}_{mode}"] = str(cells_path)
                logger.log_hotspot_summary(f"{label}/{mode}", summary[f"{label}/{mode}"])

                write_metadata_sidecar(
                    output_path=cells_path,
                    inputs={"observations": str(INPUT_OBSERVATIONS), "subregions": str(INPUT_SUBREGIONS)},
                    config={"hotspots": hotspot_params, "time_windows": params["time_windows"]},
                    run_id=logger.run_id,
                    extra={
                        "window": label,
                        "mode": mode,
                        "crs_epsg": get_crs_epsg(cells),
                        **summary[f"{label}/{mode}"],
                        "sha256": hash_file(cells_path),
                    },
                )

            atomic_write_json(
                {
                    "run_id": logger.run_id,
                    "join_stats": result.join_stats,
                    "record_errors": result.record_errors,
                    "windows": {label: len(frame) for label, frame in result.partitions.items()},
                    "hotspots": summary,
                },
                OUTPUT_SUMMARY,
            )
            outputs["summary"] = str(OUTPUT_SUMMARY)
            logger.log_outputs(outputs)

            logger.log_metrics({
                "joined_observations": len(result.joined),
                "matched": result.join_stats["matched"],
                "outside_boundary": result.join_stats["outside_boundary"],
                "hotspots": summary,
            })

            logger.info("=" * 70)
            logger.info("Hotspot Summary:")
            for key, s in summary.items():
                logger.info(
                    f"  {key}: {s['occupied_cells']:,}/{s['cells']:,} occupied, "
                    f"{s['hot_cells']:,} hot, {s['cold_cells']:,} cold"
                )
            logger.info("=" * 70)
            logger.info("SUCCESS: Hotspots built")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
