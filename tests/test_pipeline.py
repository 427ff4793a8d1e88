"""
End-to-end tests for run_hotspot_pipeline on synthetic data.
"""

import pytest
import pandas as pd
import numpy as np

from species_hotspots.errors import ConfigurationError
from species_hotspots.hotspots import HotspotConfig
from species_hotspots.pipeline import PipelineResult, run_hotspot_pipeline
from species_hotspots.schemas import HOTSPOT_SCHEMA, REGION_TALLY_SCHEMA, validate_schema
from species_hotspots.time_utils import TimeWindow

from conftest import make_points


@pytest.fixture
def windows():
    return [
        TimeWindow.from_bounds("historic", "2014-01-01", "2020-01-01"),
        TimeWindow.from_bounds("recent", "2020-01-01", "2026-01-01"),
    ]


@pytest.fixture
def config():
    return HotspotConfig(cell_size=0.25, grid_type="square")


@pytest.fixture
def result(observations, regions, boundary, windows, config):
    return run_hotspot_pipeline(observations, regions, boundary, windows, config)


class TestPipelineOutputs:
    """Shape of a pipeline run."""

    def test_result_type(self, result):
        assert isinstance(result, PipelineResult)

    def test_count_mode_keys(self, result):
        assert set(result.hotspots) == {("historic", "count"), ("recent", "count")}

    def test_partitions(self, result):
        assert set(result.partitions["historic"]["id"]) == {1, 4}
        # id 5 lies outside the boundary
        assert set(result.partitions["recent"]["id"]) == {2, 3}

    def test_grids_match_across_windows(self, result):
        historic = result.hotspots[("historic", "count")]
        recent = result.hotspots[("recent", "count")]
        assert len(historic) == len(recent) == 32
        assert all(a.equals_exact(b, 0) for a, b in zip(historic.geometry, recent.geometry))

    def test_counts_match_partitions(self, result):
        for (label, mode), cells in result.hotspots.items():
            assert cells["count"].sum() == len(result.partitions[label])

    def test_output_schemas(self, result):
        validate_schema(result.region_tallies, REGION_TALLY_SCHEMA)
        for cells in result.hotspots.values():
            validate_schema(cells, HOTSPOT_SCHEMA)

    def test_join_stats(self, result):
        assert result.join_stats["total_points"] == 5
        assert result.join_stats["outside_boundary"] == 1

    def test_summary_keys(self, result):
        assert set(result.summary()) == {"historic/count", "recent/count"}

    def test_hot_implies_significant(self, result):
        for cells in result.hotspots.values():
            assert (~cells["is_hot"] | cells["is_significant"]).all()
            assert (cells.loc[cells["is_significant"], "p_value"] < 0.05).all()


class TestPipelineModes:
    """Weighted mode and empty windows."""

    def test_weighted_mode(self, observations, regions, boundary, windows, config):
        result = run_hotspot_pipeline(
            observations, regions, boundary, windows, config, weighted=True
        )
        assert ("recent", "weighted") in result.hotspots
        weighted = result.hotspots[("recent", "weighted")]
        counted = result.hotspots[("recent", "count")]

        assert weighted["count"].tolist() == counted["count"].tolist()
        assert weighted["value"].sum() > 0
        assert not np.allclose(weighted["value"], counted["value"])

    def test_empty_window(self, observations, regions, boundary, config):
        windows = [TimeWindow.from_bounds("future", "2030-01-01", "2031-01-01")]
        result = run_hotspot_pipeline(observations, regions, boundary, windows, config)
        cells = result.hotspots[("future", "count")]
        assert len(cells) == 32
        assert (cells["count"] == 0).all()
        assert not cells["is_hot"].any()

    def test_analysis_crs(self, observations, regions, boundary, windows):
        config = HotspotConfig(cell_size=50_000, grid_type="hex", crs=3857)
        result = run_hotspot_pipeline(observations, regions, boundary, windows, config)
        for cells in result.hotspots.values():
            assert cells.crs.to_epsg() == 3857


class TestPipelineErrors:
    """Failures surface before any computation."""

    def test_overlapping_windows_fail_first(self, observations, regions, boundary, config):
        windows = [
            TimeWindow.from_bounds("a", "2018-01-01", "2021-01-01"),
            TimeWindow.from_bounds("b", "2020-01-01", "2022-01-01"),
        ]
        # Regions are empty too; the window error must win
        with pytest.raises(ConfigurationError):
            run_hotspot_pipeline(observations, regions.iloc[0:0], boundary, windows, config)

    def test_bad_cell_size(self, observations, regions, boundary, windows):
        with pytest.raises(ConfigurationError):
            run_hotspot_pipeline(
                observations, regions, boundary, windows, HotspotConfig(cell_size=0)
            )


class TestRawRecords:
    """Raw tabular records are prepared inside the pipeline."""

    def test_record_errors_reported(self, regions, boundary, windows, config):
        records = pd.DataFrame({
            "id": [1, 2, 3, 4],
            "latitude": [0.5, None, 0.5, 0.5],
            "longitude": [0.5, 1.5, 1.5, 1.25],
            "observed_on": ["2021-05-01", "2021-05-02", "not a date", "2015-03-03"],
            "quality": ["research"] * 4,
        })
        result = run_hotspot_pipeline(records, regions, boundary, windows, config)

        assert result.record_errors == {"missing_location": 1, "missing_date": 1}
        assert set(result.joined["id"]) == {1, 4}
        assert list(result.partitions["recent"]["id"]) == [1]


class TestPreparedObservations:
    """Dropped rows are counted when the input is already a GeoDataFrame."""

    def test_undated_rows_counted(self, regions, boundary, windows, config):
        points = make_points([(0.5, 0.5), (1.5, 0.5)], dates=["2021-05-01", None])
        result = run_hotspot_pipeline(points, regions, boundary, windows, config)

        assert result.record_errors == {"missing_date": 1}
        assert sum(len(frame) for frame in result.partitions.values()) == 1

    def test_null_location_counted(self, regions, boundary, windows, config):
        points = make_points([(0.5, 0.5), None], dates=["2021-05-01", "2021-05-02"])
        result = run_hotspot_pipeline(points, regions, boundary, windows, config)

        assert result.record_errors == {"missing_location": 1}
        assert list(result.joined["id"]) == [1]


@pytest.mark.smoke
class TestPipelineSmoke:
    """Quick smoke tests for the pipeline."""

    def test_parallel_matches_serial(self, observations, regions, boundary, windows, config):
        serial = run_hotspot_pipeline(observations, regions, boundary, windows, config)
        parallel = run_hotspot_pipeline(
            observations, regions, boundary, windows, config, max_workers=2
        )
        assert set(serial.hotspots) == set(parallel.hotspots)
        for key in serial.hotspots:
            pd.testing.assert_frame_equal(
                serial.hotspots[key].drop(columns="geometry"),
                parallel.hotspots[key].drop(columns="geometry"),
            )

    def test_repeated_runs_identical(self, observations, regions, boundary, windows, config):
        first = run_hotspot_pipeline(observations, regions, boundary, windows, config)
        second = run_hotspot_pipeline(observations, regions, boundary, windows, config)
        assert first.joined["region"].tolist() == second.joined["region"].tolist()
        assert first.region_tallies["record_count"].tolist() == second.region_tallies["record_count"].tolist()
