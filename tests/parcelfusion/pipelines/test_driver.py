"""
Unit tests for the pipeline driver
"""
import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from src.parcelfusion.cache.feature_cache import FeatureCache
from src.parcelfusion.exceptions import ConfigurationError, PageFetchError, TransientFetchError
from src.parcelfusion.fetch.fetcher import Page, PageFetcher
from src.parcelfusion.fetch.retry import RetryPolicy
from src.parcelfusion.models.source_config import SourceDefinition
from src.parcelfusion.pipelines.driver import PipelineDriver
from src.parcelfusion.pipelines.outputs import AtomicFileWriter


def feature(apn, year=None, use="Single Family", coordinates=(-121.95, 37.28), **extra):
    record = {
        "type": "Feature",
        "properties": {"APN": apn, "YEAR": year, "USE": use},
        "geometry": {"type": "Point", "coordinates": list(coordinates)},
    }
    record.update(extra)
    return record


def definition(path=None, **overrides):
    values = {
        "source_id": "test-source",
        "name": "Test Source",
        "adapter": {"kind": "file", "path": str(path)} if path else {"kind": "socrata", "url": "https://example.org/resource/x.json"},
        "normalization": {"field_mapping": {"id": "APN", "year_built": "YEAR", "land_use": "USE"}},
        "clustering": {"grid_size": 0.01},
    }
    values.update(overrides)
    return SourceDefinition(**values)


def write_collection(path, features):
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}))
    return path


class FakeAdapter:
    """Provider serving a fixed list of features in pages."""

    source_id = "test-source"

    def __init__(self, records, failing_offsets=()):
        self.records = records
        self.failing_offsets = set(failing_offsets)
        self.requested = []

    def count(self):
        return len(self.records)

    def change_token(self):
        return "t1"

    def fetch_page(self, offset, limit):
        self.requested.append(offset)
        if offset in self.failing_offsets:
            raise TransientFetchError(f"offset {offset} unavailable", status_code=503)
        page = self.records[offset:offset + limit]
        return Page(offset=offset, records=page, has_more=offset + limit < len(self.records))


def make_fetcher(tolerate=False):
    return PageFetcher(
        concurrency=1,
        batch_size=2,
        max_batches=50,
        retry_policy=RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0, sleep=Mock()),
        delay_seconds=0.0,
        tolerate_page_failures=tolerate,
    )


@pytest.fixture
def source_file(tmp_path):
    """Five records: two known years, two to impute, one without geometry."""
    return write_collection(tmp_path / "parcels.geojson", [
        feature("012-345-001", 1960),
        feature("012-345-002", 1980, use="Retail Store"),
        feature("012-345-003", None, use="Office Building"),
        feature("012-345-004", None),
        {"type": "Feature", "properties": {"APN": "012-345-005", "YEAR": 1990, "USE": "Single Family"}, "geometry": None},
    ])


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "out"


def read_detail(path):
    return {f["properties"]["id"]: f["properties"] for f in json.loads(Path(path).read_text())["features"]}


class TestFileRun:
    """Tests for runs over local files"""

    def test_end_to_end(self, source_file, output_dir):
        """Test both outputs are published with dated parcels"""
        driver = PipelineDriver(output_dir=output_dir, use_cache=False)
        report = driver.run(definition(source_file))

        assert report.status == "completed"
        assert report.record_source == "file"
        assert report.records_seen == 5
        assert report.known_years == 3
        assert report.processed == 4
        assert report.skipped == 1
        assert report.skip_reasons == {"missing_geometry": 1}
        assert report.date_methods == {"exact": 2, "category_median": 2}
        assert report.finished_at is not None

        detail = read_detail(report.detailed_path)
        assert detail["012-345-001"]["year"] == 1960
        assert detail["012-345-001"]["estimated"] is False
        # Single family median includes the record later rejected for geometry
        assert detail["012-345-004"]["year"] == 1975
        # No office years anywhere: global median of 1960, 1980, 1990
        assert detail["012-345-003"]["year"] == 1980
        assert detail["012-345-003"]["estimated"] is True

        aggregated = json.loads(Path(report.aggregated_path).read_text())
        assert report.clusters == 1
        assert aggregated["features"][0]["properties"]["count"] == 4
        assert not list(output_dir.glob("*.tmp"))

    def test_record_with_unregistered_crs_fails_alone(self, tmp_path, output_dir):
        """Test a record declaring an unknown CRS is skipped and its siblings written"""
        path = write_collection(tmp_path / "crs.geojson", [
            feature("A-1", 1970),
            feature("A-2", 1971, crs={"type": "name", "properties": {"name": "EPSG:99999"}}),
            feature("A-3", 1972),
        ])

        report = PipelineDriver(output_dir=output_dir, use_cache=False).run(definition(path))

        assert report.processed == 2
        assert report.skip_reasons == {"unregistered_crs": 1}
        assert set(read_detail(report.detailed_path)) == {"A-1", "A-3"}

    def test_ndjson_detail(self, source_file, output_dir):
        """Test line-delimited detailed output"""
        report = PipelineDriver(output_dir=output_dir, use_cache=False).run(
            definition(source_file, detail_format="ndjson")
        )
        assert report.detailed_path.endswith("test-source-detailed.ndjson")
        with open(report.detailed_path) as f:
            assert len(f.read().splitlines()) == 4

    def test_distance_model_override(self, source_file, output_dir):
        """Test an injected estimator dates parcels without a source year"""
        model = Mock()
        model.estimate.return_value = (1999, "test:0.0km")
        driver = PipelineDriver(output_dir=output_dir, use_cache=False, distance_models={"test-source": model})

        report = driver.run(definition(source_file))

        assert report.date_methods == {"exact": 2, "distance_model": 2}
        assert read_detail(report.detailed_path)["012-345-004"]["method"] == "distance_model"

    def test_stop_publishes_nothing(self, source_file, output_dir):
        """Test a stopped run leaves previously published outputs alone"""
        output_dir.mkdir()
        previous = output_dir / "test-source-detailed.geojson"
        previous.write_text("previous")

        report = PipelineDriver(output_dir=output_dir, use_cache=False).run(
            definition(source_file), should_stop=lambda: True
        )

        assert report.status == "stopped"
        assert previous.read_text() == "previous"
        assert not (output_dir / "test-source-aggregated.geojson").exists()
        assert not list(output_dir.glob("*.tmp"))

    def test_failure_aborts_outputs(self, source_file, output_dir):
        """Test an error mid-run removes temporary files and keeps old outputs"""
        output_dir.mkdir()
        previous = output_dir / "test-source-detailed.geojson"
        previous.write_text("previous")

        with patch("src.parcelfusion.pipelines.driver.write_aggregated", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                PipelineDriver(output_dir=output_dir, use_cache=False).run(definition(source_file))

        assert previous.read_text() == "previous"
        assert not list(output_dir.glob("*.tmp"))

    def test_outputs_finished_before_either_is_published(self, source_file, output_dir):
        """Test a failure finishing the aggregated file leaves the previous detailed file"""
        output_dir.mkdir()
        previous = output_dir / "test-source-detailed.geojson"
        previous.write_text("previous")

        with patch.object(AtomicFileWriter, "_write_footer", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                PipelineDriver(output_dir=output_dir, use_cache=False).run(definition(source_file))

        assert previous.read_text() == "previous"
        assert not (output_dir / "test-source-aggregated.geojson").exists()
        assert not list(output_dir.glob("*.tmp"))

    def test_missing_input_file(self, tmp_path, output_dir):
        """Test a missing input is a configuration error"""
        with pytest.raises(ConfigurationError):
            PipelineDriver(output_dir=output_dir, use_cache=False).run(definition(tmp_path / "none.geojson"))

    def test_unusable_output_dir(self, source_file, tmp_path):
        """Test an output path that is a file is a configuration error"""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(ConfigurationError):
            PipelineDriver(output_dir=blocker, use_cache=False).run(definition(source_file))

    def test_unknown_source(self, output_dir):
        """Test unknown registry ids are rejected"""
        with pytest.raises(ConfigurationError):
            PipelineDriver(output_dir=output_dir, use_cache=False).run("atlantis")


class TestFetchedRun:
    """Tests for runs against a provider with the cache"""

    @pytest.fixture
    def records(self):
        return [feature(f"9-9-{n}", 1950 + n) for n in range(5)]

    @pytest.fixture
    def cache(self):
        feature_cache = FeatureCache("sqlite:///:memory:")
        yield feature_cache
        feature_cache.close()

    def test_fetch_then_replay_from_cache(self, records, cache, output_dir):
        """Test a fresh fetch is cached and the next run replays it"""
        adapter = FakeAdapter(records)
        driver = PipelineDriver(cache=cache, fetcher=make_fetcher(), output_dir=output_dir)

        with patch("src.parcelfusion.pipelines.driver.build_adapter", return_value=adapter):
            first = driver.run(definition())
            requested = len(adapter.requested)
            second = driver.run(definition())

        assert first.record_source == "buffered"
        assert not first.from_cache
        assert first.cache_records_written == 5
        assert cache.get_source_metadata("test-source").change_token == "t1"

        assert second.record_source == "cache"
        assert second.from_cache
        assert second.processed == 5
        assert len(adapter.requested) == requested

    def test_force_refresh(self, records, cache, output_dir):
        """Test force_refresh fetches even when the cache is fresh"""
        adapter = FakeAdapter(records)
        driver = PipelineDriver(cache=cache, fetcher=make_fetcher(), output_dir=output_dir)

        with patch("src.parcelfusion.pipelines.driver.build_adapter", return_value=adapter):
            driver.run(definition())
            report = driver.run(definition(), force_refresh=True)

        assert report.record_source == "buffered"

    def test_streaming_fetches_each_pass(self, records, cache, output_dir):
        """Test large sources are fetched once per pass"""
        adapter = FakeAdapter(records)
        driver = PipelineDriver(
            cache=cache, fetcher=make_fetcher(), output_dir=output_dir, streaming_threshold=1
        )

        with patch("src.parcelfusion.pipelines.driver.build_adapter", return_value=adapter):
            report = driver.run(definition())

        assert report.record_source == "streaming"
        assert report.processed == 5
        assert adapter.requested == [0, 2, 4, 0, 2, 4]

    def test_incomplete_fetch_not_cached(self, records, cache, output_dir):
        """Test gaps in a fetch keep the cache stale and are reported"""
        adapter = FakeAdapter(records, failing_offsets=[2])
        driver = PipelineDriver(cache=cache, fetcher=make_fetcher(tolerate=True), output_dir=output_dir)

        with patch("src.parcelfusion.pipelines.driver.build_adapter", return_value=adapter):
            report = driver.run(definition())

        assert report.status == "completed"
        assert not report.fetch_complete
        assert report.skip_reasons == {"fetch_failure": 1}
        assert report.processed == 2
        assert report.cache_records_written == 0
        assert cache.get_source_metadata("test-source") is None
        assert cache.feature_count("test-source") == 0

    def test_page_failure_is_fatal_when_not_tolerated(self, records, cache, output_dir):
        """Test an exhausted page fails the run without touching the cache"""
        adapter = FakeAdapter(records, failing_offsets=[2])
        driver = PipelineDriver(cache=cache, fetcher=make_fetcher(), output_dir=output_dir)

        with patch("src.parcelfusion.pipelines.driver.build_adapter", return_value=adapter):
            with pytest.raises(PageFetchError):
                driver.run(definition())

        assert cache.get_source_metadata("test-source") is None

    def test_other_source_runs_on_same_cache_file(self, tmp_path, output_dir):
        """Test a second source can run against the cache file while the first is in its output pass"""
        url = f"sqlite:///{tmp_path / 'cache.db'}"
        first_cache = FeatureCache(url, batch_size=2)
        second_cache = FeatureCache(url, batch_size=2)
        adapters = {
            "county-a": FakeAdapter([feature(f"1-1-{n}", 1950 + n) for n in range(5)]),
            "county-b": FakeAdapter([feature(f"2-2-{n}", 1970 + n) for n in range(3)]),
        }
        nested = []

        def run_second_source():
            # First staged rows mean the first run is inside its output pass
            if not nested and first_cache.stats()["staged_records"]:
                driver = PipelineDriver(cache=second_cache, fetcher=make_fetcher(), output_dir=output_dir)
                nested.append(driver.run(definition(source_id="county-b")))
            return False

        try:
            with patch(
                "src.parcelfusion.pipelines.driver.build_adapter",
                side_effect=lambda source, session: adapters[source.source_id],
            ):
                driver = PipelineDriver(cache=first_cache, fetcher=make_fetcher(), output_dir=output_dir)
                report = driver.run(definition(source_id="county-a"), should_stop=run_second_source)

            assert report.status == "completed"
            assert len(nested) == 1
            assert nested[0].status == "completed"
            assert nested[0].cache_records_written == 3
            assert first_cache.feature_count("county-a") == 5
            assert first_cache.feature_count("county-b") == 3
            assert first_cache.get_source_metadata("county-b").change_token == "t1"
            assert second_cache.get_source_metadata("county-a").record_count == 5
            assert first_cache.stats()["staged_records"] == 0
        finally:
            first_cache.close()
            second_cache.close()
