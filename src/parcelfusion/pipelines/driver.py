"""
Pipeline Driver

Runs one source end to end in two passes over a re-iterable record source:

1. Statistics pass: known construction years per land-use category.
2. Output pass: normalize, date, write detailed features, cluster, and
   stage records for the cache.

Both output files are written to temporary files and published together at
the end; source metadata is committed only after a successful publish.
"""
import os
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, List, Literal, Optional, Union

import requests
from pydantic import BaseModel, Field

from config.settings import settings
from src.parcelfusion.aggregation.clustering import BlockIdRule, ClusterMap
from src.parcelfusion.cache.feature_cache import CacheEntry, CacheWriter, FeatureCache
from src.parcelfusion.dating.boundaries import (
    BoundarySet,
    SerialInterpolation,
    load_boundary_set,
    load_exact_lookup,
)
from src.parcelfusion.dating.distance_model import (
    ConcentricRingModel,
    HistoricalCenter,
    YearEstimator,
    YearRing,
)
from src.parcelfusion.dating.statistics import YearStatistics
from src.parcelfusion.dating.waterfall import DateWaterfall, DatingContext
from src.parcelfusion.exceptions import ConfigurationError, ParcelFusionError, RecordError, RunStopped
from src.parcelfusion.fetch.fetcher import PageFetcher
from src.parcelfusion.models.source_config import SourceDefinition
from src.parcelfusion.pipelines.outputs import (
    AtomicFileWriter,
    DetailWriter,
    detail_feature,
    output_paths,
    publish_together,
    write_aggregated,
)
from src.parcelfusion.pipelines.sources import (
    BufferedFetchSource,
    CachedRecordSource,
    GeoJSONFileSource,
    RecordSource,
    StreamingFetchSource,
    build_adapter,
)
from src.parcelfusion.registry.sources import get_source
from src.parcelfusion.transformers.coordinate_transformer import ProjectionRegistry
from src.parcelfusion.transformers.schema_normalizer import NormalizerConfig, SchemaNormalizer
from src.parcelfusion.utils.logger import bind_run_context, clear_run_context, get_logger

logger = get_logger(__name__)

StopCheck = Callable[[], bool]

# Local sources have no page boundaries; check for a stop this often
STOP_CHECK_EVERY = 1000


class RunReport(BaseModel):
    """Summary of one source run."""

    source_id: str
    status: Literal["running", "completed", "stopped", "failed"] = "running"
    record_source: Optional[str] = Field(None, description="cache, buffered, streaming or file")
    from_cache: bool = False
    records_seen: int = Field(0, description="Raw records read in the output pass")
    known_years: int = Field(0, description="Records with a source year in the statistics pass")
    processed: int = Field(0, description="Parcels written to the detailed output")
    skipped: int = 0
    skip_reasons: Dict[str, int] = Field(default_factory=dict)
    date_methods: Dict[str, int] = Field(default_factory=dict)
    clusters: int = 0
    boundary_ray_casts: int = 0
    fetch_complete: bool = True
    cache_records_written: int = 0
    detailed_path: Optional[str] = None
    aggregated_path: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


@dataclass
class RunComponents:
    """Per-run collaborators built from a source definition."""
    normalizer: SchemaNormalizer
    statistics: YearStatistics
    waterfall: DateWaterfall
    cluster_map: ClusterMap
    paths: Dict[str, Path]


class PipelineDriver:
    """
    Runs sources one at a time.

    Usage:
        driver = PipelineDriver()
        report = driver.run("campbell")
    """

    def __init__(
        self,
        cache: Optional[FeatureCache] = None,
        fetcher: Optional[PageFetcher] = None,
        output_dir: Optional[Union[str, Path]] = None,
        projections: Optional[ProjectionRegistry] = None,
        session: Optional[requests.Session] = None,
        distance_models: Optional[Dict[str, YearEstimator]] = None,
        streaming_threshold: Optional[int] = None,
        use_cache: bool = True
    ):
        """
        Initialize driver.

        Args:
            cache: Feature cache (default: settings.cache_database_url)
            fetcher: Paged fetcher (default: built from settings)
            output_dir: Directory for output files (default: settings.output_dir)
            projections: Projection registry shared by all sources
            session: HTTP session for provider adapters
            distance_models: Per-source imputation strategies replacing the
                configured ring model
            streaming_threshold: Record count above which sources are
                re-fetched per pass instead of buffered
            use_cache: Read and write the feature cache
        """
        self.use_cache = use_cache
        self.cache = cache if cache is not None or not use_cache else FeatureCache()
        self.fetcher = fetcher
        self.output_dir = Path(output_dir or settings.output_dir)
        self.projections = projections or ProjectionRegistry()
        self.session = session
        self.distance_models = distance_models or {}
        self._change_token: Optional[str] = None
        self.streaming_threshold = (
            settings.streaming_threshold if streaming_threshold is None else streaming_threshold
        )

    # Component construction

    def _fetcher_for(self, definition: SourceDefinition) -> PageFetcher:
        if self.fetcher is not None:
            return self.fetcher
        return PageFetcher(tolerate_page_failures=definition.tolerate_page_failures)

    def _distance_model(self, definition: SourceDefinition) -> Optional[YearEstimator]:
        if definition.source_id in self.distance_models:
            return self.distance_models[definition.source_id]
        config = definition.dating.distance_model
        if config is None:
            return None
        return ConcentricRingModel(
            centers=[HistoricalCenter(c.name, c.lng, c.lat) for c in config.centers],
            rings=[YearRing(r.max_km, r.start_year, r.span) for r in config.rings],
            seed=settings.imputation_seed,
        )

    def _dating_context(self, definition: SourceDefinition, statistics: YearStatistics) -> DatingContext:
        dating = definition.dating

        lookup: Dict[str, int] = {}
        if dating.exact_lookup is not None:
            cfg = dating.exact_lookup
            lookup = load_exact_lookup(
                definition.resolve_path(cfg.path),
                cfg.id_field,
                cfg.date_field,
                tuple(cfg.year_range) if cfg.year_range else None,
            )

        boundaries = BoundarySet()
        if dating.boundaries is not None:
            cfg = dating.boundaries
            boundaries = load_boundary_set(
                definition.resolve_path(cfg.path),
                name_field=cfg.name_field,
                document_field=cfg.document_field,
                serial_field=cfg.serial_field,
                interpolation=SerialInterpolation(
                    first_serial=cfg.first_serial,
                    first_year=cfg.first_year,
                    years_per_serial=cfg.years_per_serial,
                    min_year=cfg.min_year,
                    max_year=cfg.max_year,
                    sentinels=tuple(cfg.serial_sentinels),
                ),
                year_field=cfg.year_field,
            )

        return DatingContext(
            statistics=statistics,
            exact_lookup=lookup,
            boundaries=boundaries,
            distance_model=self._distance_model(definition),
        )

    def _check_output_dir(self) -> None:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create output directory {self.output_dir}: {e}") from e
        if not os.access(self.output_dir, os.W_OK):
            raise ConfigurationError(f"Output directory {self.output_dir} is not writable")

    def build_components(self, definition: SourceDefinition) -> RunComponents:
        """
        Build every collaborator for a run.

        Raises:
            ConfigurationError: Unregistered source CRS, unreadable boundary or
                lookup file, or unwritable output directory
        """
        norm = definition.normalization
        normalizer = SchemaNormalizer(NormalizerConfig(
            source_id=definition.source_id,
            field_mapping=norm.field_mapping,
            date_format=norm.date_format,
            source_crs=norm.source_crs,
            area_unit=norm.area_unit,
            land_use_mapping=dict(norm.land_use_mapping),
            registry=self.projections,
            require_identity=norm.require_identity,
            strict_dates=norm.strict_dates,
            detect_missing_crs=norm.detect_missing_crs,
        ))

        statistics = YearStatistics(definition.dating.fallback_year)
        waterfall = DateWaterfall(
            self._dating_context(definition, statistics),
            trust_source_years=definition.dating.trust_source_years,
        )

        clustering = definition.clustering
        cluster_map = ClusterMap(
            grid_size=clustering.grid_size,
            block_rule=BlockIdRule(
                separator=clustering.block_separator,
                segments=clustering.block_segments,
                prefix_length=clustering.block_prefix_length,
            ),
            measure=clustering.measure,
        )

        self._check_output_dir()
        paths = output_paths(self.output_dir, definition.source_id, definition.detail_format)
        return RunComponents(normalizer, statistics, waterfall, cluster_map, paths)

    # Record source selection

    def choose_record_source(
        self,
        definition: SourceDefinition,
        force_refresh: bool = False,
        should_stop: Optional[StopCheck] = None
    ) -> RecordSource:
        """
        Pick where this run reads records from.

        Local file sources are read directly. Remote sources replay the cache
        when it is fresh; otherwise they are fetched, buffered in memory when
        small and re-fetched per pass when large.
        """
        if definition.adapter.kind == "file":
            return GeoJSONFileSource(definition.resolve_path(definition.adapter.path))

        adapter = build_adapter(definition, self.session)
        token = adapter.change_token()
        self._change_token = token

        if self.use_cache and not force_refresh:
            if not self.cache.needs_refresh(definition.source_id, token):
                return CachedRecordSource(self.cache, definition.source_id)

        fetcher = self._fetcher_for(definition)
        expected = definition.expected_count
        if expected is None:
            expected = fetcher.count_records(adapter)

        if expected is not None and expected > self.streaming_threshold:
            logger.info("streaming_mode_selected", expected=expected, threshold=self.streaming_threshold)
            return StreamingFetchSource(fetcher, adapter, should_stop)
        return BufferedFetchSource(fetcher, adapter, should_stop)

    # Running

    def run(
        self,
        source: Union[str, SourceDefinition],
        force_refresh: bool = False,
        should_stop: Optional[StopCheck] = None
    ) -> RunReport:
        """
        Run one source.

        Args:
            source: Registry id or a source definition
            force_refresh: Fetch even when the cache is fresh
            should_stop: Checked between pages and periodically between
                records; a stopped run publishes nothing

        Returns:
            RunReport (status ``completed`` or ``stopped``)

        Raises:
            ConfigurationError: Before any output is written
            PageFetchError: A page exhausted its retries and the source does
                not tolerate gaps
        """
        definition = source if isinstance(source, SourceDefinition) else get_source(source)
        stop = should_stop or (lambda: False)
        report = RunReport(source_id=definition.source_id)
        started = time.monotonic()
        self._change_token = None

        bind_run_context(definition.source_id)
        logger.info("pipeline_run_started", force_refresh=force_refresh)
        try:
            self._run(definition, force_refresh, stop, report)
            report.status = "completed"
            logger.info(
                "pipeline_run_completed",
                processed=report.processed,
                skipped=report.skipped,
                skip_reasons=report.skip_reasons,
                date_methods=report.date_methods,
                clusters=report.clusters,
                from_cache=report.from_cache
            )
        except RunStopped as e:
            report.status = "stopped"
            report.error = str(e)
            logger.warning("pipeline_run_stopped", records_seen=report.records_seen)
        except ParcelFusionError as e:
            report.status = "failed"
            report.error = str(e)
            logger.error("pipeline_run_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            report.finished_at = datetime.now(timezone.utc)
            report.duration_seconds = round(time.monotonic() - started, 3)
            clear_run_context()
        return report

    def _statistics_pass(
        self,
        record_source: RecordSource,
        components: RunComponents,
        stop: StopCheck,
        report: RunReport
    ) -> None:
        for count, raw in enumerate(record_source, start=1):
            if count % STOP_CHECK_EVERY == 0 and stop():
                raise RunStopped(f"Stopped during statistics pass after {count} records")
            sample = components.normalizer.year_sample(raw)
            if sample is not None:
                components.statistics.add_year(*sample)

        if stop():
            raise RunStopped("Stopped after statistics pass")

        report.known_years = components.statistics.known_count
        logger.info(
            "statistics_pass_completed",
            known_years=report.known_years,
            medians=components.statistics.summary()
        )

    @contextmanager
    def _cache_writer(
        self,
        definition: SourceDefinition,
        record_source: RecordSource
    ) -> Generator[Optional[CacheWriter], None, None]:
        if not (self.use_cache and record_source.fetched):
            yield None
            return
        with self.cache.transaction(definition.source_id) as writer:
            writer.clear()
            yield writer

    def _run(
        self,
        definition: SourceDefinition,
        force_refresh: bool,
        stop: StopCheck,
        report: RunReport
    ) -> None:
        components = self.build_components(definition)
        record_source = self.choose_record_source(definition, force_refresh, stop)
        report.record_source = record_source.kind
        report.from_cache = record_source.from_cache

        self._statistics_pass(record_source, components, stop, report)

        skips: Counter = Counter()
        detail = DetailWriter(components.paths["detailed"], definition.detail_format)
        aggregated = AtomicFileWriter(components.paths["aggregated"])

        try:
            detail.open()
            with self._cache_writer(definition, record_source) as cache_writer:
                staged: List[CacheEntry] = []

                for index, raw in enumerate(record_source):
                    if (index + 1) % STOP_CHECK_EVERY == 0 and stop():
                        raise RunStopped(f"Stopped during output pass after {index + 1} records")
                    report.records_seen += 1

                    try:
                        parcel = components.normalizer.normalize(raw, index)
                    except RecordError as e:
                        skips[e.reason] += 1
                        logger.debug("record_skipped", reason=e.reason, record_id=e.record_id, error=str(e))
                        parcel = None

                    if parcel is not None:
                        evidence = components.waterfall.resolve(parcel)
                        detail.write_feature(detail_feature(parcel, evidence))
                        report.processed += 1
                        if not components.cluster_map.add(parcel, evidence):
                            skips["unclusterable"] += 1

                    if cache_writer is not None:
                        staged.append((index, raw, parcel))
                        if len(staged) >= self.cache.batch_size:
                            cache_writer.upsert(staged)
                            staged = []

                if stop():
                    raise RunStopped("Stopped after output pass")

                fetch_stats = record_source.stats
                if fetch_stats is not None:
                    report.fetch_complete = fetch_stats.complete and not fetch_stats.truncated
                    if fetch_stats.failed_offsets:
                        skips["fetch_failure"] += len(fetch_stats.failed_offsets)

                features = components.cluster_map.finalize()
                aggregated.open()
                write_aggregated(aggregated, features)

                detailed_path, aggregated_path = publish_together(detail, aggregated)
                report.detailed_path = str(detailed_path)
                report.aggregated_path = str(aggregated_path)
                report.clusters = len(features)

                if cache_writer is not None:
                    if staged:
                        cache_writer.upsert(staged)
                    if report.fetch_complete:
                        cache_writer.commit_source_metadata(self._change_token, report.records_seen)
                        report.cache_records_written = cache_writer.written
                    else:
                        # A partial copy must not look fresh on the next run
                        cache_writer.discard()
        except BaseException:
            detail.abort()
            aggregated.abort()
            raise
        finally:
            report.skip_reasons = dict(skips)
            report.skipped = sum(skips.values())
            report.date_methods = dict(components.waterfall.method_counts)
            report.boundary_ray_casts = components.waterfall.context.boundaries.ray_casts
            if skips:
                logger.warning("records_skipped", skipped=report.skipped, skip_reasons=report.skip_reasons)
