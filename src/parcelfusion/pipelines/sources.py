"""
Record Sources

Re-iterable streams of raw records. The driver reads a source twice (one
pass for statistics, one for output), so every implementation must yield
the same records in the same order on each iteration without the driver
holding them in memory.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

import requests

from src.parcelfusion.cache.feature_cache import FeatureCache
from src.parcelfusion.exceptions import ConfigurationError
from src.parcelfusion.fetch.adapters import ArcGISAdapter, SocrataAdapter
from src.parcelfusion.fetch.fetcher import FetchStats, PageAdapter, PageFetcher, StopCheck
from src.parcelfusion.models.source_config import SourceDefinition
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

RawRecord = Dict[str, Any]


class RecordSource(Protocol):
    """
    Raw records of one source, iterable any number of times.

    Attributes:
        kind: Short name used in reports and logs
        from_cache: Records come from the local cache, not the provider
        fetched: Records come from a provider fetch and may be cached
        stats: Fetch progress of the latest iteration (None for local reads)
    """

    kind: str
    from_cache: bool
    fetched: bool
    stats: Optional[FetchStats]

    def __iter__(self) -> Iterator[RawRecord]:
        ...


class CachedRecordSource:
    """Last-known records of a source, replayed from the cache."""

    kind = "cache"
    from_cache = True
    fetched = False
    stats = None

    def __init__(self, cache: FeatureCache, source_id: str):
        self.cache = cache
        self.source_id = source_id

    def __iter__(self) -> Iterator[RawRecord]:
        return self.cache.iter_raw_records(self.source_id)


class BufferedFetchSource:
    """
    Fetches once on first iteration and replays the buffer afterwards.

    For sources small enough to hold in memory.
    """

    kind = "buffered"
    from_cache = False
    fetched = True

    def __init__(
        self,
        fetcher: PageFetcher,
        adapter: PageAdapter,
        should_stop: Optional[StopCheck] = None
    ):
        self.fetcher = fetcher
        self.adapter = adapter
        self.should_stop = should_stop
        self.stats: Optional[FetchStats] = None
        self._records: Optional[List[RawRecord]] = None

    def __iter__(self) -> Iterator[RawRecord]:
        if self._records is None:
            result = self.fetcher.fetch(self.adapter, should_stop=self.should_stop)
            self._records = result.records
            self.stats = result.stats
        return iter(self._records)


class StreamingFetchSource:
    """
    Re-runs the paged fetch on every iteration.

    For large sources: nothing is buffered, at the cost of fetching the
    source once per pass.
    """

    kind = "streaming"
    from_cache = False
    fetched = True

    def __init__(
        self,
        fetcher: PageFetcher,
        adapter: PageAdapter,
        should_stop: Optional[StopCheck] = None
    ):
        self.fetcher = fetcher
        self.adapter = adapter
        self.should_stop = should_stop
        self.stats: Optional[FetchStats] = None
        self.passes = 0

    def __iter__(self) -> Iterator[RawRecord]:
        self.passes += 1
        self.stats = FetchStats()
        logger.info("streaming_pass_started", source_id=self.adapter.source_id, pass_number=self.passes)
        for page in self.fetcher.iter_pages(self.adapter, should_stop=self.should_stop, stats=self.stats):
            yield from page.records


class GeoJSONFileSource:
    """
    Local GeoJSON FeatureCollection, or newline-delimited features when the
    file ends in ``.ndjson`` / ``.geojsonl``.
    """

    kind = "file"
    from_cache = False
    fetched = False
    stats = None

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if not self.path.is_file():
            raise ConfigurationError(f"Input file not found: {self.path}")

    def _is_line_delimited(self) -> bool:
        return self.path.suffix.lower() in (".ndjson", ".geojsonl", ".jsonl")

    def __iter__(self) -> Iterator[RawRecord]:
        if self._is_line_delimited():
            return self._iter_lines()
        return self._iter_collection()

    def _iter_lines(self) -> Iterator[RawRecord]:
        with self.path.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid JSON on line {line_number} of {self.path}: {e}") from e

    def _iter_collection(self) -> Iterator[RawRecord]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid GeoJSON in {self.path}: {e}") from e

        if isinstance(payload, dict) and payload.get("type") == "FeatureCollection":
            yield from payload.get("features") or []
        elif isinstance(payload, list):
            yield from payload
        else:
            raise ConfigurationError(f"{self.path} is not a FeatureCollection or a list of records")


def build_adapter(
    definition: SourceDefinition,
    session: Optional[requests.Session] = None
) -> PageAdapter:
    """
    Create the provider adapter a source definition asks for.

    Raises:
        ConfigurationError: For file sources, which have no adapter
    """
    config = definition.adapter
    if config.kind == "arcgis":
        return ArcGISAdapter(
            definition.source_id,
            config.url,
            out_fields=config.out_fields,
            where=config.where or "1=1",
            out_sr=config.out_sr,
            response_format=config.response_format,
            session=session,
        )
    if config.kind == "socrata":
        return SocrataAdapter(
            definition.source_id,
            config.url,
            fields=config.fields,
            where=config.where,
            session=session,
        )
    raise ConfigurationError(f"Source {definition.source_id} of kind {config.kind} has no fetch adapter")
