"""
Feature Cache

Per-source freshness tracking and last-known records, persisted in SQLite
through SQLAlchemy.
"""
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from config.settings import settings
from src.parcelfusion.db.repository import (
    CachedParcelRepository,
    SourceMetadataRepository,
    StagedParcelRepository,
)
from src.parcelfusion.db.session import (
    create_all_tables,
    create_db_engine,
    create_session_factory,
    get_db_session,
)
from src.parcelfusion.exceptions import CacheError
from src.parcelfusion.models.parcel import NormalizedParcel
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

# (record index, raw record, normalized parcel or None)
CacheEntry = Tuple[int, Dict[str, Any], Optional[NormalizedParcel]]


@dataclass(frozen=True)
class SourceState:
    """Detached snapshot of a SourceMetadata row."""
    source_id: str
    change_token: Optional[str]
    last_fetched: datetime
    record_count: int


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; they are stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _rows(source_id: str, entries: Iterable[CacheEntry], seen: Set[str]) -> List[Dict[str, Any]]:
    rows = []
    for index, raw, parcel in entries:
        record_id = parcel.id if parcel is not None else f"{source_id}_{index}"
        # Providers repeat ids (condo units on one APN); keep every record
        if record_id in seen:
            record_id = f"{record_id}#{index}"
        seen.add(record_id)
        rows.append({
            "source_id": source_id,
            "record_id": record_id,
            "record_index": index,
            "raw": raw,
            "normalized": parcel.model_dump_json(exclude={"raw"}) if parcel is not None else None,
        })
    return rows


class CacheWriter:
    """
    Staged writes for one source.

    Obtained from FeatureCache.transaction(). Rows are staged under a run id
    in short committed batches; cached_parcels and source_metadata change only
    when the transaction exits and the staged rows are promoted, all in one
    short transaction. Other sources can write to the same store meanwhile.
    """

    def __init__(self, cache: "FeatureCache", source_id: str):
        self.cache = cache
        self.source_id = source_id
        self.run_id = uuid.uuid4().hex
        self.written = 0
        self._seen: Set[str] = set()
        self._replace = False
        self._metadata: Optional[Tuple[Optional[str], int, datetime]] = None

    def clear(self) -> None:
        """Replace the source's stored copy on promotion instead of merging into it."""
        self._replace = True

    def upsert(self, entries: Iterable[CacheEntry]) -> int:
        rows = _rows(self.source_id, entries, self._seen)
        with self.cache._session() as session:
            for start in range(0, len(rows), self.cache.batch_size):
                self.cache.staged.stage(session, self.run_id, rows[start:start + self.cache.batch_size])
        self.written += len(rows)
        return len(rows)

    def discard(self) -> None:
        """Drop everything staged so far; the stored copy stays as it was."""
        self._drop_staged()
        logger.warning("cache_writes_discarded", source_id=self.source_id, records=self.written)
        self.written = 0
        self._seen.clear()
        self._replace = False
        self._metadata = None

    def commit_source_metadata(
        self,
        change_token: Optional[str],
        record_count: int,
        last_fetched: Optional[datetime] = None
    ) -> None:
        """Write the freshness row together with the staged records on promotion."""
        self._metadata = (change_token, record_count, last_fetched or datetime.now(timezone.utc))

    def promote(self) -> int:
        """Move staged rows into cached_parcels and upsert metadata in one transaction."""
        if not (self.written or self._replace) and self._metadata is None:
            return 0

        promoted = 0
        with self.cache._session() as session:
            if self._replace:
                self.cache.parcels.delete_source(session, self.source_id)
            for batch in self.cache.staged.iter_batches(session, self.run_id, self.cache.batch_size):
                promoted += self.cache.parcels.bulk_upsert(session, batch)
            self.cache.staged.delete_run(session, self.run_id)
            if self._metadata is not None:
                self.cache.metadata.upsert(session, self.source_id, *self._metadata)

        logger.info(
            "cache_writes_promoted",
            source_id=self.source_id,
            records=promoted,
            replaced=self._replace,
            metadata=self._metadata is not None
        )
        return promoted

    def abort(self) -> None:
        try:
            self._drop_staged()
        except CacheError as e:
            # Left for clear_source; the error that aborted the write is what matters
            logger.warning("cache_staging_cleanup_failed", source_id=self.source_id, error=str(e))

    def _drop_staged(self) -> None:
        with self.cache._session() as session:
            self.cache.staged.delete_run(session, self.run_id)


class FeatureCache:
    """
    SQLite-backed cache of source freshness and records.

    Every public method runs in its own short transaction. Writes made through
    transaction() are staged and become visible together when it exits.
    Store failures such as a lock held past the busy timeout raise CacheError.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        batch_size: Optional[int] = None
    ):
        """
        Initialize cache and create tables.

        Args:
            database_url: SQLAlchemy URL (default: settings.cache_database_url)
            engine: Existing engine to use instead of creating one
            batch_size: Rows per bulk upsert statement
        """
        self.engine = engine or create_db_engine(database_url)
        create_all_tables(self.engine)
        self.session_factory = create_session_factory(self.engine)
        self.batch_size = batch_size or settings.cache_write_batch_size
        self.metadata = SourceMetadataRepository()
        self.parcels = CachedParcelRepository()
        self.staged = StagedParcelRepository()

    @contextmanager
    def transaction(self, source_id: str) -> Generator[CacheWriter, None, None]:
        """
        Group a source's writes so they become visible together or not at all.

        Usage:
            with cache.transaction("campbell") as writer:
                writer.clear()
                writer.upsert(entries)
                writer.commit_source_metadata(token, count)
        """
        writer = CacheWriter(self, source_id)
        try:
            yield writer
        except BaseException:
            writer.abort()
            raise
        writer.promote()

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with get_db_session(self.session_factory) as session:
                yield session
        except exc.OperationalError as e:
            raise CacheError(f"Cache store unavailable: {e.orig}") from e

    def get_source_metadata(self, source_id: str) -> Optional[SourceState]:
        with self._session() as session:
            row = self.metadata.get_by_id(session, source_id)
            if row is None:
                return None
            return SourceState(
                source_id=row.source_id,
                change_token=row.change_token,
                last_fetched=_as_utc(row.last_fetched),
                record_count=row.record_count,
            )

    def needs_refresh(
        self,
        source_id: str,
        current_token: Optional[str] = None,
        max_age_hours: Optional[float] = None
    ) -> bool:
        """
        Decide whether a source must be fetched again.

        A source is stale when it was never fetched, when it has no cached
        records, when the provider's change token differs from the stored
        one, or when the last fetch is older than ``max_age_hours``.
        """
        max_age = settings.cache_max_age_hours if max_age_hours is None else max_age_hours
        state = self.get_source_metadata(source_id)

        if state is None:
            reason = "never_fetched"
        elif self.feature_count(source_id) == 0:
            reason = "empty_cache"
        elif current_token is not None and current_token != state.change_token:
            reason = "token_changed"
        elif datetime.now(timezone.utc) - state.last_fetched > timedelta(hours=max_age):
            reason = "expired"
        else:
            logger.info("cache_fresh", source_id=source_id, last_fetched=state.last_fetched.isoformat())
            return False

        logger.info("cache_stale", source_id=source_id, reason=reason)
        return True

    def upsert_parcels(self, source_id: str, entries: Iterable[CacheEntry]) -> int:
        with self.transaction(source_id) as writer:
            return writer.upsert(entries)

    def iter_raw_records(self, source_id: str) -> Iterator[Dict[str, Any]]:
        """Stream cached raw records of a source in provider order."""
        with self._session() as session:
            yield from self.parcels.iter_raw(session, source_id, self.batch_size)

    def feature_count(self, source_id: str) -> int:
        with self._session() as session:
            return self.parcels.count_for_source(session, source_id)

    def commit_source_metadata(
        self,
        source_id: str,
        change_token: Optional[str],
        record_count: int,
        last_fetched: Optional[datetime] = None
    ) -> None:
        with self.transaction(source_id) as writer:
            writer.commit_source_metadata(change_token, record_count, last_fetched)

    def clear_source(self, source_id: str) -> int:
        """Remove a source's records, freshness row and any rows left staged by an interrupted run."""
        with self._session() as session:
            deleted = self.parcels.delete_source(session, source_id)
            self.metadata.delete_source(session, source_id)
            self.staged.delete_source(session, source_id)
        logger.info("cache_source_cleared", source_id=source_id, records=deleted)
        return deleted

    def stats(self) -> Dict[str, Any]:
        """Cached record counts and freshness per source."""
        with self._session() as session:
            counts = self.parcels.counts_by_source(session)
            staged = self.staged.count(session)
            sources = {
                row.source_id: {
                    "records": counts.get(row.source_id, 0),
                    "change_token": row.change_token,
                    "last_fetched": _as_utc(row.last_fetched).isoformat(),
                }
                for row in self.metadata.get_all(session)
            }
        for source_id, count in counts.items():
            sources.setdefault(source_id, {"records": count, "change_token": None, "last_fetched": None})

        return {
            "sources": sources,
            "total_records": sum(counts.values()),
            "staged_records": staged,
        }

    def close(self) -> None:
        self.engine.dispose()
