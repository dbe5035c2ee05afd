"""
Paged Fetcher

Pulls every record of a paged provider API through a PageAdapter. When the
provider reports a total count, pages are requested in bounded concurrent
waves; otherwise pages are walked sequentially until the provider says
there is no more data.
"""
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

import requests

from config.settings import settings
from src.parcelfusion.exceptions import PageFetchError, TransientFetchError
from src.parcelfusion.fetch.retry import RetryPolicy
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

RawRecord = Dict[str, Any]
StopCheck = Callable[[], bool]


@dataclass
class Page:
    """
    One page of raw records.

    Attributes:
        offset: Offset the page was requested at
        records: Raw records in provider order
        has_more: Provider signals further pages
        total: Total record count, when the provider reports one
    """
    offset: int
    records: List[RawRecord]
    has_more: bool
    total: Optional[int] = None


class PageAdapter(Protocol):
    """Transport for one provider dialect."""

    source_id: str

    def count(self) -> Optional[int]:
        """Total record count, or None when the provider cannot say."""
        ...

    def fetch_page(self, offset: int, limit: int) -> Page:
        ...

    def change_token(self) -> Optional[str]:
        """Provider-side marker that changes whenever the data does."""
        ...


@dataclass
class FetchStats:
    """Progress of one iteration over a source, updated as pages arrive."""
    total: Optional[int] = None
    pages: int = 0
    records: int = 0
    failed_offsets: List[int] = field(default_factory=list)
    complete: bool = True
    truncated: bool = False
    concurrent: bool = False


@dataclass
class FetchResult:
    records: List[RawRecord]
    stats: FetchStats

    @property
    def total_fetched(self) -> int:
        return self.stats.records

    @property
    def complete(self) -> bool:
        return self.stats.complete


class PageFetcher:
    """
    Drives a PageAdapter with retries, rate limiting and cancellation.
    """

    def __init__(
        self,
        concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
        max_batches: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        delay_seconds: Optional[float] = None,
        delay_every: Optional[int] = None,
        tolerate_page_failures: bool = False,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize fetcher.

        Args:
            concurrency: Maximum pages in flight (1 forces sequential paging)
            batch_size: Records requested per page
            max_batches: Upper bound on pages per iteration
            retry_policy: Backoff policy for each page
            delay_seconds: Rate-limit pause
            delay_every: Apply the pause after every N pages
            tolerate_page_failures: Record pages that exhaust their retries
                instead of raising PageFetchError
            sleep: Sleep function (replaced in tests)
        """
        self.concurrency = concurrency or settings.fetch_concurrency
        self.batch_size = batch_size or settings.fetch_batch_size
        self.max_batches = max_batches or settings.fetch_max_batches
        self.retry_policy = retry_policy or RetryPolicy()
        self.delay_seconds = settings.fetch_delay_seconds if delay_seconds is None else delay_seconds
        self.delay_every = delay_every or settings.fetch_delay_every
        self.tolerate_page_failures = tolerate_page_failures
        self.sleep = sleep

    def _fetch_page(self, adapter: PageAdapter, offset: int) -> Page:
        try:
            return self.retry_policy.call(
                lambda: adapter.fetch_page(offset, self.batch_size),
                description=f"{adapter.source_id}:page:{offset}"
            )
        except (TransientFetchError, requests.RequestException, ValueError) as e:
            attempts = self.retry_policy.max_attempts
            if not isinstance(e, (TransientFetchError, requests.ConnectionError, requests.Timeout)):
                attempts = 1
            raise PageFetchError(offset, attempts, e) from e

    def count_records(self, adapter: PageAdapter) -> Optional[int]:
        try:
            return self.retry_policy.call(adapter.count, description=f"{adapter.source_id}:count")
        except (TransientFetchError, requests.RequestException, ValueError) as e:
            # Some servers do not support counting; page sequentially instead
            logger.warning("record_count_unavailable", source_id=adapter.source_id, error=str(e))
            return None

    def _page_failed(self, error: PageFetchError, stats: FetchStats) -> None:
        if not self.tolerate_page_failures:
            raise error
        stats.failed_offsets.append(error.offset)
        stats.complete = False
        logger.warning(
            "page_failed_skipped",
            offset=error.offset,
            attempts=error.attempts,
            error=str(error.cause)
        )

    def _rate_limit(self, batch_num: int) -> None:
        if self.delay_seconds > 0 and batch_num > 0 and batch_num % self.delay_every == 0:
            self.sleep(self.delay_seconds)

    def iter_pages(
        self,
        adapter: PageAdapter,
        should_stop: Optional[StopCheck] = None,
        stats: Optional[FetchStats] = None
    ) -> Iterator[Page]:
        """
        Yield pages in offset order.

        Args:
            adapter: Provider transport
            should_stop: Checked between pages and between waves; once it
                returns True iteration ends and ``stats.complete`` is False
            stats: Progress object updated in place

        Raises:
            PageFetchError: A page exhausted its retries and failures are
                not tolerated
        """
        stats = stats if stats is not None else FetchStats()
        stop = should_stop or (lambda: False)

        total = self.count_records(adapter)
        stats.total = total

        if total and self.concurrency > 1:
            stats.concurrent = True
            pages = self._iter_concurrent(adapter, total, stop, stats)
        else:
            pages = self._iter_sequential(adapter, stop, stats)

        for page in pages:
            stats.pages += 1
            stats.records += len(page.records)
            yield page

        logger.info(
            "fetch_finished",
            source_id=adapter.source_id,
            mode="concurrent" if stats.concurrent else "sequential",
            total=total,
            pages=stats.pages,
            records=stats.records,
            failed_pages=len(stats.failed_offsets),
            complete=stats.complete,
            truncated=stats.truncated
        )

    def _iter_concurrent(
        self,
        adapter: PageAdapter,
        total: int,
        stop: StopCheck,
        stats: FetchStats
    ) -> Iterator[Page]:
        num_batches = math.ceil(total / self.batch_size)
        if num_batches > self.max_batches:
            stats.truncated = True
            logger.warning(
                "max_batches_reached",
                source_id=adapter.source_id,
                needed=num_batches,
                max_batches=self.max_batches
            )
            num_batches = self.max_batches
        offsets = [i * self.batch_size for i in range(num_batches)]

        logger.info(
            "concurrent_fetch_started",
            source_id=adapter.source_id,
            total=total,
            batches=num_batches,
            concurrency=self.concurrency
        )

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            for wave_start in range(0, len(offsets), self.concurrency):
                if stop():
                    stats.complete = False
                    logger.info("fetch_stopped", source_id=adapter.source_id, offset=offsets[wave_start])
                    return
                if wave_start > 0 and self.delay_seconds > 0:
                    self.sleep(self.delay_seconds)

                wave = offsets[wave_start:wave_start + self.concurrency]
                futures = [(offset, pool.submit(self._fetch_page, adapter, offset)) for offset in wave]

                # Drain the whole wave, then hand pages over in offset order
                results = []
                for offset, future in futures:
                    try:
                        results.append(future.result())
                    except PageFetchError as e:
                        self._page_failed(e, stats)

                for page in results:
                    yield page

    def _iter_sequential(
        self,
        adapter: PageAdapter,
        stop: StopCheck,
        stats: FetchStats
    ) -> Iterator[Page]:
        offset = 0
        for batch_num in range(self.max_batches):
            if stop():
                stats.complete = False
                logger.info("fetch_stopped", source_id=adapter.source_id, offset=offset)
                return
            self._rate_limit(batch_num)

            try:
                page = self._fetch_page(adapter, offset)
            except PageFetchError as e:
                self._page_failed(e, stats)
                # Without the page there is no has_more signal to continue on
                return

            yield page

            if not page.has_more or not page.records:
                return
            offset += len(page.records)

        stats.truncated = True
        logger.warning(
            "max_batches_reached",
            source_id=adapter.source_id,
            max_batches=self.max_batches,
            records=stats.records
        )

    def fetch(
        self,
        adapter: PageAdapter,
        on_page: Optional[Callable[[List[RawRecord]], None]] = None,
        buffer: bool = True,
        should_stop: Optional[StopCheck] = None
    ) -> FetchResult:
        """
        Fetch a whole source.

        Args:
            adapter: Provider transport
            on_page: Called with each page's records as it arrives
            buffer: Keep all records in the result; disable for large
                sources consumed through on_page
            should_stop: Cancellation check

        Returns:
            FetchResult with the buffered records (empty when not buffering)
        """
        stats = FetchStats()
        records: List[RawRecord] = []
        for page in self.iter_pages(adapter, should_stop=should_stop, stats=stats):
            if on_page is not None:
                on_page(page.records)
            if buffer:
                records.extend(page.records)
        return FetchResult(records=records, stats=stats)
