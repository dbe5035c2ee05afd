"""
Fetch Package

Paged retrieval from provider APIs with retries and rate limiting.
"""
from src.parcelfusion.fetch.adapters import ArcGISAdapter, SocrataAdapter
from src.parcelfusion.fetch.fetcher import FetchResult, FetchStats, Page, PageAdapter, PageFetcher
from src.parcelfusion.fetch.retry import RetryPolicy, with_retry

__all__ = [
    "ArcGISAdapter",
    "SocrataAdapter",
    "FetchResult",
    "FetchStats",
    "Page",
    "PageAdapter",
    "PageFetcher",
    "RetryPolicy",
    "with_retry",
]
