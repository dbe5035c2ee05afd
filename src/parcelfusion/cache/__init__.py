"""
Cache Package

Incremental fetch cache: per-source freshness and last-known records.
"""
from src.parcelfusion.cache.feature_cache import FeatureCache

__all__ = ["FeatureCache"]
