"""
Registry Package

Supported sources and their field mappings.
"""
from src.parcelfusion.registry.sources import SOURCE_REGISTRY, get_source, list_sources

__all__ = ["SOURCE_REGISTRY", "get_source", "list_sources"]
