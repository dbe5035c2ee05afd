"""
Aggregation Package

Block and grid clustering for coarse zoom levels.
"""
from src.parcelfusion.aggregation.clustering import AggregatedFeature, BlockIdRule, ClusterMap

__all__ = ["AggregatedFeature", "BlockIdRule", "ClusterMap"]
