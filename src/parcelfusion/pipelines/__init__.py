"""
Pipelines Package

Two-pass source runs: record sources, output streams and the driver.
"""
from src.parcelfusion.pipelines.driver import PipelineDriver, RunReport

__all__ = ["PipelineDriver", "RunReport"]
