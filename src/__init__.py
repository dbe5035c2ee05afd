"""
Parcel Fusion - Core Package

Fuses heterogeneous cadastral and building datasets into canonical,
temporally-resolved, clustered feature streams for map rendering.
"""

__version__ = "0.1.0"
