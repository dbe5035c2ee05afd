"""
Parcel Fusion

Schema normalization, spatial containment, construction-year resolution and
dual level-of-detail clustering for cadastral open data.
"""

__version__ = "0.1.0"
