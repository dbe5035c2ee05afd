"""
Date Evidence Models

Outcome of the date resolution waterfall for one parcel.
"""
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class DateMethod(str, Enum):
    """Evidence source that produced a year, in waterfall order."""

    EXACT = "exact"
    SPATIAL_JOIN = "spatial_join"
    DISTANCE_MODEL = "distance_model"
    CATEGORY_MEDIAN = "category_median"


class Confidence(IntEnum):
    """Ordinal confidence; comparisons follow the integer order."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class DateEvidence(BaseModel):
    """
    Resolved construction year plus provenance.

    Attributes:
        year: Resolved year
        method: Evidence source used
        confidence: Ordinal confidence in the year
        provenance: Detail tag (boundary name, center, category, ...)
    """

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., description="Resolved construction year")
    method: DateMethod = Field(..., description="Waterfall step that answered")
    confidence: Confidence = Field(Confidence.LOW, description="Ordinal confidence")
    provenance: str = Field("", description="Which boundary, center or statistic answered")

    @computed_field
    @property
    def estimated(self) -> bool:
        """Inferred rather than taken from an authoritative year."""
        return self.method != DateMethod.EXACT

    @property
    def start_time(self) -> str:
        """ISO timestamp the renderer's timeline keys on."""
        return f"{self.year:04d}-01-01T00:00:00Z"
