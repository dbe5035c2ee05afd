"""
Error Taxonomy

Three families of failure, handled at different levels:

- Transient fetch errors are retried by the fetch layer; once retries are
  exhausted they surface as PageFetchError.
- Record errors concern a single raw record. The driver excludes the record,
  increments a skip counter keyed by ``reason`` and keeps going.
- Configuration errors are fatal and abort a run before any output or
  metadata is committed. Cache store failures surface as CacheError.
"""
from typing import Optional


class ParcelFusionError(Exception):
    """Base class for all pipeline errors."""


# Fetch errors

class TransientFetchError(ParcelFusionError):
    """Network, timeout or rate-limit failure worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PageFetchError(ParcelFusionError):
    """A page could not be fetched after all retry attempts."""

    def __init__(self, offset: int, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Page at offset {offset} failed after {attempts} attempts: {cause}"
        )
        self.offset = offset
        self.attempts = attempts
        self.cause = cause


# Per-record errors

class RecordError(ParcelFusionError):
    """A single record could not be processed."""

    reason = "record_error"

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class MissingGeometryError(RecordError):
    reason = "missing_geometry"


class MalformedGeometryError(RecordError):
    reason = "malformed_geometry"


class UnregisteredCRSError(RecordError):
    reason = "unregistered_crs"

    def __init__(self, crs: str, record_id: Optional[str] = None):
        super().__init__(
            f"Unknown CRS: {crs}. Register a projection definition for it.",
            record_id=record_id,
        )
        self.crs = crs


class MissingIdentityError(RecordError):
    reason = "missing_identity"


class MalformedDateError(RecordError):
    reason = "malformed_date"


# Fatal errors

class ConfigurationError(ParcelFusionError):
    """Invalid source configuration or unusable infrastructure; aborts the run."""


class RunStopped(ParcelFusionError):
    """The caller asked the run to stop; nothing is published."""


class CacheError(ParcelFusionError):
    """The cache store could not be read or written (locked or unavailable)."""
