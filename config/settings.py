"""
Configuration Settings

Centralized configuration management using Pydantic and environment variables.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Per-source settings (field mappings, boundaries, grid sizes) live in the
    source registry; this class only holds process-wide defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Cache store (SQLite through SQLAlchemy)
    cache_database_url: str = "sqlite:///data/cache/features.db"
    cache_max_age_hours: float = 24.0
    cache_write_batch_size: int = 1000
    cache_busy_timeout_seconds: float = 30.0  # Wait for another writer before failing
    database_echo: bool = False  # Set to True for SQL query logging

    # Data file paths
    raw_data_dir: str = "data/raw"
    output_dir: str = "data/processed"

    # Fetch settings
    fetch_concurrency: int = 4
    fetch_batch_size: int = 2000
    fetch_max_batches: int = 2000
    fetch_timeout_seconds: int = 30
    fetch_max_retries: int = 3
    fetch_retry_base_delay_seconds: float = 1.0
    fetch_retry_max_delay_seconds: float = 30.0
    fetch_retry_jitter_seconds: float = 0.5
    fetch_delay_seconds: float = 0.0
    fetch_delay_every: int = 1

    # Sources with more expected records than this are re-fetched per pass
    # instead of being buffered in memory
    streaming_threshold: int = 250000

    # Geographic settings
    wgs84_epsg: int = 4326
    default_grid_size: float = 0.0005  # ~50m at mid latitudes

    # Date imputation
    imputation_seed: Optional[int] = None
    fallback_year: int = 1950
    min_plausible_year: int = 1400
    max_plausible_year: int = 2100

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"

    # Application settings
    environment: str = "development"
    debug: bool = False


# Singleton instance
settings = Settings()
