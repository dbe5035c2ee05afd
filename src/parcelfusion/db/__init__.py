"""
Database Package

Cache tables, engine construction and repositories.
"""
from src.parcelfusion.db.base import Base
from src.parcelfusion.db.models import CachedParcel, SourceMetadata, StagedParcel
from src.parcelfusion.db.repository import (
    BaseRepository,
    CachedParcelRepository,
    SourceMetadataRepository,
    StagedParcelRepository,
)
from src.parcelfusion.db.session import (
    create_all_tables,
    create_db_engine,
    create_session_factory,
    get_db_session,
    health_check,
)

__all__ = [
    "Base",
    "CachedParcel",
    "SourceMetadata",
    "BaseRepository",
    "CachedParcelRepository",
    "SourceMetadataRepository",
    "StagedParcel",
    "StagedParcelRepository",
    "create_all_tables",
    "create_db_engine",
    "create_session_factory",
    "get_db_session",
    "health_check",
]
