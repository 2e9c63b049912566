"""
Database package.
Provides async SQLAlchemy engine, session management, and ORM models.
"""
from video_pipeline.database.base import Base
from video_pipeline.database.session import build_engine, build_session_factory, create_all

__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "create_all",
]
