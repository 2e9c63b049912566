"""
GeneratedVideoClip model - one rendering attempt for a segment.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Float, Text, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from video_pipeline.database.base import Base, generate_uuid, utcnow
from video_pipeline.models.domain import ClipStatus


class GeneratedVideoClip(Base):
    """
    Generated clips table. Several rows may exist per segment across
    retries; the newest COMPLETED row is authoritative.
    """
    __tablename__ = "generated_video_clips"

    # Columns
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    video_segment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("video_segments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    video_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    generation_service: Mapped[str] = mapped_column(String(50), nullable=False)
    generation_params: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ClipStatus.COMPLETED.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    # Relationships
    segment: Mapped["VideoSegment"] = relationship("VideoSegment", back_populates="generated_clips")

    __table_args__ = (
        Index('idx_generated_clips_segment_status', 'video_segment_id', 'status', 'created_at'),
    )
