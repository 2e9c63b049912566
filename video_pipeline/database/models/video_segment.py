"""
VideoSegment model - one planned clip within a video prompt.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, Text, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from video_pipeline.database.base import Base, generate_uuid, utcnow
from video_pipeline.models.domain import SegmentStatus


class VideoSegment(Base):
    """
    Video segments table - ordered clips planned for a prompt.
    segment_number is 1-based and defines compile order.
    """
    __tablename__ = "video_segments"

    # Columns
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    video_prompt_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("video_prompts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    segment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    segment_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    target_duration: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    transition_out: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SegmentStatus.PENDING.value,
        index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    # Relationships
    video_prompt: Mapped["VideoPrompt"] = relationship("VideoPrompt", back_populates="segments")
    generated_clips: Mapped[list["GeneratedVideoClip"]] = relationship(
        "GeneratedVideoClip",
        back_populates="segment",
        cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('video_prompt_id', 'segment_number', name='uq_video_segments_prompt_number'),
        CheckConstraint('segment_number >= 1', name='check_segment_number_positive'),
    )
