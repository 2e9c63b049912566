"""
VideoPrompt model - the master description driving a generated video.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from video_pipeline.database.base import Base, generate_uuid, utcnow


class VideoPrompt(Base):
    """
    Video prompts table - one row per distinct generated prompt, deduplicated
    by content hash and reused across lessons.
    """
    __tablename__ = "video_prompts"

    # Columns
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    master_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    style: Mapped[str] = mapped_column(String(100), nullable=False, default="cinematic")
    mood: Mapped[str] = mapped_column(String(100), nullable=False, default="professional")
    key_visuals: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_duration: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    is_segmented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    segment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    generated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    generation_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
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
    segments: Mapped[list["VideoSegment"]] = relationship(
        "VideoSegment",
        back_populates="video_prompt",
        order_by="VideoSegment.segment_number",
        cascade="all, delete-orphan"
    )
    compiled_videos: Mapped[list["CompiledVideo"]] = relationship(
        "CompiledVideo",
        back_populates="video_prompt",
        cascade="all, delete-orphan"
    )
