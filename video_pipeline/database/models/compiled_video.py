"""
CompiledVideo model - the terminal artifact for a video prompt.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Float, Text, DateTime, ForeignKey, JSON, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from video_pipeline.database.base import Base, generate_uuid, utcnow
from video_pipeline.models.domain import CompiledVideoStatus

_COMPLETED_ONLY = text(f"status = '{CompiledVideoStatus.COMPLETED.value}'")


class CompiledVideo(Base):
    """
    Compiled videos table. At most one COMPLETED row per prompt, enforced
    by a partial unique index so a lost worker race fails the insert instead
    of creating a duplicate asset.
    """
    __tablename__ = "compiled_videos"

    # Columns
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    video_prompt_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("video_prompts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    final_video_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    segments_used: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CompiledVideoStatus.COMPLETED.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    # Relationships
    video_prompt: Mapped["VideoPrompt"] = relationship("VideoPrompt", back_populates="compiled_videos")

    __table_args__ = (
        Index(
            'uq_compiled_videos_prompt_completed',
            'video_prompt_id',
            unique=True,
            postgresql_where=_COMPLETED_ONLY,
            sqlite_where=_COMPLETED_ONLY,
        ),
    )
