"""
Compiled video database repository - CRUD operations for the compiled_videos table.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from video_pipeline.database.models.compiled_video import CompiledVideo
from video_pipeline.models.domain import CompiledVideoStatus

logger = logging.getLogger(__name__)


async def create(
    session: AsyncSession,
    video_prompt_id: str,
    final_video_url: str,
    total_duration: float,
    segments_used: list[str],
    thumbnail_url: Optional[str] = None,
    status: CompiledVideoStatus = CompiledVideoStatus.COMPLETED,
) -> CompiledVideo:
    """
    Insert a compiled video row.

    Raises sqlalchemy.exc.IntegrityError when a COMPLETED row already exists
    for the prompt (partial unique index).
    """
    video = CompiledVideo(
        video_prompt_id=video_prompt_id,
        final_video_url=final_video_url,
        thumbnail_url=thumbnail_url,
        total_duration=total_duration,
        segments_used=list(segments_used),
        status=status.value,
    )
    session.add(video)
    await session.flush()
    return video


async def get_by_id(session: AsyncSession, video_id: str) -> Optional[CompiledVideo]:
    """Look up a compiled video by id."""
    stmt = select(CompiledVideo).where(CompiledVideo.id == video_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_latest_completed(session: AsyncSession, prompt_id: str) -> Optional[CompiledVideo]:
    """Return the newest COMPLETED compiled video for a prompt, or None."""
    stmt = (
        select(CompiledVideo)
        .where(
            CompiledVideo.video_prompt_id == prompt_id,
            CompiledVideo.status == CompiledVideoStatus.COMPLETED.value,
        )
        .order_by(CompiledVideo.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
