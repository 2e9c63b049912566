"""
Video prompt database repository - CRUD operations for the video_prompts table.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from video_pipeline.database.base import utcnow
from video_pipeline.database.models.video_prompt import VideoPrompt
from video_pipeline.database.models.video_segment import VideoSegment

logger = logging.getLogger(__name__)


async def create(
    session: AsyncSession,
    content_hash: str,
    master_prompt: str,
    style: str = "cinematic",
    mood: str = "professional",
    key_visuals: Optional[list] = None,
    total_duration: float = 5.0,
    is_segmented: bool = False,
    segment_count: int = 1,
    generated_by: Optional[str] = None,
    generation_model: Optional[str] = None,
) -> VideoPrompt:
    """
    Insert a single video prompt row.

    Returns the VideoPrompt instance with its generated id populated.
    """
    prompt = VideoPrompt(
        content_hash=content_hash,
        master_prompt=master_prompt,
        style=style,
        mood=mood,
        key_visuals=key_visuals or [],
        total_duration=total_duration,
        is_segmented=is_segmented,
        segment_count=segment_count,
        generated_by=generated_by,
        generation_model=generation_model,
        times_used=1,
        last_used_at=utcnow(),
    )
    session.add(prompt)
    await session.flush()
    return prompt


async def get_by_content_hash(session: AsyncSession, content_hash: str) -> Optional[VideoPrompt]:
    """Look up a prompt by its content hash (deduplication key)."""
    stmt = select(VideoPrompt).where(VideoPrompt.content_hash == content_hash)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_with_segments_and_clips(session: AsyncSession, prompt_id: str) -> Optional[VideoPrompt]:
    """
    Load a prompt with its segments (ordered by segment_number), every clip of
    each segment, and all compiled videos. Filtering to COMPLETED rows is left
    to the caller.
    """
    stmt = (
        select(VideoPrompt)
        .where(VideoPrompt.id == prompt_id)
        .options(
            selectinload(VideoPrompt.segments).selectinload(VideoSegment.generated_clips),
            selectinload(VideoPrompt.compiled_videos),
        )
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def record_usage(session: AsyncSession, prompt_id: str) -> None:
    """Increment the usage counter when an existing prompt is reused."""
    stmt = (
        update(VideoPrompt)
        .where(VideoPrompt.id == prompt_id)
        .values(times_used=VideoPrompt.times_used + 1, last_used_at=utcnow())
    )
    await session.execute(stmt)
