"""
Generated clip database repository - CRUD operations for the generated_video_clips table.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from video_pipeline.database.models.generated_clip import GeneratedVideoClip
from video_pipeline.models.domain import ClipStatus

logger = logging.getLogger(__name__)


async def create(
    session: AsyncSession,
    video_segment_id: str,
    video_url: str,
    duration: float,
    generation_service: str,
    thumbnail_url: Optional[str] = None,
    generation_params: Optional[dict] = None,
    status: ClipStatus = ClipStatus.COMPLETED,
) -> GeneratedVideoClip:
    """
    Insert a single clip row.

    Returns the GeneratedVideoClip instance with its generated id populated.
    """
    clip = GeneratedVideoClip(
        video_segment_id=video_segment_id,
        video_url=video_url,
        thumbnail_url=thumbnail_url,
        duration=duration,
        generation_service=generation_service,
        generation_params=generation_params or {},
        status=status.value,
    )
    session.add(clip)
    await session.flush()
    return clip
