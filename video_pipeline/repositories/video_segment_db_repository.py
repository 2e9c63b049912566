"""
Video segment database repository - CRUD operations for the video_segments table.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from video_pipeline.database.models.video_segment import VideoSegment
from video_pipeline.models.domain import SegmentStatus

logger = logging.getLogger(__name__)


async def bulk_create(session: AsyncSession, prompt_id: str, segments_data: list[dict]) -> list[VideoSegment]:
    """
    Insert the segments of a prompt. Segment numbers are assigned from list
    order, starting at 1.

    Each dict must contain: segment_prompt. Optional: target_duration, transition_out.
    """
    instances = []
    for number, data in enumerate(segments_data, start=1):
        instances.append(
            VideoSegment(
                video_prompt_id=prompt_id,
                segment_number=number,
                segment_prompt=data["segment_prompt"],
                target_duration=data.get("target_duration", 5.0),
                transition_out=data.get("transition_out"),
                status=SegmentStatus.PENDING.value,
            )
        )
    session.add_all(instances)
    await session.flush()
    return instances


async def update_status(
    session: AsyncSession,
    segment_id: str,
    status: SegmentStatus,
    last_error: Optional[str] = None,
) -> bool:
    """Set a segment's status. Returns False if the segment does not exist."""
    values = {"status": status.value}
    if last_error is not None:
        values["last_error"] = last_error
    stmt = update(VideoSegment).where(VideoSegment.id == segment_id).values(**values)
    result = await session.execute(stmt)
    return result.rowcount > 0


async def mark_failed(session: AsyncSession, segment_id: str, error: str) -> bool:
    """Set FAILED, store the error and increment retry_count in one statement."""
    stmt = (
        update(VideoSegment)
        .where(VideoSegment.id == segment_id)
        .values(
            status=SegmentStatus.FAILED.value,
            retry_count=VideoSegment.retry_count + 1,
            last_error=error[:2000],
        )
    )
    result = await session.execute(stmt)
    return result.rowcount > 0
