"""
Job record store - the persistence facade used by the video generation worker.

Wraps the module-level repositories with one short transaction per call and
returns plain domain snapshots, so callers never hold ORM rows or sessions
across network calls.
"""
import hashlib
import logging
from typing import Optional, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_pipeline.core.exceptions import DataIntegrityException, VideoPromptNotFoundException
from video_pipeline.database.models.compiled_video import CompiledVideo
from video_pipeline.database.models.video_segment import VideoSegment
from video_pipeline.models.domain import (
    ClipSnapshot,
    ClipStatus,
    CompiledVideoSnapshot,
    CompiledVideoStatus,
    PromptSnapshot,
    SegmentSnapshot,
    SegmentSpec,
    SegmentStatus,
)
from video_pipeline.repositories import (
    compiled_video_db_repository,
    generated_clip_db_repository,
    video_prompt_db_repository,
    video_segment_db_repository,
)

logger = logging.getLogger(__name__)


def compute_content_hash(master_prompt: str) -> str:
    """SHA-256 of the master prompt text (deduplication key)."""
    return hashlib.sha256(master_prompt.encode("utf-8")).hexdigest()


def _to_compiled_snapshot(video: CompiledVideo) -> CompiledVideoSnapshot:
    return CompiledVideoSnapshot(
        id=video.id,
        video_prompt_id=video.video_prompt_id,
        final_video_url=video.final_video_url,
        thumbnail_url=video.thumbnail_url,
        total_duration=video.total_duration,
        segments_used=list(video.segments_used or []),
        status=CompiledVideoStatus(video.status),
        created_at=video.created_at.isoformat() if video.created_at else None,
    )


def _to_segment_snapshot(segment: VideoSegment) -> SegmentSnapshot:
    completed = [
        clip for clip in segment.generated_clips
        if clip.status == ClipStatus.COMPLETED.value
    ]
    latest = max(completed, key=lambda clip: clip.created_at, default=None)
    return SegmentSnapshot(
        id=segment.id,
        segment_number=segment.segment_number,
        segment_prompt=segment.segment_prompt,
        target_duration=segment.target_duration,
        transition_out=segment.transition_out,
        status=SegmentStatus(segment.status),
        retry_count=segment.retry_count,
        completed_clip=ClipSnapshot(
            id=latest.id,
            video_url=latest.video_url,
            thumbnail_url=latest.thumbnail_url,
            duration=latest.duration,
        ) if latest else None,
    )


def _check_segment_numbering(prompt_id: str, segments: List[SegmentSnapshot]) -> None:
    numbers = [segment.segment_number for segment in segments]
    expected = list(range(1, len(numbers) + 1))
    if numbers != expected:
        raise DataIntegrityException(
            f"segments of prompt {prompt_id} are not numbered 1..{len(numbers)}: {numbers}"
        )


class VideoRecordStore:
    """Persistence operations required by the video generation pipeline."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_prompt_for_processing(self, prompt_id: str) -> PromptSnapshot:
        """
        Load a prompt with its ordered segments, each segment's latest
        COMPLETED clip, and the latest COMPLETED compiled video.

        Raises:
            VideoPromptNotFoundException: prompt does not exist
            DataIntegrityException: prompt has no segments or broken numbering
        """
        async with self._session_factory() as session:
            prompt = await video_prompt_db_repository.get_with_segments_and_clips(session, prompt_id)
            if prompt is None:
                raise VideoPromptNotFoundException(prompt_id)

            segments = sorted(
                (_to_segment_snapshot(segment) for segment in prompt.segments),
                key=lambda segment: segment.segment_number,
            )
            if not segments:
                raise DataIntegrityException(f"prompt {prompt_id} has no segments")
            _check_segment_numbering(prompt_id, segments)

            completed_videos = [
                video for video in prompt.compiled_videos
                if video.status == CompiledVideoStatus.COMPLETED.value
            ]
            latest_video = max(completed_videos, key=lambda video: video.created_at, default=None)

            return PromptSnapshot(
                id=prompt.id,
                master_prompt=prompt.master_prompt,
                style=prompt.style,
                total_duration=prompt.total_duration,
                segments=segments,
                completed_video=_to_compiled_snapshot(latest_video) if latest_video else None,
            )

    async def _set_segment_status(self, segment_id: str, status: SegmentStatus) -> None:
        async with self._session_factory() as session:
            updated = await video_segment_db_repository.update_status(session, segment_id, status)
            if not updated:
                raise DataIntegrityException(f"segment {segment_id} does not exist")
            await session.commit()

    async def mark_segment_generating(self, segment_id: str) -> None:
        await self._set_segment_status(segment_id, SegmentStatus.GENERATING)

    async def mark_segment_completed(self, segment_id: str) -> None:
        await self._set_segment_status(segment_id, SegmentStatus.COMPLETED)

    async def mark_segment_failed(self, segment_id: str, error: str) -> None:
        """Mark a segment FAILED and increment its retry count."""
        async with self._session_factory() as session:
            updated = await video_segment_db_repository.mark_failed(session, segment_id, error)
            if not updated:
                raise DataIntegrityException(f"segment {segment_id} does not exist")
            await session.commit()
        logger.info(f"Marked segment {segment_id} FAILED")

    async def create_generated_clip(
        self,
        segment_id: str,
        video_url: str,
        duration: float,
        generation_service: str,
        thumbnail_url: Optional[str] = None,
        generation_params: Optional[dict] = None,
    ) -> ClipSnapshot:
        """Persist a COMPLETED clip for a segment."""
        async with self._session_factory() as session:
            clip = await generated_clip_db_repository.create(
                session,
                video_segment_id=segment_id,
                video_url=video_url,
                thumbnail_url=thumbnail_url,
                duration=duration,
                generation_service=generation_service,
                generation_params=generation_params,
            )
            await session.commit()
            return ClipSnapshot(
                id=clip.id,
                video_url=clip.video_url,
                thumbnail_url=clip.thumbnail_url,
                duration=clip.duration,
            )

    async def create_compiled_video(
        self,
        prompt_id: str,
        final_video_url: str,
        total_duration: float,
        segments_used: List[str],
        thumbnail_url: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """
        Persist the COMPLETED compiled video for a prompt.

        Returns:
            (video_id, created). When another execution already stored a
            COMPLETED video for the prompt, its id is returned with
            created=False and nothing is written.
        """
        async with self._session_factory() as session:
            try:
                video = await compiled_video_db_repository.create(
                    session,
                    video_prompt_id=prompt_id,
                    final_video_url=final_video_url,
                    thumbnail_url=thumbnail_url,
                    total_duration=total_duration,
                    segments_used=segments_used,
                )
                await session.commit()
                return video.id, True
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    f"Compiled video for prompt {prompt_id} already exists, keeping the existing one"
                )

        async with self._session_factory() as session:
            existing = await compiled_video_db_repository.get_latest_completed(session, prompt_id)
            if existing is None:
                raise DataIntegrityException(
                    f"compiled video insert for prompt {prompt_id} conflicted but no COMPLETED row exists"
                )
            return existing.id, False

    async def get_compiled_video(self, video_id: str) -> Optional[CompiledVideoSnapshot]:
        async with self._session_factory() as session:
            video = await compiled_video_db_repository.get_by_id(session, video_id)
            return _to_compiled_snapshot(video) if video else None

    async def get_latest_compiled_video(self, prompt_id: str) -> Optional[CompiledVideoSnapshot]:
        async with self._session_factory() as session:
            video = await compiled_video_db_repository.get_latest_completed(session, prompt_id)
            return _to_compiled_snapshot(video) if video else None

    async def get_or_create_prompt(
        self,
        master_prompt: str,
        segments: List[SegmentSpec],
        style: str = "cinematic",
        mood: str = "professional",
        key_visuals: Optional[List[str]] = None,
        total_duration: Optional[float] = None,
        generated_by: Optional[str] = None,
        generation_model: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """
        Look up a prompt by content hash or create it with its segments.

        A reused prompt gets its usage counter incremented; its segments are
        left untouched. Returns (prompt_id, created).
        """
        if not segments:
            raise DataIntegrityException("a video prompt needs at least one segment")

        content_hash = compute_content_hash(master_prompt)

        async with self._session_factory() as session:
            existing = await video_prompt_db_repository.get_by_content_hash(session, content_hash)
            if existing is not None:
                await video_prompt_db_repository.record_usage(session, existing.id)
                await session.commit()
                logger.info(f"Reusing existing video prompt {existing.id}")
                return existing.id, False

            try:
                prompt = await video_prompt_db_repository.create(
                    session,
                    content_hash=content_hash,
                    master_prompt=master_prompt,
                    style=style,
                    mood=mood,
                    key_visuals=key_visuals,
                    total_duration=total_duration or sum(s.target_duration for s in segments),
                    is_segmented=len(segments) > 1,
                    segment_count=len(segments),
                    generated_by=generated_by,
                    generation_model=generation_model,
                )
                await video_segment_db_repository.bulk_create(
                    session,
                    prompt.id,
                    [
                        {
                            "segment_prompt": segment_spec.segment_prompt,
                            "target_duration": segment_spec.target_duration,
                            "transition_out": segment_spec.transition_out,
                        }
                        for segment_spec in segments
                    ],
                )
                await session.commit()
                logger.info(f"Created video prompt {prompt.id} with {len(segments)} segment(s)")
                return prompt.id, True
            except IntegrityError:
                await session.rollback()

        # Another caller created the same prompt between our read and insert
        async with self._session_factory() as session:
            existing = await video_prompt_db_repository.get_by_content_hash(session, content_hash)
            if existing is None:
                raise DataIntegrityException(f"prompt insert conflicted but hash {content_hash} is missing")
            await video_prompt_db_repository.record_usage(session, existing.id)
            await session.commit()
            return existing.id, False
