"""
Video generation orchestrator - drives one queued job from prompt to CompiledVideo.

Stages and reported progress:
    10   prompt loaded (a cache hit jumps straight to 100)
    20   segment generation starts
    ..   linear 20 -> 80 as segments complete
    80   compilation (skipped for a single segment) and upload
    90   compiled video persisted
    100  done

Every failure propagates to the caller; the queue's attempts/backoff policy
decides whether the job runs again. Segment clips persisted by earlier
attempts are reused, so retries only redo missing work.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from video_pipeline.core.exceptions import DataIntegrityException
from video_pipeline.core.logging import log_event, log_operation_error
from video_pipeline.models.domain import (
    ClipSnapshot,
    CompiledClip,
    JobResult,
    PromptSnapshot,
    RemoteJobStatus,
    SegmentSnapshot,
)
from video_pipeline.models.queue_schemas import QueueJob
from video_pipeline.services.ai.video_generation_client import VideoGenerationClient
from video_pipeline.services.pipeline.upload_service import GCSAssetStore
from video_pipeline.services.record_store import VideoRecordStore
from video_pipeline.services.video_compiler import VideoCompiler

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

PROGRESS_LOADED = 10
PROGRESS_SEGMENTS_START = 20
PROGRESS_SEGMENTS_DONE = 80
PROGRESS_PERSISTING = 90
PROGRESS_DONE = 100


class ProgressReporter:
    """Forwards progress values, dropping any lower than the last one sent."""

    def __init__(self, report: ProgressCallback):
        self._report = report
        self.last = 0.0

    async def __call__(self, value: float) -> None:
        if value < self.last:
            logger.debug(f"Ignoring progress {value} below {self.last}")
            return
        self.last = value
        await self._report(value)


class VideoGenerationProcessor:
    """Runs the generation algorithm for one job."""

    def __init__(
        self,
        record_store: VideoRecordStore,
        generation_client: VideoGenerationClient,
        asset_store: GCSAssetStore,
        compiler_factory: Callable[[str], VideoCompiler],
        generation_service: str = "veo-3",
        clip_folder: Optional[str] = None,
        video_folder: Optional[str] = None,
    ):
        self.record_store = record_store
        self.generation_client = generation_client
        self.asset_store = asset_store
        self.compiler_factory = compiler_factory
        self.generation_service = generation_service
        self.clip_folder = clip_folder
        self.video_folder = video_folder

    async def process(self, job: QueueJob, report_progress: ProgressCallback) -> JobResult:
        """
        Produce the compiled video for the job's prompt.

        Returns:
            JobResult pointing at the CompiledVideo id

        Raises:
            Any error from a collaborator; nothing is caught here except to
            record segment failures.
        """
        progress = ProgressReporter(report_progress)
        prompt_id = job.prompt_id

        try:
            prompt = await self.record_store.get_prompt_for_processing(prompt_id)
        except DataIntegrityException as e:
            log_operation_error(
                logger=__name__,
                operation="video_generation",
                error=e,
                message=f"Prompt {prompt_id} cannot be processed",
                context={"prompt_id": prompt_id, "job_id": job.job_id},
                event="data_integrity_error",
            )
            raise
        await progress(PROGRESS_LOADED)

        if prompt.completed_video is not None:
            return await self._cached_result(prompt_id, prompt.completed_video.id, progress)

        await progress(PROGRESS_SEGMENTS_START)

        clips: List[CompiledClip] = []
        total = len(prompt.segments)
        for index, segment in enumerate(prompt.segments, start=1):
            clip = segment.completed_clip
            if clip is not None:
                logger.info(f"Reusing completed clip {clip.id} for segment {segment.segment_number}")
            else:
                clip = await self._generate_segment(job, prompt, segment)

            clips.append(CompiledClip(
                segment_id=segment.id,
                video_url=clip.video_url,
                duration=clip.duration,
                transition=segment.transition_out,
                thumbnail_url=clip.thumbnail_url,
            ))
            span = PROGRESS_SEGMENTS_DONE - PROGRESS_SEGMENTS_START
            await progress(round(PROGRESS_SEGMENTS_START + span * index / total, 2))

        await progress(PROGRESS_SEGMENTS_DONE)

        if len(clips) == 1:
            final_url = clips[0].video_url
            thumbnail_url = clips[0].thumbnail_url
            total_duration = clips[0].duration
            logger.info(f"Single segment, using clip {final_url} as the final video")
        else:
            # a concurrent execution may have finished while the segments ran
            existing = await self.record_store.get_latest_compiled_video(prompt_id)
            if existing is not None:
                return await self._cached_result(prompt_id, existing.id, progress)

            async with self.compiler_factory(prompt_id) as compiler:
                output_path = await compiler.compile_videos([clip.to_compilation_segment() for clip in clips])
                asset = await self.asset_store.upload_video(output_path, folder=self.video_folder)
            final_url = asset.url
            thumbnail_url = asset.thumbnail_url or clips[0].thumbnail_url
            total_duration = asset.duration or sum(clip.duration for clip in clips)

        await progress(PROGRESS_PERSISTING)

        video_id, created = await self.record_store.create_compiled_video(
            prompt_id=prompt_id,
            final_video_url=final_url,
            total_duration=total_duration,
            segments_used=[clip.segment_id for clip in clips],
            thumbnail_url=thumbnail_url,
        )
        if not created:
            logger.warning(f"Another execution already compiled prompt {prompt_id}; using video {video_id}")

        await progress(PROGRESS_DONE)
        log_event(
            level="INFO",
            logger=__name__,
            operation="video_generation",
            event="video_compiled",
            message=f"Compiled video {video_id} ready for prompt {prompt_id}",
            context={"prompt_id": prompt_id, "video_id": video_id, "segments": len(clips)},
        )
        return JobResult(success=True, video_id=video_id)

    async def _cached_result(self, prompt_id: str, video_id: str, progress: ProgressReporter) -> JobResult:
        log_event(
            level="INFO",
            logger=__name__,
            operation="video_generation",
            event="cache_hit",
            message=f"Prompt {prompt_id} already has compiled video {video_id}",
            context={"prompt_id": prompt_id, "video_id": video_id},
        )
        await progress(PROGRESS_DONE)
        return JobResult(success=True, video_id=video_id, cached=True)

    async def _generate_segment(
        self,
        job: QueueJob,
        prompt: PromptSnapshot,
        segment: SegmentSnapshot,
    ) -> ClipSnapshot:
        """Generate, upload and persist the clip of one segment."""
        logger.info(f"Generating segment {segment.segment_number} of prompt {prompt.id}")
        await self.record_store.mark_segment_generating(segment.id)

        try:
            remote = await self.generation_client.generate(
                prompt=segment.segment_prompt,
                duration=segment.target_duration,
                style=prompt.style,
            )
            if remote.status != RemoteJobStatus.COMPLETED:
                remote = await self.generation_client.poll_until_complete(remote.job_id)

            if not remote.video_url:
                raise DataIntegrityException(
                    f"generation job {remote.job_id} completed without a video URL"
                )

            asset = await self.asset_store.upload_from_url(remote.video_url, folder=self.clip_folder)
            clip = await self.record_store.create_generated_clip(
                segment_id=segment.id,
                video_url=asset.url,
                duration=asset.duration or segment.target_duration,
                generation_service=self.generation_service,
                thumbnail_url=asset.thumbnail_url or remote.thumbnail_url,
                generation_params={"jobId": remote.job_id, "originalPrompt": segment.segment_prompt},
            )
            await self.record_store.mark_segment_completed(segment.id)
        except Exception as e:
            log_operation_error(
                logger=__name__,
                operation="segment_generation",
                error=e,
                message=f"Segment {segment.segment_number} of prompt {prompt.id} failed",
                context={"prompt_id": prompt.id, "segment_id": segment.id, "job_id": job.job_id},
                event="data_integrity_error" if isinstance(e, DataIntegrityException) else "segment_failed",
            )
            await self.record_store.mark_segment_failed(segment.id, str(e))
            raise

        logger.info(f"Segment {segment.segment_number} of prompt {prompt.id} completed: {clip.video_url}")
        return clip
