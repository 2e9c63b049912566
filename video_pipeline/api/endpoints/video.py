"""
Video generation API endpoints.
Queue a prompt for generation and poll its status.
"""
import logging

from fastapi import APIRouter, Depends

from video_pipeline.api.deps import get_queue, get_record_store
from video_pipeline.core.exceptions import JobNotFoundException, ValidationException
from video_pipeline.models.domain import CompiledVideoSnapshot, JobResult
from video_pipeline.models.queue_schemas import (
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    JobStatusValue,
    VideoStatusResponse,
)
from video_pipeline.services.pipeline.queue import VideoGenerationQueue, prompt_id_from_job_id
from video_pipeline.services.record_store import VideoRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/video", tags=["video"])

# Queue states as shown to polling UIs
UI_STATUS = {
    JobStatusValue.WAITING: "queued",
    JobStatusValue.ACTIVE: "processing",
    JobStatusValue.COMPLETED: "completed",
    JobStatusValue.FAILED: "failed",
}


def _completed_response(video: CompiledVideoSnapshot) -> VideoStatusResponse:
    return VideoStatusResponse(
        status="completed",
        progress=100,
        video_id=video.id,
        video_url=video.final_video_url,
        thumbnail_url=video.thumbnail_url,
        duration=video.total_duration,
        completed_at=video.created_at,
    )


@router.post("/generate-async", response_model=EnqueueResponse)
async def generate_video_async(
    request: EnqueueRequest,
    queue: VideoGenerationQueue = Depends(get_queue),
):
    """Queue video generation for a prompt. Repeated calls for one prompt share a job."""
    if not request.prompt_id or not request.user_id:
        raise ValidationException("promptId and userId are required")

    handle = await queue.enqueue(request.prompt_id, request.user_id, request.priority)

    if handle.deduplicated:
        message = "Video generation already in progress"
    else:
        message = "Video generation job queued"

    return EnqueueResponse(job_id=handle.job_id, message=message, prompt_id=handle.prompt_id)


@router.get("/status/prompt/{prompt_id}", response_model=JobStatusResponse)
async def get_prompt_job_status(
    prompt_id: str,
    queue: VideoGenerationQueue = Depends(get_queue),
):
    """Raw queue status of a prompt's job."""
    status = await queue.get_status(prompt_id)
    return JobStatusResponse(
        status=status.status,
        progress=status.progress,
        result=status.result,
        failed_reason=status.failed_reason,
        attempts_made=status.attempts_made,
        data=status.data,
    )


@router.get("/status/{job_or_prompt_id}", response_model=VideoStatusResponse)
async def get_video_status(
    job_or_prompt_id: str,
    queue: VideoGenerationQueue = Depends(get_queue),
    record_store: VideoRecordStore = Depends(get_record_store),
):
    """
    UI-facing status for a job id (video-<promptId>) or a prompt id.

    Falls back to the latest compiled video when the queue no longer knows
    the job (e.g. removed by retention).
    """
    prompt_id = prompt_id_from_job_id(job_or_prompt_id)
    status = await queue.get_status(prompt_id)

    if status.status == JobStatusValue.NOT_FOUND:
        video = await record_store.get_latest_compiled_video(prompt_id)
        if video is None:
            raise JobNotFoundException(prompt_id)
        return _completed_response(video)

    if status.status == JobStatusValue.COMPLETED:
        result = JobResult.from_dict(status.result or {})
        video = None
        if result.video_id:
            video = await record_store.get_compiled_video(result.video_id)
        if video is None:
            video = await record_store.get_latest_compiled_video(prompt_id)
        if video is not None:
            return _completed_response(video)
        logger.warning(f"Job for prompt {prompt_id} completed but its compiled video is missing")

    return VideoStatusResponse(
        status=UI_STATUS[status.status],
        progress=status.progress,
        attempts_made=status.attempts_made,
        failed_reason=status.failed_reason,
        video_id=(status.result or {}).get("videoId"),
    )
