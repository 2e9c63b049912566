"""
Dependency injection for FastAPI endpoints.
The JobSystem is created by the application factory and kept on app.state.
"""
from fastapi import Request

from video_pipeline.services.pipeline.queue import VideoGenerationQueue
from video_pipeline.services.record_store import VideoRecordStore
from video_pipeline.workers.job_system import JobSystem


def get_job_system(request: Request) -> JobSystem:
    job_system = getattr(request.app.state, "job_system", None)
    if job_system is None:
        raise RuntimeError("Job system not initialized")
    return job_system


def get_queue(request: Request) -> VideoGenerationQueue:
    return get_job_system(request).queue


def get_record_store(request: Request) -> VideoRecordStore:
    return get_job_system(request).record_store
