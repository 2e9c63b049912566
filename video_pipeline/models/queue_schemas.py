"""
Pydantic models for the job queue and the video API request/response validation.
"""
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueueJobState(str, Enum):
    """Internal job state stored in the job hash."""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueJobState.COMPLETED, QueueJobState.FAILED)


class JobStatusValue(str, Enum):
    """Job state as exposed through the status contract."""
    NOT_FOUND = "not_found"
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobHandle(BaseModel):
    """Handle returned by enqueue."""
    job_id: str
    prompt_id: str
    user_id: str
    priority: int
    state: QueueJobState
    deduplicated: bool = False


class JobStatus(BaseModel):
    """Status contract: what a polling caller sees for a prompt's job."""
    status: JobStatusValue
    progress: float = 0
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    attempts_made: int = 0
    data: Optional[Dict[str, Any]] = None


class EnqueueRequest(BaseModel):
    """Request body for queueing a video generation job."""
    model_config = ConfigDict(populate_by_name=True)

    prompt_id: Optional[str] = Field(default=None, alias="promptId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    priority: Optional[int] = Field(default=None, ge=1)

    @field_validator('prompt_id', 'user_id')
    @classmethod
    def strip_ids(cls, v: Optional[str]) -> Optional[str]:
        """Blank strings count as missing."""
        if v is None:
            return v
        v = v.strip()
        return v or None


class EnqueueResponse(BaseModel):
    """Response for a queued video generation job."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(alias="jobId")
    message: str
    prompt_id: str = Field(alias="promptId")


class JobStatusResponse(BaseModel):
    """Raw queue status for a prompt."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status: JobStatusValue
    progress: float = 0
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = Field(default=None, alias="failedReason")
    attempts_made: int = Field(default=0, alias="attemptsMade")
    data: Optional[Dict[str, Any]] = None


class VideoStatusResponse(BaseModel):
    """UI-facing status: queue state mapped to display states, plus the compiled video when done."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status: str  # queued|processing|completed|failed|not_found
    progress: Optional[float] = None
    attempts_made: Optional[int] = Field(default=None, alias="attemptsMade")
    failed_reason: Optional[str] = Field(default=None, alias="failedReason")
    video_id: Optional[str] = Field(default=None, alias="videoId")
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    duration: Optional[float] = None
    completed_at: Optional[str] = Field(default=None, alias="completedAt")


class QueueJob(BaseModel):
    """A job claimed by a worker."""
    job_id: str
    prompt_id: str
    user_id: str
    priority: int
    attempts_made: int
    max_attempts: int
    data: Dict[str, Any] = Field(default_factory=dict)
    lock_token: str = ""
