"""
Domain models for business logic.
These are internal representations separate from ORM rows and API schemas.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

from video_pipeline.core.exceptions import DataIntegrityException


class SegmentStatus(str, Enum):
    """Segment lifecycle status."""
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ClipStatus(str, Enum):
    """Generated clip status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CompiledVideoStatus(str, Enum):
    """Compiled video status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RemoteJobStatus(str, Enum):
    """Remote generation job status as reported by the video service."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RemoteJobStatus.COMPLETED, RemoteJobStatus.FAILED)


@dataclass
class ClipSnapshot:
    """The authoritative (latest COMPLETED) clip of a segment."""
    id: str
    video_url: str
    duration: float
    thumbnail_url: Optional[str] = None


@dataclass
class SegmentSnapshot:
    """A segment as loaded for processing."""
    id: str
    segment_number: int
    segment_prompt: str
    target_duration: float
    status: SegmentStatus
    retry_count: int = 0
    transition_out: Optional[str] = None
    completed_clip: Optional[ClipSnapshot] = None


@dataclass
class CompiledVideoSnapshot:
    """A compiled video row."""
    id: str
    video_prompt_id: str
    final_video_url: str
    total_duration: float
    segments_used: List[str]
    status: CompiledVideoStatus
    thumbnail_url: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class PromptSnapshot:
    """
    A video prompt with ordered segments and its latest COMPLETED compiled
    video, loaded in one read at the start of every job attempt.
    """
    id: str
    master_prompt: str
    style: Optional[str]
    total_duration: float
    segments: List[SegmentSnapshot] = field(default_factory=list)
    completed_video: Optional[CompiledVideoSnapshot] = None


@dataclass
class SegmentSpec:
    """Input for creating a segment alongside a new prompt."""
    segment_prompt: str
    target_duration: float = 5.0
    transition_out: Optional[str] = None


@dataclass
class GenerationJob:
    """State of one remote generation job."""
    job_id: str
    status: RemoteJobStatus
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    estimated_time: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenerationJob':
        """
        Create from the service's JSON payload.

        Raises:
            DataIntegrityException: missing job id or an unknown status
        """
        if not isinstance(data, dict):
            raise DataIntegrityException(f"generation service reply is not an object: {data!r:.200}")
        job_id = str(data.get("jobId") or data.get("job_id") or "")
        raw_status = data.get("status")
        try:
            status = RemoteJobStatus(raw_status)
        except ValueError:
            raise DataIntegrityException(
                f"generation service returned unknown status {raw_status!r} for job {job_id or '<missing id>'}"
            ) from None
        if not job_id:
            raise DataIntegrityException("generation service reply has no job id")

        return cls(
            job_id=job_id,
            status=status,
            video_url=data.get("videoUrl") or data.get("video_url"),
            thumbnail_url=data.get("thumbnailUrl") or data.get("thumbnail_url"),
            estimated_time=data.get("estimatedTime") or data.get("estimated_time"),
            error=data.get("error"),
        )


@dataclass
class UploadedAsset:
    """Result of storing a video in object storage."""
    url: str
    thumbnail_url: Optional[str]
    duration: float


@dataclass
class CompilationSegment:
    """One input of the clip compiler; transition is advisory only."""
    video_url: str
    duration: float
    transition: Optional[str] = None


@dataclass
class CompiledClip:
    """A clip that is ready for compilation, in segment order."""
    segment_id: str
    video_url: str
    duration: float
    transition: Optional[str] = None
    thumbnail_url: Optional[str] = None

    def to_compilation_segment(self) -> CompilationSegment:
        return CompilationSegment(
            video_url=self.video_url,
            duration=self.duration,
            transition=self.transition,
        )


@dataclass
class JobResult:
    """Return value of a successful job, stored by the queue."""
    success: bool
    video_id: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"success": self.success, "videoId": self.video_id, "cached": self.cached}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobResult':
        """Create from dictionary."""
        return cls(
            success=bool(data.get("success")),
            video_id=data.get("videoId"),
            cached=bool(data.get("cached", False)),
        )


@dataclass
class ScratchFile:
    """A file written to a compilation scratch directory."""
    path: Path
    size_bytes: int = 0
