"""
Custom exception classes for the course video pipeline.
These exceptions provide meaningful error messages and HTTP status codes.
"""


class VideoPipelineException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class DataIntegrityException(VideoPipelineException):
    """
    Raised when a collaborator violates its contract (missing rows, a
    "completed" remote job without a video URL, broken segment numbering).
    Logged separately from transient failures.
    """

    def __init__(self, message: str):
        super().__init__(
            message=f"Data integrity error: {message}",
            status_code=500
        )


class VideoPromptNotFoundException(DataIntegrityException):
    """Raised when a video prompt is not found."""

    def __init__(self, prompt_id: str):
        super().__init__(f"Video prompt not found: {prompt_id}")
        self.status_code = 404
        self.prompt_id = prompt_id


class JobNotFoundException(VideoPipelineException):
    """Raised when no queued job or compiled video exists for a prompt."""

    def __init__(self, prompt_id: str):
        super().__init__(
            message=f"No video generation job found for prompt: {prompt_id}",
            status_code=404
        )
        self.prompt_id = prompt_id


class ValidationException(VideoPipelineException):
    """Raised when request data validation fails."""

    def __init__(self, message: str):
        super().__init__(
            message=f"Validation error: {message}",
            status_code=400  # Bad Request
        )


class VideoGenerationServiceException(VideoPipelineException):
    """Raised when a call to the video generation service fails (transport or HTTP error)."""

    def __init__(self, service: str, error: str):
        super().__init__(
            message=f"Video generation service '{service}' error: {error}",
            status_code=502  # Bad Gateway
        )
        self.service = service
        self.error = error


class VideoGenerationFailedException(VideoPipelineException):
    """Raised when the remote generation job reaches the terminal 'failed' state."""

    def __init__(self, job_id: str, error: str):
        super().__init__(
            message=error or "Video generation failed",
            status_code=502
        )
        self.job_id = job_id
        self.error = error


class VideoGenerationTimeoutException(VideoPipelineException):
    """Raised client-side when polling exhausts its attempts."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            message=f"Video generation timed out: job {job_id} not finished after {attempts} checks",
            status_code=504  # Gateway Timeout
        )
        self.job_id = job_id
        self.attempts = attempts


class ClipDownloadException(VideoPipelineException):
    """Raised when a clip cannot be downloaded for compilation."""

    def __init__(self, url: str, error: str):
        super().__init__(
            message=f"Clip download failed for {url}: {error}",
            status_code=502
        )
        self.url = url
        self.error = error


class VideoCompilationException(VideoPipelineException):
    """Raised when ffmpeg fails to compile clips."""

    def __init__(self, operation: str, error: str):
        super().__init__(
            message=f"Video compilation failed during {operation}: {error}",
            status_code=500
        )
        self.operation = operation
        self.error = error


class AssetUploadException(VideoPipelineException):
    """Raised when an asset cannot be stored in object storage."""

    def __init__(self, source: str, error: str):
        super().__init__(
            message=f"Asset upload failed for {source}: {error}",
            status_code=502
        )
        self.source = source
        self.error = error
