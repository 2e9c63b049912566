"""
ffmpeg/ffprobe helpers shared by the clip compiler and the asset store.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import List

from video_pipeline.core.exceptions import VideoCompilationException

logger = logging.getLogger(__name__)


async def run_media_command(cmd: List[str], timeout: float, operation: str) -> bytes:
    """
    Run an ffmpeg/ffprobe command with a process-level timeout.

    Returns:
        stdout bytes

    Raises:
        VideoCompilationException: non-zero exit, missing binary or timeout
    """
    logger.info(f"Running {operation}: {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise VideoCompilationException(operation, f"executable not found: {cmd[0]}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise VideoCompilationException(operation, f"timed out after {timeout}s") from e

    if process.returncode != 0:
        error_msg = stderr.decode(errors="replace")[-1000:] if stderr else "Unknown error"
        logger.error(f"{operation} failed with exit code {process.returncode}: {error_msg}")
        raise VideoCompilationException(operation, f"exit code {process.returncode}: {error_msg}")

    return stdout


async def probe_duration(video_path: Path, ffprobe_binary: str = "ffprobe", timeout: float = 30.0) -> float:
    """
    Read a video's duration in seconds with ffprobe.

    Returns 0.0 when the duration cannot be determined.
    """
    cmd = [
        ffprobe_binary,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        str(video_path),
    ]
    try:
        stdout = await run_media_command(cmd, timeout, "ffprobe duration")
        data = json.loads(stdout.decode() or "{}")
        return float(data.get("format", {}).get("duration") or 0.0)
    except (VideoCompilationException, ValueError) as e:
        logger.warning(f"Could not read duration of {video_path}: {e}")
        return 0.0


async def extract_thumbnail(
    video_path: Path,
    output_path: Path,
    ffmpeg_binary: str = "ffmpeg",
    timeout: float = 60.0,
) -> bool:
    """
    Grab the first frame of a video as a JPEG.

    Returns:
        True if the thumbnail was written
    """
    cmd = [
        ffmpeg_binary, "-y",
        "-ss", "0",
        "-i", str(video_path),
        "-frames:v", "1",
        "-q:v", "2",
        str(output_path),
    ]
    try:
        await run_media_command(cmd, timeout, "ffmpeg thumbnail")
    except VideoCompilationException as e:
        logger.warning(f"Thumbnail extraction failed for {video_path}: {e}")
        return False
    return output_path.exists()
