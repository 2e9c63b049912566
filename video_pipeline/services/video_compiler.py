"""
Clip compiler - joins an ordered list of remote clips into one local video.

Clips are downloaded into a private scratch directory and concatenated with
ffmpeg's concat demuxer using stream copy (no re-encoding). Transitions are
carried as metadata only; clips are joined back to back.

Use it as an async context manager so the scratch directory is removed on
every exit path:

    async with VideoCompiler.from_settings(settings, identifier=prompt_id) as compiler:
        output = await compiler.compile_videos(segments)
        asset = await asset_store.upload_video(output)
"""
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import aiofiles
import httpx

from video_pipeline.core.config import Settings
from video_pipeline.core.exceptions import ClipDownloadException, VideoCompilationException
from video_pipeline.core.logging import operation_logger
from video_pipeline.models.domain import CompilationSegment, ScratchFile
from video_pipeline.services.temp_file_manager import create_scratch_dir, remove_scratch_dir
from video_pipeline.utils.media import run_media_command

logger = logging.getLogger(__name__)


def build_concat_list(paths: Sequence[Path]) -> str:
    """Build an ffmpeg concat demuxer list; single quotes in paths are escaped."""
    lines = []
    for path in paths:
        escaped = str(path).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class VideoCompiler:
    """Downloads clips and concatenates them with ffmpeg."""

    def __init__(
        self,
        identifier: str = "compilation",
        temp_base_dir: Optional[Path] = None,
        ffmpeg_binary: str = "ffmpeg",
        ffmpeg_timeout: float = 600.0,
        download_timeout: float = 120.0,
        chunk_size: int = 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.identifier = identifier
        self.temp_base_dir = temp_base_dir
        self.ffmpeg_binary = ffmpeg_binary
        self.ffmpeg_timeout = ffmpeg_timeout
        self.download_timeout = download_timeout
        self.chunk_size = chunk_size
        self._transport = transport
        self.scratch_dir: Optional[Path] = None

    @classmethod
    def from_settings(cls, settings: Settings, identifier: str = "compilation") -> "VideoCompiler":
        return cls(
            identifier=identifier,
            temp_base_dir=settings.temp_base_dir,
            ffmpeg_binary=settings.ffmpeg_binary,
            ffmpeg_timeout=settings.ffmpeg_timeout_seconds,
            download_timeout=settings.clip_download_timeout_seconds,
            chunk_size=settings.clip_download_chunk_size,
        )

    async def __aenter__(self) -> "VideoCompiler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    def _ensure_scratch_dir(self) -> Path:
        if self.scratch_dir is None:
            self.scratch_dir = create_scratch_dir("compilation", self.identifier, self.temp_base_dir)
        return self.scratch_dir

    async def download_video(self, client: httpx.AsyncClient, url: str, filename: str) -> ScratchFile:
        """Stream one clip into the scratch directory."""
        file_path = self._ensure_scratch_dir() / filename
        size = 0
        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(file_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await f.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as e:
            raise ClipDownloadException(url, f"{type(e).__name__}: {e}") from e
        except OSError as e:
            raise ClipDownloadException(url, f"could not write {file_path}: {e}") from e

        if size == 0:
            raise ClipDownloadException(url, "empty response body")

        logger.debug(f"Downloaded {url} -> {file_path} ({size} bytes)")
        return ScratchFile(path=file_path, size_bytes=size)

    @operation_logger("clip_compilation")
    async def compile_videos(self, segments: Sequence[CompilationSegment]) -> Path:
        """
        Download every clip and concatenate them in the given order.

        Returns:
            Path of the compiled file inside the scratch directory

        Raises:
            ValueError: no segments given
            ClipDownloadException: a clip could not be downloaded
            VideoCompilationException: ffmpeg failed or timed out
        """
        if not segments:
            raise ValueError("compile_videos needs at least one segment")

        scratch_dir = self._ensure_scratch_dir()
        logger.info(f"Compiling {len(segments)} video segment(s) in {scratch_dir}")

        if any(segment.transition for segment in segments):
            logger.debug("Segment transitions are not rendered; clips are joined in order")

        downloaded: List[Path] = []
        async with httpx.AsyncClient(
            timeout=self.download_timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for index, segment in enumerate(segments):
                scratch_file = await self.download_video(client, segment.video_url, f"segment_{index}.mp4")
                downloaded.append(scratch_file.path)

        output_path = scratch_dir / "compiled.mp4"

        if len(downloaded) == 1:
            cmd = [self.ffmpeg_binary, "-y", "-i", str(downloaded[0]), "-c", "copy", str(output_path)]
        else:
            concat_file = scratch_dir / "concat_list.txt"
            async with aiofiles.open(concat_file, "w", encoding="utf-8") as f:
                await f.write(build_concat_list(downloaded))
            cmd = [
                self.ffmpeg_binary, "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(concat_file),
                "-c", "copy",
                str(output_path),
            ]

        await run_media_command(cmd, self.ffmpeg_timeout, "ffmpeg concat")
        logger.info(f"Video compilation complete: {output_path}")
        return output_path

    async def cleanup(self) -> None:
        """
        Remove the scratch directory of this run. Safe to call repeatedly and
        when nothing was created; failures are logged, never raised.
        """
        if self.scratch_dir is None:
            return
        if remove_scratch_dir(self.scratch_dir):
            logger.info(f"Cleaned up compilation scratch dir {self.scratch_dir}")
        self.scratch_dir = None
