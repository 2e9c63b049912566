"""
Asset store backed by Google Cloud Storage.

Uploads a local video (or a video at a remote URL) to the video bucket and
returns its public URL, a thumbnail URL and the probed duration. Thumbnails
are the first frame of the video, extracted with ffmpeg.
"""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import google.auth
import httpx
from google.cloud import storage
from google.oauth2 import service_account

from video_pipeline.core.config import Settings, get_settings
from video_pipeline.core.exceptions import AssetUploadException
from video_pipeline.models.domain import UploadedAsset
from video_pipeline.services.temp_file_manager import create_scratch_dir, remove_scratch_dir
from video_pipeline.utils.media import extract_thumbnail, probe_duration
from video_pipeline.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


def _init_storage_client(settings: Settings) -> storage.Client:
    """Service account from settings when present, Application Default Credentials otherwise."""
    credentials_path = settings.gcs_credentials_path

    if credentials_path and credentials_path.exists():
        logger.info(f"Using GCS service account from: {credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(
            str(credentials_path),
            scopes=['https://www.googleapis.com/auth/cloud-platform']
        )
        return storage.Client(credentials=credentials, project=credentials.project_id)

    if credentials_path:
        logger.warning(f"Service account file not found: {credentials_path}")
    logger.warning("No service account configured, using Application Default Credentials")
    try:
        return storage.Client()
    except Exception as e:
        if "project" not in str(e).lower():
            raise
        logger.warning("Could not auto-detect project, using bucket-specific access")
        credentials, _ = google.auth.default()
        return storage.Client(credentials=credentials, project=None)


class GCSAssetStore:
    """Uploads compiled and generated videos to the video bucket."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[storage.Client] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or _init_storage_client(self.settings)
        self.bucket = self.client.bucket(self.settings.gcs_bucket_name)
        self._transport = transport

    async def _upload_file(self, local_path: Path, blob_name: str, content_type: str) -> str:
        blob = self.bucket.blob(blob_name)
        await retry_with_backoff(
            asyncio.to_thread,
            blob.upload_from_filename,
            str(local_path),
            content_type=content_type,
            max_retries=self.settings.gcs_upload_max_retries,
            base_delay=self.settings.gcs_upload_retry_base_delay,
            operation_name=f"GCS upload {blob_name}",
        )
        return self.settings.get_public_url(blob_name)

    async def upload_video(self, local_path: Path, folder: Optional[str] = None) -> UploadedAsset:
        """
        Upload a local video file with its first-frame thumbnail.

        Args:
            local_path: Video file to upload
            folder: Bucket folder, defaults to the configured video folder

        Returns:
            UploadedAsset with public URL, thumbnail URL and duration

        Raises:
            AssetUploadException: file missing or upload failed
        """
        local_path = Path(local_path)
        if not local_path.exists():
            raise AssetUploadException(str(local_path), "file not found")

        folder = (folder or self.settings.gcs_video_folder).strip("/")
        asset_name = uuid.uuid4().hex
        video_blob = f"{folder}/{asset_name}.mp4"
        thumbnail_blob = f"{folder}/thumbnails/{asset_name}.jpg"

        duration = await probe_duration(local_path, self.settings.ffprobe_binary)

        scratch_dir = create_scratch_dir("uploads", asset_name, self.settings.temp_base_dir)
        try:
            try:
                video_url = await self._upload_file(local_path, video_blob, "video/mp4")
            except Exception as e:
                raise AssetUploadException(str(local_path), f"{type(e).__name__}: {e}") from e

            thumbnail_url = None
            thumbnail_path = scratch_dir / "thumbnail.jpg"
            if await extract_thumbnail(local_path, thumbnail_path, self.settings.ffmpeg_binary):
                try:
                    thumbnail_url = await self._upload_file(thumbnail_path, thumbnail_blob, "image/jpeg")
                except Exception as e:
                    logger.warning(f"Thumbnail upload failed for {video_blob}: {e}")
        finally:
            remove_scratch_dir(scratch_dir)

        logger.info(f"Uploaded {local_path.name} to {video_url} (duration={duration:.2f}s)")
        return UploadedAsset(url=video_url, thumbnail_url=thumbnail_url, duration=duration)

    async def upload_from_url(self, url: str, folder: Optional[str] = None) -> UploadedAsset:
        """
        Copy a remote video into the bucket.

        Raises:
            AssetUploadException: the source could not be fetched or stored
        """
        scratch_dir = create_scratch_dir("uploads", "remote", self.settings.temp_base_dir)
        source_path = scratch_dir / "source.mp4"
        try:
            try:
                async with httpx.AsyncClient(
                    timeout=self.settings.clip_download_timeout_seconds,
                    follow_redirects=True,
                    transport=self._transport,
                ) as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        async with aiofiles.open(source_path, "wb") as f:
                            async for chunk in response.aiter_bytes(self.settings.clip_download_chunk_size):
                                await f.write(chunk)
            except (httpx.HTTPError, OSError) as e:
                raise AssetUploadException(url, f"{type(e).__name__}: {e}") from e

            if source_path.stat().st_size == 0:
                raise AssetUploadException(url, "empty response body")

            return await self.upload_video(source_path, folder)
        finally:
            remove_scratch_dir(scratch_dir)
