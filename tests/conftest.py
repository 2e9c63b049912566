import asyncio

import pytest

from video_pipeline.core.config import Settings

from fakes import FakeAssetStore, FakeCompilerFactory, FakeGenerationClient


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}",
        temp_base_dir=tmp_path / "temp",
        video_api_url="https://video.example.test/v1",
        video_api_key="test-key",
        gcs_bucket_name="test-bucket",
        container_id="test-host",
        queue_backoff_delay_seconds=0.0,
    )


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def asset_store():
    return FakeAssetStore()


@pytest.fixture
def compiler_factory():
    return FakeCompilerFactory()
