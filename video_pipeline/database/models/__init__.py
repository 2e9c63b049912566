"""
Database models package.
All models must be imported here so they register on Base.metadata.
"""
from video_pipeline.database.models.video_prompt import VideoPrompt
from video_pipeline.database.models.video_segment import VideoSegment
from video_pipeline.database.models.generated_clip import GeneratedVideoClip
from video_pipeline.database.models.compiled_video import CompiledVideo

__all__ = [
    "VideoPrompt",
    "VideoSegment",
    "GeneratedVideoClip",
    "CompiledVideo",
]
