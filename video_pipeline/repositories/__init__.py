"""
Repository layer exports.

This module exports all database repositories for easy import.
"""
from video_pipeline.repositories import video_prompt_db_repository
from video_pipeline.repositories import video_segment_db_repository
from video_pipeline.repositories import generated_clip_db_repository
from video_pipeline.repositories import compiled_video_db_repository

__all__ = [
    'video_prompt_db_repository',
    'video_segment_db_repository',
    'generated_clip_db_repository',
    'compiled_video_db_repository',
]
