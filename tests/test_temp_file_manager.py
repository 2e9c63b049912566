import os
import time

import pytest

from video_pipeline.services.temp_file_manager import cleanup_old_files, create_scratch_dir, remove_scratch_dir


def test_scratch_dirs_are_private_and_removable(tmp_path):
    first = create_scratch_dir("compilation", "prompt-1", temp_base_dir=tmp_path)
    second = create_scratch_dir("compilation", "prompt-1", temp_base_dir=tmp_path)

    assert first != second
    assert first.parent == tmp_path / "compilation"
    assert first.name.startswith("prompt-1-")

    (first / "segment_0.mp4").write_bytes(b"clip")
    assert remove_scratch_dir(first)
    assert not first.exists()
    assert remove_scratch_dir(first)
    assert remove_scratch_dir(None)


def test_unknown_purpose_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        create_scratch_dir("transcripts", "x", temp_base_dir=tmp_path)


def test_cleanup_removes_only_stale_leftovers(tmp_path):
    stale_dir = create_scratch_dir("uploads", "crashed", temp_base_dir=tmp_path)
    stale = stale_dir / "source.mp4"
    stale.write_bytes(b"x" * 10)
    old = time.time() - 48 * 3600
    os.utime(stale, (old, old))

    fresh_dir = create_scratch_dir("uploads", "running", temp_base_dir=tmp_path)
    fresh = fresh_dir / "source.mp4"
    fresh.write_bytes(b"y")

    stats = cleanup_old_files(max_age_hours=24, temp_base_dir=tmp_path)

    assert stats["files_deleted"] == 1
    assert stats["bytes_freed"] == 10
    assert not stale_dir.exists()
    assert fresh.exists()
