"""
Temp File Manager -- centralized management of scratch files.

Every step that writes local files (clip downloads, compilation output,
thumbnail extraction, URL proxy uploads) gets a private scratch directory
under a single temp tree:

    temp/
    ├── compilation/{identifier}-{random}/segment_0.mp4, concat_list.txt, compiled.mp4
    └── uploads/{identifier}-{random}/source.mp4, thumbnail.jpg

Scratch directories are removed by their owner when the work finishes.
Leftovers from crashed workers are swept by cleanup_old_files() at worker
startup.
"""
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Valid purpose directories within the temp tree
VALID_PURPOSES = {"compilation", "uploads"}


def get_temp_base(temp_base_dir: Optional[Path] = None) -> Path:
    """
    Return the absolute path to the temp base directory.

    Relative paths resolve against the repository root (the directory
    containing the `video_pipeline/` package).
    """
    if temp_base_dir is None:
        from video_pipeline.core.config import get_settings
        temp_base_dir = get_settings().temp_base_dir
    base = Path(temp_base_dir)
    if not base.is_absolute():
        base = Path(__file__).resolve().parent.parent.parent / base
    base.mkdir(parents=True, exist_ok=True)
    return base


def create_scratch_dir(purpose: str, identifier: str, temp_base_dir: Optional[Path] = None) -> Path:
    """
    Create a fresh, uniquely named scratch directory.

    Args:
        purpose: One of "compilation", "uploads"
        identifier: Prefix for the directory name (e.g. a prompt id)
        temp_base_dir: Override for the temp root

    Returns:
        Absolute Path to temp/{purpose}/{identifier}-{random}/
    """
    if purpose not in VALID_PURPOSES:
        raise ValueError(f"Invalid temp purpose '{purpose}'. Must be one of: {VALID_PURPOSES}")

    parent = get_temp_base(temp_base_dir) / purpose
    parent.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"{identifier}-", dir=parent))


def remove_scratch_dir(path: Optional[Path]) -> bool:
    """
    Remove a scratch directory and everything in it.

    Best-effort: a missing directory is fine, and failures are logged,
    never raised.

    Returns:
        True if the directory is gone afterwards
    """
    if path is None:
        return True
    try:
        shutil.rmtree(path)
        logger.debug(f"Removed scratch dir: {path}")
        return True
    except FileNotFoundError:
        return True
    except Exception as e:
        logger.warning(f"Could not remove scratch dir {path}: {e}")
        return False


def cleanup_old_files(max_age_hours: float = 24.0, temp_base_dir: Optional[Path] = None) -> dict:
    """
    Delete all files in the temp tree that are older than max_age_hours.

    Uses file mtime as the age indicator. After deleting files, performs a
    second bottom-up pass to remove empty directories.

    Returns:
        Dict with keys: files_deleted, bytes_freed, dirs_removed, duration_ms
    """
    start = time.monotonic()
    base = get_temp_base(temp_base_dir)

    files_deleted = 0
    bytes_freed = 0
    dirs_removed = 0

    cutoff = time.time() - (max_age_hours * 3600)

    # First pass: delete old files
    for file_path in base.rglob("*"):
        if not file_path.is_file():
            continue
        try:
            stat = file_path.stat()
            if stat.st_mtime < cutoff:
                file_path.unlink()
                files_deleted += 1
                bytes_freed += stat.st_size
        except FileNotFoundError:
            pass  # Removed by its owner meanwhile
        except Exception as e:
            logger.warning(f"Could not delete temp file {file_path}: {e}")

    # Second pass: remove empty directories (bottom-up)
    for dir_path in sorted(base.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if not dir_path.is_dir() or dir_path == base:
            continue
        try:
            dir_path.rmdir()  # Only succeeds if empty
            dirs_removed += 1
        except OSError:
            pass

    duration_ms = int((time.monotonic() - start) * 1000)

    logger.info(
        f"Temp cleanup complete: deleted {files_deleted} files, "
        f"freed {bytes_freed / (1024 ** 2):.1f} MB, "
        f"removed {dirs_removed} dirs in {duration_ms}ms"
    )

    return {
        "files_deleted": files_deleted,
        "bytes_freed": bytes_freed,
        "dirs_removed": dirs_removed,
        "duration_ms": duration_ms,
    }
