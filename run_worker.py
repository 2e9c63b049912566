#!/usr/bin/env python3
"""
Dedicated video generation worker script.
Runs the video worker independently of the API server.
"""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from video_pipeline.core.config import get_settings
from video_pipeline.core.logging import setup_logging
from video_pipeline.database.session import create_all
from video_pipeline.workers.job_system import JobSystem

logger = logging.getLogger(__name__)

# PID file path
PID_FILE = Path(__file__).parent / "worker.pid"


def acquire_pid_lock():
    """Ensure only one worker instance runs on this host."""
    if PID_FILE.exists():
        try:
            old_pid = int(PID_FILE.read_text().strip())
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read PID file: {e}, removing it")
            PID_FILE.unlink()
        else:
            try:
                os.kill(old_pid, 0)  # Signal 0 just checks if process exists
            except OSError:
                logger.warning(f"Removing stale PID file (process {old_pid} not found)")
                PID_FILE.unlink()
            else:
                logger.error(f"Worker already running with PID {old_pid}")
                logger.error(f"If you're sure it's not running, delete {PID_FILE}")
                sys.exit(1)

    PID_FILE.write_text(str(os.getpid()))
    logger.info(f"Acquired PID lock: {os.getpid()}")


def release_pid_lock():
    """Release PID file on shutdown."""
    if PID_FILE.exists():
        PID_FILE.unlink()
        logger.info("Released PID lock")


async def verify_and_run(once: bool, create_schema: bool) -> int:
    """Verify Redis and the database, then run the worker until stopped."""
    settings = get_settings()
    job_system = JobSystem.from_settings(settings, with_worker=True)

    try:
        if not await job_system.health():
            logger.error("Redis connection failed")
            logger.error("Please ensure Redis is running and accessible")
            return 1
        logger.info("Async Redis connection verified")

        if create_schema:
            await create_all(job_system.engine)
            logger.info("Database schema ensured")

        job_system.worker.install_signal_handlers()
        if once:
            await job_system.worker.run_until_idle()
        else:
            await job_system.run_worker()
        return 0
    finally:
        await job_system.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the video generation worker")
    parser.add_argument("--once", action="store_true", help="Drain the queue and exit")
    parser.add_argument("--create-schema", action="store_true", help="Create missing tables before starting")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir, console=True)

    acquire_pid_lock()
    logger.info("Starting dedicated video generation worker...")
    try:
        return asyncio.run(verify_and_run(args.once, args.create_schema))
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
        return 0
    except Exception as e:
        logger.exception(f"Worker crashed: {e}")
        return 1
    finally:
        release_pid_lock()


if __name__ == "__main__":
    sys.exit(main())
