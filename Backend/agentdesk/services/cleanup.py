import os
import time
import logging

logger = logging.getLogger(__name__)

UPLOAD_MAX_AGE_SECONDS = 86400      # orphaned uploads are kept for a day
CLEANUP_INTERVAL_SECONDS = 3600     # the upload route runs cleanup at most hourly

def cleanup_old_files(directory: str, max_age_seconds: int = UPLOAD_MAX_AGE_SECONDS) -> int:
    """
    Deletes files in the specified directory that are older than max_age_seconds.

    Ingestion deletes its own upload when it finishes; this catches files
    left behind by a crashed process.

    Args:
        directory: Path to the directory to clean.
        max_age_seconds: Max file age in seconds (default: 24h).

    Returns:
        Number of files removed.
    """
    if not os.path.exists(directory):
        return 0

    now = time.time()
    count = 0

    try:
        for filename in os.listdir(directory):
            file_path = os.path.join(directory, filename)
            # Skip directories
            if not os.path.isfile(file_path):
                continue

            file_age = now - os.path.getmtime(file_path)

            if file_age > max_age_seconds:
                try:
                    os.remove(file_path)
                    count += 1
                except OSError as e:
                    logger.warning(f"Failed to delete old upload {filename}: {e}")

        if count > 0:
            logger.info(f"Cleanup: Removed {count} old uploads (>{max_age_seconds}s) from {directory}.")

    except OSError as e:
        logger.error(f"Cleanup failed for {directory}: {e}")
    return count


class LazyCleanup:
    """Gate that lets cleanup run at most once per interval."""

    def __init__(self, interval_seconds: float = CLEANUP_INTERVAL_SECONDS, clock=time.time):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_run = 0.0

    def due(self) -> bool:
        now = self._clock()
        if now - self._last_run > self.interval_seconds:
            self._last_run = now
            return True
        return False
