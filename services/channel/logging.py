"""
Sync run logging - capture the logs of one CLI invocation and keep a gzip copy.
"""

import gzip
import io
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger


class SyncLogCapture:
    """
    Buffers every log line emitted while a sync operation runs.

    Usage:
        with SyncLogCapture("pull", local_backup_dir="logs/") as capture:
            await worker.pull_reservations(...)
        # capture.saved_path points at logs/pull_<date>_<time>.log.gz
    """

    def __init__(self, operation: str, local_backup_dir: Optional[str] = None):
        self.operation = operation
        self.local_backup_dir = local_backup_dir or os.environ.get("CHANNEL_LOG_DIR")
        self.saved_path: Optional[Path] = None

        self._log_buffer = io.StringIO()
        self._handler_id: Optional[int] = None
        self._start_time: Optional[datetime] = None

    @property
    def content(self) -> str:
        return self._log_buffer.getvalue()

    def __enter__(self) -> "SyncLogCapture":
        self._start_time = datetime.now(timezone.utc)
        self._handler_id = logger.add(
            self._log_buffer,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}",
            level="DEBUG",
        )
        logger.info(f"=== Sync started: {self.operation} ===")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        end_time = datetime.now(timezone.utc)
        if exc_type:
            logger.error(f"Sync failed with error: {exc_val}")
        logger.info(f"Duration: {end_time - self._start_time}")
        logger.info(f"=== Sync completed: {self.operation} ===")

        if self._handler_id is not None:
            logger.remove(self._handler_id)
            self._handler_id = None

        if self.local_backup_dir:
            try:
                self.saved_path = self._save_local(self.content, end_time)
                logger.info(f"Sync log saved: {self.saved_path}")
            except OSError as e:
                logger.error(f"Failed to save sync log: {e}")

        return False

    def _save_local(self, content: str, timestamp: datetime) -> Path:
        filename = f"{self.operation}_{timestamp.strftime('%Y-%m-%d')}_{timestamp.strftime('%H%M%S')}.log.gz"
        backup_dir = Path(self.local_backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        filepath = backup_dir / filename
        filepath.write_bytes(gzip.compress(content.encode("utf-8")))
        return filepath


@contextmanager
def capture_sync_logs(operation: str, local_backup_dir: Optional[str] = None):
    """Context manager form of SyncLogCapture."""
    with SyncLogCapture(operation, local_backup_dir=local_backup_dir) as capture:
        yield capture
