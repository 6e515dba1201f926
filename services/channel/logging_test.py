"""Tests for sync log capture."""

import gzip
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from loguru import logger

from services.channel.logging import SyncLogCapture, capture_sync_logs


class TestSyncLogCapture:

    @pytest.mark.no_db
    def test_captures_logs(self):
        with SyncLogCapture("pull") as capture:
            logger.info("Imported booking 1")
            logger.warning("Skipped booking 2")

        assert "Imported booking 1" in capture.content
        assert "Skipped booking 2" in capture.content

    @pytest.mark.no_db
    def test_includes_markers(self):
        with SyncLogCapture("bootstrap") as capture:
            logger.info("work")

        assert "=== Sync started: bootstrap ===" in capture.content
        assert "=== Sync completed: bootstrap ===" in capture.content
        assert "Duration:" in capture.content

    @pytest.mark.no_db
    def test_stops_capturing_after_exit(self):
        with SyncLogCapture("pull") as capture:
            pass
        logger.info("after exit")

        assert "after exit" not in capture.content

    @pytest.mark.no_db
    def test_saves_gzip_copy(self):
        with TemporaryDirectory() as tmpdir:
            with capture_sync_logs("push", local_backup_dir=tmpdir) as capture:
                logger.info("Pushed 3 lines")

            files = list(Path(tmpdir).glob("push_*.log.gz"))
            assert len(files) == 1
            assert capture.saved_path == files[0]
            assert "Pushed 3 lines" in gzip.decompress(files[0].read_bytes()).decode()

    @pytest.mark.no_db
    def test_does_not_suppress_exceptions(self):
        with pytest.raises(ValueError):
            with SyncLogCapture("pull") as capture:
                raise ValueError("boom")

        assert "Sync failed with error: boom" in capture.content

    @pytest.mark.no_db
    def test_no_file_without_backup_dir(self, monkeypatch):
        monkeypatch.delenv("CHANNEL_LOG_DIR", raising=False)
        with SyncLogCapture("pull") as capture:
            logger.info("x")

        assert capture.saved_path is None
