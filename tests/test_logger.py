"""Tests for the session logger module."""

import json
import tempfile
from pathlib import Path

import pytest

from nearwave.core.logger import SessionLogger


class TestSessionLogger:
    """Tests for SessionLogger class."""

    def test_logger_creation(self):
        """Test creating a logger."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            assert logger.log_file == log_file
            assert log_file.exists()

    def test_invalid_settings(self):
        """Test unknown formats and levels are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = str(Path(tmpdir) / "test.log")
            with pytest.raises(ValueError):
                SessionLogger(log_file=log_file, log_format="xml")
            with pytest.raises(ValueError):
                SessionLogger(log_file=log_file, log_level="verbose")

    def test_log_text_format(self):
        """Test logging in text format."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(
                log_file=str(log_file),
                log_format="text",
            )

            logger.log("test_event", "0123456789abcdef", "Test content")

            content = log_file.read_text()
            assert "test_event" in content
            assert "[01234567]" in content
            assert "Test content" in content

    def test_log_json_format(self):
        """Test logging in JSON format."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(
                log_file=str(log_file),
                log_format="json",
            )

            logger.log("test_event", "session123", "Test content")

            data = json.loads(log_file.read_text().strip())

            assert data["event"] == "test_event"
            assert data["session_id"] == "session123"
            assert data["content"] == "Test content"

    def test_log_with_metadata(self):
        """Test logging with metadata."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(
                log_file=str(log_file),
                log_format="json",
            )

            logger.log(
                "test_event",
                "session123",
                "Content",
                metadata={"key": "value"},
            )

            data = json.loads(log_file.read_text().strip())

            assert data["metadata"]["key"] == "value"

    def test_log_message_sent(self):
        """Test logging sent messages."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            logger.log_message_sent("session1", '{"url":"https://example.com"}', {"bits": 128})

            content = log_file.read_text()
            assert "message_sent" in content
            assert "https://example.com" in content
            assert '"bits": 128' in content

    def test_log_message_received(self):
        """Test logging received messages."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            logger.log_message_received("session1", "Incoming")

            content = log_file.read_text()
            assert "message_received" in content

    def test_transmission_events_are_debug(self):
        """Test transmission progress is only written at debug level."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            logger.log_transmission_start("session1", 512)
            logger.log_transmission_complete("session1", 35840.0)
            assert log_file.read_text() == ""

            logger.log_level = "debug"
            logger.log_transmission_start("session1", 512)
            logger.log_transmission_complete("session1", 35840.0)
            content = log_file.read_text()
            assert "Scheduling 512 symbols" in content
            assert "35840.0ms" in content

    def test_log_level_filtering(self):
        """Test that log level filtering works."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(
                log_file=str(log_file),
                log_level="warning",
            )

            logger.log("event", "session", "debug msg", level="debug")
            logger.log("event", "session", "info msg", level="info")
            logger.log("event", "session", "warning msg", level="warning")
            logger.log_error("session", "error msg")

            content = log_file.read_text()
            assert "debug msg" not in content
            assert "info msg" not in content
            assert "warning msg" in content
            assert "error msg" in content

    def test_get_history(self):
        """Test retrieving the session history."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            logger.log_listening_start("session")
            logger.log_listening_stop("session")

            history = logger.get_history()

            assert len(history) == 2
            assert "listening_start" in history[0]
            assert "listening_stop" in history[1]

    def test_clear_log(self):
        """Test clearing the log."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(log_file=str(log_file))

            logger.log("event", "session", "Content")
            logger.clear_log()

            assert log_file.read_text() == ""

    def test_timestamps(self):
        """Test that timestamps can be switched off."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "test.log"
            logger = SessionLogger(
                log_file=str(log_file),
                include_timestamps=False,
            )

            logger.log("event", "session", "Content")

            assert log_file.read_text().startswith("[INFO]")

    def test_from_config(self):
        """Test building a logger from the logging config section."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = str(Path(tmpdir) / "session.log")

            logger = SessionLogger.from_config({"file": log_file, "format": "json"})
            assert logger.log_format == "json"

            assert SessionLogger.from_config({"enabled": False, "file": log_file}) is None
