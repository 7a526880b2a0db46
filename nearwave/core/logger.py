"""
Session event log for nearwave.
Records sent and received announcements to a log file.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

LEVELS = ["debug", "info", "warning", "error"]


class SessionLogger:
    """Append-only event log for modem sessions."""

    def __init__(
        self,
        log_file: str = "nearwave_session.log",
        log_format: str = "text",
        include_timestamps: bool = True,
        log_level: str = "info",
    ):
        """
        Initialize the session logger.

        Args:
            log_file: Path to the log file
            log_format: Log format (text or json)
            include_timestamps: Whether to include timestamps
            log_level: Minimum level written (debug, info, warning, error)
        """
        if log_format not in ("text", "json"):
            raise ValueError(f"Unknown log format: {log_format}")
        if log_level not in LEVELS:
            raise ValueError(f"Unknown log level: {log_level}")
        self.log_file = Path(log_file)
        self.log_format = log_format
        self.include_timestamps = include_timestamps
        self.log_level = log_level
        self._lock = threading.Lock()
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        self.log_file.touch(exist_ok=True)

    @classmethod
    def from_config(cls, logging_config: Dict[str, Any]) -> Optional["SessionLogger"]:
        """Create a logger from the `logging` config section, or None if disabled."""
        if not logging_config.get("enabled", True):
            return None
        return cls(
            log_file=logging_config.get("file", "nearwave_session.log"),
            log_format=logging_config.get("format", "text"),
            include_timestamps=logging_config.get("timestamps", True),
            log_level=logging_config.get("level", "info"),
        )

    def _get_timestamp(self) -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def _format_text(
        self,
        level: str,
        event: str,
        session_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        parts = []
        if self.include_timestamps:
            parts.append(f"[{self._get_timestamp()}]")
        parts.append(f"[{level.upper()}]")
        parts.append(f"[{session_id[:8]}]")
        parts.append(f"{event}:")
        parts.append(content)
        if metadata:
            parts.append(f"| {json.dumps(metadata, sort_keys=True)}")
        return " ".join(parts)

    def _format_json(
        self,
        level: str,
        event: str,
        session_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        entry = {
            "level": level,
            "event": event,
            "session_id": session_id,
            "content": content,
        }
        if self.include_timestamps:
            entry["timestamp"] = self._get_timestamp()
        if metadata:
            entry["metadata"] = metadata
        return json.dumps(entry)

    def log(
        self,
        event: str,
        session_id: str,
        content: str,
        level: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an event.

        Args:
            event: Event type (e.g., "message_sent", "message_received")
            session_id: ID of the modem session
            content: Content of the log entry
            level: Log level
            metadata: Optional additional metadata
        """
        if LEVELS.index(level) < LEVELS.index(self.log_level):
            return

        if self.log_format == "json":
            entry = self._format_json(level, event, session_id, content, metadata)
        else:
            entry = self._format_text(level, event, session_id, content, metadata)

        with self._lock:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(entry + "\n")

    def log_message_sent(
        self,
        session_id: str,
        content: str,
        transmission_info: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log("message_sent", session_id, content, "info", transmission_info)

    def log_message_received(self, session_id: str, content: str) -> None:
        self.log("message_received", session_id, content, "info")

    def log_transmission_start(self, session_id: str, bit_count: int) -> None:
        self.log(
            "transmission_start",
            session_id,
            f"Scheduling {bit_count} symbols",
            "debug",
        )

    def log_transmission_complete(self, session_id: str, duration_ms: float) -> None:
        self.log(
            "transmission_complete",
            session_id,
            f"Transmission completed in {duration_ms:.1f}ms",
            "debug",
        )

    def log_listening_start(self, session_id: str) -> None:
        self.log("listening_start", session_id, "Listening for announcements", "info")

    def log_listening_stop(self, session_id: str) -> None:
        self.log("listening_stop", session_id, "Stopped listening", "info")

    def log_error(self, session_id: str, error: str) -> None:
        self.log("error", session_id, error, "error")

    def get_history(self) -> List[str]:
        """Read and return all log entries."""
        if not self.log_file.exists():
            return []
        with open(self.log_file, "r", encoding="utf-8") as f:
            return f.readlines()

    def clear_log(self) -> None:
        with self._lock:
            self.log_file.write_text("")
