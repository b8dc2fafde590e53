"""
Audit Logger module for the gateway sync system.

Every component receives an optional AuditLogger and reports through it.
Entries are kept in memory for the run and written to a stream as JSON
lines, as text lines, or both. Credentials never reach the stream: values
under sensitive keys are replaced before the entry is created.
"""

import json
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TextIO

from .enums import LogLevel


MASK_VALUE = "***MASKED***"

# Matched as substrings of the lowercased key
SENSITIVE_KEY_PATTERN = re.compile(
    r"token|secret|password|api_key|auth|credential|private_key|webhook_url"
)

OUTPUT_FORMATS = ("json", "text", "both")


def is_sensitive_key(key: object) -> bool:
    return bool(SENSITIVE_KEY_PATTERN.search(str(key).lower()))


def mask_sensitive(value: Any) -> Any:
    """Return a copy of value with every sensitive dict entry masked, at any depth."""
    if isinstance(value, dict):
        return {
            key: MASK_VALUE if is_sensitive_key(key) else mask_sensitive(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(item) for item in value]
    return value


@dataclass
class LogEntry:
    """One emitted log record."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_text(self) -> str:
        # [timestamp] LEVEL [component] message {data}
        line = f"[{self.timestamp}] {self.level.value.upper()} [{self.component}] {self.message}"
        if self.data:
            line += " " + json.dumps(self.data, ensure_ascii=False, default=str)
        return line


class AuditLogger:
    """
    Structured logger shared by the components of a sync run.

    Entries below min_level are discarded before formatting.
    """

    MASK_VALUE = MASK_VALUE

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        min_level: LogLevel = LogLevel.INFO,
    ):
        """
        Initialize the audit logger.

        Args:
            output_format: 'json', 'text', or 'both' (JSON line first)
            output_stream: Stream written to, sys.stderr by default
            min_level: Entries below this level are discarded
        """
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output_format: {output_format}")

        renderers: list[Callable[[LogEntry], str]] = []
        if output_format in ("json", "both"):
            renderers.append(LogEntry.to_json)
        if output_format in ("text", "both"):
            renderers.append(LogEntry.to_text)

        self._output_format = output_format
        self._renderers = renderers
        self._stream = output_stream or sys.stderr
        self._min_level = min_level
        self._entries: list[LogEntry] = []

    @classmethod
    def from_level_name(
        cls,
        level: str,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
    ) -> "AuditLogger":
        """Build a logger from a level name such as 'debug' or 'warn'; unknown names mean info."""
        try:
            min_level = LogLevel(level.lower())
        except ValueError:
            min_level = LogLevel.INFO
        return cls(output_format=output_format, output_stream=output_stream, min_level=min_level)

    @property
    def output_format(self) -> str:
        return self._output_format

    @property
    def min_level(self) -> LogLevel:
        return self._min_level

    @property
    def entries(self) -> list[LogEntry]:
        """Entries emitted so far, oldest first."""
        return list(self._entries)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level.severity >= self._min_level.severity

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Record and write one entry.

        Returns:
            The LogEntry, or None if level is below min_level
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=mask_sensitive(data or {}),
        )
        self._entries.append(entry)

        for render in self._renderers:
            self._stream.write(render(entry) + "\n")
        self._stream.flush()

        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[BaseException] = None,
        request_url: Optional[str] = None,
        response_status_code: Optional[int] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an ERROR entry carrying the failure context.

        Structured errors contribute their details dict; request_url and
        response_status_code are added when known.
        """
        data = dict(additional_data or {})

        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
            details = getattr(error, "details", None)
            if isinstance(details, dict) and details:
                data["error_details"] = details

        context = {"request_url": request_url, "response_status_code": response_status_code}
        data.update({key: value for key, value in context.items() if value is not None})

        return self.log(LogLevel.ERROR, component, message, data)

    def clear_entries(self) -> None:
        self._entries.clear()
