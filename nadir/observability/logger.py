# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Structured Trace Logger for Nadir

Machines write one trace line per executed instruction (or per visited node)
to the logger configured for that run. Loggers are plain instances passed in
through MachineConfig; nothing is shared process-wide.

Example:
    from nadir.observability import TraceLogger, Verbosity

    trace = TraceLogger(verbosity=Verbosity.DEBUG)
    config = MachineConfig(logger=trace)
    TapeMachine(program, locations, config).run_all()
    print(trace.lines)
"""

import json
import os
import sys
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import IntEnum
from typing import Callable, Optional, TextIO


class Verbosity(IntEnum):
    """
    Logging verbosity levels.

    Uses IntEnum for numeric comparison (e.g., if verbosity >= INFO).
    """

    SILENT = 0
    ERROR = 1
    WARNING = 2
    INFO = 3
    DEBUG = 4


@dataclass
class LogEntry:
    """
    Structured log entry.

    Attributes:
        level: Log level (ERROR, WARNING, INFO, DEBUG)
        message: Log message
        timestamp: ISO format timestamp
        component: Source component (compiler, tape, direct, transfer)
        operation: Optional operation name
        node: Optional node name
        device: Optional device name
        extra: Additional context fields
    """

    level: str
    message: str
    timestamp: str
    component: str = "nadir"
    operation: Optional[str] = None
    node: Optional[str] = None
    device: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_json(self) -> str:
        """Convert to JSON string."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if not data.get("extra"):
            data.pop("extra", None)
        return json.dumps(data, default=str)

    def to_text(self) -> str:
        """Convert to human-readable text format."""
        parts = [
            f"[{self.level}]",
            f"[{self.component}]",
        ]
        if self.device is not None:
            parts.append(f"[{self.device}]")
        parts.append(self.message)
        return " ".join(parts)


class TraceLogger:
    """
    Structured logger used as a per-run trace sink.

    Lines are written to ``output`` (if any), kept in ``lines`` and passed to
    registered handlers.
    """

    def __init__(
        self,
        verbosity: int = Verbosity.INFO,
        output: Optional[TextIO] = None,
        json_format: bool = False,
    ):
        self._verbosity = Verbosity(verbosity)
        self._output = output
        self._json_format = json_format
        self._handlers: list[Callable[[LogEntry], None]] = []
        self.lines: list[str] = []

        env_verbosity = os.environ.get("NADIR_VERBOSITY")
        if env_verbosity is not None:
            try:
                self._verbosity = Verbosity(int(env_verbosity))
            except ValueError:
                pass

    @classmethod
    def to_stderr(cls, verbosity: int = Verbosity.DEBUG) -> "TraceLogger":
        return cls(verbosity=verbosity, output=sys.stderr)

    def set_verbosity(self, level: int) -> None:
        """
        Set verbosity level.

        Args:
            level: Verbosity level (0-4 or Verbosity enum)
        """
        if isinstance(level, Verbosity):
            self._verbosity = level
        else:
            self._verbosity = Verbosity(max(0, min(4, level)))

    def get_verbosity(self) -> Verbosity:
        return self._verbosity

    def set_json_format(self, enabled: bool) -> None:
        self._json_format = enabled

    def set_output(self, output: Optional[TextIO]) -> None:
        self._output = output

    def add_handler(self, handler: Callable[[LogEntry], None]) -> None:
        """Add a custom log handler."""
        self._handlers.append(handler)

    def _emit(self, entry: LogEntry) -> None:
        line = entry.to_json() if self._json_format else entry.to_text()
        self.lines.append(line)

        if self._output is not None:
            self._output.write(line + "\n")
            self._output.flush()

        for handler in self._handlers:
            handler(entry)

    def _log(self, level: Verbosity, message: str, context: dict) -> None:
        if self._verbosity < level:
            return
        self._emit(
            LogEntry(
                level=level.name,
                message=message,
                timestamp=datetime.now().isoformat(),
                component=context.pop("component", "nadir"),
                operation=context.pop("operation", None),
                node=context.pop("node", None),
                device=context.pop("device", None),
                extra=context,
            )
        )

    def debug(self, message: str, **context) -> None:
        self._log(Verbosity.DEBUG, message, context)

    def info(self, message: str, **context) -> None:
        self._log(Verbosity.INFO, message, context)

    def warning(self, message: str, **context) -> None:
        self._log(Verbosity.WARNING, message, context)

    def error(self, message: str, **context) -> None:
        self._log(Verbosity.ERROR, message, context)

    def clear(self) -> None:
        self.lines.clear()

    def __repr__(self) -> str:
        return f"TraceLogger(verbosity={self._verbosity.name}, lines={len(self.lines)})"
