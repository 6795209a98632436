# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Observability Module

Components:
- TraceLogger: Structured per-run trace sink (text or JSON)
- LogEntry: One structured trace record
- Verbosity: Logging levels
"""

from .logger import (
    Verbosity,
    LogEntry,
    TraceLogger,
)

__all__ = [
    "Verbosity",
    "LogEntry",
    "TraceLogger",
]
