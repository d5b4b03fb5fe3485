"""Structured logging to rotating daily files with throttled fatal alerts."""

from __future__ import annotations

from .config import FileCounts, SmtpConfig, StreamDirs, VLoggoConfig, resolve_config
from .core.models import LogLevel, LogRecord
from .logger import VLoggo

__all__ = [
    "FileCounts",
    "LogLevel",
    "LogRecord",
    "SmtpConfig",
    "StreamDirs",
    "VLoggo",
    "VLoggoConfig",
    "resolve_config",
]
