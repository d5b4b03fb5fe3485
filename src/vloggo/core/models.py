"""Core data models for log records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

UNKNOWN_CALLER = "unknown:0"


class LogLevel(str, Enum):
    """Severity levels accepted by the logger."""

    INFO = "INFO"
    WARN = "WARN"
    DEBUG = "DEBUG"
    ERROR = "ERROR"
    FATAL = "FATAL"


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One log call, captured once and rendered to every stream."""

    level: LogLevel
    code: str
    message: str
    timestamp: datetime
    caller: str = UNKNOWN_CALLER


class JsonLogLine(BaseModel):
    """Wire shape of a JSON-lines entry (also used for the INIT banner)."""

    model_config = ConfigDict(frozen=True)

    client: str
    timestamp: str
    level: str
    code: str | None = None
    caller: str | None = None
    message: str
