"""Pure rendering helpers: timestamps, filenames, banners and log lines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime

from .models import JsonLogLine, LogRecord

SEPARATOR_WIDTH = 50


def _escape(text: str) -> str:
    """Escape lone surrogates so the value is valid UTF-8 JSON."""
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def _local(dt: datetime) -> datetime:
    """Aware datetimes are shown in local time; naive ones are taken as local already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone()


@dataclass(frozen=True, slots=True)
class FormatContext:
    """Immutable rendering context shared by every component of one logger."""

    client: str = "VLoggo"


@dataclass(frozen=True, slots=True)
class Formatter:
    context: FormatContext

    @property
    def client(self) -> str:
        return self.context.client

    def date(self, dt: datetime | None = None) -> str:
        """Format as DD/MM/YYYY HH:mm:ss."""
        dt = _local(dt if dt is not None else datetime.now())
        return dt.strftime("%d/%m/%Y %H:%M:%S")

    def iso_date(self, dt: datetime | None = None) -> str:
        """Format as ISO-8601 in UTC with millisecond precision."""
        dt = dt if dt is not None else datetime.now(UTC)
        return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def filename(self, day: date) -> str:
        return f"log-{day:%Y-%m-%d}.txt"

    def json_filename(self, day: date) -> str:
        return f"log-{day:%Y-%m-%d}.jsonl"

    def line(self, record: LogRecord) -> str:
        ts = self.date(record.timestamp)
        return (
            f"[{self.client}] [{ts}] [{record.level.value}] "
            f"[{record.code}] [{record.caller}]: {record.message}\n"
        )

    def json_line(self, record: LogRecord) -> str:
        entry = JsonLogLine(
            client=_escape(self.client),
            timestamp=self.iso_date(record.timestamp),
            level=record.level.value,
            code=_escape(record.code),
            caller=_escape(record.caller),
            message=_escape(record.message),
        )
        return entry.model_dump_json() + "\n"

    def separator(self, dt: datetime | None = None) -> str:
        """Text banner written when a daily file is opened."""
        divider = "\n" + "_" * SEPARATOR_WIDTH + "\n\n"
        return f"{divider}[{self.client}] [{self.date(dt)}] [INIT] : vloggo initialized \n"

    def json_separator(self, dt: datetime | None = None) -> str:
        """JSON banner written when a daily file is opened."""
        entry = JsonLogLine(
            client=_escape(self.client),
            timestamp=self.iso_date(dt),
            level="INIT",
            message="VLoggo initialized successfully",
        )
        return entry.model_dump_json(exclude_none=True) + "\n"
