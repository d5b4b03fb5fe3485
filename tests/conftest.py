from __future__ import annotations

import smtplib
from collections.abc import Callable
from datetime import datetime, timedelta
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import pytest

from vloggo.config import FileCounts, SmtpConfig, StreamDirs, VLoggoConfig


class FakeClock:
    """Settable wall clock for rollover tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingRunner:
    """Background runner stand-in that only records submissions."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, Callable[[], Any]]] = []

    def submit(self, factory: Callable[[], Any], *, label: str) -> None:
        self.jobs.append((label, factory))

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self.jobs]

    async def run_all(self) -> list[Any]:
        jobs, self.jobs = self.jobs, []
        return [await factory() for _, factory in jobs]

    def join(self, timeout: float | None = None) -> bool:
        return True

    def shutdown(self, *, wait: bool = True) -> None:
        pass


class FakeTransport:
    def __init__(self, smtp: SmtpConfig, *, debug: bool = False) -> None:
        self.smtp = smtp
        self.debug = debug
        self.sent: list[EmailMessage] = []
        self.attempts = 0
        self.fail = False
        self.closed = False

    def send(self, message: EmailMessage) -> None:
        self.attempts += 1
        if self.fail:
            raise smtplib.SMTPException("relay refused")
        self.sent.append(message)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 15, 10, 30, 0))


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def smtp() -> SmtpConfig:
    return SmtpConfig(
        host="smtp.example.com",
        port=465,
        username="alerts@example.com",
        password="secret",
        **{"from": "alerts@example.com"},
        to=["ops@example.com", "dev@example.com"],
    )


@pytest.fixture
def transports() -> list[FakeTransport]:
    return []


@pytest.fixture
def transport_factory(transports: list[FakeTransport]) -> Callable[..., FakeTransport]:
    def _make(smtp: SmtpConfig, *, debug: bool = False) -> FakeTransport:
        t = FakeTransport(smtp, debug=debug)
        transports.append(t)
        return t

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., VLoggoConfig]:
    def _make(**overrides: Any) -> VLoggoConfig:
        params: dict[str, Any] = {
            "client": "MyApp",
            "console": False,
            "directory": StreamDirs(txt=tmp_path / "logs", json=tmp_path / "json"),
            "filecount": FileCounts(txt=3, json=3),
        }
        params.update(overrides)
        return VLoggoConfig(**params)

    return _make
