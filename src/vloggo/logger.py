"""Public logging facade.

A ``VLoggo`` instance owns one retention engine and one notifier. Every log
call appends to today's file(s) synchronously; FATAL entries additionally
trigger a throttled e-mail alert that is delivered in the background.
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

from .config import VLoggoConfig, clone_config, resolve_config, update_config
from .core.background import BackgroundRunner
from .core.caller import resolve_caller
from .core.formatting import FormatContext, Formatter
from .core.models import LogLevel, LogRecord
from .core.notifier import Notifier, SmtpTransport, TransportFactory
from .core.retention import RetentionEngine

logger = logging.getLogger(__name__)

_FACADE_FILES = (__file__,)
_STDERR_LEVELS = frozenset({LogLevel.WARN, LogLevel.ERROR, LogLevel.FATAL})


class VLoggo:
    """Structured logger writing daily files, console output and fatal alerts."""

    def __init__(
        self,
        config: VLoggoConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        runner: BackgroundRunner | None = None,
        transport_factory: TransportFactory = SmtpTransport,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        **options: Any,
    ) -> None:
        if config is not None and options:
            raise ValueError("pass either a VLoggoConfig or keyword options, not both")
        self._config = config if config is not None else resolve_config(options)
        self._clock = clock or datetime.now
        self._runner = runner or BackgroundRunner()
        self._transport_factory = transport_factory
        self._stdout = stdout
        self._stderr = stderr
        self._lock = threading.RLock()

        self._format = Formatter(FormatContext(client=self._config.client))
        self._files = RetentionEngine(
            self._config, self._format, runner=self._runner, clock=self._clock
        )
        self._notifier = self._build_notifier()

        self._files.initialize()

    def _build_notifier(self) -> Notifier:
        return Notifier(
            self._config,
            self._format,
            runner=self._runner,
            transport_factory=self._transport_factory,
        )

    @property
    def config(self) -> VLoggoConfig:
        return self._config

    @property
    def initialized(self) -> bool:
        return self._files.initialized

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def files(self) -> RetentionEngine:
        return self._files

    def update(self, **changes: Any) -> VLoggoConfig:
        """Replace the config with ``changes`` merged in and return it."""
        with self._lock:
            old = self._config
            new = update_config(old, **changes)
            self._config = new
            if new.client != old.client:
                self._format = Formatter(FormatContext(client=new.client))
                self._files = RetentionEngine(
                    new, self._format, runner=self._runner, clock=self._clock
                )
                self._files.initialize()
            else:
                self._files.reconfigure(new)

            if (new.smtp, new.notify, new.throttle, new.debug, new.client) != (
                old.smtp,
                old.notify,
                old.throttle,
                old.debug,
                old.client,
            ):
                last_sent_ms = self._notifier.last_sent_ms
                self._notifier.close()
                self._notifier = self._build_notifier()
                # The throttle window survives a rebuild.
                self._notifier.last_sent_ms = last_sent_ms
            return new

    def clone(self, **overrides: Any) -> VLoggo:
        """A new, independent logger built from this one's config."""
        return VLoggo(
            clone_config(self._config, **overrides),
            clock=self._clock,
            transport_factory=self._transport_factory,
            stdout=self._stdout,
            stderr=self._stderr,
        )

    def _console(self, level: LogLevel, line: str) -> None:
        if level in _STDERR_LEVELS:
            stream = self._stderr or sys.stderr
        else:
            stream = self._stdout or sys.stdout
        try:
            print(line.strip(), file=stream)
        except (OSError, ValueError) as exc:
            logger.error("[%s] failed to write to console > %s", self._config.client, exc)

    def log(self, level: LogLevel | str, code: str, message: str) -> None:
        """Write one entry; FATAL entries also raise an alert."""
        level = LogLevel(level.upper() if isinstance(level, str) else level)
        cfg = self._config

        if not self._files.initialized:
            logger.error("[%s] VLoggo not initialized > skipping log", cfg.client)
            return

        with self._lock:
            self._files.verify()
            record = LogRecord(
                level=level,
                code=code,
                message=message,
                timestamp=self._clock(),
                caller=resolve_caller(_FACADE_FILES),
            )
            line = self._format.line(record)
            json_line = self._format.json_line(record) if cfg.json else None
            self._files.write(line, json_line)

        if cfg.console:
            self._console(level, line)

        if level is LogLevel.FATAL:
            self._alert(record)

    def _alert(self, record: LogRecord) -> None:
        cfg = self._config
        if not self._notifier.ready:
            if cfg.debug:
                logger.debug("[%s] notification service not ready", cfg.client)
            return
        try:
            self._notifier.send_alert(
                cfg.client,
                record.code,
                record.message,
                caller=record.caller,
                when=record.timestamp,
            )
        except Exception as exc:
            logger.error("[%s] failed to send error message > %s", cfg.client, exc)

    def info(self, code: str, message: str) -> None:
        self.log(LogLevel.INFO, code, message)

    def warn(self, code: str, message: str) -> None:
        self.log(LogLevel.WARN, code, message)

    def debug(self, code: str, message: str) -> None:
        self.log(LogLevel.DEBUG, code, message)

    def error(self, code: str, message: str) -> None:
        self.log(LogLevel.ERROR, code, message)

    def fatal(self, code: str, message: str) -> None:
        """Log at FATAL and e-mail an alert (throttled)."""
        self.log(LogLevel.FATAL, code, message)

    async def cleanup(self) -> list[Path]:
        """Run a retention pass now and return the removed files."""
        return await self._files.rotate()

    def close(self, timeout: float | None = None) -> None:
        """Wait for background work, then release the SMTP connection."""
        self._runner.join(timeout)
        self._runner.shutdown(wait=timeout is None)
        self._notifier.close()

    def __enter__(self) -> VLoggo:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
