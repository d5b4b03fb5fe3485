"""Throttled e-mail alerts for fatal log entries.

At most one delivery attempt is made per throttle window. The window is
claimed before delivery starts, so a slow or failing send still blocks
further alerts until it expires. Delivery runs in the background and its
failures are only logged.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
import ssl
import threading
import time
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

from ..config import SmtpConfig, VLoggoConfig
from .background import BackgroundRunner
from .formatting import Formatter
from .models import UNKNOWN_CALLER

logger = logging.getLogger(__name__)

DEFAULT_SMTP_TIMEOUT = 30.0


class Transport(Protocol):
    def send(self, message: EmailMessage) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[..., Transport]


def _now_ms() -> int:
    return int(time.time() * 1000)


class SmtpTransport:
    """A single reused SMTP connection, opened on first send."""

    def __init__(
        self,
        smtp: SmtpConfig,
        *,
        debug: bool = False,
        timeout: float = DEFAULT_SMTP_TIMEOUT,
    ) -> None:
        self._smtp = smtp
        self._debug = debug
        self._timeout = timeout
        self._context = ssl.create_default_context()
        self._conn: smtplib.SMTP | None = None
        self._lock = threading.Lock()

    def _connect(self) -> smtplib.SMTP:
        cfg = self._smtp
        conn: smtplib.SMTP
        if cfg.secure:
            conn = smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=self._timeout, context=self._context)
        else:
            conn = smtplib.SMTP(cfg.host, cfg.port, timeout=self._timeout)
        if self._debug:
            conn.set_debuglevel(1)
        try:
            if not cfg.secure:
                conn.ehlo()
                if conn.has_extn("starttls"):
                    conn.starttls(context=self._context)
                    conn.ehlo()
            conn.login(cfg.username, cfg.password)
        except (smtplib.SMTPException, OSError):
            conn.close()
            raise
        return conn

    def send(self, message: EmailMessage) -> None:
        with self._lock:
            if self._conn is None:
                self._conn = self._connect()
            try:
                self._conn.send_message(message)
            except smtplib.SMTPServerDisconnected:
                # Pooled connection went stale; one fresh attempt.
                self._conn = self._connect()
                self._conn.send_message(message)

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.quit()
        except (smtplib.SMTPException, OSError) as exc:
            logger.debug("SMTP quit failed: %s", exc)
            conn.close()


def _header(value: str) -> str:
    """Fold CR/LF out of a header value."""
    return " ".join(value.splitlines())


def render_alert(
    smtp: SmtpConfig,
    *,
    client: str,
    code: str,
    message: str,
    caller: str,
    timestamp: str,
) -> EmailMessage:
    """Build the alert e-mail for one fatal entry."""
    msg = EmailMessage()
    msg["From"] = f'"{_header(client)}" <{smtp.from_address}>'
    msg["To"] = ", ".join(smtp.to)
    msg["Subject"] = _header(f"[{client}] Error Alert - {code}")

    msg.set_content(
        "Error Report\n\n"
        f"Client: {client}\n"
        f"Error Code: {code}\n"
        f"Caller: {caller}\n"
        f"Error Message: {message}\n"
        f"Timestamp: {timestamp}\n"
    )
    e = html.escape
    msg.add_alternative(
        "<h2>Error Report</h2>\n"
        f"<p><strong>Client:</strong> {e(client)}</p>\n"
        f"<p><strong>Error Code:</strong> {e(code)}</p>\n"
        f"<p><strong>Caller:</strong> {e(caller)}</p>\n"
        f"<p><strong>Error Message:</strong> {e(message)}</p>\n"
        f"<p><strong>Timestamp:</strong> {e(timestamp)}</p>\n"
        "<hr>\n",
        subtype="html",
    )
    return msg


class Notifier:
    """Sends fatal-error alerts, at most one per throttle window."""

    def __init__(
        self,
        config: VLoggoConfig,
        formatter: Formatter,
        *,
        runner: BackgroundRunner | None = None,
        transport_factory: TransportFactory = SmtpTransport,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._format = formatter
        self._runner = runner or BackgroundRunner()
        self._clock = clock
        self._lock = threading.Lock()
        self._transport: Transport | None = None
        self._ready = False
        self.last_sent_ms = 0

        client = config.client
        if config.smtp is None or not config.notify:
            logger.info("[%s] notification service disabled > missing configuration", client)
            return

        try:
            self._transport = transport_factory(config.smtp, debug=config.debug)
        except Exception as exc:
            logger.error("[%s] error initializing notification service > %s", client, exc)
            self._transport = None
            return

        self._ready = True
        if config.debug:
            logger.debug("[%s] notification service initialized successfully", client)

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def throttle_ms(self) -> int:
        return self._config.throttle

    def _claim_window(self) -> bool:
        """Take the current throttle window if it is open."""
        with self._lock:
            now = self._clock()
            elapsed = now - self.last_sent_ms
            if self.last_sent_ms and elapsed < self._config.throttle:
                if self._config.debug:
                    logger.debug(
                        "[%s] email throttled > %s ms remaining",
                        self._config.client,
                        self._config.throttle - elapsed,
                    )
                return False
            self.last_sent_ms = now
            return True

    def send_alert(
        self,
        client: str,
        code: str,
        message: str,
        *,
        caller: str = UNKNOWN_CALLER,
        when: datetime | None = None,
    ) -> bool:
        """Dispatch one alert unless throttled. Returns whether it was dispatched."""
        smtp = self._config.smtp
        if not self._ready or self._transport is None or smtp is None:
            logger.error(
                "[%s] failed to send error message > email service not initialized",
                self._config.client,
            )
            return False

        # Rendered before the window is claimed: a message that cannot be
        # built must not use up the window.
        try:
            email = render_alert(
                smtp,
                client=client,
                code=code,
                message=message,
                caller=caller,
                timestamp=self._format.date(when),
            )
        except ValueError as exc:
            logger.error("[%s] failed to build error message > %s", self._config.client, exc)
            return False

        if not self._claim_window():
            return False

        transport = self._transport

        async def deliver() -> None:
            try:
                await asyncio.to_thread(transport.send, email)
            except (smtplib.SMTPException, OSError, ValueError) as exc:
                logger.error(
                    "[%s] failed to send error message > %s", self._config.client, exc
                )
                return
            if self._config.debug:
                logger.debug(
                    "[%s] error email sent successfully to %s", self._config.client, email["To"]
                )

        self._runner.submit(deliver, label="alert")
        return True

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
