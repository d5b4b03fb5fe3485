from __future__ import annotations

import logging

import pytest

from vloggo.core import notifier as notifier_mod
from vloggo.core.formatting import FormatContext, Formatter
from vloggo.core.notifier import Notifier, render_alert


class MsClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _notifier(config, runner, transport_factory, clock=None) -> Notifier:
    return Notifier(
        config,
        Formatter(FormatContext(client=config.client)),
        runner=runner,
        transport_factory=transport_factory,
        clock=clock or MsClock(),
    )


def test_not_ready_without_smtp(make_config, runner, transport_factory, transports, caplog) -> None:
    caplog.set_level(logging.INFO, logger="vloggo")
    n = _notifier(make_config(), runner, transport_factory)

    assert n.ready is False
    assert transports == []
    assert "notification service disabled" in caplog.text


def test_not_ready_when_notify_disabled(make_config, smtp, runner, transport_factory) -> None:
    n = _notifier(make_config(smtp=smtp, notify=False), runner, transport_factory)
    assert n.ready is False


def test_transport_construction_failure_is_permanent(make_config, smtp, runner, caplog) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("bad tls setup")

    n = _notifier(make_config(smtp=smtp, notify=True), runner, broken)

    assert n.ready is False
    assert "error initializing notification service" in caplog.text
    assert n.send_alert("MyApp", "X", "y") is False
    assert runner.jobs == []
    assert "email service not initialized" in caplog.text


@pytest.mark.asyncio
async def test_throttle_allows_one_send_per_window(
    make_config, smtp, runner, transport_factory, transports
) -> None:
    clock = MsClock()
    n = _notifier(make_config(smtp=smtp, notify=True, throttle=30_000), runner, transport_factory, clock)

    assert n.send_alert("MyApp", "DB_DOWN", "first") is True
    clock.now += 10_000
    assert n.send_alert("MyApp", "DB_DOWN", "second") is False
    await runner.run_all()

    assert transports[0].attempts == 1

    clock.now += 30_000
    assert n.send_alert("MyApp", "DB_DOWN", "third") is True
    await runner.run_all()

    assert transports[0].attempts == 2
    assert [m["Subject"] for m in transports[0].sent] == [
        "[MyApp] Error Alert - DB_DOWN",
        "[MyApp] Error Alert - DB_DOWN",
    ]


@pytest.mark.asyncio
async def test_failed_send_still_counts_against_window(
    make_config, smtp, runner, transport_factory, transports, caplog
) -> None:
    clock = MsClock()
    n = _notifier(make_config(smtp=smtp, notify=True), runner, transport_factory, clock)
    transports[0].fail = True

    assert n.send_alert("MyApp", "DB_DOWN", "boom") is True
    await runner.run_all()
    last = n.last_sent_ms

    clock.now += 1
    assert n.send_alert("MyApp", "DB_DOWN", "again") is False

    assert last == 1_000_000
    assert transports[0].attempts == 1
    assert "failed to send error message > relay refused" in caplog.text


def test_window_claimed_before_delivery(make_config, smtp, runner, transport_factory) -> None:
    n = _notifier(make_config(smtp=smtp, notify=True), runner, transport_factory)

    # Nothing delivered yet, but the second call is already throttled.
    assert n.send_alert("MyApp", "A", "one") is True
    assert n.send_alert("MyApp", "A", "two") is False
    assert runner.labels == ["alert"]


def test_throttled_calls_logged_in_debug_mode(
    make_config, smtp, runner, transport_factory, caplog
) -> None:
    caplog.set_level(logging.DEBUG, logger="vloggo")
    n = _notifier(make_config(smtp=smtp, notify=True, debug=True), runner, transport_factory)

    n.send_alert("MyApp", "A", "one")
    n.send_alert("MyApp", "A", "two")

    assert "email throttled" in caplog.text


def test_render_alert_contents(smtp) -> None:
    msg = render_alert(
        smtp,
        client="MyApp",
        code="DB_DOWN",
        message="<script>alert(1)</script>",
        caller="worker.py:42",
        timestamp="15/01/2025 10:30:00",
    )

    assert msg["Subject"] == "[MyApp] Error Alert - DB_DOWN"
    assert msg["To"] == "ops@example.com, dev@example.com"
    (sender,) = msg["From"].addresses
    assert (sender.display_name, sender.addr_spec) == ("MyApp", "alerts@example.com")

    html_part = msg.get_body(preferencelist=("html",)).get_content()
    assert "<strong>Caller:</strong> worker.py:42" in html_part
    assert "&lt;script&gt;" in html_part
    assert "<script>" not in html_part
    assert "15/01/2025 10:30:00" in html_part


def test_close_releases_transport(make_config, smtp, runner, transport_factory, transports) -> None:
    n = _notifier(make_config(smtp=smtp, notify=True), runner, transport_factory)
    n.close()
    assert transports[0].closed is True


@pytest.mark.asyncio
async def test_line_breaks_in_code_are_folded_into_subject(
    make_config, smtp, runner, transport_factory, transports
) -> None:
    n = _notifier(make_config(smtp=smtp, notify=True), runner, transport_factory)

    assert n.send_alert("MyApp", "BAD\r\nCODE", "x") is True
    assert n.send_alert("MyApp", "GOOD", "y") is False
    await runner.run_all()

    assert transports[0].attempts == 1
    assert transports[0].sent[0]["Subject"] == "[MyApp] Error Alert - BAD CODE"


@pytest.mark.asyncio
async def test_unbuildable_alert_leaves_window_open(
    make_config, smtp, runner, transport_factory, transports, monkeypatch, caplog
) -> None:
    n = _notifier(make_config(smtp=smtp, notify=True), runner, transport_factory)
    real_render = notifier_mod.render_alert

    def render(smtp, **fields):
        if fields["code"] == "BROKEN":
            raise ValueError("bad header")
        return real_render(smtp, **fields)

    monkeypatch.setattr(notifier_mod, "render_alert", render)

    assert n.send_alert("MyApp", "BROKEN", "x") is False
    assert n.last_sent_ms == 0
    assert n.send_alert("MyApp", "GOOD", "y") is True
    await runner.run_all()

    assert transports[0].attempts == 1
    assert transports[0].sent[0]["Subject"] == "[MyApp] Error Alert - GOOD"
    assert "failed to build error message > bad header" in caplog.text
