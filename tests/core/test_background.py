from __future__ import annotations

import asyncio
import threading

import pytest

from vloggo.core.background import BackgroundRunner


def test_runs_on_worker_thread_without_loop() -> None:
    runner = BackgroundRunner()
    seen: list[str] = []

    async def job() -> None:
        await asyncio.sleep(0)
        seen.append(threading.current_thread().name)

    runner.submit(job, label="job")
    assert runner.join(timeout=5) is True
    runner.shutdown()

    assert len(seen) == 1
    assert seen[0].startswith("vloggo")
    assert runner.pending == 0


def test_failures_are_logged_not_raised(caplog) -> None:
    runner = BackgroundRunner()

    async def job() -> None:
        raise RuntimeError("disk gone")

    runner.submit(job, label="cleanup")
    runner.join(timeout=5)
    runner.shutdown()

    assert "Background job cleanup failed: disk gone" in caplog.text


@pytest.mark.asyncio
async def test_uses_running_loop_when_available() -> None:
    runner = BackgroundRunner()
    done = asyncio.Event()

    async def job() -> None:
        done.set()

    runner.submit(job, label="job")
    assert runner.pending == 1

    await runner.drain()
    assert done.is_set()
    assert runner.pending == 0


def test_rejects_zero_workers() -> None:
    with pytest.raises(ValueError, match="max_workers"):
        BackgroundRunner(max_workers=0)
