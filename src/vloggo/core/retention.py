"""Daily log files: opening, appending, day rollover and retention.

Appends are synchronous so a line is on disk (or its failure logged)
before the log call returns. Pruning old files is asynchronous and is
dispatched on a background runner after each rollover.
"""

from __future__ import annotations

import asyncio
import logging
import stat
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path

import aiofiles.os

from ..config import VLoggoConfig
from .background import BackgroundRunner
from .formatting import Formatter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class Stream(str, Enum):
    TEXT = "txt"
    JSON = "json"


@dataclass(frozen=True, slots=True)
class StreamSpec:
    """Where one stream lives and how many of its files are kept."""

    stream: Stream
    directory: Path
    suffix: str
    keep: int


@dataclass(slots=True)
class RetentionState:
    text_path: Path | None = None
    json_path: Path | None = None
    current_date: date | None = None
    initialized: bool = False


@dataclass(frozen=True, slots=True)
class _FileInfo:
    path: Path
    mtime: float


def _append(path: Path, data: str) -> None:
    # Lone surrogates (undecodable bytes from os/argv) are escaped, not raised.
    with path.open("a", encoding="utf-8", errors="backslashreplace") as f:
        f.write(data)


class RetentionEngine:
    """Owns the active file of each stream for one logger instance."""

    def __init__(
        self,
        config: VLoggoConfig,
        formatter: Formatter,
        *,
        runner: BackgroundRunner | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._format = formatter
        self._runner = runner or BackgroundRunner()
        self._clock = clock or datetime.now
        self._state = RetentionState()
        self._lock = threading.RLock()

    @property
    def config(self) -> VLoggoConfig:
        return self._config

    @property
    def state(self) -> RetentionState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state.initialized

    @property
    def text_path(self) -> Path | None:
        return self._state.text_path

    @property
    def json_path(self) -> Path | None:
        return self._state.json_path

    def streams(self) -> list[StreamSpec]:
        """Enabled streams under the current config."""
        cfg = self._config
        out = [StreamSpec(Stream.TEXT, cfg.directory.txt, ".txt", cfg.filecount.txt)]
        if cfg.json:
            out.append(StreamSpec(Stream.JSON, cfg.directory.json, ".jsonl", cfg.filecount.json))
        return out

    def reconfigure(self, config: VLoggoConfig) -> None:
        """Swap in a new config; the next verify() reopens files under it."""
        with self._lock:
            self._config = config
            self._state.current_date = None

    def _open_day(self, now: datetime) -> tuple[Path, Path | None]:
        """Create directories and write banners for ``now``'s files.

        Raises OSError on any failure; state is not touched here.
        """
        cfg = self._config
        day = now.date()

        # Directories first, so a failure leaves no banner behind to repeat on retry.
        cfg.directory.txt.mkdir(parents=True, exist_ok=True)
        text_path = (cfg.directory.txt / self._format.filename(day)).resolve()

        json_path: Path | None = None
        if cfg.json:
            cfg.directory.json.mkdir(parents=True, exist_ok=True)
            json_path = (cfg.directory.json / self._format.json_filename(day)).resolve()

        _append(text_path, self._format.separator(now))
        if json_path is not None:
            _append(json_path, self._format.json_separator(now))

        return text_path, json_path

    def initialize(self) -> bool:
        """Open today's files once. Returns whether the engine is ready."""
        with self._lock:
            if self._state.initialized:
                return True

            now = self._clock()
            try:
                text_path, json_path = self._open_day(now)
            except OSError as exc:
                logger.error("[%s] error initializing vloggo > %s", self._config.client, exc)
                return False

            self._state.text_path = text_path
            self._state.json_path = json_path
            self._state.current_date = now.date()
            self._state.initialized = True
            return True

    def verify(self) -> bool:
        """Roll over to a new day's files when the date changed.

        Returns True when a rollover happened and cleanup was dispatched.
        """
        with self._lock:
            now = self._clock()
            if now.date() == self._state.current_date:
                return False

            try:
                text_path, json_path = self._open_day(now)
            except OSError as exc:
                logger.error(
                    "[%s] error verifying vloggo rotation > %s", self._config.client, exc
                )
                return False

            self._state.text_path = text_path
            self._state.json_path = json_path
            self._state.initialized = True
            self._state.current_date = now.date()

        self._runner.submit(self.rotate, label="rotate")
        return True

    def write(self, text_line: str, json_line: str | None = None) -> None:
        """Append to the active files; each stream fails independently."""
        with self._lock:
            state = self._state
            if not state.initialized or state.text_path is None:
                logger.warning("[%s] file service not initialized", self._config.client)
                return

            try:
                _append(state.text_path, text_line)
            except (OSError, ValueError) as exc:
                logger.error(
                    "[%s] failed to write to log file > %s", self._config.client, exc
                )

            if json_line is None or not self._config.json or state.json_path is None:
                return
            try:
                _append(state.json_path, json_line)
            except (OSError, ValueError) as exc:
                logger.error(
                    "[%s] failed to write to json log file > %s", self._config.client, exc
                )

    async def rotate(self) -> list[Path]:
        """Delete files beyond each stream's cap, oldest first.

        Returns the paths that were removed.
        """
        specs = self.streams()
        results = await asyncio.gather(*(self._prune(spec) for spec in specs))
        return [path for removed in results for path in removed]

    async def _prune(self, spec: StreamSpec) -> list[Path]:
        client = self._config.client
        try:
            files = await self._list_files(spec)
        except OSError as exc:
            logger.error("[%s] %s cleanup failed > %s", client, spec.stream.value, exc)
            return []

        if len(files) <= spec.keep:
            return []

        files.sort(key=lambda f: f.mtime, reverse=True)
        doomed = files[spec.keep :]
        outcomes = await asyncio.gather(*(self._delete(f.path) for f in doomed))
        return [f.path for f, ok in zip(doomed, outcomes) if ok]

    async def _list_files(self, spec: StreamSpec) -> list[_FileInfo]:
        names = await aiofiles.os.listdir(spec.directory)
        out: list[_FileInfo] = []
        for name in names:
            if not name.endswith(spec.suffix):
                continue
            path = spec.directory / name
            st = await aiofiles.os.stat(path)
            if not stat.S_ISREG(st.st_mode):
                continue
            out.append(_FileInfo(path=path, mtime=st.st_mtime))
        return out

    async def _delete(self, path: Path) -> bool:
        try:
            await aiofiles.os.remove(path)
        except OSError as exc:
            logger.error("[%s] error deleting old file %s > %s", self._config.client, path, exc)
            return False
        return True
