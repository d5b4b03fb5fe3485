"""Logger configuration.

Options passed by the caller win; SMTP settings fall back to ``SMTP_*``
environment variables. Configs are immutable: updates build a new object.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_CLIENT = "VLoggo"
DEFAULT_FILECOUNT = 31
DEFAULT_THROTTLE_MS = 30_000
SECURE_SMTP_PORT = 465

_SMTP_ENV = {
    "host": "SMTP_HOST",
    "port": "SMTP_PORT",
    "username": "SMTP_USERNAME",
    "password": "SMTP_PASSWORD",
    "from": "SMTP_FROM",
    "to": "SMTP_TO",
}


class SmtpConfig(BaseModel):
    """Outbound mail settings for fatal-error alerts."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str = Field(min_length=1)
    port: int = Field(gt=0, le=65535)
    secure: bool = False
    username: str
    password: str
    from_address: str = Field(alias="from", min_length=1)
    to: tuple[str, ...] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _default_secure(cls, data: Any) -> Any:
        # Implicit TLS only on the SMTPS port unless stated otherwise.
        if isinstance(data, Mapping) and data.get("secure") is None:
            try:
                port = int(data.get("port"))
            except (TypeError, ValueError):
                return data
            return {**data, "secure": port == SECURE_SMTP_PORT}
        return data

    @field_validator("to", mode="before")
    @classmethod
    def _split_recipients(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list | tuple | set | frozenset):
            out: list[str] = []
            for item in value:
                addr = str(item).strip()
                if addr and addr not in out:
                    out.append(addr)
            return tuple(out)
        return value


@dataclass(frozen=True, slots=True)
class StreamDirs:
    txt: Path
    json: Path


@dataclass(frozen=True, slots=True)
class FileCounts:
    txt: int = DEFAULT_FILECOUNT
    json: int = DEFAULT_FILECOUNT


def default_dirs(client: str) -> StreamDirs:
    """Per-client directories under the user's home."""
    home = Path.home()
    return StreamDirs(txt=home / client / "logs", json=home / client / "json")


@dataclass(frozen=True, slots=True)
class VLoggoConfig:
    client: str = DEFAULT_CLIENT
    json: bool = False
    debug: bool = False
    console: bool = True
    directory: StreamDirs = field(default_factory=lambda: default_dirs(DEFAULT_CLIENT))
    filecount: FileCounts = field(default_factory=FileCounts)
    notify: bool = False
    throttle: int = DEFAULT_THROTTLE_MS
    smtp: SmtpConfig | None = None

    def __post_init__(self) -> None:
        if not self.client:
            raise ValueError("client must be a non-empty string")
        if self.throttle < 0:
            raise ValueError("throttle must be >= 0")
        if self.filecount.txt < 1 or self.filecount.json < 1:
            raise ValueError("filecount must be >= 1")


def _coerce_smtp(value: SmtpConfig | Mapping[str, Any]) -> SmtpConfig:
    if isinstance(value, SmtpConfig):
        return value
    try:
        return SmtpConfig.model_validate(dict(value))
    except ValidationError as exc:
        raise ValueError(f"invalid smtp configuration: {exc}") from exc


def _coerce_dirs(value: StreamDirs | Mapping[str, Any], base: StreamDirs) -> StreamDirs:
    if isinstance(value, StreamDirs):
        return value
    return StreamDirs(
        txt=Path(value.get("txt") or base.txt).expanduser(),
        json=Path(value.get("json") or base.json).expanduser(),
    )


def _coerce_counts(value: FileCounts | Mapping[str, Any], base: FileCounts) -> FileCounts:
    if isinstance(value, FileCounts):
        return value
    return FileCounts(
        txt=int(value.get("txt") or base.txt),
        json=int(value.get("json") or base.json),
    )


def smtp_from_env(env: Mapping[str, str], *, client: str) -> SmtpConfig | None:
    """Build SMTP settings from ``SMTP_*`` variables; None when unusable."""
    raw = {key: env.get(name, "") for key, name in _SMTP_ENV.items()}
    missing = [_SMTP_ENV[k] for k, v in raw.items() if not v]
    if missing:
        logger.warning(
            "[%s] notification service disabled > missing configuration (%s)",
            client,
            ", ".join(missing),
        )
        return None

    try:
        port = int(raw["port"])
    except ValueError:
        port = 0
    if port <= 0 or port > 65535:
        logger.error(
            "[%s] notification service disabled > invalid port - %s", client, raw["port"]
        )
        return None

    try:
        return SmtpConfig.model_validate({**raw, "port": port})
    except ValidationError as exc:
        logger.error("[%s] notification service disabled > %s", client, exc)
        return None


def resolve_config(
    options: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> VLoggoConfig:
    """Return a config from explicit options with environment fallbacks applied."""
    opts = dict(options or {})
    env = os.environ if env is None else env

    unknown = set(opts) - {f.name for f in fields(VLoggoConfig)}
    if unknown:
        raise ValueError(f"unknown option(s): {', '.join(sorted(unknown))}")

    client = opts.get("client") or env.get("CLIENT_NAME") or DEFAULT_CLIENT
    base_dirs = default_dirs(client)

    directory = opts.get("directory")
    dirs = _coerce_dirs(directory, base_dirs) if directory is not None else base_dirs

    filecount = opts.get("filecount")
    counts = _coerce_counts(filecount, FileCounts()) if filecount is not None else FileCounts()

    if opts.get("smtp") is not None:
        smtp: SmtpConfig | None = _coerce_smtp(opts["smtp"])
    else:
        smtp = smtp_from_env(env, client=client)

    notify = opts.get("notify")
    if notify is None:
        notify = smtp is not None

    throttle = opts.get("throttle")
    return VLoggoConfig(
        client=client,
        json=bool(opts.get("json", False)),
        debug=bool(opts.get("debug", False)),
        console=bool(opts.get("console", True)),
        directory=dirs,
        filecount=counts,
        notify=bool(notify),
        throttle=DEFAULT_THROTTLE_MS if throttle is None else int(throttle),
        smtp=smtp,
    )


def update_config(config: VLoggoConfig, **changes: Any) -> VLoggoConfig:
    """Return a new config with ``changes`` merged in.

    ``directory`` and ``filecount`` mappings merge per stream; an ``smtp``
    mapping merges over the current SMTP settings.
    """
    out: dict[str, Any] = {}
    for key, value in changes.items():
        if value is None:
            continue
        if key == "directory":
            out[key] = _coerce_dirs(value, config.directory)
        elif key == "filecount":
            out[key] = _coerce_counts(value, config.filecount)
        elif key == "smtp":
            if isinstance(value, SmtpConfig) or config.smtp is None:
                out[key] = _coerce_smtp(value)
            else:
                current = config.smtp.model_dump(by_alias=True)
                if "secure" not in value and "port" in value:
                    current.pop("secure", None)
                out[key] = _coerce_smtp({**current, **dict(value)})
        else:
            out[key] = value

    if "smtp" in out and "notify" not in out:
        out["notify"] = True
    try:
        return replace(config, **out)
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


def clone_config(config: VLoggoConfig, **overrides: Any) -> VLoggoConfig:
    """Return a copy of ``config`` with whole fields replaced."""
    if "directory" in overrides and overrides["directory"] is not None:
        overrides["directory"] = _coerce_dirs(overrides["directory"], config.directory)
    if "filecount" in overrides and overrides["filecount"] is not None:
        overrides["filecount"] = _coerce_counts(overrides["filecount"], config.filecount)
    if "smtp" in overrides and overrides["smtp"] is not None:
        overrides["smtp"] = _coerce_smtp(overrides["smtp"])
    try:
        return replace(config, **{k: v for k, v in overrides.items() if v is not None})
    except TypeError as exc:
        raise ValueError(str(exc)) from exc
