from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from vloggo.core.models import LogLevel
from vloggo.logger import VLoggo


def _configure_logging() -> None:
    """Route library diagnostics to stderr."""
    level_name = os.getenv("VLOGGO_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_level(s: str) -> LogLevel:
    name = s.strip().upper()
    try:
        return LogLevel(name)
    except ValueError as e:
        allowed = ", ".join(lvl.value for lvl in LogLevel)
        raise argparse.ArgumentTypeError(f"Invalid level. Allowed: {allowed}") from e


def _positive_int(s: str) -> int:
    try:
        value = int(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError("must be an integer") from e
    if value < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vloggo",
        description="Append one entry to the daily log files (FATAL also sends an alert).",
    )
    p.add_argument("level", type=_parse_level, help="INFO, WARN, DEBUG, ERROR or FATAL")
    p.add_argument("code", help="Short identifier, e.g. APP_START")
    p.add_argument("message")
    p.add_argument("--client", default=None, help="Client name (default: $CLIENT_NAME or VLoggo)")
    p.add_argument("--json", action="store_true", help="Also write the JSON-lines stream")
    p.add_argument("--txt-dir", default=None, help="Directory for .txt logs")
    p.add_argument("--json-dir", default=None, help="Directory for .jsonl logs")
    p.add_argument("--keep-txt", type=_positive_int, default=None, help="Text files to keep")
    p.add_argument("--keep-json", type=_positive_int, default=None, help="JSON files to keep")
    p.add_argument("--throttle", type=int, default=None, help="Alert throttle in milliseconds")
    p.add_argument("--no-console", action="store_true", help="Do not echo the entry")
    p.add_argument("--debug", action="store_true", help="Verbose library diagnostics")
    p.add_argument("--prune", action="store_true", help="Run a retention pass after writing")
    return p


def _options(args: argparse.Namespace) -> dict[str, Any]:
    opts: dict[str, Any] = {
        "json": args.json,
        "debug": args.debug,
        "console": not args.no_console,
    }
    if args.client:
        opts["client"] = args.client
    if args.txt_dir or args.json_dir:
        opts["directory"] = {"txt": args.txt_dir, "json": args.json_dir}
    if args.keep_txt or args.keep_json:
        opts["filecount"] = {"txt": args.keep_txt, "json": args.keep_json}
    if args.throttle is not None:
        opts["throttle"] = args.throttle
    return opts


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entrypoint."""
    _configure_logging()
    p = build_parser()
    args = p.parse_args(argv)

    try:
        log = VLoggo(**_options(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)

    try:
        if not log.initialized:
            print("Error: log files could not be opened", file=sys.stderr)
            raise SystemExit(1)

        log.log(args.level, args.code, args.message)

        if args.prune:
            removed = asyncio.run(log.cleanup())
            for path in removed:
                print(f"removed {path}")
            print(f"\nRemoved {len(removed)} old file(s).")
    finally:
        log.close()


if __name__ == "__main__":
    main()
