"""Call-site resolution for log records."""

from __future__ import annotations

import inspect
import os
from collections.abc import Iterable

from .models import UNKNOWN_CALLER

_THIS_FILE = os.path.normcase(__file__)


def resolve_caller(internal_files: Iterable[str] = ()) -> str:
    """Return ``file.py:line`` of the first frame outside the given files.

    Falls back to ``unknown:0`` when the interpreter exposes no frames.
    """
    skip = {_THIS_FILE, *(os.path.normcase(f) for f in internal_files)}

    frame = inspect.currentframe()
    if frame is None:
        return UNKNOWN_CALLER

    try:
        while frame is not None:
            filename = frame.f_code.co_filename
            if os.path.normcase(filename) not in skip:
                return f"{os.path.basename(filename)}:{frame.f_lineno}"
            frame = frame.f_back
        return UNKNOWN_CALLER
    finally:
        # Break the reference cycle between this frame and the locals.
        del frame
