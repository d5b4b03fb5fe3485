"""Module entrypoint.

Allows:
    python -m vloggo INFO APP_START "Application started"
"""

from __future__ import annotations

from vloggo.cli import main

if __name__ == "__main__":
    main()
