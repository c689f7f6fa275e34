"""
Module entrypoint for the notekeeper CLI.

This file exists so that `python -m notekeeper ...` works consistently in all
environments, including when the console-script wrapper is not installed.
"""

from __future__ import annotations

import sys

from notekeeper.cli import main


def _run() -> None:
    """Execute the CLI and exit with its status code."""
    sys.exit(main())


if __name__ == "__main__":
    _run()
