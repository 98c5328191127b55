"""``sessionkit`` console script and ``python -m sessionkit`` entry point.

Runs the Typer app (``token``, ``status``, ``demo``).  Errors from the
credential and recording layers that escape a command are shown as a single
line instead of a traceback.
"""

import sys

from loguru import logger

from sessionkit.cli import app
from sessionkit.cli.utils import console
from sessionkit.core.errors import SessionKitError


def main() -> None:
    """Run the SessionKit CLI and map failures to exit codes."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled by user[/warning]")
        sys.exit(0)
    except SessionKitError as e:
        console.print(f"[error]✗ {type(e).__name__}: {e}[/error]")
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error in SessionKit CLI")
        console.print(f"[error]Error: {e}[/error]")
        sys.exit(1)


if __name__ == "__main__":
    main()
