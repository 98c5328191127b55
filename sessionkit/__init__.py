"""SessionKit - credential provider and recording session controller.

This package supplies bearer tokens to an external capture/upload engine and
drives the open/start/stop lifecycle of recordings through that engine.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]
