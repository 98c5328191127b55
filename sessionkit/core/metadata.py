"""Application and device metadata handed to the engine for diagnostics.

Every lookup can fail on some platform; each one falls back to a fixed
default instead of raising.
"""

import platform
from dataclasses import dataclass
from importlib import metadata as importlib_metadata
from typing import Any, Dict, Optional

DISTRIBUTION_NAME = 'sessionkit-client'
DEFAULT_APP_ID = 'sessionkit'
UNKNOWN = 'unknown'


def lookup_app_version(distribution: str = DISTRIBUTION_NAME) -> Optional[str]:
    try:
        return importlib_metadata.version(distribution)
    except importlib_metadata.PackageNotFoundError:
        return None


def lookup_device_id() -> Optional[str]:
    # platform.node() returns '' when the host name cannot be determined
    return platform.node() or None


@dataclass(frozen=True)
class AppMetadata:
    app_id: str
    app_version: str
    device_id: str

    @classmethod
    def detect(cls, overrides: Optional[Dict[str, Any]] = None) -> "AppMetadata":
        """Build metadata from *overrides* (the ``app`` config section) and the host."""
        overrides = overrides or {}
        return cls(
            app_id=str(overrides.get('app_id') or DEFAULT_APP_ID),
            app_version=str(overrides.get('app_version') or lookup_app_version() or UNKNOWN),
            device_id=str(overrides.get('device_id') or lookup_device_id() or UNKNOWN),
        )
