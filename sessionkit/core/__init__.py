"""Core business logic for SessionKit."""

from .client import SessionClient
from .config import AppConfig
from .credentials import (
    AuthSettings,
    Credential,
    CredentialFetcher,
    CredentialProvider,
    EventLoopThread,
    validate_token_response,
)
from .levels import db_to_level, draw_level_bar, level_from_samples
from .log import SessionLogger
from .metadata import AppMetadata
from .recording import Recording, RecordingController, RecordingObserver, RecordingState
from .simulated import SimulatedEngine
from .uploads import UploadMonitor

__all__ = [
    "AppConfig",
    "AppMetadata",
    "AuthSettings",
    "Credential",
    "CredentialFetcher",
    "CredentialProvider",
    "EventLoopThread",
    "Recording",
    "RecordingController",
    "RecordingObserver",
    "RecordingState",
    "SessionClient",
    "SessionLogger",
    "SimulatedEngine",
    "UploadMonitor",
    "db_to_level",
    "draw_level_bar",
    "level_from_samples",
    "validate_token_response",
]
