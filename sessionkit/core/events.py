"""Events reported by the capture/upload engine.

The engine reports everything through two sinks: recording lifecycle
events go to :meth:`RecordingController.post
<sessionkit.core.recording.RecordingController.post>` and upload outcomes go
to :meth:`UploadMonitor.post <sessionkit.core.uploads.UploadMonitor.post>`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


class InterruptionReason(str, Enum):
    """Why the engine interrupted an active recording."""

    AUDIO_INTERRUPTION = 'audio_interruption'  # phone call, other app audio
    ROUTE_CHANGE = 'route_change'  # headphones or bluetooth mic (dis)connected
    MEDIA_SERVICES_RESET = 'media_services_reset'
    MAX_DURATION_REACHED = 'max_duration_reached'


# ---------------------------------------------------------------------------
# Recording lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecordingStarted:
    recording_identifier: str
    session_identifier: str
    audio_input_device: Optional[str] = None


@dataclass(frozen=True)
class RecordingStartFailed:
    session_identifier: str
    reason: str


@dataclass(frozen=True)
class RecordingStopped:
    """Fires whether the stop came from the caller or from the engine."""

    recording_identifier: str
    session_identifier: str
    duration: float = 0.0


@dataclass(frozen=True)
class RecordingInterrupted:
    reason: InterruptionReason


@dataclass(frozen=True)
class DurationWarning:
    """The session is approaching its maximum recording duration."""

    time_left: float


@dataclass(frozen=True)
class AudioMetered:
    """Periodic audio level sample; cadence is not uniform."""

    duration: float
    level: float


@dataclass(frozen=True)
class DigitalSilenceDetected:
    pass


RecordingEvent = Union[
    RecordingStarted,
    RecordingStartFailed,
    RecordingStopped,
    RecordingInterrupted,
    DurationWarning,
    AudioMetered,
    DigitalSilenceDetected,
]


# ---------------------------------------------------------------------------
# Uploads and engine notices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadStarted:
    recording_identifier: str
    session_identifier: str


@dataclass(frozen=True)
class RecordingUploaded:
    recording_identifier: str
    session_identifier: str


@dataclass(frozen=True)
class UploadFailed:
    recording_identifier: str
    session_identifier: str
    error: str
    will_retry: bool


@dataclass(frozen=True)
class AllUploadsFinished:
    pass


@dataclass(frozen=True)
class SessionCompleted:
    session_identifier: str


@dataclass(frozen=True)
class SessionFailed:
    session_identifier: str
    error: str


@dataclass(frozen=True)
class SupportedLocales:
    recording_locales: Tuple[str, ...] = field(default_factory=tuple)
    report_locales: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PermissionResult:
    granted: bool


UploadEvent = Union[
    UploadStarted,
    RecordingUploaded,
    UploadFailed,
    AllUploadsFinished,
    SessionCompleted,
    SessionFailed,
    SupportedLocales,
    PermissionResult,
]


def event_name(event: object) -> str:
    """Return a snake_case name for *event*, e.g. ``'upload_failed'``."""
    name = type(event).__name__
    return ''.join(
        f'_{char.lower()}' if char.isupper() and index else char.lower()
        for index, char in enumerate(name)
    )
