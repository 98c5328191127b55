"""Upload outcome notifications.

The core does not act on upload results; it logs them and forwards them to
whoever subscribed (the application UI, the CLI, tests).
"""

import threading
from dataclasses import asdict
from typing import Callable, List, Optional

from loguru import logger

from .events import (
    PermissionResult,
    SessionFailed,
    UploadEvent,
    UploadFailed,
    event_name,
)
from .log import SessionLogger

UploadListener = Callable[[UploadEvent], None]


class UploadMonitor:
    """Delegate handed to the engine for upload and session notices."""

    def __init__(self, session_logger: Optional[SessionLogger] = None) -> None:
        self._session_logger = session_logger
        self._listeners: List[UploadListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: UploadListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: UploadListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def post(self, event: UploadEvent) -> None:
        """Log *event* and forward it to every listener."""
        name = event_name(event)
        if isinstance(event, UploadFailed):
            retry = 'will retry' if event.will_retry else 'giving up'
            logger.warning(
                f'Upload failed for recording {event.recording_identifier} '
                f'(session {event.session_identifier}, {retry}): {event.error}'
            )
        elif isinstance(event, SessionFailed):
            logger.warning(f'Session {event.session_identifier} failed: {event.error}')
        elif isinstance(event, PermissionResult):
            logger.info(f'Recording permission granted: {event.granted}')
        else:
            logger.info(f'Engine notice {name}: {event!r}')

        if self._session_logger is not None:
            details = _rename_identifiers(asdict(event))
            self._session_logger.write_upload(name, **details)

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f'Upload listener raised on {name}')


def _rename_identifiers(details: dict) -> dict:
    renamed = {}
    for key, value in details.items():
        if key == 'recording_identifier':
            key = 'recording_id'
        elif key == 'session_identifier':
            key = 'session_id'
        if isinstance(value, tuple):
            value = list(value)
        renamed[key] = value
    return renamed
