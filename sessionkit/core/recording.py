"""Recording session state machine for SessionKit.

:class:`RecordingController` owns at most one open session and at most one
recording at a time, and tracks the observable :class:`RecordingState`:

==============  ==========================  ==============================
From            Trigger                     To
==============  ==========================  ==============================
``idle``        :meth:`start_recording`     ``starting``
``starting``    ``RecordingStarted``        ``recording``
``starting``    ``RecordingStartFailed``    ``idle``
``starting``    ``RecordingStopped``        ``idle`` (stop requested)
``recording``   ``RecordingStopped``        ``idle`` (audio level reset)
==============  ==========================  ==============================

:meth:`stop_recording` only forwards a stop request; the state changes when
the engine confirms with ``RecordingStopped``.  The engine may also stop a
recording on its own, so the state must never be toggled from the caller's
side.

Threading
---------
Engine callbacks arrive through :meth:`RecordingController.post` on any
thread.  Events are queued and applied in order by whichever thread holds
the dispatch lock; caller operations take the same lock.  Events posted
while a caller operation is running (for example synchronously from inside
the engine's ``start_recording``) are applied right after it returns.
"""

import datetime
import queue
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Iterator, List, Mapping, Optional

from loguru import logger

from .engine import CaptureEngine, RecorderHandle, SessionHandle
from .errors import (
    DuplicateStopError,
    NoActiveRecordingError,
    NoActiveSessionError,
    RecordingError,
    RecordingInProgressError,
    RecordingStartError,
    StopRecordingError,
)
from .events import (
    AudioMetered,
    DigitalSilenceDetected,
    DurationWarning,
    InterruptionReason,
    RecordingEvent,
    RecordingInterrupted,
    RecordingStarted,
    RecordingStartFailed,
    RecordingStopped,
)
from .log import SessionLogger

# Identifiers of finished recordings kept to recognise late duplicate callbacks
RETIRED_HISTORY = 256


class RecordingState(str, Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    RECORDING = 'recording'


@dataclass
class Recording:
    """One start/stop cycle on the active session."""

    session_identifier: str
    handle: RecorderHandle = field(repr=False)
    recording_identifier: Optional[str] = None
    audio_input_device: Optional[str] = None
    stop_requested: bool = False
    requested_at: datetime.datetime = field(default_factory=datetime.datetime.now)


class RecordingObserver:
    """Receives controller notifications.  Override the hooks you need."""

    def on_state_changed(self, previous: RecordingState, current: RecordingState) -> None:
        pass

    def on_audio_level(self, level: float, duration: float) -> None:
        pass

    def on_recording_started(self, recording: Recording) -> None:
        pass

    def on_start_failed(self, session_identifier: str, reason: str) -> None:
        pass

    def on_recording_stopped(self, recording_identifier: str, duration: float) -> None:
        pass

    def on_interrupted(self, reason: InterruptionReason) -> None:
        pass

    def on_duration_warning(self, time_left: float) -> None:
        pass

    def on_digital_silence(self) -> None:
        pass

    def on_error(self, error: RecordingError) -> None:
        pass


def new_session_identifier() -> str:
    """Generate a correlation identifier for a new session."""
    return str(uuid.uuid4())


class RecordingController:
    """Drives the open/start/stop lifecycle of recordings on one session."""

    def __init__(
        self,
        engine: CaptureEngine,
        session_logger: Optional[SessionLogger] = None,
        observers: Optional[List[RecordingObserver]] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            engine: Engine supplying session handles.
            session_logger: Optional JSONL lifecycle log.
            observers: Initial observers.
        """
        self._engine = engine
        self._session_logger = session_logger
        self._observers: List[RecordingObserver] = list(observers or [])

        self._session: Optional[SessionHandle] = None
        self._recording: Optional[Recording] = None
        self._state = RecordingState.IDLE
        self._audio_level = 0.0
        self._retired: Deque[str] = deque(maxlen=RETIRED_HISTORY)

        self._events: "queue.Queue[RecordingEvent]" = queue.Queue()
        self._dispatch_lock = threading.Lock()
        self._dispatch_owner: Optional[int] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def audio_level(self) -> float:
        """Latest metering sample; ``0.0`` when no recording is active."""
        return self._audio_level

    @property
    def active_session(self) -> Optional[SessionHandle]:
        return self._session

    @property
    def recording(self) -> Optional[Recording]:
        return self._recording

    def add_observer(self, observer: RecordingObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: RecordingObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    def open_new_session(
        self,
        identifier: Optional[str] = None,
        contextual_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionHandle:
        """Open a session and make it the active one.

        Reusing an identifier groups the recordings into the same document
        on the engine side.

        Args:
            identifier: Correlation identifier.  Generated when omitted.
            contextual_data: Optional payload attached to the session.

        Returns:
            The new session handle.
        """
        with self._exclusive():
            if self._state is not RecordingState.IDLE:
                logger.warning(f'Opening a new session while {self._state.value}')
            identifier = identifier or new_session_identifier()
            session = self._engine.session(identifier, contextual_data)
            self._session = session
            logger.info(f'Opened session {identifier}')
            if self._session_logger is not None:
                self._session_logger.write_session_open(
                    session_id=identifier,
                    has_contextual_data=contextual_data is not None,
                )
            return session

    def start_recording(self) -> Recording:
        """Ask the engine to start recording on the active session.

        The state moves to ``starting``; the engine's answer arrives later
        through :meth:`post`.

        Raises:
            NoActiveSessionError: No session has been opened.
            RecordingInProgressError: A recording is starting or active.
            RecordingStartError: The engine refused the request.
        """
        with self._exclusive():
            if self._session is None:
                error = NoActiveSessionError('No active session to record in')
                logger.error(str(error))
                raise error
            if self._state is not RecordingState.IDLE or self._recording is not None:
                error = RecordingInProgressError(
                    f'Cannot start a recording while {self._state.value}'
                )
                logger.error(str(error))
                raise error

            session = self._session
            try:
                handle = session.start_recording(self.post)
            except Exception as error:
                logger.error(f'Failed to start recording: {error}')
                raise RecordingStartError(f'Failed to start recording: {error}') from error

            recording = Recording(session_identifier=session.identifier, handle=handle)
            self._recording = recording
            self._log_recording('start_requested', recording)
            self._set_state(RecordingState.STARTING)
            return recording

    def stop_recording(self) -> bool:
        """Forward a stop request for the current recording.

        Never raises.  Errors are logged and sent to ``on_error``; the state
        is left alone until the engine confirms the stop.

        Returns:
            ``True`` if the request reached the engine.
        """
        with self._exclusive():
            recording = self._recording
            if recording is None:
                self._report(NoActiveRecordingError('No active recording to stop'))
                return False
            if recording.stop_requested:
                self._report(DuplicateStopError(
                    f'Stop already requested for recording on session {recording.session_identifier}'
                ))
                return False

            recording.stop_requested = True
            try:
                recording.handle.stop()
            except Exception as error:
                stop_error = StopRecordingError(f'Failed to stop recording: {error}')
                stop_error.__cause__ = error
                self._report(stop_error)
                return False

            self._log_recording('stop_requested', recording)
            return True

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def post(self, event: RecordingEvent) -> None:
        """Queue an engine event and apply pending events if possible."""
        self._events.put(event)
        self._drain()

    def _drain(self) -> None:
        while not self._events.empty():
            if not self._dispatch_lock.acquire(blocking=False):
                # The holder drains the queue before and after releasing.
                return
            self._dispatch_owner = threading.get_ident()
            try:
                while True:
                    try:
                        event = self._events.get_nowait()
                    except queue.Empty:
                        break
                    self._apply(event)
            finally:
                self._dispatch_owner = None
                self._dispatch_lock.release()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._dispatch_owner == threading.get_ident():
            # Called from an observer hook during dispatch.
            yield
            return
        try:
            with self._dispatch_lock:
                self._dispatch_owner = threading.get_ident()
                try:
                    yield
                finally:
                    self._dispatch_owner = None
        finally:
            self._drain()

    def _apply(self, event: RecordingEvent) -> None:
        if isinstance(event, RecordingStarted):
            self._on_started(event)
        elif isinstance(event, RecordingStartFailed):
            self._on_start_failed(event)
        elif isinstance(event, RecordingStopped):
            self._on_stopped(event)
        elif isinstance(event, AudioMetered):
            if self._state is not RecordingState.RECORDING:
                self._ignore(event)
                return
            self._audio_level = float(event.level)
            self._notify('on_audio_level', self._audio_level, event.duration)
        elif isinstance(event, RecordingInterrupted):
            if self._recording is None:
                self._ignore(event)
                return
            logger.info(f'Recording interrupted: {event.reason.value}')
            self._notify('on_interrupted', event.reason)
        elif isinstance(event, DurationWarning):
            if self._recording is None:
                self._ignore(event)
                return
            logger.info(f'Recording will stop in {event.time_left} seconds')
            self._notify('on_duration_warning', event.time_left)
        elif isinstance(event, DigitalSilenceDetected):
            if self._recording is None:
                self._ignore(event)
                return
            logger.info('Digital silence detected')
            self._notify('on_digital_silence')
        else:
            logger.warning(f'Unknown recording event: {event!r}')

    def _on_started(self, event: RecordingStarted) -> None:
        recording = self._recording
        if (
            self._state is not RecordingState.STARTING
            or recording is None
            or event.session_identifier != recording.session_identifier
            or event.recording_identifier in self._retired
        ):
            self._ignore(event)
            return
        recording.recording_identifier = event.recording_identifier
        recording.audio_input_device = event.audio_input_device
        logger.info(f'Recording started: {event.recording_identifier}')
        self._log_recording('started', recording, audio_input_device=event.audio_input_device)
        self._set_state(RecordingState.RECORDING)
        self._notify('on_recording_started', recording)

    def _on_start_failed(self, event: RecordingStartFailed) -> None:
        recording = self._recording
        if (
            self._state is not RecordingState.STARTING
            or recording is None
            or event.session_identifier != recording.session_identifier
        ):
            self._ignore(event)
            return
        logger.warning(f'Failed to start recording: {event.reason}')
        self._recording = None
        self._log_recording('start_failed', recording, reason=event.reason)
        self._set_state(RecordingState.IDLE)
        self._notify('on_start_failed', event.session_identifier, event.reason)

    def _on_stopped(self, event: RecordingStopped) -> None:
        recording = self._recording
        if (
            recording is None
            or self._state is RecordingState.IDLE
            or event.recording_identifier in self._retired
        ):
            self._ignore(event)
            return
        if recording.recording_identifier is not None:
            matches = event.recording_identifier == recording.recording_identifier
        else:
            # Identifier unknown until confirmation; only an answer to our own stop counts
            matches = (
                recording.stop_requested
                and event.session_identifier == recording.session_identifier
            )
        if not matches:
            self._ignore(event)
            return

        logger.info(f'Recording stopped after {event.duration} seconds')
        recording.recording_identifier = event.recording_identifier
        self._retired.append(event.recording_identifier)
        self._recording = None
        self._audio_level = 0.0
        self._log_recording('stopped', recording, duration_sec=float(event.duration))
        self._set_state(RecordingState.IDLE)
        self._notify('on_audio_level', 0.0, float(event.duration))
        self._notify('on_recording_stopped', event.recording_identifier, event.duration)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: RecordingState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.debug(f'Recording state {previous.value} -> {state.value}')
        self._notify('on_state_changed', previous, state)

    def _ignore(self, event: RecordingEvent) -> None:
        logger.debug(f'Ignoring stale {type(event).__name__} while {self._state.value}: {event!r}')

    def _report(self, error: RecordingError) -> None:
        logger.error(str(error))
        self._notify('on_error', error)

    def _notify(self, hook: str, *args: Any) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception(f'Recording observer {hook} raised')

    def _log_recording(self, event: str, recording: Recording, **details: Any) -> None:
        if self._session_logger is None:
            return
        self._session_logger.write_recording(
            event=event,
            session_id=recording.session_identifier,
            recording_id=recording.recording_identifier,
            **details,
        )
