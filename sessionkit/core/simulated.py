"""In-process capture/upload engine.

:class:`SimulatedEngine` implements :class:`~sessionkit.core.engine.CaptureEngine`
without touching audio hardware or the network (other than through the
token provider it is given).  The ``demo`` command runs against it, and the
test-suite uses it to drive the controller the way a real engine would:

* start requests are confirmed synchronously when ``auto_confirm`` is set,
  otherwise :meth:`SimulatedEngine.confirm_start` / :meth:`SimulatedEngine.fail_start`
  decide the outcome;
* a second ``stop()`` on the same recorder raises
  :class:`~sessionkit.core.errors.RecorderStateError`;
* after a stop, a simulated upload asks the token provider for a token and
  reports the outcome to the delegate.
"""

import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np
from loguru import logger

from .engine import RecordingSink, TokenSource, UploadSink
from .errors import EngineError, RecorderStateError
from .events import (
    AllUploadsFinished,
    AudioMetered,
    DigitalSilenceDetected,
    DurationWarning,
    InterruptionReason,
    RecordingInterrupted,
    RecordingStarted,
    RecordingStartFailed,
    RecordingStopped,
    RecordingUploaded,
    SessionCompleted,
    UploadFailed,
    UploadStarted,
)
from .levels import level_from_samples

METER_BLOCK = 1600  # 100ms at 16kHz


class SimulatedRecorder:
    """Recorder handle returned by :meth:`SimulatedSession.start_recording`."""

    def __init__(self, engine: "SimulatedEngine", session: "SimulatedSession", sink: RecordingSink) -> None:
        self.identifier = str(uuid.uuid4())
        self.session = session
        self.sink = sink
        self.confirmed = False
        self.stopped = False
        self._engine = engine
        self._started_at = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def stop(self) -> None:
        self._engine._stop(self)


class SimulatedSession:
    def __init__(
        self,
        engine: "SimulatedEngine",
        identifier: str,
        contextual_data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._engine = engine
        self._identifier = identifier
        self._contextual_data = contextual_data

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def contextual_data(self) -> Optional[Mapping[str, Any]]:
        return self._contextual_data

    def start_recording(self, sink: RecordingSink) -> SimulatedRecorder:
        return self._engine._start(self, sink)


class SimulatedEngine:
    """Stand-in for the external capture/upload engine."""

    def __init__(
        self,
        auto_confirm: bool = True,
        permission_granted: bool = True,
        upload: bool = True,
        seed: Optional[int] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            auto_confirm: Confirm start requests synchronously.
            permission_granted: Answer given to permission requests.
            upload: Simulate an upload after every stopped recording.
            seed: Seed for the metering noise generator.
        """
        self.auto_confirm = auto_confirm
        self.permission_granted = permission_granted
        self.upload = upload

        self.started = False
        self.uploads_enabled = False
        self.metadata: Any = None
        self.partner_id: Optional[str] = None
        self.settings: Dict[str, Any] = {}
        self.recorders: List[SimulatedRecorder] = []

        self._token_provider: Optional[TokenSource] = None
        self._delegate: Optional[UploadSink] = None
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()
        self._pending_uploads = 0

    # ------------------------------------------------------------------
    # CaptureEngine
    # ------------------------------------------------------------------

    def start(
        self,
        metadata: Any,
        token_provider: Optional[TokenSource],
        delegate: UploadSink,
        partner_id: str,
    ) -> None:
        if self.started:
            logger.warning('Engine already started; ignoring repeated start')
            return
        if not partner_id:
            raise EngineError('A partner ID is required to start the engine')
        self.metadata = metadata
        self._token_provider = token_provider
        self._delegate = delegate
        self.partner_id = partner_id
        self.started = True

    def configure(self, settings: Dict[str, Any]) -> None:
        if not self.started:
            raise EngineError('Engine must be started before it is configured')
        geography = settings.get('geography')
        if geography is not None and (len(str(geography)) != 2 or not str(geography).isalpha()):
            raise EngineError(f'Geography must be an ISO 3166-1 alpha-2 code, got {geography!r}')
        self.settings = dict(settings)

    def resume_uploads(self) -> None:
        if not self.started:
            raise EngineError('Engine must be started before uploads are resumed')
        self.uploads_enabled = True

    def session(
        self,
        identifier: str,
        contextual_data: Optional[Mapping[str, Any]] = None,
    ) -> SimulatedSession:
        return SimulatedSession(self, identifier, contextual_data)

    def request_record_permission(self, callback: Callable[[bool], None]) -> None:
        callback(self.permission_granted)

    # ------------------------------------------------------------------
    # Driving the simulation
    # ------------------------------------------------------------------

    @property
    def active_recorder(self) -> Optional[SimulatedRecorder]:
        with self._lock:
            for recorder in reversed(self.recorders):
                if not recorder.stopped:
                    return recorder
        return None

    def confirm_start(self, recorder: Optional[SimulatedRecorder] = None, device: str = 'Built-in Microphone') -> None:
        recorder = self._require(recorder)
        recorder.confirmed = True
        recorder.sink(RecordingStarted(
            recording_identifier=recorder.identifier,
            session_identifier=recorder.session.identifier,
            audio_input_device=device,
        ))

    def fail_start(self, reason: str, recorder: Optional[SimulatedRecorder] = None) -> None:
        recorder = self._require(recorder)
        recorder.stopped = True
        recorder.sink(RecordingStartFailed(session_identifier=recorder.session.identifier, reason=reason))

    def meter(self, level: Optional[float] = None, recorder: Optional[SimulatedRecorder] = None) -> float:
        """Emit one metering sample and return its level.

        Without *level* the sample is derived from synthetic noise.
        """
        recorder = self._require(recorder)
        if level is None:
            scale = self._rng.uniform(0.001, 0.5)
            level = level_from_samples(self._rng.normal(0.0, scale, METER_BLOCK))
        recorder.sink(AudioMetered(duration=recorder.elapsed, level=level))
        return level

    def interrupt(self, reason: InterruptionReason, recorder: Optional[SimulatedRecorder] = None) -> None:
        self._require(recorder).sink(RecordingInterrupted(reason=reason))

    def warn(self, time_left: float, recorder: Optional[SimulatedRecorder] = None) -> None:
        self._require(recorder).sink(DurationWarning(time_left=time_left))

    def silence(self, recorder: Optional[SimulatedRecorder] = None) -> None:
        self._require(recorder).sink(DigitalSilenceDetected())

    def end_recording(self, recorder: Optional[SimulatedRecorder] = None) -> None:
        """Stop the recording from the engine side, e.g. at the duration limit."""
        self._stop(self._require(recorder))

    def complete_session(self, identifier: str) -> None:
        self._emit(SessionCompleted(session_identifier=identifier))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, recorder: Optional[SimulatedRecorder]) -> SimulatedRecorder:
        recorder = recorder or self.active_recorder
        if recorder is None:
            raise RecorderStateError('No recording in progress')
        return recorder

    def _start(self, session: SimulatedSession, sink: RecordingSink) -> SimulatedRecorder:
        if self.active_recorder is not None:
            raise RecorderStateError('A recording is already in progress')
        recorder = SimulatedRecorder(self, session, sink)
        with self._lock:
            self.recorders.append(recorder)
        logger.debug(f'Simulated recorder {recorder.identifier} created for session {session.identifier}')
        if self.auto_confirm:
            self.confirm_start(recorder)
        return recorder

    def _stop(self, recorder: SimulatedRecorder) -> None:
        with self._lock:
            if recorder.stopped:
                raise RecorderStateError(f'Recorder {recorder.identifier} already stopped')
            recorder.stopped = True
        recorder.sink(RecordingStopped(
            recording_identifier=recorder.identifier,
            session_identifier=recorder.session.identifier,
            duration=recorder.elapsed,
        ))
        if recorder.confirmed and self.upload and self.uploads_enabled:
            self._upload(recorder)

    def _upload(self, recorder: SimulatedRecorder) -> None:
        recording_id = recorder.identifier
        session_id = recorder.session.identifier
        if self._token_provider is None:
            logger.warning('No token provider; skipping simulated upload')
            return

        with self._lock:
            self._pending_uploads += 1
        self._emit(UploadStarted(recording_identifier=recording_id, session_identifier=session_id))

        def on_success(token: str) -> None:
            self._emit(RecordingUploaded(recording_identifier=recording_id, session_identifier=session_id))
            self._finish_upload()

        def on_failure(error: Exception) -> None:
            self._emit(UploadFailed(
                recording_identifier=recording_id,
                session_identifier=session_id,
                error=str(error),
                will_retry=True,
            ))
            self._finish_upload()

        self._token_provider.provide_token(on_success, on_failure)

    def _finish_upload(self) -> None:
        with self._lock:
            self._pending_uploads -= 1
            finished = self._pending_uploads == 0
        if finished:
            self._emit(AllUploadsFinished())

    def _emit(self, event: Any) -> None:
        if self._delegate is not None:
            self._delegate(event)
