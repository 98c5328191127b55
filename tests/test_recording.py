"""Recording controller state machine tests."""

import json
import threading

import pytest

from sessionkit.core.errors import (
    DuplicateStopError,
    NoActiveRecordingError,
    NoActiveSessionError,
    RecorderStateError,
    RecordingInProgressError,
    RecordingStartError,
    StopRecordingError,
)
from sessionkit.core.events import (
    AudioMetered,
    DigitalSilenceDetected,
    DurationWarning,
    InterruptionReason,
    RecordingInterrupted,
    RecordingStarted,
    RecordingStartFailed,
    RecordingStopped,
)
from sessionkit.core.log import SessionLogger
from sessionkit.core.recording import (
    RecordingController,
    RecordingObserver,
    RecordingState,
    new_session_identifier,
)
from sessionkit.core.simulated import SimulatedEngine


class _StubRecorder:
    def __init__(self, fail_on_stop=False):
        self.stop_calls = 0
        self.fail_on_stop = fail_on_stop

    def stop(self):
        self.stop_calls += 1
        if self.fail_on_stop:
            raise RecorderStateError("engine refused")


class _StubSession:
    def __init__(self, identifier, contextual_data=None, recorder=None, refuse=False, confirm_with=None):
        self.identifier = identifier
        self.contextual_data = contextual_data
        self.recorder = recorder or _StubRecorder()
        self.refuse = refuse
        self.confirm_with = confirm_with
        self.sink = None

    def start_recording(self, sink):
        if self.refuse:
            raise RuntimeError("user not configured")
        self.sink = sink
        if self.confirm_with is not None:
            # Engines may answer before start_recording returns.
            sink(RecordingStarted(self.confirm_with, self.identifier))
        return self.recorder


class _StubEngine:
    def __init__(self, **session_kwargs):
        self.session_kwargs = session_kwargs
        self.sessions = []

    def session(self, identifier, contextual_data=None):
        session = _StubSession(identifier, contextual_data, **self.session_kwargs)
        self.sessions.append(session)
        return session


def _stub_controller(observer, **session_kwargs):
    engine = _StubEngine(**session_kwargs)
    return RecordingController(engine, observers=[observer]), engine


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


def test_start_failure_returns_to_idle(controller, engine, observer):
    """open S1, start, start-failure 'busy' -> idle, starting, idle."""
    controller.open_new_session("S1")
    controller.start_recording()
    engine.fail_start("busy")

    assert observer.states == ["idle", "starting", "idle"]
    assert observer.start_failures == [("S1", "busy")]
    assert controller.recording is None
    assert controller.state is RecordingState.IDLE


def test_full_recording_cycle(observer):
    """open S1, start, confirm R1, three samples, stop R1 -> level back to 0."""
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink

    sink(RecordingStarted("R1", "S1"))
    for level in (0.1, 0.4, 0.2):
        sink(AudioMetered(duration=1.0, level=level))
    assert controller.audio_level == pytest.approx(0.2)
    sink(RecordingStopped("R1", "S1", duration=3.0))

    assert observer.states == ["idle", "starting", "recording", "idle"]
    assert observer.levels == [0.1, 0.4, 0.2, 0.0]
    assert observer.started == ["R1"]
    assert observer.stops == ["R1"]
    assert controller.audio_level == 0
    assert controller.recording is None


def test_start_without_session_is_contract_violation(controller, observer):
    with pytest.raises(NoActiveSessionError):
        controller.start_recording()
    assert controller.state is RecordingState.IDLE
    assert observer.states == []


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("confirm", [False, True])
def test_start_rejected_while_in_flight(controller, engine, confirm):
    controller.open_new_session("S1")
    recording = controller.start_recording()
    if confirm:
        engine.confirm_start()
    state = controller.state

    with pytest.raises(RecordingInProgressError):
        controller.start_recording()

    assert controller.recording is recording
    assert controller.state is state
    assert len(engine.recorders) == 1


def test_synchronous_confirmation_is_applied_after_start(observer):
    controller, _ = _stub_controller(observer, confirm_with="R9")
    controller.open_new_session("S1")
    recording = controller.start_recording()

    assert controller.state is RecordingState.RECORDING
    assert recording.recording_identifier == "R9"
    assert observer.states == ["idle", "starting", "recording"]


def test_engine_refusing_start_keeps_idle(observer):
    controller, _ = _stub_controller(observer, refuse=True)
    controller.open_new_session("S1")
    with pytest.raises(RecordingStartError) as exc_info:
        controller.start_recording()
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert controller.state is RecordingState.IDLE
    assert controller.recording is None


def test_start_can_be_retried_after_failure(controller, engine, observer):
    controller.open_new_session("S1")
    controller.start_recording()
    engine.fail_start("audio system busy")

    controller.start_recording()
    engine.confirm_start()

    assert controller.state is RecordingState.RECORDING
    assert observer.states == ["idle", "starting", "idle", "starting", "recording"]


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


def test_stop_waits_for_confirmation(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink
    sink(RecordingStarted("R1", "S1"))

    assert controller.stop_recording() is True
    assert controller.state is RecordingState.RECORDING
    assert engine.sessions[0].recorder.stop_calls == 1

    sink(RecordingStopped("R1", "S1"))
    assert controller.state is RecordingState.IDLE


def test_second_stop_is_reported_and_not_forwarded(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    engine.sessions[0].sink(RecordingStarted("R1", "S1"))

    assert controller.stop_recording() is True
    assert controller.stop_recording() is False

    assert engine.sessions[0].recorder.stop_calls == 1
    assert controller.state is RecordingState.RECORDING
    assert len(observer.errors) == 1
    assert isinstance(observer.errors[0], DuplicateStopError)


def test_stop_without_recording_is_reported(controller, observer):
    assert controller.stop_recording() is False
    controller.open_new_session("S1")
    assert controller.stop_recording() is False

    assert controller.state is RecordingState.IDLE
    assert [type(error) for error in observer.errors] == [NoActiveRecordingError, NoActiveRecordingError]


def test_engine_refusing_stop_is_reported_once(observer):
    controller, engine = _stub_controller(observer, recorder=_StubRecorder(fail_on_stop=True))
    controller.open_new_session("S1")
    controller.start_recording()
    engine.sessions[0].sink(RecordingStarted("R1", "S1"))

    assert controller.stop_recording() is False
    assert controller.stop_recording() is False

    assert engine.sessions[0].recorder.stop_calls == 1
    assert isinstance(observer.errors[0], StopRecordingError)
    assert isinstance(observer.errors[1], DuplicateStopError)
    assert controller.state is RecordingState.RECORDING


def test_engine_initiated_stop(controller, engine, observer):
    controller.open_new_session("S1")
    controller.start_recording()
    engine.confirm_start()
    engine.meter(0.5)
    engine.end_recording()

    assert controller.state is RecordingState.IDLE
    assert controller.audio_level == 0
    assert controller.stop_recording() is False
    assert isinstance(observer.errors[-1], NoActiveRecordingError)


def test_stop_confirmed_while_starting(controller, engine, observer):
    controller.open_new_session("S1")
    controller.start_recording()
    assert controller.stop_recording() is True

    assert observer.states == ["idle", "starting", "idle"]
    assert controller.recording is None


def test_simulated_recorder_rejects_second_stop(engine):
    session = engine.session("S1")
    recorder = session.start_recording(lambda event: None)
    recorder.stop()
    with pytest.raises(RecorderStateError):
        recorder.stop()


# ---------------------------------------------------------------------------
# Stale events
# ---------------------------------------------------------------------------


def test_stale_start_confirmation_is_ignored(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink

    sink(RecordingStarted("R1", "OTHER"))
    assert controller.state is RecordingState.STARTING

    sink(RecordingStarted("R1", "S1"))
    sink(RecordingStopped("R1", "S1"))
    sink(RecordingStarted("R1", "S1"))
    assert controller.state is RecordingState.IDLE
    assert observer.states == ["idle", "starting", "recording", "idle"]


def test_stop_for_other_recording_is_ignored(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink
    sink(RecordingStarted("R1", "S1"))

    sink(RecordingStopped("R2", "S1"))
    assert controller.state is RecordingState.RECORDING
    assert observer.stops == []

    sink(RecordingStopped("R1", "S1"))
    assert controller.state is RecordingState.IDLE


def _second_recording_starting(observer):
    """Complete R1 on S1, then leave a second recording on S1 in ``starting``."""
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink
    sink(RecordingStarted("R1", "S1"))
    sink(RecordingStopped("R1", "S1"))
    controller.start_recording()
    assert controller.state is RecordingState.STARTING
    return controller, sink


def test_duplicate_stop_of_finished_recording_does_not_end_next_one(observer):
    controller, sink = _second_recording_starting(observer)

    sink(RecordingStopped("R1", "S1"))
    assert controller.state is RecordingState.STARTING
    assert controller.recording is not None

    sink(RecordingStarted("R2", "S1"))
    sink(RecordingStopped("R2", "S1"))
    assert controller.state is RecordingState.IDLE
    assert observer.stops == ["R1", "R2"]


def test_unrequested_stop_while_starting_is_ignored(observer):
    controller, sink = _second_recording_starting(observer)

    sink(RecordingStopped("R9", "S1"))
    assert controller.state is RecordingState.STARTING

    assert controller.stop_recording()
    sink(RecordingStopped("R9", "S1"))
    assert controller.state is RecordingState.IDLE


def test_duplicate_start_of_finished_recording_is_ignored(observer):
    controller, sink = _second_recording_starting(observer)

    sink(RecordingStarted("R1", "S1"))
    assert controller.state is RecordingState.STARTING

    sink(RecordingStarted("R2", "S1"))
    assert controller.recording.recording_identifier == "R2"
    sink(RecordingStopped("R2", "S1"))
    assert controller.state is RecordingState.IDLE
    assert observer.started == ["R1", "R2"]


def test_stale_start_failure_is_ignored(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink
    sink(RecordingStarted("R1", "S1"))

    sink(RecordingStartFailed("S1", "late failure"))
    assert controller.state is RecordingState.RECORDING
    assert observer.start_failures == []


def test_metering_outside_recording_is_ignored(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink

    sink(AudioMetered(duration=0.1, level=0.9))
    assert controller.audio_level == 0
    sink(RecordingStarted("R1", "S1"))
    sink(RecordingStopped("R1", "S1"))
    sink(AudioMetered(duration=0.2, level=0.7))

    assert controller.audio_level == 0
    assert observer.levels == [0.0]


# ---------------------------------------------------------------------------
# Informational events
# ---------------------------------------------------------------------------


def test_informational_events_do_not_change_state(controller, engine, observer):
    controller.open_new_session("S1")
    controller.start_recording()
    engine.confirm_start()

    engine.interrupt(InterruptionReason.ROUTE_CHANGE)
    engine.warn(30.0)
    engine.silence()

    assert controller.state is RecordingState.RECORDING
    assert observer.interruptions == [InterruptionReason.ROUTE_CHANGE]
    assert observer.warnings == [30.0]
    assert observer.silences == 1


def test_informational_events_without_recording_are_dropped(controller, observer):
    controller.post(RecordingInterrupted(InterruptionReason.AUDIO_INTERRUPTION))
    controller.post(DurationWarning(10.0))
    controller.post(DigitalSilenceDetected())

    assert observer.interruptions == []
    assert observer.warnings == []
    assert observer.silences == 0


def test_simulated_meter_levels_are_normalised(controller, engine):
    controller.open_new_session("S1")
    controller.start_recording()
    engine.confirm_start()

    for _ in range(10):
        level = engine.meter()
        assert 0.0 <= level <= 1.0
        assert controller.audio_level == level


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_open_session_generates_identifier(controller):
    session = controller.open_new_session()
    assert session.identifier
    assert controller.active_session is session
    assert controller.open_new_session().identifier != session.identifier


def test_open_session_replaces_previous(controller):
    first = controller.open_new_session("S1", {"encounter": "E-100"})
    second = controller.open_new_session("S2")

    assert controller.active_session is second
    assert first.contextual_data == {"encounter": "E-100"}
    assert second.contextual_data is None


def test_new_session_identifier_is_unique():
    assert len({new_session_identifier() for _ in range(50)}) == 50


def test_recordings_reuse_session(controller, engine):
    controller.open_new_session("S1")
    for _ in range(2):
        controller.start_recording()
        engine.confirm_start()
        controller.stop_recording()

    assert [recorder.session.identifier for recorder in engine.recorders] == ["S1", "S1"]
    assert controller.state is RecordingState.IDLE


# ---------------------------------------------------------------------------
# Observers, threading and logging
# ---------------------------------------------------------------------------


def test_observer_errors_do_not_break_dispatch(controller, engine, observer):
    class Broken(RecordingObserver):
        def on_state_changed(self, previous, current):
            raise RuntimeError("ui bug")

    controller.add_observer(Broken())
    controller.open_new_session("S1")
    controller.start_recording()
    engine.confirm_start()

    assert controller.state is RecordingState.RECORDING
    assert observer.states == ["idle", "starting", "recording"]


def test_observer_can_restart_from_failure_hook(engine):
    class Retry(RecordingObserver):
        def __init__(self, controller):
            self.controller = controller
            self.retried = False

        def on_start_failed(self, session_identifier, reason):
            if not self.retried:
                self.retried = True
                self.controller.start_recording()

    controller = RecordingController(engine)
    retry = Retry(controller)
    controller.add_observer(retry)
    controller.open_new_session("S1")
    controller.start_recording()
    engine.fail_start("busy")

    assert retry.retried
    assert controller.state is RecordingState.STARTING
    engine.confirm_start()
    assert controller.state is RecordingState.RECORDING


def test_remove_observer(controller, engine, observer):
    controller.remove_observer(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    assert observer.states == []


def test_concurrent_metering_is_serialised(observer):
    controller, engine = _stub_controller(observer)
    controller.open_new_session("S1")
    controller.start_recording()
    sink = engine.sessions[0].sink
    sink(RecordingStarted("R1", "S1"))

    def pump(offset):
        for index in range(200):
            sink(AudioMetered(duration=float(index), level=(offset + index) / 1000.0))

    threads = [threading.Thread(target=pump, args=(offset,)) for offset in (0, 200, 400, 600)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(observer.levels) == 800
    assert controller.audio_level == observer.levels[-1]
    sink(RecordingStopped("R1", "S1"))
    assert controller.audio_level == 0


def test_lifecycle_is_written_to_session_log(tmp_path):
    log_path = tmp_path / "logs" / "sessions.jsonl"
    engine = SimulatedEngine(upload=False)
    controller = RecordingController(engine, session_logger=SessionLogger(log_path))

    controller.open_new_session("S1", {"encounter": "E-1"})
    controller.start_recording()
    controller.stop_recording()

    records = [json.loads(line) for line in log_path.read_text().splitlines()]
    assert [(r["type"], r["event"]) for r in records] == [
        ("session", "open"),
        ("recording", "start_requested"),
        ("recording", "started"),
        ("recording", "stop_requested"),
        ("recording", "stopped"),
    ]
    assert records[0]["has_contextual_data"] is True
    assert "E-1" not in log_path.read_text()
    assert records[2]["recording_id"] == engine.recorders[0].identifier
