"""SessionClient bootstrap and end-to-end upload flow tests."""

import json
import threading

import httpx
import pytest

from sessionkit.core import AppConfig, AppMetadata, SessionClient, SimulatedEngine
from sessionkit.core.errors import ConfigurationError, EngineStartError
from sessionkit.core.events import (
    AllUploadsFinished,
    PermissionResult,
    RecordingUploaded,
    UploadFailed,
    UploadStarted,
)
from sessionkit.core.log import SessionLogger
from sessionkit.core.recording import RecordingState

METADATA = AppMetadata("com.example.recording", "1.2.3", "device-1")


@pytest.fixture
def app_config(tmp_path, monkeypatch, auth_config):
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    config.set("auth", auth_config)
    config.set("engine", {"partner_id": "partner-1"})
    config.set("user", {"user_id": "UserId", "geography": "US"})
    return config


class _UploadListener:
    def __init__(self):
        self.events = []
        self.finished = threading.Event()

    def __call__(self, event):
        self.events.append(event)
        if isinstance(event, AllUploadsFinished):
            self.finished.set()


def test_client_start_configures_engine(app_config, token_transport):
    engine = SimulatedEngine(upload=False)
    with SessionClient(engine, app_config, metadata=METADATA, transport=token_transport) as client:
        listener = _UploadListener()
        client.monitor.subscribe(listener)
        client.start()

        assert engine.started
        assert engine.metadata == METADATA
        assert engine.partner_id == "partner-1"
        assert engine.settings == {"user_id": "UserId", "geography": "US", "environment": "staging"}
        assert engine.uploads_enabled
        assert client.permission_granted is True
        assert listener.events == [PermissionResult(granted=True)]

        client.start()
        assert listener.events == [PermissionResult(granted=True)]


def test_client_reports_permission_denied(app_config):
    engine = SimulatedEngine(permission_granted=False, upload=False)
    with SessionClient(engine, app_config, metadata=METADATA) as client:
        client.start()
        assert client.permission_granted is False


def test_client_wraps_engine_start_failure(app_config):
    app_config.set("engine", {})
    engine = SimulatedEngine()
    with SessionClient(engine, app_config, metadata=METADATA) as client:
        with pytest.raises(EngineStartError):
            client.start()
        assert not engine.started


def test_client_wraps_configuration_failure(app_config):
    app_config.set("user", {"geography": "United States"})
    engine = SimulatedEngine()
    with SessionClient(engine, app_config, metadata=METADATA) as client:
        with pytest.raises(EngineStartError) as exc_info:
            client.start()
        assert "Geography" in str(exc_info.value)
        assert not engine.uploads_enabled


def test_client_rejects_invalid_auth_section(app_config, auth_config):
    auth_config["token_url"] = "not a url"
    app_config.set("auth", auth_config)
    with pytest.raises(ConfigurationError):
        SessionClient(SimulatedEngine(), app_config, metadata=METADATA)


def test_client_without_auth(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    config.set("engine", {"partner_id": "partner-1"})

    engine = SimulatedEngine()
    with SessionClient(engine, config, metadata=METADATA) as client:
        assert client.fetcher is None
        assert client.provider is None

        listener = _UploadListener()
        client.monitor.subscribe(listener)
        client.start()

        client.controller.open_new_session("S1")
        client.controller.start_recording()
        assert client.controller.stop_recording()

        # No provider means nothing is uploaded
        assert listener.events == [PermissionResult(granted=True)]


def test_recording_is_uploaded_with_fresh_token(app_config, token_transport, tmp_path):
    log_path = tmp_path / "logs" / "sessions.jsonl"
    engine = SimulatedEngine()
    with SessionClient(
        engine,
        app_config,
        metadata=METADATA,
        session_logger=SessionLogger(log_path),
        transport=token_transport,
    ) as client:
        listener = _UploadListener()
        client.monitor.subscribe(listener)
        client.start()

        client.controller.open_new_session("S1")
        recording = client.controller.start_recording()
        assert client.controller.state == RecordingState.RECORDING
        engine.meter(0.3)
        assert client.controller.stop_recording()

        assert listener.finished.wait(timeout=5)

    assert len(token_transport.requests) == 1
    kinds = [type(event) for event in listener.events]
    assert kinds == [PermissionResult, UploadStarted, RecordingUploaded, AllUploadsFinished]
    assert listener.events[2].recording_identifier == recording.recording_identifier

    records = [json.loads(line) for line in log_path.read_text().splitlines()]
    upload_events = [r["event"] for r in records if r["type"] == "upload"]
    assert upload_events == ["permission_result", "upload_started", "recording_uploaded", "all_uploads_finished"]


def test_token_failure_is_reported_as_retryable_upload_failure(app_config):
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    engine = SimulatedEngine()
    with SessionClient(engine, app_config, metadata=METADATA, transport=transport) as client:
        listener = _UploadListener()
        client.monitor.subscribe(listener)
        client.start()

        client.controller.open_new_session("S1")
        client.controller.start_recording()
        client.controller.stop_recording()

        assert listener.finished.wait(timeout=5)

    failures = [event for event in listener.events if isinstance(event, UploadFailed)]
    assert len(failures) == 1
    assert failures[0].will_retry
    assert failures[0].session_identifier == "S1"
