"""Shared test fixtures for SessionKit tests."""

import json
import time
from typing import Optional

import httpx
import jwt
import pytest

from sessionkit.core.recording import RecordingController, RecordingObserver
from sessionkit.core.simulated import SimulatedEngine

TOKEN_URL = "https://auth.example.test/oauth/token"
TEST_SIGNING_KEY = "sessionkit-test-signing-key-0123456789abcdef"


def make_jwt(expires_in: Optional[float], **claims) -> str:
    """Mint an HS256 token whose ``exp`` lies *expires_in* seconds from now.

    ``None`` leaves the ``exp`` claim out.
    """
    payload = {"sub": "client@clients"}
    if expires_in is not None:
        payload["exp"] = int(time.time() + expires_in)
    payload.update(claims)
    return jwt.encode(payload, TEST_SIGNING_KEY, algorithm="HS256")


def token_body(expires_in: float = 3600) -> bytes:
    return json.dumps({"access_token": make_jwt(expires_in), "token_type": "Bearer"}).encode()


class EventRecorder(RecordingObserver):
    """Observer that keeps every notification for assertions."""

    def __init__(self):
        self.states = []
        self.levels = []
        self.start_failures = []
        self.stops = []
        self.started = []
        self.interruptions = []
        self.warnings = []
        self.silences = 0
        self.errors = []

    def on_state_changed(self, previous, current):
        if not self.states:
            self.states.append(previous.value)
        self.states.append(current.value)

    def on_audio_level(self, level, duration):
        self.levels.append(level)

    def on_recording_started(self, recording):
        self.started.append(recording.recording_identifier)

    def on_start_failed(self, session_identifier, reason):
        self.start_failures.append((session_identifier, reason))

    def on_recording_stopped(self, recording_identifier, duration):
        self.stops.append(recording_identifier)

    def on_interrupted(self, reason):
        self.interruptions.append(reason)

    def on_duration_warning(self, time_left):
        self.warnings.append(time_left)

    def on_digital_silence(self):
        self.silences += 1

    def on_error(self, error):
        self.errors.append(error)


@pytest.fixture
def auth_config():
    """Provide a complete ``auth`` configuration section."""
    return {
        "token_url": TOKEN_URL,
        "client_id": "ClientId",
        "client_secret": "ClientSecret",
        "audience": "AuthAudience",
    }


@pytest.fixture
def token_transport():
    """Mock transport answering every request with a valid token."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=token_body())

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


@pytest.fixture
def observer():
    return EventRecorder()


@pytest.fixture
def engine():
    """Engine that leaves start confirmation to the test."""
    return SimulatedEngine(auto_confirm=False, upload=False, seed=7)


@pytest.fixture
def controller(engine, observer):
    return RecordingController(engine, observers=[observer])


@pytest.fixture
def mint_token():
    """Provide :func:`make_jwt` to tests."""
    return make_jwt


@pytest.fixture
def mint_body():
    """Provide :func:`token_body` to tests."""
    return token_body
