"""Capabilities SessionKit expects from the external capture/upload engine.

The engine is injected into :class:`~sessionkit.core.client.SessionClient`
and :class:`~sessionkit.core.recording.RecordingController` rather than
reached through a process-wide singleton, so tests can pass
:class:`~sessionkit.core.simulated.SimulatedEngine` or any other double.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .credentials import FailureCallback, TokenCallback
from .events import RecordingEvent, UploadEvent

RecordingSink = Callable[[RecordingEvent], None]
UploadSink = Callable[[UploadEvent], None]


class TokenSource(Protocol):
    def provide_token(self, on_success: TokenCallback, on_failure: FailureCallback) -> Any:
        ...


class RecorderHandle(Protocol):
    """Handle for one start/stop cycle.  ``stop`` may be called once."""

    def stop(self) -> None:
        ...


class SessionHandle(Protocol):
    """One logical session.  Recordings sharing an identifier are merged."""

    @property
    def identifier(self) -> str:
        ...

    @property
    def contextual_data(self) -> Optional[Mapping[str, Any]]:
        ...

    def start_recording(self, sink: RecordingSink) -> RecorderHandle:
        """Request a new recording.

        Acceptance is asynchronous: the outcome arrives on *sink* as
        ``RecordingStarted`` or ``RecordingStartFailed``.
        """
        ...


class CaptureEngine(Protocol):
    def start(
        self,
        metadata: Any,
        token_provider: Optional[TokenSource],
        delegate: UploadSink,
        partner_id: str,
    ) -> None:
        """Start the engine.  Only the first call per process takes effect."""
        ...

    def configure(self, settings: Dict[str, Any]) -> None:
        ...

    def resume_uploads(self) -> None:
        ...

    def session(
        self,
        identifier: str,
        contextual_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionHandle:
        ...

    def request_record_permission(self, callback: Callable[[bool], None]) -> None:
        ...
