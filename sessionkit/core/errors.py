"""Exception hierarchy for SessionKit.

Credential failures reach callers only as :class:`RefreshFailedError`;
:class:`ValidationError` subclasses stay inside the fetch pipeline.
Recording lifecycle misuse is reported through :class:`CallerContractError`
subclasses.
"""


class SessionKitError(Exception):
    """Base exception class for SessionKit errors."""

    pass


class ConfigurationError(SessionKitError):
    """Raised when fixed configuration (endpoint address, credentials) is invalid."""

    pass


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class ValidationError(SessionKitError):
    """Raised when a token endpoint response cannot be accepted."""

    pass


class MalformedResponseError(ValidationError):
    """The response is not a JSON object with a string ``access_token`` field."""

    pass


class ExpiredTokenError(ValidationError):
    """The access token could not be decoded or its expiry has passed."""

    pass


class CredentialError(SessionKitError):
    """Base class for errors surfaced by the credential provider."""

    pass


class RefreshFailedError(CredentialError):
    """A bearer token could not be obtained."""

    pass


# ---------------------------------------------------------------------------
# Recording lifecycle
# ---------------------------------------------------------------------------


class RecordingError(SessionKitError):
    """Base class for recording lifecycle errors."""

    pass


class CallerContractError(RecordingError):
    """The integrating application called the controller out of order."""

    pass


class NoActiveSessionError(CallerContractError):
    """``start_recording`` was called before a session was opened."""

    pass


class RecordingInProgressError(CallerContractError):
    """``start_recording`` was called while a recording is starting or active."""

    pass


class NoActiveRecordingError(CallerContractError):
    """``stop_recording`` was called without a recording handle."""

    pass


class DuplicateStopError(CallerContractError):
    """``stop_recording`` was called twice for the same recording."""

    pass


class RecordingStartError(RecordingError):
    """The engine refused a start request."""

    pass


class StopRecordingError(RecordingError):
    """The engine refused a stop request."""

    pass


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EngineError(SessionKitError):
    """Base class for capture/upload engine errors."""

    pass


class EngineStartError(EngineError):
    """Starting, configuring or resuming the engine failed."""

    pass


class RecorderStateError(EngineError):
    """A recorder handle was used in a state that does not allow it."""

    pass
