"""Process bootstrap: wires configuration, credentials and the engine together."""

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import AppConfig
from .credentials import CredentialFetcher, CredentialProvider, EventLoopThread
from .engine import CaptureEngine
from .errors import EngineStartError
from .events import PermissionResult
from .log import SessionLogger
from .metadata import AppMetadata
from .recording import RecordingController
from .uploads import UploadMonitor


class SessionClient:
    """Owns the components one application run needs.

    Replaces a process-wide engine singleton: the engine is passed in and
    everything built here holds an explicit reference to it.
    """

    def __init__(
        self,
        engine: CaptureEngine,
        app_config: Optional[AppConfig] = None,
        metadata: Optional[AppMetadata] = None,
        session_logger: Optional[SessionLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            engine: Capture/upload engine.
            app_config: Configuration; read from the working directory when omitted.
            metadata: Diagnostics metadata; detected when omitted.
            session_logger: Optional JSONL lifecycle log.
            transport: Optional httpx transport for the token endpoint.

        Raises:
            ConfigurationError: If the ``auth`` section is present but invalid.
        """
        self.engine = engine
        self.app_config = app_config or AppConfig()
        self.metadata = metadata or AppMetadata.detect(self.app_config.get_app_config())
        self.session_logger = session_logger

        self.fetcher: Optional[CredentialFetcher] = None
        self.provider: Optional[CredentialProvider] = None
        self._loop_thread: Optional[EventLoopThread] = None

        auth_config = self.app_config.get_auth_config()
        if auth_config:
            self.fetcher = CredentialFetcher.from_dict(auth_config, transport=transport)
            self._loop_thread = EventLoopThread()
            self.provider = CredentialProvider(self.fetcher, loop=self._loop_thread.loop)
        else:
            logger.warning('Token endpoint not configured: no `auth` config found in .sessionkit.yml')

        self.monitor = UploadMonitor(session_logger)
        self.controller = RecordingController(engine, session_logger=session_logger)
        self.permission_granted: Optional[bool] = None
        self._started = False

    def start(self) -> None:
        """Start the engine, sign the user in and resume uploads.

        Only the first call has any effect.

        Raises:
            EngineStartError: If any engine step fails.
        """
        if self._started:
            logger.debug('Session client already started')
            return

        engine_config = self.app_config.get_engine_config()
        try:
            self.engine.start(
                self.metadata,
                self.provider,
                self.monitor.post,
                str(engine_config.get('partner_id') or ''),
            )
            self.engine.configure(self.user_settings())
            self.engine.resume_uploads()
        except Exception as error:
            logger.error(f'Error starting engine: {error}')
            raise EngineStartError(f'Error starting engine: {error}') from error

        self._started = True
        self.engine.request_record_permission(self._on_permission)

    def user_settings(self) -> Dict[str, Any]:
        settings = self.app_config.get_user_config()
        settings['environment'] = self.app_config.get_engine_config()['environment']
        return settings

    def _on_permission(self, granted: bool) -> None:
        self.permission_granted = granted
        if not granted:
            logger.warning('Recording permission denied')
        self.monitor.post(PermissionResult(granted=granted))

    def close(self) -> None:
        if self._loop_thread is not None:
            self._loop_thread.stop()
            self._loop_thread = None

    def __enter__(self) -> "SessionClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
