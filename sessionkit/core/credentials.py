"""Bearer token acquisition for the capture/upload engine.

The engine asks for a token whenever one of its requests needs
authentication, possibly several times per upload and possibly while an
earlier request is still in flight.  Every request performs one fresh
machine-to-machine exchange against the token endpoint; nothing is cached
here.

Main public pieces
------------------
:func:`validate_token_response`
    Pure check of a raw endpoint response.  Returns a :class:`Credential`
    or raises :class:`~sessionkit.core.errors.ValidationError`.

:class:`CredentialFetcher`
    One HTTP round trip per :meth:`~CredentialFetcher.fetch` call.

:class:`CredentialProvider`
    Callback style ``provide_token(on_success, on_failure)`` used by the
    engine, plus an awaitable :meth:`~CredentialProvider.token`.
"""

import asyncio
import json
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, Optional, Union

import httpx
import jwt
from loguru import logger

from .config import GRANT_TYPE, TOKEN_TIMEOUT
from .errors import (
    ConfigurationError,
    CredentialError,
    ExpiredTokenError,
    MalformedResponseError,
    RefreshFailedError,
    ValidationError,
)

TokenCallback = Callable[[str], None]
FailureCallback = Callable[[Exception], None]
TokenRequest = Union["asyncio.Task[None]", "Future[None]"]


def _parse_endpoint(value: str) -> httpx.URL:
    """Parse the token endpoint address or raise :class:`ConfigurationError`."""
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as error:
        raise ConfigurationError(f"Invalid authentication domain URL: {value!r}") from error
    if url.scheme not in ('http', 'https') or not url.host:
        raise ConfigurationError(f"Invalid authentication domain URL: {value!r}")
    return url


@dataclass
class AuthSettings:
    """Client credentials for the token endpoint."""

    token_url: str
    client_id: str
    client_secret: str
    audience: str
    grant_type: str = GRANT_TYPE
    timeout: float = TOKEN_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthSettings":
        """Build and validate auth settings from mapping."""
        required_fields = ("token_url", "client_id", "client_secret", "audience")
        missing = [name for name in required_fields if not data.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required auth configuration fields: {', '.join(missing)}"
            )

        settings = cls(
            token_url=str(data["token_url"]),
            client_id=str(data["client_id"]),
            client_secret=str(data["client_secret"]),
            audience=str(data["audience"]),
            grant_type=str(data.get("grant_type") or GRANT_TYPE),
            timeout=float(data.get("timeout") or TOKEN_TIMEOUT),
        )
        _parse_endpoint(settings.token_url)
        return settings

    def request_body(self) -> Dict[str, str]:
        """Return the JSON body posted to the token endpoint."""
        return {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "audience": self.audience,
        }


@dataclass(frozen=True)
class Credential:
    """A bearer token together with the expiry decoded from its claims."""

    token: str = field(repr=False)
    expiry: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` while *now* is before the expiry."""
        if now is None:
            now = datetime.now(timezone.utc)
        return now < self.expiry


def validate_token_response(
    raw: Union[bytes, str],
    now: Optional[datetime] = None,
) -> Credential:
    """Check a token endpoint response and extract the credential.

    Args:
        raw: Response body.
        now: Reference time (timezone aware).  Defaults to the current UTC time.

    Returns:
        The validated :class:`Credential`.

    Raises:
        MalformedResponseError: Body is not a JSON object with a string
            ``access_token``.
        ExpiredTokenError: Token cannot be decoded, carries no numeric
            ``exp`` claim, or ``exp`` is not in the future.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as error:
        raise MalformedResponseError("No valid access token returned") from error

    if not isinstance(payload, dict) or not isinstance(payload.get("access_token"), str):
        raise MalformedResponseError("No valid access token returned")
    access_token = payload["access_token"]

    try:
        claims = jwt.decode(
            access_token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError as error:
        raise ExpiredTokenError("Access token could not be decoded") from error

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise ExpiredTokenError("Access token has no expiry claim")

    expiry = datetime.fromtimestamp(exp, tz=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    if expiry <= now:
        raise ExpiredTokenError("Received access token has expired")
    return Credential(token=access_token, expiry=expiry)


class CredentialFetcher:
    """Exchanges client credentials for a bearer token.

    Each call to :meth:`fetch` opens its own :class:`httpx.AsyncClient`, so
    concurrent fetches share no connection state.  There is no retry here;
    the engine re-requests a token as part of its own upload retry loop.
    """

    def __init__(
        self,
        settings: AuthSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            settings: Client credentials and endpoint.
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``.

        Raises:
            ConfigurationError: If the endpoint address is malformed.
        """
        self._settings = settings
        self._url = _parse_endpoint(settings.token_url)
        self._transport = transport

    @property
    def url(self) -> str:
        """Return the token endpoint address."""
        return str(self._url)

    @property
    def timeout(self) -> float:
        return self._settings.timeout

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs: Any) -> "CredentialFetcher":
        """Build fetcher directly from dictionary config."""
        return cls(AuthSettings.from_dict(data), **kwargs)

    async def fetch(self) -> Credential:
        """Perform one token request.

        Raises:
            RefreshFailedError: On transport failure, an error status, or a
                response that does not validate.
        """
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._settings.timeout,
            ) as client:
                response = await client.post(
                    self._url,
                    json=self._settings.request_body(),
                    headers={"content-type": "application/json"},
                )
                response.raise_for_status()
        except httpx.HTTPError as error:
            logger.warning(f"Failed to get data from access token request: {error}")
            raise RefreshFailedError(f"Token request failed: {error}") from error

        try:
            credential = validate_token_response(response.content)
        except ValidationError as error:
            logger.warning(f"Rejected access token response: {error}")
            raise RefreshFailedError(str(error)) from error

        logger.debug(f"Fetched access token valid until {credential.expiry.isoformat()}")
        return credential


class CredentialProvider:
    """Hands out bearer tokens to the engine on demand.

    Invocations are independent: there is no single-flight coalescing and
    completions may arrive in any order.
    """

    def __init__(
        self,
        fetcher: CredentialFetcher,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            fetcher: Fetcher performing the network exchange.
            loop: Event loop that runs requests made through
                :meth:`provide_token`.  When ``None`` the caller must already
                be running inside an event loop.
        """
        self._fetcher = fetcher
        self._loop = loop

    async def token(self) -> str:
        """Fetch a fresh token and return the bearer string."""
        credential = await self._fetcher.fetch()
        return credential.token

    def provide_token(
        self,
        on_success: TokenCallback,
        on_failure: FailureCallback,
    ) -> TokenRequest:
        """Request a token; exactly one of the callbacks fires once.

        Args:
            on_success: Called with the bearer string.
            on_failure: Called with a :class:`RefreshFailedError`.

        Returns:
            The scheduled request.  An ``asyncio.Task`` when called inside a
            running loop without a bound loop, else a
            ``concurrent.futures.Future`` that can be waited on from any
            thread.
        """
        coro = self._resolve(on_success, on_failure)
        if self._loop is not None:
            return asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        return running.create_task(coro)

    async def _resolve(self, on_success: TokenCallback, on_failure: FailureCallback) -> None:
        try:
            token = await self.token()
        except asyncio.CancelledError:
            self._deliver_failure(on_failure, RefreshFailedError("Token request cancelled"))
            raise
        except CredentialError as error:
            self._deliver_failure(on_failure, error)
            return
        except Exception as error:
            logger.exception("Unexpected error while fetching access token")
            failure = RefreshFailedError(f"Token request failed: {error}")
            failure.__cause__ = error
            self._deliver_failure(on_failure, failure)
            return

        try:
            on_success(token)
        except Exception:
            logger.exception("Token success callback raised")

    @staticmethod
    def _deliver_failure(on_failure: FailureCallback, error: Exception) -> None:
        try:
            on_failure(error)
        except Exception:
            logger.exception("Token failure callback raised")


class EventLoopThread:
    """Runs an asyncio event loop on a daemon thread.

    Lets synchronous engine threads call :meth:`CredentialProvider.provide_token`
    without owning a loop themselves.
    """

    def __init__(self, name: str = "sessionkit-credentials") -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        """Run *coro* on the loop and block the calling thread for the result."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    @staticmethod
    async def _cancel_pending() -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel pending requests, then stop the loop and join the thread.

        Cancelled :meth:`CredentialProvider.provide_token` requests still
        report through their failure callback before the loop goes away.
        """
        if self.loop.is_closed():
            return
        if self._thread.is_alive():
            try:
                self.run(self._cancel_pending(), timeout=timeout)
            except FutureTimeoutError:
                logger.warning('Timed out cancelling pending token requests')
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout)
        if not self._thread.is_alive():
            self.loop.close()
