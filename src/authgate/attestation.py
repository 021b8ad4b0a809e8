"""App attestation (App Check) token sources.

When the backend enforces attestation, every mutating request must carry an
attestation token. Missing attestation is a distinct ``NOT_READY`` condition
rather than a network failure: the client refuses to send anything until the
attestation source reports ready.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

import httpx

from authgate.errors import ATTESTATION_UNAVAILABLE, NETWORK_REQUEST_FAILED, Operation
from authgate.exceptions import AuthError, NotReadyError
from authgate.logging import get_logger
from authgate.providers.identity_toolkit import error_code_from_response

LOG = get_logger(__name__)

DEFAULT_APP_CHECK_URL = "https://firebaseappcheck.googleapis.com"

# Refresh this many seconds before the provider-declared expiry.
_REFRESH_MARGIN = 60.0


@runtime_checkable
class AttestationProvider(Protocol):
    """Source of attestation tokens gating mutating operations."""

    @property
    def is_ready(self) -> bool:
        """Whether a token can be supplied without a failure."""
        ...

    async def initialize(self) -> None:
        """Obtain the first token. Failures leave the source not ready."""
        ...

    async def get_token(self) -> str | None:
        """Return the current token, or None when attestation is not required.

        Raises:
            NotReadyError: If attestation is required but unavailable.
        """
        ...


class NoAttestation:
    """Attestation is not enforced; always ready, never sends a token."""

    is_ready = True

    async def initialize(self) -> None:
        return None

    async def get_token(self) -> str | None:
        return None


class StaticAttestation:
    """A fixed token supplied by the application; not ready when empty."""

    def __init__(self, token: str | None) -> None:
        self._token = token.strip() if token else None

    @property
    def is_ready(self) -> bool:
        return bool(self._token)

    async def initialize(self) -> None:
        if not self._token:
            LOG.warning("attestation_token_missing")

    async def get_token(self) -> str | None:
        if not self._token:
            raise NotReadyError.from_code(ATTESTATION_UNAVAILABLE, operation=Operation.ATTESTATION)
        return self._token


def _parse_ttl(ttl: str | None) -> float:
    """Parse a protobuf duration string such as ``"3600s"``."""
    if not ttl:
        return 3600.0
    try:
        return float(ttl.rstrip("s"))
    except ValueError:
        return 3600.0


class DebugTokenAttestation:
    """Exchanges an App Check debug token for short-lived attestation tokens.

    Meant for local development against a project that enforces App Check:
    register the debug token in the provider console and set
    ``AUTHGATE_APP_CHECK_DEBUG_TOKEN``.

    Args:
        debug_token: Debug token registered for the app.
        project_id: Provider project id.
        app_id: Provider app id.
        api_key: Project web API key.
        base_url: App Check REST root.
        http: Optional pre-built httpx client.
    """

    def __init__(
        self,
        debug_token: str,
        *,
        project_id: str,
        app_id: str,
        api_key: str,
        base_url: str = DEFAULT_APP_CHECK_URL,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._debug_token = debug_token
        self._url = (
            f"{base_url.rstrip('/')}/v1/projects/{project_id}/apps/{app_id}:exchangeDebugToken"
        )
        self._api_key = api_key
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self._owns_http = http is None
        self._token: str | None = None
        self._expires_at = 0.0
        self.last_error: AuthError | None = None

    @property
    def is_ready(self) -> bool:
        return self._token is not None

    async def _exchange(self) -> None:
        try:
            response = await self._http.post(
                self._url,
                params={"key": self._api_key},
                json={"debugToken": self._debug_token},
            )
        except httpx.TransportError as exc:
            raise AuthError.from_code(
                NETWORK_REQUEST_FAILED, str(exc), operation=Operation.ATTESTATION
            ) from exc
        if response.is_error:
            code, message = error_code_from_response(response)
            raise AuthError.from_code(code, message, operation=Operation.ATTESTATION)

        data = response.json()
        self._token = data["token"]
        self._expires_at = time.monotonic() + _parse_ttl(data.get("ttl"))
        LOG.info("attestation_token_exchanged", ttl=data.get("ttl"))

    async def initialize(self) -> None:
        try:
            await self._exchange()
            self.last_error = None
        except AuthError as exc:
            self.last_error = exc
            self._token = None
            LOG.error(
                "attestation_initialization_failed",
                error_code=exc.code,
                kind=exc.kind,
                hint=exc.user_message,
            )

    async def get_token(self) -> str | None:
        if self._token is None:
            raise NotReadyError.from_code(ATTESTATION_UNAVAILABLE, operation=Operation.ATTESTATION)
        if time.monotonic() >= self._expires_at - _REFRESH_MARGIN:
            await self._exchange()
        return self._token

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
