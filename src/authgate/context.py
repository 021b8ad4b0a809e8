"""Explicitly constructed authentication context.

An :class:`AuthContext` owns the provider, the attestation source, the
credential session client and the widget manager, and closes them together.
Applications build one (usually from settings) and pass it to whatever needs
it; nothing is held in module globals.

Example:
    >>> backend = TokenSourceBackend(prompt_for_token)
    >>> async with AuthContext.from_settings(get_settings(), backend=backend) as auth:
    ...     flow = auth.flow(Container("login"))
    ...     await flow.mount()
"""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType

import httpx

from authgate.attestation import (
    AttestationProvider,
    DebugTokenAttestation,
    NoAttestation,
    StaticAttestation,
)
from authgate.client import CredentialSessionClient, SessionListener
from authgate.config import AuthgateSettings
from authgate.flow import FlowController
from authgate.logging import get_logger
from authgate.models import Session
from authgate.providers import get_provider
from authgate.providers.base import IdentityProvider
from authgate.widget.backend import Container, VerificationBackend
from authgate.widget.manager import VerificationWidgetManager

LOG = get_logger(__name__)


def build_attestation(
    settings: AuthgateSettings,
    http: httpx.AsyncClient | None = None,
) -> AttestationProvider:
    """Pick the attestation source matching the settings.

    No site key means attestation is not enforced. With a site key, a debug
    token (plus app id) is exchanged for attestation tokens; without one the
    source stays not ready and every mutating operation fails with NOT_READY.
    """
    if not settings.attestation_required:
        LOG.warning(
            "attestation_skipped",
            reason="AUTHGATE_RECAPTCHA_SITE_KEY is not set; App Check will not be enforced",
        )
        return NoAttestation()

    debug_token = settings.app_check_debug_token
    if debug_token is not None and debug_token.get_secret_value():
        if settings.app_id and settings.project_id and settings.api_key is not None:
            return DebugTokenAttestation(
                debug_token.get_secret_value(),
                project_id=settings.project_id,
                app_id=settings.app_id,
                api_key=settings.api_key.get_secret_value(),
                base_url=settings.app_check_url,
                http=http,
            )
        LOG.error(
            "attestation_debug_token_unusable",
            missing="AUTHGATE_APP_ID, AUTHGATE_PROJECT_ID or AUTHGATE_API_KEY",
        )

    LOG.error(
        "attestation_unavailable",
        site_key_set=True,
        debug_token_set=debug_token is not None,
    )
    return StaticAttestation(None)


class AuthContext:
    """Provider handle shared by every flow of an application.

    Args:
        client: Credential session client.
        widgets: Verification widget manager.
        http: httpx client to close with the context, if owned.
    """

    def __init__(
        self,
        client: CredentialSessionClient,
        widgets: VerificationWidgetManager,
        *,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.client = client
        self.widgets = widgets
        self._http = http
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: AuthgateSettings,
        *,
        backend: VerificationBackend,
        http: httpx.AsyncClient | None = None,
    ) -> AuthContext:
        """Build a context from settings.

        Incomplete provider settings do not raise: the context is built but
        reports not ready, and the missing variables are logged.
        """
        missing = settings.missing_keys()
        if missing:
            LOG.error(
                "provider_configuration_incomplete",
                missing=missing,
                hint="Check your .env file or environment variables",
            )

        owned_http = http is None
        http = http or httpx.AsyncClient(timeout=settings.provider_timeout)
        api_key = settings.api_key.get_secret_value() if settings.api_key else ""
        provider: IdentityProvider = get_provider(
            "identity_toolkit",
            api_key=api_key,
            base_url=settings.identity_toolkit_url,
            http=http,
        )
        client = CredentialSessionClient(
            provider,
            build_attestation(settings, http),
            timeout=settings.provider_timeout,
            min_password_length=settings.min_password_length,
            conceal_unknown_accounts=settings.conceal_unknown_accounts,
            configured=not missing,
        )
        return cls(client, VerificationWidgetManager(backend), http=http if owned_http else None)

    @property
    def is_ready(self) -> bool:
        return self.client.is_ready

    def current_session(self) -> Session | None:
        return self.client.current_session()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session-change listener; returns the unsubscribe function."""
        return self.client.subscribe(listener)

    def flow(self, container: Container) -> FlowController:
        """Create a flow controller rendering its widget into ``container``."""
        return FlowController(self.client, self.widgets, container)

    async def start(self) -> None:
        """Initialize attestation and log the resulting readiness."""
        await self.client.attestation.initialize()
        LOG.info(
            "auth_context_started",
            provider=self.client.provider.PROVIDER_TYPE,
            ready=self.client.is_ready,
            attestation_ready=self.client.attestation.is_ready,
        )
        if not self.client.is_ready:
            LOG.error("auth_context_not_ready", hint="Sign-in actions are disabled")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.widgets.dispose_all()
        await self.client.provider.aclose()
        aclose = getattr(self.client.attestation, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> AuthContext:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
