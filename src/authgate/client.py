"""Credential session client.

Wraps an :class:`~authgate.providers.base.IdentityProvider` with everything the
provider itself does not do: a readiness gate in front of every network call,
attestation tokens, a per-call timeout, classification of provider failures
into :class:`~authgate.exceptions.AuthError`, and the current session with
change notifications.

Sign-in for an account with an enrolled second factor does not fail; it
returns :class:`~authgate.models.SecondFactorRequired` to be resolved by a
:class:`~authgate.mfa.MultiFactorResolver`.
"""

from __future__ import annotations

import asyncio
import dataclasses
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from authgate.attestation import AttestationProvider, NoAttestation
from authgate.errors import (
    ATTESTATION_UNAVAILABLE,
    MFA_REQUIRED,
    PROVIDER_UNCONFIGURED,
    TIMEOUT,
    Detail,
    Operation,
)
from authgate.exceptions import AuthError, NotReadyError, ProviderError
from authgate.logging import get_logger
from authgate.models import SecondFactorHint, SecondFactorRequired, Session
from authgate.providers.base import IdentityProvider

LOG = get_logger(__name__)

T = TypeVar("T")

SessionListener = Callable[[Session | None], None]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Provider codes meaning the held session is no longer valid upstream.
SESSION_INVALIDATING_CODES = frozenset(
    {
        "auth/user-token-expired",
        "auth/user-disabled",
        "auth/invalid-user-token",
    }
)


class CredentialSessionClient:
    """Primary-credential operations and session tracking.

    Args:
        provider: Identity provider performing the network round trips.
        attestation: Attestation token source (defaults to none required).
        timeout: Seconds allowed for each provider call, attestation included.
        min_password_length: Local minimum for new passwords.
        conceal_unknown_accounts: Report password reset for an unknown email as success.
        configured: False when provider configuration is incomplete; every
            operation then fails with NOT_READY.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        attestation: AttestationProvider | None = None,
        *,
        timeout: float = 30.0,
        min_password_length: int = 6,
        conceal_unknown_accounts: bool = False,
        configured: bool = True,
    ) -> None:
        self._provider = provider
        self._attestation = attestation or NoAttestation()
        self._timeout = timeout
        self._min_password_length = min_password_length
        self._conceal_unknown_accounts = conceal_unknown_accounts
        self._configured = configured
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    @property
    def provider(self) -> IdentityProvider:
        return self._provider

    @property
    def attestation(self) -> AttestationProvider:
        return self._attestation

    @property
    def is_ready(self) -> bool:
        """Whether provider connectivity and attestation are both ready."""
        return self._configured and self._attestation.is_ready

    def ensure_ready(self, operation: Operation) -> None:
        """Raise NotReadyError if any network call would be refused.

        Raises:
            NotReadyError: Provider unconfigured or attestation not ready.
        """
        if not self._configured:
            raise NotReadyError.from_code(PROVIDER_UNCONFIGURED, operation=operation)
        if not self._attestation.is_ready:
            raise NotReadyError.from_code(ATTESTATION_UNAVAILABLE, operation=operation)

    # ------------------------------------------------------------------
    # Session tracking
    # ------------------------------------------------------------------

    def current_session(self) -> Session | None:
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session-change listener.

        The listener is called with the new session (or None) whenever the
        current session changes. Returns a function that unregisters it.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def invalidate(self, reason: str = "invalidated") -> None:
        """Drop the current session (e.g., after provider-side revocation)."""
        if self._session is None:
            return
        LOG.info("session_invalidated", uid=self._session.uid, reason=reason)
        self._set_session(None)

    def _set_session(self, session: Session | None) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as exc:  # noqa: BLE001
                LOG.error("session_listener_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _call(
        self,
        operation: Operation,
        request: Callable[[str | None], Awaitable[T]],
    ) -> T:
        """Run one provider request behind the readiness gate and timeout.

        Raises:
            NotReadyError: Before any network call, when not ready.
            AuthError: The classified provider failure.
            ProviderError: Only for the second-factor signal during sign-in.
        """
        self.ensure_ready(operation)
        try:
            async with asyncio.timeout(self._timeout):
                token = await self._attestation.get_token()
                return await request(token)
        except TimeoutError as exc:
            LOG.warning("provider_call_timed_out", operation=operation, timeout=self._timeout)
            raise AuthError.from_code(
                TIMEOUT, f"no response within {self._timeout:g}s", operation=operation
            ) from exc
        except ProviderError as exc:
            if exc.code == MFA_REQUIRED and operation is Operation.SIGN_IN:
                raise
            if exc.code in SESSION_INVALIDATING_CODES:
                self.invalidate(reason=exc.code)
            error = AuthError.from_code(exc.code, exc.message, operation=operation)
            LOG.info(
                "provider_call_failed",
                operation=operation,
                error_code=exc.code,
                kind=error.kind,
            )
            raise error from exc

    def _validate_email(self, email: str, operation: Operation) -> None:
        if not EMAIL_PATTERN.match(email or ""):
            raise AuthError.from_code("auth/invalid-email", operation=operation)

    async def sign_in(self, email: str, password: str) -> Session | SecondFactorRequired:
        """Sign in with primary credentials.

        Returns:
            The new session, or SecondFactorRequired when a second factor
            must be resolved first.

        Raises:
            AuthError: Classified failure (unknown accounts and wrong
                passwords are indistinguishable: INVALID_CREDENTIAL).
        """
        log = LOG.bind(operation=Operation.SIGN_IN)
        try:
            session = await self._call(
                Operation.SIGN_IN,
                lambda token: self._provider.sign_in_with_password(
                    email, password, attestation_token=token
                ),
            )
        except ProviderError as exc:
            required = self._second_factor_required(exc, email)
            log.info(
                "second_factor_required",
                hint_count=len(required.hints),
                phone_hint_count=len(required.phone_hints),
            )
            return required

        log.info("signed_in", uid=session.uid)
        self._set_session(session)
        return session

    @staticmethod
    def _second_factor_required(exc: ProviderError, email: str) -> SecondFactorRequired:
        pending = exc.payload.get("pending_credential")
        if not pending:
            raise AuthError.from_code(
                exc.code, "second factor required without a resolver", operation=Operation.SIGN_IN
            ) from exc
        hints: list[SecondFactorHint] = list(exc.payload.get("hints") or ())
        return SecondFactorRequired(resolver_token=pending, hints=tuple(hints), email=email)

    async def sign_up(self, email: str, password: str, *, activate: bool = True) -> Session:
        """Create an account.

        Identifier format and password length are checked locally first, so
        malformed input never reaches the provider.

        Args:
            email: New account email.
            password: New account password.
            activate: Make the returned session the current session.

        Raises:
            AuthError: INVALID_INPUT for local validation failures, CONFLICT
                for an existing account, or another classified failure.
        """
        self._validate_email(email, Operation.SIGN_UP)
        if len(password or "") < self._min_password_length:
            raise AuthError.from_code(
                "auth/weak-password",
                f"Password should be at least {self._min_password_length} characters",
                operation=Operation.SIGN_UP,
            )

        session = await self._call(
            Operation.SIGN_UP,
            lambda token: self._provider.sign_up(email, password, attestation_token=token),
        )
        LOG.info("account_created", uid=session.uid, activated=activate)
        if activate:
            self._set_session(session)
        return session

    async def request_password_reset(self, email: str) -> None:
        """Ask the provider to send a password reset message.

        Raises:
            AuthError: INVALID_INPUT (account_not_found) for an unknown email,
                unless unknown accounts are concealed.
        """
        self._validate_email(email, Operation.PASSWORD_RESET)
        try:
            await self._call(
                Operation.PASSWORD_RESET,
                lambda token: self._provider.send_password_reset(email, attestation_token=token),
            )
        except AuthError as exc:
            if self._conceal_unknown_accounts and exc.error.detail is Detail.ACCOUNT_NOT_FOUND:
                LOG.info("password_reset_unknown_account_concealed")
                return
            raise
        LOG.info("password_reset_requested")

    async def sign_out(self, session: Session | None = None) -> None:
        """Sign out the given (or current) session.

        The local session is dropped once the provider call completes, even
        when it fails.
        """
        target = session or self._session
        if target is None:
            return
        try:
            await self._call(Operation.SIGN_OUT, lambda _token: self._provider.sign_out(target))
        finally:
            if self._session is not None and self._session.uid == target.uid:
                self._set_session(None)
            LOG.info("signed_out", uid=target.uid)

    async def start_phone_challenge(
        self,
        resolver_token: str,
        hint: SecondFactorHint,
        verification_token: str,
    ) -> str:
        """Send a verification code to the phone behind ``hint``.

        Returns:
            The verification id of the dispatched code.
        """
        verification_id = await self._call(
            Operation.SEND_CODE,
            lambda token: self._provider.start_phone_challenge(
                resolver_token, hint.uid, verification_token, attestation_token=token
            ),
        )
        LOG.info("verification_code_sent", hint=hint.label)
        return verification_id

    async def resolve_phone_challenge(
        self,
        resolver_token: str,
        verification_id: str,
        code: str,
    ) -> Session:
        """Complete a second-factor sign-in and make it the current session."""
        session = await self._call(
            Operation.VERIFY_CODE,
            lambda token: self._provider.finalize_phone_challenge(
                resolver_token, verification_id, code, attestation_token=token
            ),
        )
        if not session.second_factor:
            session = dataclasses.replace(session, second_factor=True)
        LOG.info("second_factor_resolved", uid=session.uid)
        self._set_session(session)
        return session
