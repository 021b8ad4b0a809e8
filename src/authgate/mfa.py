"""Second-factor (phone) challenge resolution.

A :class:`MultiFactorResolver` drives one sign-in attempt that came back as
:class:`~authgate.models.SecondFactorRequired` through to a session::

    IDLE -> HINTS_OFFERED -> CODE_SENT -> VERIFYING -> RESOLVED
                 ^   |            |           |
                 |   +-> FAILED <-+-----------+
                 +-- request_new_code()

    any non-terminal state -> CANCELLED   (cancel())

Rules the resolver enforces:

- Only phone factors are offered. An attempt with none is FAILED with
  ``NO_ENROLLED_FACTOR``, which is terminal for the attempt.
- A code is dispatched only with a Ready verification widget; the selected
  hint is stored before anything is awaited, so a WidgetUnavailable failure
  keeps the user's selection.
- Dispatch from CODE_SENT or VERIFYING is a :class:`ResolverMisuseError`;
  a new code is requested explicitly with :meth:`request_new_code`.
- A wrong code leaves the challenge in CODE_SENT so the user can retry; an
  expired code clears the verification id and moves to FAILED. An expired
  sign-in session is terminal: the resolver token is released and the user
  must sign in again.
- When the widget expires while a dispatch is pending or hints are on offer,
  the pending dispatch is cancelled, the state becomes FAILED (security check,
  expired), and the widget is disposed and re-acquired. A challenge already in
  CODE_SENT keeps its verification id; only the widget is replaced.
- Reaching RESOLVED or CANCELLED releases the resolver token and the
  verification id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from authgate.client import CredentialSessionClient
from authgate.errors import (
    NO_ENROLLED_FACTOR,
    STALE_VERIFICATION,
    WIDGET_EXPIRED,
    WIDGET_UNAVAILABLE,
    ClassifiedError,
    ErrorKind,
    Operation,
    classify,
)
from authgate.exceptions import (
    AuthError,
    NoEnrolledFactorError,
    ResolverMisuseError,
    WidgetUnavailableError,
)
from authgate.logging import get_logger
from authgate.models import SecondFactorHint, SecondFactorRequired, Session
from authgate.widget.backend import Container
from authgate.widget.manager import VerificationWidgetManager, WidgetHandle

LOG = get_logger(__name__)


class MFAState(StrEnum):
    IDLE = "idle"
    HINTS_OFFERED = "hints_offered"
    CODE_SENT = "code_sent"
    VERIFYING = "verifying"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class MFAChallenge:
    """An in-progress challenge against one enrolled phone.

    Attributes:
        hint: Factor the code was (or is being) sent to.
        verification_id: Identifies the dispatched code; None once consumed.
        code: Code most recently submitted.
    """

    hint: SecondFactorHint
    verification_id: str | None = field(default=None, repr=False)
    code: str = field(default="", repr=False)


class MultiFactorResolver:
    """Resolves one second-factor sign-in attempt.

    Args:
        client: Credential session client performing the provider calls.
        widgets: Widget manager owning the verification widget.
        container: Container the verification widget lives in.
        auto_reacquire: Re-acquire a widget automatically after it expires.
    """

    def __init__(
        self,
        client: CredentialSessionClient,
        widgets: VerificationWidgetManager,
        container: Container,
        *,
        auto_reacquire: bool = True,
    ) -> None:
        self._client = client
        self._widgets = widgets
        self._container = container
        self._auto_reacquire = auto_reacquire

        self.state = MFAState.IDLE
        self.hints: tuple[SecondFactorHint, ...] = ()
        self.selected_hint: SecondFactorHint | None = None
        self.challenge: MFAChallenge | None = None
        self.failure: ClassifiedError | None = None
        self.session: Session | None = None

        self._resolver_token: str | None = None
        self._in_flight: asyncio.Task[Any] | None = None
        self._interrupted_by: AuthError | None = None
        self._recovery: asyncio.Task[None] | None = None
        self._unsubscribe = widgets.subscribe(self._on_widget_expired)

    def __repr__(self) -> str:
        return f"MultiFactorResolver(state={self.state}, hints={len(self.hints)})"

    @property
    def verification_id(self) -> str | None:
        return self.challenge.verification_id if self.challenge else None

    @property
    def has_resolver_token(self) -> bool:
        return self._resolver_token is not None

    @property
    def is_terminal(self) -> bool:
        if self.state in (MFAState.RESOLVED, MFAState.CANCELLED):
            return True
        return self.state is MFAState.FAILED and self.failure is not None and (
            self.failure.is_terminal
        )

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self, required: SecondFactorRequired) -> tuple[SecondFactorHint, ...]:
        """Offer the attempt's phone factors.

        Returns:
            The phone hints on offer.

        Raises:
            ResolverMisuseError: If this resolver was already started.
            NoEnrolledFactorError: If no phone factor is enrolled.
        """
        if self.state is not MFAState.IDLE:
            raise ResolverMisuseError(f"resolver already started (state={self.state})")

        hints = required.phone_hints
        skipped = len(required.hints) - len(hints)
        if skipped:
            LOG.info("non_phone_factors_skipped", count=skipped)

        if not hints:
            error = NoEnrolledFactorError(
                classify(NO_ENROLLED_FACTOR, operation=Operation.SIGN_IN)
            )
            self._fail(error.error)
            LOG.warning("no_enrolled_phone_factor", reported_hints=len(required.hints))
            raise error

        self._resolver_token = required.resolver_token
        self.hints = hints
        self.state = MFAState.HINTS_OFFERED
        LOG.info("second_factor_hints_offered", count=len(hints))
        return hints

    def select_hint(self, hint: SecondFactorHint) -> None:
        """Record the factor the next code should be sent to."""
        self._require_dispatchable()
        if hint not in self.hints:
            raise ResolverMisuseError(f"hint {hint.uid!r} is not on offer")
        self.selected_hint = hint

    async def dispatch_code(self, hint: SecondFactorHint | None = None) -> str:
        """Send a verification code to the selected phone.

        Args:
            hint: Factor to use; defaults to the current selection.

        Returns:
            The verification id of the dispatched code.

        Raises:
            ResolverMisuseError: Outside HINTS_OFFERED / recoverable FAILED,
                or while another dispatch is pending.
            WidgetUnavailableError: No Ready verification widget.
            AuthError: Classified dispatch failure (state becomes FAILED).
        """
        self._require_dispatchable()
        hint = hint or self.selected_hint
        if hint is None:
            raise ResolverMisuseError("no second factor selected")
        self.select_hint(hint)

        handle = self._widgets.current(self._container)
        if handle is None or not handle.is_ready:
            raise WidgetUnavailableError.from_code(
                WIDGET_UNAVAILABLE,
                "no ready verification widget",
                operation=Operation.SEND_CODE,
            )
        self._client.ensure_ready(Operation.SEND_CODE)

        resolver_token = self._resolver_token
        assert resolver_token is not None
        self._interrupted_by = None
        task = asyncio.get_running_loop().create_task(
            self._send_code(handle, resolver_token, hint)
        )
        self._in_flight = task
        self._widgets.track(handle, task)
        LOG.info("verification_code_dispatching", hint=hint.label, widget_id=handle.widget_id)

        try:
            verification_id = await task
        except asyncio.CancelledError:
            if self._caller_cancelled():
                raise
            raise self._interruption(Operation.SEND_CODE) from None
        except AuthError as exc:
            if exc.kind is not ErrorKind.NOT_READY:
                self._fail(exc.error)
            raise
        finally:
            if self._in_flight is task:
                self._in_flight = None
            self._widgets.reset(handle)

        self.challenge = MFAChallenge(hint=hint, verification_id=verification_id)
        self.failure = None
        self.state = MFAState.CODE_SENT
        return verification_id

    async def _send_code(
        self,
        handle: WidgetHandle,
        resolver_token: str,
        hint: SecondFactorHint,
    ) -> str:
        verification_token = await self._widgets.verify(handle)
        return await self._client.start_phone_challenge(resolver_token, hint, verification_token)

    async def submit_code(self, code: str, verification_id: str | None = None) -> Session:
        """Verify the code the user received.

        Args:
            code: Code entered by the user.
            verification_id: Id the code belongs to; defaults to the current one.
                A mismatch means the code is for a superseded challenge.

        Returns:
            The established session.

        Raises:
            ResolverMisuseError: While another verification is pending.
            AuthError: EXPIRED for a missing or stale verification id (no
                provider call), INVALID_CREDENTIAL for a wrong code (state stays
                CODE_SENT), or another classified failure.
        """
        if self.state is MFAState.VERIFYING or self.is_busy:
            raise ResolverMisuseError("a verification is already in progress")

        current_id = self.verification_id
        if (
            self.state is not MFAState.CODE_SENT
            or current_id is None
            or (verification_id is not None and verification_id != current_id)
        ):
            LOG.info("stale_verification_rejected", state=self.state)
            raise AuthError.from_code(STALE_VERIFICATION, operation=Operation.VERIFY_CODE)

        code = (code or "").strip()
        if not code:
            raise AuthError.from_code(
                "auth/missing-verification-code", operation=Operation.VERIFY_CODE
            )

        challenge = self.challenge
        assert challenge is not None and self._resolver_token is not None
        challenge.code = code
        self.state = MFAState.VERIFYING
        self._interrupted_by = None
        task = asyncio.get_running_loop().create_task(
            self._client.resolve_phone_challenge(self._resolver_token, current_id, code)
        )
        self._in_flight = task

        try:
            session = await task
        except asyncio.CancelledError:
            if self._caller_cancelled():
                raise
            raise self._interruption(Operation.VERIFY_CODE) from None
        except AuthError as exc:
            if self.state is MFAState.VERIFYING:
                self._after_rejected_code(exc.error)
            raise
        finally:
            if self._in_flight is task:
                self._in_flight = None

        self.session = session
        self.failure = None
        self.state = MFAState.RESOLVED
        self._release()
        LOG.info("second_factor_challenge_resolved", uid=session.uid)
        return session

    def _after_rejected_code(self, error: ClassifiedError) -> None:
        challenge = self.challenge
        assert challenge is not None
        challenge.code = ""
        self.failure = error
        if error.kind is ErrorKind.EXPIRED:
            challenge.verification_id = None
            self.challenge = None
            self.selected_hint = None
            self._fail(error)
            LOG.info(
                "verification_code_expired", error_code=error.code, terminal=error.is_terminal
            )
        else:
            self.state = MFAState.CODE_SENT
            LOG.info("verification_code_rejected", kind=error.kind, error_code=error.code)

    def request_new_code(self) -> None:
        """Discard the current challenge and return to hint selection.

        Cancels a pending dispatch or verification. The resolver token is kept,
        so a new code can be sent for the same sign-in attempt.
        """
        if self.state is MFAState.IDLE or self.is_terminal:
            raise ResolverMisuseError(f"cannot request a new code in state {self.state}")
        self._interrupt(AuthError.from_code(STALE_VERIFICATION, operation=Operation.VERIFY_CODE))
        self.challenge = None
        self.selected_hint = None
        self.failure = None
        self.state = MFAState.HINTS_OFFERED
        LOG.info("verification_code_discarded")

    def cancel(self, *, dispose_widget: bool = False) -> None:
        """Abandon the attempt. Idempotent; a no-op once resolved."""
        if self.state in (MFAState.RESOLVED, MFAState.CANCELLED):
            return
        self._interrupt(AuthError.from_code(STALE_VERIFICATION, operation=Operation.VERIFY_CODE))
        self.challenge = None
        self.selected_hint = None
        self.hints = ()
        self.state = MFAState.CANCELLED
        self._release()
        if dispose_widget:
            handle = self._widgets.current(self._container)
            if handle is not None:
                self._widgets.dispose(handle)
        LOG.info("second_factor_challenge_cancelled")

    async def wait_for_widget(self) -> WidgetHandle:
        """Wait for a pending widget re-acquisition, then return a Ready widget."""
        if self._recovery is not None and not self._recovery.done():
            await asyncio.shield(self._recovery)
        return await self._widgets.acquire(self._container)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_dispatchable(self) -> None:
        if self.is_busy:
            raise ResolverMisuseError("a request is already in progress")
        if self.state is MFAState.HINTS_OFFERED:
            return
        if self.state is MFAState.FAILED and not self.is_terminal and self.hints:
            return
        if self.state in (MFAState.CODE_SENT, MFAState.VERIFYING):
            raise ResolverMisuseError(
                "a code was already sent; request a new code before sending another"
            )
        raise ResolverMisuseError(f"cannot send a code in state {self.state}")

    def _fail(self, error: ClassifiedError) -> None:
        self.failure = error
        self.state = MFAState.FAILED
        if error.is_terminal:
            self._release()

    @staticmethod
    def _caller_cancelled() -> bool:
        caller = asyncio.current_task()
        return caller is not None and caller.cancelling() > 0

    def _interruption(self, operation: Operation) -> AuthError:
        """Error for a pending request cancelled by expiry, cancel() or a new code."""
        if self._interrupted_by is not None:
            return self._interrupted_by
        return AuthError.from_code(WIDGET_EXPIRED, operation=operation)

    def _interrupt(self, reason: AuthError) -> None:
        if self.is_busy:
            assert self._in_flight is not None
            self._interrupted_by = reason
            self._in_flight.cancel()
            LOG.debug("pending_request_cancelled", state=self.state)
        self._in_flight = None

    def _release(self) -> None:
        self._resolver_token = None
        if self.challenge is not None:
            self.challenge.verification_id = None
            self.challenge = None
        if self._recovery is not None and not self._recovery.done():
            self._recovery.cancel()
        self._recovery = None
        self._unsubscribe()

    def _on_widget_expired(self, handle: WidgetHandle, error: AuthError) -> None:
        if handle.container is not self._container:
            return
        if self.state is MFAState.IDLE or self.is_terminal:
            return

        if self.state in (MFAState.HINTS_OFFERED, MFAState.FAILED):
            # Any pending dispatch has already been cancelled by the manager
            self._interrupted_by = error
            self._in_flight = None
            self._fail(error.error)
            LOG.info("second_factor_dispatch_expired", widget_id=handle.widget_id)
        else:
            LOG.info("widget_expired_after_code_sent", state=self.state)

        self._widgets.dispose(handle)
        if self._auto_reacquire:
            self._recovery = asyncio.get_running_loop().create_task(self._reacquire())

    async def _reacquire(self) -> None:
        try:
            handle = await self._widgets.acquire(self._container)
        except AuthError as exc:
            LOG.warning("verification_widget_reacquire_failed", error_code=exc.code)
            if not self.is_terminal and self.state is MFAState.FAILED:
                self.failure = exc.error
            return
        LOG.info("verification_widget_reacquired", widget_id=handle.widget_id)
