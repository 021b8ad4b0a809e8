"""Authentication flow controller.

Presentation-agnostic state behind a login page: which form is showing, what
the user typed, the message to show, and which actions are allowed. A UI (or
the CLI) renders :attr:`FlowController.form` and calls the action methods.

Actions never raise classified failures; they record the user-facing
message in ``form.error`` and return None. Starting an action while another
is in flight raises :class:`~authgate.exceptions.ActionInProgressError`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum

from authgate.client import CredentialSessionClient
from authgate.errors import ErrorKind, Operation
from authgate.exceptions import ActionInProgressError, AuthError, ResolverMisuseError
from authgate.logging import flow_log_context, get_logger
from authgate.mfa import MFAState, MultiFactorResolver
from authgate.models import SecondFactorHint, SecondFactorRequired, Session
from authgate.widget.backend import Container
from authgate.widget.manager import VerificationWidgetManager, WidgetHandle

LOG = get_logger(__name__)

SIGN_UP_SUCCESS = "Account created successfully! Please log in."
LOGIN_SUCCESS = "Login successful!"
CODE_SENT_MESSAGE = "Verification code sent. Enter the code below."


class FlowMode(StrEnum):
    LOGIN = "login"
    SIGN_UP = "sign_up"
    PASSWORD_RESET = "password_reset"
    MFA_PROMPT = "mfa_prompt"


_ERROR_TITLES: dict[FlowMode, str] = {
    FlowMode.LOGIN: "Login Error",
    FlowMode.SIGN_UP: "Sign Up Error",
    FlowMode.PASSWORD_RESET: "Reset Password Error",
    FlowMode.MFA_PROMPT: "MFA Error",
}


@dataclass
class FormState:
    """What the current form shows."""

    email: str = ""
    password: str = field(default="", repr=False)
    verification_code: str = field(default="", repr=False)
    error: str | None = None
    error_kind: ErrorKind | None = None
    success: str | None = None
    loading_message: str | None = None


ResolverFactory = Callable[
    [CredentialSessionClient, VerificationWidgetManager, Container], MultiFactorResolver
]


class FlowController:
    """Drives the login, sign-up, password-reset and second-factor forms.

    Args:
        client: Credential session client.
        widgets: Verification widget manager.
        container: Container the verification widget renders into.
        resolver_factory: Builds the resolver for a second-factor attempt.
    """

    def __init__(
        self,
        client: CredentialSessionClient,
        widgets: VerificationWidgetManager,
        container: Container,
        *,
        resolver_factory: ResolverFactory = MultiFactorResolver,
    ) -> None:
        self.client = client
        self.widgets = widgets
        self.container = container
        self._resolver_factory = resolver_factory

        self.mode = FlowMode.LOGIN
        self.form = FormState()
        self.resolver: MultiFactorResolver | None = None
        self.busy = False
        self._abandoned = False

    @property
    def is_ready(self) -> bool:
        return self.client.is_ready

    @property
    def can_submit(self) -> bool:
        """Mutating actions are allowed: client ready and nothing in flight."""
        return self.is_ready and not self.busy

    @property
    def widget(self) -> WidgetHandle | None:
        return self.widgets.current(self.container)

    @property
    def can_send_code(self) -> bool:
        if not self.can_submit or self.resolver is None:
            return False
        handle = self.widget
        if handle is None or not handle.is_ready:
            return False
        state = self.resolver.state
        return state is MFAState.HINTS_OFFERED or (
            state is MFAState.FAILED and not self.resolver.is_terminal
        )

    @property
    def error_title(self) -> str:
        return _ERROR_TITLES[self.mode]

    # ------------------------------------------------------------------
    # Mode switching
    # ------------------------------------------------------------------

    def switch_mode(self, mode: FlowMode) -> None:
        """Show another form, clearing everything the previous one held.

        Raises:
            ActionInProgressError: While an action is in flight.
        """
        if self.busy:
            raise ActionInProgressError(f"cannot switch to {mode} while an action is in flight")
        self._apply_mode(mode)

    def show_login(self) -> None:
        self.switch_mode(FlowMode.LOGIN)

    def show_sign_up(self) -> None:
        self.switch_mode(FlowMode.SIGN_UP)

    def show_password_reset(self) -> None:
        self.switch_mode(FlowMode.PASSWORD_RESET)

    def toggle_sign_up(self) -> None:
        self.switch_mode(FlowMode.LOGIN if self.mode is FlowMode.SIGN_UP else FlowMode.SIGN_UP)

    def _apply_mode(self, mode: FlowMode) -> None:
        if self.resolver is not None:
            # The widget stays mounted for the next attempt
            self.resolver.cancel()
            self.resolver = None
        self.form = FormState()
        previous, self.mode = self.mode, mode
        if previous is not mode:
            LOG.debug("flow_mode_changed", previous=previous, mode=mode)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _action(self, operation: Operation, loading_message: str) -> AsyncIterator[None]:
        if self.busy:
            raise ActionInProgressError(f"cannot start {operation}: another action is in flight")
        self.busy = True
        self._abandoned = False
        self.form.error = None
        self.form.error_kind = None
        self.form.success = None
        self.form.loading_message = loading_message
        try:
            with flow_log_context(flow_mode=str(self.mode), operation=str(operation)):
                yield
        except AuthError as exc:
            if self._abandoned:
                LOG.debug("flow_action_abandoned", operation=operation, error_code=exc.code)
                return
            self.form.error = exc.user_message
            self.form.error_kind = exc.kind
            self.form.loading_message = None
            LOG.info(
                "flow_action_failed",
                mode=self.mode,
                operation=operation,
                kind=exc.kind,
                error_code=exc.code,
            )
        finally:
            self.busy = False

    async def submit(self) -> Session | SecondFactorRequired | None:
        """Run the primary action of the current form."""
        if self.mode is FlowMode.SIGN_UP:
            await self.sign_up()
            return None
        if self.mode is FlowMode.PASSWORD_RESET:
            await self.reset_password()
            return None
        if self.mode is FlowMode.MFA_PROMPT:
            return await self.verify_code()
        return await self.login()

    async def login(self) -> Session | SecondFactorRequired | None:
        """Sign in with the form's email and password.

        Returns:
            The session, SecondFactorRequired when the second-factor prompt
            is now showing, or None on failure (see ``form.error``).
        """
        result: Session | SecondFactorRequired | None = None
        async with self._action(Operation.SIGN_IN, "Logging in..."):
            result = await self.client.sign_in(self.form.email, self.form.password)
            if isinstance(result, SecondFactorRequired):
                self._apply_mode(FlowMode.MFA_PROMPT)
                self.resolver = self._resolver_factory(self.client, self.widgets, self.container)
                self.resolver.begin(result)
            else:
                self.form.loading_message = LOGIN_SUCCESS
        return result if self.form.error is None else None

    async def sign_up(self) -> Session | None:
        """Create an account, then show the login form with a success message."""
        session: Session | None = None
        async with self._action(Operation.SIGN_UP, "Creating account..."):
            session = await self.client.sign_up(
                self.form.email, self.form.password, activate=False
            )
            self._apply_mode(FlowMode.LOGIN)
            self.form.success = SIGN_UP_SUCCESS
        return session

    async def reset_password(self) -> bool:
        """Request a password reset for the form's email."""
        email = self.form.email
        sent = False
        async with self._action(Operation.PASSWORD_RESET, "Sending password reset email..."):
            await self.client.request_password_reset(email)
            self.form.loading_message = None
            self.form.success = (
                f"Password reset email sent to {email}. "
                "Please check your inbox (and spam folder)."
            )
            sent = True
        return sent

    def select_hint(self, hint: SecondFactorHint) -> None:
        self._require_resolver().select_hint(hint)

    async def send_code(self, hint: SecondFactorHint | None = None) -> str | None:
        """Send a verification code to the selected (or given) phone."""
        resolver = self._require_resolver()
        verification_id: str | None = None
        async with self._action(Operation.SEND_CODE, "Sending verification code..."):
            verification_id = await resolver.dispatch_code(hint)
            self.form.loading_message = None
            self.form.success = CODE_SENT_MESSAGE
        return verification_id

    async def verify_code(self, code: str | None = None) -> Session | None:
        """Verify the entered code and complete sign-in."""
        resolver = self._require_resolver()
        session: Session | None = None
        async with self._action(Operation.VERIFY_CODE, "Verifying code..."):
            session = await resolver.submit_code(
                code if code is not None else self.form.verification_code
            )
            self.form.verification_code = ""
            self.form.loading_message = LOGIN_SUCCESS
        return session

    def request_new_code(self) -> None:
        """Discard the sent code and go back to factor selection."""
        self._require_resolver().request_new_code()
        self.form.verification_code = ""
        self.form.error = None
        self.form.error_kind = None
        self.form.success = None
        self.form.loading_message = None

    def cancel_mfa(self) -> None:
        """Abandon the second-factor attempt and return to login.

        Allowed while a code is being sent or verified: the pending request is
        cancelled and its outcome is not reported on the login form.
        """
        if self.mode is not FlowMode.MFA_PROMPT:
            self.switch_mode(FlowMode.LOGIN)
            return
        if self.busy:
            self._abandoned = True
        self._apply_mode(FlowMode.LOGIN)

    def _require_resolver(self) -> MultiFactorResolver:
        if self.mode is not FlowMode.MFA_PROMPT or self.resolver is None:
            raise ResolverMisuseError("no second-factor challenge in progress")
        return self.resolver

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> WidgetHandle | None:
        """Acquire the verification widget for this flow's container."""
        try:
            handle = await self.widgets.acquire(self.container)
        except AuthError as exc:
            self.form.error = exc.user_message
            self.form.error_kind = exc.kind
            LOG.warning("verification_widget_unavailable", kind=exc.kind, error_code=exc.code)
            return None
        return handle

    def unmount(self) -> None:
        """Cancel any second-factor attempt and dispose the widget."""
        if self.resolver is not None:
            self.resolver.cancel()
            self.resolver = None
        handle = self.widget
        if handle is not None:
            self.widgets.dispose(handle)
        self.container.detach()
