"""Custom exceptions for authgate package."""

from __future__ import annotations

from typing import Any

from authgate.errors import ClassifiedError, Detail, ErrorKind, Operation, classify


class AuthgateError(Exception):
    """Base exception class for all authgate errors."""


class ProviderError(AuthgateError):
    """Raised by identity provider implementations.

    Carries the provider's raw error code. Only the credential session client
    catches this; it is converted into an :class:`AuthError` before reaching
    any caller.

    Attributes:
        code: Provider error code (e.g., 'auth/wrong-password').
        message: Raw provider message.
        payload: Extra data attached to the error (the pending credential and
            enrolled factors for ``auth/multi-factor-auth-required``).
    """

    def __init__(self, code: str, message: str = "", payload: dict[str, Any] | None = None) -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.payload = payload or {}


class AuthError(AuthgateError):
    """A classified authentication failure with a user-facing message.

    Example:
        try:
            await client.sign_in(email, password)
        except AuthError as exc:
            show(exc.user_message)
    """

    def __init__(self, error: ClassifiedError) -> None:
        self.error = error
        super().__init__(error.user_message)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def user_message(self) -> str:
        return self.error.user_message

    @classmethod
    def from_code(
        cls,
        code: str,
        message: str = "",
        *,
        operation: Operation | None = None,
    ) -> AuthError:
        """Classify a code and wrap it in the matching exception type."""
        return error_for(classify(code, message, operation=operation))


class NotReadyError(AuthError):
    """Provider connectivity or attestation is not ready; no request was sent."""


class WidgetUnavailableError(NotReadyError):
    """No Ready bot-verification widget is available for the container."""


class NoEnrolledFactorError(AuthError):
    """Second factor required, but the account has no usable enrolled factor."""


class ResolverMisuseError(AuthgateError):
    """An MFA action was invoked in a state that does not allow it."""


class ActionInProgressError(AuthgateError):
    """Another mutating action is already in flight."""


def error_for(error: ClassifiedError) -> AuthError:
    """Build the most specific AuthError subclass for a classified error."""
    if error.kind is ErrorKind.NO_ENROLLED_FACTOR:
        return NoEnrolledFactorError(error)
    if error.kind is ErrorKind.NOT_READY:
        if error.detail is Detail.WIDGET_UNAVAILABLE:
            return WidgetUnavailableError(error)
        return NotReadyError(error)
    return AuthError(error)
