"""Provider error classification.

Identity providers report failures with a large vocabulary of string codes
(``auth/wrong-password``, ``auth/too-many-requests``, ``appCheck/recaptcha-error``
and many more). Business logic should never branch on those strings, so
every code is mapped here onto a small closed taxonomy (:class:`ErrorKind`)
with a stable machine-readable kind and a human-readable remediation hint.

The mapping is a total function: exact codes are looked up in a table,
then code families (anything mentioning reCAPTCHA, App Check, network...)
are matched by substring, and whatever is left becomes ``UNKNOWN`` with the
raw code preserved for diagnostics.

Example:
    >>> err = classify("auth/too-many-requests", operation=Operation.SEND_CODE)
    >>> err.kind
    <ErrorKind.RATE_LIMITED: 'rate_limited'>
    >>> err.user_message
    'Too many requests. Please wait a while before trying again.'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    """Closed taxonomy of authentication failures."""

    NETWORK = "network"
    SECURITY_CHECK = "security_check"
    INVALID_CREDENTIAL = "invalid_credential"
    INVALID_INPUT = "invalid_input"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    CONFLICT = "conflict"
    NOT_READY = "not_ready"
    UNKNOWN = "unknown"
    # Raised by the multi-factor resolver only; classify() never returns it.
    NO_ENROLLED_FACTOR = "no_enrolled_factor"


class SecurityReason(StrEnum):
    """Sub-reason attached to ``SECURITY_CHECK`` errors."""

    CONFIG = "config"
    EXPIRED = "expired"
    REJECTED = "rejected"
    UNAUTHORIZED_APP = "unauthorized_app"


class Detail(StrEnum):
    """Finer-grained reason for the non-security kinds."""

    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_DISABLED = "account_disabled"
    INVALID_IDENTIFIER = "invalid_identifier"
    WEAK_PASSWORD = "weak_password"
    MISSING_PASSWORD = "missing_password"
    INVALID_CODE = "invalid_code"
    MISSING_CODE = "missing_code"
    CODE_EXPIRED = "code_expired"
    SESSION_EXPIRED = "session_expired"
    STALE_VERIFICATION = "stale_verification"
    FACTOR_NOT_FOUND = "factor_not_found"
    INVALID_PHONE_NUMBER = "invalid_phone_number"
    TIMEOUT = "timeout"
    WIDGET_UNAVAILABLE = "widget_unavailable"
    ATTESTATION_UNAVAILABLE = "attestation_unavailable"
    PROVIDER_UNCONFIGURED = "provider_unconfigured"


class Operation(StrEnum):
    """User-level operation an error occurred in (shapes the message prefix)."""

    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    PASSWORD_RESET = "password_reset"
    SEND_CODE = "send_code"
    VERIFY_CODE = "verify_code"
    SIGN_OUT = "sign_out"
    WIDGET = "widget"
    ATTESTATION = "attestation"


# Codes minted by authgate itself for conditions detected client-side.
WIDGET_EXPIRED = "authgate/widget-expired"
WIDGET_RENDER_FAILED = "authgate/widget-render-failed"
WIDGET_UNAVAILABLE = "authgate/widget-unavailable"
NOT_READY = "authgate/not-ready"
PROVIDER_UNCONFIGURED = "authgate/provider-unconfigured"
ATTESTATION_UNAVAILABLE = "authgate/attestation-unavailable"
STALE_VERIFICATION = "authgate/stale-verification-id"
NO_ENROLLED_FACTOR = "authgate/no-enrolled-factor"
TIMEOUT = "auth/timeout"
NETWORK_REQUEST_FAILED = "auth/network-request-failed"
MFA_REQUIRED = "auth/multi-factor-auth-required"
INTERNAL_ERROR = "auth/internal-error"

_Entry = tuple[ErrorKind, SecurityReason | Detail | None]

_CODE_TABLE: dict[str, _Entry] = {
    # Connectivity
    NETWORK_REQUEST_FAILED: (ErrorKind.NETWORK, None),
    TIMEOUT: (ErrorKind.NETWORK, Detail.TIMEOUT),
    "appCheck/fetch-network-error": (ErrorKind.NETWORK, None),
    # Primary credentials
    "auth/invalid-credential": (ErrorKind.INVALID_CREDENTIAL, None),
    "auth/invalid-login-credentials": (ErrorKind.INVALID_CREDENTIAL, None),
    "auth/wrong-password": (ErrorKind.INVALID_CREDENTIAL, None),
    "auth/user-disabled": (ErrorKind.INVALID_CREDENTIAL, Detail.ACCOUNT_DISABLED),
    "auth/user-not-found": (ErrorKind.INVALID_INPUT, Detail.ACCOUNT_NOT_FOUND),
    "auth/invalid-email": (ErrorKind.INVALID_INPUT, Detail.INVALID_IDENTIFIER),
    "auth/missing-email": (ErrorKind.INVALID_INPUT, Detail.INVALID_IDENTIFIER),
    "auth/weak-password": (ErrorKind.INVALID_INPUT, Detail.WEAK_PASSWORD),
    "auth/missing-password": (ErrorKind.INVALID_INPUT, Detail.MISSING_PASSWORD),
    "auth/email-already-in-use": (ErrorKind.CONFLICT, None),
    "auth/credential-already-in-use": (ErrorKind.CONFLICT, None),
    # Throttling
    "auth/too-many-requests": (ErrorKind.RATE_LIMITED, None),
    "auth/quota-exceeded": (ErrorKind.RATE_LIMITED, None),
    "appCheck/throttled": (ErrorKind.RATE_LIMITED, None),
    # Second factor
    "auth/invalid-verification-code": (ErrorKind.INVALID_CREDENTIAL, Detail.INVALID_CODE),
    "auth/missing-verification-code": (ErrorKind.INVALID_INPUT, Detail.MISSING_CODE),
    "auth/code-expired": (ErrorKind.EXPIRED, Detail.CODE_EXPIRED),
    "auth/invalid-verification-id": (ErrorKind.EXPIRED, Detail.STALE_VERIFICATION),
    "auth/missing-verification-id": (ErrorKind.EXPIRED, Detail.STALE_VERIFICATION),
    "auth/invalid-multi-factor-session": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    "auth/missing-multi-factor-session": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    "auth/multi-factor-info-not-found": (ErrorKind.INVALID_INPUT, Detail.FACTOR_NOT_FOUND),
    "auth/invalid-phone-number": (ErrorKind.INVALID_INPUT, Detail.INVALID_PHONE_NUMBER),
    "auth/missing-phone-number": (ErrorKind.INVALID_INPUT, Detail.INVALID_PHONE_NUMBER),
    # Session validity
    "auth/user-token-expired": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    "auth/id-token-expired": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    "auth/invalid-user-token": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    "auth/requires-recent-login": (ErrorKind.EXPIRED, Detail.SESSION_EXPIRED),
    # Bot verification / attestation
    "auth/captcha-check-failed": (ErrorKind.SECURITY_CHECK, SecurityReason.REJECTED),
    "auth/invalid-app-credential": (ErrorKind.SECURITY_CHECK, SecurityReason.REJECTED),
    "auth/invalid-recaptcha-token": (ErrorKind.SECURITY_CHECK, SecurityReason.REJECTED),
    "auth/firebase-app-check-token-is-invalid": (
        ErrorKind.SECURITY_CHECK,
        SecurityReason.REJECTED,
    ),
    "auth/missing-app-credential": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "auth/missing-recaptcha-token": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "auth/recaptcha-not-enabled": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "auth/invalid-api-key": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "auth/operation-not-allowed": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "appCheck/recaptcha-error": (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    "auth/app-not-authorized": (ErrorKind.SECURITY_CHECK, SecurityReason.UNAUTHORIZED_APP),
    "auth/unauthorized-domain": (ErrorKind.SECURITY_CHECK, SecurityReason.UNAUTHORIZED_APP),
    WIDGET_EXPIRED: (ErrorKind.SECURITY_CHECK, SecurityReason.EXPIRED),
    WIDGET_RENDER_FAILED: (ErrorKind.SECURITY_CHECK, SecurityReason.CONFIG),
    # Client-side readiness
    NOT_READY: (ErrorKind.NOT_READY, None),
    PROVIDER_UNCONFIGURED: (ErrorKind.NOT_READY, Detail.PROVIDER_UNCONFIGURED),
    ATTESTATION_UNAVAILABLE: (ErrorKind.NOT_READY, Detail.ATTESTATION_UNAVAILABLE),
    WIDGET_UNAVAILABLE: (ErrorKind.NOT_READY, Detail.WIDGET_UNAVAILABLE),
    STALE_VERIFICATION: (ErrorKind.EXPIRED, Detail.STALE_VERIFICATION),
    NO_ENROLLED_FACTOR: (ErrorKind.NO_ENROLLED_FACTOR, None),
}

# During sign-in, account existence must not leak through distinct errors.
_OPERATION_OVERRIDES: dict[Operation, dict[str, _Entry]] = {
    Operation.SIGN_IN: {
        "auth/user-not-found": (ErrorKind.INVALID_CREDENTIAL, None),
        "auth/invalid-email": (ErrorKind.INVALID_CREDENTIAL, None),
    },
}

# Ordered: first matching family wins.
_SECURITY_FAMILIES: list[tuple[tuple[str, ...], SecurityReason]] = [
    (("captcha-expired", "captcha-token-expired"), SecurityReason.EXPIRED),
    (("app-not-authorized", "unauthorized-domain"), SecurityReason.UNAUTHORIZED_APP),
    (("recaptcha", "captcha"), SecurityReason.CONFIG),
    (("app-check", "appcheck", "token-is-invalid"), SecurityReason.REJECTED),
]

_FAILURE_PREFIX: dict[Operation | None, str] = {
    Operation.SIGN_IN: "Authentication failed",
    Operation.SIGN_UP: "Sign up failed",
    Operation.PASSWORD_RESET: "Password reset failed",
    Operation.SEND_CODE: "Failed to send verification code",
    Operation.VERIFY_CODE: "MFA verification failed",
    Operation.SIGN_OUT: "Sign out failed",
    Operation.WIDGET: "Bot verification failed",
    Operation.ATTESTATION: "Attestation failed",
    None: "Request failed",
}

_KIND_HINTS: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: (
        "A network error occurred. Check your internet connection and make sure "
        "firewall, proxy or ad-blocker settings allow access to the identity provider."
    ),
    ErrorKind.INVALID_CREDENTIAL: "Invalid credentials. Please check your email and password.",
    ErrorKind.INVALID_INPUT: "{prefix}: the information provided is not valid ({code}).",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a while before trying again.",
    ErrorKind.EXPIRED: "{prefix}: your request has expired. Please start again.",
    ErrorKind.CONFLICT: (
        "This email address is already registered. Please log in or use a different email."
    ),
    ErrorKind.NOT_READY: (
        "The sign-in service is not ready. Please wait a moment and try again. "
        "If the problem persists, check the logs for configuration errors."
    ),
    ErrorKind.UNKNOWN: "{prefix}: {message} (Code: {code})",
    ErrorKind.NO_ENROLLED_FACTOR: (
        "Multi-factor authentication is required, but you haven't set up a second factor "
        "(like a phone number) yet. Please contact support or your administrator to enroll "
        "a second factor."
    ),
}

_SECURITY_HINTS: dict[SecurityReason, str] = {
    SecurityReason.CONFIG: (
        "{prefix} due to a security check ({code}). There might be an issue with the "
        "reCAPTCHA setup (invalid key, domain not authorized, API not enabled) or the "
        "network connection. Please try again or contact support."
    ),
    SecurityReason.EXPIRED: (
        "{prefix}: the reCAPTCHA challenge expired ({code}). Please try the action again."
    ),
    SecurityReason.REJECTED: (
        "{prefix} due to a security check ({code}). Ensure App Check is configured "
        "correctly (site key, debug token if local) and your environment is supported. "
        "Refreshing might help. Contact support if the issue persists."
    ),
    SecurityReason.UNAUTHORIZED_APP: (
        "{prefix} due to a security check ({code}). This app is not authorized for this "
        "operation. Check the identity provider project setup and authorized domains."
    ),
}

_DETAIL_HINTS: dict[Detail, str] = {
    Detail.ACCOUNT_NOT_FOUND: (
        "Email address not found or is invalid. Please enter a registered email address."
    ),
    Detail.ACCOUNT_DISABLED: "This account has been disabled. Please contact support.",
    Detail.INVALID_IDENTIFIER: "Invalid email address format.",
    Detail.WEAK_PASSWORD: "Password is too weak. Please choose a stronger password.",
    Detail.MISSING_PASSWORD: "Please enter a password.",
    Detail.INVALID_CODE: "Invalid verification code. Please try again.",
    Detail.MISSING_CODE: "Please enter the verification code sent to your phone.",
    Detail.CODE_EXPIRED: "Verification code has expired. Please request a new one.",
    Detail.STALE_VERIFICATION: (
        "This verification code is no longer valid. Please request a new one."
    ),
    Detail.SESSION_EXPIRED: "Your sign-in session has expired. Please log in again.",
    Detail.FACTOR_NOT_FOUND: (
        "The selected second factor could not be found. Please choose another one."
    ),
    Detail.INVALID_PHONE_NUMBER: "Invalid phone number format provided for MFA.",
    Detail.TIMEOUT: (
        "The identity provider did not respond in time. Check your connection and try again."
    ),
    Detail.WIDGET_UNAVAILABLE: (
        "The reCAPTCHA verifier is not ready. Please wait and try again."
    ),
    Detail.ATTESTATION_UNAVAILABLE: (
        "App Check is not ready. Please wait a moment and try again. If the problem "
        "persists, check the logs for errors."
    ),
    Detail.PROVIDER_UNCONFIGURED: (
        "The identity provider could not be initialized. Check your environment "
        "variables and try again."
    ),
}


@dataclass(frozen=True)
class ClassifiedError:
    """A provider or client-side failure mapped onto the taxonomy.

    Attributes:
        kind: Stable machine-readable category.
        code: Raw provider code (or an ``authgate/...`` code), kept for diagnostics.
        message: Raw provider message, if any.
        reason: Sub-reason for ``SECURITY_CHECK`` errors.
        detail: Finer-grained reason for the other kinds.
        operation: Operation the error occurred in.
    """

    kind: ErrorKind
    code: str
    message: str = ""
    reason: SecurityReason | None = None
    detail: Detail | None = None
    operation: Operation | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the current attempt cannot be resolved client-side.

        A dead second-factor session means the user must sign in again.
        """
        return self.kind is ErrorKind.NO_ENROLLED_FACTOR or self.detail is Detail.SESSION_EXPIRED

    @property
    def user_message(self) -> str:
        """Remediation text for the final user-facing layer."""
        if self.kind is ErrorKind.SECURITY_CHECK and self.reason is not None:
            template = _SECURITY_HINTS[self.reason]
        elif self.detail is not None:
            template = _DETAIL_HINTS[self.detail]
        else:
            template = _KIND_HINTS[self.kind]
        return template.format(
            prefix=_FAILURE_PREFIX[self.operation],
            code=self.code,
            message=self.message or "unexpected error",
        )


def _entry_for(code: str, operation: Operation | None) -> _Entry:
    if operation is not None:
        override = _OPERATION_OVERRIDES.get(operation, {}).get(code)
        if override is not None:
            return override

    entry = _CODE_TABLE.get(code)
    if entry is not None:
        return entry

    lowered = code.lower()
    for needles, reason in _SECURITY_FAMILIES:
        if any(needle in lowered for needle in needles):
            return ErrorKind.SECURITY_CHECK, reason
    if "network" in lowered:
        return ErrorKind.NETWORK, None
    return ErrorKind.UNKNOWN, None


def classify(
    code: str | None,
    message: str = "",
    *,
    operation: Operation | None = None,
) -> ClassifiedError:
    """Map a provider error code onto the taxonomy.

    Args:
        code: Provider error code (``auth/...``, ``appCheck/...`` or ``authgate/...``).
            ``None`` or empty is treated as unknown.
        message: Raw provider message, preserved for diagnostics.
        operation: Operation the error occurred in. Some codes classify
            differently per operation (sign-in never reveals account existence).

    Returns:
        The classified error. Never raises.
    """
    raw = code or "unknown"
    kind, sub = _entry_for(raw, operation)
    return ClassifiedError(
        kind=kind,
        code=raw,
        message=message,
        reason=sub if isinstance(sub, SecurityReason) else None,
        detail=sub if isinstance(sub, Detail) else None,
        operation=operation,
    )


def known_codes() -> frozenset[str]:
    """Return every code with an explicit table entry."""
    return frozenset(_CODE_TABLE)
