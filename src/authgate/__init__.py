"""authgate - email/password sign-in with a phone second factor.

Client-side authentication flows against a hosted identity provider:
primary-credential sign-in, sign-up and password reset, phone-based
second-factor challenges gated by a bot-verification widget, and app
attestation readiness.

This package provides:
- A total classifier mapping provider error codes onto a small taxonomy
- A credential session client with readiness gating and session events
- A verification widget manager (one widget per container, expiry aware)
- A multi-factor resolver state machine for phone challenges
- A presentation-agnostic flow controller for login pages and the CLI

Example:
    >>> from authgate import AuthContext, Container, TokenSourceBackend, get_settings
    >>> backend = TokenSourceBackend(fetch_recaptcha_token)
    >>> async with AuthContext.from_settings(get_settings(), backend=backend) as auth:
    ...     flow = auth.flow(Container("login"))
    ...     await flow.mount()
    ...     flow.form.email, flow.form.password = "you@example.com", "secret"
    ...     result = await flow.login()
"""

from authgate.client import CredentialSessionClient
from authgate.config import AuthgateSettings, get_settings
from authgate.context import AuthContext
from authgate.errors import ClassifiedError, ErrorKind, Operation, SecurityReason, classify
from authgate.exceptions import (
    ActionInProgressError,
    AuthError,
    AuthgateError,
    NoEnrolledFactorError,
    NotReadyError,
    ProviderError,
    ResolverMisuseError,
    WidgetUnavailableError,
)
from authgate.flow import FlowController, FlowMode, FormState
from authgate.mfa import MFAState, MultiFactorResolver
from authgate.models import SecondFactorHint, SecondFactorRequired, Session
from authgate.providers import IdentityProvider, get_provider, list_providers, register_provider
from authgate.widget import (
    Container,
    TokenSourceBackend,
    VerificationBackend,
    VerificationWidgetManager,
    WidgetHandle,
    WidgetState,
)

__version__ = "0.3.0"

__all__ = [
    # Version
    "__version__",
    # Context and configuration
    "AuthContext",
    "AuthgateSettings",
    "get_settings",
    # Flows
    "CredentialSessionClient",
    "FlowController",
    "FlowMode",
    "FormState",
    "MFAState",
    "MultiFactorResolver",
    # Models
    "SecondFactorHint",
    "SecondFactorRequired",
    "Session",
    # Errors
    "ClassifiedError",
    "ErrorKind",
    "Operation",
    "SecurityReason",
    "classify",
    "ActionInProgressError",
    "AuthError",
    "AuthgateError",
    "NoEnrolledFactorError",
    "NotReadyError",
    "ProviderError",
    "ResolverMisuseError",
    "WidgetUnavailableError",
    # Identity providers
    "IdentityProvider",
    "get_provider",
    "list_providers",
    "register_provider",
    # Verification widgets
    "Container",
    "TokenSourceBackend",
    "VerificationBackend",
    "VerificationWidgetManager",
    "WidgetHandle",
    "WidgetState",
]
