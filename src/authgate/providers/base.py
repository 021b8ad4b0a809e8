"""Base protocol for identity provider implementations.

The provider is the network boundary: it issues primary-credential and
second-factor requests and reports failures as :class:`ProviderError`
carrying the provider's ``auth/...`` code. It does no classification and
keeps no session state; both belong to the credential session client.

Example:
    >>> provider = IdentityToolkitProvider(api_key="...")
    >>> try:
    ...     session = await provider.sign_in_with_password("a@example.com", "pw")
    ... except ProviderError as exc:
    ...     exc.code
    'auth/multi-factor-auth-required'
"""

from typing import Protocol, runtime_checkable

from authgate.models import Session


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol defining the identity provider interface.

    Every method is a single network round trip. ``attestation_token`` is the
    current attestation token (None when attestation is not required) and
    must be forwarded with the request.

    Sign-in for an account with an enrolled second factor raises
    ``ProviderError("auth/multi-factor-auth-required")`` whose payload holds
    ``pending_credential`` (str) and ``hints`` (list of SecondFactorHint).
    """

    PROVIDER_TYPE: str

    async def sign_in_with_password(
        self,
        email: str,
        password: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        """Sign in with primary credentials.

        Raises:
            ProviderError: On any provider or transport failure, including
                the second-factor-required signal.
        """
        ...

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        """Create an account and return its first session."""
        ...

    async def send_password_reset(
        self,
        email: str,
        *,
        attestation_token: str | None = None,
    ) -> None:
        """Send a password reset message to the account's email."""
        ...

    async def sign_out(self, session: Session) -> None:
        """Invalidate the session upstream where the provider supports it."""
        ...

    async def start_phone_challenge(
        self,
        pending_credential: str,
        enrollment_id: str,
        verification_token: str,
        *,
        attestation_token: str | None = None,
    ) -> str:
        """Send a verification code to an enrolled phone.

        Args:
            pending_credential: Resolver token from the sign-in attempt.
            enrollment_id: ``SecondFactorHint.uid`` of the chosen phone.
            verification_token: Bot-verification token from the widget.
            attestation_token: Current attestation token.

        Returns:
            Verification id identifying the dispatched code.
        """
        ...

    async def finalize_phone_challenge(
        self,
        pending_credential: str,
        verification_id: str,
        code: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        """Complete sign-in with the code the user received."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
