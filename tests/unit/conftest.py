"""Shared fakes and fixtures for unit tests."""

import asyncio
from typing import Any

import pytest

from authgate.client import CredentialSessionClient
from authgate.errors import MFA_REQUIRED
from authgate.exceptions import ProviderError
from authgate.models import SecondFactorHint, SecondFactorRequired, Session
from authgate.widget import Container, TokenSourceBackend, VerificationWidgetManager

PHONE_HINT = SecondFactorHint(
    uid="enroll-1", display_name="Work phone", phone_number="+1******1234"
)
SECOND_PHONE_HINT = SecondFactorHint(uid="enroll-2", phone_number="+44*******9876")
TOTP_HINT = SecondFactorHint(uid="enroll-3", display_name="Authenticator", factor_id="totp")


class FakeProvider:
    """Scriptable in-memory identity provider.

    Queue failures per method with ``fail()``; block a method until released
    with ``hold()``. Every call is recorded in ``calls`` as (method, args, token).
    """

    PROVIDER_TYPE = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], str | None]] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.started: dict[str, asyncio.Event] = {}
        self.mfa: SecondFactorRequired | None = None
        self.verification_count = 0
        self.closed = False

    def fail(self, method: str, code: str, message: str = "") -> None:
        self.failures.setdefault(method, []).append(ProviderError(code, message))

    def require_mfa(self, hints: tuple[SecondFactorHint, ...], token: str = "pending-1") -> None:
        self.mfa = SecondFactorRequired(resolver_token=token, hints=hints)

    def hold(self, method: str) -> asyncio.Event:
        """Block ``method`` until the returned event is set."""
        self.started[method] = asyncio.Event()
        self.gates[method] = asyncio.Event()
        return self.gates[method]

    def count(self, method: str) -> int:
        return sum(1 for name, _, _ in self.calls if name == method)

    async def _enter(self, method: str, args: tuple[Any, ...], token: str | None) -> None:
        self.calls.append((method, args, token))
        if method in self.started:
            self.started[method].set()
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    async def sign_in_with_password(
        self, email: str, password: str, *, attestation_token: str | None = None
    ) -> Session:
        await self._enter("sign_in_with_password", (email, password), attestation_token)
        if self.mfa is not None:
            raise ProviderError(
                MFA_REQUIRED,
                payload={"pending_credential": self.mfa.resolver_token, "hints": self.mfa.hints},
            )
        return Session(uid="uid-1", email=email, id_token="id-token", refresh_token="refresh")

    async def sign_up(
        self, email: str, password: str, *, attestation_token: str | None = None
    ) -> Session:
        await self._enter("sign_up", (email, password), attestation_token)
        return Session(uid="uid-new", email=email, id_token="id-token", refresh_token="refresh")

    async def send_password_reset(
        self, email: str, *, attestation_token: str | None = None
    ) -> None:
        await self._enter("send_password_reset", (email,), attestation_token)

    async def sign_out(self, session: Session) -> None:
        await self._enter("sign_out", (session.uid,), None)

    async def start_phone_challenge(
        self,
        pending_credential: str,
        enrollment_id: str,
        verification_token: str,
        *,
        attestation_token: str | None = None,
    ) -> str:
        await self._enter(
            "start_phone_challenge",
            (pending_credential, enrollment_id, verification_token),
            attestation_token,
        )
        self.verification_count += 1
        return f"vid-{self.verification_count}"

    async def finalize_phone_challenge(
        self,
        pending_credential: str,
        verification_id: str,
        code: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        await self._enter(
            "finalize_phone_challenge",
            (pending_credential, verification_id, code),
            attestation_token,
        )
        return Session(
            uid="uid-1",
            email="user@example.com",
            id_token="mfa-id-token",
            refresh_token="refresh",
            second_factor=True,
        )

    async def aclose(self) -> None:
        self.closed = True


class CountingTokenSource:
    """Token source handing out distinct verification tokens."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        return f"recaptcha-{self.calls}"


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client(provider: FakeProvider) -> CredentialSessionClient:
    return CredentialSessionClient(provider, timeout=5.0)


@pytest.fixture
def token_source() -> CountingTokenSource:
    return CountingTokenSource()


@pytest.fixture
def backend(token_source: CountingTokenSource) -> TokenSourceBackend:
    return TokenSourceBackend(token_source, token_ttl=120.0)


@pytest.fixture
def widgets(backend: TokenSourceBackend) -> VerificationWidgetManager:
    return VerificationWidgetManager(backend)


@pytest.fixture
def container() -> Container:
    return Container("recaptcha-container")


@pytest.fixture
def mfa_required() -> SecondFactorRequired:
    return SecondFactorRequired(
        resolver_token="pending-1",
        hints=(PHONE_HINT, SECOND_PHONE_HINT, TOTP_HINT),
        email="user@example.com",
    )
