"""Tests for the credential session client."""

import asyncio

import pytest

from authgate.attestation import StaticAttestation
from authgate.client import CredentialSessionClient
from authgate.errors import (
    NETWORK_REQUEST_FAILED,
    Detail,
    ErrorKind,
    SecurityReason,
)
from authgate.exceptions import AuthError, NotReadyError
from authgate.models import SecondFactorRequired, Session


class TestReadiness:
    @pytest.mark.asyncio
    async def test_unconfigured_client_makes_no_calls(self, provider):
        client = CredentialSessionClient(provider, configured=False)
        assert not client.is_ready

        with pytest.raises(NotReadyError) as exc_info:
            await client.sign_in("a@example.com", "pw")

        assert exc_info.value.error.detail is Detail.PROVIDER_UNCONFIGURED
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_attestation_not_ready(self, provider):
        client = CredentialSessionClient(provider, StaticAttestation(None))
        assert not client.is_ready

        for call in (
            client.sign_in("a@example.com", "pw"),
            client.sign_up("a@example.com", "password1"),
            client.request_password_reset("a@example.com"),
        ):
            with pytest.raises(NotReadyError) as exc_info:
                await call
            assert exc_info.value.error.detail is Detail.ATTESTATION_UNAVAILABLE
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_attestation_token_forwarded(self, provider):
        client = CredentialSessionClient(provider, StaticAttestation("app-check"))
        await client.sign_in("a@example.com", "pw")
        assert provider.calls[0][2] == "app-check"


class TestSignIn:
    @pytest.mark.asyncio
    async def test_success_sets_session(self, client):
        changes = []
        client.subscribe(changes.append)

        session = await client.sign_in("a@example.com", "pw")

        assert isinstance(session, Session)
        assert client.current_session() is session
        assert changes == [session]

    @pytest.mark.asyncio
    async def test_second_factor_required(self, client, provider, mfa_required):
        provider.require_mfa(mfa_required.hints)

        result = await client.sign_in("a@example.com", "pw")

        assert isinstance(result, SecondFactorRequired)
        assert result.resolver_token == "pending-1"
        assert result.email == "a@example.com"
        assert len(result.phone_hints) == 2
        assert client.current_session() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["auth/user-not-found", "auth/wrong-password"])
    async def test_unknown_account_indistinguishable(self, client, provider, code):
        provider.fail("sign_in_with_password", code)
        with pytest.raises(AuthError) as exc_info:
            await client.sign_in("a@example.com", "pw")
        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIAL
        assert exc_info.value.user_message == (
            "Invalid credentials. Please check your email and password."
        )

    @pytest.mark.asyncio
    async def test_network_failure(self, client, provider):
        provider.fail("sign_in_with_password", NETWORK_REQUEST_FAILED)
        with pytest.raises(AuthError) as exc_info:
            await client.sign_in("a@example.com", "pw")
        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_timeout(self, provider):
        client = CredentialSessionClient(provider, timeout=0.01)
        gate = provider.hold("sign_in_with_password")

        with pytest.raises(AuthError) as exc_info:
            await client.sign_in("a@example.com", "pw")

        gate.set()
        assert exc_info.value.kind is ErrorKind.NETWORK
        assert exc_info.value.error.detail is Detail.TIMEOUT

    @pytest.mark.asyncio
    async def test_app_check_rejection(self, client, provider):
        provider.fail("sign_in_with_password", "auth/firebase-app-check-token-is-invalid")
        with pytest.raises(AuthError) as exc_info:
            await client.sign_in("a@example.com", "pw")
        assert exc_info.value.kind is ErrorKind.SECURITY_CHECK
        assert exc_info.value.error.reason is SecurityReason.REJECTED


class TestSignUp:
    @pytest.mark.asyncio
    async def test_success(self, client, provider):
        session = await client.sign_up("new@example.com", "password1")
        assert session.uid == "uid-new"
        assert client.current_session() is session
        assert provider.count("sign_up") == 1

    @pytest.mark.asyncio
    async def test_without_activation(self, client):
        await client.sign_up("new@example.com", "password1", activate=False)
        assert client.current_session() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", ["", "not-an-email", "a@b", "a b@example.com"])
    async def test_malformed_email_rejected_locally(self, client, provider, email):
        with pytest.raises(AuthError) as exc_info:
            await client.sign_up(email, "password1")
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        assert exc_info.value.error.detail is Detail.INVALID_IDENTIFIER
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_short_password_rejected_locally(self, client, provider):
        with pytest.raises(AuthError) as exc_info:
            await client.sign_up("new@example.com", "12345")
        assert exc_info.value.error.detail is Detail.WEAK_PASSWORD
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_existing_account_is_conflict(self, client, provider):
        provider.fail("sign_up", "auth/email-already-in-use")
        with pytest.raises(AuthError) as exc_info:
            await client.sign_up("taken@example.com", "password1")
        assert exc_info.value.kind is ErrorKind.CONFLICT


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_success(self, client, provider):
        await client.request_password_reset("a@example.com")
        assert provider.calls[0][:2] == ("send_password_reset", ("a@example.com",))

    @pytest.mark.asyncio
    async def test_unknown_account(self, client, provider):
        provider.fail("send_password_reset", "auth/user-not-found")
        with pytest.raises(AuthError) as exc_info:
            await client.request_password_reset("nobody@example.com")
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        assert exc_info.value.error.detail is Detail.ACCOUNT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_account_concealed(self, provider):
        client = CredentialSessionClient(provider, conceal_unknown_accounts=True)
        provider.fail("send_password_reset", "auth/user-not-found")
        await client.request_password_reset("nobody@example.com")

    @pytest.mark.asyncio
    async def test_malformed_email(self, client, provider):
        with pytest.raises(AuthError):
            await client.request_password_reset("nope")
        assert provider.calls == []


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_sign_out(self, client, provider):
        changes = []
        await client.sign_in("a@example.com", "pw")
        client.subscribe(changes.append)

        await client.sign_out()

        assert client.current_session() is None
        assert changes == [None]
        assert provider.count("sign_out") == 1

    @pytest.mark.asyncio
    async def test_sign_out_without_session_is_noop(self, client, provider):
        await client.sign_out()
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_sign_out_clears_session_even_on_failure(self, client, provider):
        await client.sign_in("a@example.com", "pw")
        provider.fail("sign_out", NETWORK_REQUEST_FAILED)
        with pytest.raises(AuthError):
            await client.sign_out()
        assert client.current_session() is None

    @pytest.mark.asyncio
    async def test_expired_token_invalidates_session(self, client, provider):
        changes = []
        await client.sign_in("a@example.com", "pw")
        client.subscribe(changes.append)
        provider.fail("sign_up", "auth/user-token-expired")

        with pytest.raises(AuthError) as exc_info:
            await client.sign_up("other@example.com", "password1")

        assert exc_info.value.kind is ErrorKind.EXPIRED
        assert client.current_session() is None
        assert changes == [None]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, client):
        changes = []
        unsubscribe = client.subscribe(changes.append)
        unsubscribe()
        unsubscribe()
        await client.sign_in("a@example.com", "pw")
        assert changes == []

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_sign_in(self, client):
        def broken(session):
            raise RuntimeError("boom")

        client.subscribe(broken)
        session = await client.sign_in("a@example.com", "pw")
        assert client.current_session() is session


class TestPhoneChallenge:
    @pytest.mark.asyncio
    async def test_start_and_resolve(self, client, provider, mfa_required):
        hint = mfa_required.phone_hints[0]
        verification_id = await client.start_phone_challenge("pending-1", hint, "recaptcha")
        assert verification_id == "vid-1"
        assert provider.calls[0][1] == ("pending-1", "enroll-1", "recaptcha")

        session = await client.resolve_phone_challenge("pending-1", verification_id, "123456")
        assert session.second_factor
        assert client.current_session() is session

    @pytest.mark.asyncio
    async def test_rate_limited_dispatch(self, client, provider, mfa_required):
        provider.fail("start_phone_challenge", "auth/too-many-requests")
        with pytest.raises(AuthError) as exc_info:
            await client.start_phone_challenge("pending-1", mfa_required.hints[0], "recaptcha")
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.user_message.startswith("Too many requests")

    @pytest.mark.asyncio
    async def test_resolve_timeout(self, provider):
        client = CredentialSessionClient(provider, timeout=0.01)
        gate = provider.hold("finalize_phone_challenge")
        with pytest.raises(AuthError) as exc_info:
            await client.resolve_phone_challenge("pending-1", "vid-1", "123456")
        gate.set()
        await asyncio.sleep(0)
        assert exc_info.value.error.detail is Detail.TIMEOUT
