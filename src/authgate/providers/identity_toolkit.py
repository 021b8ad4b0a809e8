"""Google Identity Toolkit (Firebase Authentication) REST provider.

Speaks the ``identitytoolkit.googleapis.com`` REST API over httpx and
translates its server error strings into the ``auth/...`` code vocabulary
the error classifier understands.

Error responses look like::

    {"error": {"code": 400, "message": "WEAK_PASSWORD : Password should be at least 6 characters"}}
"""

from __future__ import annotations

from typing import Any

import httpx

from authgate.errors import INTERNAL_ERROR, MFA_REQUIRED, NETWORK_REQUEST_FAILED, TIMEOUT
from authgate.exceptions import ProviderError
from authgate.logging import get_logger
from authgate.models import PHONE_FACTOR_ID, SecondFactorHint, Session

LOG = get_logger(__name__)

DEFAULT_BASE_URL = "https://identitytoolkit.googleapis.com"
APP_CHECK_HEADER = "X-Firebase-AppCheck"

# ID tokens minted by Identity Toolkit are valid for one hour.
_ID_TOKEN_LIFETIME = 3600

SERVER_CODES: dict[str, str] = {
    "EMAIL_NOT_FOUND": "auth/user-not-found",
    "USER_NOT_FOUND": "auth/user-not-found",
    "INVALID_PASSWORD": "auth/wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "auth/invalid-credential",
    "USER_DISABLED": "auth/user-disabled",
    "INVALID_EMAIL": "auth/invalid-email",
    "MISSING_EMAIL": "auth/missing-email",
    "MISSING_PASSWORD": "auth/missing-password",
    "WEAK_PASSWORD": "auth/weak-password",
    "EMAIL_EXISTS": "auth/email-already-in-use",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "auth/too-many-requests",
    "QUOTA_EXCEEDED": "auth/quota-exceeded",
    "INVALID_CODE": "auth/invalid-verification-code",
    "MISSING_CODE": "auth/missing-verification-code",
    "SESSION_EXPIRED": "auth/code-expired",
    "INVALID_SESSION_INFO": "auth/invalid-verification-id",
    "MISSING_SESSION_INFO": "auth/missing-verification-id",
    "INVALID_MFA_PENDING_CREDENTIAL": "auth/invalid-multi-factor-session",
    "MISSING_MFA_PENDING_CREDENTIAL": "auth/missing-multi-factor-session",
    "MFA_ENROLLMENT_NOT_FOUND": "auth/multi-factor-info-not-found",
    "INVALID_PHONE_NUMBER": "auth/invalid-phone-number",
    "CAPTCHA_CHECK_FAILED": "auth/captcha-check-failed",
    "INVALID_APP_CREDENTIAL": "auth/invalid-app-credential",
    "MISSING_APP_CREDENTIAL": "auth/missing-app-credential",
    "INVALID_RECAPTCHA_TOKEN": "auth/invalid-recaptcha-token",
    "MISSING_RECAPTCHA_TOKEN": "auth/missing-recaptcha-token",
    "RECAPTCHA_NOT_ENABLED": "auth/recaptcha-not-enabled",
    "OPERATION_NOT_ALLOWED": "auth/operation-not-allowed",
    "PASSWORD_LOGIN_DISABLED": "auth/operation-not-allowed",
    "TOKEN_EXPIRED": "auth/user-token-expired",
    "INVALID_ID_TOKEN": "auth/invalid-user-token",
    "INVALID_REFRESH_TOKEN": "auth/invalid-user-token",
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": "auth/requires-recent-login",
    "UNAUTHORIZED_DOMAIN": "auth/unauthorized-domain",
}


def _factor_id(info: dict[str, Any]) -> str:
    if "phoneInfo" in info:
        return PHONE_FACTOR_ID
    if "totpInfo" in info:
        return "totp"
    return "unknown"


def parse_hints(mfa_info: list[dict[str, Any]]) -> list[SecondFactorHint]:
    """Convert the ``mfaInfo`` array of a sign-in response into hints."""
    return [
        SecondFactorHint(
            uid=info.get("mfaEnrollmentId", ""),
            display_name=info.get("displayName") or None,
            phone_number=info.get("phoneInfo"),
            factor_id=_factor_id(info),
        )
        for info in mfa_info
        if isinstance(info, dict)
    ]


def _require(data: dict[str, Any], *keys: str) -> Any:
    """Walk nested ``keys`` of a success body; a missing field is a provider error."""
    value: Any = data
    for key in keys:
        if not isinstance(value, dict) or not value.get(key):
            raise ProviderError(INTERNAL_ERROR, f"response is missing {'.'.join(keys)}")
        value = value[key]
    return value


def error_code_from_response(response: httpx.Response) -> tuple[str, str]:
    """Extract an ``auth/...`` code and detail message from an error response.

    Returns:
        Tuple of (code, message).
    """
    try:
        body = response.json()
    except ValueError:
        return INTERNAL_ERROR, response.text[:200]

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        raw = str(error.get("message", ""))
    elif isinstance(error, str):
        raw = error
    else:
        raw = ""
    server_code, _, detail = raw.partition(" : ")
    server_code = server_code.strip()

    if server_code in SERVER_CODES:
        return SERVER_CODES[server_code], detail.strip()
    if raw.startswith("API key not valid"):
        return "auth/invalid-api-key", raw
    if response.status_code == 401 and "App Check" in raw:
        return "auth/firebase-app-check-token-is-invalid", raw
    if server_code and server_code.replace("_", "").isalnum() and server_code.isupper():
        return f"auth/{server_code.lower().replace('_', '-')}", detail.strip()
    return INTERNAL_ERROR, raw


class IdentityToolkitProvider:
    """Identity provider backed by the Identity Toolkit REST API.

    Args:
        api_key: Project web API key.
        base_url: API root, overridable for the local emulator.
        http: Optional pre-built httpx client (tests pass one with a mock transport).
        timeout: Transport timeout in seconds for a client created here.
    """

    PROVIDER_TYPE = "identity_toolkit"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        http: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        attestation_token: str | None,
    ) -> dict[str, Any]:
        headers = {APP_CHECK_HEADER: attestation_token} if attestation_token else {}
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.post(
                url,
                params={"key": self._api_key},
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            LOG.warning("identity_toolkit_timeout", path=path)
            raise ProviderError(TIMEOUT, str(exc)) from exc
        except httpx.TransportError as exc:
            LOG.warning("identity_toolkit_transport_error", path=path, error=str(exc))
            raise ProviderError(NETWORK_REQUEST_FAILED, str(exc)) from exc

        if response.is_error:
            code, message = error_code_from_response(response)
            LOG.info(
                "identity_toolkit_error",
                path=path,
                status=response.status_code,
                error_code=code,
            )
            raise ProviderError(code, message)

        try:
            body = response.json()
        except ValueError as exc:
            LOG.warning(
                "identity_toolkit_unreadable_response", path=path, status=response.status_code
            )
            raise ProviderError(INTERNAL_ERROR, f"unreadable response from {path}") from exc
        if not isinstance(body, dict):
            raise ProviderError(INTERNAL_ERROR, f"unexpected response from {path}")
        return body

    async def sign_in_with_password(
        self,
        email: str,
        password: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        data = await self._post(
            "/v1/accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
            attestation_token,
        )
        if data.get("mfaPendingCredential"):
            hints = parse_hints(data.get("mfaInfo", []))
            LOG.info("identity_toolkit_mfa_required", hint_count=len(hints))
            raise ProviderError(
                MFA_REQUIRED,
                "Second factor required",
                payload={"pending_credential": data["mfaPendingCredential"], "hints": hints},
            )
        return Session.from_expires_in(
            uid=_require(data, "localId"),
            email=data.get("email", email),
            id_token=data.get("idToken", ""),
            refresh_token=data.get("refreshToken", ""),
            expires_in=data.get("expiresIn"),
        )

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        data = await self._post(
            "/v1/accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
            attestation_token,
        )
        return Session.from_expires_in(
            uid=_require(data, "localId"),
            email=data.get("email", email),
            id_token=data.get("idToken", ""),
            refresh_token=data.get("refreshToken", ""),
            expires_in=data.get("expiresIn"),
        )

    async def send_password_reset(
        self,
        email: str,
        *,
        attestation_token: str | None = None,
    ) -> None:
        await self._post(
            "/v1/accounts:sendOobCode",
            {"requestType": "PASSWORD_RESET", "email": email},
            attestation_token,
        )

    async def sign_out(self, session: Session) -> None:
        # Identity Toolkit has no client-side revocation endpoint; refresh
        # tokens are revoked server-side with admin credentials only.
        LOG.debug("identity_toolkit_sign_out_local_only", uid=session.uid)

    async def start_phone_challenge(
        self,
        pending_credential: str,
        enrollment_id: str,
        verification_token: str,
        *,
        attestation_token: str | None = None,
    ) -> str:
        data = await self._post(
            "/v2/accounts/mfaSignIn:start",
            {
                "mfaPendingCredential": pending_credential,
                "mfaEnrollmentId": enrollment_id,
                "phoneSignInInfo": {"recaptchaToken": verification_token},
            },
            attestation_token,
        )
        return _require(data, "phoneResponseInfo", "sessionInfo")

    async def finalize_phone_challenge(
        self,
        pending_credential: str,
        verification_id: str,
        code: str,
        *,
        attestation_token: str | None = None,
    ) -> Session:
        data = await self._post(
            "/v2/accounts/mfaSignIn:finalize",
            {
                "mfaPendingCredential": pending_credential,
                "phoneVerificationInfo": {"sessionInfo": verification_id, "code": code},
            },
            attestation_token,
        )
        id_token = _require(data, "idToken")
        lookup = await self._post("/v1/accounts:lookup", {"idToken": id_token}, attestation_token)
        users = lookup.get("users")
        user = users[0] if isinstance(users, list) and users and isinstance(users[0], dict) else {}
        return Session.from_expires_in(
            uid=user.get("localId", ""),
            email=user.get("email"),
            id_token=id_token,
            refresh_token=data.get("refreshToken", ""),
            expires_in=_ID_TOKEN_LIFETIME,
            second_factor=True,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
