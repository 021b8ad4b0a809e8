"""Data types shared by the provider boundary, the session client and the resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

PHONE_FACTOR_ID = "phone"


@dataclass(frozen=True)
class Session:
    """Opaque authenticated identity handle.

    Tokens are excluded from ``repr`` so sessions can be logged safely.

    Attributes:
        uid: Provider account id.
        email: Account email, if known.
        id_token: Short-lived bearer token.
        refresh_token: Long-lived token used to mint new id tokens.
        expires_at: When ``id_token`` stops being accepted.
        second_factor: Whether a second factor was used to establish the session.
    """

    uid: str
    email: str | None = None
    id_token: str = field(default="", repr=False)
    refresh_token: str = field(default="", repr=False)
    expires_at: datetime | None = None
    second_factor: bool = False

    @classmethod
    def from_expires_in(
        cls,
        uid: str,
        email: str | None,
        id_token: str,
        refresh_token: str,
        expires_in: str | int | None,
        *,
        second_factor: bool = False,
    ) -> Session:
        """Build a session from a provider's relative ``expiresIn`` seconds."""
        expires_at = None
        if expires_in not in (None, ""):
            expires_at = datetime.now(UTC) + timedelta(seconds=int(expires_in))
        return cls(
            uid=uid,
            email=email,
            id_token=id_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            second_factor=second_factor,
        )

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and datetime.now(UTC) >= self.expires_at


@dataclass(frozen=True)
class SecondFactorHint:
    """One enrolled second factor of the account attempting sign-in.

    Attributes:
        uid: Stable enrollment identifier.
        display_name: User-chosen label, may be empty.
        phone_number: Masked phone number as supplied by the provider.
        factor_id: Factor kind ("phone", "totp", ...). Only phone is handled.
    """

    uid: str
    display_name: str | None = None
    phone_number: str | None = None
    factor_id: str = PHONE_FACTOR_ID

    @property
    def is_phone(self) -> bool:
        return self.factor_id == PHONE_FACTOR_ID

    @property
    def label(self) -> str:
        """Human-readable label for hint selection."""
        if self.display_name:
            return self.display_name
        if self.phone_number:
            return f"Phone ending in ...{self.phone_number[-4:]}"
        return f"Second factor {self.uid}"


@dataclass(frozen=True)
class SecondFactorRequired:
    """Primary credentials accepted, but a second factor must be resolved.

    Attributes:
        resolver_token: Opaque token scoping the challenge to this sign-in attempt.
        hints: Every factor the provider reported, phone or not.
        email: Email used for the primary sign-in.
    """

    resolver_token: str = field(repr=False)
    hints: tuple[SecondFactorHint, ...] = ()
    email: str | None = None

    @property
    def phone_hints(self) -> tuple[SecondFactorHint, ...]:
        return tuple(hint for hint in self.hints if hint.is_phone)
