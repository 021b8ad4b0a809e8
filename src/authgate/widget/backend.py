"""Bot-verification widget boundary.

A verification backend creates widgets inside a rendering :class:`Container`,
renders them (yielding a provider-assigned widget id), produces verification
tokens on demand, resets them by id and tears them down. Each widget reports
the expiry of its token through the ``on_expired`` callback it was created
with; expiry is initiated by the backend, never by the caller.

Exactly one render per creation, and render before any verification. Creating
a second widget in a container that already holds one fails, as the real
reCAPTCHA library does ("reCAPTCHA has already been rendered in this element").
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from authgate.errors import Operation
from authgate.exceptions import AuthError, AuthgateError
from authgate.logging import get_logger

LOG = get_logger(__name__)

TokenSource = Callable[[], Awaitable[str]]


class WidgetRenderError(AuthgateError):
    """Raised by a backend when a widget cannot be created or rendered."""


class Container:
    """Rendering surface a verification widget is bound to.

    Attributes:
        name: Identifier used in logs.
        attached: False once the surface is gone (e.g., the page unmounted).
        children: Widgets currently rendered into this surface.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.attached = True
        self.children: list[Any] = []

    def clear(self) -> None:
        """Remove any rendered content."""
        self.children.clear()

    def detach(self) -> None:
        """Mark the surface as gone."""
        self.attached = False
        self.children.clear()

    def __repr__(self) -> str:
        return f"Container(name={self.name!r}, attached={self.attached})"


@runtime_checkable
class VerificationBackend(Protocol):
    """Protocol defining the bot-verification widget interface."""

    def create(
        self,
        container: Container,
        *,
        size: str,
        on_verified: Callable[[str], None] | None,
        on_expired: Callable[[], None],
    ) -> Any:
        """Construct a widget bound to the container (not yet rendered).

        Raises:
            WidgetRenderError: If the container already holds a widget.
        """
        ...

    async def render(self, widget: Any) -> str:
        """Render the widget and return its widget id.

        Raises:
            WidgetRenderError: If rendering fails.
        """
        ...

    async def verify(self, widget: Any) -> str:
        """Run the challenge and return a verification token.

        Raises:
            AuthError: If the challenge cannot be completed.
        """
        ...

    def reset(self, widget_id: str) -> None:
        """Reset the widget so a new token can be produced."""
        ...

    def clear(self, widget: Any) -> None:
        """Tear the widget down and remove it from its container."""
        ...


@dataclass(eq=False)
class TokenWidget:
    """Widget state kept by :class:`TokenSourceBackend`."""

    container: Container
    size: str
    on_verified: Callable[[str], None] | None
    on_expired: Callable[[], None]
    widget_id: str | None = None
    token: str | None = field(default=None, repr=False)
    expiry: asyncio.TimerHandle | None = field(default=None, repr=False)


class TokenSourceBackend:
    """Verification backend fed by an external token source.

    Tokens come from an awaitable callable: a prompt where a user pastes a
    solved reCAPTCHA response, a solving service, or a fixed test token. Each
    token expires ``token_ttl`` seconds after it was produced, at which point
    the widget's expiry callback fires.

    Args:
        token_source: Async callable returning a fresh verification token.
        token_ttl: Seconds a token stays valid (reCAPTCHA responses last two minutes).
    """

    def __init__(self, token_source: TokenSource, *, token_ttl: float = 120.0) -> None:
        self._token_source = token_source
        self._token_ttl = token_ttl
        self._ids = itertools.count(1)
        self._widgets: dict[str, TokenWidget] = {}

    def create(
        self,
        container: Container,
        *,
        size: str = "invisible",
        on_verified: Callable[[str], None] | None = None,
        on_expired: Callable[[], None],
    ) -> TokenWidget:
        if container.children:
            raise WidgetRenderError("reCAPTCHA has already been rendered in this element")
        widget = TokenWidget(
            container=container,
            size=size,
            on_verified=on_verified,
            on_expired=on_expired,
        )
        container.children.append(widget)
        return widget

    async def render(self, widget: TokenWidget) -> str:
        if widget.widget_id is not None:
            raise WidgetRenderError("reCAPTCHA has already been rendered in this element")
        widget.widget_id = str(next(self._ids))
        self._widgets[widget.widget_id] = widget
        LOG.debug("token_widget_rendered", widget_id=widget.widget_id, size=widget.size)
        return widget.widget_id

    async def verify(self, widget: TokenWidget) -> str:
        try:
            token = await self._token_source()
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError.from_code(
                "auth/captcha-check-failed", str(exc), operation=Operation.SEND_CODE
            ) from exc
        if not token:
            raise AuthError.from_code(
                "auth/missing-recaptcha-token", operation=Operation.SEND_CODE
            )

        self._cancel_expiry(widget)
        widget.token = token
        widget.expiry = asyncio.get_running_loop().call_later(
            self._token_ttl, self.expire, widget.widget_id
        )
        if widget.on_verified is not None:
            widget.on_verified(token)
        return token

    def reset(self, widget_id: str) -> None:
        widget = self._widgets.get(widget_id)
        if widget is None:
            return
        self._cancel_expiry(widget)
        widget.token = None

    def clear(self, widget: TokenWidget) -> None:
        self._cancel_expiry(widget)
        widget.token = None
        if widget.widget_id is not None:
            self._widgets.pop(widget.widget_id, None)
        if widget in widget.container.children:
            widget.container.children.remove(widget)

    def expire(self, widget_id: str | None) -> None:
        """Expire the widget's token and notify its owner."""
        widget = self._widgets.get(widget_id) if widget_id else None
        if widget is None:
            return
        self._cancel_expiry(widget)
        widget.token = None
        LOG.info("token_widget_expired", widget_id=widget_id)
        widget.on_expired()

    @staticmethod
    def _cancel_expiry(widget: TokenWidget) -> None:
        if widget.expiry is not None:
            widget.expiry.cancel()
            widget.expiry = None
