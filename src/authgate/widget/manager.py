"""Lifecycle management for bot-verification widgets.

At most one live widget exists per container. Acquisition is idempotent:
concurrent callers share the render in progress, and a Ready widget is
returned as-is. Expiry events are only acted on when they belong to the
handle currently registered for the container; callbacks from a widget that
has since been disposed or replaced are ignored.

State machine::

    UNINITIALIZED -> RENDERING -> READY -> EXPIRED -> DISPOSED
                         |                    ^
                         +--(render error)    +-- dispose() from any state

A failed render leaves the handle in RENDERING with ``error`` set. The error
is re-raised to every later ``acquire`` until the handle is disposed; renders
are never retried silently.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import Any

from authgate.errors import WIDGET_EXPIRED, WIDGET_RENDER_FAILED, WIDGET_UNAVAILABLE, Operation
from authgate.exceptions import AuthError, WidgetUnavailableError
from authgate.logging import get_logger
from authgate.widget.backend import Container, VerificationBackend

LOG = get_logger(__name__)

WIDGET_SIZE = "invisible"


class WidgetState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RENDERING = "rendering"
    READY = "ready"
    EXPIRED = "expired"
    DISPOSED = "disposed"


@dataclass(eq=False)
class WidgetHandle:
    """A widget bound to one container.

    Attributes:
        container: Surface the widget is rendered into.
        state: Current lifecycle state.
        widget_id: Provider-assigned id, set once rendering succeeds.
        error: Render failure, if any.
    """

    container: Container
    state: WidgetState = WidgetState.UNINITIALIZED
    widget_id: str | None = None
    error: AuthError | None = None
    widget: Any = field(default=None, repr=False)
    render_task: asyncio.Task[None] | None = field(default=None, repr=False)
    dependents: set[asyncio.Task[Any]] = field(default_factory=set, repr=False)

    @property
    def is_ready(self) -> bool:
        return self.state is WidgetState.READY


ExpiryListener = Callable[[WidgetHandle, AuthError], None]


class VerificationWidgetManager:
    """Owns the verification widget of every container.

    Args:
        backend: Verification backend creating and rendering the widgets.
    """

    def __init__(self, backend: VerificationBackend) -> None:
        self._backend = backend
        self._handles: dict[Container, WidgetHandle] = {}
        self._listeners: list[ExpiryListener] = []

    def current(self, container: Container | None) -> WidgetHandle | None:
        """Return the handle registered for a container, if any."""
        if container is None:
            return None
        return self._handles.get(container)

    async def acquire(self, container: Container | None) -> WidgetHandle:
        """Return a Ready widget for the container, rendering one if needed.

        Raises:
            WidgetUnavailableError: If the container is absent or detached.
            AuthError: If rendering failed (SECURITY_CHECK / config).
        """
        if container is None or not container.attached:
            raise WidgetUnavailableError.from_code(
                WIDGET_UNAVAILABLE, "container is absent", operation=Operation.WIDGET
            )

        handle = self._handles.get(container)
        if handle is not None:
            if handle.state is WidgetState.READY:
                return handle
            if handle.state is WidgetState.RENDERING:
                return await self._await_render(handle)
            # Expired: tear down before replacing
            self.dispose(handle)

        return await self._await_render(self._create(container))

    def _create(self, container: Container) -> WidgetHandle:
        container.clear()
        handle = WidgetHandle(container=container, state=WidgetState.RENDERING)
        self._handles[container] = handle
        LOG.debug("verification_widget_creating", container=container.name)

        try:
            handle.widget = self._backend.create(
                container,
                size=WIDGET_SIZE,
                on_verified=partial(self._on_verified, handle),
                on_expired=partial(self._on_expired, handle),
            )
        except Exception as exc:
            self._render_failed(handle, exc)
            return handle

        handle.render_task = asyncio.get_running_loop().create_task(self._render(handle))
        return handle

    async def _render(self, handle: WidgetHandle) -> None:
        try:
            widget_id = await self._backend.render(handle.widget)
        except Exception as exc:
            self._render_failed(handle, exc)
            return

        if self._handles.get(handle.container) is not handle or (
            handle.state is not WidgetState.RENDERING
        ):
            LOG.debug("verification_widget_render_discarded", container=handle.container.name)
            return
        handle.widget_id = widget_id
        handle.state = WidgetState.READY
        LOG.info(
            "verification_widget_ready",
            container=handle.container.name,
            widget_id=widget_id,
        )

    def _render_failed(self, handle: WidgetHandle, exc: Exception) -> None:
        handle.error = AuthError.from_code(
            WIDGET_RENDER_FAILED, str(exc), operation=Operation.WIDGET
        )
        LOG.error(
            "verification_widget_render_failed",
            container=handle.container.name,
            error=str(exc),
        )

    async def _await_render(self, handle: WidgetHandle) -> WidgetHandle:
        if handle.render_task is not None:
            # Shielded so one caller's cancellation doesn't abort a shared render
            try:
                await asyncio.shield(handle.render_task)
            except asyncio.CancelledError:
                caller = asyncio.current_task()
                if not handle.render_task.cancelled() or (caller and caller.cancelling()):
                    raise
        if handle.error is not None:
            raise handle.error
        if handle.state is not WidgetState.READY:
            raise WidgetUnavailableError.from_code(
                WIDGET_UNAVAILABLE,
                f"widget is {handle.state}",
                operation=Operation.WIDGET,
            )
        return handle

    async def verify(self, handle: WidgetHandle) -> str:
        """Run the widget challenge and return a verification token.

        Raises:
            WidgetUnavailableError: If the handle is not Ready.
            AuthError: If the challenge fails.
        """
        if not handle.is_ready:
            raise WidgetUnavailableError.from_code(
                WIDGET_UNAVAILABLE,
                f"widget is {handle.state}",
                operation=Operation.SEND_CODE,
            )
        return await self._backend.verify(handle.widget)

    def reset(self, handle: WidgetHandle) -> None:
        """Reset a Ready widget so it can produce a new token. No-op otherwise."""
        if not handle.is_ready or handle.widget_id is None:
            return
        try:
            self._backend.reset(handle.widget_id)
        except Exception as exc:  # noqa: BLE001
            LOG.warning(
                "verification_widget_reset_failed",
                widget_id=handle.widget_id,
                error=str(exc),
            )

    def dispose(self, handle: WidgetHandle) -> None:
        """Tear a widget down. Safe from any state and idempotent."""
        if handle.state is WidgetState.DISPOSED:
            return
        previous = handle.state
        handle.state = WidgetState.DISPOSED

        if handle.render_task is not None and not handle.render_task.done():
            handle.render_task.cancel()
        for task in list(handle.dependents):
            task.cancel()
        handle.dependents.clear()

        if handle.widget is not None:
            try:
                self._backend.clear(handle.widget)
            except Exception as exc:  # noqa: BLE001
                LOG.warning("verification_widget_clear_failed", error=str(exc))
        handle.container.clear()

        if self._handles.get(handle.container) is handle:
            del self._handles[handle.container]
        LOG.debug(
            "verification_widget_disposed",
            container=handle.container.name,
            widget_id=handle.widget_id,
            previous_state=previous,
        )

    def dispose_all(self) -> None:
        for handle in list(self._handles.values()):
            self.dispose(handle)

    def track(self, handle: WidgetHandle, task: asyncio.Task[Any]) -> None:
        """Register a task that depends on the widget's current token.

        Tracked tasks are cancelled when the widget expires or is disposed.
        """
        handle.dependents.add(task)
        task.add_done_callback(handle.dependents.discard)

    def subscribe(self, listener: ExpiryListener) -> Callable[[], None]:
        """Register an expiry listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_verified(self, handle: WidgetHandle, token: str) -> None:
        LOG.debug("verification_widget_solved", widget_id=handle.widget_id)

    def _on_expired(self, handle: WidgetHandle) -> None:
        if self._handles.get(handle.container) is not handle or not handle.is_ready:
            LOG.debug(
                "verification_widget_stale_expiry_ignored",
                widget_id=handle.widget_id,
                state=handle.state,
            )
            return

        handle.state = WidgetState.EXPIRED
        error = AuthError.from_code(WIDGET_EXPIRED, operation=Operation.SEND_CODE)
        LOG.warning(
            "verification_widget_expired",
            container=handle.container.name,
            widget_id=handle.widget_id,
            dependents=len(handle.dependents),
        )
        for task in list(handle.dependents):
            task.cancel()
        for listener in list(self._listeners):
            try:
                listener(handle, error)
            except Exception as exc:  # noqa: BLE001
                LOG.error("widget_expiry_listener_failed", error=str(exc))
