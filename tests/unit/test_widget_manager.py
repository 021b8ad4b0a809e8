"""Tests for the verification widget backend and manager."""

import asyncio

import pytest

from authgate.errors import ErrorKind, SecurityReason
from authgate.exceptions import AuthError, WidgetUnavailableError
from authgate.widget import (
    Container,
    TokenSourceBackend,
    VerificationBackend,
    VerificationWidgetManager,
    WidgetRenderError,
    WidgetState,
)


class FailingRenderBackend(TokenSourceBackend):
    def __init__(self) -> None:
        super().__init__(self._never)
        self.render_calls = 0

    async def _never(self) -> str:
        raise AssertionError("not used")

    async def render(self, widget):
        self.render_calls += 1
        raise WidgetRenderError("Invalid site key")


class SlowRenderBackend(TokenSourceBackend):
    def __init__(self, token_source) -> None:
        super().__init__(token_source)
        self.release = asyncio.Event()
        self.render_calls = 0

    async def render(self, widget):
        self.render_calls += 1
        await self.release.wait()
        return await super().render(widget)


class TestTokenSourceBackend:
    def test_is_a_verification_backend(self, backend):
        assert isinstance(backend, VerificationBackend)

    @pytest.mark.asyncio
    async def test_second_widget_in_container_fails(self, backend, container):
        backend.create(container, size="invisible", on_expired=lambda: None)
        with pytest.raises(WidgetRenderError, match="already been rendered"):
            backend.create(container, size="invisible", on_expired=lambda: None)

    @pytest.mark.asyncio
    async def test_verify_schedules_expiry(self, container):
        expired = asyncio.Event()

        async def source():
            return "tok"

        backend = TokenSourceBackend(source, token_ttl=0.01)
        widget = backend.create(container, size="invisible", on_expired=expired.set)
        await backend.render(widget)

        assert await backend.verify(widget) == "tok"
        await asyncio.wait_for(expired.wait(), timeout=1)
        assert widget.token is None

    @pytest.mark.asyncio
    async def test_reset_cancels_expiry(self, container):
        calls = []

        async def source():
            return "tok"

        backend = TokenSourceBackend(source, token_ttl=0.01)
        widget = backend.create(container, size="invisible", on_expired=lambda: calls.append(1))
        widget_id = await backend.render(widget)
        await backend.verify(widget)
        backend.reset(widget_id)
        await asyncio.sleep(0.05)
        assert calls == []

    @pytest.mark.asyncio
    async def test_token_source_failure_is_security_check(self, container):
        async def source():
            raise RuntimeError("solver offline")

        backend = TokenSourceBackend(source)
        widget = backend.create(container, size="invisible", on_expired=lambda: None)
        await backend.render(widget)
        with pytest.raises(AuthError) as exc_info:
            await backend.verify(widget)
        assert exc_info.value.kind is ErrorKind.SECURITY_CHECK

    @pytest.mark.asyncio
    async def test_clear_removes_from_container(self, backend, container):
        widget = backend.create(container, size="invisible", on_expired=lambda: None)
        await backend.render(widget)
        backend.clear(widget)
        assert container.children == []


class TestAcquire:
    @pytest.mark.asyncio
    async def test_renders_once(self, widgets, container):
        handle = await widgets.acquire(container)

        assert handle.state is WidgetState.READY
        assert handle.widget_id is not None
        assert widgets.current(container) is handle
        assert len(container.children) == 1

    @pytest.mark.asyncio
    async def test_idempotent_when_ready(self, widgets, container):
        first = await widgets.acquire(container)
        second = await widgets.acquire(container)
        assert first is second
        assert len(container.children) == 1

    @pytest.mark.asyncio
    async def test_concurrent_acquire_shares_render(self, token_source, container):
        backend = SlowRenderBackend(token_source)
        widgets = VerificationWidgetManager(backend)

        first = asyncio.create_task(widgets.acquire(container))
        second = asyncio.create_task(widgets.acquire(container))
        await asyncio.sleep(0)
        assert widgets.current(container).state is WidgetState.RENDERING
        backend.release.set()

        results = await asyncio.gather(first, second)
        assert results[0] is results[1]
        assert backend.render_calls == 1
        assert len(container.children) == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_shared_render(self, token_source, container):
        backend = SlowRenderBackend(token_source)
        widgets = VerificationWidgetManager(backend)

        first = asyncio.create_task(widgets.acquire(container))
        second = asyncio.create_task(widgets.acquire(container))
        await asyncio.sleep(0)
        first.cancel()
        backend.release.set()

        handle = await second
        assert handle.state is WidgetState.READY
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_missing_container(self, widgets):
        with pytest.raises(WidgetUnavailableError):
            await widgets.acquire(None)

    @pytest.mark.asyncio
    async def test_detached_container(self, widgets, container):
        container.detach()
        with pytest.raises(WidgetUnavailableError):
            await widgets.acquire(container)

    @pytest.mark.asyncio
    async def test_clears_stale_content_before_render(self, widgets, container):
        container.children.append("leftover from a previous mount")
        handle = await widgets.acquire(container)
        assert container.children == [handle.widget]

    @pytest.mark.asyncio
    async def test_render_failure_is_reported_not_retried(self, container):
        backend = FailingRenderBackend()
        widgets = VerificationWidgetManager(backend)

        with pytest.raises(AuthError) as exc_info:
            await widgets.acquire(container)
        assert exc_info.value.kind is ErrorKind.SECURITY_CHECK
        assert exc_info.value.error.reason is SecurityReason.CONFIG

        handle = widgets.current(container)
        assert handle.state is WidgetState.RENDERING
        assert handle.error is exc_info.value

        with pytest.raises(AuthError):
            await widgets.acquire(container)
        assert backend.render_calls == 1

    @pytest.mark.asyncio
    async def test_dispose_allows_fresh_render(self, container):
        backend = FailingRenderBackend()
        widgets = VerificationWidgetManager(backend)
        with pytest.raises(AuthError):
            await widgets.acquire(container)

        widgets.dispose(widgets.current(container))
        with pytest.raises(AuthError):
            await widgets.acquire(container)
        assert backend.render_calls == 2


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expiry_marks_handle_and_notifies(self, widgets, backend, container):
        events = []
        widgets.subscribe(lambda handle, error: events.append((handle, error)))
        handle = await widgets.acquire(container)

        backend.expire(handle.widget_id)

        assert handle.state is WidgetState.EXPIRED
        assert len(events) == 1
        assert events[0][0] is handle
        assert events[0][1].error.reason is SecurityReason.EXPIRED

    @pytest.mark.asyncio
    async def test_expiry_cancels_tracked_tasks(self, widgets, backend, container):
        handle = await widgets.acquire(container)
        task = asyncio.create_task(asyncio.sleep(10))
        widgets.track(handle, task)

        backend.expire(handle.widget_id)
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_stale_expiry_is_ignored(self, widgets, container):
        events = []
        widgets.subscribe(lambda handle, error: events.append(handle))
        old = await widgets.acquire(container)
        old_expired = old.widget.on_expired

        widgets.dispose(old)
        new = await widgets.acquire(container)
        old_expired()

        assert events == []
        assert new.state is WidgetState.READY
        assert old.state is WidgetState.DISPOSED

    @pytest.mark.asyncio
    async def test_acquire_after_expiry_replaces_widget(self, widgets, backend, container):
        old = await widgets.acquire(container)
        backend.expire(old.widget_id)

        new = await widgets.acquire(container)
        assert new is not old
        assert new.widget_id != old.widget_id
        assert old.state is WidgetState.DISPOSED
        assert container.children == [new.widget]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, widgets, backend, container):
        events = []
        unsubscribe = widgets.subscribe(lambda handle, error: events.append(handle))
        unsubscribe()
        handle = await widgets.acquire(container)
        backend.expire(handle.widget_id)
        assert events == []


class TestResetAndDispose:
    @pytest.mark.asyncio
    async def test_reset_only_when_ready(self, widgets, backend, container):
        handle = await widgets.acquire(container)
        token = await widgets.verify(handle)
        assert handle.widget.token == token

        widgets.reset(handle)
        assert handle.widget.token is None

        widgets.dispose(handle)
        widgets.reset(handle)  # no-op on a disposed handle

    @pytest.mark.asyncio
    async def test_verify_requires_ready(self, widgets, container):
        handle = await widgets.acquire(container)
        widgets.dispose(handle)
        with pytest.raises(WidgetUnavailableError):
            await widgets.verify(handle)

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, widgets, container):
        handle = await widgets.acquire(container)
        widgets.dispose(handle)
        widgets.dispose(handle)
        assert handle.state is WidgetState.DISPOSED
        assert widgets.current(container) is None
        assert container.children == []

    @pytest.mark.asyncio
    async def test_dispose_during_render(self, token_source, container):
        backend = SlowRenderBackend(token_source)
        widgets = VerificationWidgetManager(backend)
        pending = asyncio.create_task(widgets.acquire(container))
        await asyncio.sleep(0)

        widgets.dispose(widgets.current(container))

        with pytest.raises(WidgetUnavailableError):
            await pending

    @pytest.mark.asyncio
    async def test_dispose_all(self, widgets):
        first, second = Container("a"), Container("b")
        await widgets.acquire(first)
        await widgets.acquire(second)
        widgets.dispose_all()
        assert widgets.current(first) is None
        assert widgets.current(second) is None
