"""Tests for the wait policy."""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from webview_pilot.execution.errors import BackendUnavailableError, OperationTimeoutError
from webview_pilot.execution.models import ElementHandle
from webview_pilot.execution.wait import wait_for

HANDLE = ElementHandle(id="cdp_1", role="element", name="#toast")


@pytest.fixture
def resolver():
    """Create mock resolver."""
    mock = MagicMock()
    mock.resolve = AsyncMock(return_value=None)
    return mock


class TestWaitForVisible:
    """Test waiting for an element to appear."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_present(self, resolver):
        """Test a present element returns on the first poll."""
        resolver.resolve.return_value = HANDLE

        handle = await wait_for(resolver, "#toast", timeout_ms=500, interval_ms=10)

        assert handle is HANDLE
        assert resolver.resolve.call_count == 1

    @pytest.mark.asyncio
    async def test_polls_until_present(self, resolver):
        """Test polling continues until the element resolves."""
        resolver.resolve.side_effect = [None, None, HANDLE]

        handle = await wait_for(resolver, "#toast", timeout_ms=1000, interval_ms=5)

        assert handle is HANDLE
        assert resolver.resolve.call_count == 3

    @pytest.mark.asyncio
    async def test_times_out(self, resolver):
        """Test a missing element raises OperationTimeoutError."""
        with pytest.raises(OperationTimeoutError) as exc_info:
            await wait_for(resolver, "text=Done", timeout_ms=50, interval_ms=10)

        assert exc_info.value.timeout_ms == 50
        assert "text=Done" in str(exc_info.value)
        assert "visible" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_is_a_timeout_error(self, resolver):
        """Test the error is also a builtin TimeoutError."""
        with pytest.raises(TimeoutError):
            await wait_for(resolver, "#toast", timeout_ms=20, interval_ms=5)


class TestWaitForHidden:
    """Test waiting for an element to disappear."""

    @pytest.mark.asyncio
    async def test_returns_none_when_absent(self, resolver):
        """Test an absent element satisfies a hidden wait at once."""
        assert await wait_for(resolver, "#spinner", timeout_ms=100, interval_ms=10, state="hidden") is None
        assert resolver.resolve.call_count == 1

    @pytest.mark.asyncio
    async def test_waits_while_present(self, resolver):
        """Test polling continues while the element still resolves."""
        resolver.resolve.side_effect = [HANDLE, HANDLE, None]

        result = await wait_for(resolver, "#spinner", timeout_ms=1000, interval_ms=5, state="detached")

        assert result is None
        assert resolver.resolve.call_count == 3

    @pytest.mark.asyncio
    async def test_times_out_while_present(self, resolver):
        """Test a hidden wait times out when the element never goes away."""
        resolver.resolve.return_value = HANDLE

        with pytest.raises(OperationTimeoutError, match="hidden"):
            await wait_for(resolver, "#spinner", timeout_ms=40, interval_ms=10, state="hidden")

    @pytest.mark.asyncio
    async def test_returns_soon_after_element_disappears(self, resolver):
        """Test a hidden wait returns shortly after the element goes away."""
        started = time.monotonic()

        async def spinner_for_150ms(locator):
            return HANDLE if time.monotonic() - started < 0.15 else None

        resolver.resolve.side_effect = spinner_for_150ms

        result = await wait_for(resolver, "#spinner", timeout_ms=2000, interval_ms=20, state="hidden")
        elapsed = time.monotonic() - started

        assert result is None
        assert 0.15 <= elapsed < 0.4

    @pytest.mark.asyncio
    async def test_times_out_on_schedule(self, resolver):
        """Test a hidden wait gives up close to its timeout."""
        resolver.resolve.return_value = HANDLE
        started = time.monotonic()

        with pytest.raises(OperationTimeoutError) as exc_info:
            await wait_for(resolver, "#spinner", timeout_ms=500, interval_ms=20, state="hidden")
        elapsed = time.monotonic() - started

        assert exc_info.value.timeout_ms == 500
        assert 0.5 <= elapsed < 0.8

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, resolver):
        """Test backend errors are not treated as the element being gone."""
        resolver.resolve.side_effect = BackendUnavailableError("structural")

        with pytest.raises(BackendUnavailableError):
            await wait_for(resolver, "#spinner", timeout_ms=100, interval_ms=10, state="hidden")
