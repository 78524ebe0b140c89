"""Tests for the OS bridge JSON-RPC backend."""

import asyncio
import json
from typing import Any, Callable, Optional

import pytest

from webview_pilot.adapters.os_bridge import BridgeTransport, OSBridge
from webview_pilot.config import PilotSettings
from webview_pilot.execution.errors import BackendError, BackendUnavailableError, OperationTimeoutError


class FakeTransport(BridgeTransport):
    """In-process transport that answers requests with a handler.

    The handler receives the decoded request and returns the response dict,
    or None to leave the request unanswered.
    """

    def __init__(self, handler: Optional[Callable[[dict], Optional[dict]]] = None, send_ready: bool = True):
        self.handler = handler or (lambda request: {"id": request["id"], "result": None})
        self.send_ready = send_ready
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True
        if self.send_ready:
            self.push({"status": "ready"})

    async def send(self, line: str) -> None:
        request = json.loads(line)
        self.sent.append(request)
        response = self.handler(request)
        if response is not None:
            self.push(response)

    async def receive(self) -> Optional[str]:
        return await self.incoming.get()

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(None)

    def push(self, message: Any) -> None:
        self.incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def methods(self) -> list[str]:
        return [request["method"] for request in self.sent]


class TestLifecycle:
    """Test startup and shutdown."""

    @pytest.mark.asyncio
    async def test_initialize_waits_for_ready(self):
        """Test the bridge becomes available after the ready signal."""
        transport = FakeTransport()
        bridge = OSBridge(transport)

        await bridge.initialize()

        assert transport.started is True
        assert bridge.is_available() is True
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_startup_timeout(self):
        """Test a bridge that never says ready times out and is torn down."""
        transport = FakeTransport(send_ready=False)
        bridge = OSBridge(transport, startup_timeout_ms=50)

        with pytest.raises(OperationTimeoutError, match="startup"):
            await bridge.initialize()

        assert bridge.is_available() is False
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_process_exit_during_startup(self):
        """Test the channel closing before ready raises BackendUnavailableError."""
        transport = FakeTransport(send_ready=False)
        bridge = OSBridge(transport, startup_timeout_ms=1000)
        transport.incoming.put_nowait(None)

        with pytest.raises(BackendUnavailableError):
            await bridge.initialize()

    @pytest.mark.asyncio
    async def test_cleanup_sends_shutdown(self):
        """Test cleanup asks the bridge to shut down and closes the transport."""
        transport = FakeTransport()
        bridge = OSBridge(transport)
        await bridge.initialize()

        await bridge.cleanup()

        assert transport.methods() == ["shutdown"]
        assert transport.closed is True
        assert bridge.is_available() is False

    def test_from_settings_without_server(self):
        """Test no bridge is built when no server path is configured."""
        assert OSBridge.from_settings(PilotSettings(_env_file=None)) is None

    def test_from_settings(self):
        """Test timeouts come from settings."""
        settings = PilotSettings(
            _env_file=None,
            os_bridge_server_path="/opt/bridge/server.py",
            os_bridge_call_timeout_ms=1234,
        )
        bridge = OSBridge.from_settings(settings)

        assert bridge.call_timeout_ms == 1234
        assert bridge.transport.server_path == "/opt/bridge/server.py"


class TestCalls:
    """Test request/response correlation."""

    @pytest.mark.asyncio
    async def test_request_format_and_ids(self):
        """Test requests carry JSON-RPC fields and increasing ids."""
        transport = FakeTransport()
        bridge = OSBridge(transport)
        await bridge.initialize()

        await bridge.click(412.4, 230.6)
        await bridge.type_text("hello")

        assert transport.sent[0] == {"jsonrpc": "2.0", "id": 1, "method": "click", "params": [412, 231, "left"]}
        assert transport.sent[1]["id"] == 2
        assert transport.sent[1]["params"] == ["hello"]
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_result_returned(self):
        """Test results are delivered to the caller."""
        transport = FakeTransport(lambda r: {"id": r["id"], "result": {"width": 2560, "height": 1440}})
        bridge = OSBridge(transport)
        await bridge.initialize()

        assert await bridge.get_screen_size() == (2560, 1440)
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_error_response(self):
        """Test error responses raise BackendError."""
        transport = FakeTransport(lambda r: {"id": r["id"], "error": {"message": "Accessibility permission denied"}})
        bridge = OSBridge(transport)
        await bridge.initialize()

        with pytest.raises(BackendError, match="Accessibility permission denied"):
            await bridge.click(1, 1)
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_timeout_then_late_response_is_discarded(self):
        """Test a late response for a timed-out call does not disturb later calls."""

        def handler(request):
            if request["method"] == "screenshot":
                return None
            return {"id": request["id"], "result": "ok"}

        transport = FakeTransport(handler)
        bridge = OSBridge(transport, call_timeout_ms=50)
        await bridge.initialize()

        with pytest.raises(OperationTimeoutError, match="os_bridge screenshot"):
            await bridge.screenshot()

        transport.push({"id": 1, "result": "late-image"})
        assert await bridge.call("find_application", ["Notes"]) == "ok"
        assert bridge.is_available() is True
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_non_json_lines_ignored(self):
        """Test log noise on the channel is skipped."""
        transport = FakeTransport(lambda r: {"id": r["id"], "result": "AAAA"})
        bridge = OSBridge(transport)
        transport.push("bridge server v1.2 starting")
        await bridge.initialize()

        assert await bridge.screenshot() == "AAAA"
        await bridge.cleanup()

    @pytest.mark.asyncio
    async def test_call_before_initialize(self):
        """Test calls fail when the bridge is not running."""
        bridge = OSBridge(FakeTransport())

        with pytest.raises(BackendUnavailableError):
            await bridge.click(1, 1)

    @pytest.mark.asyncio
    async def test_pending_calls_fail_on_exit(self):
        """Test in-flight calls fail when the bridge process exits."""
        transport = FakeTransport(lambda r: None)
        bridge = OSBridge(transport, call_timeout_ms=5000)
        await bridge.initialize()

        call = asyncio.create_task(bridge.move_to(5, 5))
        await asyncio.sleep(0.01)
        transport.incoming.put_nowait(None)

        with pytest.raises(BackendUnavailableError):
            await call
        assert bridge.is_available() is False
        await bridge.cleanup()


class TestPixelMethods:
    """Test pixel method parameter mapping."""

    @pytest.fixture
    def transport(self):
        return FakeTransport()

    @pytest.mark.asyncio
    async def test_method_params(self, transport):
        """Test each pixel method's wire format."""
        bridge = OSBridge(transport)
        await bridge.initialize()

        await bridge.click(10, 20, count=2)
        await bridge.click(10, 20, button="right")
        await bridge.press_key("s", ["Control", "Shift"])
        await bridge.scroll(100, 200, "up", 300)
        await bridge.drag(1, 2, 3, 4)
        await bridge.activate_application("Notes")

        calls = [(r["method"], r["params"]) for r in transport.sent]
        assert calls == [
            ("double_click", [10, 20]),
            ("click", [10, 20, "right"]),
            ("press_key", ["s", ["Control", "Shift"]]),
            ("scroll", [100, 200, 0, -300]),
            ("drag", [1, 2, 3, 4]),
            ("activate_application", ["Notes"]),
        ]
        await bridge.cleanup()
