"""OS bridge backend.

Talks to a separate OS-automation process using line-delimited JSON-RPC:

    -> {"jsonrpc": "2.0", "id": 7, "method": "click", "params": [412, 230, "left"]}
    <- {"id": 7, "result": null}
    <- {"id": 8, "error": {"message": "..."}}

The process announces itself with a single ``{"status": "ready"}`` line.
Requests are correlated by a monotonically increasing integer id. A call
that times out is forgotten; its response, if it ever arrives, is dropped by
the reader without disturbing other calls.

The transport is pluggable: ``SubprocessTransport`` runs the bridge server
as a child process, tests use an in-process transport.
"""

import asyncio
import itertools
import json
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import structlog

from webview_pilot.config import PilotSettings
from webview_pilot.execution.errors import BackendError, BackendUnavailableError, OperationTimeoutError

from .base import BackendCapabilities, PixelInputBackend

logger = structlog.get_logger()


class BridgeTransport(ABC):
    """Duplex line channel to the bridge process."""

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def send(self, line: str) -> None:
        pass

    @abstractmethod
    async def receive(self) -> Optional[str]:
        """Next line, or None once the channel is closed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class SubprocessTransport(BridgeTransport):
    """Runs the bridge server as a child process and speaks over stdio."""

    def __init__(self, python_path: str, server_path: str, shutdown_timeout: float = 2.0):
        self.python_path = python_path
        self.server_path = server_path
        self.shutdown_timeout = shutdown_timeout
        self._process: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.python_path,
                self.server_path,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError("os_bridge", f"Cannot start bridge: {e}") from e

    async def send(self, line: str) -> None:
        if self._process is None or self._process.stdin is None:
            raise BackendUnavailableError("os_bridge", "Bridge process is not running")
        self._process.stdin.write((line + "\n").encode("utf-8"))
        await self._process.stdin.drain()

    async def receive(self) -> Optional[str]:
        if self._process is None or self._process.stdout is None:
            return None
        raw = await self._process.stdout.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").strip()

    async def close(self) -> None:
        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return

        if process.stdin is not None:
            process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
        except TimeoutError:
            process.kill()
            await process.wait()


_SCROLL_DELTAS = {
    "down": (0, 1),
    "up": (0, -1),
    "right": (1, 0),
    "left": (-1, 0),
}


class OSBridge(PixelInputBackend):
    """Pixel input and screen capture through the OS bridge process.

    Example:
        bridge = OSBridge(SubprocessTransport("python3", "bridge_server.py"))
        await bridge.initialize()
        await bridge.click(412, 230)
        await bridge.cleanup()
    """

    name = "os_bridge"
    capabilities = BackendCapabilities(screenshot=True, recording=False)

    def __init__(
        self,
        transport: BridgeTransport,
        call_timeout_ms: int = 30000,
        startup_timeout_ms: int = 10000,
    ):
        self.transport = transport
        self.call_timeout_ms = call_timeout_ms
        self.startup_timeout_ms = startup_timeout_ms

        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._reader: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._available = False
        self.log = logger.bind(component="os_bridge")

    @classmethod
    def from_settings(cls, settings: PilotSettings) -> Optional["OSBridge"]:
        """Build a bridge from settings, or None when no server is configured."""
        if not settings.os_bridge_server_path:
            return None
        return cls(
            SubprocessTransport(settings.os_bridge_python_path, settings.os_bridge_server_path),
            call_timeout_ms=settings.os_bridge_call_timeout_ms,
            startup_timeout_ms=settings.os_bridge_startup_timeout_ms,
        )

    # Lifecycle

    async def initialize(self) -> None:
        if self._available:
            return

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        await self.transport.start()
        self._reader = asyncio.create_task(self._read_loop())

        try:
            await asyncio.wait_for(self._ready, timeout=self.startup_timeout_ms / 1000)
        except TimeoutError:
            await self._teardown()
            raise OperationTimeoutError("os_bridge startup", self.startup_timeout_ms)
        except BackendUnavailableError:
            await self._teardown()
            raise

        self._available = True
        self.log.info("OS bridge ready")

    async def cleanup(self) -> None:
        if self._available:
            try:
                await self.call("shutdown", timeout_ms=2000)
            except (BackendError, BackendUnavailableError, OperationTimeoutError) as e:
                self.log.debug("Bridge shutdown request failed", error=str(e))
        await self._teardown()

    def is_available(self) -> bool:
        return self._available

    async def _teardown(self) -> None:
        self._available = False
        await self.transport.close()
        if self._reader is not None:
            if not self._reader.done():
                self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._fail_pending(BackendUnavailableError("os_bridge", "Bridge connection closed"))

    # Protocol

    async def call(self, method: str, params: Sequence[Any] = (), timeout_ms: Optional[int] = None) -> Any:
        """Send one request and wait for its response.

        Raises:
            BackendUnavailableError: If the bridge is not running
            OperationTimeoutError: If no response arrives in time
            BackendError: If the bridge reports an error
        """
        if self._reader is None or self._reader.done():
            raise BackendUnavailableError("os_bridge")

        timeout_ms = timeout_ms or self.call_timeout_ms
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)

        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}
        try:
            await self.transport.send(json.dumps(message))
            return await asyncio.wait_for(future, timeout=timeout_ms / 1000)
        except TimeoutError:
            raise OperationTimeoutError(f"os_bridge {method}", timeout_ms)
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self.transport.receive()
                if line is None:
                    break
                if line:
                    self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.error("Bridge reader failed", error=str(e))
        finally:
            self._available = False
            self._fail_pending(BackendUnavailableError("os_bridge", "Bridge process exited"))

    def _handle_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            self.log.debug("Ignoring non-JSON bridge output", line=line[:200])
            return
        if not isinstance(message, dict):
            return

        if message.get("status") == "ready" and "id" not in message:
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(True)
            return

        request_id = message.get("id")
        entry = self._pending.pop(request_id, None)
        if entry is None:
            self.log.debug("Discarding response for unknown or expired request", id=request_id)
            return

        method, future = entry
        if future.done():
            return

        error = message.get("error")
        if error is not None:
            detail = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            future.set_exception(BackendError(self.name, method, detail))
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, error: Exception) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
        pending = list(self._pending.values())
        self._pending.clear()
        for _, future in pending:
            if not future.done():
                future.set_exception(error)

    # Pixel input

    async def click(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        if count >= 2:
            await self.call("double_click", [round(x), round(y)])
        else:
            await self.call("click", [round(x), round(y), button])

    async def move_to(self, x: float, y: float) -> None:
        await self.call("move_mouse", [round(x), round(y)])

    async def type_text(self, text: str) -> None:
        await self.call("type_text", [text])

    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        await self.call("press_key", [key, list(modifiers)])

    async def scroll(self, x: float, y: float, direction: str, amount: int) -> None:
        dx, dy = _SCROLL_DELTAS.get(direction, (0, 1))
        await self.call("scroll", [round(x), round(y), dx * amount, dy * amount])

    async def drag(self, from_x: float, from_y: float, to_x: float, to_y: float) -> None:
        await self.call("drag", [round(from_x), round(from_y), round(to_x), round(to_y)])

    async def screenshot(self) -> str:
        result = await self.call("screenshot")
        if isinstance(result, dict):
            return result.get("data", "")
        return result or ""

    async def get_screen_size(self) -> tuple[int, int]:
        result = await self.call("get_screen_size")
        if isinstance(result, dict):
            return int(result["width"]), int(result["height"])
        return int(result[0]), int(result[1])

    # Application control

    async def find_application(self, name: str) -> Any:
        return await self.call("find_application", [name])

    async def activate_application(self, name: str) -> None:
        await self.call("activate_application", [name])
