"""Structural backend built on the agent-browser CLI.

agent-browser drives a Chromium DevTools (CDP) endpoint, which Tauri and
Electron web views expose. Every call runs one CLI command with ``--json``
and parses the ``{"success", "data", "error"}`` envelope it prints.

Queries (``is visible``, ``get count``) treat an unsuccessful envelope as
"no match". Actions raise ``BackendError`` instead. A missing binary raises
``BackendUnavailableError`` and a hung command ``OperationTimeoutError``.
"""

import asyncio
import base64
import itertools
import json
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Optional

import structlog

from webview_pilot.config import PilotSettings
from webview_pilot.execution.errors import BackendError, BackendUnavailableError, OperationTimeoutError
from webview_pilot.execution.models import BoundingBox, ElementHandle, Locator, LocatorStrategy, Snapshot

from .base import BackendCapabilities, StructuralBackend

logger = structlog.get_logger()


def to_selector(locator: Locator) -> str:
    """Translate a canonical locator into agent-browser selector syntax."""
    if locator.strategy == LocatorStrategy.REFERENCE:
        return locator.value if locator.value.startswith("@") else f"@{locator.value}"
    if locator.strategy == LocatorStrategy.XPATH:
        return f"xpath={locator.value}"
    if locator.strategy == LocatorStrategy.TEXT:
        return f"text={locator.value}"
    if locator.strategy == LocatorStrategy.ROLE:
        return f"role={locator.value}"
    # CSS and [data-testid=...] selectors pass through unchanged
    return locator.value


def with_nth(selector: str, nth: Optional[int]) -> str:
    """Narrow a selector to its nth match. References already name one element."""
    if nth is None or selector.startswith("@"):
        return selector
    return f"{selector} >> nth={nth}"


class AgentBrowserAdapter(StructuralBackend):
    """Runs agent-browser commands against a CDP endpoint.

    Example:
        adapter = AgentBrowserAdapter(cdp_endpoint="9222")
        await adapter.initialize()
        snapshot = await adapter.snapshot()
        await adapter.act(snapshot.refs["e3"], "click", {})
    """

    name = "structural"
    capabilities = BackendCapabilities(screenshot=True, recording=True)

    def __init__(
        self,
        cdp_endpoint: str = "9222",
        binary: str = "agent-browser",
        session: Optional[str] = None,
        timeout_ms: int = 30000,
    ):
        self.cdp_endpoint = cdp_endpoint
        self.binary = binary
        self.session = session or f"pilot-{uuid.uuid4().hex[:8]}"
        self.timeout_ms = timeout_ms
        self._connected = False
        self._ref_counter = itertools.count(1)
        self.log = logger.bind(component="agent_browser", session=self.session)

    @classmethod
    def from_settings(cls, settings: PilotSettings) -> "AgentBrowserAdapter":
        return cls(
            cdp_endpoint=settings.cdp_endpoint,
            binary=settings.agent_browser_path,
            session=settings.session_name,
            timeout_ms=settings.cdp_timeout_ms,
        )

    # Lifecycle

    async def initialize(self) -> None:
        if self._connected:
            return

        returncode, _, stderr = await self._run_process([self.binary, "--version"], self.timeout_ms)
        if returncode != 0:
            raise BackendUnavailableError("structural", f"agent-browser is not usable: {stderr.strip()}")

        await self._command(["open", f"--cdp={self.cdp_endpoint}"])
        self._connected = True
        self.log.info("Connected to CDP endpoint", endpoint=self.cdp_endpoint)

    async def cleanup(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._command(["close"])
        except (BackendError, OperationTimeoutError) as e:
            self.log.warning("agent-browser close failed", error=str(e))

    def is_available(self) -> bool:
        return self._connected

    # Queries

    async def snapshot(self, interactive: bool = True) -> Snapshot:
        args = ["snapshot"]
        if interactive:
            args.append("-i")
        data = await self._command(args)

        refs: dict[str, ElementHandle] = {}
        for ref_id, info in (data.get("refs") or {}).items():
            ref_id = ref_id.lstrip("@")
            refs[ref_id] = ElementHandle(
                id=ref_id,
                role=info.get("role", ""),
                name=info.get("name") or "",
                source="dom",
                selector=f"@{ref_id}",
            )
        return Snapshot(refs=refs, tree=data.get("snapshot", ""))

    async def find_by_selector(self, locator: Locator) -> Optional[ElementHandle]:
        selector = to_selector(locator)
        data = await self._query(["is", "visible", with_nth(selector, locator.nth)])
        if not data or not data.get("visible"):
            return None

        return ElementHandle(
            id=f"cdp_{next(self._ref_counter)}",
            role="element",
            name=locator.value,
            source="dom",
            nth=locator.nth,
            selector=selector,
        )

    async def count_by_selector(self, locator: Locator) -> int:
        data = await self._query(["get", "count", to_selector(locator)])
        if not data:
            return 0
        return int(data.get("count") or 0)

    async def get_text(self, handle: ElementHandle) -> str:
        data = await self._command(["get", "text", self._selector(handle)])
        return data.get("text") or ""

    async def get_value(self, handle: ElementHandle) -> str:
        data = await self._command(["get", "value", self._selector(handle)])
        return data.get("value") or ""

    async def get_attribute(self, handle: ElementHandle, name: str) -> Optional[str]:
        data = await self._command(["get", "attr", self._selector(handle), name])
        return data.get("value")

    async def is_visible(self, handle: ElementHandle) -> bool:
        data = await self._query(["is", "visible", self._selector(handle)])
        return bool(data and data.get("visible"))

    async def is_enabled(self, handle: ElementHandle) -> bool:
        data = await self._query(["is", "enabled", self._selector(handle)])
        return bool(data and data.get("enabled"))

    async def bounding_box(self, handle: ElementHandle) -> Optional[BoundingBox]:
        data = await self._query(["get", "box", self._selector(handle)])
        if not data or data.get("x") is None:
            return None
        return BoundingBox(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data.get("width", 0)),
            height=float(data.get("height", 0)),
        )

    async def get_url(self) -> str:
        data = await self._command(["get", "url"])
        return data.get("url") or ""

    async def get_title(self) -> str:
        data = await self._command(["get", "title"])
        return data.get("title") or ""

    async def evaluate(self, script: str) -> Any:
        data = await self._command(["eval", script])
        return data.get("result")

    # Actions

    async def act(self, handle: ElementHandle, action: str, params: dict[str, Any]) -> None:
        selector = self._selector(handle)

        if action == "click":
            if params.get("count", 1) >= 2:
                await self._command(["dblclick", selector])
            else:
                args = ["click", selector]
                if params.get("button", "left") != "left":
                    args += ["--button", params["button"]]
                await self._command(args)
        elif action == "type":
            await self._command(["type", selector, params.get("text", "")])
        elif action == "hover":
            await self._command(["hover", selector])
        elif action == "scroll":
            await self._command(["hover", selector])
            await self.scroll_page(params.get("direction", "down"), params.get("amount", 300))
        elif action == "drag":
            await self._command(["drag", selector, self._selector(params["target"])])
        elif action == "press":
            await self._command(["focus", selector])
            await self.press_key(params["key"])
        else:
            raise BackendError(self.name, action, f"Unsupported action '{action}'")

    async def press_key(self, key: str) -> None:
        await self._command(["press", key])

    async def type_text(self, text: str) -> None:
        await self._command(["type", ":focus", text])

    async def scroll_page(self, direction: str, amount: int) -> None:
        await self._command(["scroll", direction, str(amount)])

    async def navigate(self, url: str) -> None:
        await self._command(["open", url])

    async def wait_for_idle(self, timeout_ms: int) -> None:
        await self._command(["wait", "--load", "networkidle"], timeout_ms=timeout_ms)

    # Capture

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> str:
        target = path
        if target is None:
            fd, target = tempfile.mkstemp(prefix="pilot-", suffix=".png")
            os.close(fd)

        args = ["screenshot", target]
        if full_page:
            args.append("--full")

        try:
            await self._command(args)
            return base64.b64encode(Path(target).read_bytes()).decode("ascii")
        finally:
            if path is None:
                Path(target).unlink(missing_ok=True)

    async def start_recording(self, path: str) -> None:
        await self._command(["record", "start", path])

    async def stop_recording(self) -> Optional[str]:
        data = await self._command(["record", "stop"])
        return data.get("path")

    # Process plumbing

    @staticmethod
    def _selector(handle: ElementHandle) -> str:
        return with_nth(handle.selector, handle.nth) if handle.selector else f"@{handle.id}"

    async def _run_process(self, argv: list[str], timeout_ms: int) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError(
                "structural", f"agent-browser not found at '{self.binary}'. Install it with: npm install -g agent-browser"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise OperationTimeoutError(f"agent-browser {argv[1] if len(argv) > 1 else ''}".strip(), timeout_ms)

        return (
            process.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _exec(self, args: list[str], timeout_ms: Optional[int] = None) -> dict[str, Any]:
        """Run a command and return its JSON envelope."""
        argv = [self.binary, f"--session={self.session}", *args, "--json"]
        returncode, stdout, stderr = await self._run_process(argv, timeout_ms or self.timeout_ms)

        try:
            envelope = json.loads(stdout) if stdout.strip() else None
        except json.JSONDecodeError:
            envelope = None

        if isinstance(envelope, dict) and "success" in envelope:
            return envelope
        if returncode != 0:
            raise BackendError(self.name, args[0], (stderr or stdout).strip() or f"exit code {returncode}")
        return {"success": True, "data": envelope if isinstance(envelope, dict) else {"output": stdout.strip()}}

    async def _command(self, args: list[str], timeout_ms: Optional[int] = None) -> dict[str, Any]:
        envelope = await self._exec(args, timeout_ms)
        if not envelope.get("success"):
            raise BackendError(self.name, args[0], envelope.get("error") or "command failed")
        return envelope.get("data") or {}

    async def _query(self, args: list[str]) -> Optional[dict[str, Any]]:
        envelope = await self._exec(args)
        if not envelope.get("success"):
            return None
        return envelope.get("data") or {}
