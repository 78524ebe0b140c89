"""Desktop test session.

``DesktopSession`` owns the backend lifecycle and composes locator
normalization, snapshot caching, hybrid resolution, action dispatch and cost
tracking into the public testing API.

Example:
    from webview_pilot.session import create_desktop_session

    session = await create_desktop_session()
    try:
        await session.snapshot()
        await session.click("@e3")
        await session.fill("text=Email", "user@example.com")
        await session.wait_for("text=Welcome", timeout_ms=5000)

        result = await session.click_text("Continue")
        if result.used_vlm:
            print(f"Vision cost so far: ${result.vlm_cost_usd:.4f}")
    finally:
        await session.disconnect()
"""

import asyncio
import base64
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

from webview_pilot.adapters.agent_browser import AgentBrowserAdapter
from webview_pilot.adapters.native_input import PyAutoGUIAdapter
from webview_pilot.adapters.os_bridge import OSBridge
from webview_pilot.config import PilotSettings, VisionProvider, get_settings
from webview_pilot.environment import detect_agent_environment, resolve_vision_provider
from webview_pilot.execution.capabilities import BackendKind, CapabilityRegistry
from webview_pilot.execution.dispatcher import ActionDispatcher, ActionType
from webview_pilot.execution.errors import (
    BackendUnavailableError,
    ElementNotFoundError,
    SessionNotConnectedError,
)
from webview_pilot.execution.locator import normalize, visual
from webview_pilot.execution.models import (
    ActionResult,
    BoundingBox,
    ElementHandle,
    Locator,
    LocatorStrategy,
    ResolutionMode,
    Snapshot,
    WaitState,
)
from webview_pilot.execution.outcomes import ExecutionStats, OutcomeTracker
from webview_pilot.execution.resolver import DeterministicResolver, HybridResolver, VisualResolver
from webview_pilot.execution.snapshot_cache import SnapshotCache
from webview_pilot.execution.wait import wait_for
from webview_pilot.utils.logging import configure_logging, log_operation
from webview_pilot.vision.agent_bridge import AgentBridge
from webview_pilot.vision.client import VisionClient
from webview_pilot.vision.cost_tracker import CostSummary, CostTracker
from webview_pilot.vision.models import ActionRequest, ActionResponse, AssertRequest, AssertResponse

logger = structlog.get_logger()

# Marks a backend argument that should be built from settings
_FROM_SETTINGS: Any = object()


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class AgentStep:
    """One iteration of the vision agent loop."""

    action: ActionResponse
    result: Optional[ActionResult] = None


@dataclass
class AgentRunResult:
    """Outcome of ``DesktopSession.ai()``."""

    instruction: str
    finished: bool
    steps: list[AgentStep] = field(default_factory=list)
    cost_usd: float = 0.0

    @property
    def iterations(self) -> int:
        return len(self.steps)


class DesktopSession:
    """Hybrid DOM/vision test session against a web-view desktop app.

    Connection order is structural (required), OS bridge (optional), native
    input (only without an OS bridge), vision (only outside deterministic
    mode). Optional backends that fail to connect are logged and skipped.

    Attributes:
        settings: PilotSettings for this session
        mode: ResolutionMode, fixed for the session lifetime
        registry: CapabilityRegistry of connected backends
        cost_tracker: CostTracker for vision calls
        resolver: HybridResolver
        dispatcher: ActionDispatcher
    """

    def __init__(
        self,
        settings: Optional[PilotSettings] = None,
        *,
        structural: Any = _FROM_SETTINGS,
        os_bridge: Any = _FROM_SETTINGS,
        native_input: Any = _FROM_SETTINGS,
        vision: Any = _FROM_SETTINGS,
        cost_tracker: Optional[CostTracker] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the session.

        Backends default to the adapters configured in ``settings``; pass an
        instance to override one, or None to disable an optional one.

        Args:
            settings: Settings (defaults to environment)
            structural: Structural backend
            os_bridge: OS bridge backend
            native_input: Native input backend
            vision: Vision backend
            cost_tracker: Shared cost tracker
            environ: Environment used for agent-mode detection
        """
        self.settings = settings or get_settings()
        self.mode = self.settings.mode
        self.cost_tracker = cost_tracker or CostTracker()

        # Agent-mode detection happens once, here
        self.vision_provider: Optional[VisionProvider] = resolve_vision_provider(self.settings, environ)
        self.agent_environment = detect_agent_environment(environ)

        if structural is _FROM_SETTINGS:
            structural = AgentBrowserAdapter.from_settings(self.settings)
        if os_bridge is _FROM_SETTINGS:
            os_bridge = OSBridge.from_settings(self.settings)
        if native_input is _FROM_SETTINGS:
            native_input = PyAutoGUIAdapter.from_settings(self.settings)
        if vision is _FROM_SETTINGS:
            vision = self._build_vision()

        self._backends: dict[BackendKind, Any] = {
            BackendKind.STRUCTURAL: structural,
            BackendKind.OS_BRIDGE: os_bridge,
            BackendKind.NATIVE_INPUT: native_input,
            BackendKind.VISION: vision,
        }

        self.registry = CapabilityRegistry()
        self.cache = SnapshotCache(
            lambda: self.registry.require(BackendKind.STRUCTURAL),
            include_screenshot=self.mode != ResolutionMode.DETERMINISTIC,
        )
        self.outcomes = OutcomeTracker()
        self.deterministic = DeterministicResolver(self.registry, self.cache)
        self.visual = VisualResolver(self.registry)
        self.resolver = HybridResolver(self.deterministic, self.visual, self.mode)
        self.dispatcher = ActionDispatcher(self.resolver, self.registry, self.cost_tracker, self.outcomes)

        self.state = SessionState.DISCONNECTED
        self.log = logger.bind(component="desktop_session", mode=self.mode.value)

    def _build_vision(self) -> Optional[Any]:
        if self.vision_provider is None or self.mode == ResolutionMode.DETERMINISTIC:
            return None
        if self.vision_provider == VisionProvider.AGENT:
            return AgentBridge(self.settings.agent_exchange_dir, self.agent_environment)
        return VisionClient.from_settings(self.settings, self.vision_provider, self.cost_tracker)

    # Lifecycle

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    async def connect(self) -> None:
        """Connect all configured backends. No-op when already connected.

        Raises:
            Exception: Whatever the structural backend raised when it failed
        """
        if self.state != SessionState.DISCONNECTED:
            return

        self.state = SessionState.CONNECTING
        try:
            with log_operation("connect", self.log) as op:
                structural = self._backends[BackendKind.STRUCTURAL]
                if structural is None:
                    raise BackendUnavailableError("structural", "No structural backend configured")
                await structural.initialize()
                self.registry.register(BackendKind.STRUCTURAL, structural)

                await self._connect_optional(BackendKind.OS_BRIDGE)
                if not self.registry.is_available(BackendKind.OS_BRIDGE):
                    await self._connect_optional(BackendKind.NATIVE_INPUT)
                if self.mode != ResolutionMode.DETERMINISTIC:
                    await self._connect_optional(BackendKind.VISION)

                op["backends"] = [kind.value for kind in self.registry.connected_kinds()]
        except BaseException:
            await self._teardown()
            self.state = SessionState.DISCONNECTED
            raise

        self.state = SessionState.CONNECTED
        if self.mode != ResolutionMode.DETERMINISTIC and not self.registry.is_available(BackendKind.VISION):
            self.log.warning("No vision backend connected, resolving deterministically only")

    async def _connect_optional(self, kind: BackendKind) -> None:
        backend = self._backends[kind]
        if backend is None:
            return
        try:
            await backend.initialize()
        except Exception as e:
            self.log.warning("Optional backend failed to connect", backend=kind.value, error=str(e))
            return
        self.registry.register(kind, backend)

    async def disconnect(self, reset_costs: bool = False) -> None:
        """Tear down backends in reverse connection order. No-op when disconnected.

        Args:
            reset_costs: Also clear the cost tracker
        """
        if self.state == SessionState.DISCONNECTED:
            return

        await self._teardown()
        self.state = SessionState.DISCONNECTED
        if reset_costs:
            self.cost_tracker.reset()
        self.log.info("Disconnected")

    async def _teardown(self) -> None:
        for kind, backend in reversed(self.registry.registered()):
            try:
                await backend.cleanup()
            except Exception as e:
                self.log.warning("Backend cleanup failed", backend=kind.value, error=str(e))
        self.registry.clear()
        self.cache.invalidate()

    async def __aenter__(self) -> "DesktopSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _ensure_connected(self, operation: str) -> None:
        if self.state != SessionState.CONNECTED:
            raise SessionNotConnectedError(operation)

    def _structural(self, operation: str) -> Any:
        self._ensure_connected(operation)
        return self.registry.require(BackendKind.STRUCTURAL)

    # Snapshot and navigation

    async def snapshot(self, interactive: bool = True) -> Snapshot:
        """Take a fresh snapshot; its references replace the previous ones."""
        self._ensure_connected("snapshot")
        return await self.cache.refresh(interactive=interactive)

    def invalidate_snapshot(self) -> None:
        self.cache.invalidate()

    async def navigate(self, url: str) -> None:
        structural = self._structural("navigate")
        await structural.navigate(url)
        self.cache.invalidate()

    # Resolution

    async def find(self, locator: str | Locator) -> Optional[ElementHandle]:
        """Resolve a locator. Returns None when nothing matches."""
        self._ensure_connected("find")
        return await self.resolver.resolve(locator)

    async def find_all(self, locator: str | Locator) -> list[ElementHandle]:
        """One handle per match. Handles share the selector and differ by ``nth``."""
        self._ensure_connected("find_all")
        locator = normalize(locator)

        if locator.strategy in (LocatorStrategy.REFERENCE, LocatorStrategy.VISUAL):
            handle = await self.resolver.resolve(locator)
            return [handle] if handle else []

        total = await self.deterministic.count(locator)
        if total == 0:
            return []
        first = await self.deterministic.resolve(locator)
        if first is None:
            return []
        return [replace(first, id=f"{first.id}_{i}", nth=i) for i in range(total)]

    async def count(self, locator: str | Locator) -> int:
        self._ensure_connected("count")
        return await self.deterministic.count(normalize(locator))

    async def wait_for(
        self,
        locator: str | Locator,
        timeout_ms: Optional[int] = None,
        interval_ms: Optional[int] = None,
        state: WaitState = "visible",
    ) -> Optional[ElementHandle]:
        """Wait for a locator to become visible (returns its handle) or hidden (returns None).

        Raises:
            OperationTimeoutError: If the state is not reached in time
        """
        self._ensure_connected("wait_for")
        return await wait_for(
            self.resolver,
            locator,
            timeout_ms=timeout_ms if timeout_ms is not None else self.settings.default_timeout_ms,
            interval_ms=interval_ms if interval_ms is not None else self.settings.wait_interval_ms,
            state=state,
        )

    # Actions

    async def click(self, locator: str | Locator, button: str = "left", count: int = 1) -> ActionResult:
        return await self.dispatcher.click(locator, button=button, count=count)

    async def dblclick(self, locator: str | Locator) -> ActionResult:
        return await self.dispatcher.click(locator, count=2)

    async def right_click(self, locator: str | Locator) -> ActionResult:
        return await self.dispatcher.click(locator, button="right")

    async def type(self, locator: str | Locator, text: str, clear: bool = False, submit: bool = False) -> ActionResult:
        return await self.dispatcher.type(locator, text, clear=clear, submit=submit)

    async def fill(self, locator: str | Locator, text: str) -> ActionResult:
        return await self.dispatcher.fill(locator, text)

    async def clear(self, locator: str | Locator) -> ActionResult:
        return await self.dispatcher.clear(locator)

    async def press(self, key: str, locator: Optional[str | Locator] = None) -> ActionResult:
        return await self.dispatcher.press(key, locator)

    async def hover(self, locator: str | Locator) -> ActionResult:
        return await self.dispatcher.hover(locator)

    async def scroll(
        self,
        locator: Optional[str | Locator] = None,
        direction: str = "down",
        amount: int = 300,
    ) -> ActionResult:
        if locator is None:
            return await self.dispatcher.scroll_page(direction, amount)
        return await self.dispatcher.scroll(locator, direction, amount)

    async def drag(self, source: str | Locator, target: str | Locator) -> ActionResult:
        return await self.dispatcher.drag(source, target)

    async def click_text(self, text: str) -> ActionResult:
        """Click a button or link by its visible text using the vision model."""
        return await self.click(visual(f'button or link with text "{text}"'))

    async def click_image(self, description: str) -> ActionResult:
        """Click whatever the vision model finds for a free-form description."""
        return await self.click(visual(description))

    # Vision

    def _require_vision(self, operation: str) -> Any:
        self._ensure_connected(operation)
        vision = self.registry.get(BackendKind.VISION)
        if vision is None:
            raise BackendUnavailableError("vision", f"Cannot {operation}: no vision backend connected")
        return vision

    async def ai(self, instruction: str, max_iterations: Optional[int] = None) -> AgentRunResult:
        """Let the vision model drive the app until it reports the task finished.

        Each iteration sends a screenshot and the instruction, then executes
        the single action the model returns.
        """
        vision = self._require_vision("ai")
        max_iterations = max_iterations or self.settings.agent_max_iterations
        run = AgentRunResult(instruction=instruction, finished=False)
        history: list[str] = []

        for iteration in range(max_iterations):
            screenshot = await self.visual.capture_screenshot()
            response = await vision.get_next_action(
                ActionRequest(screenshot=screenshot, instruction=instruction, history=list(history))
            )
            self.log.info(
                "Agent step",
                iteration=iteration + 1,
                action=response.action_type,
                thought=response.thought,
            )

            if response.finished or response.action_type == "finished":
                run.steps.append(AgentStep(action=response))
                run.finished = True
                break

            result = await self._execute_agent_action(instruction, response)
            run.steps.append(AgentStep(action=response, result=result))
            history.append(f"{response.action_type} {response.action_params}")

            await asyncio.sleep(self.settings.agent_step_delay_ms / 1000)

        run.cost_usd = self.cost_tracker.total_cost
        if not run.finished:
            self.log.warning("Agent stopped before finishing", iterations=run.iterations)
        return run

    async def _execute_agent_action(self, instruction: str, response: ActionResponse) -> Optional[ActionResult]:
        params = response.action_params
        action = response.action_type

        if action == "click":
            x, y = params.get("x"), params.get("y")
            if x is None or y is None:
                coordinates = params.get("coordinates") or {}
                x, y = coordinates.get("x"), coordinates.get("y")
            if x is None or y is None:
                self.log.warning("Agent click without coordinates", params=params)
                return None
            handle = ElementHandle(
                id=f"vlm_{uuid.uuid4().hex[:12]}",
                role="visual",
                name=instruction,
                bounding_box=BoundingBox(x=float(x), y=float(y), width=1, height=1),
                source="vlm",
            )
            return await self.dispatcher.perform_on_handle(ActionType.CLICK, handle)
        if action == "type":
            return await self.dispatcher.type_focused(str(params.get("text", "")))
        if action == "scroll":
            return await self.dispatcher.scroll_page(params.get("direction", "down"), int(params.get("amount", 300)))
        if action == "press":
            return await self.dispatcher.press(str(params.get("key", "Enter")))
        if action == "wait":
            await asyncio.sleep(1)
            return None

        self.log.warning("Unknown agent action", action=action)
        return None

    async def assert_visual(self, assertion: str, expected: Optional[str] = None) -> AssertResponse:
        """Ask the vision model whether ``assertion`` holds on the current screen."""
        vision = self._require_vision("assert_visual")
        screenshot = await self.visual.capture_screenshot()
        return await vision.assert_visual(AssertRequest(screenshot=screenshot, assertion=assertion, expected=expected))

    # Element queries

    async def _resolve_structural(self, locator: str | Locator, operation: str) -> ElementHandle:
        self._ensure_connected(operation)
        handle = await self.resolver.resolve(locator)
        if handle is None:
            raise ElementNotFoundError(normalize(locator))
        if handle.source == "vlm":
            raise BackendUnavailableError(
                "structural", f"Cannot {operation} on an element located only by the vision model"
            )
        return handle

    async def get_text(self, locator: str | Locator) -> str:
        handle = await self._resolve_structural(locator, "get_text")
        return await self.registry.require(BackendKind.STRUCTURAL).get_text(handle)

    async def get_value(self, locator: str | Locator) -> str:
        handle = await self._resolve_structural(locator, "get_value")
        return await self.registry.require(BackendKind.STRUCTURAL).get_value(handle)

    async def get_attribute(self, locator: str | Locator, name: str) -> Optional[str]:
        handle = await self._resolve_structural(locator, "get_attribute")
        return await self.registry.require(BackendKind.STRUCTURAL).get_attribute(handle, name)

    async def is_visible(self, locator: str | Locator) -> bool:
        handle = await self.find(locator)
        if handle is None:
            return False
        if handle.source == "vlm":
            return True
        return await self.registry.require(BackendKind.STRUCTURAL).is_visible(handle)

    async def is_enabled(self, locator: str | Locator) -> bool:
        handle = await self.find(locator)
        if handle is None:
            return False
        if handle.source == "vlm":
            return True
        return await self.registry.require(BackendKind.STRUCTURAL).is_enabled(handle)

    async def bounding_box(self, locator: str | Locator) -> Optional[BoundingBox]:
        handle = await self.find(locator)
        if handle is None:
            return None
        if handle.bounding_box is not None:
            return handle.bounding_box
        return await self.registry.require(BackendKind.STRUCTURAL).bounding_box(handle)

    # Page

    async def get_url(self) -> str:
        return await self._structural("get_url").get_url()

    async def get_title(self) -> str:
        return await self._structural("get_title").get_title()

    async def evaluate(self, script: str) -> Any:
        return await self._structural("evaluate").evaluate(script)

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False, save: bool = False) -> str:
        """Capture the app. Returns base64 PNG data.

        The image is written to ``path`` when given. With ``save`` and no path
        it goes to a timestamped file under the screenshot directory.
        """
        self._ensure_connected("screenshot")
        if path is None and save:
            path = str(Path(self.settings.screenshot_dir) / f"screenshot-{int(time.time() * 1000)}.png")
        structural = self.registry.get(BackendKind.STRUCTURAL)
        if structural is not None and structural.capabilities.screenshot:
            if path:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            return await structural.screenshot(path, full_page)

        data = await self.visual.capture_screenshot()
        if path:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_bytes(base64.b64decode(data))
        return data

    async def start_recording(self, path: Optional[str] = None) -> str:
        """Start recording a video. Returns the target path."""
        structural = self._structural("start_recording")
        if not structural.capabilities.recording:
            raise BackendUnavailableError("recording", "The structural backend cannot record video")

        if path is None:
            path = str(Path(self.settings.video_dir) / f"recording-{int(time.time() * 1000)}.webm")
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await structural.start_recording(path)
        return path

    async def stop_recording(self) -> Optional[str]:
        structural = self._structural("stop_recording")
        if not structural.capabilities.recording:
            raise BackendUnavailableError("recording", "The structural backend cannot record video")
        return await structural.stop_recording()

    async def activate_application(self, name: str) -> None:
        """Bring an application to the foreground through the OS bridge."""
        self._ensure_connected("activate_application")
        bridge = self.registry.require(BackendKind.OS_BRIDGE)
        await bridge.activate_application(name)

    # Timing

    async def wait(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000)

    async def wait_for_idle(self, timeout_ms: int = 5000) -> None:
        await self._structural("wait_for_idle").wait_for_idle(timeout_ms)

    # Cost and stats

    def get_cost_summary(self) -> CostSummary:
        return self.cost_tracker.get_summary()

    def reset_cost_tracking(self) -> None:
        self.cost_tracker.reset()

    def get_stats(self) -> ExecutionStats:
        return self.outcomes.get_stats()

    def get_common_failures(self, top_n: int = 10) -> list[dict]:
        return self.outcomes.get_common_failures(top_n)


async def create_desktop_session(
    settings: Optional[PilotSettings] = None,
    connect: bool = True,
    **backends: Any,
) -> DesktopSession:
    """Create a session from settings, configure logging and optionally connect.

    Args:
        settings: Settings (defaults to environment)
        connect: Connect before returning
        **backends: Backend overrides passed to DesktopSession

    Returns:
        DesktopSession instance
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)

    session = DesktopSession(settings, **backends)
    if connect:
        await session.connect()
    return session
