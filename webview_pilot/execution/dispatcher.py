"""Action dispatcher.

Resolves a locator, picks the most precise backend available for the
resulting handle, executes the action and reports a structured
``ActionResult``. Nothing is raised past this layer: a missing element is
NOT_FOUND and every backend failure is FAILED with the error message.

Backend precedence for an element with a bounding box:

    OS bridge  >  native input  >  structural (element-addressed)

Coordinate-only (vision) handles cannot be addressed structurally, so they
fail when no pixel backend is connected.
"""

import time
from enum import Enum
from typing import Any, Optional

import structlog

from .capabilities import PIXEL_PRECEDENCE, BackendKind, CapabilityRegistry
from .errors import BackendUnavailableError
from .locator import normalize
from .models import ActionResult, ActionStatus, ElementHandle, Locator
from .outcomes import OutcomeTracker
from .resolver import HybridResolver

logger = structlog.get_logger()

SELECT_ALL_KEY = "a"
SELECT_ALL_MODIFIER = "Control"
DELETE_KEY = "Backspace"
SUBMIT_KEY = "Enter"


class ActionType(str, Enum):
    """Primitive actions."""

    CLICK = "click"
    TYPE = "type"
    CLEAR = "clear"
    HOVER = "hover"
    SCROLL = "scroll"
    DRAG = "drag"
    PRESS = "press"


class ActionDispatcher:
    """Executes actions on resolved elements.

    Attributes:
        resolver: HybridResolver used for every targeted action
        registry: CapabilityRegistry holding the connected backends
        cost_tracker: Source of the running vision cost (optional)
        outcomes: OutcomeTracker receiving every result (optional)

    Example:
        dispatcher = ActionDispatcher(resolver, registry, cost_tracker)
        result = await dispatcher.click("text=Save")
        result = await dispatcher.fill("#email", "user@example.com")
    """

    def __init__(
        self,
        resolver: HybridResolver,
        registry: CapabilityRegistry,
        cost_tracker=None,
        outcomes: Optional[OutcomeTracker] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.cost_tracker = cost_tracker
        self.outcomes = outcomes
        self.log = logger.bind(component="action_dispatcher")

    async def perform(
        self,
        action: ActionType,
        locator: str | Locator,
        params: Optional[dict[str, Any]] = None,
    ) -> ActionResult:
        """Resolve ``locator`` and execute ``action`` on it."""
        start = time.monotonic()
        locator = normalize(locator)
        params = dict(params or {})

        try:
            handle = await self.resolver.resolve(locator)
            if handle is not None and action == ActionType.DRAG:
                target = params.get("target")
                if not isinstance(target, ElementHandle):
                    target = await self.resolver.resolve(target) if target is not None else None
                    if target is None:
                        return self._finish(action, locator, self._not_found(start, "drag target"))
                    params["target"] = target
        except Exception as e:
            result = ActionResult(
                status=ActionStatus.FAILED,
                duration_ms=self._elapsed(start),
                error=str(e) or type(e).__name__,
            )
            return self._finish(action, locator, result)

        if handle is None:
            return self._finish(action, locator, self._not_found(start))

        result = await self._execute(action, handle, params, start)
        return self._finish(action, locator, result)

    async def perform_on_handle(
        self,
        action: ActionType,
        handle: ElementHandle,
        params: Optional[dict[str, Any]] = None,
    ) -> ActionResult:
        """Execute ``action`` on an already resolved handle."""
        start = time.monotonic()
        result = await self._execute(action, handle, dict(params or {}), start)
        return self._finish(action, handle.id, result)

    # Composite and convenience actions

    async def click(self, locator: str | Locator, button: str = "left", count: int = 1) -> ActionResult:
        return await self.perform(ActionType.CLICK, locator, {"button": button, "count": count})

    async def type(
        self,
        locator: str | Locator,
        text: str,
        clear: bool = False,
        submit: bool = False,
    ) -> ActionResult:
        return await self.perform(ActionType.TYPE, locator, {"text": text, "clear": clear, "submit": submit})

    async def fill(self, locator: str | Locator, text: str) -> ActionResult:
        """Type after clearing the current value."""
        return await self.type(locator, text, clear=True)

    async def clear(self, locator: str | Locator) -> ActionResult:
        return await self.perform(ActionType.CLEAR, locator)

    async def hover(self, locator: str | Locator) -> ActionResult:
        return await self.perform(ActionType.HOVER, locator)

    async def scroll(self, locator: str | Locator, direction: str = "down", amount: int = 300) -> ActionResult:
        return await self.perform(ActionType.SCROLL, locator, {"direction": direction, "amount": amount})

    async def drag(self, source: str | Locator, target: str | Locator | ElementHandle) -> ActionResult:
        return await self.perform(ActionType.DRAG, source, {"target": target})

    async def press(self, key: str, locator: Optional[str | Locator] = None) -> ActionResult:
        """Press a key chord, on an element when ``locator`` is given, otherwise on the focus."""
        if locator is not None:
            return await self.perform(ActionType.PRESS, locator, {"key": key})

        start = time.monotonic()
        try:
            pixel = self.registry.first_available(PIXEL_PRECEDENCE)
            if pixel is not None:
                main_key, modifiers = split_key_chord(key)
                await pixel[1].press_key(main_key, modifiers)
            else:
                await self.registry.require(BackendKind.STRUCTURAL).press_key(key)
            result = ActionResult(status=ActionStatus.SUCCESS, duration_ms=self._elapsed(start))
        except Exception as e:
            result = self._failed(start, e, used_vlm=False)
        return self._finish(ActionType.PRESS, key, result)

    async def type_focused(self, text: str) -> ActionResult:
        """Type into the element that currently has focus."""
        start = time.monotonic()
        try:
            pixel = self.registry.first_available(PIXEL_PRECEDENCE)
            if pixel is not None:
                await pixel[1].type_text(text)
            else:
                await self.registry.require(BackendKind.STRUCTURAL).type_text(text)
            result = ActionResult(status=ActionStatus.SUCCESS, duration_ms=self._elapsed(start))
        except Exception as e:
            result = self._failed(start, e, used_vlm=False)
        return self._finish(ActionType.TYPE, "focus", result)

    async def scroll_page(self, direction: str = "down", amount: int = 300) -> ActionResult:
        """Scroll the view without targeting an element."""
        start = time.monotonic()
        try:
            structural = self.registry.get(BackendKind.STRUCTURAL)
            pixel = self.registry.first_available(PIXEL_PRECEDENCE)
            if structural is not None:
                await structural.scroll_page(direction, amount)
            elif pixel is not None:
                width, height = await pixel[1].get_screen_size()
                await pixel[1].scroll(width / 2, height / 2, direction, amount)
            else:
                raise BackendUnavailableError("structural")
            result = ActionResult(status=ActionStatus.SUCCESS, duration_ms=self._elapsed(start))
        except Exception as e:
            result = self._failed(start, e, used_vlm=False)
        return self._finish(ActionType.SCROLL, "page", result)

    # Execution

    async def _execute(
        self,
        action: ActionType,
        handle: ElementHandle,
        params: dict[str, Any],
        start: float,
    ) -> ActionResult:
        used_vlm = handle.source == "vlm"
        target = params.get("target") if action == ActionType.DRAG else None
        if isinstance(target, ElementHandle) and target.source == "vlm":
            used_vlm = True

        try:
            await self._dispatch(action, handle, params)
        except Exception as e:
            return self._failed(start, e, used_vlm)

        return ActionResult(
            status=ActionStatus.VLM_FALLBACK if used_vlm else ActionStatus.SUCCESS,
            duration_ms=self._elapsed(start),
            used_vlm=used_vlm,
            vlm_cost_usd=self._current_cost() if used_vlm else None,
        )

    async def _dispatch(self, action: ActionType, handle: ElementHandle, params: dict[str, Any]) -> None:
        handles = [handle]
        if action == ActionType.DRAG:
            handles.append(params["target"])

        has_boxes = all(h.bounding_box is not None for h in handles)
        pixel = self.registry.first_available(PIXEL_PRECEDENCE) if has_boxes else None

        if pixel is not None:
            kind, backend = pixel
            self.log.debug("Dispatching to pixel backend", action=action.value, backend=kind.value)
            await self._dispatch_pixel(backend, action, handle, params)
            return

        if any(h.source == "vlm" for h in handles):
            raise BackendUnavailableError(
                "pixel_input",
                f"Cannot {action.value} a coordinate-only element: no OS bridge or native input backend connected",
            )

        structural = self.registry.require(BackendKind.STRUCTURAL)
        await self._dispatch_structural(structural, action, handle, params)

    async def _dispatch_pixel(self, backend, action: ActionType, handle: ElementHandle, params: dict[str, Any]) -> None:
        x, y = handle.bounding_box.center

        if action == ActionType.CLICK:
            await backend.click(x, y, button=params.get("button", "left"), count=params.get("count", 1))
        elif action == ActionType.TYPE:
            await backend.click(x, y)
            if params.get("clear"):
                await backend.press_key(SELECT_ALL_KEY, [SELECT_ALL_MODIFIER])
                await backend.press_key(DELETE_KEY)
            await backend.type_text(params.get("text", ""))
            if params.get("submit"):
                await backend.press_key(SUBMIT_KEY)
        elif action == ActionType.CLEAR:
            await backend.click(x, y)
            await backend.press_key(SELECT_ALL_KEY, [SELECT_ALL_MODIFIER])
            await backend.press_key(DELETE_KEY)
        elif action == ActionType.HOVER:
            await backend.move_to(x, y)
        elif action == ActionType.SCROLL:
            await backend.scroll(x, y, params.get("direction", "down"), params.get("amount", 300))
        elif action == ActionType.DRAG:
            to_x, to_y = params["target"].bounding_box.center
            await backend.drag(x, y, to_x, to_y)
        elif action == ActionType.PRESS:
            await backend.click(x, y)
            main_key, modifiers = split_key_chord(params["key"])
            await backend.press_key(main_key, modifiers)
        else:
            raise ValueError(f"Unsupported action: {action}")

    async def _dispatch_structural(
        self, structural, action: ActionType, handle: ElementHandle, params: dict[str, Any]
    ) -> None:
        if action == ActionType.CLICK:
            await structural.act(
                handle, "click", {"button": params.get("button", "left"), "count": params.get("count", 1)}
            )
        elif action == ActionType.TYPE:
            if params.get("clear"):
                await self._clear_structural(structural, handle)
            await structural.act(handle, "type", {"text": params.get("text", "")})
            if params.get("submit"):
                await structural.press_key(SUBMIT_KEY)
        elif action == ActionType.CLEAR:
            await self._clear_structural(structural, handle)
        elif action == ActionType.HOVER:
            await structural.act(handle, "hover", {})
        elif action == ActionType.SCROLL:
            await structural.act(
                handle, "scroll", {"direction": params.get("direction", "down"), "amount": params.get("amount", 300)}
            )
        elif action == ActionType.DRAG:
            await structural.act(handle, "drag", {"target": params["target"]})
        elif action == ActionType.PRESS:
            await structural.act(handle, "press", {"key": params["key"]})
        else:
            raise ValueError(f"Unsupported action: {action}")

    async def _clear_structural(self, structural, handle: ElementHandle) -> None:
        await structural.act(handle, "click", {"button": "left", "count": 1})
        await structural.press_key(f"{SELECT_ALL_MODIFIER}+{SELECT_ALL_KEY}")
        await structural.press_key(DELETE_KEY)

    # Result helpers

    def _current_cost(self) -> float:
        if self.cost_tracker is None:
            return 0.0
        return self.cost_tracker.total_cost

    @staticmethod
    def _elapsed(start: float) -> int:
        return max(0, int((time.monotonic() - start) * 1000))

    def _not_found(self, start: float, what: str = "element") -> ActionResult:
        return ActionResult(
            status=ActionStatus.NOT_FOUND,
            duration_ms=self._elapsed(start),
            error=f"{what} not found",
        )

    def _failed(self, start: float, error: Exception, used_vlm: bool) -> ActionResult:
        return ActionResult(
            status=ActionStatus.FAILED,
            duration_ms=self._elapsed(start),
            used_vlm=used_vlm,
            error=str(error) or type(error).__name__,
        )

    def _finish(self, action: ActionType, target: Any, result: ActionResult) -> ActionResult:
        if result.status == ActionStatus.NOT_FOUND:
            self.log.info("Action target not found", action=action.value, target=str(target))
        elif result.status == ActionStatus.FAILED:
            self.log.warning("Action failed", action=action.value, target=str(target), error=result.error)
        elif result.used_vlm:
            self.log.info(
                "Action completed via vision model",
                action=action.value,
                target=str(target),
                vlm_cost_usd=result.vlm_cost_usd,
            )

        if self.outcomes is not None:
            self.outcomes.record(action.value, str(target), result)
        return result


def split_key_chord(key: str) -> tuple[str, list[str]]:
    """Split ``"Control+Shift+a"`` into ``("a", ["Control", "Shift"])``."""
    parts = [part for part in key.split("+") if part]
    if not parts:
        return key, []
    return parts[-1], parts[:-1]
