"""Locator resolution.

Resolution runs through an ordered chain:

    1. Reference lookup in the snapshot cache   (REFERENCE locators only)
    2. Structural selector query                 (all other strategies)
    3. Vision model on a fresh screenshot        (HYBRID / VISUAL modes)

A reference is either in the current snapshot or it is not; it never falls
through to a structural query. "Not found" is returned as None. Backend
failures (not connected, CLI errors) propagate so callers can tell "the
element doesn't exist" apart from "we can't currently check".
"""

import uuid
from typing import Optional

import structlog

from webview_pilot.vision.models import FindRequest

from .capabilities import SCREENSHOT_PRECEDENCE, BackendKind, CapabilityRegistry
from .errors import BackendUnavailableError
from .locator import normalize, to_description
from .models import BoundingBox, ElementHandle, Locator, LocatorStrategy, ResolutionMode
from .snapshot_cache import SnapshotCache

logger = structlog.get_logger()


class DeterministicResolver:
    """Resolves locators through the snapshot cache or the structural backend."""

    def __init__(self, registry: CapabilityRegistry, cache: SnapshotCache):
        self.registry = registry
        self.cache = cache
        self.log = logger.bind(component="deterministic_resolver")

    async def resolve(self, locator: Locator) -> Optional[ElementHandle]:
        if locator.strategy == LocatorStrategy.REFERENCE:
            return await self.cache.lookup(locator.value)

        # Descriptions only make sense to the vision model
        if locator.strategy == LocatorStrategy.VISUAL:
            return None

        structural = self.registry.require(BackendKind.STRUCTURAL)
        return await structural.find_by_selector(locator)

    async def count(self, locator: Locator) -> int:
        if locator.strategy == LocatorStrategy.REFERENCE:
            return 1 if await self.cache.lookup(locator.value) else 0
        if locator.strategy == LocatorStrategy.VISUAL:
            return 0
        structural = self.registry.require(BackendKind.STRUCTURAL)
        return await structural.count_by_selector(locator)


class VisualResolver:
    """Resolves locators by asking the vision backend about a screenshot."""

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry
        self.log = logger.bind(component="visual_resolver")

    @property
    def configured(self) -> bool:
        return self.registry.is_available(BackendKind.VISION)

    async def capture_screenshot(self) -> str:
        """Screenshot from the first capture-capable backend.

        Raises:
            BackendUnavailableError: If no connected backend can capture
        """
        for kind in SCREENSHOT_PRECEDENCE:
            backend = self.registry.get(kind)
            if backend is None:
                continue
            if kind == BackendKind.STRUCTURAL and not backend.capabilities.screenshot:
                continue
            return await backend.screenshot()

        raise BackendUnavailableError("screenshot", "No connected backend can capture screenshots")

    async def resolve(self, locator: Locator) -> Optional[ElementHandle]:
        vision = self.registry.get(BackendKind.VISION)
        if vision is None:
            return None

        screenshot = await self.capture_screenshot()
        description = to_description(locator)
        result = await vision.find_element(FindRequest(screenshot=screenshot, description=description))

        if result.not_found or result.coordinates is None:
            self.log.debug(
                "Vision model did not find element",
                description=description,
                reasoning=result.reasoning,
                alternative=result.alternative,
            )
            return None

        x, y = result.coordinates
        self.log.info(
            "Element located by vision model",
            description=description,
            x=x,
            y=y,
            confidence=result.confidence,
        )
        # A point, not a region: a 1x1 box anchored at the reported coordinates
        return ElementHandle(
            id=f"vlm_{uuid.uuid4().hex[:12]}",
            role="visual",
            name=locator.value,
            bounding_box=BoundingBox(x=x, y=y, width=1, height=1),
            source="vlm",
            nth=locator.nth,
        )


class HybridResolver:
    """Combines deterministic and visual resolution according to the mode.

    Example:
        resolver = HybridResolver(deterministic, visual, ResolutionMode.HYBRID)
        handle = await resolver.resolve("text=Save")
        if handle is None:
            print("not found")
    """

    def __init__(
        self,
        deterministic: DeterministicResolver,
        visual: Optional[VisualResolver] = None,
        mode: ResolutionMode = ResolutionMode.HYBRID,
    ):
        self.deterministic = deterministic
        self.visual = visual
        self.mode = mode
        self.log = logger.bind(component="hybrid_resolver")

    async def resolve(
        self,
        locator: str | Locator,
        mode: Optional[ResolutionMode] = None,
    ) -> Optional[ElementHandle]:
        locator = normalize(locator)
        mode = mode or self.mode

        if mode != ResolutionMode.VISUAL:
            handle = await self.deterministic.resolve(locator)
            if handle is not None:
                return handle
            # References are bound to the snapshot; vision cannot recover them
            if locator.strategy == LocatorStrategy.REFERENCE:
                return None

        if mode != ResolutionMode.DETERMINISTIC and self.visual is not None and self.visual.configured:
            if mode == ResolutionMode.HYBRID:
                self.log.info("Falling back to vision model", locator=str(locator))
            return await self.visual.resolve(locator)

        return None
