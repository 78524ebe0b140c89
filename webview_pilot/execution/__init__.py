"""Hybrid resolution and action engine.

This module resolves locators against a web-view desktop application and
executes actions through the most precise backend available:
- Deterministic resolution through snapshot references and selectors (fast)
- Vision model fallback on a fresh screenshot (slower, costs money)
- Pixel-level input through the OS bridge or native input when coordinates
  are known, element-addressed input through the structural backend otherwise

Architecture:
    locator string
          │
          ▼
    normalize() ──> HybridResolver ──────────────> ActionDispatcher
                      │ 1. SnapshotCache (refs)        │ OS bridge
                      │ 2. structural selector         │ > native input
                      │ 3. vision model                │ > structural
                      ▼                                ▼
                 ElementHandle                    ActionResult ──> OutcomeTracker

Usage:
    from webview_pilot.session import DesktopSession

    async with DesktopSession() as session:
        await session.snapshot()
        result = await session.click("@e3")
        result = await session.fill("text=Email", "user@example.com")
        print(session.get_cost_summary().total_cost)
"""

from .capabilities import (
    PIXEL_PRECEDENCE,
    SCREENSHOT_PRECEDENCE,
    BackendKind,
    CapabilityRegistry,
)
from .dispatcher import ActionDispatcher, ActionType
from .errors import (
    BackendError,
    BackendUnavailableError,
    ElementNotFoundError,
    OperationTimeoutError,
    PilotError,
    SessionNotConnectedError,
)
from .locator import normalize, to_description, visual
from .models import (
    ActionResult,
    ActionStatus,
    BoundingBox,
    ElementHandle,
    Locator,
    LocatorStrategy,
    ResolutionMode,
    Snapshot,
)
from .outcomes import ExecutionStats, OutcomeRecord, OutcomeTracker
from .resolver import DeterministicResolver, HybridResolver, VisualResolver
from .snapshot_cache import SnapshotCache
from .wait import wait_for

__all__ = [
    # Registry
    "PIXEL_PRECEDENCE",
    "SCREENSHOT_PRECEDENCE",
    "BackendKind",
    "CapabilityRegistry",
    # Dispatch
    "ActionDispatcher",
    "ActionType",
    # Errors
    "BackendError",
    "BackendUnavailableError",
    "ElementNotFoundError",
    "OperationTimeoutError",
    "PilotError",
    "SessionNotConnectedError",
    # Locators
    "normalize",
    "to_description",
    "visual",
    # Models
    "ActionResult",
    "ActionStatus",
    "BoundingBox",
    "ElementHandle",
    "Locator",
    "LocatorStrategy",
    "ResolutionMode",
    "Snapshot",
    # Outcomes
    "ExecutionStats",
    "OutcomeRecord",
    "OutcomeTracker",
    # Resolution
    "DeterministicResolver",
    "HybridResolver",
    "VisualResolver",
    "SnapshotCache",
    "wait_for",
]
