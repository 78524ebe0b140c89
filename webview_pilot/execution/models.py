"""Data models for the hybrid resolution and action engine.

This module defines the core data structures shared by the resolver,
dispatcher and session:
- LocatorStrategy / Locator: canonical element locators
- BoundingBox / ElementHandle: resolved, actionable elements
- Snapshot: one structural listing of interactive elements
- ActionStatus / ActionResult: outcome of a single action
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from webview_pilot.config import ResolutionMode


class LocatorStrategy(str, Enum):
    """How a locator value should be interpreted."""

    REFERENCE = "ref"  # Snapshot reference id, e.g. "@e3"
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"  # Visible text content
    ROLE = "role"  # ARIA role
    TEST_ID = "testid"  # [data-testid=...] attribute selector
    VISUAL = "visual"  # Natural-language description for the vision model


class ActionStatus(str, Enum):
    """Outcome of a single action."""

    SUCCESS = "success"  # Resolved structurally and executed
    VLM_FALLBACK = "vlm_fallback"  # Resolved by the vision model and executed
    NOT_FOUND = "not_found"  # No strategy resolved the locator
    FAILED = "failed"  # Resolved, but the backend failed to act


ElementSource = Literal["dom", "vlm"]
WaitState = Literal["visible", "hidden", "attached", "detached"]


@dataclass(frozen=True)
class Locator:
    """Canonical locator.

    Example:
        Locator(LocatorStrategy.TEXT, "Save")
        Locator(LocatorStrategy.CSS, "li.item", nth=2)
    """

    strategy: LocatorStrategy
    value: str
    nth: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.strategy.value}={self.value}"


@dataclass(frozen=True)
class BoundingBox:
    """Element box in screen pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ElementHandle:
    """A resolved element.

    Handles are produced by a resolver and read once per action. A ``dom``
    handle may carry the structural backend's selector so the element can be
    addressed again; a ``vlm`` handle only carries a point encoded as a 1x1
    bounding box.
    """

    id: str
    role: str = ""
    name: str = ""
    bounding_box: Optional[BoundingBox] = None
    source: ElementSource = "dom"
    nth: Optional[int] = None
    selector: Optional[str] = None

    @property
    def is_visual(self) -> bool:
        return self.source == "vlm"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/API response."""
        return {
            "id": self.id,
            "role": self.role,
            "name": self.name,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
            "source": self.source,
            "nth": self.nth,
            "selector": self.selector,
        }


@dataclass
class Snapshot:
    """Interactive-element listing captured from the structural backend.

    ``refs`` maps reference ids (without the leading ``@``) to handles. A
    snapshot is replaced wholesale on refresh, never merged.
    """

    refs: dict[str, ElementHandle] = field(default_factory=dict)
    tree: str = ""
    screenshot: Optional[str] = None  # base64 PNG
    timestamp: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.refs)

    def get(self, reference_id: str) -> Optional[ElementHandle]:
        return self.refs.get(reference_id)


@dataclass(frozen=True)
class ActionResult:
    """Result of one dispatched action.

    Invariants checked at construction:
    - ``duration_ms`` is never negative
    - FAILED always carries a non-empty error
    - VLM_FALLBACK always has ``used_vlm`` set

    Example:
        result = await session.click("text=Save")
        if result.status == ActionStatus.VLM_FALLBACK:
            print(f"Needed the vision model (${result.vlm_cost_usd:.4f} so far)")
    """

    status: ActionStatus
    duration_ms: int = 0
    used_vlm: bool = False
    vlm_cost_usd: Optional[float] = None
    error: Optional[str] = None
    data: Any = None

    def __post_init__(self) -> None:
        if self.duration_ms < 0:
            raise ValueError("duration_ms must be non-negative")
        if self.status == ActionStatus.FAILED and not self.error:
            raise ValueError("FAILED results require an error message")
        if self.status == ActionStatus.VLM_FALLBACK and not self.used_vlm:
            raise ValueError("VLM_FALLBACK results require used_vlm=True")

    @property
    def success(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.VLM_FALLBACK)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage/API response."""
        return {
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "used_vlm": self.used_vlm,
            "vlm_cost_usd": self.vlm_cost_usd,
            "error": self.error,
        }
