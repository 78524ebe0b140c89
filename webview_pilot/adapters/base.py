"""Backend interfaces consumed by the resolution and action engine.

Two families of backends drive the application under test:

                 ┌────────────────────────────┐
                 │       DesktopSession       │
                 └──────────────┬─────────────┘
                                │
            ┌───────────────────┴───────────────────┐
            ▼                                       ▼
  ┌───────────────────┐                 ┌───────────────────────┐
  │ StructuralBackend │                 │   PixelInputBackend   │
  │ (selectors, refs) │                 │ (screen coordinates)  │
  └─────────┬─────────┘                 └───────────┬───────────┘
            │                             ┌─────────┴─────────┐
            ▼                             ▼                   ▼
     AgentBrowserAdapter              OSBridge         PyAutoGUIAdapter
     (CDP via CLI)                 (JSON-RPC pipe)      (in process)

The vision backend interface lives in ``webview_pilot.vision.base``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from webview_pilot.execution.models import BoundingBox, ElementHandle, Locator, Snapshot


@dataclass(frozen=True)
class BackendCapabilities:
    """Static capability flags of a backend."""

    screenshot: bool = True
    recording: bool = False


class Backend(ABC):
    """Lifecycle shared by every backend."""

    name: str = "backend"
    capabilities: BackendCapabilities = BackendCapabilities()

    @abstractmethod
    async def initialize(self) -> None:
        """Connect to the underlying system. Raises on failure."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release the connection. Must be safe to call more than once."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is connected and usable right now."""
        pass


class StructuralBackend(Backend):
    """Resolves selectors and acts on elements through the DOM/accessibility tree.

    Element-addressed actions take an ``ElementHandle`` produced by
    ``find_by_selector`` or a snapshot; the backend addresses the element by
    its selector or reference, never by coordinates.
    """

    name = "structural"

    @abstractmethod
    async def snapshot(self, interactive: bool = True) -> Snapshot:
        """List the (interactive) elements of the current view."""
        pass

    @abstractmethod
    async def find_by_selector(self, locator: Locator) -> Optional[ElementHandle]:
        """Resolve a non-reference locator; None when nothing matches."""
        pass

    @abstractmethod
    async def count_by_selector(self, locator: Locator) -> int:
        pass

    @abstractmethod
    async def act(self, handle: ElementHandle, action: str, params: dict[str, Any]) -> None:
        """Perform click/type/hover/scroll/drag/press on an element. Raises on failure."""
        pass

    @abstractmethod
    async def press_key(self, key: str) -> None:
        """Press a key (``Control+a`` style chords allowed) on the focused element."""
        pass

    @abstractmethod
    async def type_text(self, text: str) -> None:
        """Type into whatever element currently has focus."""
        pass

    @abstractmethod
    async def scroll_page(self, direction: str, amount: int) -> None:
        pass

    @abstractmethod
    async def get_text(self, handle: ElementHandle) -> str:
        pass

    @abstractmethod
    async def get_value(self, handle: ElementHandle) -> str:
        pass

    @abstractmethod
    async def get_attribute(self, handle: ElementHandle, name: str) -> Optional[str]:
        pass

    @abstractmethod
    async def is_visible(self, handle: ElementHandle) -> bool:
        pass

    @abstractmethod
    async def is_enabled(self, handle: ElementHandle) -> bool:
        pass

    @abstractmethod
    async def bounding_box(self, handle: ElementHandle) -> Optional[BoundingBox]:
        pass

    @abstractmethod
    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> str:
        """Capture the view. Returns base64 PNG data."""
        pass

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Run JavaScript in the page and return its JSON value."""
        pass

    @abstractmethod
    async def navigate(self, url: str) -> None:
        pass

    @abstractmethod
    async def get_url(self) -> str:
        pass

    @abstractmethod
    async def get_title(self) -> str:
        pass

    @abstractmethod
    async def wait_for_idle(self, timeout_ms: int) -> None:
        pass

    async def start_recording(self, path: str) -> None:
        """Start a video recording. Only called when ``capabilities.recording``."""
        raise NotImplementedError(f"{self.name} does not support recording")

    async def stop_recording(self) -> Optional[str]:
        """Stop recording and return the saved file path."""
        raise NotImplementedError(f"{self.name} does not support recording")


class PixelInputBackend(Backend):
    """Native mouse/keyboard input at screen coordinates plus screen capture."""

    @abstractmethod
    async def click(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        pass

    @abstractmethod
    async def move_to(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def type_text(self, text: str) -> None:
        pass

    @abstractmethod
    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        pass

    @abstractmethod
    async def scroll(self, x: float, y: float, direction: str, amount: int) -> None:
        pass

    @abstractmethod
    async def drag(self, from_x: float, from_y: float, to_x: float, to_y: float) -> None:
        pass

    @abstractmethod
    async def screenshot(self) -> str:
        """Capture the screen. Returns base64 PNG data."""
        pass

    @abstractmethod
    async def get_screen_size(self) -> tuple[int, int]:
        pass

