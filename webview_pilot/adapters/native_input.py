"""Native input backend using pyautogui.

Used when no OS bridge is running. pyautogui is an optional dependency
(``pip install webview-pilot[native]``); it is imported in ``initialize()``
so the package imports fine on machines without a display. All pyautogui
calls block, so they run in a worker thread.
"""

import asyncio
import base64
import io
import sys
from typing import Any, Optional, Sequence

import structlog
from PIL import Image

from webview_pilot.config import PilotSettings
from webview_pilot.execution.errors import BackendUnavailableError

from .base import BackendCapabilities, PixelInputBackend

logger = structlog.get_logger()

# Key names accepted by callers -> pyautogui key names
KEY_MAP: dict[str, str] = {
    "control": "ctrl",
    "ctrl": "ctrl",
    "meta": "command" if sys.platform == "darwin" else "win",
    "cmd": "command" if sys.platform == "darwin" else "win",
    "command": "command",
    "alt": "alt",
    "option": "option" if sys.platform == "darwin" else "alt",
    "shift": "shift",
    "enter": "enter",
    "return": "enter",
    "escape": "esc",
    "esc": "esc",
    "backspace": "backspace",
    "delete": "delete",
    "tab": "tab",
    "space": "space",
    " ": "space",
    "arrowup": "up",
    "arrowdown": "down",
    "arrowleft": "left",
    "arrowright": "right",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
    "home": "home",
    "end": "end",
    "pageup": "pageup",
    "pagedown": "pagedown",
    **{f"f{i}": f"f{i}" for i in range(1, 13)},
}

# pyautogui scroll units are "clicks", roughly this many pixels each
PIXELS_PER_SCROLL_CLICK = 100


def map_key(key: str) -> str:
    return KEY_MAP.get(key.lower(), key.lower() if len(key) > 1 else key)


class PyAutoGUIAdapter(PixelInputBackend):
    """Mouse, keyboard and screen capture through pyautogui.

    Coordinates are logical screen pixels; ``scale`` converts from screenshot
    pixels on HiDPI displays.
    """

    name = "native_input"
    capabilities = BackendCapabilities(screenshot=True, recording=False)

    def __init__(self, key_delay_ms: int = 10, scale: float = 1.0):
        self.key_delay_ms = key_delay_ms
        self.scale = scale
        self._gui: Optional[Any] = None
        self.log = logger.bind(component="native_input")

    @classmethod
    def from_settings(cls, settings: PilotSettings) -> Optional["PyAutoGUIAdapter"]:
        if not settings.native_input_enabled:
            return None
        return cls(key_delay_ms=settings.native_key_delay_ms)

    async def initialize(self) -> None:
        if self._gui is not None:
            return
        try:
            import pyautogui
        except (ImportError, KeyError, OSError) as e:
            # pyautogui raises KeyError/OSError when no display is available
            raise BackendUnavailableError(
                "native_input", f"pyautogui is not usable: {e}. Install with: pip install webview-pilot[native]"
            ) from e

        pyautogui.FAILSAFE = False
        pyautogui.PAUSE = 0
        self._gui = pyautogui
        self.log.info("Native input ready")

    async def cleanup(self) -> None:
        self._gui = None

    def is_available(self) -> bool:
        return self._gui is not None

    def _require(self) -> Any:
        if self._gui is None:
            raise BackendUnavailableError("native_input")
        return self._gui

    def _point(self, x: float, y: float) -> tuple[int, int]:
        return round(x / self.scale), round(y / self.scale)

    async def click(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        gui = self._require()
        px, py = self._point(x, y)
        await asyncio.to_thread(gui.click, px, py, clicks=count, button=button)

    async def move_to(self, x: float, y: float) -> None:
        gui = self._require()
        px, py = self._point(x, y)
        await asyncio.to_thread(gui.moveTo, px, py)

    async def type_text(self, text: str) -> None:
        gui = self._require()
        await asyncio.to_thread(gui.write, text, interval=self.key_delay_ms / 1000)

    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        gui = self._require()
        keys = [map_key(modifier) for modifier in modifiers] + [map_key(key)]
        if len(keys) == 1:
            await asyncio.to_thread(gui.press, keys[0])
        else:
            await asyncio.to_thread(gui.hotkey, *keys)

    async def scroll(self, x: float, y: float, direction: str, amount: int) -> None:
        gui = self._require()
        px, py = self._point(x, y)
        clicks = max(1, amount // PIXELS_PER_SCROLL_CLICK)
        if direction in ("up", "down"):
            await asyncio.to_thread(gui.scroll, clicks if direction == "up" else -clicks, x=px, y=py)
        else:
            await asyncio.to_thread(gui.hscroll, clicks if direction == "right" else -clicks, x=px, y=py)

    async def drag(self, from_x: float, from_y: float, to_x: float, to_y: float) -> None:
        gui = self._require()
        start = self._point(from_x, from_y)
        end = self._point(to_x, to_y)
        await asyncio.to_thread(gui.moveTo, *start)
        await asyncio.to_thread(gui.dragTo, *end, duration=0.2, button="left")

    async def screenshot(self) -> str:
        gui = self._require()
        image: Image.Image = await asyncio.to_thread(gui.screenshot)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    async def get_screen_size(self) -> tuple[int, int]:
        gui = self._require()
        width, height = gui.size()
        return int(width), int(height)
