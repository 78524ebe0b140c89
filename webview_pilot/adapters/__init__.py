"""Backend adapters.

- AgentBrowserAdapter: structural backend over CDP (agent-browser CLI)
- OSBridge: pixel input through an OS-automation process (JSON-RPC)
- PyAutoGUIAdapter: pixel input in process (pyautogui)
"""

from .agent_browser import AgentBrowserAdapter, to_selector
from .base import Backend, BackendCapabilities, PixelInputBackend, StructuralBackend
from .native_input import PyAutoGUIAdapter
from .os_bridge import BridgeTransport, OSBridge, SubprocessTransport

__all__ = [
    "AgentBrowserAdapter",
    "to_selector",
    "Backend",
    "BackendCapabilities",
    "PixelInputBackend",
    "StructuralBackend",
    "PyAutoGUIAdapter",
    "BridgeTransport",
    "OSBridge",
    "SubprocessTransport",
]
