"""Capability registry.

Backends are registered by kind when the session connects. Callers ask the
registry for a kind and get a backend only if it reports itself available;
nobody inspects backend objects for methods at call time.
"""

from enum import Enum
from typing import Any, Optional

import structlog

from .errors import BackendUnavailableError

logger = structlog.get_logger()


class BackendKind(str, Enum):
    """Kinds of backends a session can hold."""

    STRUCTURAL = "structural"  # DOM / accessibility via CDP
    OS_BRIDGE = "os_bridge"  # OS automation process over JSON-RPC
    NATIVE_INPUT = "native_input"  # In-process mouse/keyboard library
    VISION = "vision"  # Vision-language model


# Most precise first
PIXEL_PRECEDENCE: tuple[BackendKind, ...] = (BackendKind.OS_BRIDGE, BackendKind.NATIVE_INPUT)

# Structural only counts when it has the screenshot capability
SCREENSHOT_PRECEDENCE: tuple[BackendKind, ...] = (
    BackendKind.STRUCTURAL,
    BackendKind.NATIVE_INPUT,
    BackendKind.OS_BRIDGE,
)


class CapabilityRegistry:
    """Tracks connected backends by kind.

    Example:
        registry = CapabilityRegistry()
        registry.register(BackendKind.STRUCTURAL, agent_browser)

        structural = registry.require(BackendKind.STRUCTURAL)
        pixel = registry.first_available(PIXEL_PRECEDENCE)
    """

    def __init__(self):
        self._backends: dict[BackendKind, Any] = {}
        self.log = logger.bind(component="capability_registry")

    def register(self, kind: BackendKind, backend: Any) -> None:
        self._backends[kind] = backend
        self.log.debug("Backend registered", kind=kind.value, backend=type(backend).__name__)

    def unregister(self, kind: BackendKind) -> Optional[Any]:
        return self._backends.pop(kind, None)

    def get(self, kind: BackendKind) -> Optional[Any]:
        """Return the backend for a kind if registered and available."""
        backend = self._backends.get(kind)
        if backend is not None and backend.is_available():
            return backend
        return None

    def is_available(self, kind: BackendKind) -> bool:
        return self.get(kind) is not None

    def require(self, kind: BackendKind) -> Any:
        """Like get(), but raises BackendUnavailableError when missing."""
        backend = self.get(kind)
        if backend is None:
            raise BackendUnavailableError(kind.value)
        return backend

    def first_available(self, kinds: tuple[BackendKind, ...]) -> Optional[tuple[BackendKind, Any]]:
        """First available backend in precedence order, with its kind."""
        for kind in kinds:
            backend = self.get(kind)
            if backend is not None:
                return kind, backend
        return None

    def connected_kinds(self) -> list[BackendKind]:
        return [kind for kind in BackendKind if self.is_available(kind)]

    def registered(self) -> list[tuple[BackendKind, Any]]:
        """All registered backends in registration order."""
        return list(self._backends.items())

    def clear(self) -> None:
        self._backends.clear()
