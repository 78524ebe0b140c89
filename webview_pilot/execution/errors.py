"""Exception hierarchy for webview-pilot.

Resolution never raises for a missing element and actions never raise at
all; these exceptions surface from connection, query and wait calls.
"""

from typing import Optional


class PilotError(Exception):
    """Base error for webview-pilot."""


class ElementNotFoundError(PilotError):
    """Every enabled strategy failed to resolve a locator."""

    def __init__(self, locator: object, message: Optional[str] = None):
        self.locator = locator
        super().__init__(message or f"Element not found: {locator}")


class BackendUnavailableError(PilotError):
    """A required backend is not connected or not installed."""

    def __init__(self, backend: str, message: Optional[str] = None):
        self.backend = backend
        super().__init__(message or f"Backend '{backend}' is not available")


class SessionNotConnectedError(BackendUnavailableError):
    """An operation was attempted before connect()."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__("session", f"Cannot {operation}: session is not connected, call connect() first")


class OperationTimeoutError(PilotError, TimeoutError):
    """A wait or bridge round trip exceeded its deadline."""

    def __init__(self, operation: str, timeout_ms: int, detail: Optional[str] = None):
        self.operation = operation
        self.timeout_ms = timeout_ms
        message = f"{operation} timed out after {timeout_ms}ms"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BackendError(PilotError):
    """A backend reported a failure while executing an operation."""

    def __init__(self, backend: str, operation: str, message: str):
        self.backend = backend
        self.operation = operation
        super().__init__(f"{backend} {operation} failed: {message}")
