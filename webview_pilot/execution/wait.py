"""Wait/retry policy for locators.

``wait_for`` polls the resolver until the element reaches the requested
state or the timeout expires:

- ``visible`` / ``attached``: returns the first handle that resolves
- ``hidden`` / ``detached``: returns None at the first failed resolution and
  keeps waiting while the element still resolves

Backend errors raised while polling propagate; they are not taken to mean
the element is gone.
"""

import asyncio
import time
from typing import Optional

import structlog

from .errors import OperationTimeoutError
from .locator import normalize
from .models import ElementHandle, Locator, WaitState
from .resolver import HybridResolver

logger = structlog.get_logger()

_ABSENT_STATES = ("hidden", "detached")


async def wait_for(
    resolver: HybridResolver,
    locator: str | Locator,
    timeout_ms: int = 30000,
    interval_ms: int = 100,
    state: WaitState = "visible",
) -> Optional[ElementHandle]:
    """Wait until ``locator`` reaches ``state``.

    Returns:
        The handle for visible/attached waits, None for hidden/detached waits

    Raises:
        OperationTimeoutError: If the state is not reached within ``timeout_ms``
    """
    locator = normalize(locator)
    wait_for_absence = state in _ABSENT_STATES
    deadline = time.monotonic() + timeout_ms / 1000
    attempts = 0

    while True:
        attempts += 1
        handle = await resolver.resolve(locator)

        if wait_for_absence and handle is None:
            return None
        if not wait_for_absence and handle is not None:
            return handle

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval_ms / 1000, remaining))

    logger.info(
        "Wait timed out",
        locator=str(locator),
        state=state,
        timeout_ms=timeout_ms,
        attempts=attempts,
    )
    raise OperationTimeoutError(
        "wait_for",
        timeout_ms,
        f"{locator} did not become {state}",
    )
