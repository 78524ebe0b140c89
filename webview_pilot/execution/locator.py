"""Locator normalization.

Callers may pass plain strings; they are mapped to a canonical ``Locator`` by
prefix, first match wins:

    @e3                 -> REFERENCE "@e3"
    //button[1]         -> XPATH     "//button[1]"
    text=Save           -> TEXT      "Save"
    role=button         -> ROLE      "button"
    [data-testid=save]  -> TEST_ID   "[data-testid=save]"
    anything else       -> CSS
"""

from .models import Locator, LocatorStrategy

# Order matters
_PREFIXES: tuple[tuple[str, LocatorStrategy, bool], ...] = (
    # (prefix, strategy, strip prefix)
    ("@", LocatorStrategy.REFERENCE, False),
    ("//", LocatorStrategy.XPATH, False),
    ("text=", LocatorStrategy.TEXT, True),
    ("role=", LocatorStrategy.ROLE, True),
    ("[data-testid=", LocatorStrategy.TEST_ID, False),
)


def normalize(locator: str | Locator) -> Locator:
    """Turn a string or Locator into a canonical Locator. Never fails."""
    if isinstance(locator, Locator):
        return locator

    for prefix, strategy, strip in _PREFIXES:
        if locator.startswith(prefix):
            value = locator[len(prefix):] if strip else locator
            return Locator(strategy, value)

    return Locator(LocatorStrategy.CSS, locator)


def to_description(locator: Locator) -> str:
    """Describe a locator in words for the vision model."""
    if locator.strategy == LocatorStrategy.TEXT:
        return f'element with text "{locator.value}"'
    if locator.strategy == LocatorStrategy.ROLE:
        return f"{locator.value} element"
    if locator.strategy == LocatorStrategy.VISUAL:
        return locator.value
    return f"element matching {locator.value}"


def visual(description: str) -> Locator:
    """Shorthand for a VISUAL locator."""
    return Locator(LocatorStrategy.VISUAL, description)
