"""Request/response models for vision model calls."""

from dataclasses import dataclass, field
from typing import Any, Optional


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key, accepting both snake_case and camelCase replies."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class FindRequest:
    screenshot: str  # base64 image
    description: str
    context: Optional[str] = None


@dataclass
class FindResponse:
    """Where the model thinks the described element is.

    ``coordinates`` is the element centre in screenshot pixels.
    """

    coordinates: Optional[tuple[float, float]] = None
    confidence: float = 0.0
    reasoning: str = ""
    not_found: bool = False
    alternative: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FindResponse":
        raw = data.get("coordinates")
        coordinates = None
        if isinstance(raw, dict) and raw.get("x") is not None and raw.get("y") is not None:
            coordinates = (float(raw["x"]), float(raw["y"]))
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            coordinates = (float(raw[0]), float(raw[1]))

        return cls(
            coordinates=coordinates,
            confidence=float(_pick(data, "confidence", default=0.0)),
            reasoning=str(_pick(data, "reasoning", default="")),
            not_found=bool(_pick(data, "not_found", "notFound", default=False)) or coordinates is None,
            alternative=_pick(data, "alternative"),
        )

    @classmethod
    def missing(cls, reasoning: str) -> "FindResponse":
        return cls(not_found=True, reasoning=reasoning)


# Action space offered to the model by the vision agent loop
DEFAULT_ACTION_SPACE = [
    "click(x, y) - Click at coordinates",
    "type(text) - Type text",
    "scroll(direction) - Scroll up/down/left/right",
    "press(key) - Press a key",
    "wait() - Wait for UI to update",
    "finished() - Task is complete",
]


@dataclass
class ActionRequest:
    screenshot: str
    instruction: str
    action_space: list[str] = field(default_factory=lambda: list(DEFAULT_ACTION_SPACE))
    history: list[str] = field(default_factory=list)


@dataclass
class ActionResponse:
    action_type: str = "wait"
    action_params: dict[str, Any] = field(default_factory=dict)
    thought: str = ""
    reflection: Optional[str] = None
    finished: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionResponse":
        return cls(
            action_type=str(_pick(data, "action_type", "actionType", default="wait")),
            action_params=dict(_pick(data, "action_params", "actionParams", default={})),
            thought=str(_pick(data, "thought", default="")),
            reflection=_pick(data, "reflection"),
            finished=bool(_pick(data, "finished", default=False)),
        )


@dataclass
class AssertRequest:
    screenshot: str
    assertion: str
    expected: Optional[str] = None


@dataclass
class AssertResponse:
    passed: bool = False
    reasoning: str = ""
    actual: str = ""
    suggestions: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssertResponse":
        return cls(
            passed=bool(_pick(data, "passed", default=False)),
            reasoning=str(_pick(data, "reasoning", default="")),
            actual=str(_pick(data, "actual", default="")),
            suggestions=list(_pick(data, "suggestions", default=[])),
        )
