"""Vision model integration.

- VisionClient: Anthropic and OpenAI-compatible vision models
- AgentBridge: hands screenshots to a host coding agent instead of an API
- CostTracker: per-call usage and cost accounting
"""

from .agent_bridge import AgentBridge
from .base import VisionBackend
from .client import VisionClient, parse_json_response
from .cost_tracker import DEFAULT_PRICING, CostEntry, CostSummary, CostTracker, Pricing
from .models import (
    DEFAULT_ACTION_SPACE,
    ActionRequest,
    ActionResponse,
    AssertRequest,
    AssertResponse,
    FindRequest,
    FindResponse,
)

__all__ = [
    "AgentBridge",
    "VisionBackend",
    "VisionClient",
    "parse_json_response",
    "DEFAULT_PRICING",
    "CostEntry",
    "CostSummary",
    "CostTracker",
    "Pricing",
    "DEFAULT_ACTION_SPACE",
    "ActionRequest",
    "ActionResponse",
    "AssertRequest",
    "AssertResponse",
    "FindRequest",
    "FindResponse",
]
