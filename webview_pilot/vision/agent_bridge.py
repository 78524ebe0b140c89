"""Agent-mode vision backend.

Inside a coding agent (Cursor, Claude Code, an MCP host) there may be no
vision API key, but the host agent can read screenshots itself. The bridge
writes each screenshot plus a JSON request file into an exchange directory
and picks up a matching ``response_<id>.json`` if the agent has written one.
Without a response the element is reported as not found. No API is called,
so no cost is recorded.

Exchange layout:
    <exchange_dir>/screenshot_<id>.png
    <exchange_dir>/request_<id>.json     written by the bridge
    <exchange_dir>/response_<id>.json    written by the host agent
"""

import base64
import json
import time
from pathlib import Path
from typing import Any, Optional, TypeVar

import structlog

from webview_pilot.environment import AgentEnvironment

from .base import VisionBackend
from .client import strip_data_uri
from .models import (
    ActionRequest,
    ActionResponse,
    AssertRequest,
    AssertResponse,
    FindRequest,
    FindResponse,
)

logger = structlog.get_logger()

T = TypeVar("T", FindResponse, ActionResponse, AssertResponse)


class AgentBridge(VisionBackend):
    """File-based exchange with a host agent."""

    def __init__(
        self,
        exchange_dir: str | Path = ".agent-test-screenshots",
        environment: Optional[AgentEnvironment] = None,
    ):
        self.exchange_dir = Path(exchange_dir)
        self.environment = environment or AgentEnvironment.UNKNOWN
        self._request_count = 0
        self._ready = False
        self.log = logger.bind(component="agent_bridge", environment=self.environment.value)

    async def initialize(self) -> None:
        self.exchange_dir.mkdir(parents=True, exist_ok=True)
        self._ready = True
        self.log.info("Agent bridge ready", exchange_dir=str(self.exchange_dir))

    async def cleanup(self) -> None:
        self._ready = False

    def is_available(self) -> bool:
        return self._ready

    def _next_id(self) -> str:
        self._request_count += 1
        return f"{int(time.time() * 1000)}_{self._request_count}"

    def _save_screenshot(self, request_id: str, screenshot: str) -> Path:
        path = self.exchange_dir / f"screenshot_{request_id}.png"
        path.write_bytes(base64.b64decode(strip_data_uri(screenshot)))
        return path

    def _exchange(self, kind: str, screenshot: str, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Write the request files and return the agent's response, if present."""
        request_id = self._next_id()
        screenshot_path = self._save_screenshot(request_id, screenshot)

        request = {
            "type": kind,
            "id": request_id,
            "screenshot": str(screenshot_path),
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            **payload,
        }
        request_path = self.exchange_dir / f"request_{request_id}.json"
        request_path.write_text(json.dumps(request, indent=2))
        self.log.info("Agent vision request written", kind=kind, request=str(request_path), **payload)

        response_path = self.exchange_dir / f"response_{request_id}.json"
        if not response_path.exists():
            return None

        try:
            response = json.loads(response_path.read_text())
        except json.JSONDecodeError as e:
            self.log.warning("Invalid agent response file", path=str(response_path), error=str(e))
            return None

        if not isinstance(response, dict):
            self.log.warning("Agent response is not a JSON object", path=str(response_path))
            return None
        return response

    def _decode(self, kind: str, response: dict[str, Any], model: type[T], fallback: T) -> T:
        try:
            return model.from_dict(response)
        except (ValueError, TypeError) as e:
            self.log.warning("Unusable agent response", kind=kind, error=str(e))
            return fallback

    async def find_element(self, request: FindRequest) -> FindResponse:
        response = self._exchange(
            "find_element",
            request.screenshot,
            {"description": request.description, "context": request.context},
        )
        if response is None:
            return FindResponse(
                not_found=True,
                reasoning="Waiting for the host agent to analyze the screenshot",
                alternative="Provide coordinates in the response file",
            )
        return self._decode(
            "find_element", response, FindResponse, FindResponse.missing("Unusable host agent response")
        )

    async def get_next_action(self, request: ActionRequest) -> ActionResponse:
        response = self._exchange(
            "next_action",
            request.screenshot,
            {"instruction": request.instruction, "action_space": request.action_space},
        )
        if response is None:
            return ActionResponse(thought="Waiting for the host agent to provide an action")
        return self._decode(
            "next_action", response, ActionResponse, ActionResponse(thought="Unusable host agent response")
        )

    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        response = self._exchange(
            "assert_visual",
            request.screenshot,
            {"assertion": request.assertion, "expected": request.expected},
        )
        if response is None:
            return AssertResponse(
                passed=False,
                reasoning="Waiting for the host agent to verify the assertion",
                actual="Unknown",
            )
        return self._decode(
            "assert_visual",
            response,
            AssertResponse,
            AssertResponse(reasoning="Unusable host agent response", actual="Unknown"),
        )
