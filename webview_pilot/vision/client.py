"""Vision-language model client.

Supports Anthropic (via the anthropic SDK) and any OpenAI-compatible
``/chat/completions`` endpoint (OpenAI, Volcengine/Doubao, custom base URLs)
via httpx. Every call is recorded in the shared ``CostTracker``.

Example:
    tracker = CostTracker()
    client = VisionClient(
        provider=VisionProvider.ANTHROPIC,
        model="claude-sonnet-4-20250514",
        api_key="sk-ant-...",
        cost_tracker=tracker,
    )
    await client.initialize()

    result = await client.find_element(
        FindRequest(screenshot=b64, description='element with text "Save"')
    )
    if not result.not_found:
        x, y = result.coordinates
"""

import json
import re
from typing import Any, Optional

import anthropic
import httpx
import structlog

from webview_pilot.config import PilotSettings, VisionProvider
from webview_pilot.execution.errors import BackendError, BackendUnavailableError

from .base import VisionBackend
from .cost_tracker import CostOperation, CostTracker
from .models import (
    ActionRequest,
    ActionResponse,
    AssertRequest,
    AssertResponse,
    FindRequest,
    FindResponse,
)

logger = structlog.get_logger()

# Token counts recorded when a provider omits usage
FALLBACK_INPUT_TOKENS = 1000
FALLBACK_OUTPUT_TOKENS = 500

FIND_SYSTEM_PROMPT = """You are a GUI automation assistant. Your task is to find UI elements in screenshots.

Given a screenshot and an element description, you need to:
1. Locate the described element in the screenshot
2. Return the center coordinates (x, y) of the element
3. Provide your confidence level (0-1)
4. Explain your reasoning

If the element cannot be found, set notFound to true and suggest alternatives.
Return coordinates in screenshot pixels that can be used for clicking."""

FIND_USER_PROMPT = """Find the following element in the screenshot:
"{description}"
{context}
Return a JSON object with:
- coordinates: {{"x": number, "y": number}} or null if not found
- confidence: number (0-1)
- reasoning: string
- notFound: boolean
- alternative: string (if not found, suggest what similar element exists)"""

ACTION_SYSTEM_PROMPT = """You are a GUI automation agent. Your task is to control a desktop application to complete user instructions.

Available actions:
{actions}

For each step:
1. Analyze the current screenshot
2. Decide the best action to take
3. Return the action with parameters

When the task is complete, return finished: true.
Only perform one action at a time and be precise with coordinates."""

ACTION_USER_PROMPT = """Instruction: "{instruction}"
{history}
Based on the current screenshot, what action should be taken next?

Return a JSON object with:
- actionType: string (one of the available actions)
- actionParams: object (parameters for the action)
- thought: string (your reasoning)
- reflection: string (any observations)
- finished: boolean (true if task is complete)"""

ASSERT_SYSTEM_PROMPT = """You are a QA automation assistant. Your task is to verify UI states and conditions.

Given a screenshot and an assertion, you need to:
1. Analyze the screenshot carefully
2. Determine if the assertion is true or false
3. Provide detailed reasoning
4. If the assertion fails, suggest how to fix it"""

ASSERT_USER_PROMPT = """Assertion: "{assertion}"
{expected}
Analyze the screenshot and verify the assertion.

Return a JSON object with:
- passed: boolean
- reasoning: string (detailed explanation)
- actual: string (what you actually observed)
- suggestions: string[] (if failed, how to fix)"""


def parse_json_response(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output.

    Tries the raw text, then a fenced code block, then the outermost braces.
    Only an object is accepted; arrays, scalars and ``null`` are skipped.

    Raises:
        ValueError: If no JSON object can be found
    """
    candidates = [text]

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if fenced:
        candidates.append(fenced.group(1).strip())

    braces = re.search(r"\{[\s\S]*\}", text)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError("Could not parse a JSON object from response")


def strip_data_uri(data: str) -> str:
    return re.sub(r"^data:image/\w+;base64,", "", data)


def detect_media_type(data: str) -> str:
    """Guess the image type of base64 data from its magic bytes."""
    if data.startswith("/9j/"):
        return "image/jpeg"
    if data.startswith("R0lGOD"):
        return "image/gif"
    if data.startswith("UklGR"):
        return "image/webp"
    return "image/png"


class VisionClient(VisionBackend):
    """Calls a hosted vision model for element finding, actions and assertions."""

    def __init__(
        self,
        provider: VisionProvider,
        model: str,
        cost_tracker: CostTracker,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        timeout_seconds: float = 60.0,
        track_cost: bool = True,
        anthropic_client: Optional[anthropic.AsyncAnthropic] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if provider == VisionProvider.AGENT:
            raise ValueError("Agent mode is served by AgentBridge, not VisionClient")

        self.provider = provider
        self.model = model
        self.cost_tracker = cost_tracker
        self.api_key = api_key
        self.base_url = base_url.rstrip("/") if base_url else None
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.track_cost = track_cost

        self._anthropic = anthropic_client
        self._http = http_client
        self._ready = False
        self.log = logger.bind(component="vision_client", provider=provider.value, model=model)

    @classmethod
    def from_settings(
        cls,
        settings: PilotSettings,
        provider: VisionProvider,
        cost_tracker: CostTracker,
    ) -> "VisionClient":
        return cls(
            provider=provider,
            model=settings.model_for(provider),
            cost_tracker=cost_tracker,
            api_key=settings.api_key_for(provider),
            base_url=settings.base_url_for(provider),
            max_tokens=settings.vision_max_tokens,
            temperature=settings.vision_temperature,
            timeout_seconds=settings.vision_timeout_seconds,
            track_cost=settings.track_cost,
        )

    @property
    def uses_anthropic(self) -> bool:
        return self.provider == VisionProvider.ANTHROPIC

    async def initialize(self) -> None:
        """Validate credentials and create the HTTP clients.

        Raises:
            BackendUnavailableError: If the provider is missing a key or URL
        """
        if self._ready:
            return

        if self.provider == VisionProvider.CUSTOM:
            if not self.base_url:
                raise BackendUnavailableError("vision", "Custom vision provider requires a base URL")
        elif not self.api_key:
            raise BackendUnavailableError(
                "vision", f"{self.provider.value} API key not provided"
            )

        if self.uses_anthropic:
            if self._anthropic is None:
                self._anthropic = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout_seconds)
        elif self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_seconds)

        self._ready = True
        self.log.info("Vision client ready")

    async def cleanup(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._anthropic is not None:
            await self._anthropic.close()
            self._anthropic = None
        self._ready = False

    def is_available(self) -> bool:
        return self._ready

    async def find_element(self, request: FindRequest) -> FindResponse:
        user_prompt = FIND_USER_PROMPT.format(
            description=request.description,
            context=f"\nContext: {request.context}\n" if request.context else "",
        )
        text = await self._call(FIND_SYSTEM_PROMPT, user_prompt, request.screenshot, "find")

        try:
            return FindResponse.from_dict(parse_json_response(text))
        except (ValueError, TypeError) as e:
            self.log.warning("Unparseable find response", error=str(e))
            return FindResponse.missing("Failed to parse vision model response")

    async def get_next_action(self, request: ActionRequest) -> ActionResponse:
        system_prompt = ACTION_SYSTEM_PROMPT.format(actions="\n".join(request.action_space))
        history = ""
        if request.history:
            history = "\nPrevious actions:\n" + "\n".join(f"- {item}" for item in request.history) + "\n"
        user_prompt = ACTION_USER_PROMPT.format(instruction=request.instruction, history=history)
        text = await self._call(system_prompt, user_prompt, request.screenshot, "action")

        try:
            return ActionResponse.from_dict(parse_json_response(text))
        except (ValueError, TypeError) as e:
            self.log.warning("Unparseable action response", error=str(e))
            return ActionResponse(thought="Failed to parse vision model response")

    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        user_prompt = ASSERT_USER_PROMPT.format(
            assertion=request.assertion,
            expected=f"\nExpected: {request.expected}\n" if request.expected else "",
        )
        text = await self._call(ASSERT_SYSTEM_PROMPT, user_prompt, request.screenshot, "assert")

        try:
            return AssertResponse.from_dict(parse_json_response(text))
        except (ValueError, TypeError) as e:
            self.log.warning("Unparseable assertion response", error=str(e))
            return AssertResponse(reasoning="Failed to parse vision model response", actual="Unknown")

    async def _call(self, system_prompt: str, user_prompt: str, screenshot: str, operation: CostOperation) -> str:
        if not self._ready:
            raise BackendUnavailableError("vision", "Vision client is not initialized")

        image = strip_data_uri(screenshot)
        if self.uses_anthropic:
            text, input_tokens, output_tokens = await self._call_anthropic(system_prompt, user_prompt, image, operation)
        else:
            text, input_tokens, output_tokens = await self._call_openai_compatible(
                system_prompt, user_prompt, image, operation
            )

        if self.track_cost:
            self.cost_tracker.track(
                provider=self.provider.value,
                model=self.model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                images=1,
                operation=operation,
            )
        return text

    async def _call_anthropic(
        self, system_prompt: str, user_prompt: str, image: str, operation: str
    ) -> tuple[str, int, int]:
        try:
            response = await self._anthropic.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": detect_media_type(image),
                                    "data": image,
                                },
                            },
                            {"type": "text", "text": user_prompt},
                        ],
                    }
                ],
            )
        except anthropic.APIError as e:
            self.log.error("Anthropic API error", operation=operation, error=str(e))
            raise BackendError("vision", operation, f"Anthropic API error: {e}") from e

        text = "".join(getattr(block, "text", "") for block in response.content)
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "input_tokens", None) or FALLBACK_INPUT_TOKENS
        output_tokens = getattr(usage, "output_tokens", None) or FALLBACK_OUTPUT_TOKENS
        return text, input_tokens, output_tokens

    async def _call_openai_compatible(
        self, system_prompt: str, user_prompt: str, image: str, operation: str
    ) -> tuple[str, int, int]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{detect_media_type(image)};base64,{image}"},
                        },
                        {"type": "text", "text": user_prompt},
                    ],
                },
            ],
        }

        try:
            response = await self._http.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.log.error("Vision API error", operation=operation, status=e.response.status_code)
            raise BackendError(
                "vision", operation, f"{self.provider.value} API error {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            self.log.error("Vision API request failed", operation=operation, error=str(e))
            raise BackendError("vision", operation, f"{self.provider.value} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            self.log.error("Vision API returned a non-JSON body", operation=operation, body=response.text[:200])
            raise BackendError("vision", operation, f"{self.provider.value} returned a non-JSON body") from e

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError("vision", operation, "Malformed chat completion response") from e

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        input_tokens = usage.get("prompt_tokens") or FALLBACK_INPUT_TOKENS
        output_tokens = usage.get("completion_tokens") or FALLBACK_OUTPUT_TOKENS
        return text, input_tokens, output_tokens
