"""Tests for VisionClient."""

from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from webview_pilot.config import PilotSettings, VisionProvider
from webview_pilot.execution.errors import BackendError, BackendUnavailableError
from webview_pilot.vision.client import (
    VisionClient,
    detect_media_type,
    parse_json_response,
    strip_data_uri,
)
from webview_pilot.vision.cost_tracker import CostTracker
from webview_pilot.vision.models import ActionRequest, AssertRequest, FindRequest

CHAT_URL = "https://ark.cn-beijing.volces.com/api/v3/chat/completions"


def _anthropic_response(text: str, input_tokens: int = 2000, output_tokens: int = 1000) -> MagicMock:
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return response


def _chat_response(content: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={
            "choices": [{"message": {"content": content}}],
            "usage": {"prompt_tokens": 1000, "completion_tokens": 1000},
        },
        request=httpx.Request("POST", CHAT_URL),
    )


@pytest.fixture
def tracker():
    return CostTracker()


@pytest.fixture
def anthropic_vision(tracker, mock_async_anthropic_client):
    return VisionClient(
        provider=VisionProvider.ANTHROPIC,
        model="claude-sonnet-4-20250514",
        cost_tracker=tracker,
        api_key="sk-ant-test-key-12345",
        anthropic_client=mock_async_anthropic_client,
    )


@pytest.fixture
def mock_async_anthropic_client():
    """Create a mock AsyncAnthropic client."""
    mock_client = AsyncMock()
    mock_client.messages.create = AsyncMock(
        return_value=_anthropic_response('{"coordinates": {"x": 320, "y": 240}, "confidence": 0.95, "reasoning": "Save button"}')
    )
    mock_client.close = AsyncMock()
    return mock_client


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=_chat_response('{"passed": true, "reasoning": "ok", "actual": "dialog"}'))
    mock_client.aclose = AsyncMock()
    return mock_client


class TestParseJsonResponse:
    """Test JSON extraction from model output."""

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        """Test a ```json fenced block."""
        text = 'Here you go:\n```json\n{"passed": false}\n```'
        assert parse_json_response(text) == {"passed": False}

    def test_braces_in_prose(self):
        """Test an object embedded in prose."""
        assert parse_json_response('The answer is {"x": 5} as requested') == {"x": 5}

    def test_no_json(self):
        with pytest.raises(ValueError):
            parse_json_response("I could not find it")

    @pytest.mark.parametrize("text", ["null", "[1, 2]", "42", '"found it"'])
    def test_non_object_rejected(self, text):
        """Test valid JSON that is not an object is rejected."""
        with pytest.raises(ValueError):
            parse_json_response(text)

    def test_object_inside_array(self):
        """Test an array reply falls through to the embedded object."""
        assert parse_json_response('[{"x": 10, "y": 20}]') == {"x": 10, "y": 20}


class TestHelpers:
    """Test image helpers."""

    def test_strip_data_uri(self):
        assert strip_data_uri("data:image/png;base64,AAAA") == "AAAA"
        assert strip_data_uri("AAAA") == "AAAA"

    def test_detect_media_type(self):
        assert detect_media_type("/9j/4AAQ") == "image/jpeg"
        assert detect_media_type("iVBORw0KGgo") == "image/png"
        assert detect_media_type("UklGRiQ") == "image/webp"


class TestInitialize:
    """Test client setup."""

    def test_agent_provider_rejected(self, tracker):
        """Test agent mode is not a VisionClient provider."""
        with pytest.raises(ValueError):
            VisionClient(provider=VisionProvider.AGENT, model="agent", cost_tracker=tracker)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, tracker):
        """Test a provider without a key is unavailable."""
        client = VisionClient(provider=VisionProvider.OPENAI, model="gpt-4o", cost_tracker=tracker)

        with pytest.raises(BackendUnavailableError):
            await client.initialize()
        assert client.is_available() is False

    @pytest.mark.asyncio
    async def test_custom_requires_base_url(self, tracker):
        """Test a custom provider needs a base URL."""
        client = VisionClient(provider=VisionProvider.CUSTOM, model="llava", cost_tracker=tracker)

        with pytest.raises(BackendUnavailableError, match="base URL"):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_call_before_initialize(self, anthropic_vision):
        """Test calls fail before initialize."""
        with pytest.raises(BackendUnavailableError):
            await anthropic_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))

    def test_from_settings(self, tracker):
        """Test settings supply model, key and base URL."""
        settings = PilotSettings(_env_file=None, volcengine_api_key="volc-key")
        client = VisionClient.from_settings(settings, VisionProvider.DOUBAO, tracker)

        assert client.model == "doubao-1-5-vision-pro"
        assert client.api_key == "volc-key"
        assert client.base_url == "https://ark.cn-beijing.volces.com/api/v3"

    @pytest.mark.asyncio
    async def test_cleanup(self, anthropic_vision, mock_async_anthropic_client):
        """Test cleanup closes the SDK client."""
        await anthropic_vision.initialize()
        await anthropic_vision.cleanup()

        mock_async_anthropic_client.close.assert_called_once()
        assert anthropic_vision.is_available() is False


class TestAnthropicCalls:
    """Test calls through the Anthropic SDK."""

    @pytest.mark.asyncio
    async def test_find_element(self, anthropic_vision, mock_async_anthropic_client, tracker):
        """Test element finding and cost tracking."""
        await anthropic_vision.initialize()

        result = await anthropic_vision.find_element(
            FindRequest(screenshot="data:image/png;base64,iVBORw0KGgo", description='element with text "Save"')
        )

        assert result.coordinates == (320.0, 240.0)
        assert result.not_found is False
        assert result.confidence == 0.95

        kwargs = mock_async_anthropic_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-sonnet-4-20250514"
        image = kwargs["messages"][0]["content"][0]
        assert image["source"]["data"] == "iVBORw0KGgo"
        assert image["source"]["media_type"] == "image/png"

        summary = tracker.get_summary()
        assert summary.total_calls == 1
        assert summary.total_cost == pytest.approx(0.0258)
        assert summary.by_operation == {"find": pytest.approx(0.0258)}

    @pytest.mark.asyncio
    async def test_unparseable_find(self, anthropic_vision, mock_async_anthropic_client):
        """Test prose output becomes not_found."""
        mock_async_anthropic_client.messages.create.return_value = _anthropic_response("No idea, sorry.")
        await anthropic_vision.initialize()

        result = await anthropic_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))

        assert result.not_found is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            '[{"x": 10, "y": 20}]',
            "null",
            '{"coordinates": {"x": 10, "y": 20}, "confidence": "high"}',
            '{"coordinates": {"x": "left", "y": 20}}',
        ],
    )
    async def test_malformed_find_reply_is_not_found(self, anthropic_vision, mock_async_anthropic_client, reply):
        """Test replies of the wrong shape degrade to not_found instead of raising."""
        mock_async_anthropic_client.messages.create.return_value = _anthropic_response(reply)
        await anthropic_vision.initialize()

        result = await anthropic_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))

        assert result.not_found is True
        assert result.coordinates is None

    @pytest.mark.asyncio
    async def test_array_action_and_assert_replies(self, anthropic_vision, mock_async_anthropic_client):
        """Test array replies fall back to the safe action and a failed assertion."""
        mock_async_anthropic_client.messages.create.return_value = _anthropic_response('["click", 10, 20]')
        await anthropic_vision.initialize()

        action = await anthropic_vision.get_next_action(ActionRequest(screenshot="AAAA", instruction="Open menu"))
        verdict = await anthropic_vision.assert_visual(AssertRequest(screenshot="AAAA", assertion="Menu is open"))

        assert action.action_type == "wait"
        assert action.finished is False
        assert verdict.passed is False

    @pytest.mark.asyncio
    async def test_next_action(self, anthropic_vision, mock_async_anthropic_client):
        """Test camelCase action replies are accepted."""
        mock_async_anthropic_client.messages.create.return_value = _anthropic_response(
            '{"actionType": "click", "actionParams": {"x": 10, "y": 20}, "thought": "press OK", "finished": false}'
        )
        await anthropic_vision.initialize()

        action = await anthropic_vision.get_next_action(
            ActionRequest(screenshot="AAAA", instruction="Confirm the dialog", history=["wait {}"])
        )

        assert action.action_type == "click"
        assert action.action_params == {"x": 10, "y": 20}
        prompt = mock_async_anthropic_client.messages.create.call_args.kwargs["messages"][0]["content"][1]["text"]
        assert "Previous actions" in prompt

    @pytest.mark.asyncio
    async def test_api_error(self, anthropic_vision, mock_async_anthropic_client, tracker):
        """Test SDK errors become BackendError and are not billed."""
        mock_async_anthropic_client.messages.create.side_effect = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        await anthropic_vision.initialize()

        with pytest.raises(BackendError):
            await anthropic_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))
        assert tracker.total_cost == 0.0

    @pytest.mark.asyncio
    async def test_track_cost_disabled(self, tracker, mock_async_anthropic_client):
        """Test no entries are recorded when tracking is off."""
        client = VisionClient(
            provider=VisionProvider.ANTHROPIC,
            model="claude-sonnet-4-20250514",
            cost_tracker=tracker,
            api_key="sk-ant-test-key-12345",
            track_cost=False,
            anthropic_client=mock_async_anthropic_client,
        )
        await client.initialize()
        await client.find_element(FindRequest(screenshot="AAAA", description="Save"))

        assert tracker.get_summary().total_calls == 0


class TestOpenAICompatibleCalls:
    """Test calls through /chat/completions."""

    @pytest.fixture
    def doubao_vision(self, tracker, mock_httpx_client):
        return VisionClient(
            provider=VisionProvider.DOUBAO,
            model="doubao-1-5-vision-pro",
            cost_tracker=tracker,
            api_key="volc-key",
            base_url="https://ark.cn-beijing.volces.com/api/v3/",
            http_client=mock_httpx_client,
        )

    @pytest.mark.asyncio
    async def test_assert_visual(self, doubao_vision, mock_httpx_client, tracker):
        """Test assertion request shape and cost."""
        await doubao_vision.initialize()

        result = await doubao_vision.assert_visual(
            AssertRequest(screenshot="iVBORw0KGgo", assertion="A confirmation dialog is shown")
        )

        assert result.passed is True
        assert result.actual == "dialog"

        args, kwargs = mock_httpx_client.post.call_args
        assert args[0] == CHAT_URL
        assert kwargs["headers"]["Authorization"] == "Bearer volc-key"
        image_url = kwargs["json"]["messages"][1]["content"][0]["image_url"]["url"]
        assert image_url.startswith("data:image/png;base64,")

        assert tracker.total_cost == pytest.approx(0.0008 + 0.002 + 0.001)
        assert tracker.get_summary().by_provider == {"doubao": pytest.approx(0.0038)}

    @pytest.mark.asyncio
    async def test_http_error(self, doubao_vision, mock_httpx_client):
        """Test non-2xx responses become BackendError."""
        mock_httpx_client.post.return_value = _chat_response("{}", status_code=401)
        await doubao_vision.initialize()

        with pytest.raises(BackendError, match="401"):
            await doubao_vision.assert_visual(AssertRequest(screenshot="AAAA", assertion="x"))

    @pytest.mark.asyncio
    async def test_transport_error(self, doubao_vision, mock_httpx_client):
        """Test connection failures become BackendError."""
        mock_httpx_client.post.side_effect = httpx.ConnectError("connection refused")
        await doubao_vision.initialize()

        with pytest.raises(BackendError, match="request failed"):
            await doubao_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))

    @pytest.mark.asyncio
    async def test_malformed_response(self, doubao_vision, mock_httpx_client):
        """Test a response without choices becomes BackendError."""
        mock_httpx_client.post.return_value = httpx.Response(
            200, json={"error": "nope"}, request=httpx.Request("POST", CHAT_URL)
        )
        await doubao_vision.initialize()

        with pytest.raises(BackendError, match="Malformed"):
            await doubao_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))

    @pytest.mark.asyncio
    async def test_non_json_body(self, doubao_vision, mock_httpx_client, tracker):
        """Test a 200 response with a non-JSON body becomes BackendError."""
        mock_httpx_client.post.return_value = httpx.Response(
            200, text="<html>502 Bad Gateway</html>", request=httpx.Request("POST", CHAT_URL)
        )
        await doubao_vision.initialize()

        with pytest.raises(BackendError, match="non-JSON"):
            await doubao_vision.find_element(FindRequest(screenshot="AAAA", description="Save"))
        assert tracker.total_cost == 0.0
