"""Shared fixtures for webview-pilot tests."""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from webview_pilot.adapters.base import BackendCapabilities
from webview_pilot.config import PilotSettings, ResolutionMode
from webview_pilot.execution.capabilities import BackendKind, CapabilityRegistry
from webview_pilot.execution.models import BoundingBox, ElementHandle, Snapshot
from webview_pilot.vision.models import AssertResponse, ActionResponse, FindResponse


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (fast, critical path - included in CI)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring a running app or real API keys"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# Keep real keys and agent markers in the developer's shell out of the tests
for _var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "VOLCENGINE_API_KEY", "DOUBAO_API_KEY"):
    os.environ.pop(_var, None)

FAKE_PNG = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


@pytest.fixture
def fake_png():
    """Base64 PNG returned by every mock screenshot."""
    return FAKE_PNG


@pytest.fixture
def settings():
    """Settings with fast waits and no vision provider."""
    return PilotSettings(
        _env_file=None,
        mode=ResolutionMode.HYBRID,
        default_timeout_ms=200,
        wait_interval_ms=10,
        agent_step_delay_ms=0,
        agent_max_iterations=3,
    )


@pytest.fixture
def sample_snapshot():
    """Snapshot with a button, a textbox and a link."""
    return Snapshot(
        refs={
            "e1": ElementHandle(id="e1", role="button", name="Save", selector="@e1"),
            "e2": ElementHandle(id="e2", role="textbox", name="Email", selector="@e2"),
            "e3": ElementHandle(id="e3", role="link", name="Save draft", selector="@e3"),
        },
        tree='- button "Save" [ref=e1]\n- textbox "Email" [ref=e2]\n- link "Save draft" [ref=e3]',
    )


@pytest.fixture
def mock_structural(sample_snapshot):
    """Create mock structural backend."""
    mock = MagicMock()
    mock.name = "structural"
    mock.capabilities = BackendCapabilities(screenshot=True, recording=True)
    mock.is_available.return_value = True
    mock.initialize = AsyncMock()
    mock.cleanup = AsyncMock()
    mock.snapshot = AsyncMock(return_value=sample_snapshot)
    mock.find_by_selector = AsyncMock(
        return_value=ElementHandle(id="cdp_1", role="element", name="#save", selector="#save")
    )
    mock.count_by_selector = AsyncMock(return_value=1)
    mock.act = AsyncMock()
    mock.press_key = AsyncMock()
    mock.type_text = AsyncMock()
    mock.scroll_page = AsyncMock()
    mock.get_text = AsyncMock(return_value="Saved")
    mock.get_value = AsyncMock(return_value="user@example.com")
    mock.get_attribute = AsyncMock(return_value="primary")
    mock.is_visible = AsyncMock(return_value=True)
    mock.is_enabled = AsyncMock(return_value=True)
    mock.bounding_box = AsyncMock(return_value=BoundingBox(x=10, y=20, width=100, height=40))
    mock.screenshot = AsyncMock(return_value=FAKE_PNG)
    mock.evaluate = AsyncMock(return_value=42)
    mock.navigate = AsyncMock()
    mock.get_url = AsyncMock(return_value="tauri://localhost/settings")
    mock.get_title = AsyncMock(return_value="Settings")
    mock.wait_for_idle = AsyncMock()
    mock.start_recording = AsyncMock()
    mock.stop_recording = AsyncMock(return_value="/tmp/videos/run.webm")
    return mock


def _pixel_backend(name: str) -> MagicMock:
    mock = MagicMock()
    mock.name = name
    mock.capabilities = BackendCapabilities(screenshot=True, recording=False)
    mock.is_available.return_value = True
    mock.initialize = AsyncMock()
    mock.cleanup = AsyncMock()
    mock.click = AsyncMock()
    mock.move_to = AsyncMock()
    mock.type_text = AsyncMock()
    mock.press_key = AsyncMock()
    mock.scroll = AsyncMock()
    mock.drag = AsyncMock()
    mock.screenshot = AsyncMock(return_value=FAKE_PNG)
    mock.get_screen_size = AsyncMock(return_value=(1920, 1080))
    mock.activate_application = AsyncMock()
    return mock


@pytest.fixture
def mock_os_bridge():
    """Create mock OS bridge backend."""
    return _pixel_backend("os_bridge")


@pytest.fixture
def mock_native_input():
    """Create mock native input backend."""
    return _pixel_backend("native_input")


@pytest.fixture
def mock_vision():
    """Create mock vision backend that finds everything at (200, 150)."""
    mock = MagicMock()
    mock.name = "vision"
    mock.is_available.return_value = True
    mock.initialize = AsyncMock()
    mock.cleanup = AsyncMock()
    mock.find_element = AsyncMock(
        return_value=FindResponse(coordinates=(200, 150), confidence=0.9, reasoning="Blue button labelled Save")
    )
    mock.get_next_action = AsyncMock(return_value=ActionResponse(action_type="finished", finished=True))
    mock.assert_visual = AsyncMock(return_value=AssertResponse(passed=True, reasoning="Dialog is shown"))
    return mock


@pytest.fixture
def registry(mock_structural):
    """Registry with only the structural backend connected."""
    registry = CapabilityRegistry()
    registry.register(BackendKind.STRUCTURAL, mock_structural)
    return registry
