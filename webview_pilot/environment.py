"""Agent-mode detection from environment markers.

When tests run inside a coding agent (Cursor, Claude Code, an MCP host, ...)
there is often no vision API key, but the host agent can look at screenshots
itself. This module inspects the process environment once, at session
construction, and turns the result into an explicit ``VisionProvider`` that
is injected into the session. Nothing in the resolution path reads the
environment directly.
"""

import os
from collections.abc import Mapping
from enum import Enum
from typing import Optional

import structlog

from webview_pilot.config import PilotSettings, VisionProvider

logger = structlog.get_logger()


class AgentEnvironment(str, Enum):
    """Known agent hosts."""

    CURSOR = "cursor"
    CLAUDE_CODE = "claude-code"
    VSCODE_CLAUDE = "vscode-claude"
    CLAUDE_DESKTOP = "claude-desktop"
    MCP = "anthropic-mcp"
    UNKNOWN = "unknown"  # Agent mode requested explicitly


# Checked in order, first hit wins
_ENVIRONMENT_MARKERS: list[tuple[AgentEnvironment, tuple[str, ...]]] = [
    (AgentEnvironment.CURSOR, ("CURSOR_SESSION", "CURSOR_WORKSPACE", "CURSOR_IDE", "CURSOR_TRACE_ID")),
    (AgentEnvironment.CLAUDE_CODE, ("CLAUDE_CODE", "CLAUDE_CLI", "ANTHROPIC_AGENT", "CLAUDE_SESSION_ID")),
    (AgentEnvironment.VSCODE_CLAUDE, ("VSCODE_CLAUDE", "CLAUDE_VSCODE")),
    (AgentEnvironment.CLAUDE_DESKTOP, ("CLAUDE_DESKTOP", "CLAUDE_APP")),
    (AgentEnvironment.MCP, ("MCP_SERVER", "MCP_SESSION")),
]

_TRUTHY = {"1", "true", "yes", "on"}


def detect_agent_environment(environ: Optional[Mapping[str, str]] = None) -> Optional[AgentEnvironment]:
    """Detect which agent host (if any) the process runs under.

    Args:
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        The detected environment, or None when not running under an agent
    """
    env = os.environ if environ is None else environ

    for environment, markers in _ENVIRONMENT_MARKERS:
        if any(env.get(name) for name in markers):
            return environment

    if env.get("USE_AGENT_MODE", "").lower() in _TRUTHY:
        return AgentEnvironment.UNKNOWN

    return None


def should_use_agent_mode(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Whether vision requests should go to the host agent instead of an API."""
    env = os.environ if environ is None else environ
    if env.get("USE_CURSOR", "").lower() in _TRUTHY:
        return True
    return detect_agent_environment(env) is not None


def resolve_vision_provider(
    settings: PilotSettings,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[VisionProvider]:
    """Decide which vision provider a session should use.

    An explicitly configured provider always wins. Without one, agent mode is
    selected when an agent host is detected and no API key is configured.

    Returns:
        The provider to use, or None when vision is disabled
    """
    if settings.vision_provider is not None:
        return settings.vision_provider

    has_api_key = bool(settings.anthropic_api_key or settings.openai_api_key)
    if not has_api_key and should_use_agent_mode(environ):
        logger.info(
            "Agent environment detected, using agent vision mode",
            environment=(detect_agent_environment(environ) or AgentEnvironment.UNKNOWN).value,
        )
        return VisionProvider.AGENT

    return None
