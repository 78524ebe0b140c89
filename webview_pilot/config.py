"""Configuration management for webview-pilot."""

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResolutionMode(str, Enum):
    """How locators are resolved for a session."""
    DETERMINISTIC = "deterministic"  # Structural backend only, never the vision model
    VISUAL = "visual"  # Vision model only
    HYBRID = "hybrid"  # Structural first, vision model on failure


class VisionProvider(str, Enum):
    """Supported vision model providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    VOLCENGINE = "volcengine"
    DOUBAO = "doubao"  # Volcengine's Doubao models, same endpoint
    CUSTOM = "custom"  # Any OpenAI-compatible /chat/completions endpoint
    AGENT = "agent"  # Hand screenshots to a host coding agent via files


# Model used when vision_model is not set
DEFAULT_VISION_MODELS = {
    VisionProvider.ANTHROPIC: "claude-sonnet-4-20250514",
    VisionProvider.OPENAI: "gpt-4o",
    VisionProvider.VOLCENGINE: "doubao-1-5-vision-pro",
    VisionProvider.DOUBAO: "doubao-1-5-vision-pro",
    VisionProvider.CUSTOM: "gpt-4o",
    VisionProvider.AGENT: "agent",
}

DEFAULT_VISION_BASE_URLS = {
    VisionProvider.OPENAI: "https://api.openai.com/v1",
    VisionProvider.VOLCENGINE: "https://ark.cn-beijing.volces.com/api/v3",
    VisionProvider.DOUBAO: "https://ark.cn-beijing.volces.com/api/v3",
}


class PilotSettings(BaseSettings):
    """Settings loaded from PILOT_* environment variables and .env."""

    model_config = SettingsConfigDict(
        env_prefix="PILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Resolution
    mode: ResolutionMode = Field(ResolutionMode.HYBRID, description="Locator resolution mode")

    # Structural backend (agent-browser over CDP)
    cdp_endpoint: str = Field("9222", description="CDP port or ws:// endpoint of the web view")
    cdp_timeout_ms: int = Field(30000, description="Timeout for a single agent-browser command")
    agent_browser_path: str = Field("agent-browser", description="agent-browser executable")

    # OS bridge
    os_bridge_python_path: str = Field("python3", description="Interpreter used to run the bridge server")
    os_bridge_server_path: Optional[str] = Field(
        None, description="Path to the OS bridge server script (bridge disabled when unset)"
    )
    os_bridge_call_timeout_ms: int = Field(30000, description="Timeout for one bridge round trip")
    os_bridge_startup_timeout_ms: int = Field(10000, description="Timeout waiting for the ready signal")

    # Native input
    native_input_enabled: bool = Field(True, description="Try pyautogui when the OS bridge is unavailable")
    native_key_delay_ms: int = Field(10, description="Delay between typed characters")

    # Vision model
    vision_provider: Optional[VisionProvider] = Field(None, description="Vision provider (None disables vision)")
    vision_model: Optional[str] = Field(None, description="Model override for the vision provider")
    vision_base_url: Optional[str] = Field(None, description="Base URL for OpenAI-compatible providers")
    vision_max_tokens: int = Field(4096, description="Max output tokens per vision call")
    vision_temperature: float = Field(0.0, ge=0.0, le=2.0, description="Sampling temperature for vision calls")
    vision_timeout_seconds: float = Field(60.0, description="HTTP timeout for vision calls")
    track_cost: bool = Field(True, description="Record vision model usage in the cost tracker")
    agent_exchange_dir: str = Field(".agent-test-screenshots", description="Directory for agent-mode exchange files")

    # API keys (unprefixed names are accepted too)
    anthropic_api_key: Optional[SecretStr] = Field(
        None,
        validation_alias=AliasChoices("PILOT_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
        description="Anthropic API key",
    )
    openai_api_key: Optional[SecretStr] = Field(
        None,
        validation_alias=AliasChoices("PILOT_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="OpenAI API key",
    )
    volcengine_api_key: Optional[SecretStr] = Field(
        None,
        validation_alias=AliasChoices("PILOT_VOLCENGINE_API_KEY", "VOLCENGINE_API_KEY", "DOUBAO_API_KEY"),
        description="Volcengine / Doubao API key",
    )
    custom_api_key: Optional[SecretStr] = Field(None, description="API key for a custom provider")

    # Timing
    default_timeout_ms: int = Field(30000, description="Default wait_for timeout")
    wait_interval_ms: int = Field(100, description="Polling interval for wait_for")
    agent_max_iterations: int = Field(10, description="Max steps for the vision agent loop")
    agent_step_delay_ms: int = Field(500, description="Pause between vision agent steps")

    # Artifacts
    screenshot_dir: str = Field("./test-results/screenshots", description="Where screenshots are saved")
    video_dir: str = Field("./test-results/videos", description="Where recordings are saved")
    session_name: Optional[str] = Field(None, description="agent-browser session name (generated when unset)")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Emit JSON logs")

    def api_key_for(self, provider: VisionProvider) -> Optional[str]:
        """Return the plain API key configured for a provider, if any."""
        secret = {
            VisionProvider.ANTHROPIC: self.anthropic_api_key,
            VisionProvider.OPENAI: self.openai_api_key,
            VisionProvider.VOLCENGINE: self.volcengine_api_key,
            VisionProvider.DOUBAO: self.volcengine_api_key,
            VisionProvider.CUSTOM: self.custom_api_key,
        }.get(provider)
        return secret.get_secret_value() if secret else None

    def model_for(self, provider: VisionProvider) -> str:
        return self.vision_model or DEFAULT_VISION_MODELS[provider]

    def base_url_for(self, provider: VisionProvider) -> Optional[str]:
        return self.vision_base_url or DEFAULT_VISION_BASE_URLS.get(provider)


def get_settings() -> PilotSettings:
    """Get settings instance."""
    return PilotSettings()
