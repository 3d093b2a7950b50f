"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings

from hostwatch.core.schema import (
    CapabilityConfig,
    ProviderLimits,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Model backend
    PROVIDER: str = "anthropic"  # Options: anthropic, openai, tgi, cli
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-sonnet-4-5"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"
    CLI_PATH: str = "claude"
    CLI_MODEL: str = "sonnet"
    MAX_TOKENS: int = 2048
    BACKEND_TIMEOUT: float = 120.0

    # Per-turn budgets
    MAX_TOOL_CALLS: int = 40
    MAX_ITERATIONS: int = 50

    # Tool capabilities
    ALLOWED_DIRS: str = ""  # Comma-separated absolute paths
    MAX_FILE_SIZE_KB: int = 100
    MAX_LOG_LINES: int = 50
    COMMAND_TIMEOUT: float = 30.0
    COLLECTOR: str | None = None  # "package.module:attribute"

    # Plugins
    PLUGINS_DIR: str = "plugins.local"
    PLUGIN_INIT_TIMEOUT: float = 10.0
    PLUGIN_DESTROY_TIMEOUT: float = 5.0

    # Prompt
    SYSTEM_PROMPT_FILE: str | None = None
    CONTEXT_FILE: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def allowed_dirs(self) -> List[str]:
        return [d.strip() for d in self.ALLOWED_DIRS.split(",") if d.strip()]

    def capability_config(self) -> CapabilityConfig:
        """Default capability boundary for requests that do not bring their own."""
        return CapabilityConfig(
            allowed_directories=self.allowed_dirs,
            max_file_size_kb=self.MAX_FILE_SIZE_KB,
            max_log_lines=self.MAX_LOG_LINES,
        )

    def provider_limits(self) -> ProviderLimits:
        return ProviderLimits(max_tool_calls=self.MAX_TOOL_CALLS, max_iterations=self.MAX_ITERATIONS)


settings = Settings()
