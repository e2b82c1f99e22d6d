"""Configuration management for HouseBot using pydantic-settings."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError

# Ensure .env is loaded so ${VAR} expansion and os.environ lookups work
load_dotenv(dotenv_path=Path(".") / ".env", override=False)


class AssistantConfig(BaseModel):
    """Who the assistant is and how it talks."""

    name: str = "Bowdy Bot"
    # Extra names people use to address the bot in group chats
    aliases: list[str] = Field(default_factory=lambda: ["bowdy"])
    # The bot's own identities on chat platforms (used for native mentions)
    platform_ids: list[str] = Field(default_factory=list)
    persona: str = (
        "You are a helpful family assistant. You help with tasks, groceries, "
        "calendar, and general questions. Be concise, friendly, and practical."
    )
    timezone: str = "America/Chicago"
    fallback_reply: str = "I'm not sure how to respond to that."
    apology_reply: str = "Sorry, something went wrong. Try again?"


class LLMConfig(BaseModel):
    """Completion service (Anthropic) configuration."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    # Cheap model used by the group-chat classifier
    classifier_model: str = "claude-haiku-4-5"
    classifier_max_tokens: int = 5
    timeout: int = 120


class OrchestratorConfig(BaseModel):
    """Completion loop safeguards."""

    max_rounds: int = 15  # Completion requests per inbound message
    tool_timeout_seconds: float = 60.0  # 0 disables the per-tool timeout


class MemoryConfig(BaseModel):
    """Conversation history configuration."""

    history_limit: int = 30


class GateConfig(BaseModel):
    """Directed-message gate configuration."""

    buffer_size: int = 10


class DeliveryConfig(BaseModel):
    """Outbound delivery configuration."""

    pacing_seconds: float = 0.5


class ConsoleChannelConfig(BaseModel):
    """Interactive terminal channel."""

    enabled: bool = True
    user_id: str = "console-user"
    user_name: str = "console"


class GroupMeChannelConfig(BaseModel):
    """GroupMe bot channel configuration."""

    enabled: bool = False
    bot_id: str = ""
    host: str = "0.0.0.0"
    port: int = 3000
    max_message_length: int = 1000
    ack_text: str | None = None
    allowed_senders: list[str] = Field(default_factory=list)


class ChannelsConfig(BaseModel):
    """All channels configuration."""

    console: ConsoleChannelConfig = Field(default_factory=ConsoleChannelConfig)
    groupme: GroupMeChannelConfig = Field(default_factory=GroupMeChannelConfig)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///./data/housebot.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: str = "./data/logs/housebot.log"
    max_size_mb: int = 100
    backup_count: int = 5
    audit_file: str = "./data/logs/audit.log"


class SkillsConfig(BaseModel):
    """Capability provider toggles."""

    tasks: dict[str, Any] = Field(default_factory=lambda: {"enabled": True, "default_list": "general"})


class Settings(BaseSettings):
    """Main settings class that loads from YAML and environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HOUSEBOT_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)

    # API keys from environment
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    groupme_bot_id: str = Field(default="", alias="GROUPME_BOT_ID")

    @classmethod
    def from_yaml(cls, config_path: str | Path | None = None) -> "Settings":
        """Load settings from YAML file with environment variable overrides."""
        if config_path is None:
            possible_paths = [
                Path(os.environ.get("HOUSEBOT_CONFIG", "config/settings.yaml")),
                Path("config/settings.local.yaml"),
                Path.home() / ".config/housebot/settings.yaml",
            ]
            for path in possible_paths:
                if path.exists():
                    config_path = path
                    break

        config_data: dict[str, Any] = {}
        if config_path and Path(config_path).exists():
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}

        config_data = cls._expand_env_vars(config_data)

        env_keys = [
            ("anthropic_api_key", "ANTHROPIC_API_KEY"),
            ("groupme_bot_id", "GROUPME_BOT_ID"),
        ]
        for field_name, env_var in env_keys:
            if field_name not in config_data:
                config_data[field_name] = os.environ.get(env_var, "")

        try:
            instance = cls(**config_data)
        except Exception as e:
            raise ConfigurationError(f"Invalid config: {e}") from e
        instance.validate()
        return instance

    def validate(self) -> None:
        """Validate critical config. Raises ConfigurationError on failure."""
        errors: list[str] = []
        if not self.assistant.name.strip():
            errors.append("assistant.name must be a non-empty string")
        try:
            ZoneInfo(self.assistant.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"assistant.timezone is not a known timezone: {self.assistant.timezone}")
        if self.memory.history_limit <= 0:
            errors.append("memory.history_limit must be positive")
        if self.gate.buffer_size <= 0:
            errors.append("gate.buffer_size must be positive")
        if self.orchestrator.max_rounds <= 0:
            errors.append("orchestrator.max_rounds must be positive")
        if self.delivery.pacing_seconds < 0:
            errors.append("delivery.pacing_seconds must not be negative")
        groupme = self.channels.groupme
        if groupme.enabled:
            if not (groupme.bot_id or self.groupme_bot_id):
                errors.append("GROUPME_BOT_ID is required when the GroupMe channel is enabled")
            if groupme.max_message_length <= 1:
                errors.append("channels.groupme.max_message_length must be greater than 1")
        if errors:
            raise ConfigurationError("Config validation failed: " + "; ".join(errors))

    def require_api_key(self) -> str:
        """Return the Anthropic API key or fail before any channel starts."""
        if not self.anthropic_api_key:
            raise ConfigurationError("Missing required environment variable: ANTHROPIC_API_KEY")
        return self.anthropic_api_key

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in config values."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith("${") and data.endswith("}"):
                env_var = data[2:-1]
                return os.environ.get(env_var, "")
            return data
        return data

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for dir_path in (Path(self.logging.file).parent, Path(self.logging.audit_file).parent):
            dir_path.expanduser().mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_yaml()


def reload_settings(config_path: str | Path | None = None) -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    if config_path is not None:
        os.environ["HOUSEBOT_CONFIG"] = str(config_path)
    return get_settings()
