"""Configuration schema using Pydantic."""

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReactionsConfig(BaseModel):
    """Emojis added to the triggering message while and after replying."""
    ack: str = "👀"
    done: str = "✅"
    error: str = "❌"


class DiscordConfig(BaseModel):
    """Discord channel configuration."""
    enabled: bool = False
    token: str = ""  # Bot token from the Discord developer portal
    guild_id: str = ""  # Restrict the bot to one server; empty means any
    allow_from: list[str] = Field(default_factory=lambda: ["*"])  # User IDs allowed to trigger replies, "*" for all
    reactions: ReactionsConfig = Field(default_factory=ReactionsConfig)
    error_reply: str = "Error processing your request."

    @field_validator("allow_from", mode="before")
    @classmethod
    def _split_allow_from(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""
    discord: DiscordConfig = Field(default_factory=DiscordConfig)


class AgentConfig(BaseModel):
    """Reply generation settings."""
    model: str = "anthropic/claude-sonnet-4-5"
    system_prompt: str = (
        "You are a helpful assistant taking part in a group chat. "
        "Keep replies conversational and to the point."
    )
    max_tokens: int = 1024
    temperature: float = 0.7
    history_limit: int = 20  # Exchanges kept per session, in memory only


class ProviderConfig(BaseModel):
    """LLM provider credentials passed through to LiteLLM."""
    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Log sink configuration."""
    level: str = "INFO"
    file: str = ""  # Optional log file; empty disables the file sink
    rotation: str = "10 MB"


class Config(BaseSettings):
    """Root configuration for turnstream."""
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(env_prefix="TURNSTREAM_", env_nested_delimiter="__")
