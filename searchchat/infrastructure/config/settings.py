"""Configuration management for searchchat."""

from functools import lru_cache
from typing import List, Literal, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_allowed_origins: Union[str, List[str]] = Field(default=["*"], alias="API_ALLOWED_ORIGINS")

    # Chat model (any provider supported by langchain's init_chat_model)
    model_name: str = Field(default="gpt-4o-mini", alias="MODEL_NAME")
    model_provider: Optional[str] = Field(default="openai", alias="MODEL_PROVIDER")
    model_temperature: float = Field(default=0.2, alias="MODEL_TEMPERATURE")
    system_prompt: Optional[str] = Field(default=None, alias="SYSTEM_PROMPT")

    # Web Search Settings (Tavily API)
    tavily_api_key: Optional[str] = Field(default=None, alias="TAVILY_API_KEY")
    tavily_max_results: int = Field(default=4, alias="TAVILY_MAX_RESULTS")
    tavily_search_depth: Literal["basic", "advanced"] = Field(default="basic", alias="TAVILY_SEARCH_DEPTH")
    search_timeout_seconds: float = Field(default=30.0, alias="SEARCH_TIMEOUT_SECONDS")

    # Turn orchestration
    max_tool_rounds: int = Field(default=5, ge=1, alias="MAX_TOOL_ROUNDS")
    turn_timeout_seconds: float = Field(default=120.0, gt=0, alias="TURN_TIMEOUT_SECONDS")
    event_queue_size: int = Field(default=64, ge=1, alias="EVENT_QUEUE_SIZE")

    # Thread retention; 0 keeps threads for the process lifetime
    thread_idle_ttl_seconds: float = Field(default=0, ge=0, alias="THREAD_IDLE_TTL_SECONDS")
    thread_sweep_interval_seconds: float = Field(default=60.0, gt=0, alias="THREAD_SWEEP_INTERVAL_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")
    service_name: str = Field(default="searchchat", alias="SERVICE_NAME")

    @field_validator("api_allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        """Accept a comma separated origin list from the environment."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
