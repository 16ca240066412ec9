from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseModel):
    provider: Literal["openai", "ollama"] = "openai"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    timeout_s: float = 30.0
    max_tokens: int = 2000
    temperature: float = 0.9


class MemorySettings(BaseModel):
    dsn: str
    max_pool_size: int = 10
    max_identity_facts: int = 8
    max_query_memories: int = 12
    max_query_memory_chars: int = 2000


class PromptSettings(BaseModel):
    """Character budgets for the blocks of the system prompt."""

    total_budget: int = 32_000
    memory_budget: int = 6_000
    history_budget: int = 10_000
    state_budget: int = 500
    temporal_budget: int = 2_000
    history_messages: int = 20
    history_digest_messages: int = 10


class ToolSettings(BaseModel):
    news_api_key: str | None = None
    news_api_url: str = "https://newsapi.org/v2"
    assets_dir: Path | None = None
    default_city: str | None = None
    timeout_s: float = 8.0


class VoiceSettings(BaseModel):
    follow_up_timeout_s: float = 8.0


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    otlp_endpoint: str | None = None


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    LLM_PROVIDER: Literal["openai", "ollama"] = "openai"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o"
    OLLAMA_HOST: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.2"
    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    LLM_MAX_TOKENS: int = Field(default=2000, ge=1)
    LLM_TEMPERATURE: float = Field(default=0.9, ge=0.0, le=2.0)
    MEMORY_DSN: str = "sqlite+aiosqlite:///./aria-memory.db"
    MEMORY_POOL_SIZE: int = 10
    MEMORY_MAX_IDENTITY_FACTS: int = 8
    MEMORY_MAX_QUERY_ITEMS: int = 12
    MEMORY_MAX_QUERY_CHARS: int = 2000
    PROMPT_TOTAL_BUDGET: int = 32_000
    PROMPT_MEMORY_BUDGET: int = 6_000
    PROMPT_HISTORY_BUDGET: int = 10_000
    NEWS_API_KEY: str | None = None
    NEWS_API_URL: str = "https://newsapi.org/v2"
    ASSETS_DIR: Path | None = None
    DEFAULT_CITY: str | None = None
    TOOL_TIMEOUT_SECONDS: float = 8.0
    FOLLOW_UP_TIMEOUT_S: float = 8.0
    USER_NAME: str | None = None
    AUTO_SAVE_MEMORIES: bool = True
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None

    @property
    def llm(self) -> LLMSettings:
        return LLMSettings(
            provider=self.LLM_PROVIDER,
            openai_api_key=self.OPENAI_API_KEY,
            openai_base_url=self.OPENAI_BASE_URL,
            openai_model=self.OPENAI_MODEL,
            ollama_host=self.OLLAMA_HOST,
            ollama_model=self.OLLAMA_MODEL,
            timeout_s=self.LLM_TIMEOUT_SECONDS,
            max_tokens=self.LLM_MAX_TOKENS,
            temperature=self.LLM_TEMPERATURE,
        )

    @property
    def memory(self) -> MemorySettings:
        return MemorySettings(
            dsn=self.MEMORY_DSN,
            max_pool_size=self.MEMORY_POOL_SIZE,
            max_identity_facts=self.MEMORY_MAX_IDENTITY_FACTS,
            max_query_memories=self.MEMORY_MAX_QUERY_ITEMS,
            max_query_memory_chars=self.MEMORY_MAX_QUERY_CHARS,
        )

    @property
    def prompt(self) -> PromptSettings:
        return PromptSettings(
            total_budget=self.PROMPT_TOTAL_BUDGET,
            memory_budget=self.PROMPT_MEMORY_BUDGET,
            history_budget=self.PROMPT_HISTORY_BUDGET,
        )

    @property
    def tools(self) -> ToolSettings:
        return ToolSettings(
            news_api_key=self.NEWS_API_KEY,
            news_api_url=self.NEWS_API_URL,
            assets_dir=self.ASSETS_DIR,
            default_city=self.DEFAULT_CITY,
            timeout_s=self.TOOL_TIMEOUT_SECONDS,
        )

    @property
    def voice(self) -> VoiceSettings:
        return VoiceSettings(follow_up_timeout_s=self.FOLLOW_UP_TIMEOUT_S)

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(log_level=self.LOG_LEVEL, otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


class SettingsKey:
    USER_NAME = "user_name"
    ASSISTANT_NAME = "assistant_name"
    RESPONSE_STYLE = "response_style"
    AUTO_SAVE_MEMORIES = "auto_save_memories"


class SettingsStore(Protocol):
    def get_string(self, key: str) -> str | None: ...

    def get_bool(self, key: str, default: bool = False) -> bool: ...

    def get_float(self, key: str, default: float = 0.0) -> float: ...

    def set_string(self, key: str, value: str | None) -> None: ...

    def set_bool(self, key: str, value: bool) -> None: ...

    def set_float(self, key: str, value: float) -> None: ...

    def has_value(self, key: str) -> bool: ...


class InMemorySettingsStore:
    """Process-local settings store used by the API runtime and tests."""

    def __init__(self, initial: dict[str, str | bool | float] | None = None) -> None:
        self._values: dict[str, str | bool | float] = dict(initial or {})

    def get_string(self, key: str) -> str | None:
        value = self._values.get(key)
        if value is None:
            return None
        return str(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._values.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._values.get(key)
        if value is None or isinstance(value, bool):
            return default
        try:
            return float(value)
        except ValueError:
            return default

    def set_string(self, key: str, value: str | None) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value

    def set_bool(self, key: str, value: bool) -> None:
        self._values[key] = value

    def set_float(self, key: str, value: float) -> None:
        self._values[key] = value

    def has_value(self, key: str) -> bool:
        return key in self._values

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "InMemorySettingsStore":
        initial: dict[str, str | bool | float] = {
            SettingsKey.AUTO_SAVE_MEMORIES: settings.AUTO_SAVE_MEMORIES,
        }
        if settings.USER_NAME:
            initial[SettingsKey.USER_NAME] = settings.USER_NAME
        return cls(initial)


__all__ = [
    "AppSettings",
    "LLMSettings",
    "MemorySettings",
    "PromptSettings",
    "ToolSettings",
    "VoiceSettings",
    "TelemetrySettings",
    "load_settings",
    "SettingsKey",
    "SettingsStore",
    "InMemorySettingsStore",
]
