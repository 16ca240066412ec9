from __future__ import annotations

from dataclasses import dataclass, field

from aria.config import LLMSettings
from aria.errors import NoProviderAvailable
from aria.llm.providers.ollama import OllamaProvider
from aria.llm.providers.openai import OpenAIProvider
from aria.llm.types import LLMClient, LLMRequest, LLMResponse
from aria.telemetry.logging import get_logger


@dataclass
class ProviderRouter(LLMClient):
    """Dispatches completions to the active provider. Performs no retries."""

    providers: dict[str, LLMClient] = field(default_factory=dict)
    default: str | None = None

    def __post_init__(self) -> None:
        self._logger = get_logger(__name__)
        self.name = "router"
        if self.default is None and self.providers:
            self.default = next(iter(self.providers))

    async def complete(self, request: LLMRequest) -> LLMResponse:
        provider = self._select_provider()
        self._logger.info("llm.router.decision", provider=provider.name, messages=len(request.messages))
        response = await provider.complete(request)
        if response.provider is None:
            response.provider = provider.name
        return response

    def _select_provider(self) -> LLMClient:
        if self.default is not None and self.default in self.providers:
            return self.providers[self.default]
        raise NoProviderAvailable("no language-model provider is configured")

    def set_default(self, provider: str) -> str:
        provider = provider.lower()
        if provider not in self.providers:
            raise ValueError(f"Unknown provider '{provider}'")
        self.default = provider
        return provider

    def current_provider(self) -> str | None:
        return self.default

    def available(self) -> list[str]:
        return sorted(self.providers)

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()


def build_router(settings: LLMSettings) -> ProviderRouter:
    providers: dict[str, LLMClient] = {
        "openai": OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_s=settings.timeout_s,
        ),
        "ollama": OllamaProvider(host=settings.ollama_host, model=settings.ollama_model, timeout_s=settings.timeout_s),
    }
    return ProviderRouter(providers=providers, default=settings.provider)


__all__ = ["ProviderRouter", "build_router"]
