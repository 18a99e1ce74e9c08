"""LLM access for extraction and research, with per-call token accounting."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import ollama
    import openai

# Charged per call when the provider reports no token usage
FLAT_CALL_COST = 0.003

# USD per million (input, output) tokens
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1-mini": (0.40, 1.60),
}


class LLMProvider(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"


DEFAULT_MODELS: dict[LLMProvider, str] = {
    LLMProvider.OLLAMA: "llama3.2",
    LLMProvider.OPENAI: "gpt-4o-mini",
}


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass(frozen=True)
class Completion:
    """Raw provider output for one call."""

    text: str
    usage: TokenUsage | None = None


@dataclass
class LLMResult:
    """Result of an LLM generation, as seen by callers of LLMService."""

    content: str
    model: str
    provider: LLMProvider
    usage: TokenUsage | None = None


def estimate_cost(result: LLMResult) -> float:
    """Dollar cost of one generation. Local models are free."""
    if result.provider == LLMProvider.OLLAMA:
        return 0.0
    pricing = MODEL_PRICING.get(result.model)
    if result.usage is None or pricing is None:
        return FLAT_CALL_COST

    input_rate, output_rate = pricing
    usage = result.usage
    return (usage.prompt_tokens * input_rate + usage.completion_tokens * output_rate) / 1_000_000


def chat_messages(prompt: str, system_prompt: str | None = None) -> list[dict[str, str]]:
    messages = [{"role": "user", "content": prompt}]
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})
    return messages


class LLMProviderBase(ABC):
    """One chat completion backend."""

    def __init__(self, model: str):
        self.model = model

    @property
    def model_name(self) -> str:
        return self.model

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Run one chat completion.

        With ``json_mode`` the backend is asked to return a single JSON object.
        Transport failures surface as ConnectionError.
        """


class OllamaLLMProvider(LLMProviderBase):
    """Local models served by Ollama."""

    def __init__(self, model: str = DEFAULT_MODELS[LLMProvider.OLLAMA], host: str | None = None):
        super().__init__(model)
        self.host = host or os.getenv("OLLAMA_HOST", "http://localhost:11434")
        self._client: ollama.AsyncClient | None = None

    async def _get_client(self) -> ollama.AsyncClient:
        if self._client is None:
            try:
                import ollama
            except ImportError as e:
                raise ImportError(
                    "Ollama support needs the ollama package: pip install 'capto[ollama]'"
                ) from e
            self._client = ollama.AsyncClient(host=self.host)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        client = await self._get_client()

        options: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens
        extra: dict[str, Any] = {"format": "json"} if json_mode else {}

        try:
            response = await client.chat(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                options=options,  # type: ignore[arg-type]
                **extra,
            )
        except Exception as e:
            raise ConnectionError(f"Ollama at {self.host} did not answer: {e}") from e

        text = str(response["message"]["content"])  # type: ignore[index]
        prompt_tokens = response.get("prompt_eval_count")  # type: ignore[union-attr]
        completion_tokens = response.get("eval_count")  # type: ignore[union-attr]
        usage = None
        if prompt_tokens is not None or completion_tokens is not None:
            usage = TokenUsage(int(prompt_tokens or 0), int(completion_tokens or 0))
        return Completion(text=text, usage=usage)


class OpenAILLMProvider(LLMProviderBase):
    """Hosted models through the OpenAI API."""

    def __init__(
        self, model: str = DEFAULT_MODELS[LLMProvider.OPENAI], api_key: str | None = None
    ):
        super().__init__(model)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._client: openai.AsyncOpenAI | None = None

    async def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ValueError("OPENAI_API_KEY is not set")
            try:
                import openai
            except ImportError as e:
                raise ImportError(
                    "OpenAI support needs the openai package: pip install 'capto[openai]'"
                ) from e
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        client = await self._get_client()

        kwargs: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(
            model=self.model, messages=messages, **kwargs  # type: ignore[arg-type]
        )

        usage = None
        if response.usage is not None:
            usage = TokenUsage(response.usage.prompt_tokens, response.usage.completion_tokens)
        return Completion(text=response.choices[0].message.content or "", usage=usage)


_PROVIDER_CLASSES: dict[LLMProvider, type[LLMProviderBase]] = {
    LLMProvider.OLLAMA: OllamaLLMProvider,
    LLMProvider.OPENAI: OpenAILLMProvider,
}


class LLMService:
    """Generation entry point shared by the extractor and the research generator.

    The provider and model come from the arguments, else from ``LLM_PROVIDER``
    and ``LLM_MODEL``. The backend client is created on first use.
    """

    def __init__(self, provider: LLMProvider | None = None, model: str | None = None):
        if provider is None:
            provider = LLMProvider(os.getenv("LLM_PROVIDER", "ollama").strip().lower())
        self.provider_type = provider
        self.model = model or os.getenv("LLM_MODEL") or DEFAULT_MODELS[provider]
        self._provider: LLMProviderBase | None = None

    def _get_provider(self) -> LLMProviderBase:
        if self._provider is None:
            self._provider = _PROVIDER_CLASSES[self.provider_type](model=self.model)
        return self._provider

    async def _complete(
        self,
        prompt: str,
        system_prompt: str | None,
        temperature: float,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResult:
        provider = self._get_provider()
        completion = await provider.complete(
            chat_messages(prompt, system_prompt),
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )
        return LLMResult(
            content=completion.text,
            model=provider.model_name,
            provider=self.provider_type,
            usage=completion.usage,
        )

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> LLMResult:
        return await self._complete(prompt, system_prompt, temperature, max_tokens)

    async def generate_json(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.0,
    ) -> tuple[Any, LLMResult]:
        """Generate and parse a JSON response.

        Returns the decoded value (not necessarily an object) with the
        LLMResult. Raises ValueError when the text is not valid JSON.
        """
        result = await self._complete(prompt, system_prompt, temperature, json_mode=True)
        try:
            data = json.loads(result.content or "{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Model returned invalid JSON: {e}") from e
        return data, result
