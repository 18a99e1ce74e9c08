"""Tests for LLM providers, the service wrapper and cost estimates."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from capto.processing import (
    LLMProvider,
    LLMProviderBase,
    LLMResult,
    LLMService,
    OllamaLLMProvider,
    OpenAILLMProvider,
    TokenUsage,
    estimate_cost,
)
from capto.processing.llm import FLAT_CALL_COST, Completion, chat_messages

MESSAGES = chat_messages("Extract fields", system_prompt="Answer in JSON")


@pytest.fixture
def ollama_client():
    client = AsyncMock()
    client.chat.return_value = {"message": {"content": "ok"}}
    return client


@pytest.fixture
def ollama(ollama_client):
    provider = OllamaLLMProvider(host="http://ollama:11434")
    with patch.object(provider, "_get_client", return_value=ollama_client):
        yield provider


@pytest.fixture
def openai_client():
    client = AsyncMock()
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content="ok"))]
    response.usage = MagicMock(prompt_tokens=40, completion_tokens=8)
    client.chat.completions.create.return_value = response
    return client


@pytest.fixture
def openai_provider(openai_client):
    provider = OpenAILLMProvider(api_key="sk-test")
    with patch.object(provider, "_get_client", return_value=openai_client):
        yield provider


class StubProvider(LLMProviderBase):
    """Provider that replays a fixed completion and records its calls."""

    def __init__(self, text: str, usage: TokenUsage | None = None):
        super().__init__("stub-model")
        self.completion = Completion(text=text, usage=usage)
        self.calls: list[dict] = []

    async def complete(self, messages, *, temperature=0.0, max_tokens=None, json_mode=False):
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        return self.completion


def service_with(stub: StubProvider, provider: LLMProvider = LLMProvider.OPENAI) -> LLMService:
    service = LLMService(provider=provider, model="stub-model")
    service._provider = stub
    return service


def test_chat_messages_put_system_prompt_first():
    assert MESSAGES == [
        {"role": "system", "content": "Answer in JSON"},
        {"role": "user", "content": "Extract fields"},
    ]
    assert chat_messages("hi") == [{"role": "user", "content": "hi"}]


class TestOllamaLLMProvider:
    """Tests for the Ollama backend."""

    async def test_plain_completion(self, ollama, ollama_client):
        completion = await ollama.complete(MESSAGES, temperature=0.3, max_tokens=64)

        assert completion == Completion(text="ok")
        kwargs = ollama_client.chat.call_args.kwargs
        assert kwargs["model"] == "llama3.2"
        assert kwargs["messages"] is MESSAGES
        assert kwargs["options"] == {"temperature": 0.3, "num_predict": 64}
        assert "format" not in kwargs

    async def test_json_mode_requests_json_format(self, ollama, ollama_client):
        await ollama.complete(MESSAGES, json_mode=True)

        assert ollama_client.chat.call_args.kwargs["format"] == "json"

    async def test_eval_counts_become_usage(self, ollama, ollama_client):
        ollama_client.chat.return_value = {
            "message": {"content": "{}"},
            "prompt_eval_count": 12,
            "eval_count": 3,
        }

        completion = await ollama.complete(MESSAGES)

        assert completion.usage == TokenUsage(prompt_tokens=12, completion_tokens=3)

    async def test_unreachable_server(self, ollama, ollama_client):
        """Test any client failure is reported as a connection error naming the host."""
        ollama_client.chat.side_effect = OSError("Connection refused")

        with pytest.raises(ConnectionError, match="http://ollama:11434"):
            await ollama.complete(MESSAGES)

    def test_host_from_environment(self):
        with patch.dict("os.environ", {"OLLAMA_HOST": "http://gpu-box:11434"}):
            assert OllamaLLMProvider().host == "http://gpu-box:11434"
        with patch.dict("os.environ", {}, clear=True):
            assert OllamaLLMProvider().host == "http://localhost:11434"


class TestOpenAILLMProvider:
    """Tests for the OpenAI backend."""

    async def test_completion_with_usage(self, openai_provider, openai_client):
        completion = await openai_provider.complete(MESSAGES, max_tokens=500)

        assert completion.text == "ok"
        assert completion.usage == TokenUsage(prompt_tokens=40, completion_tokens=8)
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 500
        assert "response_format" not in kwargs

    async def test_json_mode_requests_json_object(self, openai_provider, openai_client):
        await openai_provider.complete(MESSAGES, json_mode=True)

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    async def test_empty_message_content(self, openai_provider, openai_client):
        response = openai_client.chat.completions.create.return_value
        response.choices[0].message.content = None
        response.usage = None

        assert await openai_provider.complete(MESSAGES) == Completion(text="")

    async def test_missing_api_key(self):
        with patch.dict("os.environ", {}, clear=True):
            provider = OpenAILLMProvider()
            with pytest.raises(ValueError, match="OPENAI_API_KEY"):
                await provider._get_client()


class TestLLMService:
    """Tests for LLMService on top of a provider."""

    async def test_generate_wraps_completion(self):
        stub = StubProvider("A summary", TokenUsage(prompt_tokens=5, completion_tokens=7))

        result = await service_with(stub).generate(
            "Summarize", system_prompt="Be brief", temperature=0.3, max_tokens=200
        )

        assert result == LLMResult(
            content="A summary",
            model="stub-model",
            provider=LLMProvider.OPENAI,
            usage=TokenUsage(prompt_tokens=5, completion_tokens=7),
        )
        call = stub.calls[0]
        assert call["messages"][0] == {"role": "system", "content": "Be brief"}
        assert (call["temperature"], call["max_tokens"], call["json_mode"]) == (0.3, 200, False)

    async def test_generate_json_decodes_content(self):
        stub = StubProvider('{"phone": "555-1234", "urls": []}')

        data, result = await service_with(stub, LLMProvider.OLLAMA).generate_json("Extract")

        assert data == {"phone": "555-1234", "urls": []}
        assert result.provider == LLMProvider.OLLAMA
        assert stub.calls[0]["json_mode"] is True

    async def test_generate_json_keeps_non_object_values(self):
        data, _ = await service_with(StubProvider("[1, 2]")).generate_json("Extract")
        assert data == [1, 2]

    async def test_generate_json_rejects_invalid_text(self):
        with pytest.raises(ValueError, match="invalid JSON"):
            await service_with(StubProvider("Sure! Here you go")).generate_json("Extract")

    @pytest.mark.parametrize(
        "provider, expected",
        [(LLMProvider.OLLAMA, OllamaLLMProvider), (LLMProvider.OPENAI, OpenAILLMProvider)],
    )
    def test_provider_is_built_once(self, provider, expected):
        service = LLMService(provider=provider)

        built = service._get_provider()

        assert isinstance(built, expected)
        assert service._get_provider() is built
        assert built.model_name == service.model

    @pytest.mark.parametrize(
        "env, provider, model",
        [
            ({}, LLMProvider.OLLAMA, "llama3.2"),
            ({"LLM_PROVIDER": "OpenAI"}, LLMProvider.OPENAI, "gpt-4o-mini"),
            ({"LLM_PROVIDER": "openai", "LLM_MODEL": "gpt-4o"}, LLMProvider.OPENAI, "gpt-4o"),
        ],
    )
    def test_configuration_from_environment(self, env, provider, model):
        with patch.dict("os.environ", env, clear=True):
            service = LLMService()

        assert service.provider_type == provider
        assert service.model == model

    def test_unknown_provider_name(self):
        with patch.dict("os.environ", {"LLM_PROVIDER": "mystery"}, clear=True):
            with pytest.raises(ValueError):
                LLMService()


class TestEstimateCost:
    """Tests for per-call cost estimates."""

    def test_local_models_are_free(self):
        result = LLMResult(
            content="",
            model="llama3.2",
            provider=LLMProvider.OLLAMA,
            usage=TokenUsage(prompt_tokens=10_000, completion_tokens=10_000),
        )
        assert estimate_cost(result) == 0.0

    def test_known_model_is_priced_per_token(self):
        result = LLMResult(
            content="",
            model="gpt-4o-mini",
            provider=LLMProvider.OPENAI,
            usage=TokenUsage(prompt_tokens=1_000_000, completion_tokens=1_000_000),
        )
        assert estimate_cost(result) == pytest.approx(0.75)

    @pytest.mark.parametrize(
        "model, usage",
        [
            ("gpt-4o-mini", None),
            ("some-new-model", TokenUsage(prompt_tokens=10, completion_tokens=10)),
        ],
    )
    def test_flat_charge_when_unpriced(self, model, usage):
        result = LLMResult(content="", model=model, provider=LLMProvider.OPENAI, usage=usage)
        assert estimate_cost(result) == FLAT_CALL_COST
