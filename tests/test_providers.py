# tests/test_providers.py
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from expert_rag.errors import ConfigError, ProviderError
from expert_rag.llm import providers
from expert_rag.llm.providers import (
    ChatMessage,
    GeminiChatProvider,
    OpenAIChatProvider,
    SamplingParams,
    build_chat_provider,
)
from expert_rag.memory.embedder import GeminiEmbeddingProvider


MESSAGES = [
    ChatMessage("system", "You are terse."),
    ChatMessage("system", "Context: the sky is blue."),
    ChatMessage("user", "What colour is the sky?"),
    ChatMessage("assistant", "Blue."),
    ChatMessage("user", "Sure?"),
]


def _openai_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestProviderFactory:

    def test_unknown_provider_rejected(self):
        with pytest.raises(ConfigError, match="Unsupported provider"):
            build_chat_provider("mistral", "m", SamplingParams(), {"mistral": "key"})

    def test_missing_key_rejected(self):
        with pytest.raises(ConfigError, match="API key"):
            build_chat_provider("openai", "gpt-4o-mini", SamplingParams(), {"openai": None})

    def test_builds_by_name(self):
        provider = build_chat_provider(
            "openai", "gpt-4o-mini", SamplingParams(temperature=0.2), {"openai": "sk-test"}
        )

        assert isinstance(provider, OpenAIChatProvider)
        assert provider.params.temperature == 0.2


class TestOpenAIChatProvider:

    async def test_sampling_params_forwarded(self):
        provider = OpenAIChatProvider(
            api_key="sk-test",
            model="gpt-4o-mini",
            params=SamplingParams(temperature=0.1, top_p=0.9, presence_penalty=0.5,
                                  frequency_penalty=0.25, max_tokens=64),
        )
        create = AsyncMock(return_value=_openai_response("  Yes.  "))
        provider._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        reply = await provider.chat_complete(MESSAGES)

        assert reply == "Yes."
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.1
        assert kwargs["top_p"] == 0.9
        assert kwargs["presence_penalty"] == 0.5
        assert kwargs["frequency_penalty"] == 0.25
        assert kwargs["max_tokens"] == 64
        assert kwargs["messages"][0] == {"role": "system", "content": "You are terse."}
        assert len(kwargs["messages"]) == len(MESSAGES)

    async def test_backend_error_wrapped(self):
        provider = OpenAIChatProvider(api_key="sk-test", model="gpt-4o-mini", params=SamplingParams())
        create = AsyncMock(side_effect=RuntimeError("rate limited"))
        provider._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        with pytest.raises(ProviderError, match="rate limited"):
            await provider.chat_complete(MESSAGES)

    async def test_empty_reply_is_error(self):
        provider = OpenAIChatProvider(api_key="sk-test", model="gpt-4o-mini", params=SamplingParams())
        create = AsyncMock(return_value=_openai_response(None))
        provider._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        with pytest.raises(ProviderError, match="empty"):
            await provider.chat_complete(MESSAGES)


class TestGeminiChatProvider:

    @pytest.fixture
    def gemini_model(self, monkeypatch):
        model = MagicMock()
        model.generate_content_async = AsyncMock(return_value=SimpleNamespace(text="Blue, really."))
        factory = MagicMock(return_value=model)
        monkeypatch.setattr(providers, "_gemini_api_key", None)
        monkeypatch.setattr(providers.genai, "configure", MagicMock())
        monkeypatch.setattr(providers.genai, "GenerativeModel", factory)
        return factory, model

    async def test_system_messages_become_instruction(self, gemini_model):
        factory, model = gemini_model
        provider = GeminiChatProvider(
            api_key="g-test",
            model="gemini-1.5-flash",
            params=SamplingParams(temperature=0.3, max_tokens=100),
        )

        reply = await provider.chat_complete(MESSAGES)

        assert reply == "Blue, really."
        assert factory.call_args.kwargs["system_instruction"] == (
            "You are terse.\n\nContext: the sky is blue."
        )

        contents = model.generate_content_async.await_args.args[0]
        assert [c["role"] for c in contents] == ["user", "model", "user"]

        config = model.generate_content_async.await_args.kwargs["generation_config"]
        assert config["temperature"] == 0.3
        assert config["max_output_tokens"] == 100

    async def test_empty_reply_is_error(self, gemini_model):
        _, model = gemini_model
        model.generate_content_async.return_value = SimpleNamespace(text="")
        provider = GeminiChatProvider(api_key="g-test", model="gemini-1.5-flash", params=SamplingParams())

        with pytest.raises(ProviderError):
            await provider.chat_complete(MESSAGES)

    async def test_sdk_configured_once_per_key(self, gemini_model):
        """Building providers per turn does not reconfigure the SDK."""
        GeminiChatProvider(api_key="g-test", model="gemini-1.5-flash", params=SamplingParams())
        GeminiChatProvider(api_key="g-test", model="gemini-1.5-pro", params=SamplingParams())

        providers.genai.configure.assert_called_once_with(api_key="g-test")


class TestConfigureGemini:

    @pytest.fixture(autouse=True)
    def sdk_configure(self, monkeypatch):
        configure = MagicMock()
        monkeypatch.setattr(providers, "_gemini_api_key", None)
        monkeypatch.setattr(providers.genai, "configure", configure)
        return configure

    def test_same_key_is_noop(self, sdk_configure):
        providers.configure_gemini("g-test")
        providers.configure_gemini("g-test")

        sdk_configure.assert_called_once_with(api_key="g-test")

    def test_different_key_rejected(self, sdk_configure):
        providers.configure_gemini("g-test")

        with pytest.raises(ConfigError):
            providers.configure_gemini("g-other")

        assert providers._gemini_api_key == "g-test"
        sdk_configure.assert_called_once()

    def test_embedding_provider_shares_configuration(self, sdk_configure):
        providers.configure_gemini("g-test")
        GeminiEmbeddingProvider(api_key="g-test")

        sdk_configure.assert_called_once_with(api_key="g-test")
