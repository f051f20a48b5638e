# expert_rag/llm/providers.py

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Type

import google.generativeai as genai
from openai import AsyncOpenAI

from expert_rag.errors import ConfigError, ProviderError

logger = logging.getLogger(__name__)


# google-generativeai keeps one API key per process
_gemini_api_key: Optional[str] = None
_gemini_lock = threading.Lock()


def configure_gemini(api_key: str):
    """
    Configure the Gemini SDK once per process.

    Repeated calls with the same key are no-ops. A different key raises
    ConfigError instead of silently replacing the key other Gemini
    providers are using.
    """

    global _gemini_api_key

    with _gemini_lock:

        if _gemini_api_key == api_key:
            return

        if _gemini_api_key is not None:
            raise ConfigError(
                "Gemini is already configured with a different API key"
            )

        genai.configure(api_key=api_key)
        _gemini_api_key = api_key


@dataclass(frozen=True)
class ChatMessage:
    """role is one of "system", "user", "assistant"."""

    role: str
    content: str


@dataclass(frozen=True)
class SamplingParams:
    temperature: float = 0.7
    top_p: float = 1.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    max_tokens: Optional[int] = None


class ChatProvider(ABC):
    """
    One chat-completion backend bound to a model and sampling parameters.

    Guarantees:
    • chat_complete returns the assistant text, stripped
    • any backend failure surfaces as ProviderError
    """

    name: str = "abstract"

    def __init__(self, model: str, params: SamplingParams):
        self.model = model
        self.params = params

    async def chat_complete(self, messages: Sequence[ChatMessage]) -> str:

        start = time.time()

        try:
            text = await self._complete(list(messages))
        except ProviderError:
            raise
        except Exception as e:

            logger.error(
                "Chat completion failed",
                extra={
                    "provider": self.name,
                    "model": self.model,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            raise ProviderError(f"{self.name} chat completion failed: {e}") from e

        if not text:
            raise ProviderError(f"{self.name} returned an empty response")

        logger.info(
            "LLM provider success",
            extra={
                "provider": self.name,
                "model": self.model,
                "latency_seconds": round(time.time() - start, 3),
            },
        )

        return text.strip()

    @abstractmethod
    async def _complete(self, messages: List[ChatMessage]) -> str:
        ...


# ============================================================
# PROVIDERS
# ============================================================

class OpenAIChatProvider(ChatProvider):

    name = "openai"

    def __init__(self, api_key: str, model: str, params: SamplingParams):

        super().__init__(model, params)

        self._client = AsyncOpenAI(api_key=api_key)

    async def _complete(self, messages: List[ChatMessage]) -> str:

        kwargs = {}

        if self.params.max_tokens is not None:
            kwargs["max_tokens"] = self.params.max_tokens

        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": message.role, "content": message.content}
                for message in messages
            ],
            temperature=self.params.temperature,
            top_p=self.params.top_p,
            presence_penalty=self.params.presence_penalty,
            frequency_penalty=self.params.frequency_penalty,
            **kwargs,
        )

        return response.choices[0].message.content or ""


class GeminiChatProvider(ChatProvider):
    """
    Gemini has no system role in the turn list: system messages are joined
    into the model's system_instruction and "assistant" becomes "model".
    """

    name = "google"

    def __init__(self, api_key: str, model: str, params: SamplingParams):

        super().__init__(model, params)

        configure_gemini(api_key)

    async def _complete(self, messages: List[ChatMessage]) -> str:

        system_parts = [m.content for m in messages if m.role == "system"]

        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [m.content],
            }
            for m in messages
            if m.role != "system"
        ]

        model = genai.GenerativeModel(
            model_name=self.model,
            system_instruction="\n\n".join(system_parts) or None,
        )

        config = {
            "temperature": self.params.temperature,
            "top_p": self.params.top_p,
        }

        if self.params.max_tokens is not None:
            config["max_output_tokens"] = self.params.max_tokens

        response = await model.generate_content_async(
            contents,
            generation_config=config,
        )

        if not response or not response.text:
            raise ProviderError("Gemini returned empty response")

        return response.text


CHAT_PROVIDERS: Dict[str, Type[ChatProvider]] = {
    OpenAIChatProvider.name: OpenAIChatProvider,
    GeminiChatProvider.name: GeminiChatProvider,
}


def build_chat_provider(
    provider_name: str,
    model: str,
    params: SamplingParams,
    api_keys: Mapping[str, Optional[str]],
) -> ChatProvider:

    provider_cls = CHAT_PROVIDERS.get(provider_name)

    if provider_cls is None:
        raise ConfigError(
            f"Unsupported provider: {provider_name} "
            f"(expected one of {sorted(CHAT_PROVIDERS)})"
        )

    api_key = api_keys.get(provider_name)

    if not api_key:
        raise ConfigError(f"API key not found for {provider_name}")

    return provider_cls(api_key=api_key, model=model, params=params)
