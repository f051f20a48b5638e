# expert_rag/memory/embedder.py

"""
Embedding wrapper over pluggable remote providers.

Architecture contract:
chunker → embedder → chunk store

Guarantees:
• One remote call per text, the text is sent exactly as given
• Always returns a list of `dimension` floats
• Any remote failure, timeout or malformed payload surfaces as ProviderError
• Batch order equals input order, even when calls run concurrently
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Type

import google.generativeai as genai
from openai import AsyncOpenAI

from expert_rag.config import (
    EMBED_CONCURRENCY,
    EMBED_TIMEOUT_SECONDS,
)
from expert_rag.errors import ConfigError, ProviderError
from expert_rag.llm.providers import configure_gemini

logger = logging.getLogger(__name__)


# ============================================================
# PROVIDERS
# ============================================================

class EmbeddingProvider(ABC):
    """
    One remote embedding backend.

    Implementations return the raw vector; validation lives in Embedder.
    """

    name: str = "abstract"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):

    name = "openai"

    def __init__(self, api_key: str, model: str = "text-embedding-3-small"):

        super().__init__(model)

        self._client = AsyncOpenAI(api_key=api_key)

    async def embed(self, text: str) -> List[float]:

        response = await self._client.embeddings.create(
            model=self.model,
            input=text,
        )

        return list(response.data[0].embedding)


class GeminiEmbeddingProvider(EmbeddingProvider):

    name = "google"

    def __init__(self, api_key: str, model: str = "models/text-embedding-004"):

        super().__init__(model)

        configure_gemini(api_key)

    async def embed(self, text: str) -> List[float]:

        result = await genai.embed_content_async(
            model=self.model,
            content=text,
        )

        return list(result["embedding"])


EMBEDDING_PROVIDERS: Dict[str, Type[EmbeddingProvider]] = {
    OpenAIEmbeddingProvider.name: OpenAIEmbeddingProvider,
    GeminiEmbeddingProvider.name: GeminiEmbeddingProvider,
}


def build_embedding_provider(
    provider_name: str,
    api_key: Optional[str],
    model: str,
) -> EmbeddingProvider:

    provider_cls = EMBEDDING_PROVIDERS.get(provider_name)

    if provider_cls is None:
        raise ConfigError(
            f"Unsupported embedding provider: {provider_name} "
            f"(expected one of {sorted(EMBEDDING_PROVIDERS)})"
        )

    if not api_key:
        raise ConfigError(f"API key for embedding provider {provider_name} not set")

    return provider_cls(api_key=api_key, model=model)


# ============================================================
# EMBEDDER
# ============================================================

class Embedder:
    """
    Validating front for an EmbeddingProvider.

    Responsibilities:
    • Enforce the configured vector dimension
    • Bound each remote call with a timeout
    • Translate provider failures into ProviderError
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimension: int,
        timeout: Optional[float] = EMBED_TIMEOUT_SECONDS,
    ):

        if dimension <= 0:
            raise ConfigError("Embedding dimension must be positive")

        self._provider = provider
        self._dimension = dimension
        self._timeout = timeout

        logger.info(
            "Embedder initialized",
            extra={
                "provider": provider.name,
                "model": provider.model,
                "dimension": dimension,
            },
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def embed(self, text: str) -> List[float]:

        if not text:
            raise ValueError("Cannot embed empty text")

        start = time.time()

        try:

            raw = await asyncio.wait_for(
                self._provider.embed(text),
                timeout=self._timeout,
            )

        except asyncio.TimeoutError:

            logger.error(
                "Embedding request timed out",
                extra={
                    "provider": self._provider.name,
                    "timeout_seconds": self._timeout,
                },
            )

            raise ProviderError(
                f"Embedding request to {self._provider.name} timed out "
                f"after {self._timeout}s"
            )

        except Exception as e:

            logger.error(
                "Embedding request failed",
                extra={
                    "provider": self._provider.name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            raise ProviderError(
                f"Embedding request to {self._provider.name} failed: {e}"
            ) from e

        vector = self._validate(raw)

        logger.debug(
            "Embedding completed",
            extra={
                "provider": self._provider.name,
                "text_length": len(text),
                "latency_seconds": round(time.time() - start, 3),
            },
        )

        return vector

    async def embed_many(
        self,
        texts: Sequence[str],
        concurrency: int = EMBED_CONCURRENCY,
    ) -> List[List[float]]:
        """
        Embed every text, at most `concurrency` calls in flight.

        The result list is aligned with `texts`. The first failure cancels
        the remaining calls and propagates.
        """

        if not texts:
            return []

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(text: str) -> List[float]:
            async with semaphore:
                return await self.embed(text)

        tasks = [asyncio.ensure_future(_bounded(text)) for text in texts]

        try:
            return list(await asyncio.gather(*tasks))
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    # ============================================================
    # VALIDATION
    # ============================================================

    def _validate(self, raw) -> List[float]:

        try:
            vector = [float(x) for x in raw]
        except (TypeError, ValueError) as e:
            raise ProviderError(
                f"Malformed embedding from {self._provider.name}: {e}"
            ) from e

        if len(vector) != self._dimension:

            logger.error(
                "Embedding dimension mismatch",
                extra={
                    "provider": self._provider.name,
                    "expected": self._dimension,
                    "received": len(vector),
                },
            )

            raise ProviderError(
                f"Embedding from {self._provider.name} has {len(vector)} "
                f"dimensions, expected {self._dimension}"
            )

        if not all(math.isfinite(x) for x in vector):

            logger.error(
                "Embedding contains non-finite values",
                extra={"provider": self._provider.name},
            )

            raise ProviderError(
                f"Embedding from {self._provider.name} contains NaN or infinite values"
            )

        return vector

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    def health_check(self) -> dict:

        return {
            "model": self._provider.model,
            "dimension": self._dimension,
            "provider": self._provider.name,
            "status": "healthy",
        }
