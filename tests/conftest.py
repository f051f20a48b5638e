# tests/conftest.py
import asyncio
import os
import sys
from typing import List, Optional, Sequence

import pytest

# Keep test runs from writing log files
os.environ.setdefault("LOG_DIR", "")

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from expert_rag.db.connection import get_async_session_factory, init_schema
from expert_rag.errors import ProviderError
from expert_rag.llm.providers import ChatMessage, ChatProvider, SamplingParams
from expert_rag.memory.chunker import Chunker, ChunkingConfig
from expert_rag.memory.embedder import Embedder, EmbeddingProvider
from expert_rag.memory.retriever import RetrievalService
from expert_rag.memory.store import ChunkStore


# ============================================================
# FAKE PROVIDERS
# ============================================================

class KeywordEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embedding: one dimension per vocabulary term, holding
    the number of occurrences of that term in the text.

    fail_on_call: 1-based call number that raises instead of answering.
    delays: per-call sleep in seconds, indexed by call number - 1.
    """

    name = "keyword"

    def __init__(
        self,
        vocabulary: Sequence[str] = ("a", "b", "c"),
        fail_on_call: Optional[int] = None,
        delays: Sequence[float] = (),
        dimension_override: Optional[int] = None,
    ):

        super().__init__(model="keyword-test")

        self.vocabulary = tuple(vocabulary)
        self.fail_on_call = fail_on_call
        self.delays = list(delays)
        self.dimension_override = dimension_override
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:

        self.calls.append(text)
        call_number = len(self.calls)

        if call_number <= len(self.delays):
            await asyncio.sleep(self.delays[call_number - 1])

        if self.fail_on_call is not None and call_number == self.fail_on_call:
            raise RuntimeError(f"simulated provider outage on call {call_number}")

        lowered = text.lower()
        vector = [float(lowered.count(term)) for term in self.vocabulary]

        if self.dimension_override is not None:
            vector = vector[:self.dimension_override] + [0.0] * max(
                0, self.dimension_override - len(vector)
            )

        return vector


class SlowEmbeddingProvider(EmbeddingProvider):

    name = "slow"

    def __init__(self, seconds: float, dimension: int = 3):
        super().__init__(model="slow-test")
        self.seconds = seconds
        self.dimension = dimension

    async def embed(self, text: str) -> List[float]:
        await asyncio.sleep(self.seconds)
        return [1.0] * self.dimension


class RecordingChatProvider(ChatProvider):
    """Chat provider that echoes a fixed reply and keeps every prompt."""

    name = "recording"

    def __init__(self, reply: str = "mocked answer", error: Optional[Exception] = None):
        super().__init__(model="recording-test", params=SamplingParams())
        self.reply = reply
        self.error = error
        self.prompts: List[List[ChatMessage]] = []

    async def _complete(self, messages: List[ChatMessage]) -> str:

        self.prompts.append(messages)

        if self.error is not None:
            raise self.error

        return self.reply


# ============================================================
# STORAGE FIXTURES
# ============================================================

@pytest.fixture
async def engine():
    """
    In-memory SQLite engine with the schema created.

    StaticPool keeps the single in-memory connection alive for the test.
    """

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    await init_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_async_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ChunkStore(session_factory, dimension=3)


@pytest.fixture
def embedding_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def embedder(embedding_provider):
    return Embedder(embedding_provider, dimension=3, timeout=5)


@pytest.fixture
def chunker():
    return Chunker(ChunkingConfig(chunk_size=1000, chunk_overlap=200))


@pytest.fixture
def retrieval_service(chunker, embedder, store):
    return RetrievalService(chunker, embedder, store)


@pytest.fixture
def sample_document():
    """
    2500 characters without separators, so windows are cut hard at
    [0, 1000), [800, 1800) and [1600, 2500).
    """

    return "a" * 800 + "b" * 800 + "c" * 900


@pytest.fixture
def file_engine(tmp_path):
    """
    File-backed SQLite engine without pooling, for tests that drive the
    app through TestClient (which runs its own event loop).
    """

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        poolclass=NullPool,
    )

    asyncio.run(init_schema(engine))

    yield engine

    asyncio.run(engine.dispose())


@pytest.fixture
def failing_chat_provider():
    return RecordingChatProvider(error=ProviderError("chat backend down"))


# ============================================================
# API FIXTURES
# ============================================================

@pytest.fixture
def api_embedding_provider():
    return KeywordEmbeddingProvider(vocabulary=("rome", "carthage", "egypt"))


@pytest.fixture
def chat_provider():
    return RecordingChatProvider(reply="Rome was founded in 753 BC.")


@pytest.fixture
def services(file_engine, api_embedding_provider, chat_provider):
    """Service container wired to fakes and a throwaway SQLite file."""

    from expert_rag.api.dependencies import Services
    from expert_rag.experts import Expert, InMemoryExpertRepository
    from expert_rag.workflow.chat_turn import ChatTurn

    embedder = Embedder(api_embedding_provider, dimension=3, timeout=5)
    store = ChunkStore(get_async_session_factory(file_engine), dimension=3)
    retrieval = RetrievalService(
        Chunker(ChunkingConfig(chunk_size=1000, chunk_overlap=200)),
        embedder,
        store,
    )

    return Services(
        experts=InMemoryExpertRepository([
            Expert(
                id="historian",
                name="Historian",
                description="Answers questions about antiquity",
                system_prompt="You are a careful historian.",
            ),
        ]),
        retrieval=retrieval,
        chat_turn=ChatTurn(retrieval, lambda expert: chat_provider, top_k=3),
        embedder=embedder,
    )


@pytest.fixture
def client(services):
    """
    TestClient with the fake services installed.

    Used without a context manager so the startup hook (which builds the
    production services) does not run.
    """

    from fastapi.testclient import TestClient

    from expert_rag.main import app
    from expert_rag.observability.metrics import metrics_tracker

    app.state.services = services
    metrics_tracker.reset()

    yield TestClient(app)

    del app.state.services


@pytest.fixture
def upload_sample_document(client):
    """Upload a small text document for the historian expert."""

    def _upload(content=b"Rome was founded in 753 BC. Rome grew into an empire.", filename="rome.txt"):
        return client.post(
            "/experts/historian/documents",
            files={"file": (filename, content, "text/plain")},
        )

    return _upload
