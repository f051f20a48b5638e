# tests/test_retrieval_service.py
import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError

from expert_rag.db.models import DocumentChunkModel, DocumentModel
from expert_rag.errors import IngestError, ProviderError, RetrievalError, RetrievalTimeoutError
from expert_rag.memory.embedder import Embedder
from expert_rag.memory.retriever import RetrievalService
from expert_rag.memory.store import ChunkStore

from conftest import KeywordEmbeddingProvider, SlowEmbeddingProvider


async def _row_counts(session_factory):
    async with session_factory() as session:
        documents = await session.scalar(select(func.count(DocumentModel.id)))
        chunks = await session.scalar(select(func.count(DocumentChunkModel.id)))
    return documents, chunks


def _service(chunker, store, provider, **kwargs):
    return RetrievalService(chunker, Embedder(provider, dimension=3, timeout=5), store, **kwargs)


class TestIngest:
    """Test chunk → embed → store for a whole document."""

    async def test_document_chunked_and_persisted(self, retrieval_service, session_factory, sample_document):
        record = await retrieval_service.ingest_document("expert-1", "abc.txt", sample_document)

        assert record.chunk_count == 3
        assert record.expert_id == "expert-1"

        async with session_factory() as session:
            chunks = (await session.execute(
                select(DocumentChunkModel.content).order_by(DocumentChunkModel.id)
            )).scalars().all()

        assert all(len(c) <= 1000 for c in chunks)
        assert chunks == [
            sample_document[0:1000],
            sample_document[800:1800],
            sample_document[1600:2500],
        ]

    async def test_chunks_stored_in_extraction_order_despite_concurrency(self, chunker, store, session_factory):
        """Earlier chunks finish embedding last; ids still follow document order."""
        provider = KeywordEmbeddingProvider(delays=[0.06, 0.04, 0.02])
        service = _service(chunker, store, provider, embed_concurrency=3)

        text = "a" * 1000 + "b" * 800 + "c" * 700
        await service.ingest_document("expert-1", "ordered.txt", text)

        async with session_factory() as session:
            positions = (await session.execute(
                select(DocumentChunkModel.position).order_by(DocumentChunkModel.id)
            )).scalars().all()

        assert positions == [0, 1, 2]

    async def test_failed_embedding_leaves_no_rows(self, chunker, store, session_factory):
        """Third of five embeddings fails: nothing is written at all."""
        provider = KeywordEmbeddingProvider(fail_on_call=3)
        service = _service(chunker, store, provider, embed_concurrency=1)

        with pytest.raises(IngestError) as exc_info:
            await service.ingest_document("expert-1", "five.txt", "x" * 4000)

        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert await _row_counts(session_factory) == (0, 0)
        assert await service.list_documents("expert-1") == []

    async def test_ingest_timeout_leaves_no_rows(self, chunker, store, session_factory):
        service = _service(chunker, store, SlowEmbeddingProvider(seconds=1.0))

        with pytest.raises(IngestError, match="exceeded"):
            await service.ingest_document("expert-1", "slow.txt", "x" * 2500, timeout=0.05)

        assert await _row_counts(session_factory) == (0, 0)

    async def test_chunk_limit_enforced(self, chunker, store, session_factory):
        service = _service(chunker, store, KeywordEmbeddingProvider(), max_chunks_per_document=2)

        with pytest.raises(IngestError, match="limit"):
            await service.ingest_document("expert-1", "big.txt", "x" * 4000)

        assert await _row_counts(session_factory) == (0, 0)

    async def test_empty_document_has_no_chunks(self, retrieval_service, embedding_provider):
        record = await retrieval_service.ingest_document("expert-1", "empty.txt", "")

        assert record.chunk_count == 0
        assert embedding_provider.calls == []

    def test_dimension_mismatch_rejected_at_construction(self, chunker, session_factory):
        with pytest.raises(ValueError):
            RetrievalService(
                chunker,
                Embedder(KeywordEmbeddingProvider(), dimension=3),
                ChunkStore(session_factory, dimension=4),
            )


class TestRetrieveContext:
    """Test per-turn context lookup."""

    async def test_most_similar_chunk_ranked_first(self, retrieval_service, sample_document):
        record = await retrieval_service.ingest_document("expert-1", "abc.txt", sample_document)

        results = await retrieval_service.retrieve_context("expert-1", "bbbb", limit=2)

        assert len(results) == 2
        assert results[0].content == sample_document[800:1800]
        assert results[0].similarity > results[1].similarity
        assert all(r.document_id == record.id for r in results)

    async def test_unknown_expert_returns_empty(self, retrieval_service, sample_document):
        await retrieval_service.ingest_document("expert-1", "abc.txt", sample_document)

        assert await retrieval_service.retrieve_context("expert-2", "bbbb") == []

    async def test_blank_query_returns_empty_without_embedding(self, retrieval_service, embedding_provider):
        assert await retrieval_service.retrieve_context("expert-1", "   ") == []
        assert embedding_provider.calls == []

    async def test_provider_failure_raises(self, chunker, store):
        """A failed embedding is an error, not an empty result."""
        service = _service(chunker, store, KeywordEmbeddingProvider(fail_on_call=1))

        with pytest.raises(ProviderError):
            await service.retrieve_context("expert-1", "bbbb")

    async def test_timeout_raises_retrieval_timeout(self, chunker, store):
        service = _service(chunker, store, SlowEmbeddingProvider(seconds=1.0))

        with pytest.raises(RetrievalTimeoutError):
            await service.retrieve_context("expert-1", "bbbb", timeout=0.05)

    async def test_deleted_expert_documents_not_retrieved(self, retrieval_service, sample_document):
        await retrieval_service.ingest_document("expert-1", "abc.txt", sample_document)

        assert await retrieval_service.delete_expert_documents("expert-1") == 1
        assert await retrieval_service.retrieve_context("expert-1", "bbbb") == []

    async def test_store_failure_raises_retrieval_error(self, engine, retrieval_service, sample_document):
        """A storage error is wrapped so callers can degrade on ProviderError."""
        await retrieval_service.ingest_document("expert-1", "abc.txt", sample_document)

        async with engine.begin() as conn:
            await conn.execute(text("DROP TABLE document_chunks"))

        with pytest.raises(RetrievalError) as exc_info:
            await retrieval_service.retrieve_context("expert-1", "bbbb")

        assert isinstance(exc_info.value, ProviderError)
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.parametrize("limit", [0, -1])
    async def test_non_positive_limit_rejected(self, retrieval_service, embedding_provider, limit):
        with pytest.raises(ValueError):
            await retrieval_service.retrieve_context("expert-1", "bbbb", limit=limit)

        assert embedding_provider.calls == []
