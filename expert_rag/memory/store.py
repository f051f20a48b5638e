# expert_rag/memory/store.py

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expert_rag.config import EMBEDDING_DIMENSION
from expert_rag.db.models import DocumentChunkModel, DocumentModel
from expert_rag.errors import DimensionError, NotFoundError
from expert_rag.memory.vectors import (
    ensure_dimension,
    rank_by_similarity,
    to_vector_literal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddedChunk:
    content: str
    embedding: List[float]


@dataclass(frozen=True)
class RetrievalResult:
    """One ranked chunk; similarity is cosine similarity in [-1, 1]."""

    content: str
    similarity: float
    chunk_id: int
    document_id: str


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    expert_id: str
    filename: str
    created_at: datetime
    chunk_count: int = 0


# Exact cosine ranking with pgvector. `<=>` is cosine distance; it yields NaN
# when either side is a zero vector, which maps to distance 1 (similarity 0).
_PGVECTOR_SEARCH_SQL = text(
    """
    SELECT id, document_id, content, 1 - distance AS similarity
    FROM (
        SELECT dc.id, dc.document_id, dc.content,
               CASE
                   WHEN (dc.embedding <=> CAST(:query AS vector)) = 'NaN'::float8 THEN 1.0
                   ELSE (dc.embedding <=> CAST(:query AS vector))
               END AS distance
        FROM document_chunks dc
        JOIN documents d ON d.id = dc.document_id
        WHERE d.expert_id = :expert_id
    ) ranked
    ORDER BY distance ASC, id ASC
    LIMIT :limit
    """
)


class ChunkStore:
    """
    Durable chunk storage with expert-scoped similarity search.

    Every public method runs in its own session and transaction, so a
    failure inside a method leaves nothing behind.

    Guarantees:
    • bulk writes are all-or-nothing per call
    • stored and query vectors always have `dimension` floats
    • search results: descending similarity, ties by insertion order
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dimension: int = EMBEDDING_DIMENSION,
    ):

        if dimension <= 0:
            raise ValueError("Embedding dimension must be positive")

        self._session_factory = session_factory
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    # ============================================================
    # WRITES
    # ============================================================

    async def create_document(
        self,
        expert_id: str,
        filename: str,
        content: str,
    ) -> DocumentRecord:

        async with self._session_factory() as session:
            async with session.begin():

                document = DocumentModel(
                    expert_id=expert_id,
                    filename=filename,
                    content=content,
                )

                session.add(document)
                await session.flush()

                return self._to_record(document, 0)

    async def insert(
        self,
        document_id: str,
        text_content: str,
        embedding: Sequence[float],
    ) -> int:

        ensure_dimension(embedding, self._dimension, "chunk embedding")

        async with self._session_factory() as session:
            async with session.begin():

                await self._require_document(session, document_id)

                position = await self._next_position(session, document_id)

                chunk = DocumentChunkModel(
                    document_id=document_id,
                    position=position,
                    content=text_content,
                    embedding=list(embedding),
                )

                session.add(chunk)
                await session.flush()

                return chunk.id

    async def bulk_insert(
        self,
        document_id: str,
        chunks: Sequence[EmbeddedChunk],
    ) -> int:
        """
        Append all chunks of a document in one transaction.

        Raises NotFoundError for an unknown document and DimensionError
        for any wrongly sized vector; in both cases nothing is written.
        """

        self._validate_chunks(chunks)

        async with self._session_factory() as session:
            async with session.begin():

                await self._require_document(session, document_id)

                first = await self._next_position(session, document_id)

                self._add_chunks(session, document_id, chunks, first)

        logger.info(
            "Chunks stored",
            extra={"document_id": document_id, "chunks": len(chunks)},
        )

        return len(chunks)

    async def create_document_with_chunks(
        self,
        expert_id: str,
        filename: str,
        content: str,
        chunks: Sequence[EmbeddedChunk],
    ) -> DocumentRecord:
        """
        Persist a document row and all of its chunks atomically.
        """

        self._validate_chunks(chunks)

        async with self._session_factory() as session:
            async with session.begin():

                document = DocumentModel(
                    expert_id=expert_id,
                    filename=filename,
                    content=content,
                )

                session.add(document)
                await session.flush()

                self._add_chunks(session, document.id, chunks, 0)

                await session.flush()

                record = self._to_record(document, len(chunks))

        logger.info(
            "Document stored",
            extra={
                "document_id": record.id,
                "expert_id": expert_id,
                "chunks": len(chunks),
            },
        )

        return record

    # ============================================================
    # DELETES
    # ============================================================

    async def delete_document(self, document_id: str) -> bool:

        async with self._session_factory() as session:
            async with session.begin():

                await session.execute(
                    delete(DocumentChunkModel).where(
                        DocumentChunkModel.document_id == document_id
                    )
                )

                result = await session.execute(
                    delete(DocumentModel).where(DocumentModel.id == document_id)
                )

        deleted = result.rowcount > 0

        if deleted:
            logger.info("Document deleted", extra={"document_id": document_id})
        else:
            logger.warning(
                "Delete requested for unknown document",
                extra={"document_id": document_id},
            )

        return deleted

    async def delete_expert_documents(self, expert_id: str) -> int:
        """
        Cascade used when an expert is removed. Returns deleted document count.
        """

        owned = select(DocumentModel.id).where(DocumentModel.expert_id == expert_id)

        async with self._session_factory() as session:
            async with session.begin():

                await session.execute(
                    delete(DocumentChunkModel).where(
                        DocumentChunkModel.document_id.in_(owned)
                    )
                )

                result = await session.execute(
                    delete(DocumentModel).where(DocumentModel.expert_id == expert_id)
                )

        logger.info(
            "Expert documents deleted",
            extra={"expert_id": expert_id, "documents": result.rowcount},
        )

        return result.rowcount

    # ============================================================
    # SIMILARITY SEARCH
    # ============================================================

    async def similarity_search(
        self,
        expert_id: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> List[RetrievalResult]:

        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        ensure_dimension(query_embedding, self._dimension, "query embedding")

        async with self._session_factory() as session:

            if session.bind.dialect.name == "postgresql":
                results = await self._search_pgvector(
                    session, expert_id, query_embedding, limit
                )
            else:
                results = await self._search_exact(
                    session, expert_id, query_embedding, limit
                )

        logger.info(
            "Similarity search completed",
            extra={
                "expert_id": expert_id,
                "limit": limit,
                "results": len(results),
                "top_score": results[0].similarity if results else None,
            },
        )

        return results

    async def _search_pgvector(
        self,
        session: AsyncSession,
        expert_id: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> List[RetrievalResult]:

        rows = await session.execute(
            _PGVECTOR_SEARCH_SQL,
            {
                "query": to_vector_literal(query_embedding),
                "expert_id": expert_id,
                "limit": limit,
            },
        )

        return [
            RetrievalResult(
                content=row.content,
                similarity=self._clean_score(row.similarity),
                chunk_id=row.id,
                document_id=row.document_id,
            )
            for row in rows
        ]

    async def _search_exact(
        self,
        session: AsyncSession,
        expert_id: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> List[RetrievalResult]:

        stmt = (
            select(
                DocumentChunkModel.id,
                DocumentChunkModel.document_id,
                DocumentChunkModel.content,
                DocumentChunkModel.embedding,
            )
            .join(DocumentModel, DocumentModel.id == DocumentChunkModel.document_id)
            .where(DocumentModel.expert_id == expert_id)
            .order_by(DocumentChunkModel.id)
        )

        rows = (await session.execute(stmt)).all()

        if not rows:
            return []

        for row in rows:
            if len(row.embedding) != self._dimension:
                raise DimensionError(
                    f"Stored chunk {row.id} has {len(row.embedding)} dimensions, "
                    f"expected {self._dimension}"
                )

        order, scores = rank_by_similarity(
            query_embedding,
            [row.embedding for row in rows],
        )

        return [
            RetrievalResult(
                content=rows[i].content,
                similarity=score,
                chunk_id=rows[i].id,
                document_id=rows[i].document_id,
            )
            for i, score in zip(order[:limit], scores[:limit])
        ]

    # ============================================================
    # READS
    # ============================================================

    async def get_document(self, document_id: str) -> Optional[DocumentRecord]:

        async with self._session_factory() as session:

            document = await session.get(DocumentModel, document_id)

            if document is None:
                return None

            count = await self._count_chunks(session, document_id)

            return self._to_record(document, count)

    async def list_documents(self, expert_id: str) -> List[DocumentRecord]:

        stmt = (
            select(DocumentModel, func.count(DocumentChunkModel.id))
            .outerjoin(
                DocumentChunkModel,
                DocumentChunkModel.document_id == DocumentModel.id,
            )
            .where(DocumentModel.expert_id == expert_id)
            .group_by(DocumentModel.id)
            .order_by(DocumentModel.created_at, DocumentModel.id)
        )

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [self._to_record(document, count) for document, count in rows]

    async def count_chunks(self, document_id: Optional[str] = None) -> int:

        async with self._session_factory() as session:
            return await self._count_chunks(session, document_id)

    async def get_stats(self) -> dict:

        async with self._session_factory() as session:

            documents = await session.scalar(select(func.count(DocumentModel.id)))

            experts = await session.scalar(
                select(func.count(func.distinct(DocumentModel.expert_id)))
            )

            chunks = await self._count_chunks(session)

        return {
            "total_documents": documents or 0,
            "total_chunks": chunks,
            "total_experts": experts or 0,
            "dimension": self._dimension,
        }

    # ============================================================
    # HELPERS
    # ============================================================

    def _validate_chunks(self, chunks: Sequence[EmbeddedChunk]):

        for position, chunk in enumerate(chunks):
            ensure_dimension(
                chunk.embedding,
                self._dimension,
                f"embedding of chunk {position}",
            )

    def _add_chunks(
        self,
        session: AsyncSession,
        document_id: str,
        chunks: Sequence[EmbeddedChunk],
        first_position: int,
    ):

        # add_all keeps list order, so ids follow extraction order
        session.add_all(
            [
                DocumentChunkModel(
                    document_id=document_id,
                    position=first_position + offset,
                    content=chunk.content,
                    embedding=list(chunk.embedding),
                )
                for offset, chunk in enumerate(chunks)
            ]
        )

    async def _require_document(self, session: AsyncSession, document_id: str):

        if await session.get(DocumentModel, document_id) is None:
            raise NotFoundError(f"Document not found: {document_id}")

    async def _next_position(self, session: AsyncSession, document_id: str) -> int:

        current = await session.scalar(
            select(func.max(DocumentChunkModel.position)).where(
                DocumentChunkModel.document_id == document_id
            )
        )

        return 0 if current is None else current + 1

    async def _count_chunks(
        self,
        session: AsyncSession,
        document_id: Optional[str] = None,
    ) -> int:

        stmt = select(func.count(DocumentChunkModel.id))

        if document_id is not None:
            stmt = stmt.where(DocumentChunkModel.document_id == document_id)

        return (await session.scalar(stmt)) or 0

    @staticmethod
    def _clean_score(value) -> float:

        score = float(value)

        if math.isnan(score):
            return 0.0

        return max(-1.0, min(1.0, score))

    @staticmethod
    def _to_record(document: DocumentModel, chunk_count: int) -> DocumentRecord:

        return DocumentRecord(
            id=document.id,
            expert_id=document.expert_id,
            filename=document.filename,
            created_at=document.created_at,
            chunk_count=chunk_count,
        )
