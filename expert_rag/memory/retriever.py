# expert_rag/memory/retriever.py

"""
Retrieval orchestration: document ingest and per-turn context lookup.

Architecture contract:
ingest:   chunker → embedder → chunk store (one transaction)
retrieve: embedder → chunk store similarity search
"""

import asyncio
import logging
import time
from typing import List, Optional

from expert_rag.config import (
    EMBED_CONCURRENCY,
    INGEST_TIMEOUT_SECONDS,
    MAX_CHUNKS_PER_DOCUMENT,
    RETRIEVAL_TIMEOUT_SECONDS,
    TOP_K,
)
from expert_rag.errors import (
    IngestError,
    ProviderError,
    RetrievalError,
    RetrievalTimeoutError,
)
from expert_rag.memory.chunker import Chunker
from expert_rag.memory.embedder import Embedder
from expert_rag.memory.store import (
    ChunkStore,
    DocumentRecord,
    EmbeddedChunk,
    RetrievalResult,
)

logger = logging.getLogger(__name__)


class RetrievalService:

    def __init__(
        self,
        chunker: Chunker,
        embedder: Embedder,
        store: ChunkStore,
        embed_concurrency: int = EMBED_CONCURRENCY,
        max_chunks_per_document: int = MAX_CHUNKS_PER_DOCUMENT,
        ingest_timeout: Optional[float] = INGEST_TIMEOUT_SECONDS,
        retrieval_timeout: Optional[float] = RETRIEVAL_TIMEOUT_SECONDS,
    ):

        if embedder.dimension != store.dimension:
            raise ValueError(
                f"Embedder dimension {embedder.dimension} does not match "
                f"store dimension {store.dimension}"
            )

        self._chunker = chunker
        self._embedder = embedder
        self._store = store
        self._embed_concurrency = embed_concurrency
        self._max_chunks = max_chunks_per_document
        self._ingest_timeout = ingest_timeout
        self._retrieval_timeout = retrieval_timeout

    @property
    def store(self) -> ChunkStore:
        return self._store

    # ============================================================
    # INGEST
    # ============================================================

    async def ingest_document(
        self,
        expert_id: str,
        filename: str,
        content: str,
        timeout: Optional[float] = None,
    ) -> DocumentRecord:
        """
        Chunk, embed and persist one document for an expert.

        All embeddings are computed before anything is written, and the
        document row plus its chunks go in one transaction. Any failure
        raises IngestError and leaves no rows behind.
        """

        deadline = self._ingest_timeout if timeout is None else timeout

        start = time.time()

        logger.info(
            "Document ingest started",
            extra={
                "expert_id": expert_id,
                "upload_filename": filename,
                "characters": len(content),
            },
        )

        try:

            record = await asyncio.wait_for(
                self._ingest(expert_id, filename, content),
                timeout=deadline,
            )

        except asyncio.TimeoutError as e:

            logger.error(
                "Document ingest timed out",
                extra={
                    "expert_id": expert_id,
                    "upload_filename": filename,
                    "timeout_seconds": deadline,
                },
            )

            raise IngestError(
                f"Ingest of {filename!r} exceeded {deadline}s"
            ) from e

        except IngestError:
            raise

        except Exception as e:

            logger.error(
                "Document ingest failed",
                extra={
                    "expert_id": expert_id,
                    "upload_filename": filename,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            raise IngestError(f"Ingest of {filename!r} failed: {e}") from e

        logger.info(
            "Document ingest completed",
            extra={
                "expert_id": expert_id,
                "document_id": record.id,
                "chunks": record.chunk_count,
                "latency_seconds": round(time.time() - start, 3),
            },
        )

        return record

    async def _ingest(
        self,
        expert_id: str,
        filename: str,
        content: str,
    ) -> DocumentRecord:

        texts = self._chunker.split(content)

        if len(texts) > self._max_chunks:
            raise IngestError(
                f"Document produces {len(texts)} chunks, "
                f"limit is {self._max_chunks}"
            )

        embeddings = await self._embedder.embed_many(
            texts,
            concurrency=self._embed_concurrency,
        )

        chunks = [
            EmbeddedChunk(content=chunk_text, embedding=embedding)
            for chunk_text, embedding in zip(texts, embeddings)
        ]

        return await self._store.create_document_with_chunks(
            expert_id=expert_id,
            filename=filename,
            content=content,
            chunks=chunks,
        )

    # ============================================================
    # RETRIEVE
    # ============================================================

    async def retrieve_context(
        self,
        expert_id: str,
        query: str,
        limit: int = TOP_K,
        timeout: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """
        Top `limit` chunks of the expert's documents for `query`.

        Returns [] when the expert has nothing indexed. Raises
        ProviderError when embedding fails, RetrievalTimeoutError when
        the deadline passes and RetrievalError for any other failure
        (storage, stored vectors of the wrong size); never returns a
        partial list.
        """

        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        deadline = self._retrieval_timeout if timeout is None else timeout

        try:

            results = await asyncio.wait_for(
                self._retrieve(expert_id, query, limit),
                timeout=deadline,
            )

        except asyncio.TimeoutError as e:

            logger.warning(
                "Context retrieval timed out",
                extra={"expert_id": expert_id, "timeout_seconds": deadline},
            )

            raise RetrievalTimeoutError(
                f"Context retrieval for expert {expert_id} exceeded {deadline}s"
            ) from e

        except ProviderError:
            raise

        except Exception as e:

            logger.error(
                "Context retrieval failed",
                extra={
                    "expert_id": expert_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            raise RetrievalError(
                f"Context retrieval for expert {expert_id} failed: {e}"
            ) from e

        return results

    async def _retrieve(
        self,
        expert_id: str,
        query: str,
        limit: int,
    ) -> List[RetrievalResult]:

        if not query or not query.strip():
            return []

        embedding = await self._embedder.embed(query)

        return await self._store.similarity_search(expert_id, embedding, limit)

    # ============================================================
    # MANAGEMENT
    # ============================================================

    async def list_documents(self, expert_id: str) -> List[DocumentRecord]:
        return await self._store.list_documents(expert_id)

    async def delete_document(self, document_id: str) -> bool:
        return await self._store.delete_document(document_id)

    async def delete_expert_documents(self, expert_id: str) -> int:
        return await self._store.delete_expert_documents(expert_id)

