# expert_rag/api/dependencies.py
"""
Service wiring for the HTTP layer.

Services are built once at startup and stored on app.state; routes reach
them through get_services so tests can swap in their own container.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncEngine

from expert_rag import config
from expert_rag.db.connection import (
    get_async_engine,
    get_async_session_factory,
    init_schema,
)
from expert_rag.experts import Expert, ExpertRepository, JsonExpertRepository
from expert_rag.llm.providers import ChatProvider, build_chat_provider
from expert_rag.memory.chunker import Chunker, ChunkingConfig
from expert_rag.memory.embedder import Embedder, build_embedding_provider
from expert_rag.memory.retriever import RetrievalService
from expert_rag.memory.store import ChunkStore
from expert_rag.workflow.chat_turn import ChatTurn

logger = logging.getLogger(__name__)


@dataclass
class Services:
    experts: ExpertRepository
    retrieval: RetrievalService
    chat_turn: ChatTurn
    embedder: Embedder
    engine: Optional[AsyncEngine] = None


def default_provider_factory(expert: Expert) -> ChatProvider:

    return build_chat_provider(
        provider_name=expert.provider,
        model=expert.model,
        params=expert.sampling_params(),
        api_keys=config.provider_api_keys(),
    )


async def build_services() -> Services:
    """
    Build the production service graph from expert_rag.config.

    Raises ConfigError for invalid settings or a missing embedding key.
    """

    config.validate_config()

    chunker = Chunker(
        ChunkingConfig(
            chunk_size=config.CHUNK_SIZE,
            chunk_overlap=config.CHUNK_OVERLAP,
        )
    )

    embedder = Embedder(
        build_embedding_provider(
            config.EMBEDDING_PROVIDER,
            config.provider_api_keys().get(config.EMBEDDING_PROVIDER),
            config.EMBEDDING_MODEL,
        ),
        dimension=config.EMBEDDING_DIMENSION,
        timeout=config.EMBED_TIMEOUT_SECONDS,
    )

    engine = get_async_engine()

    await init_schema(engine)

    store = ChunkStore(
        get_async_session_factory(engine),
        dimension=config.EMBEDDING_DIMENSION,
    )

    retrieval = RetrievalService(chunker, embedder, store)

    services = Services(
        experts=JsonExpertRepository(config.EXPERTS_CONFIG_PATH),
        retrieval=retrieval,
        chat_turn=ChatTurn(retrieval, default_provider_factory, top_k=config.TOP_K),
        embedder=embedder,
        engine=engine,
    )

    logger.info(
        "Services initialized",
        extra={
            "embedding_provider": config.EMBEDDING_PROVIDER,
            "dimension": config.EMBEDDING_DIMENSION,
            "dialect": engine.dialect.name,
        },
    )

    return services


def get_services(request: Request) -> Services:

    services = getattr(request.app.state, "services", None)

    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )

    return services
