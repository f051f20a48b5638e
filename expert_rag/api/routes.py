import logging
import time
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from expert_rag.api.dependencies import Services, get_services
from expert_rag.config import MAX_FILE_SIZE_MB
from expert_rag.errors import (
    ConfigError,
    IngestError,
    NotFoundError,
    ProviderError,
    RetrievalTimeoutError,
)
from expert_rag.experts import Expert
from expert_rag.llm.providers import CHAT_PROVIDERS, ChatMessage
from expert_rag.memory.loader import FileTooLargeError, extract_text
from expert_rag.models import (
    ChatRequest,
    ChatResponse,
    ContextChunk,
    ContextRequest,
    ContextResponse,
    DeleteDocumentResponse,
    DeleteExpertDocumentsResponse,
    DeleteExpertResponse,
    DocumentInfo,
    ExpertInfo,
    HealthResponse,
    ListDocumentsResponse,
    UploadResponse,
)
from expert_rag.observability.logger import (
    log_request_complete,
    log_request_error,
    log_request_start,
)
from expert_rag.observability.metrics import metrics_tracker
from expert_rag.observability.posthog_client import posthog_client


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def _read_upload(file: UploadFile, max_size_mb: int = MAX_FILE_SIZE_MB) -> bytes:
    """
    Read at most max_size_mb (plus one byte to detect overflow) so an
    oversized upload is never buffered whole.
    """

    max_bytes = max_size_mb * 1024 * 1024

    if file.size is not None and file.size > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: limit {max_size_mb}MB",
        )

    data = await file.read(max_bytes + 1)

    if len(data) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: limit {max_size_mb}MB",
        )

    return data


async def _require_expert(services: Services, expert_id: str):

    try:
        return await services.experts.get(expert_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Expert not found")


# ============================================================
# HEALTH
# ============================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):

    stats = await services.retrieval.store.get_stats()

    return HealthResponse(
        status="healthy",
        total_documents=stats["total_documents"],
        total_chunks=stats["total_chunks"],
        total_experts=stats["total_experts"],
        embedding=services.embedder.health_check(),
    )


# ============================================================
# EXPERTS
# ============================================================

@router.get("/experts", response_model=List[ExpertInfo])
async def list_experts(services: Services = Depends(get_services)):

    experts = await services.experts.list()

    return [_expert_info(expert) for expert in experts]


def _expert_info(expert: Expert) -> ExpertInfo:

    return ExpertInfo(
        id=expert.id,
        name=expert.name,
        description=expert.description,
        provider=expert.provider,
        model=expert.model,
    )


@router.put("/experts/{expert_id}", response_model=ExpertInfo)
async def update_expert(
    expert_id: str,
    payload: Expert,
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Replace an existing expert's configuration. The body is the full
    expert record; its id must match the path.
    """

    await _require_expert(services, expert_id)

    if payload.id != expert_id:
        raise HTTPException(status_code=400, detail="Expert id in body does not match path")

    if payload.provider not in CHAT_PROVIDERS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported provider: {payload.provider}",
        )

    expert = await services.experts.save(payload)

    logger.info(
        "Expert updated",
        extra={"request_id": _request_id(request), "expert_id": expert_id},
    )

    return _expert_info(expert)


@router.delete("/experts/{expert_id}", response_model=DeleteExpertResponse)
async def delete_expert(
    expert_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Delete an expert; its documents and their chunks go with it.
    """

    await _require_expert(services, expert_id)

    deleted = await services.retrieval.delete_expert_documents(expert_id)

    try:
        await services.experts.delete(expert_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Expert not found")

    logger.info(
        "Expert deleted",
        extra={
            "request_id": _request_id(request),
            "expert_id": expert_id,
            "documents_deleted": deleted,
        },
    )

    return DeleteExpertResponse(expert_id=expert_id, documents_deleted=deleted)


# ============================================================
# UPLOAD DOCUMENT
# ============================================================

@router.post("/experts/{expert_id}/documents", response_model=UploadResponse)
async def upload_document(
    expert_id: str,
    request: Request,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
):

    request_id = _request_id(request)
    filename = file.filename or "upload"

    await _require_expert(services, expert_id)

    start_time = time.time()

    log_request_start(logger, request_id, "document_upload", expert_id=expert_id)

    try:
        text = extract_text(filename, await _read_upload(file))
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not text.strip():
        raise HTTPException(status_code=400, detail="No text extracted")

    try:

        record = await services.retrieval.ingest_document(expert_id, filename, text)

    except IngestError as e:

        metrics_tracker.record_ingest(0, success=False)

        log_request_error(logger, request_id, "document_upload", e, expert_id=expert_id)

        posthog_client.track_error(
            distinct_id=request_id,
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/experts/{expert_id}/documents",
        )

        raise HTTPException(status_code=502, detail=f"Document ingest failed: {e}")

    latency = time.time() - start_time

    metrics_tracker.record_ingest(record.chunk_count)

    log_request_complete(
        logger,
        request_id,
        "document_upload",
        latency,
        expert_id=expert_id,
        document_id=record.id,
        chunks=record.chunk_count,
    )

    posthog_client.track_document_ingested(
        distinct_id=request_id,
        expert_id=expert_id,
        document_id=record.id,
        filename=filename,
        chunks=record.chunk_count,
        latency=latency,
    )

    return UploadResponse(
        document_id=record.id,
        expert_id=expert_id,
        filename=filename,
        chunks_created=record.chunk_count,
    )


# ============================================================
# LIST DOCUMENTS
# ============================================================

@router.get("/experts/{expert_id}/documents", response_model=ListDocumentsResponse)
async def list_documents(expert_id: str, services: Services = Depends(get_services)):

    records = await services.retrieval.list_documents(expert_id)

    documents = [
        DocumentInfo(
            document_id=record.id,
            expert_id=record.expert_id,
            filename=record.filename,
            chunks_count=record.chunk_count,
            upload_timestamp=record.created_at,
        )
        for record in records
    ]

    return ListDocumentsResponse(
        expert_id=expert_id,
        documents=documents,
        total_documents=len(documents),
        total_chunks=sum(d.chunks_count for d in documents),
    )


# ============================================================
# DELETE
# ============================================================

@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
async def delete_document(document_id: str, services: Services = Depends(get_services)):

    if not await services.retrieval.delete_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")

    return DeleteDocumentResponse(
        document_id=document_id,
        message="Deleted",
        success=True,
    )


@router.delete(
    "/experts/{expert_id}/documents",
    response_model=DeleteExpertDocumentsResponse,
)
async def delete_expert_documents(expert_id: str, services: Services = Depends(get_services)):

    deleted = await services.retrieval.delete_expert_documents(expert_id)

    return DeleteExpertDocumentsResponse(expert_id=expert_id, documents_deleted=deleted)


# ============================================================
# CONTEXT PREVIEW
# ============================================================

@router.post("/experts/{expert_id}/context", response_model=ContextResponse)
async def retrieve_context(
    expert_id: str,
    payload: ContextRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    try:

        results = await services.retrieval.retrieve_context(
            expert_id,
            payload.query,
            limit=payload.limit,
        )

    except RetrievalTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))

    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    posthog_client.track_retrieval(
        distinct_id=_request_id(request),
        expert_id=expert_id,
        chunks_retrieved=len(results),
        top_score=results[0].similarity if results else None,
    )

    return ContextResponse(
        expert_id=expert_id,
        results=[
            ContextChunk(
                content=result.content,
                similarity=result.similarity,
                chunk_id=result.chunk_id,
                document_id=result.document_id,
            )
            for result in results
        ],
    )


# ============================================================
# CHAT
# ============================================================

@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    request_id = _request_id(request)

    expert = await _require_expert(services, payload.expert_id)

    history = [
        ChatMessage(role=message.role, content=message.content)
        for message in payload.messages
    ]

    start_time = time.time()

    try:

        result = await services.chat_turn.respond(expert, history)

    except ConfigError as e:

        log_request_error(logger, request_id, "chat", e, expert_id=expert.id)

        raise HTTPException(status_code=503, detail=str(e))

    except ProviderError as e:

        log_request_error(logger, request_id, "chat", e, expert_id=expert.id)

        posthog_client.track_chat_turn(
            distinct_id=request_id,
            expert_id=expert.id,
            provider=expert.provider,
            context_used=0,
            latency=time.time() - start_time,
            success=False,
        )

        raise HTTPException(status_code=502, detail="Failed to process chat request")

    metrics_tracker.record_retrieval(degraded=result.degraded)

    if result.degraded:

        posthog_client.track_retrieval_degraded(
            distinct_id=request_id,
            expert_id=expert.id,
            error_type=result.retrieval_error,
        )

    posthog_client.track_chat_turn(
        distinct_id=request_id,
        expert_id=expert.id,
        provider=expert.provider,
        context_used=len(result.context),
        latency=time.time() - start_time,
        success=True,
    )

    return ChatResponse(
        content=result.content,
        context_used=len(result.context),
        retrieval_degraded=result.degraded,
    )


# ============================================================
# METRICS ENDPOINT
# ============================================================

@router.get("/metrics")
def get_metrics():

    metrics = metrics_tracker.get_metrics()

    metrics["p95_latency"] = metrics_tracker.get_latency_percentile(95)

    return metrics
