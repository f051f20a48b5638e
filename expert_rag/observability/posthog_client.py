# expert_rag/observability/posthog_client.py

"""
PostHog Observability Client

Architecture contract:
- Does NOT replace structured logging
- Uses request_id as the distinct id
- Never blocks or fails a request
"""

import logging
from typing import Any, Dict, Optional

from posthog import Posthog

from expert_rag.config import POSTHOG_API_KEY, POSTHOG_HOST

logger = logging.getLogger(__name__)


class PostHogClient:
    """
    Safe PostHog wrapper.

    Guarantees:
    - Never raises to the caller
    - Disabled (no-op) without an API key
    """

    def __init__(self, api_key: Optional[str] = None, host: str = POSTHOG_HOST):

        self._enabled = False
        self._client: Optional[Posthog] = None

        if not api_key:
            logger.info("PostHog disabled: POSTHOG_API_KEY not set")
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
                flush_interval=1,
            )

            self._enabled = True

            logger.info(
                "PostHog client initialized",
                extra={"host": host}
            )

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)}
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ==========================================================
    # INTERNAL SAFE TRACK
    # ==========================================================

    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={
                    "event": event,
                    "error": str(e),
                }
            )

    # ==========================================================
    # IDENTIFY
    # ==========================================================

    def identify_user(
        self,
        distinct_id: str,
        properties: Optional[Dict[str, Any]] = None,
    ):

        if not self._enabled or not self._client:
            return

        try:

            self._client.identify(
                distinct_id=distinct_id,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog identify failed",
                extra={"error": str(e)}
            )

    # ==========================================================
    # DOCUMENT INGEST
    # ==========================================================

    def track_document_ingested(
        self,
        distinct_id: str,
        expert_id: str,
        document_id: str,
        filename: str,
        chunks: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "document_ingested",
            {
                "expert_id": expert_id,
                "document_id": document_id,
                "filename": filename,
                "chunks": chunks,
                "latency_seconds": latency,
            },
        )

    # ==========================================================
    # RETRIEVAL
    # ==========================================================

    def track_retrieval(
        self,
        distinct_id: str,
        expert_id: str,
        chunks_retrieved: int,
        top_score: Optional[float],
    ):

        self._track(
            distinct_id,
            "context_retrieved",
            {
                "expert_id": expert_id,
                "chunks_retrieved": chunks_retrieved,
                "top_score": top_score,
            },
        )

    def track_retrieval_degraded(
        self,
        distinct_id: str,
        expert_id: str,
        error_type: str,
    ):

        self._track(
            distinct_id,
            "retrieval_degraded",
            {
                "expert_id": expert_id,
                "error_type": error_type,
            },
        )

    # ==========================================================
    # CHAT TURN
    # ==========================================================

    def track_chat_turn(
        self,
        distinct_id: str,
        expert_id: str,
        provider: str,
        context_used: int,
        latency: float,
        success: bool,
    ):

        self._track(
            distinct_id,
            "chat_turn_completed",
            {
                "expert_id": expert_id,
                "provider": provider,
                "context_used": context_used,
                "latency_seconds": latency,
                "success": success,
            },
        )

    # ==========================================================
    # ERROR TRACKING
    # ==========================================================

    def track_error(
        self,
        distinct_id: str,
        error_type: str,
        error_message: str,
        endpoint: str,
    ):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )


# ==============================================================
# GLOBAL SINGLETON
# ==============================================================

posthog_client = PostHogClient(POSTHOG_API_KEY)
