# expert_rag/workflow/chat_turn.py

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from expert_rag.config import TOP_K
from expert_rag.errors import ProviderError
from expert_rag.experts import Expert
from expert_rag.llm.providers import ChatMessage, ChatProvider
from expert_rag.memory.retriever import RetrievalService
from expert_rag.memory.store import RetrievalResult
from expert_rag.prompts.prompt_builder import build_chat_messages

logger = logging.getLogger(__name__)


ProviderFactory = Callable[[Expert], ChatProvider]


@dataclass
class ChatTurnResult:
    content: str
    context: List[RetrievalResult] = field(default_factory=list)
    retrieval_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.retrieval_error is not None


def last_user_message(history: Sequence[ChatMessage]) -> Optional[str]:

    for message in reversed(history):
        if message.role == "user" and message.content.strip():
            return message.content

    return None


class ChatTurn:
    """
    One assistant reply for an expert conversation.

    Retrieval is best effort: any ProviderError while fetching context
    (including timeouts and storage failures) is logged and the turn
    continues without augmentation. Only a failure of the chat model
    itself fails the turn.
    """

    def __init__(
        self,
        retrieval: RetrievalService,
        provider_factory: ProviderFactory,
        top_k: int = TOP_K,
    ):

        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")

        self._retrieval = retrieval
        self._provider_factory = provider_factory
        self._top_k = top_k

    async def respond(
        self,
        expert: Expert,
        history: Sequence[ChatMessage],
    ) -> ChatTurnResult:

        # build first: a misconfigured provider should fail before any I/O
        provider = self._provider_factory(expert)

        context, retrieval_error = await self._fetch_context(expert, history)

        messages = build_chat_messages(expert.system_prompt, history, context)

        content = await provider.chat_complete(messages)

        return ChatTurnResult(
            content=content,
            context=context,
            retrieval_error=retrieval_error,
        )

    async def _fetch_context(self, expert: Expert, history: Sequence[ChatMessage]):

        query = last_user_message(history)

        if query is None:
            return [], None

        try:

            context = await self._retrieval.retrieve_context(
                expert.id,
                query,
                limit=self._top_k,
            )

        except ProviderError as e:

            logger.warning(
                "Context retrieval failed, continuing without context",
                extra={
                    "expert_id": expert.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            return [], type(e).__name__

        return context, None
