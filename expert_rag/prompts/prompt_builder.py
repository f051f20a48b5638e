# expert_rag/prompts/prompt_builder.py

from typing import List, Optional, Sequence

from expert_rag.llm.providers import ChatMessage
from expert_rag.memory.store import RetrievalResult
from expert_rag.prompts.system_prompts import (
    CONTEXT_PREAMBLE,
    DEFAULT_EXPERT_SYSTEM_PROMPT,
)


def build_context_block(results: Sequence[RetrievalResult]) -> Optional[str]:
    """
    Concatenate retrieved chunks into one block, best match first.

    Returns None for an empty result so callers add no message at all.
    """

    if not results:
        return None

    context_block = "\n\n".join(
        f"[Context {i+1} | Similarity: {result.similarity:.3f}]\n{result.content}"
        for i, result in enumerate(results)
    )

    return f"{CONTEXT_PREAMBLE.strip()}\n\n{context_block}"


def build_chat_messages(
    system_prompt: str,
    history: Sequence[ChatMessage],
    context: Sequence[RetrievalResult] = (),
) -> List[ChatMessage]:
    """
    Expert system prompt, then the context message (only when there is
    context), then the conversation.
    """

    messages = [
        ChatMessage(
            role="system",
            content=(system_prompt or DEFAULT_EXPERT_SYSTEM_PROMPT).strip(),
        )
    ]

    context_block = build_context_block(context)

    if context_block:
        messages.append(ChatMessage(role="system", content=context_block))

    messages.extend(history)

    return messages
