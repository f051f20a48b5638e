# expert_rag/memory/chunker.py

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from expert_rag.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
)
from expert_rag.errors import ConfigError

logger = logging.getLogger(__name__)


# Tried in order; the first one found in the acceptable region wins
DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", "! ", "? ", " ")


@dataclass(frozen=True)
class ChunkingConfig:

    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP

    def __post_init__(self):

        if self.chunk_size <= 0:
            raise ConfigError(f"Invalid chunk size: {self.chunk_size}")

        if self.chunk_overlap < 0:
            raise ConfigError(f"Invalid chunk overlap: {self.chunk_overlap}")

        if self.chunk_overlap >= self.chunk_size:
            raise ConfigError(
                f"Overlap must be smaller than chunk size "
                f"(overlap={self.chunk_overlap}, size={self.chunk_size})"
            )


class Chunker:
    """
    Bounded, boundary-aware character chunker.

    Architecture contract:
    chunker → embedder → chunk store

    Guarantees:
    • every chunk is at most chunk_size characters
    • consecutive chunks share exactly chunk_overlap characters
    • lossless: first chunk + each later chunk minus its overlap == text
    • deterministic, no empty chunks
    """

    def __init__(
        self,
        config: Optional[ChunkingConfig] = None,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):

        self._config = config or ChunkingConfig()
        self._separators = tuple(separators)

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def split(self, text: str) -> List[str]:

        if not text:
            logger.warning("Chunking skipped: empty text")
            return []

        size = self._config.chunk_size
        overlap = self._config.chunk_overlap
        total = len(text)

        chunks = []
        start = 0

        # ============================================================
        # CHUNK GENERATION LOOP
        # ============================================================

        while True:

            if total - start <= size:
                chunks.append(text[start:])
                break

            end = self._find_cut(text, start)

            chunks.append(text[start:end])

            # end - start > overlap, so start strictly increases
            start = end - overlap

        logger.info(
            "Chunking completed",
            extra={
                "total_characters": total,
                "chunk_size": size,
                "overlap": overlap,
                "chunks_created": len(chunks),
            },
        )

        return chunks

    def _find_cut(self, text: str, start: int) -> int:
        """
        Pick the end offset of the window starting at `start`.

        A separator is only accepted in the second half of the window,
        and never at or before start + overlap. The cut falls right after
        the separator. Without a usable separator the window is cut hard.
        """

        size = self._config.chunk_size
        overlap = self._config.chunk_overlap

        hard_end = start + size
        lowest = start + max(overlap + 1, size // 2)

        for separator in self._separators:

            # rfind keeps the whole separator inside [lowest, hard_end)
            pos = text.rfind(separator, lowest, hard_end)

            if pos != -1:
                return pos + len(separator)

        return hard_end


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[str]:
    """
    Split text with a one-off Chunker.

    Raises ConfigError for an invalid size/overlap pair.
    """

    return Chunker(ChunkingConfig(chunk_size=size, chunk_overlap=overlap)).split(text)
