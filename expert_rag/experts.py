# expert_rag/experts.py
"""
Expert persona configuration.

The retrieval core only needs an expert id; the chat turn needs the whole
record. Where experts come from (a JSON file, a database table) is hidden
behind ExpertRepository.
"""

import asyncio
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from expert_rag.errors import ConfigError, NotFoundError
from expert_rag.llm.providers import SamplingParams

logger = logging.getLogger(__name__)


class Expert(BaseModel):
    """A configurable persona: system prompt, model and sampling parameters."""

    id: str = Field(..., min_length=1, max_length=100)
    name: str = ""
    description: str = ""
    system_prompt: str = Field("", alias="systemPrompt")
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    top_p: float = Field(1.0, ge=0.0, le=1.0)
    presence_penalty: float = Field(0.0, ge=-2.0, le=2.0)
    frequency_penalty: float = Field(0.0, ge=-2.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)

    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    def sampling_params(self) -> SamplingParams:

        return SamplingParams(
            temperature=self.temperature,
            top_p=self.top_p,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            max_tokens=self.max_tokens,
        )


class ExpertRepository(ABC):

    @abstractmethod
    async def get(self, expert_id: str) -> Expert:
        """Raises NotFoundError for an unknown id."""

    @abstractmethod
    async def list(self) -> List[Expert]:
        ...

    @abstractmethod
    async def save(self, expert: Expert) -> Expert:
        """Insert or replace the expert with expert.id."""

    @abstractmethod
    async def delete(self, expert_id: str):
        """Raises NotFoundError for an unknown id."""


class InMemoryExpertRepository(ExpertRepository):

    def __init__(self, experts: Iterable[Expert] = ()):
        self._experts: Dict[str, Expert] = {e.id: e for e in experts}

    async def get(self, expert_id: str) -> Expert:

        expert = self._experts.get(expert_id)

        if expert is None:
            raise NotFoundError(f"Expert not found: {expert_id}")

        return expert

    async def list(self) -> List[Expert]:
        return list(self._experts.values())

    async def save(self, expert: Expert) -> Expert:
        self._experts[expert.id] = expert
        return expert

    async def delete(self, expert_id: str):

        if self._experts.pop(expert_id, None) is None:
            raise NotFoundError(f"Expert not found: {expert_id}")


class JsonExpertRepository(ExpertRepository):
    """
    Reads {"experts": [...]} from a JSON file on every call, so edits to
    the file apply without a restart. Writes rewrite the whole file
    through a temporary file and a rename.
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._write_lock = threading.Lock()

    async def get(self, expert_id: str) -> Expert:

        for expert in await self.list():
            if expert.id == expert_id:
                return expert

        raise NotFoundError(f"Expert not found: {expert_id}")

    async def list(self) -> List[Expert]:
        return await asyncio.to_thread(self._load)

    async def save(self, expert: Expert) -> Expert:
        await asyncio.to_thread(self._save, expert)
        return expert

    async def delete(self, expert_id: str):
        await asyncio.to_thread(self._delete, expert_id)

    def _save(self, expert: Expert):

        with self._write_lock:

            experts = self._load()

            for i, current in enumerate(experts):
                if current.id == expert.id:
                    experts[i] = expert
                    break
            else:
                experts.append(expert)

            self._write(experts)

        logger.info("Expert saved", extra={"expert_id": expert.id})

    def _delete(self, expert_id: str):

        with self._write_lock:

            experts = self._load()
            remaining = [e for e in experts if e.id != expert_id]

            if len(remaining) == len(experts):
                raise NotFoundError(f"Expert not found: {expert_id}")

            self._write(remaining)

        logger.info("Expert deleted", extra={"expert_id": expert_id})

    def _write(self, experts: List[Expert]):

        self._path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "experts": [
                e.model_dump(by_alias=True, exclude_none=True) for e in experts
            ]
        }

        tmp_path = self._path.with_name(self._path.name + ".tmp")

        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        os.replace(tmp_path, self._path)

    def _load(self) -> List[Expert]:

        if not self._path.exists():

            logger.warning(
                "Experts config file not found",
                extra={"path": str(self._path)},
            )

            return []

        try:

            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)

            return [Expert.model_validate(item) for item in data.get("experts", [])]

        except (json.JSONDecodeError, ValidationError, AttributeError) as e:

            logger.error(
                "Experts config is invalid",
                extra={"path": str(self._path), "error": str(e)},
            )

            raise ConfigError(f"Invalid experts config {self._path}: {e}") from e
