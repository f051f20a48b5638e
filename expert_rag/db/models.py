"""
Document and chunk ORM models.

A document is one uploaded source file owned by one expert. Each document
is split into chunks, and every chunk carries its embedding vector.

Dependencies: sqlalchemy, pgvector, expert_rag.memory.vectors
System role: Persistence for the retrieval pipeline
"""

import uuid
from typing import List

from pgvector.sqlalchemy import Vector
from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from expert_rag.config import EMBEDDING_DIMENSION
from expert_rag.db.base import Base, CreatedAtMixin
from expert_rag.memory.vectors import parse_vector_literal, to_vector_literal


class EmbeddingVector(TypeDecorator):
    """
    Embedding column portable across PostgreSQL and SQLite.

    PostgreSQL: native pgvector `vector(D)` column, which the cosine
    distance operator `<=>` works on.
    Anything else: TEXT holding the "[f1,f2,...]" literal.

    Python side is always a list of floats.
    """

    impl = Text
    cache_ok = True

    def __init__(self, dimension: int, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.dimension = dimension

    def load_dialect_impl(self, dialect):

        if dialect.name == "postgresql":
            return dialect.type_descriptor(Vector(self.dimension))

        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):

        if value is None:
            return None

        if dialect.name == "postgresql":
            # pgvector's own bind processor renders the list
            return [float(x) for x in value]

        return to_vector_literal(value)

    def process_result_value(self, value, dialect):

        if value is None:
            return None

        if isinstance(value, str):
            return parse_vector_literal(value)

        # pgvector hands back a numpy array
        return [float(x) for x in value]


def _new_document_id() -> str:
    return str(uuid.uuid4())


class DocumentModel(Base, CreatedAtMixin):
    """
    Uploaded source document.

    Attributes:
        id: UUID string primary key
        expert_id: Owning expert; scopes similarity search
        filename: Original upload filename
        content: Full extracted text
        created_at: Upload timestamp (UTC)

    Relationships:
        chunks: DocumentChunkModel rows, deleted with the document
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_document_id,
    )

    expert_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    chunks: Mapped[List["DocumentChunkModel"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunkModel.id",
    )

    def __repr__(self) -> str:
        return f"<DocumentModel(id={self.id}, expert_id={self.expert_id}, filename={self.filename})>"


class DocumentChunkModel(Base, CreatedAtMixin):
    """
    Embedded text window of a document.

    The integer primary key grows with insertion, which gives similarity
    search its tie-breaking order.

    Attributes:
        id: Autoincrement primary key
        document_id: Parent document (ON DELETE CASCADE)
        position: 0-based extraction index inside the document
        content: Chunk text
        embedding: EMBEDDING_DIMENSION floats
    """

    __tablename__ = "document_chunks"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[List[float]] = mapped_column(
        EmbeddingVector(EMBEDDING_DIMENSION),
        nullable=False,
    )

    document: Mapped["DocumentModel"] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return f"<DocumentChunkModel(id={self.id}, document_id={self.document_id}, position={self.position})>"
