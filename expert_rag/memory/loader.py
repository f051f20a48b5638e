# expert_rag/memory/loader.py

"""
Text extraction for uploaded files.

Architecture contract preserved:
loader → chunker → embedder → chunk store

Supports:
- PDF files (pypdf)
- Plain text formats decoded as UTF-8 (.txt, .md, .csv, .json)
"""

import io
import logging
import os

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from expert_rag.config import (
    ALLOWED_FILE_EXTENSIONS,
    MAX_FILE_SIZE_MB,
)

logger = logging.getLogger(__name__)


class FileTooLargeError(ValueError):
    pass


# ============================================================
# SAFETY: SIZE AND EXTENSION
# ============================================================

def validate_upload(filename: str, data: bytes, max_size_mb: int = MAX_FILE_SIZE_MB):

    size_mb = len(data) / (1024 * 1024)

    if size_mb > max_size_mb:
        raise FileTooLargeError(f"File too large: {size_mb:.2f}MB (limit {max_size_mb}MB)")

    extension = os.path.splitext(filename or "")[1].lower()

    if extension not in ALLOWED_FILE_EXTENSIONS:
        raise ValueError(
            f"Unsupported file type {extension or '(none)'}; "
            f"allowed: {', '.join(ALLOWED_FILE_EXTENSIONS)}"
        )

    if not data:
        raise ValueError("File is empty")


# ============================================================
# PDF LOADER
# ============================================================

def load_pdf_text(data: bytes) -> str:

    try:
        reader = PdfReader(io.BytesIO(data))
    except PdfReadError as e:
        raise ValueError(f"Unreadable PDF: {e}") from e

    parts = []

    for page in reader.pages:

        text = page.extract_text()

        if text:
            parts.append(text)

    return "\n".join(parts)


# ============================================================
# PLAIN TEXT LOADER
# ============================================================

def load_plain_text(data: bytes) -> str:

    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError(f"File is not valid UTF-8 text: {e}") from e


# ============================================================
# ENTRY POINT
# ============================================================

def extract_text(filename: str, data: bytes) -> str:
    """
    Validate an upload and return its text.

    Raises FileTooLargeError over the size limit and ValueError for
    unsupported, empty or unreadable files.
    """

    validate_upload(filename, data)

    if filename.lower().endswith(".pdf"):
        text = load_pdf_text(data)
    else:
        text = load_plain_text(data)

    logger.info(
        "Text extracted",
        extra={
            "upload_filename": filename,
            "bytes": len(data),
            "characters": len(text),
        },
    )

    return text
