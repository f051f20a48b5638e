# expert_rag/config.py
"""
Configuration for the expert chat backend.

This file centralizes all tunable parameters for the retrieval pipeline.
Every value can be overridden through an environment variable of the same name.
"""

import os

from expert_rag.errors import ConfigError


def _env_int(name: str, default: int) -> int:

    raw = os.getenv(name)

    if raw is None or raw == "":
        return default

    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:

    raw = os.getenv(name)

    if raw is None or raw == "":
        return default

    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


# ========== DOCUMENT PROCESSING ==========

# Characters per chunk, and characters shared by consecutive chunks
CHUNK_SIZE = _env_int("CHUNK_SIZE", 1000)
CHUNK_OVERLAP = _env_int("CHUNK_OVERLAP", 200)

# File upload limits
MAX_FILE_SIZE_MB = _env_int("MAX_FILE_SIZE_MB", 10)
ALLOWED_FILE_EXTENSIONS = [".pdf", ".txt", ".md", ".csv", ".json"]

# Prevent a single upload from fanning out into thousands of embedding calls
MAX_CHUNKS_PER_DOCUMENT = _env_int("MAX_CHUNKS_PER_DOCUMENT", 1000)


# ========== EMBEDDING CONFIGURATION ==========

EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "openai")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

# Fixed by the embedding model; every stored vector has this length
EMBEDDING_DIMENSION = _env_int("EMBEDDING_DIMENSION", 1536)

EMBED_CONCURRENCY = _env_int("EMBED_CONCURRENCY", 4)
EMBED_TIMEOUT_SECONDS = _env_float("EMBED_TIMEOUT_SECONDS", 30.0)


# ========== RETRIEVAL CONFIGURATION ==========

TOP_K = _env_int("TOP_K", 5)

INGEST_TIMEOUT_SECONDS = _env_float("INGEST_TIMEOUT_SECONDS", 300.0)
RETRIEVAL_TIMEOUT_SECONDS = _env_float("RETRIEVAL_TIMEOUT_SECONDS", 10.0)


# ========== STORAGE ==========

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///storage/expert_rag.db",
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

EXPERTS_CONFIG_PATH = os.getenv("EXPERTS_CONFIG_PATH", "config/experts.json")


# ========== PROVIDER CREDENTIALS ==========

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")


# ========== LOGGING & OBSERVABILITY ==========

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Empty keeps metrics in memory only
METRICS_PATH = os.getenv("METRICS_PATH", "")

POSTHOG_API_KEY = os.getenv("POSTHOG_API_KEY")
POSTHOG_HOST = os.getenv("POSTHOG_HOST", "https://app.posthog.com")


def provider_api_keys() -> dict:
    """
    Credentials keyed by provider name, as consumed by the provider factories.
    """

    return {
        "openai": OPENAI_API_KEY,
        "google": GEMINI_API_KEY,
    }


def validate_config():
    """
    Fail fast on settings that would only break at request time.

    Called once during application startup.
    """

    if CHUNK_SIZE <= 0:
        raise ConfigError(f"CHUNK_SIZE must be positive, got {CHUNK_SIZE}")

    if CHUNK_OVERLAP < 0 or CHUNK_OVERLAP >= CHUNK_SIZE:
        raise ConfigError(
            f"CHUNK_OVERLAP must be in [0, CHUNK_SIZE) "
            f"(overlap={CHUNK_OVERLAP}, size={CHUNK_SIZE})"
        )

    if EMBEDDING_DIMENSION <= 0:
        raise ConfigError("EMBEDDING_DIMENSION must be positive")

    if TOP_K < 1:
        raise ConfigError("TOP_K must be at least 1")

    if EMBED_CONCURRENCY < 1:
        raise ConfigError("EMBED_CONCURRENCY must be at least 1")


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. CHUNK_SIZE = 1000 characters, CHUNK_OVERLAP = 200:
   - Matches the splitter settings the chat app has always used
   - Overlap keeps a sentence cut at a window edge retrievable from both sides

2. TOP_K = 5:
   - Enough context for a chat turn without crowding out the conversation

3. RETRIEVAL_TIMEOUT_SECONDS = 10:
   - Retrieval is optional for a chat turn; a slow embedding call
     degrades to an unaugmented answer instead of stalling the user

4. Exact cosine scan outside PostgreSQL:
   - SQLite has no vector operator, so ranking happens in numpy
   - PostgreSQL uses the pgvector cosine-distance operator instead
"""
