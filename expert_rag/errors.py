# expert_rag/errors.py
"""
Error taxonomy for the retrieval pipeline.

Every error raised on purpose by this package derives from ExpertRagError,
so request handlers can tell expected failures from bugs.
"""


class ExpertRagError(Exception):
    """Base class for all expected failures."""


class ConfigError(ExpertRagError):
    """Invalid configuration, detected at construction or startup time."""


class ProviderError(ExpertRagError):
    """A remote model provider failed, timed out, or returned malformed data."""


class RetrievalTimeoutError(ProviderError):
    """Context retrieval exceeded its deadline."""


class RetrievalError(ProviderError):
    """
    Context retrieval failed outside the embedding provider, e.g. the
    chunk store could not be queried. The underlying error is chained.
    """


class NotFoundError(ExpertRagError):
    """A referenced document or expert does not exist."""


class DimensionError(ExpertRagError):
    """Vector length does not match the configured embedding dimension."""


class IngestError(ExpertRagError):
    """
    Document ingest failed.

    Raising this guarantees that no document or chunk rows from the
    failed call remain in the store. The underlying error is chained.
    """
