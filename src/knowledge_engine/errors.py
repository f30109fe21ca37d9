"""Exception hierarchy for the retrieval engine."""

from __future__ import annotations


class KnowledgeEngineError(Exception):
    """Base class for all engine errors."""


class RetrievalError(KnowledgeEngineError):
    """The external vector index failed or timed out.

    The original exception is chained as `__cause__`.
    """


class InvalidFilterError(KnowledgeEngineError, ValueError):
    """A metadata filter could not be constructed."""


class DocumentNotFoundError(RetrievalError):
    """A fragment looked up by identity is not in the index."""
