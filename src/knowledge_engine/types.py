"""Shared domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any


def freeze_mapping(value: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only deep copy: nested mappings become proxies, lists become tuples."""

    return MappingProxyType({key: _freeze_value(item) for key, item in value.items()})


def _freeze_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return freeze_mapping(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(item) for item in value)
    if isinstance(value, set):
        return frozenset(value)
    return value


@dataclass(slots=True)
class VectorCandidate:
    """A raw nearest-neighbour hit as returned by the vector index."""

    id: str
    text: str
    document_name: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RankedFragment:
    """A chunk of document text flowing through the retrieval pipeline.

    `keyword_score` is set once the keyword scorer has run and
    `combined_score` once the hybrid merger has run. Stages derive new
    fragments with `dataclasses.replace`.
    """

    id: str
    text: str
    document_name: str
    similarity: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    keyword_score: float | None = None
    combined_score: float | None = None
    highlights: tuple[str, ...] = ()

    @classmethod
    def from_candidate(cls, candidate: VectorCandidate) -> "RankedFragment":
        return cls(
            id=candidate.id,
            text=candidate.text,
            document_name=candidate.document_name,
            similarity=candidate.similarity,
            metadata=dict(candidate.metadata),
        )

    def frozen(self) -> "RankedFragment":
        """Copy whose metadata is a read-only deep copy."""

        return replace(self, metadata=freeze_mapping(self.metadata))


@dataclass(frozen=True, slots=True)
class Citation:
    """Display-oriented reference to a fragment's source document."""

    id: str
    document_id: str
    document_name: str
    text: str
    relevance_score: float
    metadata: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ProcessedQuery:
    """A user query after normalization and expansion."""

    id: str
    original_query: str
    processed_query: str
    expanded_queries: tuple[str, ...] = ()
    timestamp_ms: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RetrievalMetadata:
    total_results: int
    execution_time_ms: float
    options_used: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    """Ranked fragments, assembled context and citations for one query."""

    query: ProcessedQuery
    results: tuple[RankedFragment, ...]
    context: str
    citations: tuple[Citation, ...]
    metadata: RetrievalMetadata


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One (document, query) retrieval event."""

    document_id: str
    document_name: str
    query_id: str
    query_text: str
    timestamp_ms: int
    relevance_score: float
    workspace_id: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
