"""Vector index contract and concrete adapters.

The engine never builds embeddings or runs ANN search itself; it talks to a
`VectorIndex`. Two adapters are provided: an in-memory index for tests and
local prototyping, and an HTTP client for a remote index service.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from hashlib import blake2b
from math import sqrt
from typing import Any, Protocol

import httpx
import structlog

from knowledge_engine.types import VectorCandidate

logger = structlog.get_logger(__name__)

ID_LOOKUP_PREFIX = "id:"
UNTITLED_DOCUMENT = "Untitled Document"

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class VectorIndex(Protocol):
    """Nearest-neighbour search over one workspace's fragments.

    Implementations return candidates ordered by descending similarity in
    [0, 1], already restricted to `similarity >= threshold` and to at most
    `limit` items. A query of the form `id:<fragment-id>` looks up a single
    fragment by identity.
    """

    async def vector_search(
        self,
        workspace_id: str,
        query: str,
        limit: int,
        threshold: float,
    ) -> list[VectorCandidate]:
        ...


class HashingEmbedder:
    """Deterministic feature-hashing embedder for local indexes.

    Word tokens are hashed into a fixed number of signed buckets and the
    vector is L2-normalized. No model download or network call is involved.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _WORD_PATTERN.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimension
            vector[bucket] += -1.0 if digest[4] & 1 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


@dataclass(slots=True)
class _IndexedFragment:
    candidate: VectorCandidate
    embedding: list[float]


class InMemoryVectorIndex:
    """Workspace-partitioned in-memory index scored by cosine similarity."""

    def __init__(self, embedder: HashingEmbedder | None = None) -> None:
        self.embedder = embedder or HashingEmbedder()
        self._workspaces: dict[str, dict[str, _IndexedFragment]] = {}

    def add_fragments(self, workspace_id: str, fragments: list[VectorCandidate]) -> None:
        """Insert or replace fragments; the stored similarity is ignored."""

        store = self._workspaces.setdefault(workspace_id, {})
        for fragment in fragments:
            store[fragment.id] = _IndexedFragment(
                candidate=fragment,
                embedding=self.embedder.embed(fragment.text),
            )

    def remove_workspace(self, workspace_id: str) -> None:
        self._workspaces.pop(workspace_id, None)

    def fragment_count(self, workspace_id: str) -> int:
        return len(self._workspaces.get(workspace_id, {}))

    async def vector_search(
        self,
        workspace_id: str,
        query: str,
        limit: int,
        threshold: float,
    ) -> list[VectorCandidate]:
        store = self._workspaces.get(workspace_id, {})
        if query.startswith(ID_LOOKUP_PREFIX):
            hit = store.get(query[len(ID_LOOKUP_PREFIX) :])
            return [_with_similarity(hit.candidate, 1.0)] if hit else []

        query_embedding = self.embedder.embed(query)
        scored = [
            _with_similarity(item.candidate, _cosine_similarity(query_embedding, item.embedding))
            for item in store.values()
        ]
        ranked = sorted(
            (candidate for candidate in scored if candidate.similarity >= threshold),
            key=lambda candidate: candidate.similarity,
            reverse=True,
        )
        return ranked[:limit]


class HttpVectorIndex:
    """Client for a remote index exposing `POST /workspaces/{id}/search`.

    The service reports scores as percentages (0-100); they are converted to
    the [0, 1] similarity range here. The document name falls back from
    `title` to `documentTitle` to a fixed placeholder.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def vector_search(
        self,
        workspace_id: str,
        query: str,
        limit: int,
        threshold: float,
    ) -> list[VectorCandidate]:
        response = await self._client.post(
            f"{self.base_url}/workspaces/{workspace_id}/search",
            json={"query": query, "topK": limit, "threshold": threshold},
        )
        response.raise_for_status()
        payload = response.json()
        items = payload.get("results", []) if isinstance(payload, dict) else payload
        logger.debug("vector_index_response", workspace_id=workspace_id, hits=len(items))
        return [_candidate_from_payload(item) for item in items]

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()


def _candidate_from_payload(item: dict[str, Any]) -> VectorCandidate:
    metadata = dict(item.get("metadata") or {})
    return VectorCandidate(
        id=str(item["id"]),
        text=str(item.get("text", "")),
        document_name=str(
            metadata.get("title") or metadata.get("documentTitle") or UNTITLED_DOCUMENT
        ),
        similarity=float(item.get("score", 0.0)) / 100.0,
        metadata=metadata,
    )


def _with_similarity(candidate: VectorCandidate, similarity: float) -> VectorCandidate:
    return VectorCandidate(
        id=candidate.id,
        text=candidate.text,
        document_name=candidate.document_name,
        similarity=similarity,
        metadata=dict(candidate.metadata),
    )


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    # Hashed vectors can point away from each other; similarity stays in [0, 1].
    return max(0.0, min(1.0, numerator / (norm_a * norm_b)))
