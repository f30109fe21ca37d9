"""Semantic search: one vector index call plus metadata filtering."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from knowledge_engine.errors import RetrievalError
from knowledge_engine.retrieval.filters import matches, parse_filters
from knowledge_engine.retrieval.vector_store import VectorIndex
from knowledge_engine.types import RankedFragment, VectorCandidate

logger = structlog.get_logger(__name__)


async def semantic_search(
    index: VectorIndex,
    query: str,
    workspace_id: str,
    *,
    limit: int = 5,
    threshold: float = 0.7,
    filters: Mapping[str, Any] | None = None,
    timeout: float | None = None,
) -> list[RankedFragment]:
    """Search the index and drop fragments whose metadata fails `filters`.

    Index ordering is preserved, so the result is by descending similarity.
    Filtering may leave fewer than `limit` fragments.
    """

    spec = parse_filters(filters)
    candidates = await search_index(
        index, query, workspace_id, limit=limit, threshold=threshold, timeout=timeout
    )
    fragments = [RankedFragment.from_candidate(candidate) for candidate in candidates]
    if spec:
        fragments = [fragment for fragment in fragments if matches(fragment.metadata, spec)]

    logger.debug(
        "semantic_search_completed",
        workspace_id=workspace_id,
        candidates=len(candidates),
        returned=len(fragments),
    )
    return fragments


async def search_index(
    index: VectorIndex,
    query: str,
    workspace_id: str,
    *,
    limit: int,
    threshold: float,
    timeout: float | None = None,
) -> list[VectorCandidate]:
    """Call the index once, wrapping any failure in `RetrievalError`."""

    try:
        call = index.vector_search(workspace_id, query, limit, threshold)
        if timeout is not None:
            return await asyncio.wait_for(call, timeout=timeout)
        return await call
    except asyncio.TimeoutError as exc:
        logger.warning("vector_search_timeout", workspace_id=workspace_id, timeout=timeout)
        raise RetrievalError(f"Semantic search timed out after {timeout}s") from exc
    except Exception as exc:
        logger.error("vector_search_failed", workspace_id=workspace_id, error=str(exc))
        raise RetrievalError(f"Semantic search failed: {exc}") from exc
