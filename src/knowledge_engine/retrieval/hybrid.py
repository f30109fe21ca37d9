"""Hybrid ranking: semantic similarity blended with keyword relevance."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

import structlog

from knowledge_engine.retrieval.keyword import KeywordScorer
from knowledge_engine.retrieval.semantic import semantic_search
from knowledge_engine.retrieval.vector_store import VectorIndex
from knowledge_engine.types import RankedFragment

logger = structlog.get_logger(__name__)

CANDIDATE_MULTIPLIER = 3
MIN_CANDIDATES = 20
THRESHOLD_RELAXATION = 0.1
THRESHOLD_FLOOR = 0.5


def combined_score(similarity: float, keyword_score: float | None, keyword_weight: float) -> float:
    """`(1 - w) * similarity + w * keyword_score`, a missing keyword score counting as 0."""

    return (1.0 - keyword_weight) * similarity + keyword_weight * (keyword_score or 0.0)


def candidate_pool(limit: int, threshold: float) -> tuple[int, float]:
    """Widen the semantic pre-filter so lexically strong fragments reach the rerank."""

    return (
        max(limit * CANDIDATE_MULTIPLIER, MIN_CANDIDATES),
        max(threshold - THRESHOLD_RELAXATION, THRESHOLD_FLOOR),
    )


class HybridMerger:
    """Reranks a widened semantic candidate pool by combined score."""

    def __init__(self, keyword_scorer: KeywordScorer | None = None) -> None:
        self.keyword_scorer = keyword_scorer or KeywordScorer()

    async def search(
        self,
        index: VectorIndex,
        query: str,
        workspace_id: str,
        *,
        limit: int = 10,
        threshold: float = 0.6,
        filters: Mapping[str, Any] | None = None,
        keyword_weight: float = 0.3,
        exact_match: bool = False,
        timeout: float | None = None,
    ) -> list[RankedFragment]:
        pool_limit, pool_threshold = candidate_pool(limit, threshold)
        candidates = await semantic_search(
            index,
            query,
            workspace_id,
            limit=pool_limit,
            threshold=pool_threshold,
            filters=filters,
            timeout=timeout,
        )
        ranked = self.rerank(query, candidates, keyword_weight=keyword_weight, exact_match=exact_match)

        logger.debug(
            "hybrid_search_completed",
            workspace_id=workspace_id,
            pool_limit=pool_limit,
            pool_threshold=pool_threshold,
            candidates=len(candidates),
            returned=min(limit, len(ranked)),
        )
        return ranked[:limit]

    def rerank(
        self,
        query: str,
        candidates: list[RankedFragment],
        *,
        keyword_weight: float = 0.3,
        exact_match: bool = False,
    ) -> list[RankedFragment]:
        """Score, blend and order candidates; ties keep their input order."""

        scored = self.keyword_scorer.score(query, candidates, exact_match=exact_match)
        blended = [
            replace(
                fragment,
                combined_score=combined_score(fragment.similarity, fragment.keyword_score, keyword_weight),
            )
            for fragment in scored
        ]
        # sorted() is stable, which keeps candidate order among equal scores.
        return sorted(blended, key=lambda fragment: fragment.combined_score or 0.0, reverse=True)
