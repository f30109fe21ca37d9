"""Retrieval orchestrator: query -> ranked fragments, context and citations."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import structlog

from knowledge_engine.analytics.interactions import (
    AnalyticsPeriod,
    InteractionAnalytics,
    InteractionTracker,
    InteractionType,
    UserInteraction,
)
from knowledge_engine.analytics.report import (
    DocumentPerformanceMetrics,
    KnowledgeAnalytics,
    document_performance,
    knowledge_analytics,
)
from knowledge_engine.analytics.usage import (
    DocumentPerformance,
    DocumentUsageAnalytics,
    UsageTracker,
)
from knowledge_engine.config import (
    ContextSortKey,
    HybridSearchParams,
    RetrievalOptions,
    SearchParams,
)
from knowledge_engine.errors import DocumentNotFoundError
from knowledge_engine.obs.tracing import Timer, bind_query_context
from knowledge_engine.query.processor import DefaultQueryProcessor, QueryProcessor
from knowledge_engine.retrieval.citations import generate_citations
from knowledge_engine.retrieval.context import build_context
from knowledge_engine.retrieval.filters import available_filters
from knowledge_engine.retrieval.hybrid import HybridMerger
from knowledge_engine.retrieval.semantic import search_index, semantic_search
from knowledge_engine.retrieval.vector_store import ID_LOOKUP_PREFIX, VectorIndex
from knowledge_engine.types import (
    Citation,
    RankedFragment,
    RetrievalMetadata,
    RetrievalResult,
    freeze_mapping,
)

logger = structlog.get_logger(__name__)


class KnowledgeRetriever:
    """Sequences query processing, search, context assembly and tracking.

    All collaborators are injected. Per query there is exactly one awaited
    call, into the vector index; the remaining stages run synchronously in
    order and usage is recorded only after a successful search.
    """

    def __init__(
        self,
        index: VectorIndex,
        *,
        query_processor: QueryProcessor | None = None,
        usage_tracker: UsageTracker | None = None,
        interaction_tracker: InteractionTracker | None = None,
        hybrid_merger: HybridMerger | None = None,
        context_sort_key: ContextSortKey = "similarity",
        search_timeout: float | None = None,
    ) -> None:
        self.index = index
        self.query_processor = query_processor or DefaultQueryProcessor()
        self.usage_tracker = usage_tracker if usage_tracker is not None else UsageTracker()
        self.interaction_tracker = (
            interaction_tracker if interaction_tracker is not None else InteractionTracker()
        )
        self.hybrid_merger = hybrid_merger or HybridMerger()
        self.context_sort_key = context_sort_key
        self.search_timeout = search_timeout

    async def retrieve_knowledge(
        self,
        query: str,
        options: RetrievalOptions | dict[str, Any],
    ) -> RetrievalResult:
        """Run the full pipeline for one query.

        Returns:
            An immutable `RetrievalResult`. Zero matches is a valid result
            with empty results, context and citations.

        Raises:
            RetrievalError: the vector index call failed or timed out.
        """

        opts = RetrievalOptions.model_validate(options)
        with Timer() as timer:
            processed = await self.query_processor.process(
                query, workspace_id=opts.workspace_id, enable_expansion=True
            )
            with bind_query_context(processed.id, opts.workspace_id):
                if opts.use_hybrid_search:
                    results = await self.hybrid_merger.search(
                        self.index,
                        processed.processed_query,
                        opts.workspace_id,
                        limit=opts.limit,
                        threshold=opts.threshold,
                        filters=opts.filters,
                        keyword_weight=opts.keyword_weight,
                        exact_match=opts.exact_match,
                        timeout=self.search_timeout,
                    )
                else:
                    results = await semantic_search(
                        self.index,
                        processed.processed_query,
                        opts.workspace_id,
                        limit=opts.limit,
                        threshold=opts.threshold,
                        filters=opts.filters,
                        timeout=self.search_timeout,
                    )

                context = build_context(results, opts.max_context_length, sort_key=self.context_sort_key)
                citations = self._citations(results, opts)
                self.usage_tracker.track(results, processed, workspace_id=opts.workspace_id)

                logger.info(
                    "retrieval_completed",
                    mode="hybrid" if opts.use_hybrid_search else "semantic",
                    results=len(results),
                    context_length=len(context),
                    elapsed_ms=round(timer.lap_ms(), 2),
                )

        return RetrievalResult(
            query=processed,
            results=tuple(fragment.frozen() for fragment in results),
            context=context,
            citations=tuple(citations),
            metadata=RetrievalMetadata(
                total_results=len(results),
                execution_time_ms=timer.elapsed_ms,
                options_used=freeze_mapping(opts.model_dump()),
            ),
        )

    async def semantic_search(self, params: SearchParams | dict[str, Any]) -> list[RankedFragment]:
        search = SearchParams.model_validate(params)
        return await semantic_search(
            self.index,
            search.query,
            search.workspace_id,
            limit=search.limit,
            threshold=search.threshold,
            filters=search.filters,
            timeout=self.search_timeout,
        )

    async def hybrid_search(self, params: HybridSearchParams | dict[str, Any]) -> list[RankedFragment]:
        search = HybridSearchParams.model_validate(params)
        return await self.hybrid_merger.search(
            self.index,
            search.query,
            search.workspace_id,
            limit=search.limit,
            threshold=search.threshold,
            filters=search.filters,
            keyword_weight=search.keyword_weight,
            exact_match=search.exact_match,
            timeout=self.search_timeout,
        )

    async def find_similar_documents(
        self,
        workspace_id: str,
        document_id: str,
        *,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[RankedFragment]:
        """Fragments semantically close to an already indexed fragment."""

        source = await search_index(
            self.index,
            f"{ID_LOOKUP_PREFIX}{document_id}",
            workspace_id,
            limit=1,
            threshold=0.9,
            timeout=self.search_timeout,
        )
        if not source:
            raise DocumentNotFoundError(f"Document with ID {document_id} not found")

        # One extra slot because the source fragment matches itself.
        neighbours = await semantic_search(
            self.index,
            source[0].text,
            workspace_id,
            limit=limit + 1,
            threshold=threshold,
            timeout=self.search_timeout,
        )
        return [fragment for fragment in neighbours if fragment.id != document_id][:limit]

    def build_context(self, fragments: list[RankedFragment], max_length: int = 2000) -> str:
        return build_context(fragments, max_length, sort_key=self.context_sort_key)

    def generate_citations(self, fragments: list[RankedFragment]) -> list[Citation]:
        return generate_citations(fragments)

    def get_document_usage_analytics(self, document_id: str | None = None) -> DocumentUsageAnalytics:
        return self.usage_tracker.document_usage_analytics(document_id)

    def get_top_performing_documents(
        self,
        limit: int = 10,
        workspace_id: str | None = None,
    ) -> list[DocumentPerformance]:
        return self.usage_tracker.top_performing_documents(limit, workspace_id)

    def track_user_interaction(
        self,
        user_id: str,
        session_id: str,
        interaction_type: InteractionType,
        metadata: dict[str, Any] | None = None,
        *,
        timestamp_ms: int | None = None,
    ) -> UserInteraction:
        return self.interaction_tracker.record(
            user_id, session_id, interaction_type, metadata, timestamp_ms=timestamp_ms
        )

    def record_user_feedback(
        self,
        document_id: str,
        query_id: str,
        user_id: str,
        rating: int,
        comments: str | None = None,
    ) -> UserInteraction:
        return self.interaction_tracker.record_feedback(document_id, query_id, user_id, rating, comments)

    def get_user_interaction_analytics(
        self,
        period: AnalyticsPeriod | None = None,
        user_id: str | None = None,
    ) -> InteractionAnalytics:
        return self.interaction_tracker.interaction_analytics(period, user_id)

    def get_document_performance_metrics(self, document_id: str) -> DocumentPerformanceMetrics:
        return document_performance(self.usage_tracker, self.interaction_tracker, document_id)

    def get_knowledge_analytics(
        self,
        workspace_id: str | None = None,
        period: AnalyticsPeriod | None = None,
    ) -> KnowledgeAnalytics:
        """Query, document and interaction analytics in one report.

        Query statistics come from the query log and are empty when the
        configured processor keeps none.
        """

        query_stats: dict[str, Any] = {}
        if isinstance(self.query_processor, DefaultQueryProcessor):
            query_stats = self.query_processor.query_analytics(workspace_id)
        return knowledge_analytics(
            self.usage_tracker,
            self.interaction_tracker,
            query_stats,
            workspace_id=workspace_id,
            period=period,
        )

    @staticmethod
    def available_filters() -> list[dict[str, str]]:
        return available_filters()

    @staticmethod
    def _citations(results: list[RankedFragment], opts: RetrievalOptions) -> list[Citation]:
        citations = generate_citations(results)
        if opts.include_metadata and opts.include_source_text:
            return citations
        return [
            replace(
                citation,
                metadata=citation.metadata if opts.include_metadata else freeze_mapping({}),
                text=citation.text if opts.include_source_text else "",
            )
            for citation in citations
        ]
