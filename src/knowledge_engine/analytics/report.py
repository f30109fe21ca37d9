"""Composite analytics across the usage, interaction and query logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from knowledge_engine.analytics.interactions import (
    AnalyticsPeriod,
    InteractionAnalytics,
    InteractionTracker,
)
from knowledge_engine.analytics.usage import DailyCount, DocumentPerformance, UsageTracker

TOP_DOCUMENT_COUNT = 10


@dataclass(frozen=True, slots=True)
class DocumentPerformanceMetrics:
    usage_count: int
    average_relevance: float
    feedback_rating: float
    click_through_rate: float


@dataclass(frozen=True, slots=True)
class KnowledgeAnalytics:
    query_analytics: dict[str, Any]
    top_documents: list[DocumentPerformance] = field(default_factory=list)
    document_usage_over_time: list[DailyCount] = field(default_factory=list)
    interactions: InteractionAnalytics = field(default_factory=InteractionAnalytics)


def document_performance(
    usage: UsageTracker,
    interactions: InteractionTracker,
    document_id: str,
) -> DocumentPerformanceMetrics:
    stats = usage.document_usage_analytics(document_id)
    return DocumentPerformanceMetrics(
        usage_count=stats.total_usage,
        average_relevance=stats.average_relevance,
        feedback_rating=interactions.feedback_rating(document_id),
        click_through_rate=interactions.click_through_rate(document_id),
    )


def knowledge_analytics(
    usage: UsageTracker,
    interactions: InteractionTracker,
    query_analytics: dict[str, Any],
    *,
    workspace_id: str | None = None,
    period: AnalyticsPeriod | None = None,
) -> KnowledgeAnalytics:
    """Dashboard view: query stats, top documents, usage trend, interactions.

    `workspace_id` narrows the top documents (and the caller's query stats);
    `period` narrows the interaction part only.
    """

    return KnowledgeAnalytics(
        query_analytics=query_analytics,
        top_documents=usage.top_performing_documents(TOP_DOCUMENT_COUNT, workspace_id),
        document_usage_over_time=usage.document_usage_analytics().usage_over_time,
        interactions=interactions.interaction_analytics(period),
    )
