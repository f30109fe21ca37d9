"""Append-only document usage log with aggregate analytics."""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from knowledge_engine.types import ProcessedQuery, RankedFragment, UsageRecord

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RECORDS = 10_000
TOP_QUERY_COUNT = 10


@dataclass(frozen=True, slots=True)
class DailyCount:
    date: str
    count: int


@dataclass(frozen=True, slots=True)
class QueryCount:
    query: str
    count: int


@dataclass(frozen=True, slots=True)
class DocumentUsageAnalytics:
    total_usage: int = 0
    average_relevance: float = 0.0
    usage_over_time: list[DailyCount] = field(default_factory=list)
    top_queries: list[QueryCount] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DocumentPerformance:
    document_id: str
    document_name: str
    usage_count: int
    average_relevance: float


def now_ms() -> int:
    return int(time.time() * 1000)


class UsageTracker:
    """Bounded FIFO log of which fragments were retrieved for which queries.

    Once the log holds more than `max_records` entries the oldest ones are
    discarded. Append and trim happen under one lock, so concurrent callers
    never lose or corrupt records. Aggregates are recomputed on every call.
    """

    def __init__(
        self,
        *,
        max_records: int = DEFAULT_MAX_RECORDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self.max_records = max_records
        self._clock = clock
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def track(
        self,
        fragments: list[RankedFragment],
        query: ProcessedQuery,
        *,
        workspace_id: str | None = None,
    ) -> None:
        """Record one usage event per fragment, stamped with the current time."""

        if not fragments:
            return
        timestamp = self._clock()
        new_records = [
            UsageRecord(
                document_id=fragment.id,
                document_name=fragment.document_name,
                query_id=query.id,
                query_text=query.original_query,
                timestamp_ms=timestamp,
                relevance_score=fragment.similarity,
                workspace_id=workspace_id,
            )
            for fragment in fragments
        ]
        with self._lock:
            self._records.extend(new_records)
            overflow = len(self._records) - self.max_records
            if overflow > 0:
                del self._records[:overflow]
        if overflow > 0:
            logger.debug("usage_log_trimmed", dropped=overflow, retained=self.max_records)

    def records(self) -> tuple[UsageRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def document_usage_analytics(self, document_id: str | None = None) -> DocumentUsageAnalytics:
        """Totals, mean relevance, per-day counts and top queries.

        Restricted to one document when `document_id` is given.
        """

        records = self.records()
        if document_id:
            records = tuple(record for record in records if record.document_id == document_id)
        if not records:
            return DocumentUsageAnalytics()

        total = len(records)
        per_day = Counter(utc_date(record.timestamp_ms) for record in records)
        per_query = Counter(record.query_text for record in records)
        return DocumentUsageAnalytics(
            total_usage=total,
            average_relevance=sum(record.relevance_score for record in records) / total,
            usage_over_time=[DailyCount(date=day, count=per_day[day]) for day in sorted(per_day)],
            top_queries=[
                QueryCount(query=text, count=count)
                for text, count in per_query.most_common(TOP_QUERY_COUNT)
            ],
        )

    def top_performing_documents(
        self,
        limit: int = 10,
        workspace_id: str | None = None,
    ) -> list[DocumentPerformance]:
        """Documents ranked by how often they were retrieved."""

        records = self.records()
        if workspace_id:
            records = tuple(record for record in records if record.workspace_id == workspace_id)

        names: dict[str, str] = {}
        counts: dict[str, int] = {}
        relevance: dict[str, float] = {}
        for record in records:
            names.setdefault(record.document_id, record.document_name)
            counts[record.document_id] = counts.get(record.document_id, 0) + 1
            relevance[record.document_id] = relevance.get(record.document_id, 0.0) + record.relevance_score

        ranked = sorted(counts, key=lambda doc_id: counts[doc_id], reverse=True)
        return [
            DocumentPerformance(
                document_id=doc_id,
                document_name=names[doc_id],
                usage_count=counts[doc_id],
                average_relevance=relevance[doc_id] / counts[doc_id],
            )
            for doc_id in ranked[:limit]
        ]


def utc_date(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc).date().isoformat()
