"""Query normalization, expansion and query logging."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from knowledge_engine.config import QueryProcessingConfig
from knowledge_engine.types import ProcessedQuery, freeze_mapping

logger = structlog.get_logger(__name__)

_REPEATED_PUNCTUATION = re.compile(r"[?!.,;:]{2,}")
_WHITESPACE = re.compile(r"\s+")

STOP_WORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "be",
        "been", "being", "in", "on", "at", "to", "for", "with", "about",
        "against", "between", "into", "through", "during", "before", "after",
        "above", "below", "from", "up", "down", "of", "off", "over", "under",
        "again", "further", "then", "once", "here", "there", "when", "where",
        "why", "how", "all", "any", "both", "each", "few", "more", "most",
        "other", "some", "such", "no", "nor", "not", "only", "own", "same",
        "so", "than", "too", "very", "can", "will", "just", "should", "now",
    }
)

SYNONYMS: dict[str, tuple[str, ...]] = {
    "create": ("make", "build", "generate", "develop"),
    "delete": ("remove", "erase", "eliminate"),
    "update": ("modify", "change", "edit", "alter"),
    "search": ("find", "locate", "query", "look for"),
    "document": ("file", "record", "paper", "content"),
    "user": ("person", "individual", "customer", "client"),
    "system": ("platform", "application", "software", "program"),
    "error": ("bug", "issue", "problem", "fault", "defect"),
    "feature": ("functionality", "capability", "option"),
    "data": ("information", "content", "records"),
    "api": ("interface", "endpoint", "service"),
    "database": ("db", "data store", "repository"),
    "code": ("script", "program", "source"),
    "test": ("check", "verify", "validate", "examine"),
    "deploy": ("launch", "release", "publish", "roll out"),
}


class QueryProcessor(Protocol):
    """Turns a raw user query into the form used for searching."""

    async def process(
        self,
        raw_query: str,
        *,
        workspace_id: str,
        enable_expansion: bool = True,
    ) -> ProcessedQuery:
        ...


def preprocess_query(query: str) -> str:
    """Trim, collapse punctuation runs and whitespace; drop stop words from long queries."""

    processed = query.strip()
    processed = _REPEATED_PUNCTUATION.sub(lambda match: match.group(0)[0], processed)
    processed = _WHITESPACE.sub(" ", processed)
    if len(processed.split(" ")) > 3:
        processed = remove_stop_words(processed)
    return processed


def remove_stop_words(query: str) -> str:
    words = query.lower().split()
    kept = [word for word in words if word not in STOP_WORDS]
    # Too aggressive a cut loses the query's meaning.
    if len(kept) < 2 and len(words) > 2:
        return query
    return " ".join(kept)


def expand_query(query: str, count: int = 3) -> list[str]:
    """Variants of `query` with one word swapped for a synonym.

    Generic phrasings pad the list when the synonym table runs short.
    """

    if count <= 0:
        return []
    words = query.split(" ")
    expansions: list[str] = []
    for position, word in enumerate(words):
        for synonym in SYNONYMS.get(word.lower(), ()):
            if len(expansions) >= count:
                return expansions
            variant = list(words)
            variant[position] = synonym
            expansions.append(" ".join(variant))

    if len(expansions) < count:
        expansions.extend(
            [f"information about {query}", f"how to {query}", f"{query} examples"]
        )
    return expansions[:count]


class DefaultQueryProcessor:
    """Rule-based processor with an in-memory, bounded query log."""

    def __init__(
        self,
        config: QueryProcessingConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or QueryProcessingConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._log: deque[ProcessedQuery] = deque(maxlen=self.config.max_logged_queries)
        self._lock = threading.Lock()

    async def process(
        self,
        raw_query: str,
        *,
        workspace_id: str,
        enable_expansion: bool = True,
    ) -> ProcessedQuery:
        processed = preprocess_query(raw_query)
        expanded: list[str] = []
        if enable_expansion and self.config.enable_expansion:
            expanded = expand_query(processed, self.config.expansion_count)

        query = ProcessedQuery(
            id=str(uuid.uuid4()),
            original_query=raw_query,
            processed_query=processed,
            expanded_queries=tuple(expanded),
            timestamp_ms=self._clock(),
            metadata=freeze_mapping({"workspace_id": workspace_id}),
        )
        if self.config.enable_logging:
            with self._lock:
                self._log.append(query)
            logger.info("query_logged", query_id=query.id, workspace_id=workspace_id)
        return query

    def query_logs(self, limit: int = 100, workspace_id: str | None = None) -> list[ProcessedQuery]:
        """Most recent logged queries first."""

        with self._lock:
            entries = list(self._log)
        if workspace_id:
            entries = [entry for entry in entries if entry.metadata.get("workspace_id") == workspace_id]
        entries.sort(key=lambda entry: entry.timestamp_ms, reverse=True)
        return entries[:limit]

    def query_analytics(self, workspace_id: str | None = None) -> dict[str, Any]:
        entries = self.query_logs(limit=len(self._log) or 1, workspace_id=workspace_id)
        if not entries:
            return {
                "total_queries": 0,
                "unique_queries": 0,
                "average_query_length": 0.0,
                "top_queries": [],
                "queries_over_time": [],
            }

        total = len(entries)
        texts = Counter(entry.original_query for entry in entries)
        per_day = Counter(
            datetime.fromtimestamp(entry.timestamp_ms / 1000.0, tz=timezone.utc).date().isoformat()
            for entry in entries
        )
        return {
            "total_queries": total,
            "unique_queries": len(texts),
            "average_query_length": sum(len(entry.original_query) for entry in entries) / total,
            "top_queries": [{"query": text, "count": count} for text, count in texts.most_common(10)],
            "queries_over_time": [{"date": day, "count": per_day[day]} for day in sorted(per_day)],
        }
