"""User interaction log: searches, views, feedback and citation clicks."""

from __future__ import annotations

import threading
from collections import Counter, defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from knowledge_engine.analytics.usage import DEFAULT_MAX_RECORDS, DailyCount, now_ms, utc_date

logger = structlog.get_logger(__name__)

InteractionType = Literal["search", "view", "feedback", "citation"]

MAX_SESSION_DURATION_MS = 2 * 60 * 60 * 1000
MIN_RATING = 1
MAX_RATING = 5


@dataclass(frozen=True, slots=True)
class UserInteraction:
    """One user action.

    `metadata` conventions: searches carry `results` (the returned document
    ids), views and feedback carry `document_id`, feedback adds `query_id`,
    `rating` and optional `comments`.
    """

    user_id: str
    session_id: str
    interaction_type: InteractionType
    timestamp_ms: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AnalyticsPeriod:
    """Inclusive time window in epoch milliseconds; an open side is unbounded."""

    start_ms: int | None = None
    end_ms: int | None = None

    def contains(self, timestamp_ms: int) -> bool:
        if self.start_ms is not None and timestamp_ms < self.start_ms:
            return False
        if self.end_ms is not None and timestamp_ms > self.end_ms:
            return False
        return True


@dataclass(frozen=True, slots=True)
class TypeCount:
    type: str
    count: int


@dataclass(frozen=True, slots=True)
class InteractionAnalytics:
    total_interactions: int = 0
    average_session_duration_ms: float = 0.0
    interactions_over_time: list[DailyCount] = field(default_factory=list)
    interactions_by_type: list[TypeCount] = field(default_factory=list)


class InteractionTracker:
    """Bounded FIFO log of user interactions.

    Same retention rule as the usage log: beyond `max_records` entries the
    oldest are dropped, and append + trim happen under one lock.
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
        self._interactions: list[UserInteraction] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._interactions)

    def track(self, interaction: UserInteraction) -> None:
        with self._lock:
            self._interactions.append(interaction)
            overflow = len(self._interactions) - self.max_records
            if overflow > 0:
                del self._interactions[:overflow]
        if overflow > 0:
            logger.debug("interaction_log_trimmed", dropped=overflow, retained=self.max_records)

    def record(
        self,
        user_id: str,
        session_id: str,
        interaction_type: InteractionType,
        metadata: Mapping[str, Any] | None = None,
        *,
        timestamp_ms: int | None = None,
    ) -> UserInteraction:
        """Build and track an interaction, stamped with the clock unless given."""

        interaction = UserInteraction(
            user_id=user_id,
            session_id=session_id,
            interaction_type=interaction_type,
            timestamp_ms=self._clock() if timestamp_ms is None else timestamp_ms,
            metadata=dict(metadata or {}),
        )
        self.track(interaction)
        return interaction

    def record_feedback(
        self,
        document_id: str,
        query_id: str,
        user_id: str,
        rating: int,
        comments: str | None = None,
    ) -> UserInteraction:
        """Store a 1-5 rating as a feedback interaction in its own session."""

        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
        now = self._clock()
        interaction = self.record(
            user_id,
            f"session_{user_id}_{now}",
            "feedback",
            {"document_id": document_id, "query_id": query_id, "rating": rating, "comments": comments},
            timestamp_ms=now,
        )
        logger.info("feedback_recorded", document_id=document_id, query_id=query_id, rating=rating)
        return interaction

    def interactions(self) -> tuple[UserInteraction, ...]:
        with self._lock:
            return tuple(self._interactions)

    def clear(self) -> None:
        with self._lock:
            self._interactions.clear()

    def interaction_analytics(
        self,
        period: AnalyticsPeriod | None = None,
        user_id: str | None = None,
    ) -> InteractionAnalytics:
        """Counts per day and per type, plus mean session length.

        A session's length runs from its first to its last interaction.
        Sessions with a single interaction, or lasting two hours or more,
        are left out of the mean.
        """

        interactions = self.interactions()
        if period is not None:
            interactions = tuple(item for item in interactions if period.contains(item.timestamp_ms))
        if user_id:
            interactions = tuple(item for item in interactions if item.user_id == user_id)
        if not interactions:
            return InteractionAnalytics()

        per_day = Counter(utc_date(item.timestamp_ms) for item in interactions)
        per_type = Counter(item.interaction_type for item in interactions)
        sessions: dict[str, list[int]] = defaultdict(list)
        for item in interactions:
            sessions[item.session_id].append(item.timestamp_ms)

        durations = [
            max(timestamps) - min(timestamps)
            for timestamps in sessions.values()
            if len(timestamps) >= 2
        ]
        durations = [duration for duration in durations if 0 < duration < MAX_SESSION_DURATION_MS]

        return InteractionAnalytics(
            total_interactions=len(interactions),
            average_session_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            interactions_over_time=[DailyCount(date=day, count=per_day[day]) for day in sorted(per_day)],
            interactions_by_type=[
                TypeCount(type=kind, count=count) for kind, count in per_type.most_common()
            ],
        )

    def feedback_rating(self, document_id: str) -> float:
        """Mean feedback rating for a document, 0.0 without feedback."""

        ratings = [
            item.metadata.get("rating") or 0
            for item in self.interactions()
            if item.interaction_type == "feedback" and item.metadata.get("document_id") == document_id
        ]
        return sum(ratings) / len(ratings) if ratings else 0.0

    def click_through_rate(self, document_id: str) -> float:
        """Views of a document divided by searches that returned it."""

        searches = 0
        views = 0
        for item in self.interactions():
            if item.interaction_type == "search":
                results = item.metadata.get("results")
                if isinstance(results, (list, tuple)) and document_id in results:
                    searches += 1
            elif item.interaction_type == "view" and item.metadata.get("document_id") == document_id:
                views += 1
        return views / searches if searches else 0.0
