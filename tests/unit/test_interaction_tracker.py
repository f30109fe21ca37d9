import pytest

from knowledge_engine.analytics.interactions import (
    AnalyticsPeriod,
    InteractionTracker,
    TypeCount,
    UserInteraction,
)
from knowledge_engine.analytics.usage import DailyCount

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
JAN_1_2024_MS = 1_704_067_200_000


def _interaction(
    kind: str = "search",
    timestamp_ms: int = JAN_1_2024_MS,
    *,
    user_id: str = "u1",
    session_id: str = "s1",
    **metadata: object,
) -> UserInteraction:
    return UserInteraction(
        user_id=user_id,
        session_id=session_id,
        interaction_type=kind,
        timestamp_ms=timestamp_ms,
        metadata=dict(metadata),
    )


def test_log_is_capped_fifo() -> None:
    tracker = InteractionTracker(max_records=3)

    for i in range(5):
        tracker.track(_interaction(timestamp_ms=i))

    assert len(tracker) == 3
    assert [item.timestamp_ms for item in tracker.interactions()] == [2, 3, 4]


def test_default_cap_is_ten_thousand() -> None:
    tracker = InteractionTracker()

    for i in range(10_005):
        tracker.track(_interaction(timestamp_ms=i))

    assert len(tracker) == 10_000
    assert tracker.interactions()[0].timestamp_ms == 5


def test_record_uses_clock_unless_timestamp_given() -> None:
    tracker = InteractionTracker(clock=lambda: 42)

    stamped = tracker.record("u1", "s1", "view", {"document_id": "d"})
    explicit = tracker.record("u1", "s1", "view", timestamp_ms=7)

    assert stamped.timestamp_ms == 42
    assert stamped.metadata == {"document_id": "d"}
    assert explicit.timestamp_ms == 7
    assert explicit.metadata == {}


def test_empty_analytics_defaults() -> None:
    analytics = InteractionTracker().interaction_analytics()

    assert analytics.total_interactions == 0
    assert analytics.average_session_duration_ms == 0.0
    assert analytics.interactions_over_time == []
    assert analytics.interactions_by_type == []


def test_interaction_analytics_counts_by_day_and_type() -> None:
    tracker = InteractionTracker()
    tracker.track(_interaction("search", JAN_1_2024_MS + DAY_MS))
    tracker.track(_interaction("view", JAN_1_2024_MS))
    tracker.track(_interaction("search", JAN_1_2024_MS + DAY_MS + 1))

    analytics = tracker.interaction_analytics()

    assert analytics.total_interactions == 3
    assert analytics.interactions_over_time == [
        DailyCount(date="2024-01-01", count=1),
        DailyCount(date="2024-01-02", count=2),
    ]
    assert analytics.interactions_by_type == [TypeCount(type="search", count=2), TypeCount(type="view", count=1)]


def test_session_duration_skips_single_and_overlong_sessions() -> None:
    tracker = InteractionTracker()
    # 10 minutes
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS, session_id="a"))
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS + 600_000, session_id="a"))
    # 30 minutes, out of order
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS + 1_800_000, session_id="b"))
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS, session_id="b"))
    # single interaction
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS, session_id="c"))
    # exactly two hours
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS, session_id="d"))
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS + 2 * HOUR_MS, session_id="d"))

    analytics = tracker.interaction_analytics()

    assert analytics.average_session_duration_ms == pytest.approx((600_000 + 1_800_000) / 2)


def test_analytics_filters_by_period_and_user() -> None:
    tracker = InteractionTracker()
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS, user_id="u1"))
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS + DAY_MS, user_id="u1"))
    tracker.track(_interaction(timestamp_ms=JAN_1_2024_MS + DAY_MS, user_id="u2"))

    second_day = AnalyticsPeriod(start_ms=JAN_1_2024_MS + DAY_MS, end_ms=JAN_1_2024_MS + 2 * DAY_MS)

    assert tracker.interaction_analytics(second_day).total_interactions == 2
    assert tracker.interaction_analytics(second_day, user_id="u1").total_interactions == 1
    assert tracker.interaction_analytics(AnalyticsPeriod(end_ms=JAN_1_2024_MS)).total_interactions == 1
    assert tracker.interaction_analytics(user_id="nobody").total_interactions == 0


def test_feedback_is_recorded_in_its_own_session() -> None:
    tracker = InteractionTracker(clock=lambda: 1_000)

    feedback = tracker.record_feedback("doc-1", "q-1", "u1", 5, "helpful")

    assert feedback.interaction_type == "feedback"
    assert feedback.session_id == "session_u1_1000"
    assert feedback.metadata == {"document_id": "doc-1", "query_id": "q-1", "rating": 5, "comments": "helpful"}


@pytest.mark.parametrize("rating", [0, 6])
def test_feedback_rating_out_of_range_rejected(rating: int) -> None:
    with pytest.raises(ValueError):
        InteractionTracker().record_feedback("doc-1", "q-1", "u1", rating)


def test_feedback_rating_and_click_through_rate() -> None:
    tracker = InteractionTracker()
    tracker.record_feedback("doc-1", "q-1", "u1", 5)
    tracker.record_feedback("doc-1", "q-2", "u2", 3)
    tracker.record_feedback("doc-2", "q-3", "u3", 1)
    tracker.track(_interaction("search", results=["doc-1", "doc-2"]))
    tracker.track(_interaction("search", results=["doc-1"]))
    tracker.track(_interaction("search", results="doc-1"))
    tracker.track(_interaction("view", document_id="doc-1"))

    assert tracker.feedback_rating("doc-1") == pytest.approx(4.0)
    assert tracker.feedback_rating("unknown") == 0.0
    assert tracker.click_through_rate("doc-1") == pytest.approx(0.5)
    assert tracker.click_through_rate("doc-2") == 0.0
    assert tracker.click_through_rate("unknown") == 0.0


def test_max_records_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InteractionTracker(max_records=0)
