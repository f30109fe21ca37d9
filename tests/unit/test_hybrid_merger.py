import pytest

from knowledge_engine.errors import RetrievalError
from knowledge_engine.retrieval.hybrid import HybridMerger, candidate_pool, combined_score
from knowledge_engine.retrieval.keyword import KeywordScorer
from knowledge_engine.types import RankedFragment, VectorCandidate


class RecordingIndex:
    def __init__(self, candidates: list[VectorCandidate]) -> None:
        self.candidates = candidates
        self.calls: list[tuple[str, str, int, float]] = []

    async def vector_search(
        self, workspace_id: str, query: str, limit: int, threshold: float
    ) -> list[VectorCandidate]:
        self.calls.append((workspace_id, query, limit, threshold))
        return list(self.candidates[:limit])


class FailingIndex:
    async def vector_search(
        self, workspace_id: str, query: str, limit: int, threshold: float
    ) -> list[VectorCandidate]:
        raise ConnectionError("index unreachable")


class FixedKeywordScorer(KeywordScorer):
    def __init__(self, scores: dict[str, float]) -> None:
        super().__init__()
        self.scores = scores
        self.seen: list[str] = []

    def score(self, query, fragments, *, exact_match=False):
        self.seen = [fragment.id for fragment in fragments]
        return [
            RankedFragment(
                id=fragment.id,
                text=fragment.text,
                document_name=fragment.document_name,
                similarity=fragment.similarity,
                metadata=fragment.metadata,
                keyword_score=self.scores.get(fragment.id),
            )
            for fragment in fragments
        ]


def _candidate(fragment_id: str, similarity: float, **metadata: object) -> VectorCandidate:
    return VectorCandidate(
        id=fragment_id,
        text=f"text of {fragment_id}",
        document_name=f"{fragment_id}.md",
        similarity=similarity,
        metadata=dict(metadata),
    )


def test_combined_score_formula() -> None:
    assert combined_score(0.8, 0.4, 0.3) == pytest.approx(0.68)
    assert combined_score(0.8, None, 0.3) == pytest.approx(0.56)


def test_combined_score_monotonic_in_keyword_weight() -> None:
    weights = [0.0, 0.25, 0.5, 0.75, 1.0]

    rising = [combined_score(0.4, 0.9, w) for w in weights]
    falling = [combined_score(0.9, 0.4, w) for w in weights]
    flat = [combined_score(0.5, 0.5, w) for w in weights]

    assert rising == sorted(rising) and len(set(rising)) == len(rising)
    assert falling == sorted(falling, reverse=True) and len(set(falling)) == len(falling)
    assert all(value == pytest.approx(0.5) for value in flat)


def test_candidate_pool_widens_limit_and_relaxes_threshold() -> None:
    assert candidate_pool(5, 0.7) == (20, pytest.approx(0.6))
    assert candidate_pool(10, 0.9) == (30, pytest.approx(0.8))
    assert candidate_pool(2, 0.55) == (20, 0.5)


@pytest.mark.asyncio
async def test_hybrid_search_requests_widened_pool() -> None:
    index = RecordingIndex([_candidate("a", 0.9)])

    await HybridMerger().search(index, "query", "ws", limit=5, threshold=0.7)

    [(_, _, limit, threshold)] = index.calls
    assert limit >= 20
    assert threshold <= 0.6 + 1e-9


@pytest.mark.asyncio
async def test_hybrid_ranking_end_to_end_scenario() -> None:
    index = RecordingIndex(
        [_candidate("frag1", 0.9), _candidate("frag2", 0.6), _candidate("frag3", 0.75)]
    )
    merger = HybridMerger(FixedKeywordScorer({"frag1": 0.2, "frag2": 0.9, "frag3": 0.5}))

    results = await merger.search(index, "q", "ws", limit=2, keyword_weight=0.5)

    assert [item.id for item in results] == ["frag2", "frag3"]
    assert results[0].combined_score == pytest.approx(0.75)
    assert results[1].combined_score == pytest.approx(0.625)


@pytest.mark.asyncio
async def test_ties_keep_candidate_order() -> None:
    index = RecordingIndex([_candidate(f"c{i}", 0.8) for i in range(5)])
    merger = HybridMerger(FixedKeywordScorer({}))

    results = await merger.search(index, "q", "ws", limit=5)

    assert [item.id for item in results] == ["c0", "c1", "c2", "c3", "c4"]


@pytest.mark.asyncio
async def test_filters_apply_before_keyword_scoring() -> None:
    index = RecordingIndex(
        [_candidate("keep", 0.9, category="guide"), _candidate("drop", 0.95, category="faq")]
    )
    scorer = FixedKeywordScorer({"keep": 1.0, "drop": 1.0})

    results = await HybridMerger(scorer).search(index, "q", "ws", filters={"category": "guide"})

    assert scorer.seen == ["keep"]
    assert [item.id for item in results] == ["keep"]


@pytest.mark.asyncio
async def test_missing_keyword_score_counts_as_zero() -> None:
    index = RecordingIndex([_candidate("a", 0.8)])

    [result] = await HybridMerger(FixedKeywordScorer({})).search(index, "q", "ws", keyword_weight=0.5)

    assert result.combined_score == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_index_failure_surfaces_as_retrieval_error() -> None:
    with pytest.raises(RetrievalError) as excinfo:
        await HybridMerger().search(FailingIndex(), "q", "ws")

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert "index unreachable" in str(excinfo.value)
