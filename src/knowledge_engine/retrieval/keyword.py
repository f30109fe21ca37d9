"""Lexical relevance scoring with highlight extraction."""

from __future__ import annotations

from dataclasses import replace

from knowledge_engine.types import RankedFragment

MIN_TERM_LENGTH = 3
MAX_HIGHLIGHTS = 3
EXACT_WINDOW = 30
TERM_WINDOW = 20


class KeywordScorer:
    """Scores fragments by substring overlap with the query.

    Term mode counts how many query terms (of at least three characters)
    occur in the fragment and divides by the number of terms in the query,
    short terms included. Exact mode gives 1.0 only when the whole query
    occurs verbatim.
    """

    def __init__(self, *, min_term_length: int = MIN_TERM_LENGTH, max_highlights: int = MAX_HIGHLIGHTS) -> None:
        self.min_term_length = min_term_length
        self.max_highlights = max_highlights

    def score(
        self,
        query: str,
        fragments: list[RankedFragment],
        *,
        exact_match: bool = False,
    ) -> list[RankedFragment]:
        normalized = query.lower().strip()
        terms = normalized.split()
        scored: list[RankedFragment] = []
        for fragment in fragments:
            if exact_match:
                value, highlights = self._score_exact(normalized, fragment.text)
            else:
                value, highlights = self._score_terms(terms, fragment.text)
            scored.append(
                replace(
                    fragment,
                    keyword_score=value,
                    highlights=tuple(highlights[: self.max_highlights]),
                )
            )
        return scored

    def _score_exact(self, normalized_query: str, text: str) -> tuple[float, list[str]]:
        if not normalized_query:
            return 0.0, []
        lowered, offsets = _lower_with_offsets(text)
        index = lowered.find(normalized_query)
        if index < 0:
            return 0.0, []
        return 1.0, [_highlight(text, offsets, index, len(normalized_query), EXACT_WINDOW)]

    def _score_terms(self, terms: list[str], text: str) -> tuple[float, list[str]]:
        if not terms:
            return 0.0, []
        lowered, offsets = _lower_with_offsets(text)
        matched = 0
        highlights: list[str] = []
        for term in terms:
            if len(term) < self.min_term_length:
                continue
            index = lowered.find(term)
            if index < 0:
                continue
            matched += 1
            highlights.append(_highlight(text, offsets, index, len(term), TERM_WINDOW))
        return matched / len(terms), highlights


def _lower_with_offsets(text: str) -> tuple[str, list[int] | None]:
    """Lowercase `text` and map each lowered position back to `text`.

    The map is None when lowercasing keeps every character's width, which
    is the common case. Some characters (e.g. "\u0130") lowercase to two
    code points and shift every later position.
    """

    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered, None
    offsets: list[int] = []
    for position, char in enumerate(text):
        offsets.extend([position] * len(char.lower()))
    offsets.append(len(text))
    return lowered, offsets


def _highlight(text: str, offsets: list[int] | None, index: int, length: int, window: int) -> str:
    if offsets is not None:
        match_end = offsets[index + length - 1] + 1
        index = offsets[index]
        length = match_end - index
    start = max(0, index - window)
    end = min(len(text), index + length + window)
    return f"...{text[start:end]}..."
