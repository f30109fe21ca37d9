"""Greedy packing of ranked fragments into a length-bounded context string."""

from __future__ import annotations

from knowledge_engine.config import ContextSortKey
from knowledge_engine.types import RankedFragment

CONTEXT_SEPARATOR = "\n\n---\n\n"


def build_context(
    fragments: list[RankedFragment],
    max_length: int = 2000,
    *,
    sort_key: ContextSortKey = "similarity",
) -> str:
    """Concatenate the best fragments without exceeding `max_length`.

    Fragments are visited by descending `sort_key` (`combined_score` falls
    back to similarity for fragments that never went through the hybrid
    merger). A fragment that would overflow the budget is skipped, unless
    nothing has been taken yet: then its prefix fills the whole budget.
    The separator's length is charged against the budget.
    """

    if not fragments:
        return ""

    ordered = sorted(fragments, key=lambda fragment: _rank_value(fragment, sort_key), reverse=True)
    parts: list[str] = []
    length = 0
    for fragment in ordered:
        extra = len(fragment.text) + (len(CONTEXT_SEPARATOR) if parts else 0)
        if length + extra > max_length:
            if not parts and max_length > 0:
                parts.append(fragment.text[:max_length])
                break
            continue
        parts.append(fragment.text)
        length += extra
    return CONTEXT_SEPARATOR.join(parts)


def _rank_value(fragment: RankedFragment, sort_key: ContextSortKey) -> float:
    if sort_key == "combined_score" and fragment.combined_score is not None:
        return fragment.combined_score
    return fragment.similarity
