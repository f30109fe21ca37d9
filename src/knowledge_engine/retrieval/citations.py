"""User-facing citations derived from ranked fragments."""

from __future__ import annotations

from knowledge_engine.types import Citation, RankedFragment, freeze_mapping

CITATION_TEXT_LIMIT = 200


def generate_citations(fragments: list[RankedFragment]) -> list[Citation]:
    """One citation per fragment, in input order."""

    return [
        Citation(
            id=f"cite-{fragment.id}",
            document_id=fragment.id,
            document_name=fragment.document_name,
            text=_truncate(fragment.text, CITATION_TEXT_LIMIT),
            relevance_score=fragment.similarity,
            metadata=freeze_mapping(fragment.metadata),
        )
        for fragment in fragments
    ]


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
