"""Built-in tools wrapping the knowledge retriever."""

from __future__ import annotations

from pydantic import BaseModel, Field

from knowledge_engine.agent.registry import ToolRegistry, ToolSpec
from knowledge_engine.config import RetrievalOptions
from knowledge_engine.retrieval.retriever import KnowledgeRetriever

NO_RESULTS = "NO_RESULTS"


class KnowledgeSearchInput(BaseModel):
    query: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)
    use_hybrid_search: bool = True


class DocumentAnalyticsInput(BaseModel):
    document_id: str | None = None


class TopDocumentsInput(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)
    workspace_id: str | None = None


def register_builtin_tools(registry: ToolRegistry, retriever: KnowledgeRetriever) -> None:
    """Register the default tool set.

    Tools:
    - `knowledge_search`: full retrieval with citation-tagged snippets.
    - `document_analytics`: usage totals for one or all documents.
    - `top_documents`: most frequently retrieved documents.
    """

    async def _search(input_data: KnowledgeSearchInput) -> str:
        result = await retriever.retrieve_knowledge(
            input_data.query,
            RetrievalOptions(
                workspace_id=input_data.workspace_id,
                limit=input_data.top_k,
                use_hybrid_search=input_data.use_hybrid_search,
            ),
        )
        if not result.citations:
            return NO_RESULTS
        return "\n".join(
            f"[{citation.id}] score={citation.relevance_score:.4f} "
            f"{citation.text.replace(chr(10), ' ')}"
            for citation in result.citations
        )

    async def _analytics(input_data: DocumentAnalyticsInput) -> str:
        stats = retriever.get_document_usage_analytics(input_data.document_id)
        top = ", ".join(f"{item.query} ({item.count})" for item in stats.top_queries[:3])
        return (
            f"total_usage={stats.total_usage} "
            f"average_relevance={stats.average_relevance:.4f} "
            f"top_queries=[{top}]"
        )

    async def _top_documents(input_data: TopDocumentsInput) -> str:
        documents = retriever.get_top_performing_documents(input_data.limit, input_data.workspace_id)
        if not documents:
            return NO_RESULTS
        return "\n".join(
            f"{doc.document_id} name={doc.document_name} uses={doc.usage_count} "
            f"avg_relevance={doc.average_relevance:.4f}"
            for doc in documents
        )

    registry.register(
        ToolSpec(
            name="knowledge_search",
            description="Search workspace knowledge and return cited snippets.",
            args_schema=KnowledgeSearchInput,
            handler=_search,
            tags=["retrieval", "rag"],
        )
    )
    registry.register(
        ToolSpec(
            name="document_analytics",
            description="Report how often documents were retrieved and for which queries.",
            args_schema=DocumentAnalyticsInput,
            handler=_analytics,
            tags=["analytics"],
        )
    )
    registry.register(
        ToolSpec(
            name="top_documents",
            description="List the most frequently retrieved documents.",
            args_schema=TopDocumentsInput,
            handler=_top_documents,
            tags=["analytics"],
        )
    )
