import pytest

from knowledge_engine.agent.registry import ToolRegistry
from knowledge_engine.agent.tools import register_builtin_tools
from knowledge_engine.retrieval.retriever import KnowledgeRetriever
from knowledge_engine.types import ToolTrace, VectorCandidate


class StaticIndex:
    async def vector_search(
        self, workspace_id: str, query: str, limit: int, threshold: float
    ) -> list[VectorCandidate]:
        return [
            VectorCandidate(
                id="runbook",
                text="Rotate the search index keys every quarter.",
                document_name="runbook.md",
                similarity=0.92,
            )
        ][:limit]


@pytest.mark.asyncio
async def test_observer_sees_each_knowledge_search_call() -> None:
    registry = ToolRegistry()
    register_builtin_tools(registry, KnowledgeRetriever(StaticIndex()))
    observed: list[ToolTrace] = []
    registry.set_observer(observed.append)

    payload = {"query": "rotate index keys", "workspace_id": "ops", "top_k": 1}
    output = await registry.execute("knowledge_search", payload)
    await registry.execute("top_documents", {"limit": 1})
    registry.set_observer(None)
    await registry.execute("document_analytics", {})

    assert [trace.name for trace in observed] == ["knowledge_search", "top_documents"]
    search_trace = observed[0]
    assert search_trace.input_payload == payload
    assert search_trace.output_preview == output[:320]
    assert search_trace.output_preview.startswith("[cite-runbook] score=0.9200")
    assert search_trace.latency_ms >= 0.0
    assert observed[1].output_preview.startswith("runbook name=runbook.md uses=1")
