"""FastAPI entrypoint for retrieval, search and analytics endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import fields, is_dataclass
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from knowledge_engine.analytics.interactions import AnalyticsPeriod, InteractionTracker, InteractionType
from knowledge_engine.analytics.usage import UsageTracker
from knowledge_engine.config import (
    EngineSettings,
    HybridSearchParams,
    QueryProcessingConfig,
    RetrievalOptions,
    SearchParams,
)
from knowledge_engine.errors import DocumentNotFoundError, InvalidFilterError, RetrievalError
from knowledge_engine.obs.logging import configure_logging
from knowledge_engine.query.processor import DefaultQueryProcessor
from knowledge_engine.retrieval.retriever import KnowledgeRetriever
from knowledge_engine.retrieval.vector_store import (
    HttpVectorIndex,
    InMemoryVectorIndex,
    VectorIndex,
)
from knowledge_engine.types import VectorCandidate

logger = structlog.get_logger(__name__)


class FragmentIn(BaseModel):
    id: str = Field(min_length=1)
    text: str
    document_name: str = "Untitled Document"
    metadata: dict[str, Any] = Field(default_factory=dict)


class LoadFragmentsRequest(BaseModel):
    workspace_id: str = Field(min_length=1)
    fragments: list[FragmentIn]


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    options: RetrievalOptions


class SimilarDocumentsRequest(BaseModel):
    workspace_id: str = Field(min_length=1)
    document_id: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class InteractionIn(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    interaction_type: InteractionType
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp_ms: int | None = Field(default=None, ge=0)


class FeedbackIn(BaseModel):
    document_id: str = Field(min_length=1)
    query_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    comments: str | None = None


def to_jsonable(value: Any) -> Any:
    """Plain JSON structure for result dataclasses, including read-only mappings."""

    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_jsonable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value


def _period(start: datetime | None, end: datetime | None) -> AnalyticsPeriod | None:
    if start is None and end is None:
        return None
    return AnalyticsPeriod(
        start_ms=int(start.timestamp() * 1000) if start is not None else None,
        end_ms=int(end.timestamp() * 1000) if end is not None else None,
    )


def build_retriever(settings: EngineSettings, index: VectorIndex | None = None) -> KnowledgeRetriever:
    """Wire the retriever and its collaborators from settings."""

    if index is None:
        index = (
            HttpVectorIndex(settings.vector_index_url)
            if settings.vector_index_url
            else InMemoryVectorIndex()
        )
    return KnowledgeRetriever(
        index,
        query_processor=DefaultQueryProcessor(
            QueryProcessingConfig(max_logged_queries=settings.query_log_max_records)
        ),
        usage_tracker=UsageTracker(max_records=settings.usage_log_max_records),
        interaction_tracker=InteractionTracker(max_records=settings.interaction_log_max_records),
        context_sort_key=settings.context_sort_key,
        search_timeout=settings.search_timeout_seconds,
    )


def create_app(
    retriever: KnowledgeRetriever | None = None,
    settings: EngineSettings | None = None,
) -> FastAPI:
    settings = settings or EngineSettings()
    configure_logging(settings.service_name, settings.log_level, settings.log_format)

    owns_index = retriever is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Only an index built here is ours to close.
        close = getattr(app.state.retriever.index, "aclose", None)
        if owns_index and close is not None:
            await close()
            logger.info("vector_index_closed")

    app = FastAPI(title="Knowledge Retrieval Engine", version="0.1.0", lifespan=lifespan)
    app.state.retriever = retriever or build_retriever(settings)

    def _retriever(request: Request) -> KnowledgeRetriever:
        return request.app.state.retriever

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        current = _retriever(request)
        return {
            "status": "ok",
            "index": type(current.index).__name__,
            "usage_records": len(current.usage_tracker),
        }

    @app.post("/fragments")
    def load_fragments(request: Request, body: LoadFragmentsRequest) -> dict[str, Any]:
        index = _retriever(request).index
        if not isinstance(index, InMemoryVectorIndex):
            raise HTTPException(status_code=409, detail="Configured index does not accept fragments")
        index.add_fragments(
            body.workspace_id,
            [
                VectorCandidate(
                    id=item.id,
                    text=item.text,
                    document_name=item.document_name,
                    similarity=0.0,
                    metadata=item.metadata,
                )
                for item in body.fragments
            ],
        )
        return {"fragments_loaded": len(body.fragments), "total": index.fragment_count(body.workspace_id)}

    @app.post("/retrieve")
    async def retrieve(request: Request, body: RetrieveRequest) -> dict[str, Any]:
        try:
            result = await _retriever(request).retrieve_knowledge(body.query, body.options)
        except InvalidFilterError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RetrievalError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return to_jsonable(result)

    @app.post("/search/semantic")
    async def search_semantic(request: Request, body: SearchParams) -> dict[str, Any]:
        try:
            fragments = await _retriever(request).semantic_search(body)
        except InvalidFilterError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RetrievalError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"items": [to_jsonable(fragment) for fragment in fragments]}

    @app.post("/search/hybrid")
    async def search_hybrid(request: Request, body: HybridSearchParams) -> dict[str, Any]:
        try:
            fragments = await _retriever(request).hybrid_search(body)
        except InvalidFilterError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RetrievalError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"items": [to_jsonable(fragment) for fragment in fragments]}

    @app.post("/documents/similar")
    async def similar_documents(request: Request, body: SimilarDocumentsRequest) -> dict[str, Any]:
        try:
            fragments = await _retriever(request).find_similar_documents(
                body.workspace_id,
                body.document_id,
                limit=body.limit,
                threshold=body.threshold,
            )
        except DocumentNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except RetrievalError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"items": [to_jsonable(fragment) for fragment in fragments]}

    @app.get("/analytics/documents")
    def document_analytics(request: Request, document_id: str | None = None) -> dict[str, Any]:
        return to_jsonable(_retriever(request).get_document_usage_analytics(document_id))

    @app.get("/analytics/top-documents")
    def top_documents(
        request: Request,
        limit: int = Query(default=10, ge=1, le=100),
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        documents = _retriever(request).get_top_performing_documents(limit, workspace_id)
        return {"items": [to_jsonable(document) for document in documents]}

    @app.get("/analytics/documents/{document_id}/performance")
    def document_performance(request: Request, document_id: str) -> dict[str, Any]:
        return to_jsonable(_retriever(request).get_document_performance_metrics(document_id))

    @app.post("/interactions")
    def track_interaction(request: Request, body: InteractionIn) -> dict[str, Any]:
        interaction = _retriever(request).track_user_interaction(
            body.user_id,
            body.session_id,
            body.interaction_type,
            body.metadata,
            timestamp_ms=body.timestamp_ms,
        )
        return to_jsonable(interaction)

    @app.post("/feedback")
    def record_feedback(request: Request, body: FeedbackIn) -> dict[str, Any]:
        interaction = _retriever(request).record_user_feedback(
            body.document_id, body.query_id, body.user_id, body.rating, body.comments
        )
        return to_jsonable(interaction)

    @app.get("/analytics/interactions")
    def interaction_analytics(
        request: Request,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        stats = _retriever(request).get_user_interaction_analytics(_period(start, end), user_id)
        return to_jsonable(stats)

    @app.get("/analytics/knowledge")
    def knowledge_report(
        request: Request,
        workspace_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        report = _retriever(request).get_knowledge_analytics(workspace_id, _period(start, end))
        return to_jsonable(report)

    @app.get("/analytics/queries")
    def query_analytics(request: Request, workspace_id: str | None = None) -> dict[str, Any]:
        processor = _retriever(request).query_processor
        if not isinstance(processor, DefaultQueryProcessor):
            raise HTTPException(status_code=404, detail="Query analytics unavailable")
        return processor.query_analytics(workspace_id)

    @app.get("/filters")
    def filters() -> dict[str, Any]:
        return {"items": KnowledgeRetriever.available_filters()}

    logger.info("app_created", index=type(app.state.retriever.index).__name__)
    return app


app = create_app()
