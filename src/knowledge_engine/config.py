"""Configuration models for the retrieval engine."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ContextSortKey = Literal["similarity", "combined_score"]


class SearchParams(BaseModel):
    """Parameters for a plain semantic search."""

    query: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    filters: dict[str, Any] | None = None


class HybridSearchParams(SearchParams):
    """Parameters for semantic + keyword search."""

    limit: int = Field(default=10, ge=1)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    exact_match: bool = False


class RetrievalOptions(BaseModel):
    """Per-call options for `KnowledgeRetriever.retrieve_knowledge`."""

    workspace_id: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    use_hybrid_search: bool = True
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    include_metadata: bool = True
    include_source_text: bool = True
    max_context_length: int = Field(default=2000, ge=0)
    filters: dict[str, Any] | None = None
    exact_match: bool = False


class QueryProcessingConfig(BaseModel):
    """Configures query normalization, expansion and the query log."""

    enable_expansion: bool = True
    expansion_count: int = Field(default=3, ge=0)
    enable_logging: bool = True
    max_logged_queries: int = Field(default=1000, ge=1)


class EngineSettings(BaseSettings):
    """Process-level settings read from `KE_*` environment variables."""

    model_config = SettingsConfigDict(env_prefix="KE_", env_file=".env", extra="ignore")

    service_name: str = "knowledge-engine"
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    usage_log_max_records: int = Field(default=10_000, ge=1)
    query_log_max_records: int = Field(default=1000, ge=1)
    interaction_log_max_records: int = Field(default=10_000, ge=1)
    search_timeout_seconds: float | None = Field(default=None, gt=0.0)
    context_sort_key: ContextSortKey = "similarity"
    vector_index_url: str | None = None
