"""Knowledge retrieval engine package."""

from .config import EngineSettings, RetrievalOptions

__all__ = ["EngineSettings", "RetrievalOptions"]
