"""Multi-tenant hybrid product retrieval engine."""

from .config import EngineConfig
from .retrieval.coordinator import RetrievalCoordinator

__all__ = ["EngineConfig", "RetrievalCoordinator"]
