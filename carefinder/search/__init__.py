from .filters import ProviderFilter, apply_filter, is_open_at
from .orchestrator import (
    SearchOrchestrator,
    SearchRequest,
    SearchResult,
    SearchState,
    SearchType,
    build_orchestrator,
)
from .store import MemoryProviderStore, PostgresProviderStore, ProviderStore

__all__ = [
    "MemoryProviderStore",
    "PostgresProviderStore",
    "ProviderFilter",
    "ProviderStore",
    "SearchOrchestrator",
    "SearchRequest",
    "SearchResult",
    "SearchState",
    "SearchType",
    "apply_filter",
    "build_orchestrator",
    "is_open_at",
]
