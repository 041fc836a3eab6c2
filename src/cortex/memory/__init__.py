"""Agent memory: persistence, lexical relevance, and consolidation."""

from cortex.memory.backends import (
    InMemoryBackend,
    JsonFileBackend,
    KeyValueBackend,
    RedisBackend,
    build_backend,
)
from cortex.memory.consolidation import (
    ConsolidationError,
    ConsolidationSchedule,
    Consolidator,
)
from cortex.memory.relevance import (
    BestMatch,
    RelevanceResult,
    ScoredCandidate,
    best_match,
    rank,
    top_k,
)
from cortex.memory.store import MemoryRecord, MemoryStore, MemoryStoreError, namespace_key

__all__ = [
    "BestMatch",
    "ConsolidationError",
    "ConsolidationSchedule",
    "Consolidator",
    "InMemoryBackend",
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryRecord",
    "MemoryStore",
    "MemoryStoreError",
    "RedisBackend",
    "RelevanceResult",
    "ScoredCandidate",
    "best_match",
    "build_backend",
    "namespace_key",
    "rank",
    "top_k",
]
