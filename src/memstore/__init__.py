"""
memstore: a local, single-file memory engine for AI agents.

Stores short text records with a kind, an importance weight and a
hashing-based embedding, and answers similarity queries ranked by a blend
of vector closeness, weight and recency.
"""

from .config import MemstoreConfig, resolve_config
from .embedding import encode
from .errors import (
    ConcurrentModification,
    CorruptStore,
    MemstoreError,
    StoreIOError,
    ValidationError,
)
from .intelligence import ScoredRecord, compact, score
from .memory import MemoryManager
from .models import Record, Store
from .store import append, load, save

__all__ = [
    "MemoryManager",
    "MemstoreConfig",
    "resolve_config",
    "Record",
    "Store",
    "ScoredRecord",
    "encode",
    "score",
    "compact",
    "load",
    "save",
    "append",
    "MemstoreError",
    "CorruptStore",
    "ValidationError",
    "StoreIOError",
    "ConcurrentModification",
]
