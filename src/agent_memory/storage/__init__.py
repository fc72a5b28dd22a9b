"""
Storage modules for agent-memory.

Chunk records live in SQLite with an HNSW index over their embeddings.
"""

from agent_memory.storage.record_store import Record, RecordStore

__all__ = [
    "Record",
    "RecordStore",
]
