"""
agent-memory

Semantic memory for source code. Splits files into syntax-aware chunks,
embeds them locally and stores them for similarity search.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "MemoryService",
]

from agent_memory.config import Config
from agent_memory.service import MemoryService
