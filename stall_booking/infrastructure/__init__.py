"""
Infrastructure layer - storage backends behind the store interfaces.
Keeps business logic clean from implementation details.
"""

from .memory_store import MemoryArena, MemoryRepository
from .sql_store import SqlRepository

__all__ = ['MemoryArena', 'MemoryRepository', 'SqlRepository']
