"""
Repository factory.
Configures which store implementation backs the allocation engine.
"""

from typing import Optional

from stall_booking.core.config import Settings, get_settings
from stall_booking.core.logging import get_logger
from stall_booking.db.session import get_engine, make_session_factory
from stall_booking.infrastructure.memory_store import MemoryRepository
from stall_booking.infrastructure.sql_store import SqlRepository
from stall_booking.services.interfaces.stores import Repository

logger = get_logger(__name__)


def build_repository(settings: Settings) -> Repository:
    """
    Build the configured repository.

    Backend selection via STORE_BACKEND:
    - sql: PostgreSQL through SQLAlchemy (default, multi-process safe)
    - memory: in-process arena (single worker, state lost on restart)
    """
    backend = settings.STORE_BACKEND.lower()

    if backend == "memory":
        logger.warning("memory_store_selected", message="State is not persisted")
        return MemoryRepository()
    if backend == "sql":
        return SqlRepository(make_session_factory(get_engine()))

    raise ValueError(f"Unknown STORE_BACKEND {settings.STORE_BACKEND!r}")


# Singleton instance
_repository: Optional[Repository] = None


def get_repository() -> Repository:
    """Get repository singleton."""
    global _repository
    if _repository is None:
        _repository = build_repository(get_settings())
    return _repository


async def close_repository() -> None:
    global _repository
    if _repository is not None:
        await _repository.close()
        _repository = None
