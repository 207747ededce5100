"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .stores import GenreStore, Repository, ReservationStore, StallStore, UnitOfWork
from .notifier import ConfirmationMessage, Notifier

__all__ = [
    'ConfirmationMessage',
    'GenreStore',
    'Notifier',
    'Repository',
    'ReservationStore',
    'StallStore',
    'UnitOfWork',
]
