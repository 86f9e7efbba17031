"""Unit of Work abstractions and concrete implementations.

This package re-exports the SQLAlchemy-backed unit of work used by the SQL
token stores and credential checker, alongside the abstract contract.
"""

from .base import SupportsCommit, UnitOfWork
from .sqlalchemy_uow import SQLAlchemyRepositoryContainer, SQLAlchemyUnitOfWork

__all__ = [
    "SupportsCommit",
    "UnitOfWork",
    "SQLAlchemyRepositoryContainer",
    "SQLAlchemyUnitOfWork",
]
