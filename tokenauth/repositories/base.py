"""Generic repository base for SQLAlchemy 2.x aggregates.

Repositories stay persistence-only: no token policy, no commit/rollback. The
store adapters under ``tokenauth.infra.sqlalchemy`` own the Unit of Work and
call repositories inside it.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar, cast

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session

from tokenauth.core.extensions import db

E = TypeVar("E")  # SQLAlchemy mapped entity type


class BaseRepository(Generic[E]):
    """Persistence-only repository for a single aggregate.

    Subclasses set ``model`` and add their own lookups and set-based
    statements on top of :meth:`add` and :meth:`get`.
    """

    #: SQLAlchemy mapped model (must be set by subclasses)
    model: type[E]

    def __init__(self, session: Session | None = None) -> None:
        """
        :param session: Session shared across a Unit of Work; when omitted
            the Flask-scoped ``db.session`` is used.
        :type session: :class:`sqlalchemy.orm.Session` | None
        """
        self._session: Session | None = session

    @property
    def session(self) -> Session:
        """Injected session, else the Flask-scoped one."""
        if self._session is not None:
            return self._session
        return cast(Session, db.session)

    def _pk_attr(self) -> InstrumentedAttribute[Any] | None:
        return getattr(self.model, "id", None)

    # --------------------------------- CRUD ----------------------------------

    def add(self, instance: E) -> E:
        """Stage ``instance`` and flush so constraints fire and the PK is set.

        :raises sqlalchemy.exc.IntegrityError: On a unique/check violation.
        """
        self.session.add(instance)
        self.flush()
        return instance

    def get(self, entity_id: Any) -> E | None:
        """Fetch by primary key, ``None`` when absent."""
        pk = self._pk_attr()
        if pk is None:
            raise RuntimeError(f"{type(self).__name__}.get requires an 'id' primary key.")
        stmt = select(self.model).where(pk == entity_id)
        return cast(E | None, self.session.execute(stmt).scalars().first())

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.session.flush()
