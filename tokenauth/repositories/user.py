"""User repository for persistence and authentication utilities."""

from __future__ import annotations

from typing import cast

from sqlalchemy import or_, select

from tokenauth.models.user import User
from tokenauth.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Persistence-only repository for :class:`User`.

    This repository focuses on safe lookup and password verification.
    It NEVER issues tokens, only DB-level user access.
    """

    model = User

    # ---------------------------- Lookup helpers ----------------------------

    def get_by_email(self, email: str) -> User | None:
        """Fetch a user by email (case-insensitive).

        :param email: Email address to normalise and search.
        :type email: str
        :returns: User instance or ``None`` when not found.
        :rtype: User | None
        """
        stmt = select(User).where(User.email == email.lower().strip())
        result = self.session.execute(stmt).scalars().first()
        return cast(User | None, result)

    def get_by_username(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username.strip())
        result = self.session.execute(stmt).scalars().first()
        return cast(User | None, result)

    def get_by_identifier(self, identifier: str) -> User | None:
        """Fetch a user by email or username.

        :param identifier: Email (matched case-insensitively) or username.
        :type identifier: str
        :returns: User instance or ``None``.
        :rtype: User | None
        """
        value = identifier.strip()
        if not value:
            return None
        stmt = select(User).where(or_(User.email == value.lower(), User.username == value))
        result = self.session.execute(stmt).scalars().first()
        return cast(User | None, result)

    # ---------------------------- Password ops ----------------------------

    def authenticate(self, identifier: str, password: str) -> User | None:
        """Authenticate a user by email/username and password.

        :param identifier: Email or username.
        :type identifier: str
        :param password: Raw password to verify.
        :type password: str
        :returns: Authenticated user or ``None`` when credentials fail.
        :rtype: User | None
        """
        user = self.get_by_identifier(identifier)
        if not user or not user.verify_password(password):
            return None
        return user
