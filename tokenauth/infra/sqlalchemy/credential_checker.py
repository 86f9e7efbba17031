from __future__ import annotations

from tokenauth.models.user import User
from tokenauth.services._shared.ports import CredentialChecker, UserIdentity
from tokenauth.uow import SQLAlchemyUnitOfWork


def to_identity(user: User) -> UserIdentity:
    return UserIdentity(
        user_id=str(user.id),
        email=user.email,
        role=user.role,
        permissions=tuple(user.permissions or ()),
        is_active=bool(user.is_active),
    )


class SQLAlchemyCredentialChecker(CredentialChecker):
    """Check email/username + password against the ``users`` table (werkzeug hashes)."""

    def validate(self, identifier: str, secret: str) -> UserIdentity | None:
        with SQLAlchemyUnitOfWork() as uow:
            user = uow.users.authenticate(identifier, secret)
            return to_identity(user) if user else None

    def get_identity(self, user_id: str) -> UserIdentity | None:
        if not str(user_id).isdigit():
            return None
        with SQLAlchemyUnitOfWork() as uow:
            user = uow.users.get(int(user_id))
            return to_identity(user) if user else None
