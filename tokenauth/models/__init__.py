from tokenauth.models.refresh_token import RefreshToken
from tokenauth.models.revoked_token_family import RevokedTokenFamily
from tokenauth.models.token_blacklist import TokenBlacklist
from tokenauth.models.user import User

__all__ = [
    "RefreshToken",
    "RevokedTokenFamily",
    "TokenBlacklist",
    "User",
]
