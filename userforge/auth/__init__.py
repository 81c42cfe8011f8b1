"""Authentication: password hashing, bearer tokens and the account service"""

from .passwords import hash_password, verify_password
from .tokens import TokenClaims, TokenService

__all__ = [
    "hash_password",
    "verify_password",
    "TokenClaims",
    "TokenService",
]
