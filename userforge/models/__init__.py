"""Document models"""

from .user import ROLES, PUBLIC_FIELDS, User, user_to_public

__all__ = [
    "ROLES",
    "PUBLIC_FIELDS",
    "User",
    "user_to_public",
]
