"""
User management operations behind /api/users.

Authorization rules that depend on who is acting live here rather than in
the routes:
- non-admins may only update their own record
- each role has an allow-list of mutable fields; password and role are
  never changed through this path
- admins cannot delete or deactivate their own account
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from userforge.auth.passwords import DEFAULT_ROUNDS, hash_password
from userforge.models.user import PUBLIC_FIELDS, User
from userforge.utils.exceptions import AuthorizationError, NotFoundError, ValidationError
from userforge.utils.logger import get_logger

from .query_builder import QueryParams, UserQuery, build_user_query
from .user_store import UserStore, is_valid_id

logger = get_logger(__name__)

INVALID_ID_MESSAGE = "Invalid user ID format"
NOT_FOUND_MESSAGE = "User not found"

# API attribute names each role may change through update_user
MUTABLE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "user": ("name", "email", "age"),
    "admin": ("name", "email", "age", "isActive"),
}

# Accepted in update payloads but silently dropped
STRIPPED_FIELDS = ("password", "role")


def _check_id(user_id: str) -> None:
    if not is_valid_id(user_id):
        raise ValidationError(
            INVALID_ID_MESSAGE,
            errors=[{"field": "id", "message": INVALID_ID_MESSAGE, "value": user_id}],
        )


class UserService:
    def __init__(self, store: UserStore, bcrypt_rounds: int = DEFAULT_ROUNDS):
        self.store = store
        self.bcrypt_rounds = bcrypt_rounds

    def list_users(self, params: QueryParams) -> Tuple[List[User], int, UserQuery]:
        """Validate query parameters and return (page of users, total, query)"""
        query = build_user_query(params)
        users, total = self.store.list_users(query)
        return users, total, query

    def get_user(self, user_id: str) -> User:
        _check_id(user_id)
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return user

    def create_user(
        self,
        actor: User,
        name: str,
        email: str,
        password: str,
        age: Optional[int] = None,
        role: str = "user",
        is_active: bool = True,
    ) -> User:
        """Create a user on behalf of an admin"""
        user = self.store.create_user(
            name=name,
            email=email,
            age=age,
            role=role,
            is_active=is_active,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
        )
        logger.info("User created", user_id=user.user_id, created_by=actor.user_id, role=role)
        return user

    def _filter_updates(self, actor: User, payload: Mapping[str, Any]) -> Dict[str, Any]:
        allowed = MUTABLE_FIELDS.get(actor.role, MUTABLE_FIELDS["user"])
        updates: Dict[str, Any] = {}
        errors: List[Dict[str, Any]] = []
        for key, value in payload.items():
            if key in STRIPPED_FIELDS:
                continue
            if key not in allowed:
                errors.append({"field": key, "message": f"Field '{key}' cannot be updated", "value": value})
                continue
            updates[PUBLIC_FIELDS[key]] = value
        if errors:
            raise ValidationError("Validation error", errors=errors)
        return updates

    def update_user(self, actor: User, user_id: str, payload: Mapping[str, Any]) -> User:
        """
        Apply a partial update.

        Raises:
            ValidationError: malformed id, or a field outside the caller's allow-list
            AuthorizationError: non-admin updating someone else
            NotFoundError: no such user
        """
        _check_id(user_id)
        if not actor.is_admin and actor.user_id != user_id:
            raise AuthorizationError("You can only update your own profile")

        updates = self._filter_updates(actor, payload)
        if actor.user_id == user_id and updates.get("is_active") is False:
            raise ValidationError("Cannot deactivate your own account")

        user = self.store.update_user(user_id, **updates)
        if user is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        logger.info("User updated", user_id=user_id, updated_by=actor.user_id, fields=sorted(updates))
        return user

    def delete_user(self, actor: User, user_id: str) -> None:
        _check_id(user_id)
        if actor.user_id == user_id:
            raise ValidationError("Cannot delete your own account")
        if not self.store.delete_user(user_id):
            raise NotFoundError(NOT_FOUND_MESSAGE)
        logger.info("User deleted", user_id=user_id, deleted_by=actor.user_id)

    def deactivate_user(self, actor: User, user_id: str) -> User:
        _check_id(user_id)
        if actor.user_id == user_id:
            raise ValidationError("Cannot deactivate your own account")
        user = self.store.update_user(user_id, is_active=False)
        if user is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        logger.info("User deactivated", user_id=user_id, deactivated_by=actor.user_id)
        return user
