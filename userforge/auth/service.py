"""
Account service: registration, login and password change.

Passwords are stored only as bcrypt hashes. Every successful registration,
login and password change returns a fresh bearer token.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from userforge.models.base import utcnow
from userforge.models.user import User
from userforge.services.user_store import UserStore
from userforge.utils.exceptions import AuthenticationError, ValidationError
from userforge.utils.logger import get_logger

from .passwords import DEFAULT_ROUNDS, hash_password, verify_password
from .tokens import TokenService

logger = get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
DEACTIVATED_MESSAGE = "Your account has been deactivated"


@dataclass
class AuthResult:
    user: User
    token: str


class AuthService:
    def __init__(self, store: UserStore, tokens: TokenService, bcrypt_rounds: int = DEFAULT_ROUNDS):
        self.store = store
        self.tokens = tokens
        self.bcrypt_rounds = bcrypt_rounds

    def _issue(self, user: User) -> str:
        return self.tokens.issue(user.user_id, role=user.role)

    def register(self, name: str, email: str, password: str, age: Optional[int] = None) -> AuthResult:
        """
        Create a regular user account.

        Raises:
            ConflictError: email already registered
        """
        user = self.store.create_user(
            name=name,
            email=email,
            age=age,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            role="user",
        )
        logger.info("User registered", user_id=user.user_id)
        return AuthResult(user=user, token=self._issue(user))

    def login(self, email: str, password: str) -> AuthResult:
        """
        Check credentials and stamp last_login.

        Unknown email and wrong password are indistinguishable to the caller.
        The deactivation check only runs after the password matched.
        """
        user = self.store.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt")
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        if not user.is_active:
            logger.warning("Login attempt on deactivated account", user_id=user.user_id)
            raise AuthenticationError(DEACTIVATED_MESSAGE)

        user = self.store.update_user(user.user_id, last_login=utcnow())
        logger.info("User logged in", user_id=user.user_id)
        return AuthResult(user=user, token=self._issue(user))

    def change_password(self, user: User, current_password: str, new_password: str) -> AuthResult:
        """
        Replace the caller's password after re-checking the current one.

        Raises:
            ValidationError: current password wrong, or new equals current
        """
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(
                "Current password is incorrect",
                errors=[{"field": "currentPassword", "message": "Current password is incorrect"}],
            )
        if current_password == new_password:
            raise ValidationError(
                "New password must be different from the current password",
                errors=[{
                    "field": "newPassword",
                    "message": "New password must be different from the current password",
                }],
            )

        updated = self.store.update_user(
            user.user_id,
            password_hash=hash_password(new_password, rounds=self.bcrypt_rounds),
        )
        logger.info("Password changed", user_id=updated.user_id)
        return AuthResult(user=updated, token=self._issue(updated))
