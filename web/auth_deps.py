"""
FastAPI dependencies for authentication and authorization.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool

from userforge.models.user import User
from userforge.utils.exceptions import AuthenticationError, AuthorizationError, InvalidTokenError
from userforge.utils.logger import get_logger

logger = get_logger(__name__)

NO_TOKEN_MESSAGE = "Access denied. No token provided."
USER_NOT_FOUND_MESSAGE = "Invalid token. User not found."
DEACTIVATED_MESSAGE = "Your account has been deactivated"
FORBIDDEN_MESSAGE = "You do not have permission to perform this action"


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the token from ``Authorization: Bearer <token>``"""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(request: Request) -> User:
    """Dependency resolving the bearer token to an active user"""
    token = get_bearer_token(request)
    if not token:
        raise AuthenticationError(NO_TOKEN_MESSAGE)

    try:
        claims = request.app.state.tokens.verify(token)
    except InvalidTokenError as e:
        logger.info("Rejected token", reason=e.reason, path=request.url.path)
        raise

    user = await run_in_threadpool(request.app.state.user_store.find_by_id, claims.user_id)
    if user is None:
        raise AuthenticationError(USER_NOT_FOUND_MESSAGE)
    if not user.is_active:
        raise AuthenticationError(DEACTIVATED_MESSAGE)

    request.state.user = user
    return user


def require_role(*roles: str):
    """Dependency factory for role-based access control"""
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(FORBIDDEN_MESSAGE)
        return current_user

    return role_checker


require_admin = require_role("admin")
