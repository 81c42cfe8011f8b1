"""Custom exceptions for the UserForge user management API"""

from typing import Any, Dict, List, Optional


class UserForgeError(Exception):
    """Base exception for UserForge. Carries the HTTP status it maps to."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(UserForgeError):
    """Malformed or out-of-range input. Lists every offending field."""

    status_code = 400

    def __init__(self, message: str = "Validation error", errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message)


class AuthenticationError(UserForgeError):
    """Missing or invalid credentials"""

    status_code = 401


class InvalidTokenError(AuthenticationError):
    """Token failed verification.

    ``reason`` is kept for logs only (expired, signature, malformed); clients
    always see the same message.
    """

    def __init__(self, reason: str = "malformed", message: str = "Invalid token."):
        self.reason = reason
        super().__init__(message)


class AuthorizationError(UserForgeError):
    """Authenticated, but not allowed to do this"""

    status_code = 403


class NotFoundError(UserForgeError):
    """Requested record does not exist"""

    status_code = 404


class ConflictError(UserForgeError):
    """Duplicate value for a unique field"""

    status_code = 400


class RateLimitError(UserForgeError):
    """Rate limit exceeded error"""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class ConfigError(UserForgeError):
    """Configuration error"""
    pass


class InternalError(UserForgeError):
    """Unexpected failure; clients only ever see the generic message"""

    def __init__(self, message: str = "Server error"):
        super().__init__(message)
