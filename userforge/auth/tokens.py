"""JWT issuance and verification.

Tokens carry the user id as ``sub`` plus ``iat``/``exp``. There is no
revocation list: a token is valid as long as its signature checks out and it
has not expired.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import jwt as pyjwt

from userforge.utils.config import AuthSettings
from userforge.utils.exceptions import InvalidTokenError

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class TokenClaims:
    """Decoded claims of a verified token."""

    user_id: str
    issued_at: int
    expires_at: int
    role: Optional[str] = None


class TokenService:
    """Signs and verifies bearer tokens with a server-held symmetric secret."""

    def __init__(self, settings: AuthSettings) -> None:
        if not settings.jwt_secret:
            raise ValueError("jwt_secret must not be empty")
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self.lifetime_seconds = settings.token_expiry_days * SECONDS_PER_DAY

    def issue(self, user_id: str, role: Optional[str] = None, now: Optional[float] = None) -> str:
        """Return a signed token for ``user_id`` valid for the configured lifetime."""
        issued_at = int(now if now is not None else time.time())
        payload: dict[str, object] = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + self.lifetime_seconds,
        }
        if role:
            payload["role"] = role
        return pyjwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Decode and validate a token.

        Raises:
            InvalidTokenError: malformed token, bad signature, missing claims
                or expiry in the past. ``reason`` tells them apart for logs.
        """
        try:
            payload = pyjwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except pyjwt.ExpiredSignatureError:
            raise InvalidTokenError("expired")
        except pyjwt.InvalidSignatureError:
            raise InvalidTokenError("signature")
        except pyjwt.InvalidTokenError:
            raise InvalidTokenError("malformed")

        return TokenClaims(
            user_id=str(payload["sub"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            role=payload.get("role"),
        )
