"""
Password hashing with bcrypt.

Length and complexity rules are enforced by request validation; this module
only hashes and verifies.
"""

try:
    import bcrypt
except ImportError:  # pragma: no cover - configuration error, not logic
    raise ImportError("bcrypt is required. Install with: pip install bcrypt")

DEFAULT_ROUNDS = 12

# bcrypt only reads the first 72 bytes of input
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password using bcrypt with a fresh salt"""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False
