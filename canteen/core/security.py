"""
Canteen Service - Security helpers (JWT decode only, shared secret)

Tokens are minted by the external identity provider. The service only
verifies them and reads two claims: `sub` (user id) and `role`.
"""
from enum import Enum
from typing import Any

from jose import jwt

from canteen.core.config import get_settings

settings = get_settings()


class Role(str, Enum):
    ADMIN = "admin"
    PARENT = "parent"


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def create_token(subject: str, role: Role | str, **extra: Any) -> str:
    """Mint a token with the shared secret. Used by seed scripts and tests."""
    payload = {"sub": subject, "role": Role(role).value, **extra}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
