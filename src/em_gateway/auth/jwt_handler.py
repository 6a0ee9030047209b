"""JWT bearer token verification.

Tokens are issued by the external identity service; this backend only
verifies them. HS256 with a shared JWT_SECRET.

Expected claims:
    sub   - user id
    type  - must be "access"
    role  - "user" (default) or "admin"
    email - optional, forwarded to the payment provider as payer email
"""

from typing import Any

from jose import JWTError, jwt

from config.settings import settings
from src.em_common.errors import InvalidCredentialsError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"


def decode_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """Decode and validate a JWT token.

    Raises:
        InvalidCredentialsError: signature invalid, token expired, or the
            ``type`` claim does not match ``expected_type``.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != expected_type:
        raise InvalidCredentialsError()
    if not payload.get("sub"):
        raise InvalidCredentialsError()
    return payload
