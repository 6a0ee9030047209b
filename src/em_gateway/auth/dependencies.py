"""FastAPI dependencies: get_current_user, require_admin.

Usage in any protected router:
    from src.em_gateway.auth.dependencies import CurrentUser, get_current_user

    @router.get("/protected")
    async def protected(user: CurrentUser = Depends(get_current_user)):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from src.em_common.errors import ForbiddenError, InvalidCredentialsError
from src.em_gateway.auth.jwt_handler import decode_token

# Tokens come from the external identity service; tokenUrl only feeds Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)

ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Extract and validate the JWT Bearer token.

    Raises HTTP 401 if the token is missing, invalid, or expired.
    """
    try:
        payload = decode_token(token, expected_type="access")
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    return CurrentUser(
        id=str(payload["sub"]),
        role=str(payload.get("role") or "user"),
        email=payload.get("email"),
    )


async def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Raises HTTP 403 (ForbiddenError) unless the caller carries the admin role."""
    if not current_user.is_admin:
        raise ForbiddenError("Admin role required")
    return current_user
