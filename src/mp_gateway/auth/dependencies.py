"""FastAPI dependencies: get_current_identity, require_rider, require_admin.

Usage in any protected router:
    from src.mp_gateway.auth.dependencies import get_current_identity

    @router.get("/protected")
    async def protected(identity: Annotated[Identity, Depends(get_current_identity)]):
        ...

There is no local user table: the identity is whatever the verified token
says it is.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.mp_common.enums import CallerRole
from src.mp_common.errors import ForbiddenError, InvalidCredentialsError
from src.mp_gateway.auth.jwt_handler import decode_token

bearer_scheme = HTTPBearer(auto_error=False)

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = CallerRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == CallerRole.ADMIN.value

    @property
    def is_rider(self) -> bool:
        return self.role == CallerRole.RIDER.value


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Validate the Bearer token and return the caller identity.

    Raises HTTP 401 if the token is missing, invalid or expired.
    """
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        payload = decode_token(credentials.credentials)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None
    return Identity(user_id=payload["sub"], role=payload.get("role", CallerRole.USER.value))


async def require_rider(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_rider:
        raise ForbiddenError("Rider role required")
    return identity


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin role required")
    return identity
