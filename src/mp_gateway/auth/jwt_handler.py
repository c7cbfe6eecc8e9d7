"""JWT verification for identities issued by the external identity provider.

Tokens are HS256 with a shared JWT_SECRET. Required claims: ``sub`` (user id)
and ``role`` (user / rider / admin). ``create_access_token`` exists for local
runs and tests; production tokens come from the identity provider.

Schedule tokens are minted here for the links in holder notifications: they
name one order, one token kind and its holder, carry ``purpose=schedule`` and
are never accepted as access tokens.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.mp_common.enums import CallerRole
from src.mp_common.errors import InvalidCredentialsError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_VALID_ROLES = {role.value for role in CallerRole}
SCHEDULE_PURPOSE = "schedule"


def create_access_token(
    user_id: str,
    role: str = CallerRole.USER.value,
    expires_in: timedelta | None = None,
) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)),
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, str]:
    """Decode and validate a bearer token.

    Raises:
        InvalidCredentialsError: bad signature, expired, missing ``sub`` or
            an unknown ``role``.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if not payload.get("sub") or "purpose" in payload:
        raise InvalidCredentialsError()
    if payload.get("role", CallerRole.USER.value) not in _VALID_ROLES:
        raise InvalidCredentialsError()
    return payload


def create_schedule_token(order_id: str, kind: str, holder_id: str) -> str:
    """Signed proof of holdership for the scheduling forms.

    Valid for the whole offered slot window plus one day.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": holder_id,
        "order_id": order_id,
        "kind": kind,
        "purpose": SCHEDULE_PURPOSE,
        "iat": now,
        "exp": now + timedelta(days=settings.SLOT_DAYS + 1),
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_schedule_token(token: str, order_id: str, kind: str) -> str:
    """Return the holder id of a schedule token issued for ``order_id`` / ``kind``.

    Raises:
        InvalidCredentialsError: bad signature, expired, not a schedule token,
            or issued for another order or token kind.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[_ALGORITHM])
    except JWTError:
        raise InvalidCredentialsError() from None
    if (
        payload.get("purpose") != SCHEDULE_PURPOSE
        or payload.get("order_id") != order_id
        or payload.get("kind") != kind
        or not payload.get("sub")
    ):
        raise InvalidCredentialsError()
    return str(payload["sub"])
