from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

from .config import settings
from .db import get_conn
from .logging_context import set_user_context
from .repositories.live_classes import is_uuid

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
oauth2_optional_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def decode_jwt(token: str) -> dict[str, Any]:
    """Decode JWT without triggering python-jose exp verification."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"verify_signature": True, "verify_exp": False},
    )


def is_token_expired(payload: dict[str, Any], *, now: datetime | None = None) -> bool:
    exp = payload.get("exp")
    if exp is None:
        return False
    if isinstance(exp, (int, float)):
        exp_dt = datetime.fromtimestamp(exp, tz=timezone.utc)
    else:
        return False
    now = now or datetime.now(timezone.utc)
    return exp_dt <= now


def create_access_token(
    sub: str,
    expires_minutes: int = 15,
    *,
    claims: dict[str, Any] | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode: dict[str, Any] = {"sub": sub, "exp": expire, "token_type": "access"}
    if claims:
        to_encode.update(claims)
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _subject(token: str) -> str | None:
    payload = decode_jwt(token)
    if is_token_expired(payload):
        return None
    if payload.get("token_type", "access") != "access":
        return None
    return payload.get("sub")


async def _load_user(user_id: str) -> dict[str, Any] | None:
    if not is_uuid(user_id):
        return None
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id,
                   email,
                   full_name,
                   COALESCE(is_admin, false) AS is_admin
            FROM app.users
            WHERE id = %s
            LIMIT 1
            """,
            (user_id,),
        )
        row = await cur.fetchone()
    if not row:
        return None
    data = dict(row)
    data["id"] = str(data["id"])
    data["is_admin"] = bool(data.get("is_admin"))
    return data


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user_id = _subject(token)
    except JWTError as exc:
        raise credentials_exception from exc
    if user_id is None:
        raise credentials_exception

    user = await _load_user(user_id)
    if not user:
        raise credentials_exception
    set_user_context(user["id"])
    return user


async def get_optional_user(
    token: Annotated[str | None, Depends(oauth2_optional_scheme)],
):
    if not token:
        return None
    try:
        user_id = _subject(token)
    except JWTError:
        return None
    if user_id is None:
        return None
    user = await _load_user(user_id)
    if user:
        set_user_context(user["id"])
    return user


CurrentUser = Annotated[dict, Depends(get_current_user)]
OptionalCurrentUser = Annotated[dict | None, Depends(get_optional_user)]
