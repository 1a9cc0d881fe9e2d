from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import User

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Use pbkdf2_sha256 to avoid external bcrypt backend issues in some environments
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer_scheme = HTTPBearer(
    scheme_name="oauth2",
    description="Bearer access token issued by the identity login endpoint",
    auto_error=False,
)


class InvalidToken(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _encode(payload: dict, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **payload,
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": now + lifetime,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, expected_type: str) -> dict:
    try:
        data = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as exc:
        raise InvalidToken(str(exc)) from exc
    if data.get("typ") != expected_type:
        raise InvalidToken(f"expected a {expected_type} token")
    return data


def create_access_token(user: User) -> str:
    claims = {}
    for claim in user.claims:
        claims.setdefault(claim.claim_type, claim.claim_value)
    payload = {
        **claims,
        "sub": user.id,
        "name": user.user_name,
        "email": user.email,
        "role": sorted(role.name for role in user.roles),
        "typ": ACCESS_TOKEN,
    }
    return _encode(payload, timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS))


def create_refresh_token(user: User) -> str:
    payload = {
        "sub": user.id,
        "stamp": user.security_stamp,
        "rstamp": user.refresh_stamp,
        "typ": REFRESH_TOKEN,
    }
    return _encode(payload, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def create_purpose_token(user: User, purpose: str) -> str:
    """
    Create a code for an emailed link (confirmation, email change, reset).

    The code is bound to the purpose and to the user's current security
    stamp, so rotating the stamp invalidates it.
    """
    payload = {"sub": user.id, "stamp": user.security_stamp, "purpose": purpose, "typ": "purpose"}
    return _encode(payload, timedelta(hours=settings.TOKEN_LIFESPAN_HOURS))


def decode_access_token(token: str) -> dict:
    return _decode(token, ACCESS_TOKEN)


def decode_refresh_token(token: str) -> dict:
    return _decode(token, REFRESH_TOKEN)


def verify_purpose_token(user: User, purpose: str, token: str) -> bool:
    try:
        data = _decode(token, "purpose")
    except InvalidToken:
        return False
    return (
        data.get("purpose") == purpose
        and data.get("sub") == user.id
        and data.get("stamp") == user.security_stamp
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise unauthorized
    try:
        data = decode_access_token(credentials.credentials)
    except InvalidToken as exc:
        raise unauthorized from exc

    user = db.get(User, data["sub"])
    if not user:
        raise unauthorized
    return user
