from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from dalcoffee.config import settings


@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    email: str | None


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def decode_access_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
        )
    except JWTError as exc:
        raise ValueError('Invalid token') from exc

    subject = payload.get('sub')
    try:
        user_id = uuid.UUID(str(subject))
    except (TypeError, ValueError) as exc:
        raise ValueError('Invalid token subject') from exc
    return TokenClaims(user_id=user_id, email=payload.get('email'))


def create_access_token(user_id: uuid.UUID, *, email: str | None = None, expires_in_seconds: int = 3600) -> str:
    """Sign a token the same way the hosted auth provider does; used by scripts and tests."""
    now = datetime.now(tz=timezone.utc)
    claims = {
        'sub': str(user_id),
        'aud': settings.auth_jwt_audience,
        'role': 'authenticated',
        'iat': int(now.timestamp()),
        'exp': int((now + timedelta(seconds=expires_in_seconds)).timestamp()),
    }
    if email:
        claims['email'] = email
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
