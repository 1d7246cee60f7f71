from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.db import get_db
from dalcoffee.models import AccountStatus, AppRole, Profile, UserRole
from dalcoffee.security.tokens import bearer_token, decode_access_token


@dataclass
class Principal:
    user_id: uuid.UUID
    email: str | None
    roles: dict[AppRole, AccountStatus] = field(default_factory=dict)

    def has_role(self, role: AppRole) -> bool:
        # Pending, rejected and suspended accounts carry no privileges.
        return self.roles.get(role) == AccountStatus.APPROVED

    @property
    def is_admin(self) -> bool:
        return self.has_role(AppRole.ADMIN)


def load_principal(db: Session, *, user_id: uuid.UUID, email: str | None = None) -> Principal:
    rows = db.execute(select(UserRole.role, UserRole.status).where(UserRole.user_id == user_id)).all()
    if email is None:
        email = db.execute(select(Profile.email).where(Profile.user_id == user_id)).scalar_one_or_none()
    return Principal(user_id=user_id, email=email, roles={row.role: row.status for row in rows})


def principal_from_authorization(db: Session, authorization: str | None) -> Principal:
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized - Missing authentication')
    try:
        claims = decode_access_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized - Invalid token') from exc
    return load_principal(db, user_id=claims.user_id, email=claims.email)


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    return principal_from_authorization(db, request.headers.get('authorization'))

