import uuid
from decimal import Decimal

from sqlalchemy import select

from dalcoffee.db import SessionLocal, engine
from dalcoffee.models import (
    AccountStatus,
    AppRole,
    Base,
    CommissionReportSetting,
    CommissionSetting,
    Profile,
    Supplier,
    UserRole,
)
from dalcoffee.security.tokens import create_access_token
from dalcoffee.services.transitions import utcnow

ADMIN_USER_ID = uuid.UUID('00000000-0000-4000-8000-000000000001')
SUPPLIER_USER_ID = uuid.UUID('00000000-0000-4000-8000-000000000002')
ROASTER_USER_ID = uuid.UUID('00000000-0000-4000-8000-000000000003')


def _ensure_user(db, user_id: uuid.UUID, *, email: str, full_name: str, role: AppRole) -> None:
    if not db.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none():
        db.add(Profile(user_id=user_id, email=email, full_name=full_name))
    existing = db.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role == role)
    ).scalar_one_or_none()
    if not existing:
        db.add(UserRole(user_id=user_id, role=role, status=AccountStatus.APPROVED, approved_at=utcnow()))


def seed() -> dict[str, str]:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        _ensure_user(db, ADMIN_USER_ID, email='admin@example.com', full_name='Platform Admin', role=AppRole.ADMIN)
        _ensure_user(db, SUPPLIER_USER_ID, email='supplier@example.com', full_name='Green Bean Co', role=AppRole.SUPPLIER)
        _ensure_user(db, ROASTER_USER_ID, email='roaster@example.com', full_name='Riyadh Roasters', role=AppRole.ROASTER)

        if not db.execute(select(Supplier).where(Supplier.user_id == SUPPLIER_USER_ID)).scalar_one_or_none():
            db.add(Supplier(user_id=SUPPLIER_USER_ID, name='Green Bean Co'))
        if not db.execute(select(CommissionSetting)).scalars().first():
            db.add(CommissionSetting(supplier_rate=Decimal('5'), roaster_rate=Decimal('5')))
        existing_setting = db.execute(
            select(CommissionReportSetting).where(CommissionReportSetting.user_id == ADMIN_USER_ID)
        ).scalar_one_or_none()
        if not existing_setting:
            db.add(CommissionReportSetting(user_id=ADMIN_USER_ID, enabled=True, report_day=0, report_hour=9))

        db.commit()

    return {
        'admin': create_access_token(ADMIN_USER_ID, email='admin@example.com'),
        'supplier': create_access_token(SUPPLIER_USER_ID, email='supplier@example.com'),
        'roaster': create_access_token(ROASTER_USER_ID, email='roaster@example.com'),
    }


if __name__ == '__main__':
    tokens = seed()
    print('Seed data inserted/verified.')
    for name, token in tokens.items():
        print(f'{name} token: {token}')
