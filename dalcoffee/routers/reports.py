from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal, get_current_principal
from dalcoffee.db import get_db
from dalcoffee.errors import http_error
from dalcoffee.models import ReportStatus
from dalcoffee.services.reports.history import list_sent_reports, report_statistics, resend_report

router = APIRouter(prefix='/reports', tags=['reports'])


@router.get('')
def reports_index(
    report_type: str | None = None,
    status: ReportStatus | None = None,
    include_test: bool = True,
    limit: int = 100,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    rows = list_sent_reports(
        db, principal=principal, report_type=report_type, status=status, include_test=include_test, limit=limit
    )
    return {
        'reports': [
            {
                'id': str(row.id),
                'user_id': str(row.user_id),
                'report_type': row.report_type,
                'recipient_email': row.recipient_email,
                'status': row.status.value,
                'is_test': row.is_test,
                'error_message': row.error_message,
                'report_data': row.report_data,
                'sent_at': row.sent_at.isoformat() if row.sent_at else None,
            }
            for row in rows
        ]
    }


@router.get('/statistics')
def reports_statistics(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return report_statistics(db, principal=principal)


@router.post('/{report_id}/resend')
def reports_resend(
    report_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        result = resend_report(db, report_id=report_id, principal=principal)
        db.commit()
    except (LookupError, PermissionError, ValueError) as exc:
        db.rollback()
        raise http_error(exc) from exc
    except SQLAlchemyError:
        db.rollback()
        raise
    return result.as_response()
