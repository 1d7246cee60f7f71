from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal, principal_from_authorization
from dalcoffee.config import settings
from dalcoffee.db import get_db


logger = logging.getLogger(__name__)

CRON_SECRET_HEADER = 'x-cron-secret'


@dataclass(frozen=True)
class JobCaller:
    via_cron: bool
    principal: Principal | None = None


def _cron_secret_matches(provided: str | None) -> bool:
    expected = settings.cron_secret
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


def authorize_job_caller(request: Request, db: Session = Depends(get_db)) -> JobCaller:
    """Scheduled calls present the shared cron secret; manual triggers need an approved admin token."""
    if _cron_secret_matches(request.headers.get(CRON_SECRET_HEADER)):
        logger.info('Job %s authorized via cron secret', request.url.path)
        return JobCaller(via_cron=True)

    principal = principal_from_authorization(db, request.headers.get('authorization'))
    if not principal.is_admin:
        logger.warning('User %s is not an admin; rejecting %s', principal.user_id, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden - Admin access required')
    logger.info('Job %s authorized via admin token for %s', request.url.path, principal.user_id)
    return JobCaller(via_cron=False, principal=principal)
