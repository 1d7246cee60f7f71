"""Job and helper endpoints called by the external cron and the web client."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal, get_current_principal
from dalcoffee.db import get_db
from dalcoffee.security.job_auth import JobCaller, authorize_job_caller
from dalcoffee.services.ai_service import FlavorProfile, recommend_coffees, suggest_blend
from dalcoffee.services.reports.registry import JOBS_BY_FUNCTION
from dalcoffee.services.reports.runner import JobRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/functions', tags=['functions'])


class JobBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    test_mode: bool = Field(default=False, alias='testMode')
    user_id: uuid.UUID | None = Field(default=None, alias='userId')
    email: str | None = None


class BlendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    components: list[dict] = Field(default_factory=list)
    target_profile: dict = Field(default_factory=dict, alias='targetProfile')
    available_coffees: list[dict] = Field(default_factory=list, alias='availableCoffees')


class SommelierRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preferences: dict = Field(default_factory=dict)
    available_coffees: list[dict] = Field(default_factory=list, alias='availableCoffees')


def _run_job(name: str, body: JobBody | None, caller: JobCaller, db: Session):
    body = body or JobBody()
    request = JobRequest(
        test_mode=body.test_mode,
        user_id=body.user_id,
        email=(body.email or '').strip() or None,
        requested_by=caller.principal.user_id if caller.principal else None,
    )
    logger.info('Running %s (test_mode=%s, user_id=%s)', name, request.test_mode, request.user_id)
    try:
        result = JOBS_BY_FUNCTION[name](db, request)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('%s failed', name)
        return JSONResponse(status_code=500, content={'success': False, 'error': str(exc)})
    except ValueError as exc:
        db.rollback()
        return JSONResponse(status_code=400, content={'success': False, 'error': str(exc)})
    except Exception as exc:
        db.rollback()
        logger.exception('%s failed unexpectedly', name)
        return JSONResponse(status_code=500, content={'success': False, 'error': str(exc)})
    return result.as_response()


@router.post('/scheduled-commission-report')
def scheduled_commission_report(
    body: JobBody | None = None,
    caller: JobCaller = Depends(authorize_job_caller),
    db: Session = Depends(get_db),
):
    return _run_job('scheduled-commission-report', body, caller, db)


@router.post('/weekly-commission-report')
def weekly_commission_report(
    body: JobBody | None = None,
    caller: JobCaller = Depends(authorize_job_caller),
    db: Session = Depends(get_db),
):
    return _run_job('weekly-commission-report', body, caller, db)


@router.post('/send-weekly-report')
def send_weekly_report(
    body: JobBody | None = None,
    caller: JobCaller = Depends(authorize_job_caller),
    db: Session = Depends(get_db),
):
    return _run_job('send-weekly-report', body, caller, db)


@router.post('/weekly-smart-report')
def weekly_smart_report(
    body: JobBody | None = None,
    caller: JobCaller = Depends(authorize_job_caller),
    db: Session = Depends(get_db),
):
    return _run_job('weekly-smart-report', body, caller, db)


@router.post('/daily-delayed-shipment-report')
def daily_delayed_shipment_report(
    body: JobBody | None = None,
    caller: JobCaller = Depends(authorize_job_caller),
    db: Session = Depends(get_db),
):
    return _run_job('daily-delayed-shipment-report', body, caller, db)


@router.post('/ai-blend-suggestions')
def ai_blend_suggestions(body: BlendRequest, principal: Principal = Depends(get_current_principal)):
    fields = FlavorProfile.__dataclass_fields__
    try:
        target = FlavorProfile(**{k: int(v) for k, v in body.target_profile.items() if k in fields})
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail='Invalid target profile') from exc
    answer = suggest_blend(body.components, target, body.available_coffees)
    logger.info('Blend suggestions for %s (fallback=%s)', principal.user_id, answer.fallback)
    return {'suggestions': answer.text, 'fallback': answer.fallback}


@router.post('/ai-sommelier')
def ai_sommelier(body: SommelierRequest, principal: Principal = Depends(get_current_principal)):
    answer = recommend_coffees(body.preferences, body.available_coffees)
    logger.info('Sommelier recommendations for %s (fallback=%s)', principal.user_id, answer.fallback)
    return {'recommendations': answer.text, 'fallback': answer.fallback}
