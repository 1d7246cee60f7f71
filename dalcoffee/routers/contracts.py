from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal, get_current_principal
from dalcoffee.db import get_db
from dalcoffee.errors import http_error
from dalcoffee.models import CommissionPaymentMethod, ContractStatus
from dalcoffee.services import contract_service
from dalcoffee.services.contract_service import is_fully_signed, serialize_contract
from dalcoffee.services.notification_service import notify_contract_signed

router = APIRouter(prefix='/contracts', tags=['contracts'])


class ContractCreate(BaseModel):
    seller_id: uuid.UUID
    items: list[dict] = Field(default_factory=list)
    total_amount: float
    currency: str = 'SAR'
    commission_rate: float | None = None
    notes: str | None = None


class ReasonIn(BaseModel):
    reason: str | None = None


class CommissionPaymentIn(BaseModel):
    method: CommissionPaymentMethod
    transfer_receipt: str | None = None


class SignatureIn(BaseModel):
    signature: str


class ReceiptIn(BaseModel):
    transfer_receipt: str


def _run(db: Session, action, **kwargs) -> dict:
    try:
        contract = action(db, **kwargs)
    except (LookupError, PermissionError, ValueError) as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    return serialize_contract(contract)


@router.get('')
def contracts_index(
    status: ContractStatus | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    contracts = contract_service.list_contracts(db, principal=principal, status=status)
    return {'contracts': [serialize_contract(c) for c in contracts]}


@router.post('', status_code=201)
def contracts_create(
    body: ContractCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(
        db,
        contract_service.create_contract,
        buyer=principal,
        seller_id=body.seller_id,
        items=body.items,
        total_amount=body.total_amount,
        currency=body.currency,
        commission_rate=body.commission_rate,
        notes=body.notes,
    )


@router.get('/{contract_id}')
def contracts_detail(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        contract = contract_service.get_contract_for(db, contract_id=contract_id, principal=principal)
    except (LookupError, PermissionError) as exc:
        raise http_error(exc) from exc
    return {
        **serialize_contract(contract),
        'my_role': contract_service.party_of(contract, principal),
        'status_consistent': contract_service.status_matches_signatures(contract),
    }


@router.post('/{contract_id}/approve')
def contracts_approve(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.approve_contract, contract_id=contract_id, actor=principal)


@router.post('/{contract_id}/reject')
def contracts_reject(
    contract_id: uuid.UUID,
    body: ReasonIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(
        db, contract_service.reject_contract, contract_id=contract_id, actor=principal, reason=body.reason or ''
    )


@router.post('/{contract_id}/commission')
def contracts_pay_commission(
    contract_id: uuid.UUID,
    body: CommissionPaymentIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(
        db,
        contract_service.pay_commission,
        contract_id=contract_id,
        actor=principal,
        method=body.method,
        transfer_receipt=body.transfer_receipt,
    )


@router.post('/{contract_id}/commission/confirm')
def contracts_confirm_commission(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.confirm_commission, contract_id=contract_id, actor=principal)


@router.post('/{contract_id}/sign')
def contracts_sign(
    contract_id: uuid.UUID,
    body: SignatureIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        contract = contract_service.sign_contract(
            db, contract_id=contract_id, actor=principal, signature=body.signature
        )
    except (LookupError, PermissionError, ValueError) as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    if is_fully_signed(contract):
        notify_contract_signed(db, contract)
    return serialize_contract(contract)


@router.post('/{contract_id}/request-payment')
def contracts_request_payment(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.request_seller_payment, contract_id=contract_id, actor=principal)


@router.post('/{contract_id}/confirm-payment')
def contracts_confirm_payment(
    contract_id: uuid.UUID,
    body: ReceiptIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(
        db,
        contract_service.confirm_seller_payment,
        contract_id=contract_id,
        actor=principal,
        transfer_receipt=body.transfer_receipt,
    )


@router.post('/{contract_id}/refund')
def contracts_request_refund(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.request_commission_refund, contract_id=contract_id, actor=principal)


@router.post('/{contract_id}/refund/complete')
def contracts_complete_refund(
    contract_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.complete_commission_refund, contract_id=contract_id, actor=principal)


@router.post('/{contract_id}/cancel')
def contracts_cancel(
    contract_id: uuid.UUID,
    body: ReasonIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.cancel_contract, contract_id=contract_id, actor=principal, reason=body.reason)


@router.post('/{contract_id}/dispute')
def contracts_dispute(
    contract_id: uuid.UUID,
    body: ReasonIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _run(db, contract_service.dispute_contract, contract_id=contract_id, actor=principal, reason=body.reason)
