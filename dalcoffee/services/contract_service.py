"""Direct-supply contract lifecycle.

A contract moves from seller approval through the platform commission to three
signatures (seller, buyer, platform) and finally the seller's payment. Status
changes go through CONTRACT_TRANSITIONS and a conditional UPDATE so two
parties acting at once cannot overwrite each other.
"""

from __future__ import annotations

import secrets
import uuid
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal
from dalcoffee.config import settings
from dalcoffee.models import (
    CommissionPaymentMethod,
    ContractCopy,
    ContractStatus,
    DirectSupplyContract,
)
from dalcoffee.services.audit_service import log_audit
from dalcoffee.services.change_feed import publish_on_commit
from dalcoffee.services.transitions import (
    TransitionError,
    apply_guarded_update,
    check_transition,
    utcnow,
)


SIGNING_STAGES = (
    ContractStatus.AWAITING_SELLER_SIGN,
    ContractStatus.AWAITING_BUYER_SIGN,
    ContractStatus.AWAITING_PLATFORM_SIGN,
)
# Party -> status in which that party signs.
SIGNING_STAGE_BY_PARTY = {
    'seller': ContractStatus.AWAITING_SELLER_SIGN,
    'buyer': ContractStatus.AWAITING_BUYER_SIGN,
    'platform': ContractStatus.AWAITING_PLATFORM_SIGN,
}
SIGNATURE_FIELDS = ('seller_signature', 'buyer_signature', 'platform_signature')

_ABANDON = frozenset({ContractStatus.CANCELLED, ContractStatus.DISPUTED})

CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.PENDING_SELLER: frozenset(
        {ContractStatus.PENDING_COMMISSION, ContractStatus.SELLER_REJECTED, ContractStatus.CANCELLED}
    ),
    ContractStatus.PENDING_COMMISSION: frozenset({ContractStatus.COMMISSION_PAID, ContractStatus.AWAITING_SELLER_SIGN})
    | _ABANDON,
    ContractStatus.COMMISSION_PAID: frozenset({ContractStatus.AWAITING_SELLER_SIGN}) | _ABANDON,
    ContractStatus.AWAITING_SELLER_SIGN: frozenset(
        {ContractStatus.AWAITING_BUYER_SIGN, ContractStatus.SELLER_REJECTED}
    )
    | _ABANDON,
    ContractStatus.AWAITING_BUYER_SIGN: frozenset({ContractStatus.AWAITING_PLATFORM_SIGN}) | _ABANDON,
    ContractStatus.AWAITING_PLATFORM_SIGN: frozenset({ContractStatus.FULLY_SIGNED}) | _ABANDON,
    ContractStatus.FULLY_SIGNED: frozenset({ContractStatus.AWAITING_SELLER_PAYMENT, ContractStatus.DISPUTED}),
    ContractStatus.AWAITING_SELLER_PAYMENT: frozenset({ContractStatus.COMPLETED, ContractStatus.DISPUTED}),
    ContractStatus.SELLER_REJECTED: frozenset({ContractStatus.REFUND_PENDING}),
    ContractStatus.REFUND_PENDING: frozenset({ContractStatus.REFUNDED}),
    ContractStatus.COMPLETED: frozenset(),
    ContractStatus.REFUNDED: frozenset(),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.DISPUTED: frozenset(),
}


class ContractTransitionError(TransitionError):
    pass


def is_fully_signed(contract) -> bool:
    return all(getattr(contract, name) is not None for name in SIGNATURE_FIELDS)


def signing_status_for(seller_signature, buyer_signature, platform_signature) -> ContractStatus:
    if seller_signature is None:
        return ContractStatus.AWAITING_SELLER_SIGN
    if buyer_signature is None:
        return ContractStatus.AWAITING_BUYER_SIGN
    if platform_signature is None:
        return ContractStatus.AWAITING_PLATFORM_SIGN
    return ContractStatus.FULLY_SIGNED


def signature_progress(contract) -> tuple[int, int]:
    signed = sum(1 for name in SIGNATURE_FIELDS if getattr(contract, name) is not None)
    return signed, len(SIGNATURE_FIELDS)


def status_matches_signatures(contract) -> bool:
    """False when the stored status disagrees with the signature fields."""
    derived = signing_status_for(contract.seller_signature, contract.buyer_signature, contract.platform_signature)
    if contract.status in SIGNING_STAGES or contract.status == ContractStatus.FULLY_SIGNED:
        return contract.status == derived
    if contract.status in {ContractStatus.AWAITING_SELLER_PAYMENT, ContractStatus.COMPLETED}:
        return derived == ContractStatus.FULLY_SIGNED
    return True


def generate_contract_number(now=None) -> str:
    now = now or utcnow()
    return f"DSC-{now.strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"


def commission_amount(total: Decimal, rate: Decimal) -> Decimal:
    return (total * rate / Decimal('100')).quantize(Decimal('0.01'))


def _decimal(raw: object, *, field: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f'Invalid {field}') from exc


def _get_contract(db: Session, contract_id: uuid.UUID) -> DirectSupplyContract:
    contract = db.get(DirectSupplyContract, contract_id)
    if contract is None:
        raise LookupError('Contract not found')
    return contract


def party_of(contract: DirectSupplyContract, principal: Principal) -> str | None:
    if principal.user_id == contract.seller_id:
        return 'seller'
    if principal.user_id == contract.buyer_id:
        return 'buyer'
    if principal.is_admin:
        return 'platform'
    return None


def _require_party(contract: DirectSupplyContract, principal: Principal, *allowed: str) -> str:
    party = party_of(contract, principal)
    if party not in allowed:
        raise PermissionError('You are not allowed to perform this action on the contract')
    return party


def _move(
    db: Session,
    contract: DirectSupplyContract,
    *,
    target: ContractStatus,
    actor: Principal,
    action: str,
    values: dict | None = None,
    expected_extra: dict | None = None,
    metadata: dict | None = None,
) -> DirectSupplyContract:
    previous = contract.status
    try:
        check_transition(CONTRACT_TRANSITIONS, previous, target, label='Contract')
    except TransitionError as exc:
        raise ContractTransitionError(str(exc)) from exc
    apply_guarded_update(
        db,
        DirectSupplyContract,
        row_id=contract.id,
        expected={'status': previous, **(expected_extra or {})},
        values={**(values or {}), 'status': target},
        label='Contract',
    )
    db.refresh(contract)
    log_audit(
        db,
        actor_user_id=actor.user_id,
        action=action,
        entity_type='direct_supply_contract',
        entity_id=contract.id,
        metadata={'from': previous.value, 'to': target.value, **(metadata or {})},
    )
    db.flush()
    publish_on_commit(db, 'direct_supply_contracts', 'UPDATE', contract.id)
    return contract


def create_contract(
    db: Session,
    *,
    buyer: Principal,
    seller_id: uuid.UUID,
    items: list[dict],
    total_amount: object,
    currency: str = 'SAR',
    commission_rate: object | None = None,
    notes: str | None = None,
) -> DirectSupplyContract:
    if seller_id == buyer.user_id:
        raise ValueError('Buyer and seller must be different users')
    if not items:
        raise ValueError('Contract needs at least one item')
    total = _decimal(total_amount, field='total amount')
    if total <= 0:
        raise ValueError('Total amount must be greater than zero')
    rate = _decimal(
        settings.default_contract_commission_rate if commission_rate is None else commission_rate,
        field='commission rate',
    )
    if rate < 0 or rate > 100:
        raise ValueError('Commission rate must be between 0 and 100')

    contract = DirectSupplyContract(
        contract_number=generate_contract_number(),
        buyer_id=buyer.user_id,
        seller_id=seller_id,
        items=list(items),
        total_amount=total.quantize(Decimal('0.01')),
        currency=(currency or 'SAR').strip().upper(),
        platform_commission_rate=rate,
        platform_commission_amount=commission_amount(total, rate),
        notes=(notes or '').strip() or None,
        status=ContractStatus.PENDING_SELLER,
    )
    db.add(contract)
    db.flush()
    log_audit(
        db,
        actor_user_id=buyer.user_id,
        action='CONTRACT_CREATED',
        entity_type='direct_supply_contract',
        entity_id=contract.id,
        metadata={'contract_number': contract.contract_number, 'total_amount': str(contract.total_amount)},
    )
    publish_on_commit(db, 'direct_supply_contracts', 'INSERT', contract.id)
    return contract


def list_contracts(db: Session, *, principal: Principal, status: ContractStatus | None = None):
    query = select(DirectSupplyContract).order_by(DirectSupplyContract.created_at.desc())
    if not principal.is_admin:
        query = query.where(
            or_(
                DirectSupplyContract.buyer_id == principal.user_id,
                DirectSupplyContract.seller_id == principal.user_id,
            )
        )
    if status is not None:
        query = query.where(DirectSupplyContract.status == status)
    return db.execute(query).scalars().all()


def get_contract_for(db: Session, *, contract_id: uuid.UUID, principal: Principal) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    if party_of(contract, principal) is None:
        raise PermissionError('You are not a party to this contract')
    return contract


def approve_contract(db: Session, *, contract_id: uuid.UUID, actor: Principal) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'seller')
    return _move(db, contract, target=ContractStatus.PENDING_COMMISSION, actor=actor, action='CONTRACT_APPROVED')


def reject_contract(db: Session, *, contract_id: uuid.UUID, actor: Principal, reason: str) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'seller')
    reason = (reason or '').strip()
    if not reason:
        raise ValueError('Rejection reason is required')
    return _move(
        db,
        contract,
        target=ContractStatus.SELLER_REJECTED,
        actor=actor,
        action='CONTRACT_REJECTED',
        values={'seller_rejection_reason': reason},
    )


def pay_commission(
    db: Session,
    *,
    contract_id: uuid.UUID,
    actor: Principal,
    method: CommissionPaymentMethod,
    transfer_receipt: str | None = None,
) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer')
    values: dict = {'commission_payment_method': method, 'commission_paid_at': utcnow()}
    if method == CommissionPaymentMethod.ONLINE_PAYMENT:
        target = ContractStatus.AWAITING_SELLER_SIGN
        values['commission_confirmed_at'] = utcnow()
    else:
        receipt = (transfer_receipt or '').strip()
        if not receipt:
            raise ValueError('Bank transfer receipt is required')
        values['commission_transfer_receipt'] = receipt
        target = ContractStatus.COMMISSION_PAID
    return _move(
        db,
        contract,
        target=target,
        actor=actor,
        action='CONTRACT_COMMISSION_PAID',
        values=values,
        metadata={'method': method.value, 'amount': str(contract.platform_commission_amount)},
    )


def confirm_commission(db: Session, *, contract_id: uuid.UUID, actor: Principal) -> DirectSupplyContract:
    if not actor.is_admin:
        raise PermissionError('Only admins can confirm commission transfers')
    contract = _get_contract(db, contract_id)
    return _move(
        db,
        contract,
        target=ContractStatus.AWAITING_SELLER_SIGN,
        actor=actor,
        action='CONTRACT_COMMISSION_CONFIRMED',
        values={'commission_confirmed_at': utcnow()},
    )


def sign_contract(
    db: Session,
    *,
    contract_id: uuid.UUID,
    actor: Principal,
    signature: str,
) -> DirectSupplyContract:
    signature = (signature or '').strip()
    if not signature:
        raise ValueError('Signature is required')
    contract = _get_contract(db, contract_id)
    party = party_of(contract, actor)
    if party is None:
        raise PermissionError('You are not a party to this contract')
    stage = SIGNING_STAGE_BY_PARTY[party]
    if contract.status != stage:
        raise ContractTransitionError(f'Contract is {contract.status.value}; {party} cannot sign now')

    now = utcnow()
    signatures = {name: getattr(contract, name) for name in SIGNATURE_FIELDS}
    signatures[f'{party}_signature'] = signature
    target = signing_status_for(
        signatures['seller_signature'], signatures['buyer_signature'], signatures['platform_signature']
    )
    values: dict = {f'{party}_signature': signature, f'{party}_signed_at': now}
    if party == 'platform':
        values['platform_signed_by'] = actor.user_id

    contract = _move(
        db,
        contract,
        target=target,
        actor=actor,
        action='CONTRACT_SIGNED',
        values=values,
        expected_extra={f'{party}_signature': None},
        metadata={'party': party},
    )
    if is_fully_signed(contract):
        db.add(ContractCopy(contract_id=contract.id, user_id=contract.buyer_id, user_role='buyer'))
        db.add(ContractCopy(contract_id=contract.id, user_id=contract.seller_id, user_role='seller'))
        db.flush()
    return contract


def request_seller_payment(db: Session, *, contract_id: uuid.UUID, actor: Principal) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer', 'platform')
    return _move(
        db, contract, target=ContractStatus.AWAITING_SELLER_PAYMENT, actor=actor, action='CONTRACT_PAYMENT_REQUESTED'
    )


def confirm_seller_payment(
    db: Session,
    *,
    contract_id: uuid.UUID,
    actor: Principal,
    transfer_receipt: str,
) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer')
    receipt = (transfer_receipt or '').strip()
    if not receipt:
        raise ValueError('Transfer receipt is required')
    return _move(
        db,
        contract,
        target=ContractStatus.COMPLETED,
        actor=actor,
        action='CONTRACT_COMPLETED',
        values={'seller_payment_confirmed': True, 'seller_transfer_receipt': receipt},
    )


def request_commission_refund(db: Session, *, contract_id: uuid.UUID, actor: Principal) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer')
    return _move(
        db,
        contract,
        target=ContractStatus.REFUND_PENDING,
        actor=actor,
        action='CONTRACT_REFUND_REQUESTED',
        values={'commission_refund_status': 'requested'},
    )


def complete_commission_refund(db: Session, *, contract_id: uuid.UUID, actor: Principal) -> DirectSupplyContract:
    if not actor.is_admin:
        raise PermissionError('Only admins can complete refunds')
    contract = _get_contract(db, contract_id)
    return _move(
        db,
        contract,
        target=ContractStatus.REFUNDED,
        actor=actor,
        action='CONTRACT_REFUNDED',
        values={'commission_refund_status': 'completed'},
    )


def cancel_contract(
    db: Session,
    *,
    contract_id: uuid.UUID,
    actor: Principal,
    reason: str | None = None,
) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer', 'seller', 'platform')
    return _move(
        db,
        contract,
        target=ContractStatus.CANCELLED,
        actor=actor,
        action='CONTRACT_CANCELLED',
        values={'cancellation_reason': (reason or '').strip() or None, 'cancelled_by': actor.user_id},
    )


def dispute_contract(
    db: Session,
    *,
    contract_id: uuid.UUID,
    actor: Principal,
    reason: str | None = None,
) -> DirectSupplyContract:
    contract = _get_contract(db, contract_id)
    _require_party(contract, actor, 'buyer', 'seller', 'platform')
    return _move(
        db,
        contract,
        target=ContractStatus.DISPUTED,
        actor=actor,
        action='CONTRACT_DISPUTED',
        metadata={'reason': (reason or '').strip() or None},
    )


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_contract(contract: DirectSupplyContract) -> dict:
    signed, required = signature_progress(contract)
    return {
        'id': str(contract.id),
        'contract_number': contract.contract_number,
        'buyer_id': str(contract.buyer_id),
        'seller_id': str(contract.seller_id),
        'items': contract.items,
        'total_amount': float(contract.total_amount),
        'currency': contract.currency,
        'platform_commission_rate': float(contract.platform_commission_rate),
        'platform_commission_amount': float(contract.platform_commission_amount),
        'commission_payment_method': (
            contract.commission_payment_method.value if contract.commission_payment_method else None
        ),
        'commission_paid_at': _iso(contract.commission_paid_at),
        'commission_confirmed_at': _iso(contract.commission_confirmed_at),
        'seller_signed_at': _iso(contract.seller_signed_at),
        'buyer_signed_at': _iso(contract.buyer_signed_at),
        'platform_signed_at': _iso(contract.platform_signed_at),
        'signatures': {'signed': signed, 'required': required},
        'is_fully_signed': is_fully_signed(contract),
        'seller_payment_confirmed': contract.seller_payment_confirmed,
        'seller_rejection_reason': contract.seller_rejection_reason,
        'commission_refund_status': contract.commission_refund_status,
        'cancellation_reason': contract.cancellation_reason,
        'status': contract.status.value,
    }
