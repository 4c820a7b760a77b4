"""
Transfer state machine.

    pending --approve--> completed                  (single-step, default)
    pending --approve--> approved --receive--> completed   (TRANSFER_RECEIPT_STEP)
    pending --reject---> rejected

Requesting reserves the quantity at the source immediately, so concurrent
requests cannot over-commit it. No transition leads back to an earlier state.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Transfer
from ..timeutil import to_utc
from . import ledger
from .audit import create_audit_log, compute_diff
from .errors import InvalidState, NotFound, ValidationError
from .permissions import (
    Actor,
    ensure,
    can_request_transfer,
    can_decide_transfer,
    can_receive_transfer,
)
from .reservations import get_base, get_equipment_type
from .unit_of_work import run_atomic


logger = structlog.get_logger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
COMPLETED = "completed"

TRANSITIONS = {
    PENDING: {APPROVED, REJECTED, COMPLETED},
    APPROVED: {COMPLETED},
    REJECTED: set(),
    COMPLETED: set(),
}


@dataclass
class TransferOutcome:
    transfer: Transfer
    from_stock: Optional[Dict[str, Any]]
    to_stock: Optional[Dict[str, Any]]


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def request_transfer(
    db: Session,
    actor: Actor,
    from_base_id: uuid.UUID,
    to_base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    transfer_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> TransferOutcome:
    outcome = run_atomic(
        db,
        lambda: _request(db, actor, from_base_id, to_base_id, equipment_type_id, quantity, transfer_date, notes),
        name="transfer.request",
    )
    logger.info("transfer_requested", transfer_id=str(outcome.transfer.id), actor_id=str(actor.user_id), quantity=quantity)
    return outcome


def approve(db: Session, actor: Actor, transfer_id: uuid.UUID) -> TransferOutcome:
    outcome = run_atomic(db, lambda: _approve(db, actor, transfer_id), name="transfer.approve")
    logger.info("transfer_approved", transfer_id=str(transfer_id), actor_id=str(actor.user_id), status=outcome.transfer.status)
    return outcome


def reject(db: Session, actor: Actor, transfer_id: uuid.UUID, reason: Optional[str] = None) -> TransferOutcome:
    outcome = run_atomic(db, lambda: _reject(db, actor, transfer_id, reason), name="transfer.reject")
    logger.info("transfer_rejected", transfer_id=str(transfer_id), actor_id=str(actor.user_id))
    return outcome


def receive(db: Session, actor: Actor, transfer_id: uuid.UUID) -> TransferOutcome:
    outcome = run_atomic(db, lambda: _receive(db, actor, transfer_id), name="transfer.receive")
    logger.info("transfer_received", transfer_id=str(transfer_id), actor_id=str(actor.user_id))
    return outcome


def _request(db, actor, from_base_id, to_base_id, equipment_type_id, quantity, transfer_date, notes) -> TransferOutcome:
    if from_base_id == to_base_id:
        raise ValidationError("Source and destination bases must differ")
    get_base(db, from_base_id)
    get_base(db, to_base_id)
    get_equipment_type(db, equipment_type_id)
    ensure(can_request_transfer(actor, from_base_id, to_base_id), "Not allowed to request transfers between these bases")

    transfer_id = uuid.uuid4()
    source = ledger.reserve(
        db, from_base_id, equipment_type_id, quantity,
        reference=("transfer", transfer_id), actor_id=actor.user_id,
    )
    transfer = Transfer(
        id=transfer_id,
        from_base_id=from_base_id,
        to_base_id=to_base_id,
        equipment_type_id=equipment_type_id,
        quantity=quantity,
        status=PENDING,
        transfer_date=to_utc(transfer_date) or datetime.now(timezone.utc),
        notes=notes,
        requested_by=actor.user_id,
    )
    db.add(transfer)
    create_audit_log(
        db, "transfer", transfer_id, "REQUEST", actor=actor,
        context={"from_base_id": from_base_id, "to_base_id": to_base_id, "equipment_type_id": equipment_type_id,
                 "quantity": quantity, "from_stock": ledger.snapshot(source)},
    )
    db.flush()
    return TransferOutcome(transfer, ledger.snapshot(source), _stock_snapshot(db, to_base_id, equipment_type_id))


def _approve(db, actor, transfer_id) -> TransferOutcome:
    transfer = _lock_transfer(db, transfer_id)
    ensure(can_decide_transfer(actor, transfer), "Only admins or a commander of either base can approve this transfer")
    _require_status(transfer, PENDING, "approved")

    now = datetime.now(timezone.utc)
    transfer.decided_by = actor.user_id
    transfer.decided_at = now
    if settings.transfer_receipt_step:
        # Quantity stays reserved at the source until the destination confirms receipt
        _set_status(transfer, APPROVED)
        source = ledger.get_stock(db, transfer.from_base_id, transfer.equipment_type_id)
        destination = ledger.get_stock(db, transfer.to_base_id, transfer.equipment_type_id)
    else:
        source, destination = ledger.commit_transfer(
            db, transfer.from_base_id, transfer.to_base_id, transfer.equipment_type_id, transfer.quantity,
            reference=("transfer", transfer.id), actor_id=actor.user_id,
        )
        _set_status(transfer, COMPLETED)
        transfer.completed_at = now
    create_audit_log(
        db, "transfer", transfer.id, "APPROVE", actor=actor,
        changes_json=compute_diff({"status": PENDING}, {"status": transfer.status}),
        context={"from_stock": ledger.snapshot(source), "to_stock": ledger.snapshot(destination)},
    )
    db.flush()
    return TransferOutcome(transfer, ledger.snapshot(source), ledger.snapshot(destination))


def _receive(db, actor, transfer_id) -> TransferOutcome:
    transfer = _lock_transfer(db, transfer_id)
    ensure(can_receive_transfer(actor, transfer), "Only admins or the destination commander can confirm receipt")
    _require_status(transfer, APPROVED, "received")

    source, destination = ledger.commit_transfer(
        db, transfer.from_base_id, transfer.to_base_id, transfer.equipment_type_id, transfer.quantity,
        reference=("transfer", transfer.id), actor_id=actor.user_id,
    )
    _set_status(transfer, COMPLETED)
    transfer.received_by = actor.user_id
    transfer.completed_at = datetime.now(timezone.utc)
    create_audit_log(
        db, "transfer", transfer.id, "RECEIVE", actor=actor,
        changes_json=compute_diff({"status": APPROVED}, {"status": COMPLETED}),
        context={"from_stock": ledger.snapshot(source), "to_stock": ledger.snapshot(destination)},
    )
    db.flush()
    return TransferOutcome(transfer, ledger.snapshot(source), ledger.snapshot(destination))


def _reject(db, actor, transfer_id, reason) -> TransferOutcome:
    transfer = _lock_transfer(db, transfer_id)
    ensure(can_decide_transfer(actor, transfer), "Only admins or a commander of either base can reject this transfer")
    _require_status(transfer, PENDING, "rejected")

    source = ledger.release(
        db, transfer.from_base_id, transfer.equipment_type_id, transfer.quantity,
        reference=("transfer", transfer.id), actor_id=actor.user_id,
    )
    _set_status(transfer, REJECTED)
    transfer.decided_by = actor.user_id
    transfer.decided_at = datetime.now(timezone.utc)
    transfer.decision_reason = reason
    create_audit_log(
        db, "transfer", transfer.id, "REJECT", actor=actor,
        changes_json=compute_diff({"status": PENDING}, {"status": REJECTED}),
        context={"reason": reason, "from_stock": ledger.snapshot(source)},
    )
    db.flush()
    return TransferOutcome(transfer, ledger.snapshot(source), _stock_snapshot(db, transfer.to_base_id, transfer.equipment_type_id))


def _lock_transfer(db: Session, transfer_id: uuid.UUID) -> Transfer:
    transfer = (
        db.query(Transfer)
        .filter(Transfer.id == transfer_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not transfer:
        raise NotFound("Transfer not found")
    return transfer


def _require_status(transfer: Transfer, expected: str, verb: str) -> None:
    if transfer.status != expected:
        raise InvalidState(
            f"Transfer is {transfer.status}; only {expected} transfers can be {verb}",
            details={"status": transfer.status},
        )


def _set_status(transfer: Transfer, target: str) -> None:
    if not can_transition(transfer.status, target):
        raise InvalidState(f"Cannot move transfer from {transfer.status} to {target}")
    transfer.status = target


def _stock_snapshot(db: Session, base_id: uuid.UUID, equipment_type_id: uuid.UUID) -> Optional[Dict[str, Any]]:
    return ledger.snapshot(ledger.get_stock(db, base_id, equipment_type_id))
