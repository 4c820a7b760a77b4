"""
Reservation engine.
Gates every quantity-affecting request through role/ownership checks and input
validation before calling the stock ledger and creating entity records.
Functions here run inside a caller-owned transaction (see services.unit_of_work).
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any

from sqlalchemy.orm import Session

from ..timeutil import to_utc
from ..models.models import (
    Asset,
    AssetStock,
    Assignment,
    EquipmentType,
    Expenditure,
    MilitaryBase,
)
from . import ledger
from .audit import create_audit_log, compute_diff
from .errors import NotFound, ValidationError, InvalidState
from .permissions import Actor, ensure, can_manage_base, can_receive_stock


ASSET_STATUSES = ("in_storage", "in_use", "under_maintenance", "decommissioned")


@dataclass
class AssignmentOutcome:
    assignment: Assignment
    stock: Dict[str, Any]


@dataclass
class ExpenditureOutcome:
    expenditure: Expenditure
    stock: Dict[str, Any]


@dataclass
class AssetOutcome:
    asset: Asset
    stock: Optional[Dict[str, Any]]


def resolve_stock_key(
    db: Session,
    stock_id: Optional[uuid.UUID] = None,
    base_id: Optional[uuid.UUID] = None,
    equipment_type_id: Optional[uuid.UUID] = None,
) -> Tuple[uuid.UUID, uuid.UUID]:
    """
    Resolve an asset reference to its (base, equipment type) ledger key.
    Accepts either a stock row id or an explicit base/type pair.
    """
    if stock_id:
        stock = db.query(AssetStock).filter(AssetStock.id == stock_id).first()
        if not stock:
            raise NotFound("Asset not found")
        if base_id and stock.base_id != base_id:
            raise ValidationError("Asset does not belong to the selected base")
        return stock.base_id, stock.equipment_type_id
    if not base_id or not equipment_type_id:
        raise ValidationError("Either assetId or both baseId and equipmentTypeId are required")
    get_base(db, base_id)
    get_equipment_type(db, equipment_type_id)
    return base_id, equipment_type_id


def get_base(db: Session, base_id: uuid.UUID) -> MilitaryBase:
    base = db.query(MilitaryBase).filter(MilitaryBase.id == base_id).first()
    if not base:
        raise NotFound("Base not found")
    return base


def get_equipment_type(db: Session, equipment_type_id: uuid.UUID) -> EquipmentType:
    equipment_type = db.query(EquipmentType).filter(EquipmentType.id == equipment_type_id).first()
    if not equipment_type:
        raise NotFound("Equipment type not found")
    return equipment_type


def create_assignment(
    db: Session,
    actor: Actor,
    quantity: int,
    assigned_to: str,
    stock_id: Optional[uuid.UUID] = None,
    base_id: Optional[uuid.UUID] = None,
    equipment_type_id: Optional[uuid.UUID] = None,
    assignment_date: Optional[datetime] = None,
    expected_return_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> AssignmentOutcome:
    base_id, equipment_type_id = resolve_stock_key(db, stock_id, base_id, equipment_type_id)
    ensure(can_manage_base(actor, base_id), "Only admins or the base commander can assign stock at this base")
    if not (assigned_to or "").strip():
        raise ValidationError("assignedTo is required")
    assignment_date = to_utc(assignment_date) or datetime.now(timezone.utc)
    expected_return_date = to_utc(expected_return_date)
    if expected_return_date and expected_return_date < assignment_date:
        raise ValidationError("Expected return date cannot be before the assignment date")

    assignment_id = uuid.uuid4()
    stock = ledger.reserve(
        db, base_id, equipment_type_id, quantity,
        reference=("assignment", assignment_id), actor_id=actor.user_id,
    )
    assignment = Assignment(
        id=assignment_id,
        stock_id=stock.id,
        base_id=base_id,
        equipment_type_id=equipment_type_id,
        quantity=quantity,
        assigned_to=assigned_to.strip(),
        assigned_by=actor.user_id,
        assignment_date=assignment_date,
        expected_return_date=expected_return_date,
        notes=notes,
        status="active",
    )
    db.add(assignment)
    create_audit_log(
        db, "assignment", assignment_id, "CREATE", actor=actor,
        context={"base_id": base_id, "equipment_type_id": equipment_type_id, "quantity": quantity,
                 "assigned_to": assignment.assigned_to, "stock": ledger.snapshot(stock)},
    )
    db.flush()
    return AssignmentOutcome(assignment=assignment, stock=ledger.snapshot(stock))


def return_assignment(
    db: Session,
    actor: Actor,
    assignment_id: uuid.UUID,
    notes: Optional[str] = None,
) -> AssignmentOutcome:
    assignment = (
        db.query(Assignment)
        .filter(Assignment.id == assignment_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not assignment:
        raise NotFound("Assignment not found")
    ensure(can_manage_base(actor, assignment.base_id), "Only admins or the base commander can return stock at this base")
    if assignment.status != "active":
        raise InvalidState("Assignment is already returned")

    stock = ledger.release(
        db, assignment.base_id, assignment.equipment_type_id, assignment.quantity,
        reference=("assignment", assignment.id), actor_id=actor.user_id,
    )
    assignment.status = "returned"
    assignment.returned_at = datetime.now(timezone.utc)
    assignment.returned_by = actor.user_id
    if notes:
        assignment.notes = (assignment.notes or "") + f"\nReturn notes: {notes}"
    create_audit_log(
        db, "assignment", assignment.id, "RETURN", actor=actor,
        changes_json=compute_diff({"status": "active"}, {"status": assignment.status}),
        context={"quantity": assignment.quantity, "stock": ledger.snapshot(stock)},
    )
    db.flush()
    return AssignmentOutcome(assignment=assignment, stock=ledger.snapshot(stock))


def record_expenditure(
    db: Session,
    actor: Actor,
    quantity: int,
    stock_id: Optional[uuid.UUID] = None,
    base_id: Optional[uuid.UUID] = None,
    equipment_type_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    expenditure_date: Optional[datetime] = None,
) -> ExpenditureOutcome:
    base_id, equipment_type_id = resolve_stock_key(db, stock_id, base_id, equipment_type_id)
    ensure(can_manage_base(actor, base_id), "Only admins or the base commander can expend stock at this base")

    expenditure_id = uuid.uuid4()
    stock = ledger.expend(
        db, base_id, equipment_type_id, quantity,
        reference=("expenditure", expenditure_id), actor_id=actor.user_id,
    )
    expenditure = Expenditure(
        id=expenditure_id,
        stock_id=stock.id,
        base_id=base_id,
        equipment_type_id=equipment_type_id,
        quantity=quantity,
        reason=reason,
        expenditure_date=to_utc(expenditure_date) or datetime.now(timezone.utc),
        recorded_by=actor.user_id,
    )
    db.add(expenditure)
    create_audit_log(
        db, "expenditure", expenditure_id, "EXPEND", actor=actor,
        context={"base_id": base_id, "equipment_type_id": equipment_type_id, "quantity": quantity,
                 "reason": reason, "stock": ledger.snapshot(stock)},
    )
    db.flush()
    return ExpenditureOutcome(expenditure=expenditure, stock=ledger.snapshot(stock))


def register_asset(
    db: Session,
    actor: Actor,
    base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    name: str,
    serial_number: Optional[str] = None,
    status: str = "in_storage",
    quantity: int = 1,
) -> AssetOutcome:
    """Create an asset record; anything not decommissioned is credited into the base's stock."""
    get_base(db, base_id)
    get_equipment_type(db, equipment_type_id)
    ensure(can_receive_stock(actor, base_id), "Not allowed to register assets at this base")
    if not (name or "").strip():
        raise ValidationError("Asset name is required")
    if status not in ASSET_STATUSES:
        raise ValidationError(f"Invalid asset status '{status}'")
    if serial_number and db.query(Asset).filter(Asset.serial_number == serial_number).first():
        raise ValidationError("An asset with this serial number already exists")

    asset_id = uuid.uuid4()
    stock = None
    if status != "decommissioned":
        stock = ledger.receive(
            db, base_id, equipment_type_id, quantity,
            reference=("asset", asset_id), actor_id=actor.user_id,
        )
    elif quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    asset = Asset(
        id=asset_id,
        base_id=base_id,
        equipment_type_id=equipment_type_id,
        stock_id=stock.id if stock else None,
        name=name.strip(),
        serial_number=serial_number,
        status=status,
        quantity=quantity,
        created_by=actor.user_id,
    )
    db.add(asset)
    create_audit_log(
        db, "asset", asset_id, "CREATE", actor=actor,
        context={"base_id": base_id, "equipment_type_id": equipment_type_id, "quantity": quantity,
                 "status": status, "stock": ledger.snapshot(stock)},
    )
    db.flush()
    return AssetOutcome(asset=asset, stock=ledger.snapshot(stock))
