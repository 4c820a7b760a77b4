"""
Read side: pagination, filtering and sorting over ledger entities.
Plain snapshot reads; results may trail an in-flight reservation.
"""
import math
import uuid
from datetime import datetime
from typing import Optional, List, Tuple, Dict

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..timeutil import to_utc
from ..models.models import (
    AssetStock,
    Assignment,
    EquipmentType,
    Expenditure,
    MilitaryBase,
    StockMovement,
    Transfer,
)
from .errors import ValidationError


ASSIGNMENT_STATUS_ALIASES = {
    "active": "active",
    "returned": "returned",
    "completed": "returned",
}

TRANSFER_SORT_COLUMNS = {
    "transferDate": Transfer.transfer_date,
    "transfer_date": Transfer.transfer_date,
    "createdAt": Transfer.created_at,
    "created_at": Transfer.created_at,
    "quantity": Transfer.quantity,
    "status": Transfer.status,
}

TRANSFER_STATUSES = ("pending", "approved", "rejected", "completed")


def validate_paging(page: int, limit: int) -> Tuple[int, int]:
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > settings.page_size_max:
        raise ValidationError(f"limit must be between 1 and {settings.page_size_max}")
    return page, limit


def parse_uuid_filter(value: Optional[str], name: str) -> Optional[uuid.UUID]:
    """Query-string filters arrive as strings; blank means no filter."""
    if value is None or not str(value).strip():
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise ValidationError(f"{name} must be a valid id")


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def list_assignments(
    db: Session,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    base_id: Optional[uuid.UUID] = None,
) -> Tuple[List[Assignment], int]:
    page, limit = validate_paging(page, limit)
    query = db.query(Assignment)
    if status:
        normalized = ASSIGNMENT_STATUS_ALIASES.get(status.lower())
        if not normalized:
            raise ValidationError(f"Unknown assignment status '{status}'")
        query = query.filter(Assignment.status == normalized)
    if base_id:
        query = query.filter(Assignment.base_id == base_id)

    total = query.count()
    rows = (
        query.options(
            joinedload(Assignment.base),
            joinedload(Assignment.equipment_type),
            joinedload(Assignment.assigned_by_user),
            joinedload(Assignment.stock).joinedload(AssetStock.equipment_type),
        )
        .order_by(Assignment.assignment_date.desc(), Assignment.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_transfers(
    db: Session,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "transferDate",
    order: str = "desc",
    status: Optional[str] = None,
    base_id: Optional[uuid.UUID] = None,
) -> Tuple[List[Transfer], int]:
    page, limit = validate_paging(page, limit)
    column = TRANSFER_SORT_COLUMNS.get(sort_by or "transferDate")
    if column is None:
        raise ValidationError(f"Cannot sort transfers by '{sort_by}'")
    order = (order or "desc").lower()
    if order not in ("asc", "desc"):
        raise ValidationError("order must be 'asc' or 'desc'")

    query = db.query(Transfer)
    if status:
        normalized = status.lower()
        if normalized not in TRANSFER_STATUSES:
            raise ValidationError(f"Unknown transfer status '{status}'")
        query = query.filter(Transfer.status == normalized)
    if base_id:
        query = query.filter(or_(Transfer.from_base_id == base_id, Transfer.to_base_id == base_id))

    total = query.count()
    ordering = column.asc() if order == "asc" else column.desc()
    rows = (
        query.options(
            joinedload(Transfer.from_base),
            joinedload(Transfer.to_base),
            joinedload(Transfer.equipment_type),
        )
        .order_by(ordering, Transfer.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_expenditures(
    db: Session,
    page: int = 1,
    limit: int = 10,
    base_id: Optional[uuid.UUID] = None,
) -> Tuple[List[Expenditure], int]:
    page, limit = validate_paging(page, limit)
    query = db.query(Expenditure)
    if base_id:
        query = query.filter(Expenditure.base_id == base_id)
    total = query.count()
    rows = (
        query.options(joinedload(Expenditure.base), joinedload(Expenditure.equipment_type))
        .order_by(Expenditure.expenditure_date.desc(), Expenditure.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_base_stock(db: Session, base_id: uuid.UUID) -> List[AssetStock]:
    return (
        db.query(AssetStock)
        .options(joinedload(AssetStock.equipment_type))
        .join(EquipmentType, AssetStock.equipment_type_id == EquipmentType.id)
        .filter(AssetStock.base_id == base_id)
        .order_by(EquipmentType.name)
        .all()
    )


def list_bases(db: Session) -> List[MilitaryBase]:
    return db.query(MilitaryBase).order_by(MilitaryBase.name).all()


def list_equipment_types(db: Session) -> List[EquipmentType]:
    return db.query(EquipmentType).order_by(EquipmentType.category, EquipmentType.name).all()


def list_movements(db: Session, stock_id: uuid.UUID, limit: int = 100) -> List[StockMovement]:
    return (
        db.query(StockMovement)
        .filter(StockMovement.stock_id == stock_id)
        .order_by(StockMovement.created_at.desc())
        .limit(limit)
        .all()
    )


def dashboard_metrics(
    db: Session,
    base_id: Optional[uuid.UUID] = None,
    equipment_type_id: Optional[uuid.UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Aggregate balances and movements.
    Balances are current; movement totals honour the optional date window.
    """
    stock_q = db.query(
        func.coalesce(func.sum(AssetStock.quantity_total), 0),
        func.coalesce(func.sum(AssetStock.quantity_available), 0),
        func.coalesce(func.sum(AssetStock.quantity_reserved), 0),
    )
    if base_id:
        stock_q = stock_q.filter(AssetStock.base_id == base_id)
    if equipment_type_id:
        stock_q = stock_q.filter(AssetStock.equipment_type_id == equipment_type_id)
    total, available, reserved = stock_q.one()

    assigned_q = db.query(func.coalesce(func.sum(Assignment.quantity), 0)).filter(Assignment.status == "active")
    if base_id:
        assigned_q = assigned_q.filter(Assignment.base_id == base_id)
    if equipment_type_id:
        assigned_q = assigned_q.filter(Assignment.equipment_type_id == equipment_type_id)
    assigned = assigned_q.scalar()

    movement_q = (
        db.query(StockMovement.kind, func.coalesce(func.sum(StockMovement.quantity), 0))
        .join(AssetStock, StockMovement.stock_id == AssetStock.id)
    )
    if base_id:
        movement_q = movement_q.filter(AssetStock.base_id == base_id)
    if equipment_type_id:
        movement_q = movement_q.filter(AssetStock.equipment_type_id == equipment_type_id)
    start_date, end_date = to_utc(start_date), to_utc(end_date)
    if start_date:
        movement_q = movement_q.filter(StockMovement.created_at >= start_date)
    if end_date:
        movement_q = movement_q.filter(StockMovement.created_at <= end_date)
    movements = {kind: int(qty) for kind, qty in movement_q.group_by(StockMovement.kind).all()}

    pending_out_q = db.query(func.coalesce(func.sum(Transfer.quantity), 0)).filter(Transfer.status.in_(("pending", "approved")))
    pending_in_q = db.query(func.coalesce(func.sum(Transfer.quantity), 0)).filter(Transfer.status.in_(("pending", "approved")))
    if base_id:
        pending_out_q = pending_out_q.filter(Transfer.from_base_id == base_id)
        pending_in_q = pending_in_q.filter(Transfer.to_base_id == base_id)
    if equipment_type_id:
        pending_out_q = pending_out_q.filter(Transfer.equipment_type_id == equipment_type_id)
        pending_in_q = pending_in_q.filter(Transfer.equipment_type_id == equipment_type_id)

    received = movements.get("receive", 0)
    transferred_in = movements.get("transfer_in", 0)
    transferred_out = movements.get("transfer_out", 0)
    return {
        "quantity_total": int(total),
        "quantity_available": int(available),
        "quantity_reserved": int(reserved),
        "quantity_assigned": int(assigned),
        "received": received,
        "expended": movements.get("expend", 0),
        "transferred_in": transferred_in,
        "transferred_out": transferred_out,
        "net_movement": received + transferred_in - transferred_out,
        "pending_transfers_in": int(pending_in_q.scalar()),
        "pending_transfers_out": int(pending_out_q.scalar()),
    }
