"""
Stock ledger.
Per-(base, equipment type) quantity counters; the only writer of AssetStock quantities.

Every operation reads its row(s) with SELECT ... FOR UPDATE and relies on the
row's version_id for optimistic detection of concurrent writers on backends
without row locks. Nothing here commits: callers run inside services.unit_of_work.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import AssetStock, StockMovement
from .errors import InsufficientStock, InvalidState, ValidationError, Conflict


logger = structlog.get_logger(__name__)

Reference = Optional[Tuple[str, uuid.UUID]]


def lock_stock(db: Session, base_id: uuid.UUID, equipment_type_id: uuid.UUID) -> Optional[AssetStock]:
    """Load the ledger row for (base, type) under an exclusive row lock, refreshing any cached copy."""
    return (
        db.query(AssetStock)
        .filter(AssetStock.base_id == base_id, AssetStock.equipment_type_id == equipment_type_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def get_stock(db: Session, base_id: uuid.UUID, equipment_type_id: uuid.UUID) -> Optional[AssetStock]:
    """Unlocked snapshot read."""
    return db.query(AssetStock).filter(
        AssetStock.base_id == base_id,
        AssetStock.equipment_type_id == equipment_type_id,
    ).first()


def snapshot(stock: Optional[AssetStock]) -> Optional[Dict[str, Any]]:
    if stock is None:
        return None
    return {
        "id": stock.id,
        "base_id": stock.base_id,
        "equipment_type_id": stock.equipment_type_id,
        "quantity_total": stock.quantity_total,
        "quantity_available": stock.quantity_available,
        "quantity_reserved": stock.quantity_reserved,
    }


def reserve(
    db: Session,
    base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    reference: Reference = None,
    actor_id: Optional[uuid.UUID] = None,
) -> AssetStock:
    """Move quantity from available to reserved. Fails closed: available never goes negative."""
    _require_positive(quantity)
    stock = lock_stock(db, base_id, equipment_type_id)
    available = stock.quantity_available if stock else 0
    if stock is None or quantity > available:
        raise InsufficientStock(
            f"Requested quantity ({quantity}) exceeds available stock ({available})",
            details={"available": available, "requested": quantity},
        )
    stock.quantity_available -= quantity
    stock.quantity_reserved += quantity
    _record(db, stock, "reserve", quantity, reference, actor_id)
    logger.info("stock_reserved", stock_id=str(stock.id), quantity=quantity,
                available=stock.quantity_available, reserved=stock.quantity_reserved)
    return stock


def release(
    db: Session,
    base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    reference: Reference = None,
    actor_id: Optional[uuid.UUID] = None,
) -> AssetStock:
    """Move quantity from reserved back to available."""
    _require_positive(quantity)
    stock = lock_stock(db, base_id, equipment_type_id)
    reserved = stock.quantity_reserved if stock else 0
    if stock is None or quantity > reserved:
        raise InvalidState(
            f"Cannot release {quantity} units; only {reserved} reserved",
            details={"reserved": reserved, "requested": quantity},
        )
    stock.quantity_reserved -= quantity
    stock.quantity_available += quantity
    _record(db, stock, "release", quantity, reference, actor_id)
    logger.info("stock_released", stock_id=str(stock.id), quantity=quantity,
                available=stock.quantity_available, reserved=stock.quantity_reserved)
    return stock


def commit_transfer(
    db: Session,
    from_base_id: uuid.UUID,
    to_base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    reference: Reference = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Tuple[AssetStock, AssetStock]:
    """
    Move an already-reserved quantity from the source base to the destination base.
    Source reserved/total are debited and destination available/total credited in one flush.
    """
    _require_positive(quantity)
    if from_base_id == to_base_id:
        raise ValidationError("Source and destination bases must differ")

    # Lock both rows in a fixed order so opposing transfers cannot deadlock
    rows: Dict[uuid.UUID, Optional[AssetStock]] = {}
    for base_id in sorted((from_base_id, to_base_id), key=str):
        if base_id == to_base_id:
            rows[base_id] = _lock_or_create(db, base_id, equipment_type_id)
        else:
            rows[base_id] = lock_stock(db, base_id, equipment_type_id)
    source, destination = rows[from_base_id], rows[to_base_id]

    reserved = source.quantity_reserved if source else 0
    if source is None or quantity > reserved:
        raise InsufficientStock(
            f"Source base holds only {reserved} reserved units for this transfer",
            details={"reserved": reserved, "requested": quantity},
        )

    source.quantity_reserved -= quantity
    source.quantity_total -= quantity
    destination.quantity_available += quantity
    destination.quantity_total += quantity
    _record(db, source, "transfer_out", quantity, reference, actor_id, flush=False)
    _record(db, destination, "transfer_in", quantity, reference, actor_id)
    logger.info("stock_transferred", from_stock_id=str(source.id), to_stock_id=str(destination.id), quantity=quantity)
    return source, destination


def receive(
    db: Session,
    base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    reference: Reference = None,
    actor_id: Optional[uuid.UUID] = None,
) -> AssetStock:
    """Stock intake: credit owned and available quantity, creating the row if needed."""
    _require_positive(quantity)
    stock = _lock_or_create(db, base_id, equipment_type_id)
    stock.quantity_total += quantity
    stock.quantity_available += quantity
    _record(db, stock, "receive", quantity, reference, actor_id)
    logger.info("stock_received", stock_id=str(stock.id), quantity=quantity, available=stock.quantity_available)
    return stock


def expend(
    db: Session,
    base_id: uuid.UUID,
    equipment_type_id: uuid.UUID,
    quantity: int,
    reference: Reference = None,
    actor_id: Optional[uuid.UUID] = None,
) -> AssetStock:
    """Permanently remove available quantity. There is no inverse operation."""
    _require_positive(quantity)
    stock = lock_stock(db, base_id, equipment_type_id)
    available = stock.quantity_available if stock else 0
    if stock is None or quantity > available:
        raise InsufficientStock(
            f"Requested quantity ({quantity}) exceeds available stock ({available})",
            details={"available": available, "requested": quantity},
        )
    stock.quantity_available -= quantity
    stock.quantity_total -= quantity
    _record(db, stock, "expend", quantity, reference, actor_id)
    logger.info("stock_expended", stock_id=str(stock.id), quantity=quantity, available=stock.quantity_available)
    return stock


def _lock_or_create(db: Session, base_id: uuid.UUID, equipment_type_id: uuid.UUID) -> AssetStock:
    stock = lock_stock(db, base_id, equipment_type_id)
    if stock is not None:
        return stock
    stock = AssetStock(
        base_id=base_id,
        equipment_type_id=equipment_type_id,
        quantity_total=0,
        quantity_available=0,
        quantity_reserved=0,
    )
    db.add(stock)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another transaction created the row first; the whole operation is retried
        raise Conflict("Stock row was created concurrently") from exc
    return stock


def _record(
    db: Session,
    stock: AssetStock,
    kind: str,
    quantity: int,
    reference: Reference,
    actor_id: Optional[uuid.UUID],
    flush: bool = True,
) -> None:
    stock.updated_at = datetime.now(timezone.utc)
    ref_type, ref_id = reference if reference else (None, None)
    db.add(StockMovement(
        stock_id=stock.id,
        kind=kind,
        quantity=quantity,
        reference_type=ref_type,
        reference_id=ref_id,
        actor_id=actor_id,
    ))
    if flush:
        db.flush()


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
