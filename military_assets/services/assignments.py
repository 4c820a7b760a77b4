"""
Assignment lifecycle: issue stock to personnel, take it back, or expend it.
Each call is one atomic unit of work over the reservation engine.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from . import reservations
from .permissions import Actor
from .unit_of_work import run_atomic


logger = structlog.get_logger(__name__)


def create(
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
) -> reservations.AssignmentOutcome:
    outcome = run_atomic(
        db,
        lambda: reservations.create_assignment(
            db, actor,
            quantity=quantity,
            assigned_to=assigned_to,
            stock_id=stock_id,
            base_id=base_id,
            equipment_type_id=equipment_type_id,
            assignment_date=assignment_date,
            expected_return_date=expected_return_date,
            notes=notes,
        ),
        name="assignment.create",
    )
    logger.info("assignment_created", assignment_id=str(outcome.assignment.id), actor_id=str(actor.user_id), quantity=quantity)
    return outcome


def return_(db: Session, actor: Actor, assignment_id: uuid.UUID, notes: Optional[str] = None) -> reservations.AssignmentOutcome:
    outcome = run_atomic(
        db,
        lambda: reservations.return_assignment(db, actor, assignment_id, notes=notes),
        name="assignment.return",
    )
    logger.info("assignment_returned", assignment_id=str(assignment_id), actor_id=str(actor.user_id))
    return outcome


def record_expenditure(
    db: Session,
    actor: Actor,
    quantity: int,
    stock_id: Optional[uuid.UUID] = None,
    base_id: Optional[uuid.UUID] = None,
    equipment_type_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    expenditure_date: Optional[datetime] = None,
) -> reservations.ExpenditureOutcome:
    outcome = run_atomic(
        db,
        lambda: reservations.record_expenditure(
            db, actor,
            quantity=quantity,
            stock_id=stock_id,
            base_id=base_id,
            equipment_type_id=equipment_type_id,
            reason=reason,
            expenditure_date=expenditure_date,
        ),
        name="expenditure.record",
    )
    logger.info("expenditure_recorded", expenditure_id=str(outcome.expenditure.id), actor_id=str(actor.user_id), quantity=quantity)
    return outcome
