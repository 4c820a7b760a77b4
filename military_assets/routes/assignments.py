import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Body
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_actor
from ..schemas.assignments import (
    AssignmentCreate,
    AssignmentMutationResponse,
    AssignmentPage,
    AssignmentResponse,
    AssignmentReturn,
)
from ..services import assignments, queries
from ..services.permissions import Actor


router = APIRouter(prefix=f"{settings.api_prefix}/assignments", tags=["assignments"])


@router.get("", response_model=AssignmentPage)
def list_assignments(
    page: int = Query(1),
    limit: int = Query(settings.page_size_default),
    status: Optional[str] = Query(None),
    base_id: Optional[str] = Query(None, alias="baseId"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    rows, total = queries.list_assignments(
        db,
        page=page,
        limit=limit,
        status=(status or "").strip() or None,
        base_id=queries.parse_uuid_filter(base_id, "baseId"),
    )
    return AssignmentPage(
        assignments=[AssignmentResponse.model_validate(a) for a in rows],
        total_assignments=total,
        page=page,
        total_pages=queries.total_pages(total, limit),
    )


@router.post("", response_model=AssignmentMutationResponse, status_code=201)
def create_assignment(payload: AssignmentCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    outcome = assignments.create(
        db, actor,
        quantity=payload.quantity,
        assigned_to=payload.assigned_to,
        stock_id=payload.asset_id,
        base_id=payload.base_id,
        equipment_type_id=payload.equipment_type_id,
        assignment_date=payload.assignment_date,
        expected_return_date=payload.expected_return_date,
        notes=payload.notes,
    )
    return AssignmentMutationResponse(
        assignment=AssignmentResponse.model_validate(outcome.assignment),
        stock=outcome.stock,
    )


@router.put("/{assignment_id}/return", response_model=AssignmentMutationResponse)
def return_assignment(
    assignment_id: uuid.UUID,
    payload: Optional[AssignmentReturn] = Body(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    outcome = assignments.return_(db, actor, assignment_id, notes=payload.notes if payload else None)
    return AssignmentMutationResponse(
        assignment=AssignmentResponse.model_validate(outcome.assignment),
        stock=outcome.stock,
    )
