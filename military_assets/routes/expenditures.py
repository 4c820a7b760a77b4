from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_actor
from ..schemas.assignments import (
    ExpenditureCreate,
    ExpenditureMutationResponse,
    ExpenditurePage,
    ExpenditureResponse,
)
from ..services import assignments, queries
from ..services.permissions import Actor


router = APIRouter(prefix=f"{settings.api_prefix}/expenditures", tags=["expenditures"])


@router.get("", response_model=ExpenditurePage)
def list_expenditures(
    page: int = Query(1),
    limit: int = Query(settings.page_size_default),
    base_id: Optional[str] = Query(None, alias="baseId"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    rows, total = queries.list_expenditures(db, page=page, limit=limit, base_id=queries.parse_uuid_filter(base_id, "baseId"))
    return ExpenditurePage(
        expenditures=[ExpenditureResponse.model_validate(e) for e in rows],
        total_expenditures=total,
        page=page,
        total_pages=queries.total_pages(total, limit),
    )


@router.post("", response_model=ExpenditureMutationResponse, status_code=201)
def record_expenditure(payload: ExpenditureCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    outcome = assignments.record_expenditure(
        db, actor,
        quantity=payload.quantity,
        stock_id=payload.asset_id,
        base_id=payload.base_id,
        equipment_type_id=payload.equipment_type_id,
        reason=payload.reason,
        expenditure_date=payload.expenditure_date,
    )
    return ExpenditureMutationResponse(
        expenditure=ExpenditureResponse.model_validate(outcome.expenditure),
        stock=outcome.stock,
    )
