import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Body
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_actor
from ..models.models import Transfer
from ..schemas.transfers import (
    TransferCreate,
    TransferMutationResponse,
    TransferPage,
    TransferReject,
    TransferResponse,
)
from ..services import queries, transfers
from ..services.errors import NotFound
from ..services.permissions import Actor


router = APIRouter(prefix=f"{settings.api_prefix}/transfers", tags=["transfers"])


def _mutation_response(outcome: transfers.TransferOutcome) -> TransferMutationResponse:
    return TransferMutationResponse(
        transfer=TransferResponse.model_validate(outcome.transfer),
        from_stock=outcome.from_stock,
        to_stock=outcome.to_stock,
    )


@router.get("", response_model=TransferPage)
def list_transfers(
    page: int = Query(1),
    limit: int = Query(settings.page_size_default),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    base_id: Optional[str] = Query(None, alias="baseId"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    rows, total = queries.list_transfers(
        db,
        page=page,
        limit=limit,
        sort_by=(sort_by or "").strip() or "transferDate",
        order=(order or "").strip() or "desc",
        status=(status or "").strip() or None,
        base_id=queries.parse_uuid_filter(base_id, "baseId"),
    )
    return TransferPage(
        transfers=[TransferResponse.model_validate(t) for t in rows],
        total_transfers=total,
        page=page,
        total_pages=queries.total_pages(total, limit),
    )


@router.post("/request", response_model=TransferMutationResponse, status_code=201)
def request_transfer(payload: TransferCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    outcome = transfers.request_transfer(
        db, actor,
        from_base_id=payload.from_base_id,
        to_base_id=payload.to_base_id,
        equipment_type_id=payload.equipment_type_id,
        quantity=payload.quantity,
        transfer_date=payload.transfer_date,
        notes=payload.notes,
    )
    return _mutation_response(outcome)


@router.get("/{transfer_id}", response_model=TransferResponse)
def get_transfer(transfer_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    transfer = db.query(Transfer).filter(Transfer.id == transfer_id).first()
    if not transfer:
        raise NotFound("Transfer not found")
    return TransferResponse.model_validate(transfer)


@router.put("/{transfer_id}/approve", response_model=TransferMutationResponse)
def approve_transfer(transfer_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return _mutation_response(transfers.approve(db, actor, transfer_id))


@router.put("/{transfer_id}/reject", response_model=TransferMutationResponse)
def reject_transfer(
    transfer_id: uuid.UUID,
    payload: Optional[TransferReject] = Body(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return _mutation_response(transfers.reject(db, actor, transfer_id, reason=payload.reason if payload else None))


@router.put("/{transfer_id}/receive", response_model=TransferMutationResponse)
def receive_transfer(transfer_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return _mutation_response(transfers.receive(db, actor, transfer_id))
