import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_actor, require_roles
from ..logging import structlog
from ..models.models import AssetStock
from ..schemas.assets import (
    AssetCreate,
    AssetCreateResponse,
    AssetResponse,
    EquipmentTypeCreate,
    EquipmentTypeResponse,
    StockMovementResponse,
    StockResponse,
)
from ..services import catalog, queries, reservations
from ..services.errors import NotFound
from ..services.permissions import Actor
from ..services.unit_of_work import run_atomic


router = APIRouter(prefix=f"{settings.api_prefix}/assets", tags=["assets"])
logger = structlog.get_logger(__name__)


# =====================
# Equipment types
# =====================

@router.get("/categories", response_model=List[EquipmentTypeResponse])
def list_categories(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return [EquipmentTypeResponse.model_validate(t) for t in queries.list_equipment_types(db)]


@router.post("/categories", response_model=EquipmentTypeResponse, status_code=201)
def create_category(
    payload: EquipmentTypeCreate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin", "logistics_officer")),
    actor: Actor = Depends(get_actor),
):
    equipment_type = catalog.create_equipment_type(
        db, actor, payload.name, payload.category.value, description=payload.description,
    )
    return EquipmentTypeResponse.model_validate(equipment_type)


# =====================
# Asset records and stock
# =====================

@router.post("", response_model=AssetCreateResponse, status_code=201)
def register_asset(payload: AssetCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    outcome = run_atomic(
        db,
        lambda: reservations.register_asset(
            db, actor,
            base_id=payload.base_id,
            equipment_type_id=payload.equipment_type_id,
            name=payload.name,
            serial_number=payload.serial_number,
            status=payload.status.value,
            quantity=payload.quantity,
        ),
        name="asset.register",
    )
    logger.info("asset_registered", asset_id=str(outcome.asset.id), actor_id=str(actor.user_id), quantity=payload.quantity)
    return AssetCreateResponse(asset=AssetResponse.model_validate(outcome.asset), stock=outcome.stock)


@router.get("/base/{base_id}", response_model=List[StockResponse])
def list_base_assets(base_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    reservations.get_base(db, base_id)
    return [StockResponse.from_row(row) for row in queries.list_base_stock(db, base_id)]


@router.get("/stock/{stock_id}/movements", response_model=List[StockMovementResponse])
def list_stock_movements(
    stock_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    if not db.query(AssetStock.id).filter(AssetStock.id == stock_id).first():
        raise NotFound("Asset not found")
    return [StockMovementResponse.model_validate(m) for m in queries.list_movements(db, stock_id, limit=limit)]
