from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user
from ..schemas.assets import DashboardMetricsResponse
from ..schemas.common import BaseSummary
from ..services import queries, reservations


router = APIRouter(prefix=f"{settings.api_prefix}/dashboard", tags=["dashboard"])


@router.get("/metrics", response_model=DashboardMetricsResponse)
def dashboard_metrics(
    base_id: Optional[str] = Query(None, alias="baseId"),
    equipment_type_id: Optional[str] = Query(None, alias="equipmentTypeId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    base_uuid = queries.parse_uuid_filter(base_id, "baseId")
    type_uuid = queries.parse_uuid_filter(equipment_type_id, "equipmentTypeId")
    base = reservations.get_base(db, base_uuid) if base_uuid else None
    if type_uuid:
        reservations.get_equipment_type(db, type_uuid)
    metrics = queries.dashboard_metrics(
        db,
        base_id=base_uuid,
        equipment_type_id=type_uuid,
        start_date=start_date,
        end_date=end_date,
    )
    return DashboardMetricsResponse(base=BaseSummary.model_validate(base) if base else None, **metrics)
