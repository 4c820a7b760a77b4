from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import require_roles
from ..schemas.audit import AuditLogResponse
from ..services import queries
from ..services.audit import get_audit_logs


router = APIRouter(prefix=f"{settings.api_prefix}/audit", tags=["audit"])


@router.get("", response_model=List[AuditLogResponse])
def list_audit_logs(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    """Audit trail, newest first. Admins only."""
    entity_uuid = queries.parse_uuid_filter(entity_id, "entityId")
    logs = get_audit_logs(db, entity_type=entity_type or None, entity_id=entity_uuid, limit=limit, offset=offset)
    return [AuditLogResponse.model_validate(log) for log in logs]
