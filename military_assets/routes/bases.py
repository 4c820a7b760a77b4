from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_actor, require_roles
from ..schemas.assets import MilitaryBaseCreate, MilitaryBaseResponse, MilitaryBaseListResponse
from ..services import catalog, queries
from ..services.permissions import Actor


router = APIRouter(prefix=f"{settings.api_prefix}/bases", tags=["bases"])


@router.get("", response_model=MilitaryBaseListResponse)
def list_bases(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return MilitaryBaseListResponse(bases=[MilitaryBaseResponse.model_validate(b) for b in queries.list_bases(db)])


@router.post("", response_model=MilitaryBaseResponse, status_code=201)
def create_base(
    payload: MilitaryBaseCreate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
    actor: Actor = Depends(get_actor),
):
    base = catalog.create_base(db, actor, payload.name, location=payload.location)
    return MilitaryBaseResponse.model_validate(base)
