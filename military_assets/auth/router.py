import uuid
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..models.models import User, Role, MilitaryBase
from ..schemas.auth import (
    LoginRequest,
    TokenResponse,
    RefreshRequest,
    MeResponse,
    UserCreate,
    UserResponse,
)
from ..services.errors import ValidationError, NotFound
from ..services.permissions import Actor, ALL_ROLES, BASE_COMMANDER
from ..services.unit_of_work import run_atomic
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    require_roles,
)
from ..logging import structlog


router = APIRouter(prefix=f"{settings.api_prefix}/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def ensure_role(db: Session, name: str) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if not role:
        role = Role(name=name, description=name.replace("_", " ").title())
        db.add(role)
        db.flush()
    return role


def username_taken(db: Session, username: str) -> bool:
    return db.query(User.id).filter(User.username == username).first() is not None


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.username == req.username.strip()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", username=req.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("login_succeeded", user_id=str(user.id))
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    new_refresh = create_refresh_token(str(user.id))
    return TokenResponse(access_token=access, refresh_token=new_refresh)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    actor = Actor.from_user(user)
    return MeResponse(
        id=str(user.id),
        username=user.username,
        full_name=user.full_name,
        roles=sorted(actor.roles),
        role=actor.primary_role,
        base_id=str(user.base_id) if user.base_id else None,
    )


# Admin user management
@router.get("/users", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    users = db.query(User).order_by(User.username).all()
    return [UserResponse.model_validate(u) for u in users]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    role_names = sorted({(r or "").strip().lower() for r in payload.roles if (r or "").strip()})
    if not role_names:
        raise ValidationError("At least one role is required")
    unknown = [r for r in role_names if r not in ALL_ROLES]
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(unknown)}")
    if BASE_COMMANDER in role_names and not payload.base_id:
        raise ValidationError("A base commander needs a home base")
    if payload.base_id and not db.query(MilitaryBase).filter(MilitaryBase.id == payload.base_id).first():
        raise NotFound("Base not found")

    def _create():
        if username_taken(db, payload.username):
            raise ValidationError("Username already taken")
        user = User(
            username=payload.username,
            full_name=payload.full_name,
            password_hash=password_hash,
            is_active=True,
            base_id=payload.base_id,
        )
        user.roles = [ensure_role(db, name) for name in role_names]
        db.add(user)
        db.flush()
        return user

    password_hash = get_password_hash(payload.password)
    user = run_atomic(db, _create, name="user.create")
    db.refresh(user)
    logger.info("user_created", user_id=str(user.id), roles=role_names, created_by=str(admin.id))
    return UserResponse.model_validate(user)
