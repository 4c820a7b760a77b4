import uuid
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from .common import CamelModel


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class MeResponse(CamelModel):
    id: str
    username: str
    full_name: Optional[str] = None
    roles: List[str]
    role: str
    base_id: Optional[str] = None


class UserCreate(CamelModel):
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=8)
    full_name: Optional[str] = None
    roles: List[str]
    base_id: Optional[uuid.UUID] = None

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return str(v).strip() if v is not None else v


class UserResponse(CamelModel):
    id: uuid.UUID
    username: str
    full_name: Optional[str] = None
    is_active: bool
    base_id: Optional[uuid.UUID] = None
    roles: List[str]

    @field_validator("roles", mode="before")
    @classmethod
    def role_names(cls, v):
        return [getattr(r, "name", r) for r in (v or [])]
