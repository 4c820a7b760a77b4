"""
Permission checks for ledger-affecting operations.
All checks take the request-scoped Actor; nothing reads ambient session state.
"""
import uuid
from dataclasses import dataclass, field
from typing import Optional, FrozenSet

from .errors import Unauthorized


ADMIN = "admin"
BASE_COMMANDER = "base_commander"
LOGISTICS_OFFICER = "logistics_officer"

ALL_ROLES = (ADMIN, BASE_COMMANDER, LOGISTICS_OFFICER)


@dataclass(frozen=True)
class Actor:
    """Verified identity handed to the core for one request."""
    user_id: uuid.UUID
    roles: FrozenSet[str] = field(default_factory=frozenset)
    base_id: Optional[uuid.UUID] = None
    request_id: Optional[str] = None

    @property
    def primary_role(self) -> str:
        for role in ALL_ROLES:
            if role in self.roles:
                return role
        return "user"

    @classmethod
    def from_user(cls, user, request_id: Optional[str] = None) -> "Actor":
        return cls(
            user_id=user.id,
            roles=frozenset((r.name or "").lower() for r in user.roles),
            base_id=user.base_id,
            request_id=request_id,
        )


def is_admin(actor: Actor) -> bool:
    return ADMIN in actor.roles


def is_commander_of(actor: Actor, base_id: uuid.UUID) -> bool:
    """Base commander whose home base is base_id."""
    return BASE_COMMANDER in actor.roles and actor.base_id is not None and actor.base_id == base_id


def can_manage_base(actor: Actor, base_id: uuid.UUID) -> bool:
    """
    Assign, return and expend stock at a base.
    - Admin can manage any base
    - Base commander can manage their own base
    """
    return is_admin(actor) or is_commander_of(actor, base_id)


def can_receive_stock(actor: Actor, base_id: uuid.UUID) -> bool:
    """Register assets (stock intake): admin, logistics officer, or the base's commander."""
    return is_admin(actor) or LOGISTICS_OFFICER in actor.roles or is_commander_of(actor, base_id)


def can_request_transfer(actor: Actor, from_base_id: uuid.UUID, to_base_id: uuid.UUID) -> bool:
    if is_admin(actor) or LOGISTICS_OFFICER in actor.roles:
        return True
    return is_commander_of(actor, from_base_id) or is_commander_of(actor, to_base_id)


def can_decide_transfer(actor: Actor, transfer) -> bool:
    """Approve/reject: admin or the commander of either base."""
    if is_admin(actor):
        return True
    return is_commander_of(actor, transfer.from_base_id) or is_commander_of(actor, transfer.to_base_id)


def can_receive_transfer(actor: Actor, transfer) -> bool:
    return is_admin(actor) or is_commander_of(actor, transfer.to_base_id)


def ensure(allowed: bool, message: str = "Forbidden") -> None:
    if not allowed:
        raise Unauthorized(message)
