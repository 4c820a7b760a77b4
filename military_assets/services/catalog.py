"""
Reference data: bases and equipment types.
Creation runs through run_atomic; a lost race on a unique name retries into the
duplicate check and surfaces as a ValidationError.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import EquipmentType, MilitaryBase
from .audit import create_audit_log
from .errors import ValidationError
from .permissions import Actor
from .unit_of_work import run_atomic


logger = structlog.get_logger(__name__)


def base_by_name(db: Session, name: str) -> Optional[MilitaryBase]:
    return db.query(MilitaryBase).filter(MilitaryBase.name == name).first()


def equipment_type_by_name(db: Session, name: str) -> Optional[EquipmentType]:
    return db.query(EquipmentType).filter(EquipmentType.name == name).first()


def create_base(db: Session, actor: Actor, name: str, location: Optional[str] = None) -> MilitaryBase:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Base name is required")

    def _create():
        if base_by_name(db, name):
            raise ValidationError("A base with this name already exists")
        base = MilitaryBase(name=name, location=location)
        db.add(base)
        db.flush()
        create_audit_log(db, "base", base.id, "CREATE", actor=actor, context={"name": name, "location": location})
        return base

    base = run_atomic(db, _create, name="base.create")
    db.refresh(base)
    logger.info("base_created", base_id=str(base.id), name=name)
    return base


def create_equipment_type(
    db: Session,
    actor: Actor,
    name: str,
    category: str,
    description: Optional[str] = None,
) -> EquipmentType:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Equipment type name is required")

    def _create():
        if equipment_type_by_name(db, name):
            raise ValidationError("An equipment type with this name already exists")
        equipment_type = EquipmentType(name=name, category=category, description=description)
        db.add(equipment_type)
        db.flush()
        create_audit_log(
            db, "equipment_type", equipment_type.id, "CREATE", actor=actor,
            context={"name": name, "category": category},
        )
        return equipment_type

    equipment_type = run_atomic(db, _create, name="equipment_type.create")
    db.refresh(equipment_type)
    logger.info("equipment_type_created", equipment_type_id=str(equipment_type.id), name=name)
    return equipment_type
