"""
Seed the local database with roles, users, bases, equipment types and opening stock.

Usage:
  python scripts/seed_data.py

This script is idempotent: users are matched by username, bases and equipment
types by name, and opening stock by the seeded asset's serial number, so
running it again does not credit the ledger twice.
"""

from military_assets.db import SessionLocal, Base, engine
from military_assets.models.models import (
    User,
    Role,
    MilitaryBase,
    EquipmentType,
    Asset,
)
from military_assets.auth.security import get_password_hash
from military_assets.services import reservations
from military_assets.services.permissions import Actor, ALL_ROLES


BASES = [
    ("Fort Alpha", "Northern Sector"),
    ("Camp Bravo", "Eastern Sector"),
    ("Outpost Charlie", "Southern Sector"),
]

EQUIPMENT_TYPES = [
    ("Rifle M4", "weapon", "Standard issue carbine"),
    ("Humvee", "vehicle", "Light utility vehicle"),
    ("5.56mm Rounds (box)", "ammunition", "Box of 1000 rounds"),
    ("Field Radio", "communication", "Portable VHF radio"),
]

OPENING_STOCK = {
    "Rifle M4": 50,
    "Humvee": 5,
    "5.56mm Rounds (box)": 200,
    "Field Radio": 20,
}


def ensure_role(session, name: str, description: str = "") -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if role:
        if description and role.description != description:
            role.description = description
            session.add(role)
        return role
    role = Role(name=name, description=description or name.replace("_", " ").title())
    session.add(role)
    session.flush()
    return role


def ensure_user(session, username: str, password: str, roles: list[str], full_name: str = None, base: MilitaryBase = None) -> User:
    user = session.query(User).filter(User.username == username).first()
    if not user:
        user = User(username=username, password_hash=get_password_hash(password), is_active=True)
        session.add(user)
    user.full_name = full_name or user.full_name
    user.base_id = base.id if base else None
    user.roles = session.query(Role).filter(Role.name.in_(roles)).all()
    session.flush()
    return user


def ensure_base(session, name: str, location: str) -> MilitaryBase:
    base = session.query(MilitaryBase).filter(MilitaryBase.name == name).first()
    if not base:
        base = MilitaryBase(name=name, location=location)
        session.add(base)
        session.flush()
    return base


def ensure_equipment_type(session, name: str, category: str, description: str) -> EquipmentType:
    row = session.query(EquipmentType).filter(EquipmentType.name == name).first()
    if not row:
        row = EquipmentType(name=name, category=category, description=description)
        session.add(row)
        session.flush()
    return row


def ensure_opening_stock(session, actor: Actor, base: MilitaryBase, equipment_type: EquipmentType, quantity: int) -> None:
    serial = f"SEED-{base.name}-{equipment_type.name}".upper().replace(" ", "-")
    if session.query(Asset).filter(Asset.serial_number == serial).first():
        return
    reservations.register_asset(
        session, actor,
        base_id=base.id,
        equipment_type_id=equipment_type.id,
        name=f"{equipment_type.name} opening stock",
        serial_number=serial,
        quantity=quantity,
    )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        for name in ALL_ROLES:
            ensure_role(session, name)

        bases = [ensure_base(session, name, location) for name, location in BASES]
        types = [ensure_equipment_type(session, *row) for row in EQUIPMENT_TYPES]

        admin = ensure_user(session, "admin", "admin123!", ["admin"], full_name="System Administrator")
        ensure_user(session, "commander.alpha", "commander123!", ["base_commander"], full_name="Alpha Commander", base=bases[0])
        ensure_user(session, "commander.bravo", "commander123!", ["base_commander"], full_name="Bravo Commander", base=bases[1])
        ensure_user(session, "logistics", "logistics123!", ["logistics_officer"], full_name="Logistics Officer")

        actor = Actor.from_user(admin)
        for base in bases:
            for equipment_type in types:
                ensure_opening_stock(session, actor, base, equipment_type, OPENING_STOCK[equipment_type.name])

        session.commit()
        print("Seed completed: roles, users, bases, equipment types and stock upserted.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
