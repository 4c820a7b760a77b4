"""Shared pytest fixtures for the asset management tests."""

import os
import tempfile

# Settings are read at import time: point them at a throwaway database first
_TMP_DIR = tempfile.mkdtemp(prefix="military-assets-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["ENABLE_METRICS"] = "false"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LEDGER_RETRY_BACKOFF_MS"] = "1"
os.environ["TRANSFER_RECEIPT_STEP"] = "false"

import pytest
from fastapi.testclient import TestClient

from military_assets.auth.router import ensure_role
from military_assets.auth.security import create_access_token, get_password_hash
from military_assets.db import Base, SessionLocal, engine
from military_assets.main import app
from military_assets.models.models import EquipmentType, MilitaryBase, Role, User
from military_assets.services import reservations
from military_assets.services.permissions import Actor, ALL_ROLES
from military_assets.services.unit_of_work import run_atomic


@pytest.fixture(autouse=True)
def _reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    for name in ALL_ROLES:
        ensure_role(session, name)
    session.commit()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


# ============================================================
# Reference data
# ============================================================

def _make_base(db, name):
    base = MilitaryBase(name=name, location=f"{name} sector")
    db.add(base)
    db.commit()
    return base


@pytest.fixture
def base_a(db):
    return _make_base(db, "Fort Alpha")


@pytest.fixture
def base_b(db):
    return _make_base(db, "Camp Bravo")


@pytest.fixture
def base_c(db):
    return _make_base(db, "Outpost Charlie")


@pytest.fixture
def rifle(db):
    equipment_type = EquipmentType(name="Rifle M4", category="weapon")
    db.add(equipment_type)
    db.commit()
    return equipment_type


@pytest.fixture
def radio(db):
    equipment_type = EquipmentType(name="Field Radio", category="communication")
    db.add(equipment_type)
    db.commit()
    return equipment_type


# ============================================================
# Users and actors
# ============================================================

def make_user(db, username, roles, base=None, password="password123"):
    user = User(
        username=username,
        full_name=username.replace(".", " ").title(),
        password_hash=get_password_hash(password),
        is_active=True,
        base_id=base.id if base else None,
    )
    user.roles = db.query(Role).filter(Role.name.in_(roles)).all()
    db.add(user)
    db.commit()
    return user


def actor_for(user) -> Actor:
    return Actor.from_user(user, request_id="test-request")


def auth_headers(user) -> dict:
    token = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_user(db):
    return make_user(db, "admin", ["admin"])


@pytest.fixture
def commander_a(db, base_a):
    return make_user(db, "commander.alpha", ["base_commander"], base=base_a)


@pytest.fixture
def commander_b(db, base_b):
    return make_user(db, "commander.bravo", ["base_commander"], base=base_b)


@pytest.fixture
def logistics_user(db):
    return make_user(db, "logistics", ["logistics_officer"])


@pytest.fixture
def admin(admin_user):
    return actor_for(admin_user)


# ============================================================
# Stock
# ============================================================

def stock_up(db, actor, base, equipment_type, quantity):
    """Register an asset record crediting quantity units into the base's ledger row."""
    outcome = run_atomic(
        db,
        lambda: reservations.register_asset(
            db, actor,
            base_id=base.id,
            equipment_type_id=equipment_type.id,
            name=f"{equipment_type.name} intake",
            quantity=quantity,
        ),
        name="asset.register",
    )
    return outcome.stock["id"]


@pytest.fixture
def rifles_at_a(db, admin, base_a, rifle):
    """Base A holds 10 rifles."""
    return stock_up(db, admin, base_a, rifle, 10)
