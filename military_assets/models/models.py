import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # admin|base_commander|logistics_officer
    description: Mapped[Optional[str]] = mapped_column(String(255))

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    base_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="SET NULL"), index=True)  # Home base; scopes base_commander authority
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    roles = relationship("Role", secondary=user_roles, back_populates="users")
    base = relationship("MilitaryBase", foreign_keys=[base_id])


class MilitaryBase(Base):
    """Physical/organizational location holding stock"""
    __tablename__ = "bases"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    stock = relationship("AssetStock", back_populates="base")


class EquipmentType(Base):
    """Reference data: a fungible kind of equipment (vehicle, weapon, ammunition, ...)"""
    __tablename__ = "equipment_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # vehicle|weapon|ammunition|communication|other
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class AssetStock(Base):
    """Stock ledger row per (base, equipment type). Written only by services.ledger"""
    __tablename__ = "asset_stock"

    id: Mapped[uuid.UUID] = uuid_pk()
    base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # Owned by the base
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # Free to assign/transfer/expend
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # Held by active assignments and pending transfers
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # optimistic lock
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    base = relationship("MilitaryBase", back_populates="stock")
    equipment_type = relationship("EquipmentType")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint("base_id", "equipment_type_id", name="uq_stock_base_type"),
        CheckConstraint("quantity_available >= 0", name="ck_stock_available_nonneg"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_reserved_nonneg"),
        CheckConstraint("quantity_available + quantity_reserved <= quantity_total", name="ck_stock_within_total"),
    )


class Asset(Base):
    """Registered physical asset record; registration credits its quantity into the ledger"""
    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = uuid_pk()
    base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id", ondelete="CASCADE"), nullable=False, index=True)
    stock_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("asset_stock.id", ondelete="SET NULL"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(50), default="in_storage", index=True)  # in_storage|in_use|under_maintenance|decommissioned
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))

    base = relationship("MilitaryBase")
    equipment_type = relationship("EquipmentType")


class Assignment(Base):
    """Issue of stock to personnel; mutated only by return"""
    __tablename__ = "assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    stock_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("asset_stock.id", ondelete="CASCADE"), nullable=False, index=True)
    base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_to: Mapped[str] = mapped_column(String(255), nullable=False)  # Person (name or service number)
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    assignment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    expected_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False, index=True)  # active|returned
    notes: Mapped[Optional[str]] = mapped_column(Text)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    stock = relationship("AssetStock")
    base = relationship("MilitaryBase")
    equipment_type = relationship("EquipmentType")
    assigned_by_user = relationship("User", foreign_keys=[assigned_by])
    returned_by_user = relationship("User", foreign_keys=[returned_by])

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_assignment_quantity_positive"),
        Index('idx_assignment_base_status', 'base_id', 'status'),
    )


class Transfer(Base):
    """Inter-base transfer request: pending -> approved -> completed, pending -> rejected"""
    __tablename__ = "transfers"

    id: Mapped[uuid.UUID] = uuid_pk()
    from_base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    to_base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|approved|rejected|completed
    transfer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))  # Approver or rejecter
    received_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    decision_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    from_base = relationship("MilitaryBase", foreign_keys=[from_base_id])
    to_base = relationship("MilitaryBase", foreign_keys=[to_base_id])
    equipment_type = relationship("EquipmentType")
    requested_by_user = relationship("User", foreign_keys=[requested_by])

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_transfer_quantity_positive"),
        CheckConstraint("from_base_id <> to_base_id", name="ck_transfer_distinct_bases"),
        Index('idx_transfer_status_date', 'status', 'transfer_date'),
    )


class Expenditure(Base):
    """Terminal consumption event; permanently removes quantity from the ledger"""
    __tablename__ = "expenditures"

    id: Mapped[uuid.UUID] = uuid_pk()
    stock_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("asset_stock.id", ondelete="CASCADE"), nullable=False, index=True)
    base_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bases.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    expenditure_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    base = relationship("MilitaryBase")
    equipment_type = relationship("EquipmentType")
    recorded_by_user = relationship("User", foreign_keys=[recorded_by])

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_expenditure_quantity_positive"),
    )


class StockMovement(Base):
    """Ledger journal: one row per quantity mutation"""
    __tablename__ = "stock_movements"

    id: Mapped[uuid.UUID] = uuid_pk()
    stock_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("asset_stock.id", ondelete="CASCADE"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # receive|reserve|release|transfer_out|transfer_in|expend
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50))  # asset|assignment|transfer|expenditure
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_movement_stock_date', 'stock_id', 'created_at'),
    )


class AuditLog(Base):
    """Append-only audit log for all ledger-affecting actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # asset|assignment|transfer|expenditure
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|RETURN|REQUEST|APPROVE|REJECT|RECEIVE|EXPEND
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # admin|base_commander|logistics_officer|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system|seed
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # {request_id, base_id, stock snapshot, ...}
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )
