import uuid
from enum import Enum
from typing import List, Optional

from pydantic import field_validator

from .common import CamelModel, BaseSummary, EquipmentTypeSummary, StockSnapshot, UTCDateTime


class AssetStatus(str, Enum):
    in_storage = "in_storage"
    in_use = "in_use"
    under_maintenance = "under_maintenance"
    decommissioned = "decommissioned"


class EquipmentCategory(str, Enum):
    vehicle = "vehicle"
    weapon = "weapon"
    ammunition = "ammunition"
    communication = "communication"
    other = "other"


# Bases
class MilitaryBaseCreate(CamelModel):
    name: str
    location: Optional[str] = None


class MilitaryBaseResponse(CamelModel):
    id: uuid.UUID
    name: str
    location: Optional[str] = None
    created_at: Optional[UTCDateTime] = None


class MilitaryBaseListResponse(CamelModel):
    bases: List[MilitaryBaseResponse]


# Equipment types
class EquipmentTypeCreate(CamelModel):
    name: str
    category: EquipmentCategory
    description: Optional[str] = None


class EquipmentTypeResponse(CamelModel):
    id: uuid.UUID
    name: str
    category: str
    description: Optional[str] = None


# Asset records
class AssetCreate(CamelModel):
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    name: str
    serial_number: Optional[str] = None
    status: AssetStatus = AssetStatus.in_storage
    quantity: int = 1

    @field_validator("serial_number", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class AssetResponse(CamelModel):
    id: uuid.UUID
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    stock_id: Optional[uuid.UUID] = None
    name: str
    serial_number: Optional[str] = None
    status: str
    quantity: int
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None


class AssetCreateResponse(CamelModel):
    asset: AssetResponse
    stock: Optional[StockSnapshot] = None


# Stock rows: the "assets" a base holds, as listed to the asset pickers
class StockResponse(CamelModel):
    id: uuid.UUID
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    equipment_type: Optional[EquipmentTypeSummary] = None
    quantity_total: int
    quantity_available: int
    quantity_reserved: int
    quantity: int  # Same as quantity_available; the figure clients bound requests by
    updated_at: Optional[UTCDateTime] = None

    @classmethod
    def from_row(cls, row) -> "StockResponse":
        return cls(
            id=row.id,
            base_id=row.base_id,
            equipment_type_id=row.equipment_type_id,
            equipment_type=EquipmentTypeSummary.model_validate(row.equipment_type) if row.equipment_type else None,
            quantity_total=row.quantity_total,
            quantity_available=row.quantity_available,
            quantity_reserved=row.quantity_reserved,
            quantity=row.quantity_available,
            updated_at=row.updated_at,
        )


class StockMovementResponse(CamelModel):
    id: uuid.UUID
    stock_id: uuid.UUID
    kind: str
    quantity: int
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    actor_id: Optional[uuid.UUID] = None
    created_at: UTCDateTime


class DashboardMetricsResponse(CamelModel):
    base: Optional[BaseSummary] = None
    quantity_total: int
    quantity_available: int
    quantity_reserved: int
    quantity_assigned: int
    received: int
    expended: int
    transferred_in: int
    transferred_out: int
    net_movement: int
    pending_transfers_in: int
    pending_transfers_out: int
