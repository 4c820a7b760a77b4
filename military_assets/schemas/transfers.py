import uuid
from enum import Enum
from typing import List, Optional

from .common import CamelModel, BaseSummary, EquipmentTypeSummary, StockSnapshot, UTCDateTime


class TransferStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


class TransferCreate(CamelModel):
    from_base_id: uuid.UUID
    to_base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    quantity: int
    transfer_date: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class TransferReject(CamelModel):
    reason: Optional[str] = None


class TransferResponse(CamelModel):
    id: uuid.UUID
    from_base_id: uuid.UUID
    to_base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    from_base: Optional[BaseSummary] = None
    to_base: Optional[BaseSummary] = None
    equipment_type: Optional[EquipmentTypeSummary] = None
    quantity: int
    status: TransferStatus
    transfer_date: UTCDateTime
    notes: Optional[str] = None
    requested_by: Optional[uuid.UUID] = None
    decided_by: Optional[uuid.UUID] = None
    received_by: Optional[uuid.UUID] = None
    decision_reason: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    decided_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None


class TransferMutationResponse(CamelModel):
    transfer: TransferResponse
    from_stock: Optional[StockSnapshot] = None
    to_stock: Optional[StockSnapshot] = None


class TransferPage(CamelModel):
    transfers: List[TransferResponse]
    total_transfers: int
    page: int
    total_pages: int
