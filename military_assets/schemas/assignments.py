import uuid
from typing import List, Optional

from pydantic import Field

from .common import CamelModel, BaseSummary, EquipmentTypeSummary, UserSummary, StockSnapshot, UTCDateTime


# Assignments
class AssignmentCreate(CamelModel):
    asset_id: Optional[uuid.UUID] = None  # Stock row id, as picked from GET /assets/base/{baseId}
    base_id: Optional[uuid.UUID] = None
    equipment_type_id: Optional[uuid.UUID] = None
    quantity: int
    assigned_to: str
    assignment_date: Optional[UTCDateTime] = None
    expected_return_date: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class AssignmentReturn(CamelModel):
    notes: Optional[str] = None


class AssignmentAsset(CamelModel):
    """The stock row an assignment draws from."""
    id: uuid.UUID
    base_id: uuid.UUID
    equipment_type: Optional[EquipmentTypeSummary] = None
    serial_number: Optional[str] = None


class AssignmentResponse(CamelModel):
    id: uuid.UUID
    stock_id: uuid.UUID
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    base: Optional[BaseSummary] = None
    equipment_type: Optional[EquipmentTypeSummary] = None
    quantity: int
    assigned_to: str
    assigned_by: Optional[UserSummary] = Field(None, validation_alias="assigned_by_user", serialization_alias="assignedBy")
    asset: Optional[AssignmentAsset] = Field(None, validation_alias="stock", serialization_alias="asset")
    assignment_date: UTCDateTime
    expected_return_date: Optional[UTCDateTime] = None
    returned_at: Optional[UTCDateTime] = None
    returned_by: Optional[uuid.UUID] = None
    status: str
    notes: Optional[str] = None


class AssignmentMutationResponse(CamelModel):
    assignment: AssignmentResponse
    stock: Optional[StockSnapshot] = None


class AssignmentPage(CamelModel):
    assignments: List[AssignmentResponse]
    total_assignments: int
    page: int
    total_pages: int


# Expenditures
class ExpenditureCreate(CamelModel):
    asset_id: Optional[uuid.UUID] = None
    base_id: Optional[uuid.UUID] = None
    equipment_type_id: Optional[uuid.UUID] = None
    quantity: int
    reason: Optional[str] = None
    expenditure_date: Optional[UTCDateTime] = None


class ExpenditureResponse(CamelModel):
    id: uuid.UUID
    stock_id: uuid.UUID
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    base: Optional[BaseSummary] = None
    equipment_type: Optional[EquipmentTypeSummary] = None
    quantity: int
    reason: Optional[str] = None
    expenditure_date: UTCDateTime
    recorded_by: Optional[uuid.UUID] = None


class ExpenditureMutationResponse(CamelModel):
    expenditure: ExpenditureResponse
    stock: Optional[StockSnapshot] = None


class ExpenditurePage(CamelModel):
    expenditures: List[ExpenditureResponse]
    total_expenditures: int
    page: int
    total_pages: int
