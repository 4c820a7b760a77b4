import uuid
from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel
from pydantic.alias_generators import to_camel

from ..timeutil import to_utc


# Offsets are folded into UTC on the way in; stored values come back as UTC
UTCDateTime = Annotated[datetime, AfterValidator(to_utc)]


class CamelModel(BaseModel):
    """Wire format is camelCase; snake_case is accepted on input too."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class BaseSummary(CamelModel):
    id: uuid.UUID
    name: str


class EquipmentTypeSummary(CamelModel):
    id: uuid.UUID
    name: str
    category: str


class UserSummary(CamelModel):
    id: uuid.UUID
    username: str
    full_name: Optional[str] = None


class StockSnapshot(CamelModel):
    id: uuid.UUID
    base_id: uuid.UUID
    equipment_type_id: uuid.UUID
    quantity_total: int
    quantity_available: int
    quantity_reserved: int
