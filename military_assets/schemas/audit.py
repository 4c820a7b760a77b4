import uuid
from typing import Any, Dict, Optional

from .common import CamelModel, UTCDateTime


class AuditLogResponse(CamelModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    source: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    timestamp_utc: UTCDateTime
    context: Optional[Dict[str, Any]] = None
    integrity_hash: Optional[str] = None
