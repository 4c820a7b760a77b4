"""
Audit logging service.
Append-only audit log with integrity hashing.
Entries are added to the caller's transaction so they commit or roll back with the mutation.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .permissions import Actor


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor: Optional[Actor] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Add an append-only audit log entry to the session.

    Args:
        db: Database session (not committed here)
        entity_type: Type of entity (asset|assignment|transfer|expenditure)
        entity_id: Entity ID
        action: Action performed (CREATE|RETURN|REQUEST|APPROVE|REJECT|RECEIVE|EXPEND)
        actor: Request-scoped actor, None for system actions
        source: Source of the action (api|system|seed)
        changes_json: Before/after diff
        context: Additional context (base ids, quantities, stock snapshot)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        The pending AuditLog object
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    actor_id = actor.user_id if actor else None
    actor_role = actor.primary_role if actor else "system"
    context = dict(context or {})
    if actor and actor.request_id:
        context.setdefault("request_id", actor.request_id)

    integrity_hash = None
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    if integrity_secret:
        canonical_data = {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "source": source,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
            "context": context or None,
        }

        # Remove None values and sort keys for consistency
        canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
        canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

        hash_input = f"{canonical_json}:{integrity_secret}"
        integrity_hash = hashlib.sha256(hash_input.encode()).hexdigest()

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "api",
        changes_json=_jsonable(changes_json),
        timestamp_utc=timestamp_utc,
        context=_jsonable(context) or None,
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    return audit_log


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id=None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """Get audit logs, newest first, with optional filtering."""
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    query = query.order_by(AuditLog.timestamp_utc.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff


def _jsonable(data: Optional[Dict]) -> Optional[Dict]:
    # JSON columns cannot hold UUID/datetime values directly
    if data is None:
        return None
    return json.loads(json.dumps(data, default=str))
