"""
Audit log repository.

Append-only trail of administrative actions on commission ledgers.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

from domain.time import to_iso_utc
from repositories.client import get_supabase

_AUDIT_LOGS_TABLE: str = "audit_logs"


def record_audit_event(
    action: str,
    performed_by: UUID,
    target_entity: str,
    target_id: UUID,
    occurred_at: datetime,
    organization_id: Optional[UUID] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> UUID:
    """
    Insert an audit entry.

    `details` must be JSON-serializable once Decimals, UUIDs and datetimes are
    rendered as strings.

    Returns:
        The new audit entry id
    """

    audit_id = uuid4()
    payload: dict[str, Any] = {
        "audit_id": str(audit_id),
        "action": action,
        "performed_by": str(performed_by),
        "target_entity": target_entity,
        "target_id": str(target_id),
        "organization_id": str(organization_id) if organization_id else None,
        # Round-trip through json so Decimal/UUID/datetime values become strings.
        "details": json.loads(json.dumps(dict(details or {}), default=str)),
        "created_at_utc": to_iso_utc(occurred_at, name="occurred_at"),
    }

    response = get_supabase().table(_AUDIT_LOGS_TABLE).insert(payload).execute()
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to record audit event: {error}")

    return audit_id


__all__ = ["record_audit_event"]
