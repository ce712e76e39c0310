"""
Audit trail for engagement writes.

Audit rows are written inside the same transaction as the change they
describe.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from ..database.adapter import Queryable

logger = logging.getLogger(__name__)


async def record_audit(
    conn: Queryable,
    tenant_id: str,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    details: Dict[str, Any],
    at: datetime,
) -> UUID:
    """
    Append an audit entry.

    Args:
        conn: Open transaction handle
        tenant_id: Owning tenant
        actor_id: User who performed the action (None for system actions)
        action: Dotted action name (e.g., "loyalty.redeem")
        entity_type: Kind of entity touched
        entity_id: ID of the entity touched
        details: JSON-serializable description of the change
        at: Timestamp of the change

    Returns:
        ID of the audit entry
    """
    audit_id = uuid4()
    await conn.execute(
        """
        INSERT INTO audit_entries (
            id, tenant_id, actor_id, action, entity_type, entity_id, details_json, created_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """,
        audit_id,
        tenant_id,
        actor_id,
        action,
        entity_type,
        entity_id,
        json.dumps(details, default=str),
        at,
    )
    logger.debug(f"Audit {action} on {entity_type}:{entity_id} by {actor_id or 'system'}")
    return audit_id
