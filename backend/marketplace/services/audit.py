"""Audit trail for money-bearing and terminal transitions.

Entries are added to the caller's session so they commit or roll back
together with the transition they describe.
"""

import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    user_id: int | None = None,
    details: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(entry)
    await db.flush()
    logger.debug("Audit %s %s/%s", action, entity_type, entity_id)
    return entry
