from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.audit_log import AuditLog

SWEEPER_ACTOR = "sweeper"
ANONYMOUS_ACTOR = "anonymous"


async def audit(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict | None = None,
) -> None:
    db.add(AuditLog(
        actor_id=actor_id or ANONYMOUS_ACTOR,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=detail or {},
    ))
