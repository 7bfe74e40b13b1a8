"""
Audit logging service for tariff lifecycle actions.

Entries are written inside the caller's unit of work so an audit row exists
exactly when the change it describes was committed.
"""

from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from terminal_backend.app.models.audit_log import AuditLog
from terminal_backend.app.models.tariff import Tariff


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TARIFF_CREATED = "TARIFF_CREATED"
    TARIFF_UPDATED = "TARIFF_UPDATED"
    TARIFF_ACTIVATED = "TARIFF_ACTIVATED"
    TARIFF_DEACTIVATED = "TARIFF_DEACTIVATED"
    TARIFF_DELETED = "TARIFF_DELETED"


async def log_tariff_event(
    db: AsyncSession,
    action: str,
    actor: str,
    tariff: Tariff,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Record a tariff action in the audit log (flushed, not committed).

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Operator performing the action
        tariff: Tariff acted upon
        metadata: Additional JSON-serializable context

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=action,
        tariff_id=tariff.id,
        tariff_code=tariff.tariff_code,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tariff_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        tariff_id: Filter by tariff
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if tariff_id:
        query = query.where(AuditLog.tariff_id == tariff_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
