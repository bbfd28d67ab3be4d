"""Immutable audit log with hash chaining.

Provides:
- append_audit_log: Append new audit entry with hash chain integrity
- verify_audit_chain: Verify cryptographic integrity of entire audit chain
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import AuditEvent
from .models import AuditLog, canonical_event_data


async def append_audit_log(session: AsyncSession, audit: AuditEvent) -> AuditLog:
    """Append new entry to audit log with hash chaining.

    Links the entry to the most recent one via its hash. Runs inside the
    caller's session so the entry commits together with the document write.

    Args:
        session: Database session
        audit: Event to record

    Returns:
        Created AuditLog entry with computed hash

    Example:
        >>> async with session_scope(factory) as session:
        ...     await append_audit_log(
        ...         session,
        ...         AuditEvent("transition_applied", "user-1", "doc-1", {"to": "Aprobado"}),
        ...     )
    """
    stmt = select(AuditLog).order_by(AuditLog.id.desc()).limit(1)
    result = await session.execute(stmt)
    previous_entry = result.scalar_one_or_none()

    entry = AuditLog(
        timestamp=datetime.now(timezone.utc),
        event_type=audit.event_type,
        document_id=audit.document_id,
        actor=audit.actor,
        event_data=canonical_event_data(audit.event_data),
        previous_hash=previous_entry.entry_hash if previous_entry else None,
        entry_hash="",  # Will be computed by before_insert event listener
    )

    session.add(entry)
    await session.flush()  # Trigger before_insert event to compute hash

    return entry


async def verify_audit_chain(session: AsyncSession) -> bool:
    """Verify cryptographic integrity of audit log chain.

    Validates that:
    1. Each entry's hash matches its computed hash
    2. Each entry's previous_hash matches the previous entry's hash

    Returns:
        True if chain is valid, False if tampered
    """
    stmt = select(AuditLog).order_by(AuditLog.id.asc())
    result = await session.execute(stmt)
    entries = result.scalars().all()

    previous_hash = None
    for entry in entries:
        if entry.entry_hash != entry.compute_hash():
            return False
        if entry.previous_hash != previous_hash:
            return False
        previous_hash = entry.entry_hash

    return True
