"""SQLAlchemy ORM models for the reference document store.

Models:
- DocumentRecord: Safety document payload with its concurrency version
- FollowUpRecord: Interconsulta / vigilancia items of an exam
- AuditLog: Immutable audit trail with hash chaining
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class DocumentRecord(Base):
    """Stored safety document.

    The full document is kept as a JSON payload; kind, organization, state
    and version are duplicated into columns for filtering and for the
    conditional version update.
    """
    __tablename__ = "safety_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    organization_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    state: Mapped[str] = mapped_column(String(40), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_documents_org_kind", "organization_id", "kind"),
    )


class FollowUpRecord(Base):
    """Follow-up item attached to a medical exam."""
    __tablename__ = "follow_up_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    exam_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON item
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


def compute_entry_hash(
    timestamp: Optional[datetime],
    event_type: str,
    document_id: str,
    actor: str,
    event_data: str,
    previous_hash: Optional[str],
) -> str:
    """SHA-256 over the canonical form of an audit entry.

    Shared by the ORM model and the in-memory store so both chains verify
    the same way.
    """
    # SQLite stores naive datetimes
    if timestamp and timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    hash_input = {
        "timestamp": timestamp.isoformat() if timestamp else "",
        "event_type": event_type,
        "document_id": document_id,
        "actor": actor,
        "event_data": event_data,
        "previous_hash": previous_hash or "",
    }
    canonical = json.dumps(hash_input, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def canonical_event_data(event_data: dict[str, Any]) -> str:
    return json.dumps(event_data, sort_keys=True, default=str)


class AuditLog(Base):
    """Immutable audit trail with hash chaining.

    Each entry is cryptographically linked to the previous entry via SHA-256 hash.

    Attributes:
        id: Auto-incrementing primary key
        timestamp: When the event occurred (indexed)
        event_type: Type of event (indexed)
        document_id: Subject document (indexed)
        actor: User id of the caller
        event_data: JSON payload with event details
        previous_hash: Hash of previous entry (for chain integrity)
        entry_hash: SHA-256 hash of this entry (unique)
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False, default=lambda: datetime.now(timezone.utc))
    event_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    document_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[str] = mapped_column(Text, nullable=False)  # JSON payload
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    __table_args__ = (
        Index("ix_audit_document_timestamp", "document_id", "timestamp"),
    )

    def compute_hash(self) -> str:
        return compute_entry_hash(
            self.timestamp,
            self.event_type,
            self.document_id,
            self.actor,
            self.event_data,
            self.previous_hash,
        )


# Event listener to auto-compute hash before insert
@event.listens_for(AuditLog, "before_insert")
def compute_audit_hash(mapper, connection, target):
    """Automatically compute entry_hash before inserting audit log entry."""
    if not target.entry_hash:
        target.entry_hash = target.compute_hash()
