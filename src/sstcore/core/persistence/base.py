"""Storage interfaces consumed by the services.

The core never talks to a database or object store directly; it receives
implementations of these protocols. Two adapters ship with the package:
an in-memory one (tests, embedding) and a SQLAlchemy one (reference store).

Provides:
- DocumentRepository: Versioned document and follow-up storage
- BlobStore: Private binary storage with signed URLs
- AuditEvent: Entry written with a save, in the same transaction
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from sstcore.core.documents import AnyDocument, DocumentKind, FollowUpItem


@dataclass
class AuditEvent:
    """Audit trail entry attached to a save.

    Attributes:
        event_type: What happened (e.g. "transition_applied", "fields_updated")
        actor: User id of the caller
        document_id: Subject document
        event_data: JSON-serializable details
    """

    event_type: str
    actor: str
    document_id: str
    event_data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DocumentRepository(Protocol):
    """Versioned storage for safety documents and exam follow-up items.

    Documents are never deleted. ``save`` compares the stored version with
    ``expected_version`` and stores the document at ``expected_version + 1``;
    ``expected_version=None`` creates a document that must not exist yet.
    """

    async def load(self, kind: DocumentKind, document_id: str) -> AnyDocument:
        """Load a document.

        Raises:
            DocumentNotFound: No document of ``kind`` under ``document_id``
        """
        ...

    async def save(
        self,
        document: AnyDocument,
        expected_version: Optional[int],
        audit: Optional[AuditEvent] = None,
    ) -> AnyDocument:
        """Store a document and return it with its new version.

        Raises:
            StaleWrite: Stored version differs from ``expected_version``
        """
        ...

    async def save_all(
        self,
        items: Sequence[tuple[AnyDocument, Optional[int]]],
        audit: Optional[AuditEvent] = None,
    ) -> list[AnyDocument]:
        """Store several documents atomically: all or none."""
        ...

    async def list_follow_ups(self, exam_id: str) -> list[FollowUpItem]:
        ...

    async def save_follow_up(self, item: FollowUpItem) -> FollowUpItem:
        ...

    async def delete_follow_up(self, exam_id: str, item_id: str) -> None:
        """Remove a follow-up item.

        Raises:
            DocumentNotFound: Item does not exist on the exam
        """
        ...


@runtime_checkable
class BlobStore(Protocol):
    """Private object storage (signature images, exam result files)."""

    async def put(self, data: bytes, content_type: str) -> str:
        """Store bytes and return an opaque reference."""
        ...

    async def get_signed_url(self, reference: str, ttl_seconds: int) -> str:
        """Time-limited URL for a stored object."""
        ...
