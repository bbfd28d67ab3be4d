"""SQLAlchemy implementation of DocumentRepository.

Optimistic concurrency is enforced by the database itself: updates are
issued as ``UPDATE ... WHERE id = ? AND version = ?`` and a zero row count
means another writer got there first.

Provides:
- SqlAlchemyDocumentRepository: Async repository over an async_sessionmaker
"""

import json
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sstcore.core.documents import (
    AnyDocument,
    DocumentKind,
    FollowUpItem,
    dump_document,
    kind_of,
    parse_document,
)
from sstcore.core.errors import DocumentNotFound, RepositoryError, StaleWrite

from .audit import append_audit_log, verify_audit_chain
from .base import AuditEvent
from .database import session_scope
from .models import DocumentRecord, FollowUpRecord


class SqlAlchemyDocumentRepository:
    """Document and follow-up storage in a relational database.

    Args:
        session_factory: Factory from create_session_factory()
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, kind: DocumentKind, document_id: str) -> AnyDocument:
        kind = DocumentKind(kind)
        try:
            async with session_scope(self.session_factory) as session:
                stmt = select(DocumentRecord).where(
                    DocumentRecord.id == document_id,
                    DocumentRecord.kind == kind.value,
                )
                record = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to load {kind.value} {document_id}") from exc

        if record is None:
            raise DocumentNotFound(kind.value, document_id)

        document = parse_document(json.loads(record.payload))
        document.version = record.version
        return document

    async def save(
        self,
        document: AnyDocument,
        expected_version: Optional[int],
        audit: Optional[AuditEvent] = None,
    ) -> AnyDocument:
        return (await self.save_all([(document, expected_version)], audit))[0]

    async def save_all(
        self,
        items: Sequence[tuple[AnyDocument, Optional[int]]],
        audit: Optional[AuditEvent] = None,
    ) -> list[AnyDocument]:
        """Write every document in one transaction. Any StaleWrite rolls back all of them."""
        try:
            async with session_scope(self.session_factory) as session:
                stored = [await self._write(session, document, expected) for document, expected in items]
                if audit is not None:
                    await append_audit_log(session, audit)
        except IntegrityError as exc:
            # Concurrent create of the same id
            document = items[0][0]
            raise StaleWrite(document.id, None, None) from exc
        except SQLAlchemyError as exc:
            raise RepositoryError("Failed to save documents") from exc
        return stored

    async def _write(
        self,
        session: AsyncSession,
        document: AnyDocument,
        expected_version: Optional[int],
    ) -> AnyDocument:
        new_version = (expected_version or 0) + 1
        stored = document.model_copy(deep=True)
        stored.version = new_version
        data = dump_document(stored)
        payload = json.dumps(data, sort_keys=True)
        now = datetime.now(timezone.utc)

        if expected_version is None:
            existing = await session.get(DocumentRecord, document.id)
            if existing is not None:
                raise StaleWrite(document.id, None, existing.version)
            session.add(
                DocumentRecord(
                    id=document.id,
                    kind=kind_of(document).value,
                    organization_id=document.organization_id,
                    state=data["state"],
                    version=new_version,
                    payload=payload,
                    updated_at=now,
                )
            )
            await session.flush()
            return stored

        stmt = (
            update(DocumentRecord)
            .where(
                DocumentRecord.id == document.id,
                DocumentRecord.version == expected_version,
            )
            .values(version=new_version, state=data["state"], payload=payload, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            actual = await session.scalar(
                select(DocumentRecord.version).where(DocumentRecord.id == document.id)
            )
            if actual is None:
                raise DocumentNotFound(kind_of(document).value, document.id)
            raise StaleWrite(document.id, expected_version, actual)
        return stored

    async def list_follow_ups(self, exam_id: str) -> list[FollowUpItem]:
        try:
            async with session_scope(self.session_factory) as session:
                stmt = (
                    select(FollowUpRecord)
                    .where(FollowUpRecord.exam_id == exam_id)
                    .order_by(FollowUpRecord.created_at.asc())
                )
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to list follow-ups of exam {exam_id}") from exc
        return [FollowUpItem.model_validate_json(record.payload) for record in records]

    async def save_follow_up(self, item: FollowUpItem) -> FollowUpItem:
        payload = item.model_dump_json()
        try:
            async with session_scope(self.session_factory) as session:
                record = await session.get(FollowUpRecord, item.id)
                if record is None:
                    session.add(
                        FollowUpRecord(
                            id=item.id,
                            exam_id=item.exam_id,
                            status=item.status.value,
                            payload=payload,
                            created_at=item.created_at,
                        )
                    )
                else:
                    record.status = item.status.value
                    record.payload = payload
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to save follow-up {item.id}") from exc
        return item

    async def delete_follow_up(self, exam_id: str, item_id: str) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                record = await session.get(FollowUpRecord, item_id)
                if record is None or record.exam_id != exam_id:
                    raise DocumentNotFound("follow-up", item_id)
                await session.delete(record)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to delete follow-up {item_id}") from exc

    async def verify_audit_chain(self) -> bool:
        try:
            async with session_scope(self.session_factory) as session:
                return await verify_audit_chain(session)
        except SQLAlchemyError as exc:
            raise RepositoryError("Failed to read audit log") from exc
