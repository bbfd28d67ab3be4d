"""Base service with shared load/save, scope and deadline handling.

Provides:
- BaseService: Repository access, organization scope checks, audited saves
- within_deadline: Run a coroutine under an optional deadline
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

import structlog

from sstcore.core.config import Config, load_config
from sstcore.core.documents import AnyDocument, DocumentBase, DocumentKind, kind_of
from sstcore.core.errors import AccessDenied, DeadlineExceeded, StaleWrite
from sstcore.core.persistence.base import AuditEvent, BlobStore, DocumentRepository
from sstcore.core.policy.access import AccessPolicyEngine
from sstcore.core.policy.roles import IdentityContext
from sstcore.core.workflow.engine import WorkflowEngine

logger = structlog.get_logger()

T = TypeVar("T")


async def within_deadline(awaitable: Awaitable[T], deadline: Optional[float]) -> T:
    """Await ``awaitable``, raising DeadlineExceeded after ``deadline`` seconds.

    Cancellation from the caller propagates unchanged.
    """
    if deadline is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline)
    except asyncio.TimeoutError as exc:
        raise DeadlineExceeded(f"Operation did not finish within {deadline}s") from exc


class BaseService:
    """Shared plumbing for the document services.

    Every public operation loads through ``_load`` (organization scope),
    computes the change on a copy and persists it with one ``_save`` call.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        blob_store: Optional[BlobStore] = None,
        config: Optional[Config] = None,
        engine: Optional[WorkflowEngine] = None,
    ):
        """Initialize service.

        Args:
            repository: Document store
            blob_store: Binary store for signatures and result files
            config: Settings (loaded from environment when omitted)
            engine: Shared workflow engine (built from config when omitted)
        """
        self.repository = repository
        self.blob_store = blob_store
        self.config = config or load_config()
        self.engine = engine or WorkflowEngine(self.config)
        self.policy: AccessPolicyEngine = self.engine.policy
        self.log = logger.bind(service=self.__class__.__name__)

    def _deadline(self, deadline: Optional[float]) -> Optional[float]:
        return deadline if deadline is not None else self.config.repository_timeout_seconds

    async def _run(self, awaitable: Awaitable[T], deadline: Optional[float]) -> T:
        return await within_deadline(awaitable, self._deadline(deadline))

    def _check_scope(self, identity: IdentityContext, document: DocumentBase) -> None:
        if not identity.can_access(document.organization_id):
            raise AccessDenied("Document belongs to another organization")

    async def _load(self, kind: DocumentKind, document_id: str, identity: IdentityContext) -> AnyDocument:
        document = await self.repository.load(kind, document_id)
        self._check_scope(identity, document)
        return document

    def _check_base_version(self, document: DocumentBase, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != document.version:
            raise StaleWrite(document.id, expected_version, document.version)

    async def _save(
        self,
        document: AnyDocument,
        base_version: Optional[int],
        identity: IdentityContext,
        event_type: str,
        **event_data: Any,
    ) -> AnyDocument:
        audit = AuditEvent(
            event_type=event_type,
            actor=identity.user_id,
            document_id=document.id,
            event_data={"kind": kind_of(document).value, **event_data},
        )
        saved = await self.repository.save(document, base_version, audit=audit)
        self.log.info(
            event_type,
            kind=kind_of(saved).value,
            document_id=saved.id,
            version=saved.version,
            user_id=identity.user_id,
        )
        return saved
