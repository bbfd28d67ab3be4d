"""Safe-work procedure (PETS) versioning and read acknowledgements.

Provides:
- ProcedureService: new_version, register_reading
"""

from typing import Optional

from sstcore.core.documents import (
    DocumentKind,
    ProcedureState,
    Reading,
    SafeWorkProcedure,
    new_id,
    utcnow,
)
from sstcore.core.errors import GuardFailed
from sstcore.core.persistence.base import AuditEvent
from sstcore.core.policy.roles import Capability, IdentityContext

from .base import BaseService


class ProcedureService(BaseService):
    """Operations specific to written safe-work procedures."""

    async def new_version(
        self,
        procedure_id: str,
        identity: IdentityContext,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> tuple[SafeWorkProcedure, SafeWorkProcedure]:
        """Start a new revision of a current procedure.

        The current copy becomes Obsoleto and a Borrador copy with the next
        revision number is created; both are written in one atomic save.

        Returns:
            Tuple of (new draft, obsolete previous revision)

        Raises:
            InvalidTransition: Procedure is not Vigente
            AccessDenied: Caller cannot review procedures
        """
        return await self._run(self._new_version(procedure_id, identity, expected_version), deadline)

    async def _new_version(self, procedure_id, identity, expected_version):
        current = await self._load(DocumentKind.SAFE_WORK_PROCEDURE, procedure_id, identity)
        self._check_base_version(current, expected_version)

        outcome = self.engine.evaluate(current, "obsolete", identity)
        now = utcnow()
        draft = current.model_copy(
            deep=True,
            update={
                "id": new_id(),
                "state": ProcedureState.DRAFT,
                "revision": current.revision + 1,
                "version": 0,
                "created_by": identity.user_id,
                "created_at": now,
                "updated_at": now,
                "signatures": [],
                "readings": [],
                "reviewer_id": None,
                "approver_id": None,
                "issue_date": None,
                "supersedes_id": current.id,
            },
        )

        draft, obsolete = await self.repository.save_all(
            [(draft, None), (outcome.document, current.version)],
            audit=AuditEvent(
                event_type="procedure_new_version",
                actor=identity.user_id,
                document_id=current.id,
                event_data={"new_id": draft.id, "revision": draft.revision},
            ),
        )
        self.log.info(
            "procedure_new_version",
            procedure_id=current.id,
            new_id=draft.id,
            revision=draft.revision,
            user_id=identity.user_id,
        )
        return draft, obsolete

    async def register_reading(
        self,
        procedure_id: str,
        identity: IdentityContext,
        user_name: str = "",
        accepted: bool = True,
        deadline: Optional[float] = None,
    ) -> SafeWorkProcedure:
        """Record that the caller read a current procedure.

        One acknowledgement per user; repeating it returns the procedure unchanged.

        Raises:
            GuardFailed: Procedure is not Vigente
        """
        self.policy.assert_capability(identity.roles, Capability.READ_DOCUMENTS, "acknowledge procedures")
        return await self._run(self._register_reading(procedure_id, identity, user_name, accepted), deadline)

    async def _register_reading(self, procedure_id, identity, user_name, accepted):
        procedure = await self._load(DocumentKind.SAFE_WORK_PROCEDURE, procedure_id, identity)
        if ProcedureState(procedure.state) != ProcedureState.CURRENT:
            raise GuardFailed("register_reading", "only current procedures can be acknowledged")
        if any(reading.user_id == identity.user_id for reading in procedure.readings):
            return procedure

        updated = procedure.model_copy(deep=True)
        updated.readings.append(Reading(user_id=identity.user_id, user_name=user_name, accepted=accepted))
        updated.updated_at = utcnow()
        return await self._save(updated, procedure.version, identity, "procedure_read")
