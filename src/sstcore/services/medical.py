"""Occupational medical exam (EMO) operations.

Provides:
- MedicalExamService: set_aptitude, attach_result, add_evidence, result_url,
  refresh_expiry
- AptitudeResult: Saved exam plus non-blocking advisories
- expiry_transition: Transition suggested by an exam's expiry date
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from sstcore.core.documents import (
    Aptitude,
    DocumentKind,
    ExamDocument,
    ExamState,
    MedicalExam,
    utcnow,
)
from sstcore.core.errors import DocumentNotFound, ValidationError
from sstcore.core.policy.roles import Capability, IdentityContext
from sstcore.core.workflow.engine import TransitionOutcome

from .base import BaseService
from .followups import Advisory, advisories_for

# States whose validity can lapse
_VALID_RESULT_STATES = frozenset({ExamState.COMPLETED, ExamState.DELIVERED})


def expiry_transition(exam: MedicalExam, today: date, warning_days: int = 30) -> Optional[str]:
    """Transition an exam's expiry date calls for, if any.

    Returns:
        "expire" once the expiry date has passed, "flag_expiring" within
        ``warning_days`` of it, otherwise None
    """
    if exam.expiry_date is None:
        return None
    state = ExamState(exam.state)
    if today > exam.expiry_date and (state in _VALID_RESULT_STATES or state == ExamState.EXPIRING_SOON):
        return "expire"
    if state in _VALID_RESULT_STATES and exam.expiry_date - today <= timedelta(days=warning_days):
        return "flag_expiring"
    return None


@dataclass
class AptitudeResult:
    exam: MedicalExam
    advisories: list[Advisory] = field(default_factory=list)


class MedicalExamService(BaseService):
    """Clinical and evidence operations on medical exams."""

    async def set_aptitude(
        self,
        exam_id: str,
        aptitude: Aptitude | str,
        identity: IdentityContext,
        result_date: Optional[date] = None,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> AptitudeResult:
        """Record the aptitude determination.

        A definitive aptitude without a result date stamps today's date.
        When an interconsulta is still pending the change is saved anyway and
        an advisory recommending "Pendiente" is returned with it.

        Raises:
            AccessDenied: Caller is not a health professional
            DocumentFrozen: Exam state does not permit clinical edits
        """
        aptitude = Aptitude(aptitude)
        return await self._run(
            self._set_aptitude(exam_id, aptitude, identity, result_date, expected_version),
            deadline,
        )

    async def _set_aptitude(self, exam_id, aptitude, identity, result_date, expected_version):
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        self._check_base_version(exam, expected_version)

        changes = {"resultado": aptitude}
        if result_date is not None:
            changes["fecha_realizado"] = result_date
        elif aptitude.is_definitive and exam.result_date is None:
            changes["fecha_realizado"] = utcnow().date()

        updated = self.engine.apply_edit(exam, changes, identity)
        saved = await self._save(updated, exam.version, identity, "aptitude_set", fields=sorted(changes))

        follow_ups = await self.repository.list_follow_ups(exam_id)
        advisories = advisories_for(follow_ups, aptitude)
        if advisories:
            self.log.info("aptitude_advisory", exam_id=exam_id, codes=[a.code for a in advisories])
        return AptitudeResult(exam=saved, advisories=advisories)

    async def attach_result(
        self,
        exam_id: str,
        data: bytes,
        content_type: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> MedicalExam:
        """Store the result file and keep its reference on the exam."""
        self.policy.assert_can_write(DocumentKind.MEDICAL_EXAM, "resultado_archivo", identity.roles)
        return await self._run(self._attach_result(exam_id, data, content_type, identity), deadline)

    async def _attach_result(self, exam_id, data, content_type, identity):
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        self.engine.assert_editable(exam)
        reference = await self._blobs().put(data, content_type)
        updated = self.engine.apply_edit(exam, {"resultado_archivo": reference}, identity)
        return await self._save(updated, exam.version, identity, "result_attached")

    async def add_evidence(
        self,
        exam_id: str,
        data: bytes,
        content_type: str,
        label: str,
        identity: IdentityContext,
        file_name: str = "",
        deadline: Optional[float] = None,
    ) -> MedicalExam:
        """Upload one evidence document (lab result, x-ray, ...)."""
        self.policy.assert_can_write(DocumentKind.MEDICAL_EXAM, "documentos", identity.roles)
        return await self._run(
            self._add_evidence(exam_id, data, content_type, label, file_name, identity),
            deadline,
        )

    async def _add_evidence(self, exam_id, data, content_type, label, file_name, identity):
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        self.engine.assert_editable(exam)
        reference = await self._blobs().put(data, content_type)
        documents = [doc.model_dump(mode="json") for doc in exam.evidence_documents]
        documents.append(
            ExamDocument(label=label, file_name=file_name, blob_ref=reference).model_dump(mode="json")
        )
        updated = self.engine.apply_edit(exam, {"documentos": documents}, identity)
        return await self._save(updated, exam.version, identity, "evidence_added", label=label)

    async def result_url(
        self,
        exam_id: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> str:
        """Short-lived signed URL of the result file, for clinical viewers only."""
        self.policy.assert_capability(identity.roles, Capability.VIEW_CLINICAL_DATA, "view exam results")
        return await self._run(self._result_url(exam_id, identity), deadline)

    async def _result_url(self, exam_id, identity):
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        if not exam.result_attachment:
            raise DocumentNotFound("result file", exam_id)
        return await self._blobs().get_signed_url(exam.result_attachment, self.config.signed_url_ttl_seconds)

    async def refresh_expiry(
        self,
        exam_id: str,
        identity: IdentityContext,
        today: Optional[date] = None,
        deadline: Optional[float] = None,
    ) -> Optional[TransitionOutcome]:
        """Apply the expiry transition due today, if any."""
        return await self._run(self._refresh_expiry(exam_id, identity, today or utcnow().date()), deadline)

    async def _refresh_expiry(self, exam_id, identity, today):
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        transition = expiry_transition(exam, today, self.config.exam_expiry_warning_days)
        if transition is None:
            return None
        outcome = self.engine.evaluate(exam, transition, identity)
        outcome.document = await self._save(
            outcome.document,
            exam.version,
            identity,
            "transition_applied",
            transition=transition,
            from_state=outcome.previous_state.value,
            to_state=outcome.new_state.value,
        )
        return outcome

    def _blobs(self):
        if self.blob_store is None:
            raise ValidationError("No blob store configured for exam files")
        return self.blob_store
