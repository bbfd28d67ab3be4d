"""Interconsulta / vigilancia tracking for medical exams.

The tracker reads the exam's state through the workflow engine but never
transitions it. Follow-ups on a cancelled or expired exam are frozen.

Provides:
- FollowUpTracker: add, remove, resolve, list, aptitude_advisories
- Advisory: Non-blocking recommendation returned with an aptitude change
- advisories_for: Pure advisory rule over a list of items
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import pydantic

from sstcore.core.documents import (
    Aptitude,
    DocumentKind,
    FollowUpItem,
    FollowUpKind,
    FollowUpOutcome,
    FollowUpStatus,
    MedicalExam,
    utcnow,
)
from sstcore.core.errors import DocumentFrozen, DocumentNotFound, ValidationError
from sstcore.core.policy.roles import Capability, IdentityContext

from .base import BaseService

PENDING_REFERRAL = "pending_referral"


@dataclass(frozen=True)
class Advisory:
    code: str
    message: str
    recommended_aptitude: Optional[Aptitude] = None


def advisories_for(items: Iterable[FollowUpItem], aptitude: Aptitude | str | None) -> list[Advisory]:
    """Recommend "Pendiente" while a referral is open and a definitive aptitude is set.

    Guidance only; the aptitude change itself is never blocked.
    """
    if aptitude is None or not Aptitude(aptitude).is_definitive:
        return []
    pending = [
        item
        for item in items
        if item.kind == FollowUpKind.REFERRAL and item.status == FollowUpStatus.PENDING
    ]
    if not pending:
        return []
    return [
        Advisory(
            code=PENDING_REFERRAL,
            message=(
                f"{len(pending)} pending interconsulta(s) on this exam; "
                f"consider setting the aptitude to '{Aptitude.PENDING.value}' (observed) until resolved"
            ),
            recommended_aptitude=Aptitude.PENDING,
        )
    ]


class FollowUpTracker(BaseService):
    """Follow-up items attached to a medical exam."""

    async def _load_open_exam(self, exam_id: str, identity: IdentityContext) -> MedicalExam:
        exam = await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        if self.engine.is_terminal(exam):
            raise DocumentFrozen(DocumentKind.MEDICAL_EXAM.value, exam.id, self.engine.state_of(exam).value)
        return exam

    async def _find(self, exam_id: str, item_id: str) -> FollowUpItem:
        for item in await self.repository.list_follow_ups(exam_id):
            if item.id == item_id:
                return item
        raise DocumentNotFound("follow-up", item_id)

    async def add(
        self,
        exam_id: str,
        draft: FollowUpItem | Mapping[str, Any],
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> FollowUpItem:
        """Attach a new pending item to an exam.

        Args:
            exam_id: Exam the item belongs to
            draft: kind, cie10_code, specialty, deadline and optional detail

        Raises:
            AccessDenied: Caller is not a health professional, or exam out of scope
            DocumentFrozen: Exam is cancelled or expired
            ValidationError: Draft is incomplete
        """
        self.policy.assert_capability(identity.roles, Capability.MANAGE_FOLLOW_UPS, "manage follow-ups")
        data = draft.model_dump() if isinstance(draft, FollowUpItem) else dict(draft)
        data.update(
            exam_id=exam_id,
            status=FollowUpStatus.PENDING,
            outcome=None,
            resolved_at=None,
            created_by=identity.user_id,
            created_at=utcnow(),
        )
        data.pop("id", None)
        try:
            item = FollowUpItem.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid follow-up item: {exc.errors()[0]['msg']}") from exc
        return await self._run(self._add(exam_id, item, identity), deadline)

    async def _add(self, exam_id: str, item: FollowUpItem, identity: IdentityContext) -> FollowUpItem:
        await self._load_open_exam(exam_id, identity)
        saved = await self.repository.save_follow_up(item)
        self.log.info("follow_up_added", exam_id=exam_id, item_id=saved.id, kind=saved.kind.value)
        return saved

    async def remove(
        self,
        exam_id: str,
        item_id: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> None:
        self.policy.assert_capability(identity.roles, Capability.MANAGE_FOLLOW_UPS, "manage follow-ups")
        await self._run(self._remove(exam_id, item_id, identity), deadline)

    async def _remove(self, exam_id: str, item_id: str, identity: IdentityContext) -> None:
        await self._load_open_exam(exam_id, identity)
        await self.repository.delete_follow_up(exam_id, item_id)
        self.log.info("follow_up_removed", exam_id=exam_id, item_id=item_id)

    async def resolve(
        self,
        exam_id: str,
        item_id: str,
        outcome: FollowUpOutcome | str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> FollowUpItem:
        """Mark an item resolved with CUMPLE or NO_CUMPLE."""
        self.policy.assert_capability(identity.roles, Capability.MANAGE_FOLLOW_UPS, "manage follow-ups")
        outcome = FollowUpOutcome(outcome)
        return await self._run(self._resolve(exam_id, item_id, outcome, identity), deadline)

    async def _resolve(self, exam_id, item_id, outcome, identity) -> FollowUpItem:
        await self._load_open_exam(exam_id, identity)
        item = await self._find(exam_id, item_id)
        resolved = item.model_copy(
            update={"status": FollowUpStatus.RESOLVED, "outcome": outcome, "resolved_at": utcnow()}
        )
        saved = await self.repository.save_follow_up(resolved)
        self.log.info("follow_up_resolved", exam_id=exam_id, item_id=item_id, outcome=outcome.value)
        return saved

    async def aptitude_advisories(
        self,
        exam_id: str,
        aptitude: Aptitude | str | None,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> list[Advisory]:
        self.policy.assert_capability(identity.roles, Capability.READ_DOCUMENTS, "read follow-ups")
        items = await self._run(self._list(exam_id, identity), deadline)
        return advisories_for(items, aptitude)

    async def _list(self, exam_id: str, identity: IdentityContext) -> list[FollowUpItem]:
        await self._load(DocumentKind.MEDICAL_EXAM, exam_id, identity)
        return await self.repository.list_follow_ups(exam_id)

    async def list(
        self,
        exam_id: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Items of an exam; diagnosis detail is omitted for non-health callers."""
        self.policy.assert_capability(identity.roles, Capability.READ_DOCUMENTS, "read follow-ups")
        items = await self._run(self._list(exam_id, identity), deadline)
        return [self.policy.redact_follow_up(item, identity.roles) for item in items]
