"""Training session participants: assignment, attendance, scores, signatures.

Participants change only through these operations (never through a direct
field edit) and only while the session is not closed or cancelled.

Provides:
- TrainingService: assign_participants, remove_participants,
  record_attendance, record_score, sign_attendance
"""

from typing import Any, Callable, Mapping, Optional, Sequence

import pydantic

from sstcore.core.batch import BatchResult
from sstcore.core.documents import DocumentKind, Participant, TrainingSession, utcnow
from sstcore.core.errors import (
    AccessDenied,
    ComplianceError,
    DocumentFrozen,
    GuardFailed,
    OutOfRange,
    ValidationError,
)
from sstcore.core.policy.roles import Capability, IdentityContext
from sstcore.core.signatures import parse_signature_data_url

from .base import BaseService

Mutation = Callable[[TrainingSession], None]


def _as_participant(worker: Participant | Mapping[str, Any] | str) -> Participant:
    if isinstance(worker, Participant):
        return worker.model_copy()
    if isinstance(worker, str):
        return Participant(worker_id=worker)
    try:
        return Participant.model_validate(dict(worker))
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid participant: {exc.errors()[0]['msg']}") from exc


def _worker_key(worker: Participant | Mapping[str, Any] | str) -> str:
    if isinstance(worker, str):
        return worker
    if isinstance(worker, Participant):
        return worker.worker_id
    return str(worker.get("worker_id", ""))


class TrainingService(BaseService):
    """Participant-level operations on training sessions."""

    async def _mutate(
        self,
        session_id: str,
        identity: IdentityContext,
        mutation: Mutation,
        event_type: str,
        expected_version: Optional[int] = None,
        **event_data: Any,
    ) -> TrainingSession:
        """Load, apply ``mutation`` to a copy and save it with one write."""
        session = await self._load(DocumentKind.TRAINING_SESSION, session_id, identity)
        self._check_base_version(session, expected_version)
        if self.engine.is_terminal(session):
            raise DocumentFrozen(DocumentKind.TRAINING_SESSION.value, session.id, session.state.value)

        updated = session.model_copy(deep=True)
        mutation(updated)
        updated.updated_at = utcnow()
        return await self._save(updated, session.version, identity, event_type, **event_data)

    async def _check_editor(self, session_id: str, identity: IdentityContext) -> None:
        self.policy.assert_capability(
            identity.roles, Capability.EDIT_SAFETY_DOCUMENTS, "manage training participants"
        )
        await self._load(DocumentKind.TRAINING_SESSION, session_id, identity)

    async def assign_participants(
        self,
        session_id: str,
        workers: Sequence[Participant | Mapping[str, Any] | str],
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> BatchResult:
        """Assign several workers, continuing past per-item failures.

        Each worker is added with its own load/save, so a failure (duplicate,
        stale write, deadline) affects only that worker. ``deadline`` applies
        to each item.

        Args:
            session_id: Training session
            workers: Participants, mappings or bare worker ids

        Returns:
            BatchResult keyed by worker id

        Raises:
            AccessDenied: Caller cannot manage participants (nothing is attempted)
        """
        await self._run(self._check_editor(session_id, identity), deadline)

        result = BatchResult()
        for worker in workers:
            key = _worker_key(worker)
            try:
                participant = _as_participant(worker)
                await self._run(self._assign_one(session_id, participant, identity), deadline)
            except ComplianceError as exc:
                result.record_failure(key, exc)
            else:
                result.record_success(key)

        self.log.info("participants_assigned", session_id=session_id, **result.summary())
        return result

    async def _assign_one(self, session_id: str, participant: Participant, identity: IdentityContext) -> None:
        def add(session: TrainingSession) -> None:
            if session.participant(participant.worker_id) is not None:
                raise ValidationError(f"Worker {participant.worker_id} is already assigned", field="worker_id")
            session.participants.append(participant)

        await self._mutate(session_id, identity, add, "participant_assigned", worker_id=participant.worker_id)

    async def remove_participants(
        self,
        session_id: str,
        worker_ids: Sequence[str],
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> BatchResult:
        """Remove several participants; those who took the evaluation are kept."""
        await self._run(self._check_editor(session_id, identity), deadline)

        result = BatchResult()
        for worker_id in worker_ids:
            try:
                await self._run(self._remove_one(session_id, worker_id, identity), deadline)
            except ComplianceError as exc:
                result.record_failure(worker_id, exc)
            else:
                result.record_success(worker_id)

        self.log.info("participants_removed", session_id=session_id, **result.summary())
        return result

    async def _remove_one(self, session_id: str, worker_id: str, identity: IdentityContext) -> None:
        def remove(session: TrainingSession) -> None:
            participant = session.participant(worker_id)
            if participant is None:
                raise ValidationError(f"Worker {worker_id} is not assigned", field="worker_id")
            if participant.took_evaluation:
                raise ValidationError(
                    f"Worker {worker_id} already took the evaluation and cannot be removed",
                    field="worker_id",
                )
            session.participants = [p for p in session.participants if p.worker_id != worker_id]

        await self._mutate(session_id, identity, remove, "participant_removed", worker_id=worker_id)

    def _participant_updater(self, worker_id: str, update: Callable[[Participant], None]) -> Mutation:
        def mutation(session: TrainingSession) -> None:
            participant = session.participant(worker_id)
            if participant is None:
                raise ValidationError(f"Worker {worker_id} is not assigned", field="worker_id")
            update(participant)

        return mutation

    async def record_attendance(
        self,
        session_id: str,
        worker_id: str,
        attended: bool,
        identity: IdentityContext,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> TrainingSession:
        self.policy.assert_capability(identity.roles, Capability.EDIT_SAFETY_DOCUMENTS, "record attendance")

        def update(participant: Participant) -> None:
            participant.attended = bool(attended)

        return await self._run(
            self._mutate(
                session_id,
                identity,
                self._participant_updater(worker_id, update),
                "attendance_recorded",
                expected_version,
                worker_id=worker_id,
            ),
            deadline,
        )

    async def record_score(
        self,
        session_id: str,
        worker_id: str,
        score: int,
        identity: IdentityContext,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> TrainingSession:
        """Record an evaluation score.

        The participant is approved when the score reaches the passing
        threshold and is marked as having taken the evaluation.

        Raises:
            OutOfRange: Score is not an integer between 0 and the maximum score
        """
        self.policy.assert_capability(identity.roles, Capability.EDIT_SAFETY_DOCUMENTS, "record scores")
        maximum = self.config.training_max_score
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= maximum:
            raise OutOfRange("score", score, 0, maximum)
        passing = self.config.training_passing_score

        def update(participant: Participant) -> None:
            participant.score = score
            participant.approved = score >= passing
            participant.took_evaluation = True

        return await self._run(
            self._mutate(
                session_id,
                identity,
                self._participant_updater(worker_id, update),
                "score_recorded",
                expected_version,
                worker_id=worker_id,
            ),
            deadline,
        )

    async def sign_attendance(
        self,
        session_id: str,
        worker_id: str,
        identity: IdentityContext,
        data_url: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> TrainingSession:
        """Mark a participant's attendance sheet as signed.

        Allowed for training editors and for the worker themselves. When a
        signature image is given it is validated and stored.

        Raises:
            AccessDenied: Caller is neither an editor nor the worker
            GuardFailed: Only approved participants may sign and this one is not
        """
        is_self = identity.worker_id is not None and identity.worker_id == worker_id
        if not is_self and not identity.can(Capability.EDIT_SAFETY_DOCUMENTS):
            raise AccessDenied("Not allowed to sign for another worker")
        return await self._run(self._sign_attendance(session_id, worker_id, identity, data_url), deadline)

    async def _sign_attendance(self, session_id, worker_id, identity, data_url) -> TrainingSession:
        only_approved = self.config.training_sign_only_if_approved

        def check(participant: Participant) -> None:
            if only_approved and not participant.approved:
                raise GuardFailed("sign_attendance", "only approved participants may sign")

        signature_ref = None
        if data_url is not None:
            if self.blob_store is None:
                raise ValidationError("No blob store configured for signatures")
            content_type, image = parse_signature_data_url(data_url, self.config.signature_min_base64_length)
            # Fail before storing the image when the participant cannot sign
            current = await self._load(DocumentKind.TRAINING_SESSION, session_id, identity)
            self._participant_updater(worker_id, check)(current)
            signature_ref = await self.blob_store.put(image, content_type)

        def update(participant: Participant) -> None:
            check(participant)
            participant.signed = True
            if signature_ref is not None:
                participant.signature_ref = signature_ref

        return await self._mutate(
            session_id,
            identity,
            self._participant_updater(worker_id, update),
            "attendance_signed",
            worker_id=worker_id,
        )
