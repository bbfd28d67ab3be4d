"""Tests for TrainingService participant operations."""

import base64

import pytest

from sstcore.core.config import Config
from sstcore.core.documents import DocumentKind, TrainingSession, TrainingState
from sstcore.core.errors import AccessDenied, DocumentFrozen, GuardFailed, OutOfRange, ValidationError
from sstcore.core.persistence import InMemoryBlobStore, InMemoryDocumentRepository
from sstcore.core.policy import IdentityContext, Role
from sstcore.services import TrainingService


SIGNATURE = "data:image/png;base64," + base64.b64encode(bytes(range(256)) * 3).decode()


def identity(*roles: Role, user_id: str = "u-1", worker_id=None) -> IdentityContext:
    return IdentityContext(
        user_id=user_id,
        roles=frozenset(roles),
        organization_ids=frozenset({"org-1"}),
        worker_id=worker_id,
    )


SUPERVISOR = identity(Role.SUPERVISOR, user_id="u-sup")
WORKER = identity(Role.EMPLEADO, user_id="u-w1", worker_id="w-1")
OTHER_WORKER = identity(Role.EMPLEADO, user_id="u-w2", worker_id="w-2")


async def make_service(**config) -> TrainingService:
    repository = InMemoryDocumentRepository()
    service = TrainingService(
        repository,
        InMemoryBlobStore(),
        Config(repository_timeout_seconds=None, **config),
    )
    session = TrainingSession(id="s-1", organization_id="org-1", created_by="u-sup", title="Trabajos en altura")
    await repository.save(session, None)
    return service


async def stored(service: TrainingService) -> TrainingSession:
    return await service.repository.load(DocumentKind.TRAINING_SESSION, "s-1")


# Assignment Tests
@pytest.mark.asyncio
async def test_assign_reports_per_worker_outcome():
    """Test that a duplicate worker fails alone while the others are assigned."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    result = await service.assign_participants(
        "s-1", ["w-2", "w-1", {"worker_id": "w-3", "worker_name": "Luis"}], SUPERVISOR
    )

    assert result.succeeded == ["w-2", "w-3"]
    assert [item.key for item in result.failed] == ["w-1"]
    assert result.failed[0].error_type == "ValidationError"
    assert result.summary() == {"total": 3, "succeeded": 2, "failed": 1}

    session = await stored(service)
    assert [p.worker_id for p in session.participants] == ["w-1", "w-2", "w-3"]
    assert session.participant("w-3").worker_name == "Luis"


@pytest.mark.asyncio
async def test_assign_requires_editor():
    """Test that employees cannot assign participants."""
    service = await make_service()

    with pytest.raises(AccessDenied):
        await service.assign_participants("s-1", ["w-1"], WORKER)

    assert (await stored(service)).participants == []


@pytest.mark.asyncio
async def test_remove_keeps_evaluated_participants():
    """Test that participants who took the evaluation cannot be removed."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1", "w-2"], SUPERVISOR)
    await service.record_score("s-1", "w-1", 15, SUPERVISOR)

    result = await service.remove_participants("s-1", ["w-1", "w-2", "w-9"], SUPERVISOR)

    assert result.succeeded == ["w-2"]
    assert [item.key for item in result.failed] == ["w-1", "w-9"]
    assert [p.worker_id for p in (await stored(service)).participants] == ["w-1"]


@pytest.mark.asyncio
async def test_closed_session_rejects_changes():
    """Test that participants of a closed session are frozen."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)
    session = await stored(service)
    closed = session.model_copy(update={"state": TrainingState.CLOSED})
    await service.repository.save(closed, session.version)

    result = await service.assign_participants("s-1", ["w-2"], SUPERVISOR)
    assert result.failed[0].error_type == "DocumentFrozen"

    with pytest.raises(DocumentFrozen):
        await service.record_attendance("s-1", "w-1", True, SUPERVISOR)


# Score Tests
@pytest.mark.asyncio
async def test_passing_score_boundary():
    """Test that 11 approves, 10 does not, and 21 is out of range."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1", "w-2"], SUPERVISOR)

    await service.record_score("s-1", "w-1", 10, SUPERVISOR)
    session = await service.record_score("s-1", "w-2", 11, SUPERVISOR)

    assert session.participant("w-1").approved is False
    assert session.participant("w-2").approved is True
    assert session.participant("w-2").took_evaluation is True

    with pytest.raises(OutOfRange):
        await service.record_score("s-1", "w-1", 21, SUPERVISOR)
    with pytest.raises(OutOfRange):
        await service.record_score("s-1", "w-1", -1, SUPERVISOR)


@pytest.mark.asyncio
async def test_score_for_unassigned_worker():
    """Test that scoring an unknown participant is malformed input."""
    service = await make_service()

    with pytest.raises(ValidationError):
        await service.record_score("s-1", "w-404", 12, SUPERVISOR)


@pytest.mark.asyncio
async def test_record_attendance():
    """Test that attendance is stored on the participant."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    session = await service.record_attendance("s-1", "w-1", True, SUPERVISOR)

    assert session.participant("w-1").attended is True


# Attendance Signature Tests
@pytest.mark.asyncio
async def test_worker_signs_own_attendance():
    """Test that a worker can sign their own attendance with an image."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    session = await service.sign_attendance("s-1", "w-1", WORKER, data_url=SIGNATURE)

    participant = session.participant("w-1")
    assert participant.signed is True
    assert service.blob_store.get(participant.signature_ref)[1] == "image/png"


@pytest.mark.asyncio
async def test_worker_cannot_sign_for_another():
    """Test that employees cannot sign another worker's attendance."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    with pytest.raises(AccessDenied):
        await service.sign_attendance("s-1", "w-1", OTHER_WORKER)


@pytest.mark.asyncio
async def test_only_approved_may_sign_when_configured():
    """Test the approved-only signing option."""
    service = await make_service(training_sign_only_if_approved=True)
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    with pytest.raises(GuardFailed):
        await service.sign_attendance("s-1", "w-1", WORKER, data_url=SIGNATURE)
    assert service.blob_store._blobs == {}

    await service.record_score("s-1", "w-1", 18, SUPERVISOR)
    session = await service.sign_attendance("s-1", "w-1", WORKER)
    assert session.participant("w-1").signed is True


@pytest.mark.asyncio
async def test_blank_attendance_signature_rejected():
    """Test that a blank image is refused."""
    service = await make_service()
    await service.assign_participants("s-1", ["w-1"], SUPERVISOR)

    with pytest.raises(ValidationError):
        await service.sign_attendance("s-1", "w-1", WORKER, data_url="data:image/png;base64,AAAA")
