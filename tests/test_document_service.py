"""Tests for DocumentService over the in-memory adapters.

Covers creation rules, signing, persisted transitions, filtered reads,
optimistic concurrency and repository deadlines.
"""

import asyncio
import base64

import pytest

from sstcore.core.config import Config
from sstcore.core.documents import (
    DocumentKind,
    RiskAssessmentState,
    SignatureRole,
    TrainingState,
)
from sstcore.core.errors import (
    AccessDenied,
    DeadlineExceeded,
    DocumentFrozen,
    DocumentNotFound,
    MissingSignatures,
    OutOfRange,
    StaleWrite,
    ValidationError,
)
from sstcore.core.persistence import InMemoryBlobStore, InMemoryDocumentRepository
from sstcore.core.policy import IdentityContext, Role
from sstcore.services import DocumentService


SIGNATURE = "data:image/png;base64," + base64.b64encode(bytes(range(256)) * 3).decode()

LINE = {
    "number": 1,
    "activity": "Izaje",
    "task": "Montaje de vigas",
    "hazard": "Carga suspendida",
    "risk": "Golpe",
    "probability_a": 3,
    "probability_b": 2,
    "probability_c": 4,
    "probability_d": 1,
    "severity": 5,
}


def identity(*roles: Role, user_id: str = "u-1", orgs=("org-1",)) -> IdentityContext:
    return IdentityContext(user_id=user_id, roles=frozenset(roles), organization_ids=frozenset(orgs))


SUPERVISOR = identity(Role.SUPERVISOR, user_id="u-sup")
ENGINEER = identity(Role.INGENIERO_SST, user_id="u-eng")
ADMIN = identity(Role.ADMIN_EMPRESA, user_id="u-admin")
DOCTOR = identity(Role.MEDICO, user_id="u-doc")
WORKER = identity(Role.EMPLEADO, user_id="u-worker")


class SlowRepository(InMemoryDocumentRepository):
    """Repository whose loads never finish in time."""

    async def load(self, kind, document_id):
        await asyncio.sleep(5)
        return await super().load(kind, document_id)


def make_service(repository=None) -> DocumentService:
    return DocumentService(
        repository or InMemoryDocumentRepository(),
        InMemoryBlobStore(),
        Config(repository_timeout_seconds=None),
    )


async def create_assessment(service: DocumentService, **overrides):
    data = {"organization_id": "org-1", "process": "Mantenimiento", "lines": [LINE]}
    data.update(overrides)
    return await service.create(DocumentKind.RISK_ASSESSMENT, data, SUPERVISOR)


# Creation Tests
@pytest.mark.asyncio
async def test_create_starts_in_initial_state():
    """Test that a new IPERC is stored as a version-1 draft."""
    service = make_service()

    assessment = await create_assessment(service)

    assert assessment.version == 1
    assert assessment.state == RiskAssessmentState.DRAFT
    assert assessment.created_by == "u-sup"


@pytest.mark.asyncio
async def test_create_requires_organization():
    """Test that a missing organization is malformed input."""
    service = make_service()

    with pytest.raises(ValidationError):
        await service.create(DocumentKind.JOB_SAFETY_ANALYSIS, {"task": "Soldar"}, SUPERVISOR)


@pytest.mark.asyncio
async def test_create_outside_scope_denied():
    """Test that callers cannot create documents for other organizations."""
    service = make_service()

    with pytest.raises(AccessDenied):
        await service.create(
            DocumentKind.JOB_SAFETY_ANALYSIS, {"organization_id": "org-2", "task": "Soldar"}, SUPERVISOR
        )


@pytest.mark.asyncio
async def test_reader_cannot_create():
    """Test that employees cannot create safety documents."""
    service = make_service()

    with pytest.raises(AccessDenied):
        await service.create(
            DocumentKind.JOB_SAFETY_ANALYSIS, {"organization_id": "org-1", "task": "Soldar"}, WORKER
        )


@pytest.mark.asyncio
async def test_create_rejects_out_of_range_factor():
    """Test that an IPERC line with a factor outside [1, 5] is never stored."""
    repository = InMemoryDocumentRepository()
    service = make_service(repository)

    with pytest.raises(OutOfRange):
        await create_assessment(service, lines=[{**LINE, "severity": 6}])

    assert repository.audit_entries == []


@pytest.mark.asyncio
async def test_admin_cannot_create_exam_with_clinical_data():
    """Test that clinical fields are refused at creation for non-health roles."""
    service = make_service()

    with pytest.raises(AccessDenied):
        await service.create(
            DocumentKind.MEDICAL_EXAM,
            {"organization_id": "org-1", "worker_id": "w-1", "restricciones": "Ninguna"},
            ADMIN,
        )

    exam = await service.create(DocumentKind.MEDICAL_EXAM, {"organization_id": "org-1", "worker_id": "w-1"}, ADMIN)
    assert exam.version == 1


# Signing Tests
@pytest.mark.asyncio
async def test_sign_stores_reference():
    """Test that signing attaches a blob reference and bumps the version."""
    service = make_service()
    assessment = await create_assessment(service)

    signed = await service.sign(DocumentKind.RISK_ASSESSMENT, assessment.id, "elaborator", SIGNATURE, SUPERVISOR)

    signature = signed.signature_for(SignatureRole.ELABORATOR)
    assert signature.signer_id == "u-sup"
    assert service.blob_store.get(signature.blob_ref)[1] == "image/png"
    assert signed.version == 2


@pytest.mark.asyncio
async def test_sign_rejects_blank_and_foreign_roles():
    """Test blank images and roles the kind does not use."""
    service = make_service()
    assessment = await create_assessment(service)

    with pytest.raises(ValidationError):
        await service.sign(
            DocumentKind.RISK_ASSESSMENT, assessment.id, "elaborator", "data:image/png;base64,AAAA", SUPERVISOR
        )
    with pytest.raises(ValidationError):
        await service.sign(DocumentKind.RISK_ASSESSMENT, assessment.id, "trainer", SIGNATURE, SUPERVISOR)


@pytest.mark.asyncio
async def test_approver_signature_requires_approval_capability():
    """Test that a supervisor cannot sign as IPERC approver."""
    service = make_service()
    assessment = await create_assessment(service)

    with pytest.raises(AccessDenied):
        await service.sign(DocumentKind.RISK_ASSESSMENT, assessment.id, "approver", SIGNATURE, SUPERVISOR)


# Transition Tests
@pytest.mark.asyncio
async def test_risk_assessment_lifecycle():
    """Test the persisted IPERC path from draft to approved."""
    repository = InMemoryDocumentRepository()
    service = make_service(repository)
    assessment = await create_assessment(service)
    kind = DocumentKind.RISK_ASSESSMENT

    with pytest.raises(MissingSignatures) as exc_info:
        await service.evaluate_transition(kind, assessment.id, "complete", SUPERVISOR)
    assert exc_info.value.missing == ["elaborator"]

    await service.sign(kind, assessment.id, "elaborator", SIGNATURE, SUPERVISOR)
    completed = await service.evaluate_transition(kind, assessment.id, "complete", SUPERVISOR)
    await service.sign(kind, assessment.id, "approver", SIGNATURE, ENGINEER)
    approved = await service.evaluate_transition(kind, assessment.id, "approve", ENGINEER)

    assert completed.new_state == RiskAssessmentState.COMPLETED
    assert approved.document.state == RiskAssessmentState.APPROVED
    assert approved.document.approved_by == "u-eng"
    assert approved.document.version == 5
    assert await repository.verify_audit_chain() is True
    assert repository.audit_entries[-1]["event_type"] == "transition_applied"

    with pytest.raises(DocumentFrozen):
        await service.sign(kind, assessment.id, "elaborator", SIGNATURE, SUPERVISOR)
    with pytest.raises(DocumentFrozen):
        await service.update_fields(kind, assessment.id, {"process": "Otro"}, SUPERVISOR)


@pytest.mark.asyncio
async def test_failed_transition_leaves_document_unchanged():
    """Test that a guard failure stores nothing."""
    service = make_service()
    session = await service.create(DocumentKind.TRAINING_SESSION, {"organization_id": "org-1", "title": "Altura"}, SUPERVISOR)

    with pytest.raises(MissingSignatures):
        await service.evaluate_transition(DocumentKind.TRAINING_SESSION, session.id, "schedule", SUPERVISOR)

    stored = await service.repository.load(DocumentKind.TRAINING_SESSION, session.id)
    assert stored.state == TrainingState.PENDING
    assert stored.version == 1


@pytest.mark.asyncio
async def test_closing_no_op_is_not_saved():
    """Test that re-closing a session does not bump the version."""
    service = make_service()
    session = await service.create(DocumentKind.TRAINING_SESSION, {"organization_id": "org-1", "title": "Altura"}, SUPERVISOR)

    closed = await service.evaluate_transition(DocumentKind.TRAINING_SESSION, session.id, "close", ADMIN)
    again = await service.evaluate_transition(DocumentKind.TRAINING_SESSION, session.id, "close", ADMIN)

    assert closed.document.version == 2
    assert again.changed is False
    assert again.document.version == 2


@pytest.mark.asyncio
async def test_transition_with_outdated_version():
    """Test that a transition based on an old version raises StaleWrite."""
    service = make_service()
    session = await service.create(DocumentKind.TRAINING_SESSION, {"organization_id": "org-1", "title": "Altura"}, SUPERVISOR)
    await service.update_fields(DocumentKind.TRAINING_SESSION, session.id, {"location": "Sala A"}, SUPERVISOR)

    with pytest.raises(StaleWrite):
        await service.evaluate_transition(
            DocumentKind.TRAINING_SESSION, session.id, "close", ADMIN, expected_version=1
        )


@pytest.mark.asyncio
async def test_retried_close_with_same_version_is_no_op():
    """Test that resending a close based on the pre-close version returns the unchanged result."""
    service = make_service()
    session = await service.create(DocumentKind.TRAINING_SESSION, {"organization_id": "org-1", "title": "Altura"}, SUPERVISOR)

    closed = await service.evaluate_transition(
        DocumentKind.TRAINING_SESSION, session.id, "close", ADMIN, expected_version=1
    )
    retried = await service.evaluate_transition(
        DocumentKind.TRAINING_SESSION, session.id, "close", ADMIN, expected_version=1
    )

    assert closed.changed is True
    assert retried.changed is False
    assert retried.document.state == TrainingState.CLOSED
    assert retried.document.version == 2


# Edit Tests
@pytest.mark.asyncio
async def test_update_fields_with_stale_version():
    """Test that the second of two edits based on version 1 fails."""
    service = make_service()
    assessment = await create_assessment(service)
    kind = DocumentKind.RISK_ASSESSMENT

    first = await service.update_fields(kind, assessment.id, {"process": "Producción"}, SUPERVISOR, expected_version=1)
    with pytest.raises(StaleWrite):
        await service.update_fields(kind, assessment.id, {"process": "Almacén"}, SUPERVISOR, expected_version=1)

    stored = await service.repository.load(kind, assessment.id)
    assert first.version == 2
    assert stored.process == "Producción"


@pytest.mark.asyncio
async def test_update_fields_rejects_out_of_range_line():
    """Test that edits cannot store an invalid risk factor."""
    service = make_service()
    assessment = await create_assessment(service)

    with pytest.raises(OutOfRange):
        await service.update_fields(
            DocumentKind.RISK_ASSESSMENT, assessment.id, {"lines": [{**LINE, "probability_b": 0}]}, SUPERVISOR
        )


# Read Tests
@pytest.mark.asyncio
async def test_read_filtered_hides_clinical_fields_from_admin():
    """Test that a company admin's read omits clinical keys while a physician sees them."""
    service = make_service()
    exam = await service.create(DocumentKind.MEDICAL_EXAM, {"organization_id": "org-1", "worker_id": "w-1"}, ADMIN)
    await service.update_fields(
        DocumentKind.MEDICAL_EXAM,
        exam.id,
        {"diagnosticos_cie10": [{"code": "J45", "description": "Asma"}], "restricciones": "No altura"},
        DOCTOR,
    )

    admin_view = await service.read_filtered(DocumentKind.MEDICAL_EXAM, exam.id, ADMIN)
    doctor_view = await service.read_filtered(DocumentKind.MEDICAL_EXAM, exam.id, DOCTOR)

    assert "diagnosticos_cie10" not in admin_view
    assert "restricciones" not in admin_view
    assert doctor_view["restricciones"] == "No altura"


@pytest.mark.asyncio
async def test_read_filtered_other_organization():
    """Test that documents of another organization cannot be read."""
    service = make_service()
    assessment = await create_assessment(service)

    with pytest.raises(AccessDenied):
        await service.read_filtered(
            DocumentKind.RISK_ASSESSMENT, assessment.id, identity(Role.AUDITOR, orgs=("org-2",))
        )


@pytest.mark.asyncio
async def test_read_unknown_document():
    """Test that an unknown id raises DocumentNotFound."""
    service = make_service()

    with pytest.raises(DocumentNotFound):
        await service.read_filtered(DocumentKind.RISK_ASSESSMENT, "missing", SUPERVISOR)


@pytest.mark.asyncio
async def test_risk_summary_counts_tiers():
    """Test the per-tier line counts of an assessment."""
    service = make_service()
    low = {**LINE, "number": 2, "probability_a": 1, "probability_b": 1, "probability_c": 1, "probability_d": 1, "severity": 1}
    assessment = await create_assessment(service, lines=[LINE, low])

    summary = await service.risk_summary(assessment.id, SUPERVISOR)

    assert summary["Intolerable"] == 1
    assert summary["Trivial"] == 1
    assert summary["Moderado"] == 0


def test_score_uses_configured_thresholds():
    """Test that the service scores with its configured thresholds."""
    service = DocumentService(
        InMemoryDocumentRepository(),
        config=Config(repository_timeout_seconds=None, risk_tier_thresholds=[10, 25, 50, 75]),
    )

    assert service.score(3, 2, 4, 1, 5).risk_tier.value == "Moderado"


# Deadline Tests
@pytest.mark.asyncio
async def test_deadline_exceeded():
    """Test that a slow repository call raises DeadlineExceeded."""
    service = make_service(SlowRepository())

    with pytest.raises(DeadlineExceeded):
        await service.read_filtered(DocumentKind.RISK_ASSESSMENT, "doc-1", SUPERVISOR, deadline=0.05)


@pytest.mark.asyncio
async def test_configured_default_deadline():
    """Test that the configured repository timeout applies when no deadline is passed."""
    service = DocumentService(SlowRepository(), InMemoryBlobStore(), Config(repository_timeout_seconds=0.05))

    with pytest.raises(DeadlineExceeded):
        await service.evaluate_transition(DocumentKind.TRAINING_SESSION, "doc-1", "close", ADMIN)
