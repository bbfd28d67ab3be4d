"""Safety document models.

Every document kind is a Pydantic model sharing DocumentBase. The ``kind``
field discriminates the union so stored payloads parse back into the right
model. Each kind carries its own closed state enumeration.

Provides:
- DocumentKind: The five document kinds
- Per-kind state enums (RiskAssessmentState, ..., ExamState)
- Signature / SignatureRole: Role-tagged signature references
- RiskAssessment, RiskLine, JobSafetyAnalysis, SafeWorkProcedure,
  TrainingSession, Participant, MedicalExam, FollowUpItem
- parse_document / field_keys: Storage and policy helpers
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Sequence, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from sstcore.core import scoring


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class DocumentKind(str, Enum):
    """Kinds of safety document handled by the core."""

    RISK_ASSESSMENT = "IPERC"
    JOB_SAFETY_ANALYSIS = "ATS"
    SAFE_WORK_PROCEDURE = "PETS"
    TRAINING_SESSION = "CAPACITACION"
    MEDICAL_EXAM = "EMO"


class RiskAssessmentState(str, Enum):
    DRAFT = "Borrador"
    COMPLETED = "Completado"
    APPROVED = "Aprobado"
    REJECTED = "Rechazado"


class JobSafetyAnalysisState(str, Enum):
    DRAFT = "Borrador"


class ProcedureState(str, Enum):
    DRAFT = "Borrador"
    PENDING_REVIEW = "Pendiente de Revisión"
    IN_REVIEW = "En Revisión"
    CURRENT = "Vigente"
    OBSOLETE = "Obsoleto"


class TrainingState(str, Enum):
    PENDING = "PENDIENTE"
    SCHEDULED = "PROGRAMADA"
    COMPLETED = "COMPLETADA"
    REOPENED = "REABIERTA"
    CLOSED = "CERRADA"
    CANCELLED = "CANCELADA"


class ExamState(str, Enum):
    SCHEDULED = "Programado"
    EVIDENCE_UPLOADED = "Pruebas Cargadas"
    COMPLETED = "Completado"
    DELIVERED = "Entregado"
    RESCHEDULED = "Reprogramado"
    CANCELLED = "Cancelado"
    EXPIRED = "Vencido"
    EXPIRING_SOON = "Por Vencer"


class SignatureRole(str, Enum):
    ELABORATOR = "elaborator"
    APPROVER = "approver"
    TRAINER = "trainer"
    REGISTRY_RESPONSIBLE = "registry_responsible"
    CERTIFICATION_RESPONSIBLE = "certification_responsible"


class Signature(BaseModel):
    """Reference to a stored signature image. The image itself lives in the blob store."""

    role: SignatureRole
    signer_id: str
    blob_ref: str
    signed_at: datetime = Field(default_factory=utcnow)


class DocumentBase(BaseModel):
    """Attributes shared by every safety document.

    Attributes:
        id: Document identifier
        organization_id: Owning company
        created_by: User that created the document
        created_at: Creation timestamp (UTC)
        updated_at: Last mutation timestamp (UTC)
        version: Optimistic-concurrency counter, bumped by the repository on every save
        signatures: Role-tagged signature references
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    organization_id: str
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0
    signatures: list[Signature] = Field(default_factory=list)

    def signature_for(self, role: SignatureRole) -> Signature | None:
        for signature in self.signatures:
            if signature.role == role:
                return signature
        return None

    def has_signature(self, role: SignatureRole) -> bool:
        return self.signature_for(role) is not None

    def attach_signature(self, signature: Signature) -> None:
        """Store a signature, replacing any earlier one for the same role."""
        self.signatures = [s for s in self.signatures if s.role != signature.role]
        self.signatures.append(signature)


# IPERC


class RiskLine(BaseModel):
    """One hazard/risk row of an IPERC matrix.

    Probability factors A-D and severity are the only stored inputs; the
    probability index, risk value and tier are recomputed on every access.
    """

    number: int
    activity: str
    task: str
    job_position: Optional[str] = None
    hazard: str
    risk: str
    legal_requirement: Optional[str] = None
    probability_a: int
    probability_b: int
    probability_c: int
    probability_d: int
    severity: int
    elimination: bool = False
    substitution: bool = False
    engineering_controls: bool = False
    administrative_controls: bool = False
    ppe: bool = False
    control_measures: str = ""
    responsible: Optional[str] = None

    def score(self, thresholds: Sequence[int] | None = None) -> scoring.RiskScore:
        """Derived index, value and tier; pass the configured thresholds."""
        return scoring.score(
            self.probability_a,
            self.probability_b,
            self.probability_c,
            self.probability_d,
            self.severity,
            thresholds,
        )


class RiskAssessment(DocumentBase):
    """IPERC: hazard identification, risk evaluation and controls."""

    kind: Literal["IPERC"] = "IPERC"
    state: RiskAssessmentState = RiskAssessmentState.DRAFT
    process: str
    area_id: Optional[str] = None
    elaboration_date: Optional[date] = None
    approved_by: Optional[str] = None
    lines: list[RiskLine] = Field(default_factory=list)


# ATS


class AnalysisStep(BaseModel):
    description: str
    hazards: str = ""
    controls: str = ""


class JobSafetyAnalysis(DocumentBase):
    """ATS: task safety analysis. Only the draft state is modelled."""

    kind: Literal["ATS"] = "ATS"
    state: JobSafetyAnalysisState = JobSafetyAnalysisState.DRAFT
    task: str
    work_location: Optional[str] = None
    work_date: Optional[date] = None
    steps: list[AnalysisStep] = Field(default_factory=list)
    personnel: list[str] = Field(default_factory=list)


# PETS


class ProcedureStep(BaseModel):
    number: int
    description: str
    hazards: Optional[str] = None
    control_measures: Optional[str] = None
    required_ppe: list[str] = Field(default_factory=list)


class Reading(BaseModel):
    """Acknowledgement that a user read a current procedure."""

    user_id: str
    user_name: str = ""
    read_at: datetime = Field(default_factory=utcnow)
    accepted: bool = True


class SafeWorkProcedure(DocumentBase):
    """PETS: versioned written safe-work procedure."""

    kind: Literal["PETS"] = "PETS"
    state: ProcedureState = ProcedureState.DRAFT
    code: str
    title: str
    revision: int = 1
    objective: str = ""
    scope: str = ""
    area_process: Optional[str] = None
    issue_date: Optional[date] = None
    steps: list[ProcedureStep] = Field(default_factory=list)
    readings: list[Reading] = Field(default_factory=list)
    reviewer_id: Optional[str] = None
    approver_id: Optional[str] = None
    supersedes_id: Optional[str] = None


# Training


class Participant(BaseModel):
    """Worker assigned to a training session."""

    worker_id: str
    worker_name: str = ""
    attended: bool = False
    approved: bool = False
    score: Optional[int] = None
    signed: bool = False
    signature_ref: Optional[str] = None
    took_evaluation: bool = False


class TrainingSession(DocumentBase):
    """Training session (capacitación) with its participants."""

    kind: Literal["CAPACITACION"] = "CAPACITACION"
    state: TrainingState = TrainingState.PENDING
    title: str
    description: str = ""
    topic_type: str = "Capacitación"
    scheduled_date: Optional[date] = None
    location: Optional[str] = None
    instructor: Optional[str] = None
    participants: list[Participant] = Field(default_factory=list)
    reopen_count: int = 0
    closed_at: Optional[datetime] = None

    def participant(self, worker_id: str) -> Participant | None:
        for participant in self.participants:
            if participant.worker_id == worker_id:
                return participant
        return None


# EMO


class ExamType(str, Enum):
    ENTRY = "Ingreso"
    PERIODIC = "Periódico"
    PRE_EMPLOYMENT = "Pre-Ocupacional"
    EXIT = "Retiro"
    REENTRY = "Reingreso"
    EXPOSURE = "Por Exposición"
    RELOCATION = "Reubicación"
    OTHER = "Otros"


class Aptitude(str, Enum):
    """Occupational-fitness determination of a medical exam."""

    FIT = "Apto"
    FIT_WITH_RESTRICTIONS = "Apto con Restricciones"
    UNFIT = "No Apto"
    PENDING = "Pendiente"  # shown as OBSERVADO

    @property
    def is_definitive(self) -> bool:
        return self is not Aptitude.PENDING


class Diagnosis(BaseModel):
    code: str
    description: str = ""


class ExamDocument(BaseModel):
    """Evidence uploaded by the medical center (lab results, x-rays, ...)."""

    id: str = Field(default_factory=new_id)
    label: str
    file_name: str = ""
    blob_ref: str
    uploaded_at: datetime = Field(default_factory=utcnow)


class MedicalExam(DocumentBase):
    """Occupational medical exam (EMO).

    Clinical attributes are aliased to the clinical-record keys; those keys
    are the field identifiers used by the access policy and in filtered views.
    """

    kind: Literal["EMO"] = "EMO"
    state: ExamState = ExamState.SCHEDULED

    # Scheduling
    worker_id: str
    worker_name: str = ""
    exam_type: ExamType = ExamType.PERIODIC
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    expiry_date: Optional[date] = None
    medical_center: str = ""
    evaluating_doctor: Optional[str] = None
    project: Optional[str] = None

    # Clinical
    aptitude: Optional[Aptitude] = Field(default=None, alias="resultado")
    result_date: Optional[date] = Field(default=None, alias="fecha_realizado")
    diagnoses: list[Diagnosis] = Field(default_factory=list, alias="diagnosticos_cie10")
    restrictions: Optional[str] = Field(default=None, alias="restricciones")
    observations: Optional[str] = Field(default=None, alias="observaciones")
    surveillance_programs: list[str] = Field(default_factory=list, alias="programas_vigilancia")
    result_attachment: Optional[str] = Field(default=None, alias="resultado_archivo")
    evidence_documents: list[ExamDocument] = Field(default_factory=list, alias="documentos")


class FollowUpKind(str, Enum):
    REFERRAL = "INTERCONSULTA"
    SURVEILLANCE = "VIGILANCIA"


class FollowUpStatus(str, Enum):
    PENDING = "PENDIENTE"
    RESOLVED = "RESUELTO"


class FollowUpOutcome(str, Enum):
    COMPLIES = "CUMPLE"
    DOES_NOT_COMPLY = "NO_CUMPLE"


class FollowUpItem(BaseModel):
    """Specialist referral or medical-surveillance item attached to an exam."""

    id: str = Field(default_factory=new_id)
    exam_id: str = ""
    kind: FollowUpKind
    cie10_code: str
    cie10_description: Optional[str] = None
    specialty: str
    deadline: date
    status: FollowUpStatus = FollowUpStatus.PENDING
    outcome: Optional[FollowUpOutcome] = None
    reason: Optional[str] = None
    created_by: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None


AnyDocument = Union[RiskAssessment, JobSafetyAnalysis, SafeWorkProcedure, TrainingSession, MedicalExam]

SafetyDocument = Annotated[AnyDocument, Field(discriminator="kind")]

DOCUMENT_MODELS: dict[DocumentKind, type[DocumentBase]] = {
    DocumentKind.RISK_ASSESSMENT: RiskAssessment,
    DocumentKind.JOB_SAFETY_ANALYSIS: JobSafetyAnalysis,
    DocumentKind.SAFE_WORK_PROCEDURE: SafeWorkProcedure,
    DocumentKind.TRAINING_SESSION: TrainingSession,
    DocumentKind.MEDICAL_EXAM: MedicalExam,
}

_document_adapter: TypeAdapter[AnyDocument] = TypeAdapter(SafetyDocument)


def kind_of(document: DocumentBase) -> DocumentKind:
    return DocumentKind(getattr(document, "kind"))


def parse_document(data: dict[str, Any]) -> AnyDocument:
    """Parse a stored payload into the matching document model."""
    return _document_adapter.validate_python(data)


def dump_document(document: DocumentBase) -> dict[str, Any]:
    """Serialize a document for storage (JSON-safe, clinical-record keys)."""
    return document.model_dump(mode="json", by_alias=True)


def field_keys(model: type[BaseModel]) -> frozenset[str]:
    """External field identifiers of a model (alias where one is declared)."""
    return frozenset(info.alias or name for name, info in model.model_fields.items())


def attribute_for_key(model: type[BaseModel], key: str) -> str | None:
    """Python attribute name behind an external field identifier."""
    for name, info in model.model_fields.items():
        if key == name or key == info.alias:
            return name
    return None
