"""Field visibility, write permissions and account-management gating.

Medical confidentiality: clinical fields of an exam exist in a caller's view
only when the caller holds VIEW_CLINICAL_DATA (physicians and medical
centers). Everyone else, organization admins included, gets a view in which
those keys are absent, so the view never reveals whether a value exists.

Provides:
- AccessPolicyEngine: visible_fields, redact, assert_can_write, account gating
- AccountAccess: FULL / READ_ONLY / NONE view of a user account
"""

from enum import Enum
from typing import Any, Iterable, Sequence

from sstcore.core.documents import (
    DOCUMENT_MODELS,
    DocumentBase,
    DocumentKind,
    FollowUpItem,
    RiskAssessment,
    dump_document,
    field_keys,
    kind_of,
)
from sstcore.core.errors import AccessDenied, ValidationError
from sstcore.core.policy.roles import Capability, Role, coerce_roles, derive

# Exam fields only health professionals may see
CLINICAL_CONFIDENTIAL_FIELDS = frozenset({
    "diagnosticos_cie10",
    "restricciones",
    "observaciones",
    "programas_vigilancia",
    "resultado_archivo",
    "documentos",
})

# Exam fields only health professionals may write
CLINICAL_WRITE_FIELDS = frozenset({
    "resultado",
    "fecha_realizado",
    "diagnosticos_cie10",
    "restricciones",
    "observaciones",
    "programas_vigilancia",
})

EXAM_UPLOAD_FIELDS = frozenset({"resultado_archivo", "documentos"})

EXAM_SCHEDULING_FIELDS = frozenset({
    "worker_id",
    "worker_name",
    "exam_type",
    "scheduled_date",
    "scheduled_time",
    "expiry_date",
    "medical_center",
    "evaluating_doctor",
    "project",
})

# Changed only by workflow transitions and dedicated operations
WORKFLOW_MANAGED_FIELDS = frozenset({
    "id",
    "kind",
    "state",
    "version",
    "organization_id",
    "created_by",
    "created_at",
    "updated_at",
    "signatures",
    "participants",
    "readings",
    "reopen_count",
    "closed_at",
    "approved_by",
    "reviewer_id",
    "approver_id",
    "supersedes_id",
    "revision",
})

FOLLOW_UP_CONFIDENTIAL_FIELDS = frozenset({"cie10_code", "cie10_description", "reason"})

# Accounts only a super admin may create or manage
SYSTEM_LEVEL_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN_EMPRESA, Role.CENTRO_MEDICO})


class AccountAccess(str, Enum):
    FULL = "full"
    READ_ONLY = "read_only"
    NONE = "none"


class AccessPolicyEngine:
    """Maps caller roles to visible and writable fields.

    Stateless; one instance can be shared by every service.
    """

    def __init__(self, thresholds: Sequence[int] | None = None):
        """Initialize the policy engine.

        Args:
            thresholds: Risk tier bounds used when derived IPERC values are
                added to filtered views (default matrix when None)
        """
        self.thresholds = thresholds

    # Reads

    def can_view_clinical(self, roles: Iterable[Role | str]) -> bool:
        return Capability.VIEW_CLINICAL_DATA in derive(roles)

    def visible_fields(self, kind: DocumentKind | str, roles: Iterable[Role | str]) -> frozenset[str]:
        """Field identifiers of ``kind`` the caller may see.

        Args:
            kind: Document kind
            roles: Caller roles

        Returns:
            Set of field identifiers (clinical-record keys for exams)
        """
        kind = DocumentKind(kind)
        fields = field_keys(DOCUMENT_MODELS[kind])
        if kind == DocumentKind.MEDICAL_EXAM and not self.can_view_clinical(roles):
            fields = fields - CLINICAL_CONFIDENTIAL_FIELDS
        return fields

    def redact(self, document: DocumentBase, roles: Iterable[Role | str]) -> dict[str, Any]:
        """Filtered view of a document for the caller.

        Restricted keys are omitted entirely. IPERC lines carry their derived
        probability index, risk value and tier, recomputed from the stored
        factors (re-validated, so corrupt factors raise OutOfRange).
        """
        roles = list(roles)
        visible = self.visible_fields(kind_of(document), roles)
        data = dump_document(document)
        view = {key: value for key, value in data.items() if key in visible}

        if isinstance(document, RiskAssessment) and "lines" in view:
            for line, line_view in zip(document.lines, view["lines"]):
                result = line.score(self.thresholds)
                line_view["probability_index"] = result.probability_index
                line_view["risk_value"] = result.risk_value
                line_view["risk_tier"] = result.risk_tier.value
        return view

    def visible_follow_up_fields(self, roles: Iterable[Role | str]) -> frozenset[str]:
        fields = field_keys(FollowUpItem)
        if not self.can_view_clinical(roles):
            fields = fields - FOLLOW_UP_CONFIDENTIAL_FIELDS
        return fields

    def redact_follow_up(self, item: FollowUpItem, roles: Iterable[Role | str]) -> dict[str, Any]:
        visible = self.visible_follow_up_fields(roles)
        return {key: value for key, value in item.model_dump(mode="json").items() if key in visible}

    # Writes

    def assert_capability(self, roles: Iterable[Role | str], capability: Capability, action: str) -> None:
        """Raise AccessDenied unless the roles grant ``capability``."""
        if capability not in derive(roles):
            raise AccessDenied(f"Not allowed to {action}")

    def write_capability(self, kind: DocumentKind | str, field: str) -> Capability:
        """Capability needed to write ``field`` directly.

        Raises:
            AccessDenied: Field is managed by the workflow and never directly writable
            ValidationError: Field does not exist on the kind
        """
        kind = DocumentKind(kind)
        if field not in field_keys(DOCUMENT_MODELS[kind]):
            raise ValidationError(f"Unknown field {field!r} for {kind.value}", field=field)
        if field in WORKFLOW_MANAGED_FIELDS:
            raise AccessDenied(f"Field {field!r} can only change through the document workflow")

        if kind == DocumentKind.MEDICAL_EXAM:
            if field in CLINICAL_WRITE_FIELDS:
                return Capability.EDIT_CLINICAL_DATA
            if field in EXAM_UPLOAD_FIELDS:
                return Capability.UPLOAD_EXAM_EVIDENCE
            return Capability.EDIT_EXAM_SCHEDULING
        return Capability.EDIT_SAFETY_DOCUMENTS

    def assert_can_write(self, kind: DocumentKind | str, field: str, roles: Iterable[Role | str]) -> None:
        """Check that the caller may write ``field`` of ``kind``.

        Called for every touched field before any mutation is applied,
        whether or not an accompanying transition succeeds.

        Raises:
            AccessDenied: Caller lacks the field's capability
            ValidationError: Unknown field
        """
        capability = self.write_capability(kind, field)
        if capability not in derive(roles):
            raise AccessDenied(f"Not allowed to modify {field!r}")

    # Accounts

    def account_access(
        self, actor_roles: Iterable[Role | str], target_roles: Iterable[Role | str]
    ) -> AccountAccess:
        """How the actor may see another user's account management controls.

        Super admins get full access. Company admins get full access to
        regular accounts and a read-only view of peers, superiors and
        medical-center accounts. Everyone else gets none.
        """
        capabilities = derive(actor_roles)
        if Capability.MANAGE_SYSTEM_ACCOUNTS in capabilities:
            return AccountAccess.FULL
        if Capability.MANAGE_COMPANY_USERS in capabilities:
            if coerce_roles(target_roles) & SYSTEM_LEVEL_ROLES:
                return AccountAccess.READ_ONLY
            return AccountAccess.FULL
        return AccountAccess.NONE

    def assert_can_create_account(
        self, actor_roles: Iterable[Role | str], new_roles: Iterable[Role | str]
    ) -> None:
        capabilities = derive(actor_roles)
        if coerce_roles(new_roles) & SYSTEM_LEVEL_ROLES:
            if Capability.MANAGE_SYSTEM_ACCOUNTS not in capabilities:
                raise AccessDenied("Only a super admin can create system-level accounts")
            return
        if Capability.MANAGE_COMPANY_USERS not in capabilities:
            raise AccessDenied("Not allowed to create accounts")

    def assert_can_edit_roles(
        self,
        actor_roles: Iterable[Role | str],
        target_roles: Iterable[Role | str],
        new_roles: Iterable[Role | str],
    ) -> None:
        """Check a role change on another account.

        Both the account's current roles and the roles being granted count:
        a company admin can neither edit an admin nor promote someone to one.
        """
        if self.account_access(actor_roles, target_roles) != AccountAccess.FULL:
            raise AccessDenied("Not allowed to edit this account's roles")
        self.assert_can_create_account(actor_roles, new_roles)
