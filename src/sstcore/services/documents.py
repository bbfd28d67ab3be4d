"""Generic document operations: create, transition, edit, sign, read.

Provides:
- DocumentService: create, evaluate_transition, update_fields, sign,
  read_filtered, score, risk_summary
- SIGNATURE_ROLES: Signature roles each kind accepts
"""

from typing import Any, Mapping, Optional

import pydantic

from sstcore.core import scoring
from sstcore.core.documents import (
    DOCUMENT_MODELS,
    AnyDocument,
    DocumentBase,
    DocumentKind,
    RiskAssessment,
    SignatureRole,
)
from sstcore.core.errors import AccessDenied, DocumentFrozen, ValidationError
from sstcore.core.policy.roles import Capability, IdentityContext
from sstcore.core.signatures import store_signature
from sstcore.core.workflow.engine import TransitionOutcome

from .base import BaseService

SIGNATURE_ROLES: dict[DocumentKind, frozenset[SignatureRole]] = {
    DocumentKind.RISK_ASSESSMENT: frozenset({SignatureRole.ELABORATOR, SignatureRole.APPROVER}),
    DocumentKind.JOB_SAFETY_ANALYSIS: frozenset({SignatureRole.ELABORATOR}),
    DocumentKind.SAFE_WORK_PROCEDURE: frozenset({SignatureRole.ELABORATOR, SignatureRole.APPROVER}),
    DocumentKind.TRAINING_SESSION: frozenset({
        SignatureRole.TRAINER,
        SignatureRole.REGISTRY_RESPONSIBLE,
        SignatureRole.CERTIFICATION_RESPONSIBLE,
    }),
    DocumentKind.MEDICAL_EXAM: frozenset(),
}

# Fields set by create() itself
_CREATION_FIELDS = frozenset({"organization_id", "kind"})


def validate_content(document: DocumentBase, thresholds=None) -> None:
    """Re-validate bounded inputs that the model alone does not range-check.

    Raises:
        OutOfRange: An IPERC line factor or severity is outside [1, 5]
    """
    if isinstance(document, RiskAssessment):
        for line in document.lines:
            scoring.validate_line(line, thresholds)


def _signature_capability(kind: DocumentKind, role: SignatureRole) -> Capability:
    if role == SignatureRole.APPROVER:
        if kind == DocumentKind.RISK_ASSESSMENT:
            return Capability.APPROVE_RISK_ASSESSMENT
        return Capability.REVIEW_PROCEDURES
    return Capability.EDIT_SAFETY_DOCUMENTS


class DocumentService(BaseService):
    """Entry point for operations shared by every document kind."""

    async def create(
        self,
        kind: DocumentKind | str,
        data: Mapping[str, Any],
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> AnyDocument:
        """Create a document in its kind's initial state.

        Args:
            kind: Document kind
            data: Field values by field identifier; must include organization_id
            identity: Caller
            deadline: Seconds allowed for the repository call

        Returns:
            Stored document (version 1)

        Raises:
            AccessDenied: Caller cannot write a supplied field or act on the organization
            ValidationError: Missing or invalid fields
        """
        kind = DocumentKind(kind)
        organization_id = data.get("organization_id")
        if not organization_id:
            raise ValidationError("organization_id is required", field="organization_id")
        if not identity.can_access(organization_id):
            raise AccessDenied("Document belongs to another organization")

        creator = (
            Capability.EDIT_EXAM_SCHEDULING
            if kind == DocumentKind.MEDICAL_EXAM
            else Capability.EDIT_SAFETY_DOCUMENTS
        )
        self.policy.assert_capability(identity.roles, creator, f"create {kind.value} documents")
        for key in data:
            if key not in _CREATION_FIELDS:
                self.policy.assert_can_write(kind, key, identity.roles)

        payload = {**data, "kind": kind.value, "created_by": identity.user_id}
        try:
            document = DOCUMENT_MODELS[kind].model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {kind.value} document: {exc.errors()[0]['msg']}") from exc
        validate_content(document, self.config.risk_tier_thresholds)

        return await self._run(
            self._save(document, None, identity, "document_created"),
            deadline,
        )

    async def evaluate_transition(
        self,
        kind: DocumentKind | str,
        document_id: str,
        transition: str,
        identity: IdentityContext,
        changes: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> TransitionOutcome:
        """Load, evaluate and persist a transition.

        An idempotent re-issue of a closing transition is not written.

        Raises:
            StaleWrite: ``expected_version`` is outdated, or a concurrent save won
            TransitionError / AccessDenied / ValidationError: See WorkflowEngine.evaluate
        """
        return await self._run(
            self._evaluate_transition(
                DocumentKind(kind), document_id, transition, identity, changes, expected_version
            ),
            deadline,
        )

    async def _evaluate_transition(self, kind, document_id, transition, identity, changes, expected_version):
        document = await self._load(kind, document_id, identity)
        # A retried close is answered before the version check
        repeated = self.engine.repeated_close(document, transition, identity, changes)
        if repeated is not None:
            self.log.info("transition_noop", kind=kind.value, document_id=document_id, transition=transition)
            return repeated

        self._check_base_version(document, expected_version)
        outcome = self.engine.evaluate(document, transition, identity, changes)

        validate_content(outcome.document, self.config.risk_tier_thresholds)
        outcome.document = await self._save(
            outcome.document,
            document.version,
            identity,
            "transition_applied",
            transition=transition,
            from_state=outcome.previous_state.value,
            to_state=outcome.new_state.value,
            fields=outcome.changed_fields,
        )
        return outcome

    async def update_fields(
        self,
        kind: DocumentKind | str,
        document_id: str,
        changes: Mapping[str, Any],
        identity: IdentityContext,
        expected_version: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> AnyDocument:
        """In-state field edit.

        Args:
            expected_version: Version the caller's edit is based on; when
                omitted, the version just loaded is used

        Raises:
            AccessDenied: A field is not writable by the caller
            DocumentFrozen: The document's state forbids edits
            StaleWrite: The base version is outdated
        """
        return await self._run(
            self._update_fields(DocumentKind(kind), document_id, dict(changes), identity, expected_version),
            deadline,
        )

    async def _update_fields(self, kind, document_id, changes, identity, expected_version):
        document = await self._load(kind, document_id, identity)
        self._check_base_version(document, expected_version)
        updated = self.engine.apply_edit(document, changes, identity)
        validate_content(updated, self.config.risk_tier_thresholds)
        return await self._save(updated, document.version, identity, "fields_updated", fields=sorted(changes))

    async def sign(
        self,
        kind: DocumentKind | str,
        document_id: str,
        role: SignatureRole | str,
        data_url: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> AnyDocument:
        """Validate and store a signature image, then attach its reference.

        Signing is allowed in any non-terminal state; a new signature for a
        role replaces the earlier one.

        Raises:
            ValidationError: Blank or malformed image, or role not used by the kind
            AccessDenied: Caller may not sign in this role
            DocumentFrozen: Document is in a terminal state
        """
        kind = DocumentKind(kind)
        role = SignatureRole(role)
        if role not in SIGNATURE_ROLES[kind]:
            raise ValidationError(f"{kind.value} documents have no {role.value} signature", field="role")
        self.policy.assert_capability(identity.roles, _signature_capability(kind, role), f"sign as {role.value}")
        if self.blob_store is None:
            raise ValidationError("No blob store configured for signatures")
        return await self._run(self._sign(kind, document_id, role, data_url, identity), deadline)

    async def _sign(self, kind, document_id, role, data_url, identity):
        document = await self._load(kind, document_id, identity)
        if self.engine.is_terminal(document):
            raise DocumentFrozen(kind.value, document.id, self.engine.state_of(document).value)

        signature = await store_signature(
            self.blob_store,
            data_url,
            role,
            identity.user_id,
            self.config.signature_min_base64_length,
        )
        signed = document.model_copy(deep=True)
        signed.attach_signature(signature)
        return await self._save(signed, document.version, identity, "document_signed", role=role.value)

    async def read_filtered(
        self,
        kind: DocumentKind | str,
        document_id: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        """Caller's view of a document with restricted fields omitted."""
        self.policy.assert_capability(identity.roles, Capability.READ_DOCUMENTS, "read documents")
        document = await self._run(self._load(DocumentKind(kind), document_id, identity), deadline)
        return self.policy.redact(document, identity.roles)

    def score(self, a: int, b: int, c: int, d: int, severity: int) -> scoring.RiskScore:
        """Score one risk line with the configured tier thresholds."""
        return scoring.score(a, b, c, d, severity, self.config.risk_tier_thresholds)

    async def risk_summary(
        self,
        document_id: str,
        identity: IdentityContext,
        deadline: Optional[float] = None,
    ) -> dict[str, int]:
        """Number of IPERC lines per risk tier."""
        document = await self._run(self._load(DocumentKind.RISK_ASSESSMENT, document_id, identity), deadline)
        scores = [scoring.validate_line(line, self.config.risk_tier_thresholds) for line in document.lines]
        return {tier.value: count for tier, count in scoring.tier_counts(scores).items()}


