"""Per-kind transition tables.

Each document kind has a closed state enumeration and a table of named
transitions. A rule lists the states it fires from, its target state, the
capability the caller needs, its guards and its effects. Closing rules are
idempotent: re-issuing one against its own target state is a no-op.

Provides:
- TransitionRule: One named transition
- WorkflowTable: States and rules of a kind
- WORKFLOW_TABLES: Table per DocumentKind
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from sstcore.core.documents import (
    DocumentBase,
    DocumentKind,
    ExamState,
    JobSafetyAnalysisState,
    ProcedureState,
    RiskAssessmentState,
    SignatureRole,
    TrainingState,
    utcnow,
)
from sstcore.core.policy.roles import Capability
from sstcore.core.workflow import guards
from sstcore.core.workflow.guards import Guard, GuardContext

Effect = Callable[[DocumentBase, GuardContext], None]


@dataclass(frozen=True)
class TransitionRule:
    """Named transition of one document kind.

    Attributes:
        name: Transition identifier requested by callers (e.g. "approve")
        sources: States the transition fires from
        target: Resulting state
        capability: Capability the caller must hold
        guards: Preconditions, checked in order after the capability
        effects: Attribute updates applied with the state change
        closing: Re-issuing against ``target`` returns the document unchanged
    """

    name: str
    sources: frozenset[Enum]
    target: Enum
    capability: Capability
    guards: tuple[Guard, ...] = ()
    effects: tuple[Effect, ...] = ()
    closing: bool = False


@dataclass(frozen=True)
class WorkflowTable:
    kind: DocumentKind
    states: type[Enum]
    initial: Enum
    terminal: frozenset[Enum]
    editable: frozenset[Enum]
    rules: dict[str, TransitionRule] = field(default_factory=dict)

    def rule(self, name: str) -> TransitionRule | None:
        return self.rules.get(name)


def _table(kind, states, initial, terminal, editable, *rules: TransitionRule) -> WorkflowTable:
    return WorkflowTable(
        kind=kind,
        states=states,
        initial=initial,
        terminal=frozenset(terminal),
        editable=frozenset(editable),
        rules={rule.name: rule for rule in rules},
    )


# Effects


def _stamp(attribute: str) -> Effect:
    def effect(document: DocumentBase, ctx: GuardContext) -> None:
        setattr(document, attribute, ctx.identity.user_id)

    return effect


def _count_reopen(document: DocumentBase, ctx: GuardContext) -> None:
    document.reopen_count += 1


def _mark_closed(document: DocumentBase, ctx: GuardContext) -> None:
    document.closed_at = utcnow()


def _issue_today(document: DocumentBase, ctx: GuardContext) -> None:
    if document.issue_date is None:
        document.issue_date = utcnow().date()


R = RiskAssessmentState

RISK_ASSESSMENT_TABLE = _table(
    DocumentKind.RISK_ASSESSMENT,
    RiskAssessmentState,
    R.DRAFT,
    {R.APPROVED, R.REJECTED},
    {R.DRAFT},
    TransitionRule(
        name="complete",
        sources=frozenset({R.DRAFT}),
        target=R.COMPLETED,
        capability=Capability.EDIT_SAFETY_DOCUMENTS,
        guards=(
            guards.require_signatures(SignatureRole.ELABORATOR),
            guards.require_non_empty("lines", "risk line"),
            guards.require_valid_lines,
        ),
    ),
    TransitionRule(
        name="approve",
        sources=frozenset({R.COMPLETED}),
        target=R.APPROVED,
        capability=Capability.APPROVE_RISK_ASSESSMENT,
        guards=(guards.require_signatures(SignatureRole.APPROVER),),
        effects=(_stamp("approved_by"),),
    ),
    TransitionRule(
        name="reject",
        sources=frozenset({R.COMPLETED}),
        target=R.REJECTED,
        capability=Capability.APPROVE_RISK_ASSESSMENT,
    ),
)

# ATS: created and edited as a draft, no transitions
JOB_SAFETY_ANALYSIS_TABLE = _table(
    DocumentKind.JOB_SAFETY_ANALYSIS,
    JobSafetyAnalysisState,
    JobSafetyAnalysisState.DRAFT,
    set(),
    {JobSafetyAnalysisState.DRAFT},
)

P = ProcedureState

PROCEDURE_TABLE = _table(
    DocumentKind.SAFE_WORK_PROCEDURE,
    ProcedureState,
    P.DRAFT,
    {P.OBSOLETE},
    {P.DRAFT},
    TransitionRule(
        name="submit",
        sources=frozenset({P.DRAFT}),
        target=P.PENDING_REVIEW,
        capability=Capability.EDIT_SAFETY_DOCUMENTS,
        guards=(guards.require_non_empty("steps", "procedure step"),),
    ),
    TransitionRule(
        name="start_review",
        sources=frozenset({P.PENDING_REVIEW}),
        target=P.IN_REVIEW,
        capability=Capability.REVIEW_PROCEDURES,
        effects=(_stamp("reviewer_id"),),
    ),
    TransitionRule(
        name="approve",
        sources=frozenset({P.IN_REVIEW}),
        target=P.CURRENT,
        capability=Capability.REVIEW_PROCEDURES,
        effects=(_stamp("approver_id"), _issue_today),
    ),
    TransitionRule(
        name="obsolete",
        sources=frozenset({P.CURRENT}),
        target=P.OBSOLETE,
        capability=Capability.REVIEW_PROCEDURES,
    ),
)

T = TrainingState

TRAINING_TABLE = _table(
    DocumentKind.TRAINING_SESSION,
    TrainingState,
    T.PENDING,
    {T.CLOSED, T.CANCELLED},
    {T.PENDING, T.SCHEDULED, T.REOPENED},
    TransitionRule(
        name="schedule",
        sources=frozenset({T.PENDING}),
        target=T.SCHEDULED,
        capability=Capability.EDIT_SAFETY_DOCUMENTS,
        guards=(
            guards.require_signatures(
                SignatureRole.REGISTRY_RESPONSIBLE,
                SignatureRole.CERTIFICATION_RESPONSIBLE,
                SignatureRole.TRAINER,
            ),
        ),
    ),
    TransitionRule(
        name="complete",
        sources=frozenset({T.SCHEDULED, T.REOPENED}),
        target=T.COMPLETED,
        capability=Capability.EDIT_SAFETY_DOCUMENTS,
        guards=(guards.require_non_empty("participants", "participant"),),
    ),
    TransitionRule(
        name="reopen",
        sources=frozenset({T.COMPLETED}),
        target=T.REOPENED,
        capability=Capability.MANAGE_TRAINING_LIFECYCLE,
        guards=(guards.require_reopen_budget,),
        effects=(_count_reopen,),
    ),
    TransitionRule(
        name="close",
        sources=frozenset({T.PENDING, T.SCHEDULED, T.COMPLETED, T.REOPENED}),
        target=T.CLOSED,
        capability=Capability.MANAGE_TRAINING_LIFECYCLE,
        effects=(_mark_closed,),
        closing=True,
    ),
    TransitionRule(
        name="cancel",
        sources=frozenset({T.PENDING, T.SCHEDULED}),
        target=T.CANCELLED,
        capability=Capability.MANAGE_TRAINING_LIFECYCLE,
        effects=(_mark_closed,),
        closing=True,
    ),
)

E = ExamState

EXAM_TABLE = _table(
    DocumentKind.MEDICAL_EXAM,
    ExamState,
    E.SCHEDULED,
    {E.CANCELLED, E.EXPIRED},
    {E.SCHEDULED, E.RESCHEDULED, E.EVIDENCE_UPLOADED, E.COMPLETED},
    TransitionRule(
        name="upload_evidence",
        sources=frozenset({E.SCHEDULED, E.RESCHEDULED}),
        target=E.EVIDENCE_UPLOADED,
        capability=Capability.UPLOAD_EXAM_EVIDENCE,
        guards=(guards.require_exam_evidence,),
    ),
    TransitionRule(
        name="complete",
        sources=frozenset({E.EVIDENCE_UPLOADED}),
        target=E.COMPLETED,
        capability=Capability.EDIT_CLINICAL_DATA,
        guards=(guards.require_aptitude,),
    ),
    TransitionRule(
        name="deliver",
        sources=frozenset({E.COMPLETED}),
        target=E.DELIVERED,
        capability=Capability.EDIT_EXAM_SCHEDULING,
        closing=True,
    ),
    TransitionRule(
        name="reschedule",
        sources=frozenset({E.SCHEDULED, E.RESCHEDULED}),
        target=E.RESCHEDULED,
        capability=Capability.EDIT_EXAM_SCHEDULING,
        guards=(guards.require_value("scheduled_date", "scheduled date"),),
    ),
    TransitionRule(
        name="cancel",
        sources=frozenset({E.SCHEDULED, E.RESCHEDULED, E.EVIDENCE_UPLOADED}),
        target=E.CANCELLED,
        capability=Capability.EDIT_EXAM_SCHEDULING,
        closing=True,
    ),
    TransitionRule(
        name="flag_expiring",
        sources=frozenset({E.COMPLETED, E.DELIVERED}),
        target=E.EXPIRING_SOON,
        capability=Capability.EDIT_EXAM_SCHEDULING,
    ),
    TransitionRule(
        name="expire",
        sources=frozenset({E.COMPLETED, E.DELIVERED, E.EXPIRING_SOON}),
        target=E.EXPIRED,
        capability=Capability.EDIT_EXAM_SCHEDULING,
    ),
)

WORKFLOW_TABLES: dict[DocumentKind, WorkflowTable] = {
    table.kind: table
    for table in (
        RISK_ASSESSMENT_TABLE,
        JOB_SAFETY_ANALYSIS_TABLE,
        PROCEDURE_TABLE,
        TRAINING_TABLE,
        EXAM_TABLE,
    )
}
