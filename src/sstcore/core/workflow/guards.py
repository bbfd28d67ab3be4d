"""Transition preconditions.

A guard inspects the (copied) document and raises a GuardFailed subclass
when its precondition does not hold. Guards run after the caller's role has
been checked, in the order a rule declares them; the first failure wins.

Provides:
- GuardContext: What a guard may consult besides the document
- require_signatures: Every listed signature role is stored
- require_non_empty: A list attribute has at least one entry
- require_valid_lines: Every IPERC line re-validates
- require_reopen_budget: Reopen counter below the configured limit
- require_aptitude: Exam aptitude recorded
- require_exam_evidence: Result attachment or evidence documents present
- require_value: A scalar attribute is set
"""

from dataclasses import dataclass
from typing import Callable

from sstcore.core import scoring
from sstcore.core.config import Config
from sstcore.core.documents import DocumentBase, SignatureRole
from sstcore.core.errors import GuardFailed, MissingSignatures, OutOfRange
from sstcore.core.policy.roles import IdentityContext


@dataclass(frozen=True)
class GuardContext:
    transition: str
    identity: IdentityContext
    config: Config


Guard = Callable[[DocumentBase, GuardContext], None]


def require_signatures(*roles: SignatureRole) -> Guard:
    """All of ``roles`` must have a stored signature. Reports every missing role."""

    def guard(document: DocumentBase, ctx: GuardContext) -> None:
        missing = [role.value for role in roles if not document.has_signature(role)]
        if missing:
            raise MissingSignatures(ctx.transition, missing)

    return guard


def require_non_empty(attribute: str, label: str) -> Guard:
    def guard(document: DocumentBase, ctx: GuardContext) -> None:
        if not getattr(document, attribute, None):
            raise GuardFailed(ctx.transition, f"at least one {label} is required")

    return guard


def require_value(attribute: str, label: str) -> Guard:
    def guard(document: DocumentBase, ctx: GuardContext) -> None:
        if getattr(document, attribute, None) in (None, ""):
            raise GuardFailed(ctx.transition, f"{label} is required")

    return guard


def require_valid_lines(document: DocumentBase, ctx: GuardContext) -> None:
    for line in getattr(document, "lines", []):
        try:
            scoring.validate_line(line, ctx.config.risk_tier_thresholds)
        except OutOfRange as exc:
            raise GuardFailed(ctx.transition, str(exc)) from exc


def require_reopen_budget(document: DocumentBase, ctx: GuardContext) -> None:
    limit = ctx.config.training_max_reopens
    if getattr(document, "reopen_count", 0) >= limit:
        raise GuardFailed(ctx.transition, f"session was already reopened {limit} time(s)")


def require_aptitude(document: DocumentBase, ctx: GuardContext) -> None:
    if getattr(document, "aptitude", None) is None:
        raise GuardFailed(ctx.transition, "aptitude result is required")


def require_exam_evidence(document: DocumentBase, ctx: GuardContext) -> None:
    if not getattr(document, "result_attachment", None) and not getattr(
        document, "evidence_documents", None
    ):
        raise GuardFailed(ctx.transition, "a result file or evidence document is required")
