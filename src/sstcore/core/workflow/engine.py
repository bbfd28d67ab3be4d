"""Table-driven workflow evaluator.

The engine is pure: it never mutates the document it is given and never
touches storage. It returns a modified copy that the caller persists with a
single save, so a failed transition leaves nothing behind.

Evaluation order for ``evaluate``:
1. Field-level write check for every changed field
2. Re-issued closing transition returns the document unchanged
3. Rule lookup, then capability check, then source-state check
4. Guards in declared order
5. Effects and state change on the copy

Provides:
- WorkflowEngine: evaluate, apply_edit, available_transitions, state helpers
- TransitionOutcome: Result of an evaluation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

import pydantic

from sstcore.core.config import Config, load_config
from sstcore.core.documents import (
    AnyDocument,
    DocumentBase,
    DocumentKind,
    dump_document,
    kind_of,
    utcnow,
)
from sstcore.core.errors import AccessDenied, DocumentFrozen, InvalidTransition, ValidationError
from sstcore.core.policy.access import AccessPolicyEngine
from sstcore.core.policy.roles import IdentityContext
from sstcore.core.workflow.guards import GuardContext
from sstcore.core.workflow.tables import WORKFLOW_TABLES, TransitionRule, WorkflowTable


@dataclass
class TransitionOutcome:
    """Result of a successful evaluation.

    Attributes:
        document: Updated copy (the input document itself is untouched)
        transition: Requested transition name
        previous_state: State before the transition
        new_state: State after the transition
        changed: False for an idempotent re-issue of a closing transition
        changed_fields: Field identifiers written alongside the transition
    """

    document: AnyDocument
    transition: str
    previous_state: Enum
    new_state: Enum
    changed: bool = True
    changed_fields: list[str] = field(default_factory=list)


def merge_changes(document: DocumentBase, changes: Mapping[str, Any]) -> DocumentBase:
    """Return a re-validated copy of ``document`` with ``changes`` applied.

    Keys are external field identifiers (clinical-record keys for exams).

    Raises:
        ValidationError: The merged document does not validate
    """
    data = dump_document(document)
    data.update(changes)
    try:
        return type(document).model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid value for {location or 'document'}: {first.get('msg', 'invalid')}",
            field=location or None,
        ) from exc


class WorkflowEngine:
    """Evaluates named transitions against the per-kind tables."""

    def __init__(
        self,
        config: Optional[Config] = None,
        policy: Optional[AccessPolicyEngine] = None,
    ):
        self.config = config or load_config()
        self.policy = policy or AccessPolicyEngine(self.config.risk_tier_thresholds)

    # State helpers

    def table_for(self, kind: DocumentKind | str) -> WorkflowTable:
        return WORKFLOW_TABLES[DocumentKind(kind)]

    def state_of(self, document: DocumentBase) -> Enum:
        table = self.table_for(kind_of(document))
        return table.states(getattr(document, "state"))

    def is_terminal(self, document: DocumentBase) -> bool:
        return self.state_of(document) in self.table_for(kind_of(document)).terminal

    def is_editable(self, document: DocumentBase) -> bool:
        return self.state_of(document) in self.table_for(kind_of(document)).editable

    def assert_editable(self, document: DocumentBase) -> None:
        """Raise DocumentFrozen unless the current state permits field edits."""
        if not self.is_editable(document):
            raise DocumentFrozen(kind_of(document).value, document.id, self.state_of(document).value)

    def available_transitions(self, document: DocumentBase, identity: IdentityContext) -> list[str]:
        """Transitions the caller may request now (capability check only)."""
        state = self.state_of(document)
        table = self.table_for(kind_of(document))
        return [
            rule.name
            for rule in table.rules.values()
            if state in rule.sources and identity.can(rule.capability)
        ]

    # Mutation

    def _check_writes(self, document: DocumentBase, changes: Mapping[str, Any], identity: IdentityContext) -> None:
        kind = kind_of(document)
        for key in changes:
            self.policy.assert_can_write(kind, key, identity.roles)

    def apply_edit(
        self,
        document: DocumentBase,
        changes: Mapping[str, Any],
        identity: IdentityContext,
    ) -> AnyDocument:
        """In-state field edit without a transition.

        Raises:
            AccessDenied: A field is not writable by the caller
            ValidationError: Unknown field or invalid value
            DocumentFrozen: Current state does not permit edits
        """
        self._check_writes(document, changes, identity)
        self.assert_editable(document)
        updated = merge_changes(document, changes)
        updated.updated_at = utcnow()
        return updated

    def repeated_close(
        self,
        document: DocumentBase,
        transition: str,
        identity: IdentityContext,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[TransitionOutcome]:
        """Unchanged outcome when a closing transition is re-issued, else None.

        Raises:
            AccessDenied: Field write or transition not permitted for the caller
            DocumentFrozen: Changes given with the re-issued transition
        """
        changes = changes or {}
        self._check_writes(document, changes, identity)
        rule = self.table_for(kind_of(document)).rule(transition)
        state = self.state_of(document)
        if rule is None or not rule.closing or state != rule.target or state in rule.sources:
            return None
        self._check_capability(rule, identity)
        if changes:
            raise DocumentFrozen(kind_of(document).value, document.id, state.value)
        return TransitionOutcome(
            document=document.model_copy(deep=True),
            transition=transition,
            previous_state=state,
            new_state=state,
            changed=False,
        )

    def evaluate(
        self,
        document: DocumentBase,
        transition: str,
        identity: IdentityContext,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> TransitionOutcome:
        """Evaluate ``transition`` on a copy of ``document``.

        Args:
            document: Current document (never mutated)
            transition: Rule name, e.g. "schedule" or "approve"
            identity: Caller
            changes: Field edits written together with the transition

        Returns:
            TransitionOutcome holding the updated copy

        Raises:
            AccessDenied: Field write or transition not permitted for the caller
            InvalidTransition: Transition not defined for the current state
            MissingSignatures / GuardFailed: First failing guard
            DocumentFrozen: Changes given while the state forbids edits
            ValidationError: Invalid field values
        """
        changes = dict(changes or {})
        kind = kind_of(document)
        table = self.table_for(kind)
        state = self.state_of(document)

        repeated = self.repeated_close(document, transition, identity, changes)
        if repeated is not None:
            return repeated

        rule = table.rule(transition)
        if rule is None:
            raise InvalidTransition(kind.value, state.value, transition)
        self._check_capability(rule, identity)
        if state not in rule.sources:
            raise InvalidTransition(kind.value, state.value, transition)

        if changes:
            self.assert_editable(document)
            working = merge_changes(document, changes)
        else:
            working = document.model_copy(deep=True)

        ctx = GuardContext(transition=transition, identity=identity, config=self.config)
        for guard in rule.guards:
            guard(working, ctx)

        for effect in rule.effects:
            effect(working, ctx)
        working.state = rule.target
        working.updated_at = utcnow()

        return TransitionOutcome(
            document=working,
            transition=transition,
            previous_state=state,
            new_state=rule.target,
            changed_fields=sorted(changes),
        )

    def _check_capability(self, rule: TransitionRule, identity: IdentityContext) -> None:
        if not identity.can(rule.capability):
            raise AccessDenied(f"Not allowed to {rule.name.replace('_', ' ')} this document")
