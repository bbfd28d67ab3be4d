"""Error taxonomy for the compliance core.

Every failure the core reports to its caller is one of these exceptions.
Nothing here is retried or logged on the caller's behalf.

Provides:
- ComplianceError: Root of the hierarchy
- ValidationError / OutOfRange / DocumentFrozen: Malformed or disallowed input
- AccessDenied: Caller role or organization insufficient
- TransitionError / InvalidTransition / GuardFailed / MissingSignatures
- StaleWrite: Optimistic-concurrency conflict
- RepositoryError / DeadlineExceeded: External store failures
- DocumentNotFound: Unknown document or follow-up item
"""


class ComplianceError(Exception):
    """Base class for all errors raised by the compliance core."""


class ValidationError(ComplianceError):
    """Malformed input. Never partially applied; caller must correct and retry."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class OutOfRange(ValidationError):
    """A bounded integer input (risk factor, severity, score) is out of range."""

    def __init__(self, field: str, value: object, low: int, high: int):
        super().__init__(f"{field} must be an integer in [{low}, {high}], got {value!r}", field=field)
        self.value = value
        self.low = low
        self.high = high


class DocumentFrozen(ValidationError):
    """The document's current state does not permit field edits."""

    def __init__(self, kind: str, document_id: str, state: str):
        super().__init__(f"{kind} {document_id} is not editable in state {state!r}")
        self.kind = kind
        self.document_id = document_id
        self.state = state


class AccessDenied(ComplianceError):
    """Caller is not allowed to perform the read, write or transition.

    The message never describes the restricted data itself.
    """


class TransitionError(ComplianceError):
    """Base class for workflow transition failures. State is left unchanged."""


class InvalidTransition(TransitionError):
    """Requested transition is not defined for the document's current state."""

    def __init__(self, kind: str, state: str, transition: str):
        super().__init__(f"Transition {transition!r} is not available for {kind} in state {state!r}")
        self.kind = kind
        self.state = state
        self.transition = transition


class GuardFailed(TransitionError):
    """A transition precondition does not hold."""

    def __init__(self, transition: str, reason: str):
        super().__init__(f"{transition}: {reason}")
        self.transition = transition
        self.reason = reason


class MissingSignatures(GuardFailed):
    """One or more required signatures are not stored on the document."""

    def __init__(self, transition: str, missing: list[str]):
        super().__init__(transition, f"missing signatures: {', '.join(missing)}")
        self.missing = missing


class StaleWrite(ComplianceError):
    """The write was based on an outdated document version; reload and retry."""

    def __init__(self, document_id: str, expected_version: int | None, actual_version: int | None):
        super().__init__(
            f"Document {document_id} changed: expected version {expected_version}, "
            f"found {actual_version}"
        )
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class RepositoryError(ComplianceError):
    """The external document or blob store failed. Propagated as-is."""


class DeadlineExceeded(RepositoryError):
    """A repository call did not finish before the caller-supplied deadline."""


class DocumentNotFound(ComplianceError):
    """No document (or follow-up item) exists under the given identifier."""

    def __init__(self, kind: str, document_id: str):
        super().__init__(f"{kind} {document_id} not found")
        self.kind = kind
        self.document_id = document_id
