"""Core compliance functionality.

Provides:
- IPERC risk scoring (probability x severity -> tier)
- Error taxonomy shared by every component
- Per-item batch results
"""

from .batch import BatchItemResult, BatchResult
from .errors import (
    AccessDenied,
    ComplianceError,
    DeadlineExceeded,
    DocumentFrozen,
    DocumentNotFound,
    GuardFailed,
    InvalidTransition,
    MissingSignatures,
    OutOfRange,
    RepositoryError,
    StaleWrite,
    TransitionError,
    ValidationError,
)
from .scoring import RiskScore, RiskTier, classify, matrix_level, score

__all__ = [
    "BatchItemResult",
    "BatchResult",
    "AccessDenied",
    "ComplianceError",
    "DeadlineExceeded",
    "DocumentFrozen",
    "DocumentNotFound",
    "GuardFailed",
    "InvalidTransition",
    "MissingSignatures",
    "OutOfRange",
    "RepositoryError",
    "StaleWrite",
    "TransitionError",
    "ValidationError",
    "RiskScore",
    "RiskTier",
    "classify",
    "matrix_level",
    "score",
]
