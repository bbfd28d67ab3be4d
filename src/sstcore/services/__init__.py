"""Async services over a DocumentRepository and BlobStore."""

from .base import BaseService, within_deadline
from .documents import SIGNATURE_ROLES, DocumentService
from .followups import Advisory, FollowUpTracker, advisories_for
from .medical import AptitudeResult, MedicalExamService, expiry_transition
from .procedures import ProcedureService
from .training import TrainingService

__all__ = [
    "BaseService",
    "within_deadline",
    "DocumentService",
    "SIGNATURE_ROLES",
    "FollowUpTracker",
    "Advisory",
    "advisories_for",
    "MedicalExamService",
    "AptitudeResult",
    "expiry_transition",
    "ProcedureService",
    "TrainingService",
]
