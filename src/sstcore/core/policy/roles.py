"""Roles, capabilities and caller identity.

Role membership is never tested ad hoc: every gated action is a Capability,
and ``derive`` is the single place that maps a role set to capabilities.

Provides:
- Role: User roles as issued by the identity provider
- Capability: One entry per gated action
- coerce_roles: Role values -> known Role set
- derive: Role set -> capability set
- IdentityContext: Authenticated caller (roles + organization scope)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN_EMPRESA = "ADMIN_EMPRESA"
    INGENIERO_SST = "INGENIERO_SST"
    SUPERVISOR = "SUPERVISOR"
    MEDICO = "MEDICO"
    EMPLEADO = "EMPLEADO"
    AUDITOR = "AUDITOR"
    CENTRO_MEDICO = "CENTRO_MEDICO"


HEALTH_ROLES = frozenset({Role.MEDICO, Role.CENTRO_MEDICO})
ADMIN_TIER = frozenset({Role.SUPER_ADMIN, Role.ADMIN_EMPRESA})


class Capability(str, Enum):
    """Gated actions.

    READ_DOCUMENTS: Read any non-confidential document field
    EDIT_SAFETY_DOCUMENTS: Create and edit IPERC, ATS, PETS and training sessions
    APPROVE_RISK_ASSESSMENT: Approve or reject a completed IPERC
    REVIEW_PROCEDURES: Move a PETS through review, approval and obsolescence
    MANAGE_TRAINING_LIFECYCLE: Reopen, close or cancel a training session
    VIEW_CLINICAL_DATA: See diagnoses, restrictions, observations and result files
    EDIT_CLINICAL_DATA: Set aptitude, diagnoses, restrictions, observations
    UPLOAD_EXAM_EVIDENCE: Upload exam evidence and result files
    MANAGE_FOLLOW_UPS: Add, resolve and remove interconsultas / vigilancias
    EDIT_EXAM_SCHEDULING: Schedule, reschedule, cancel and deliver exams
    MANAGE_COMPANY_USERS: Manage non-admin accounts of the own company
    MANAGE_SYSTEM_ACCOUNTS: Create admin-tier accounts and edit admins' roles
    """

    READ_DOCUMENTS = "read_documents"
    EDIT_SAFETY_DOCUMENTS = "edit_safety_documents"
    APPROVE_RISK_ASSESSMENT = "approve_risk_assessment"
    REVIEW_PROCEDURES = "review_procedures"
    MANAGE_TRAINING_LIFECYCLE = "manage_training_lifecycle"
    VIEW_CLINICAL_DATA = "view_clinical_data"
    EDIT_CLINICAL_DATA = "edit_clinical_data"
    UPLOAD_EXAM_EVIDENCE = "upload_exam_evidence"
    MANAGE_FOLLOW_UPS = "manage_follow_ups"
    EDIT_EXAM_SCHEDULING = "edit_exam_scheduling"
    MANAGE_COMPANY_USERS = "manage_company_users"
    MANAGE_SYSTEM_ACCOUNTS = "manage_system_accounts"


_ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.EDIT_SAFETY_DOCUMENTS,
        Capability.APPROVE_RISK_ASSESSMENT,
        Capability.REVIEW_PROCEDURES,
        Capability.MANAGE_TRAINING_LIFECYCLE,
        Capability.EDIT_EXAM_SCHEDULING,
        Capability.MANAGE_COMPANY_USERS,
        Capability.MANAGE_SYSTEM_ACCOUNTS,
    }),
    Role.ADMIN_EMPRESA: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.EDIT_SAFETY_DOCUMENTS,
        Capability.REVIEW_PROCEDURES,
        Capability.MANAGE_TRAINING_LIFECYCLE,
        Capability.EDIT_EXAM_SCHEDULING,
        Capability.MANAGE_COMPANY_USERS,
    }),
    Role.INGENIERO_SST: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.EDIT_SAFETY_DOCUMENTS,
        Capability.APPROVE_RISK_ASSESSMENT,
        Capability.REVIEW_PROCEDURES,
        Capability.EDIT_EXAM_SCHEDULING,
    }),
    Role.SUPERVISOR: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.EDIT_SAFETY_DOCUMENTS,
    }),
    Role.MEDICO: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.VIEW_CLINICAL_DATA,
        Capability.EDIT_CLINICAL_DATA,
        Capability.UPLOAD_EXAM_EVIDENCE,
        Capability.MANAGE_FOLLOW_UPS,
    }),
    Role.CENTRO_MEDICO: frozenset({
        Capability.READ_DOCUMENTS,
        Capability.VIEW_CLINICAL_DATA,
        Capability.EDIT_CLINICAL_DATA,
        Capability.UPLOAD_EXAM_EVIDENCE,
        Capability.MANAGE_FOLLOW_UPS,
    }),
    Role.EMPLEADO: frozenset({Capability.READ_DOCUMENTS}),
    Role.AUDITOR: frozenset({Capability.READ_DOCUMENTS}),
}


def coerce_roles(roles: Iterable[Role | str]) -> frozenset[Role]:
    # Unknown role strings grant nothing
    known = set()
    for role in roles:
        try:
            known.add(Role(role))
        except ValueError:
            continue
    return frozenset(known)


def derive(roles: Iterable[Role | str]) -> frozenset[Capability]:
    """Compute the capability set granted by a role set.

    Args:
        roles: Caller roles (Role members or their string values)

    Returns:
        Union of the capabilities of every recognised role

    Example:
        >>> Capability.VIEW_CLINICAL_DATA in derive([Role.ADMIN_EMPRESA])
        False
    """
    capabilities: set[Capability] = set()
    for role in coerce_roles(roles):
        capabilities |= _ROLE_CAPABILITIES.get(role, frozenset())
    return frozenset(capabilities)


@dataclass(frozen=True)
class IdentityContext:
    """Authenticated caller, supplied by the upstream API layer.

    Attributes:
        user_id: Caller's account id
        roles: Caller's roles
        organization_ids: Companies the caller may act on
        worker_id: Linked worker record, if any
    """

    user_id: str
    roles: frozenset[Role] = field(default_factory=frozenset)
    organization_ids: frozenset[str] = field(default_factory=frozenset)
    worker_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", coerce_roles(self.roles))
        object.__setattr__(self, "organization_ids", frozenset(self.organization_ids))

    @property
    def capabilities(self) -> frozenset[Capability]:
        return derive(self.roles)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def can_access(self, organization_id: str) -> bool:
        """Organization scope check. Super admins span every organization."""
        if Role.SUPER_ADMIN in self.roles:
            return True
        return organization_id in self.organization_ids
