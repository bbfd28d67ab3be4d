"""Access policy: roles, capabilities, field visibility and account gating."""

from .access import (
    CLINICAL_CONFIDENTIAL_FIELDS,
    AccessPolicyEngine,
    AccountAccess,
)
from .roles import ADMIN_TIER, HEALTH_ROLES, Capability, IdentityContext, Role, derive

__all__ = [
    "AccessPolicyEngine",
    "AccountAccess",
    "CLINICAL_CONFIDENTIAL_FIELDS",
    "ADMIN_TIER",
    "HEALTH_ROLES",
    "Capability",
    "IdentityContext",
    "Role",
    "derive",
]
