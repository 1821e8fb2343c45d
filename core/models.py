# ================================================================
# File     : models.py
# Purpose  : Fixed-field records shared by modules and exports
# Notes    : RoleAssignment is immutable once collected
# ================================================================

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.errors import RoleRangerError

SCOPE_SUBSCRIPTION = "Subscription"
SCOPE_RESOURCE_GROUP = "Resource Group"

PRINCIPAL_TYPES = ("User", "Group", "ServicePrincipal")

PRIVILEGED_ROLES = frozenset([
    "Owner",
    "Contributor",
    "User Access Administrator",
    "Co-Administrator",
    "Service Administrator",
    "Account Administrator",
    "Key Vault Administrator",
    "SQL DB Contributor",
    "SQL Security Manager",
    "Storage Account Contributor",
    "Azure Kubernetes Service Cluster Admin Role",
    "Virtual Machine Administrator Login",
    "Virtual Machine Contributor",
    "Network Contributor",
    "Security Administrator",
    "Azure Service Deploy Release Management Contributor",
    "Automation Contributor",
    "Log Analytics Contributor",
    "Application Administrator",
    "Cloud Application Administrator",
])

# Roles whose rows are flagged in the HTML report
HIGH_RISK_ROLES = ("Owner", "Contributor")

CSV_COLUMNS = [
    "SubscriptionName",
    "SubscriptionId",
    "Scope",
    "ResourceGroupName",
    "RoleName",
    "PrincipalType",
    "PrincipalId",
    "PrincipalName",
    "SignInName",
    "AssignmentId",
    "IsPIM",
]


def fncNormalisePrincipalType(value: Optional[str]) -> str:
    v = (value or "").strip()
    for known in PRINCIPAL_TYPES:
        if v.lower() == known.lower():
            return known
    return "Other"


def fncIsPrivileged(role_name: Optional[str]) -> bool:
    return role_name in PRIVILEGED_ROLES


@dataclass(frozen=True)
class RoleAssignment:
    subscription_id: str
    subscription_name: str
    scope: str
    role_name: str
    principal_type: str
    principal_id: str
    principal_name: str
    assignment_id: str
    resource_group_name: Optional[str] = None
    sign_in_name: Optional[str] = None
    is_pim: str = "Unknown"

    @property
    def key(self) -> Tuple[str, str]:
        return (self.assignment_id, self.scope)

    def to_row(self) -> Dict[str, str]:
        return {
            "SubscriptionName": self.subscription_name,
            "SubscriptionId": self.subscription_id,
            "Scope": self.scope,
            "ResourceGroupName": self.resource_group_name or "",
            "RoleName": self.role_name,
            "PrincipalType": self.principal_type,
            "PrincipalId": self.principal_id,
            "PrincipalName": self.principal_name,
            "SignInName": self.sign_in_name or "",
            "AssignmentId": self.assignment_id,
            "IsPIM": self.is_pim,
        }


@dataclass
class ScopeResult:
    """Outcome of one scope fetch: assignments on success, error on failure."""
    scope: str
    assignments: List[RoleAssignment] = field(default_factory=list)
    error: Optional[RoleRangerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AuditResult:
    subscription_id: str
    subscription_name: str
    assignments: List[RoleAssignment] = field(default_factory=list)
    warnings: List[RoleRangerError] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    written: Dict[str, str] = field(default_factory=dict)
    report_data: Dict[str, Any] = field(default_factory=dict)
