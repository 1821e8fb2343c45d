# ================================================================
# File     : modules/azure/privileged_roles.py
# Purpose  : Privileged Azure RBAC role assignment audit
# Notes    : Subscription + resource group scopes, fixed role
#            allow-list, Graph name lookups, CSV and HTML reports.
#            Follows the run(client, args) signature; client is an
#            AzureSession.
# ================================================================

from collections import Counter
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from core.errors import (
    ApiError,
    AccessDenied,
    NoActiveSession,
    PrincipalLookupFailed,
    ReportWriteFailed,
    RoleRangerError,
    ScopeFetchFailed,
    SubscriptionNotFound,
)
from core.exports import fncDefaultReportPath, fncExportAssignmentsCSV
from core.models import (
    HIGH_RISK_ROLES,
    SCOPE_RESOURCE_GROUP,
    SCOPE_SUBSCRIPTION,
    AuditResult,
    RoleAssignment,
    ScopeResult,
    fncIsPrivileged,
    fncNormalisePrincipalType,
)
from core.reporting import fncWriteHTMLReport
from core.utils import fncPrintMessage, fncSafeGet, fncToTable, fncNewRunId
from handlers.graph.client import PRINCIPAL_ENDPOINTS

REQUIRED_PERMS = [
    "Reader on the subscription (Azure RBAC)",
    "Directory.Read.All (Microsoft Graph, application)",
]

REPORT_PREFIX = "PrivilegedRoles"

OUTPUT_FORMATS = {
    "csv": ("csv",),
    "html": ("html",),
    "both": ("csv", "html"),
}

CLASSIC_ROLE_NAMES = {
    "serviceadministrator": "Service Administrator",
    "accountadministrator": "Account Administrator",
    "coadministrator": "Co-Administrator",
}

# Errors a single ARM/Graph call can raise without aborting the run
_SOFT_ERRORS = (ApiError, ValueError)


# ================================================================
# Function: add_args
# Purpose : Add module CLI arguments
# Notes   : Called by the module loader when building argparse
# ================================================================
def add_args(parser):
    g = parser.add_argument_group("azure/privileged_roles")
    g.add_argument("--subscription-id", default=None,
                   help="Subscription to audit (default: the active session's subscription)")
    g.add_argument("--output-csv", default=None,
                   help="CSV report path (default: timestamped file in the current directory)")
    g.add_argument("--output-html", default=None,
                   help="HTML report path (default: timestamped file in the current directory)")
    g.add_argument("--include-resource-groups", dest="include_resource_groups",
                   action="store_true", default=True,
                   help="Also audit every resource group (default)")
    g.add_argument("--no-resource-groups", dest="include_resource_groups",
                   action="store_false",
                   help="Only audit assignments at subscription scope")
    g.add_argument("--output-format", type=str.lower, choices=sorted(OUTPUT_FORMATS), default="both",
                   help="Which report(s) to write: csv, html or both (default: both)")
    g.add_argument("--include-classic-admins", action="store_true",
                   help="Also list classic subscription administrators")


# ================================================================
# Function: fncResolveSubscription
# Purpose : Decide which subscription to audit and switch to it
# Notes   : No id → session's current subscription or NoActiveSession.
#           404 → SubscriptionNotFound, 401/403 → AccessDenied.
# ================================================================
def fncResolveSubscription(session, subscription_id: Optional[str] = None) -> Tuple[str, str]:
    if not subscription_id:
        subscription_id = session.current_subscription_id
        if not subscription_id:
            raise NoActiveSession()
        fncPrintMessage(f"No subscription supplied; using session subscription {subscription_id}", "info")

    try:
        sub = session.arm.get_subscription(subscription_id)
    except ApiError as ex:
        if ex.status in (400, 404):
            raise SubscriptionNotFound(subscription_id) from ex
        if ex.status in (401, 403):
            raise AccessDenied(subscription_id, str(ex)) from ex
        raise

    sid = sub.get("subscriptionId") or subscription_id
    name = sub.get("displayName") or sid
    session.set_subscription(sid, name)
    fncPrintMessage(f"Target subscription: {name} ({sid})", "success")
    return sid, name


# ================================================================
# Function: fncLoadRoleNames
# Purpose : Map role definition GUIDs to role names
# Notes   : Keys are lower-case GUIDs (last path segment)
# ================================================================
def fncLoadRoleNames(session, subscription_id: str) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for d in session.arm.list_role_definitions(f"/subscriptions/{subscription_id}"):
        guid = (d.get("name") or str(d.get("id", "")).rsplit("/", 1)[-1]).lower()
        role_name = fncSafeGet(d, "properties.roleName")
        if guid and role_name:
            names[guid] = role_name
    fncPrintMessage(f"Loaded {len(names)} role definitions", "debug")
    return names


def _in_scope(own_scope: str, scope_label: str, queried: str) -> bool:
    own = (own_scope or "").rstrip("/").lower()
    if scope_label == SCOPE_RESOURCE_GROUP:
        return own == queried.rstrip("/").lower()
    # subscription query: the subscription itself or anything above it
    return "/resourcegroups/" not in own


def fncBuildAssignment(raw: Dict[str, Any], role_names: Dict[str, str], subscription_id: str,
                       subscription_name: str, scope_label: str,
                       resource_group_name: Optional[str] = None) -> RoleAssignment:
    props = raw.get("properties", {}) or {}
    role_guid = str(props.get("roleDefinitionId", "")).rsplit("/", 1)[-1].lower()
    return RoleAssignment(
        subscription_id=subscription_id,
        subscription_name=subscription_name,
        scope=scope_label,
        resource_group_name=resource_group_name,
        role_name=role_names.get(role_guid, ""),
        principal_type=fncNormalisePrincipalType(props.get("principalType")),
        principal_id=props.get("principalId") or "",
        principal_name=props.get("principalDisplayName") or "",
        assignment_id=raw.get("id") or raw.get("name") or "",
    )


# ================================================================
# Function: fncFetchScope
# Purpose : Fetch + filter one scope's role assignments
# Notes   : Never raises for API failures; returns a failed ScopeResult
# ================================================================
def fncFetchScope(session, scope_path: str, scope_label: str, role_names: Dict[str, str],
                  subscription_id: str, subscription_name: str,
                  resource_group_name: Optional[str] = None) -> ScopeResult:
    try:
        raw_items = session.arm.list_role_assignments(scope_path)
    except _SOFT_ERRORS as ex:
        err = ScopeFetchFailed(scope_path, ex)
        fncPrintMessage(str(err), "warn")
        return ScopeResult(scope_path, error=err)

    records = [
        fncBuildAssignment(a, role_names, subscription_id, subscription_name, scope_label, resource_group_name)
        for a in raw_items
        if _in_scope(fncSafeGet(a, "properties.scope", ""), scope_label, scope_path)
    ]
    privileged = [r for r in records if fncIsPrivileged(r.role_name)]
    fncPrintMessage(
        f"{scope_path}: {len(raw_items)} assignment(s), {len(privileged)} privileged", "debug")
    return ScopeResult(scope_path, assignments=privileged)


# ================================================================
# Function: fncFetchClassicAdmins
# Purpose : List classic subscription administrators as assignments
# Notes   : One record per classic role held; principals have no
#           object id, so the e-mail address is the display name
# ================================================================
def fncFetchClassicAdmins(session, subscription_id: str, subscription_name: str) -> ScopeResult:
    scope_path = f"/subscriptions/{subscription_id}/classicAdministrators"
    try:
        admins = session.arm.list_classic_administrators(subscription_id)
    except _SOFT_ERRORS as ex:
        err = ScopeFetchFailed(scope_path, ex)
        fncPrintMessage(str(err), "warn")
        return ScopeResult(scope_path, error=err)

    records = []
    for admin in admins:
        email = fncSafeGet(admin, "properties.emailAddress", "") or ""
        for part in str(fncSafeGet(admin, "properties.role", "")).split(";"):
            role_name = CLASSIC_ROLE_NAMES.get(part.strip().lower())
            if not role_name:
                continue
            records.append(RoleAssignment(
                subscription_id=subscription_id,
                subscription_name=subscription_name,
                scope=SCOPE_SUBSCRIPTION,
                role_name=role_name,
                principal_type="User",
                principal_id="",
                principal_name=email,
                sign_in_name=email or None,
                assignment_id=f"{admin.get('id') or admin.get('name')}#{part.strip()}",
            ))
    return ScopeResult(scope_path, assignments=[r for r in records if fncIsPrivileged(r.role_name)])


# ================================================================
# Function: fncCollectAssignments
# Purpose : Collect privileged assignments across all scopes
# Notes   : Sequential; failed scopes become ScopeFetchFailed
#           warnings and count as empty. Duplicates on
#           (assignment_id, scope) are dropped, first wins.
# ================================================================
def fncCollectAssignments(session, subscription_id: str, subscription_name: str,
                          include_resource_groups: bool = True,
                          include_classic_admins: bool = False) -> Tuple[List[RoleAssignment], List[RoleRangerError]]:
    warnings: List[RoleRangerError] = []
    sub_scope = f"/subscriptions/{subscription_id}"

    try:
        role_names = fncLoadRoleNames(session, subscription_id)
    except _SOFT_ERRORS as ex:
        err = ScopeFetchFailed(f"{sub_scope}/roleDefinitions", ex)
        fncPrintMessage(str(err), "warn")
        warnings.append(err)
        role_names = {}

    fncPrintMessage(f"Collecting role assignments at {sub_scope}", "info")
    results = [fncFetchScope(session, sub_scope, SCOPE_SUBSCRIPTION, role_names,
                             subscription_id, subscription_name)]

    if include_resource_groups:
        try:
            groups = session.arm.list_resource_groups(subscription_id)
        except _SOFT_ERRORS as ex:
            err = ScopeFetchFailed(f"{sub_scope}/resourceGroups", ex)
            fncPrintMessage(str(err), "warn")
            warnings.append(err)
            groups = []

        fncPrintMessage(f"Collecting role assignments across {len(groups)} resource group(s)", "info")
        for rg in groups:
            rg_name = rg.get("name")
            if not rg_name:
                continue
            results.append(fncFetchScope(session, f"{sub_scope}/resourceGroups/{rg_name}",
                                         SCOPE_RESOURCE_GROUP, role_names,
                                         subscription_id, subscription_name, rg_name))

    if include_classic_admins:
        results.append(fncFetchClassicAdmins(session, subscription_id, subscription_name))

    assignments: List[RoleAssignment] = []
    seen = set()
    for res in results:
        if not res.ok:
            warnings.append(res.error)
            continue
        for a in res.assignments:
            if a.key in seen:
                continue
            seen.add(a.key)
            assignments.append(a)

    fncPrintMessage(f"Collected {len(assignments)} privileged assignment(s)", "success")
    return assignments, warnings


class PrincipalResolver:
    """
    Lazily maps principal ids to display names through Graph.

    Successful lookups are memoised per principal id. Failed lookups
    are not, so each failing assignment falls back to its own name and
    a later successful lookup for the same principal still counts.
    """

    def __init__(self, graph):
        self.graph = graph
        self._cache: Dict[str, Tuple[str, Optional[str]]] = {}
        self.warnings: List[PrincipalLookupFailed] = []
        self.lookups = 0

    @property
    def resolved(self) -> int:
        return len(self._cache)

    def resolve(self, principal_id: str, principal_type: str,
                fallback: Optional[str] = None) -> Tuple[str, Optional[str]]:
        fallback_name = fallback or principal_id
        if not principal_id or principal_type not in PRINCIPAL_ENDPOINTS:
            return fallback_name, None
        if principal_id in self._cache:
            return self._cache[principal_id]

        self.lookups += 1
        try:
            obj = self.graph.get_principal(principal_type, principal_id)
        except _SOFT_ERRORS as ex:
            err = PrincipalLookupFailed(principal_id, principal_type, ex)
            fncPrintMessage(str(err), "warn")
            self.warnings.append(err)
            return fallback_name, None

        if not obj:
            return fallback_name, None
        name = obj.get("displayName") or fallback_name
        sign_in = obj.get("userPrincipalName") if principal_type == "User" else None
        self._cache[principal_id] = (name, sign_in)
        return name, sign_in


# ================================================================
# Function: fncResolvePrincipals
# Purpose : Fill principal_name / sign_in_name on every assignment
# Notes   : Returns new records; originals are left untouched
# ================================================================
def fncResolvePrincipals(graph, assignments: List[RoleAssignment]) -> Tuple[List[RoleAssignment], List[PrincipalLookupFailed]]:
    resolver = PrincipalResolver(graph)
    out = []
    for a in assignments:
        name, sign_in = resolver.resolve(a.principal_id, a.principal_type, a.principal_name)
        out.append(replace(a, principal_name=name, sign_in_name=sign_in or a.sign_in_name))
    fncPrintMessage(
        f"Resolved {resolver.resolved} principal(s) with {resolver.lookups} Graph lookup(s)", "debug")
    return out, resolver.warnings


# ================================================================
# Function: fncGroupCounts
# Purpose : (key, count) pairs for one attribute
# Notes   : Count descending, then key ascending for ties
# ================================================================
def fncGroupCounts(assignments: List[RoleAssignment], attr: str) -> List[Tuple[str, int]]:
    counts = Counter(getattr(a, attr) for a in assignments)
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


def fncBuildReport(assignments: List[RoleAssignment]) -> Dict[str, Any]:
    return {
        "total": len(assignments),
        "by_role": fncGroupCounts(assignments, "role_name"),
        "by_principal_type": fncGroupCounts(assignments, "principal_type"),
        "by_scope": fncGroupCounts(assignments, "scope"),
        "assignments": list(assignments),
    }


def fncBuildReportData(result: AuditResult, report: Dict[str, Any]) -> Dict[str, Any]:
    """Shape the report for core.reporting / core.exports."""
    by_type = dict(report["by_principal_type"])
    high_risk = sum(1 for a in result.assignments if a.role_name in HIGH_RISK_ROLES)
    return {
        "provider": "azure",
        "_title": f"Privileged Role Assignments — {result.subscription_name}",
        "_subtitle": f"Subscription {result.subscription_id}",
        "_kpis": [
            {"label": "Privileged assignments", "value": report["total"], "tone": "primary"},
            {"label": "Owner / Contributor", "value": high_risk, "tone": "danger" if high_risk else "success"},
            {"label": "Users", "value": by_type.get("User", 0), "tone": "info"},
            {"label": "Groups", "value": by_type.get("Group", 0), "tone": "info"},
            {"label": "Service principals", "value": by_type.get("ServicePrincipal", 0), "tone": "info"},
            {"label": "Warnings", "value": len(result.warnings),
             "tone": "warning" if result.warnings else "success"},
        ],
        "summary": {
            "Subscription": f"{result.subscription_name} ({result.subscription_id})",
            "Total privileged assignments": report["total"],
            "Distinct roles": len(report["by_role"]),
            "Distinct principals": len({a.principal_id or a.principal_name for a in result.assignments}),
            "Warnings (skipped or degraded)": len(result.warnings),
            "PIM status": "Unknown (not resolved)",
        },
        "roleBreakdown": [{"RoleName": k, "Count": v} for k, v in report["by_role"]],
        "principalTypeBreakdown": [{"PrincipalType": k, "Count": v} for k, v in report["by_principal_type"]],
        "scopeBreakdown": [{"Scope": k, "Count": v} for k, v in report["by_scope"]],
        "assignments": [a.to_row() for a in result.assignments],
        "warnings": [{"type": type(w).__name__, "detail": str(w)} for w in result.warnings],
        "_section_titles": {
            "roleBreakdown": "Assignments by Role",
            "principalTypeBreakdown": "Assignments by Principal Type",
            "scopeBreakdown": "Assignments by Scope",
            "assignments": "All Privileged Assignments",
            "warnings": "Warnings",
        },
        "_highlight": {"column": "RoleName", "values": list(HIGH_RISK_ROLES), "class": "flag-risk"},
    }


# ================================================================
# Function: fncWriteReports
# Purpose : Write CSV and/or HTML independently
# Notes   : A failed write is a ReportWriteFailed warning added to
#           result.warnings; the other format is still attempted.
#           CSV goes first so the HTML counts a CSV failure.
#           Sets result.written and result.report_data.
# ================================================================
def fncWriteReports(result: AuditResult, report: Dict[str, Any], output_format: str = "both",
                    csv_path: Optional[str] = None,
                    html_path: Optional[str] = None) -> Tuple[Dict[str, str], List[ReportWriteFailed]]:
    formats = OUTPUT_FORMATS[(output_format or "both").lower()]
    written: Dict[str, str] = {}
    failures: List[ReportWriteFailed] = []

    def _failed(path: str, fmt: str, ex: OSError) -> None:
        err = ReportWriteFailed(path, fmt, ex)
        fncPrintMessage(str(err), "warn")
        failures.append(err)
        result.warnings.append(err)

    if "csv" in formats:
        path = csv_path or fncDefaultReportPath(REPORT_PREFIX, result.subscription_id, "csv")
        try:
            fncExportAssignmentsCSV(path, result.assignments)
            written["csv"] = path
        except OSError as ex:
            _failed(path, "CSV", ex)

    result.report_data = fncBuildReportData(result, report)

    if "html" in formats:
        path = html_path or fncDefaultReportPath(REPORT_PREFIX, result.subscription_id, "html")
        try:
            fncWriteHTMLReport(path, "privileged_roles", result.report_data)
            written["html"] = path
        except OSError as ex:
            _failed(path, "HTML", ex)
            # keep the exported copy in step with the warnings
            result.report_data = fncBuildReportData(result, report)

    result.written = written
    return written, failures


def _print_summary(report: Dict[str, Any]) -> None:
    print(fncToTable([[k, v] for k, v in report["by_role"]], headers=["Role", "Count"]))
    print()
    print(fncToTable([[k, v] for k, v in report["by_principal_type"]], headers=["Principal Type", "Count"]))
    print()
    print(fncToTable([[k, v] for k, v in report["by_scope"]], headers=["Scope", "Count"]))
    print()


# ================================================================
# Function: fncAudit
# Purpose : Full audit flow: resolve, collect, resolve names,
#           aggregate, render
# Notes   : Only NoActiveSession / SubscriptionNotFound /
#           AccessDenied (and unexpected ARM errors while resolving
#           the subscription) abort the run
# ================================================================
def fncAudit(session, subscription_id: Optional[str] = None, include_resource_groups: bool = True,
             output_format: str = "both", output_csv: Optional[str] = None,
             output_html: Optional[str] = None, include_classic_admins: bool = False) -> AuditResult:
    sid, name = fncResolveSubscription(session, subscription_id)

    assignments, warnings = fncCollectAssignments(
        session, sid, name,
        include_resource_groups=include_resource_groups,
        include_classic_admins=include_classic_admins,
    )
    assignments, lookup_warnings = fncResolvePrincipals(session.graph, assignments)

    result = AuditResult(sid, name, assignments, warnings + lookup_warnings)
    report = fncBuildReport(assignments)
    result.summary = {k: v for k, v in report.items() if k != "assignments"}
    _print_summary(report)

    fncWriteReports(result, report, output_format, output_csv, output_html)

    if result.warnings:
        fncPrintMessage(f"{len(result.warnings)} warning(s): the report may be incomplete", "warn")
    return result


# ================================================================
# Function: run
# Purpose : Entry point for module execution
# Notes   : client is an AzureSession; returns the AuditResult
# ================================================================
def run(client, args):
    run_id = fncNewRunId("ranger")
    fncPrintMessage(f"Running privileged_roles (run={run_id})", "info")

    result = fncAudit(
        client,
        subscription_id=getattr(args, "subscription_id", None),
        include_resource_groups=getattr(args, "include_resource_groups", True),
        output_format=getattr(args, "output_format", "both"),
        output_csv=getattr(args, "output_csv", None),
        output_html=getattr(args, "output_html", None),
        include_classic_admins=getattr(args, "include_classic_admins", False),
    )

    fncPrintMessage(f"privileged_roles complete — {len(result.assignments)} privileged assignment(s)", "success")
    return result
