# ================================================================
# File     : errors.py
# Purpose  : Exception types raised and collected by RoleRanger
# Notes    : Fatal errors stop a module; non-fatal ones end up in
#            the module's warnings list and on the console.
# ================================================================

from typing import Optional


class RoleRangerError(Exception):
    """Base class for every error RoleRanger raises on purpose."""

    fatal = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ApiError(RoleRangerError):
    """HTTP error returned by Microsoft Graph or Azure Resource Manager."""

    def __init__(self, status: int, url: str, message: str = ""):
        super().__init__(f"API request failed with status {status}: {url} {message}".rstrip())
        self.status = status
        self.url = url


# ---------- fatal ----------

class NoActiveSession(RoleRangerError):
    def __init__(self, message: str = "No subscription supplied and no active session subscription found"):
        super().__init__(message)


class SubscriptionNotFound(RoleRangerError):
    def __init__(self, subscription_id: str):
        super().__init__(f"Subscription not found: {subscription_id}")
        self.subscription_id = subscription_id


class AccessDenied(RoleRangerError):
    def __init__(self, subscription_id: str, detail: str = ""):
        msg = f"Access denied to subscription {subscription_id}"
        super().__init__(f"{msg}: {detail}" if detail else msg)
        self.subscription_id = subscription_id


class DirectoryBindFailed(RoleRangerError):
    def __init__(self, server: str, detail: str = ""):
        super().__init__(f"LDAP bind to {server} failed: {detail}".rstrip(": "))
        self.server = server


class DirectoryWriteFailed(RoleRangerError):
    def __init__(self, dn: str, detail: str = ""):
        super().__init__(f"LDAP add of {dn} failed: {detail}".rstrip(": "))
        self.dn = dn


class GmsaCreateFailed(RoleRangerError):
    """A gMSA prerequisite is missing; nothing was written."""

    def __init__(self, gmsa_name: str, detail: str):
        super().__init__(f"Cannot create gMSA {gmsa_name}: {detail}")
        self.gmsa_name = gmsa_name


# ---------- non-fatal ----------

class ScopeFetchFailed(RoleRangerError):
    fatal = False

    def __init__(self, scope: str, cause: Optional[Exception] = None):
        super().__init__(f"Could not fetch role assignments for {scope}: {cause}")
        self.scope = scope
        self.cause = cause


class PrincipalLookupFailed(RoleRangerError):
    fatal = False

    def __init__(self, principal_id: str, principal_type: str, cause: Optional[Exception] = None):
        super().__init__(f"Could not resolve {principal_type} {principal_id}: {cause}")
        self.principal_id = principal_id
        self.principal_type = principal_type
        self.cause = cause


class ReportWriteFailed(RoleRangerError):
    fatal = False

    def __init__(self, path: str, fmt: str, cause: Optional[Exception] = None):
        super().__init__(f"Could not write {fmt} report to {path}: {cause}")
        self.path = path
        self.fmt = fmt
        self.cause = cause
