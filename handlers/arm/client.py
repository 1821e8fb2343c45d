# ================================================================
# File     : client.py
# Purpose  : Azure Resource Manager read-only client
# Notes    : Subscriptions, resource groups, role definitions,
#            role assignments and classic administrators
# ================================================================

from typing import Dict, Any, List

from handlers.rest import RestClient
from handlers.azure.credential import ARM_SCOPE

ARM_ROOT = "https://management.azure.com"

SUBSCRIPTION_API_VERSION = "2022-12-01"
RESOURCE_API_VERSION = "2021-04-01"
AUTHZ_API_VERSION = "2022-04-01"
CLASSIC_ADMIN_API_VERSION = "2015-07-01"


class ArmClient(RestClient):
    root = ARM_ROOT
    scope = ARM_SCOPE
    next_link_key = "nextLink"

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self.get(f"subscriptions/{subscription_id}",
                        params={"api-version": SUBSCRIPTION_API_VERSION})

    def list_resource_groups(self, subscription_id: str) -> List[Dict[str, Any]]:
        return self.get_all(f"subscriptions/{subscription_id}/resourcegroups",
                            params={"api-version": RESOURCE_API_VERSION})

    def list_role_definitions(self, scope: str) -> List[Dict[str, Any]]:
        return self.get_all(f"{scope.strip('/')}/providers/Microsoft.Authorization/roleDefinitions",
                            params={"api-version": AUTHZ_API_VERSION})

    def list_role_assignments(self, scope: str) -> List[Dict[str, Any]]:
        """Assignments at scope and inherited from above it (atScope)."""
        return self.get_all(f"{scope.strip('/')}/providers/Microsoft.Authorization/roleAssignments",
                            params={"api-version": AUTHZ_API_VERSION, "$filter": "atScope()"})

    def list_classic_administrators(self, subscription_id: str) -> List[Dict[str, Any]]:
        return self.get_all(f"subscriptions/{subscription_id}/providers/Microsoft.Authorization/classicAdministrators",
                            params={"api-version": CLASSIC_ADMIN_API_VERSION})
