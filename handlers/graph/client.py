# ================================================================
# File     : client.py
# Purpose  : Microsoft Graph API read-only client for Entra (Azure AD)
# Notes    : Used for principal display-name lookups only
# ================================================================

from typing import Dict, Any, Optional

from handlers.rest import RestClient
from handlers.azure.credential import GRAPH_SCOPE

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"

# principal type -> (collection, $select)
PRINCIPAL_ENDPOINTS = {
    "User": ("users", "id,displayName,userPrincipalName"),
    "Group": ("groups", "id,displayName"),
    "ServicePrincipal": ("servicePrincipals", "id,displayName,appId"),
}


class GraphClient(RestClient):
    root = GRAPH_ROOT
    scope = GRAPH_SCOPE
    next_link_key = "@odata.nextLink"

    def get_principal(self, principal_type: str, principal_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a user, group or service principal by object id.
        Returns None for a type Graph has no direct collection for;
        raises ApiError when the lookup itself fails.
        """
        endpoint = PRINCIPAL_ENDPOINTS.get(principal_type)
        if not endpoint:
            return None
        collection, select = endpoint
        return self.get(f"{collection}/{principal_id}", params={"$select": select})
