# ================================================================
# File     : credential.py
# Purpose  : App-only token provider for Microsoft Graph and ARM
# Notes    : MSAL client-credentials flow; one token per resource
#            - Proactive refresh if token expires in <5 minutes
# ================================================================

import os
import time
import getpass
from typing import Dict, Any, Optional

import msal

from core.errors import RoleRangerError
from core.utils import fncPrintMessage

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
ARM_SCOPE = "https://management.azure.com/.default"


class AzureCredential:
    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        authority_host: str = "https://login.microsoftonline.com",
    ):
        # Try environment variables first
        tenant_id = tenant_id or os.getenv("ROLERANGER_TENANT_ID")
        client_id = client_id or os.getenv("ROLERANGER_CLIENT_ID")
        client_secret = client_secret or os.getenv("ROLERANGER_CLIENT_SECRET")

        # Prompt interactively if any credential is missing
        if not tenant_id:
            tenant_id = input("Enter Tenant ID: ").strip()
        if not client_id:
            client_id = input("Enter Application (Client) ID: ").strip()
        if not client_secret:
            fncPrintMessage(
                "No Client Secret found *Hidden* "
                "Credentials are kept in memory only for this run.",
                "warn",
            )
            client_secret = getpass.getpass("Enter Client Secret (input hidden): ").strip()

        self.tenant_id = tenant_id
        self.client_id = client_id
        self.authority = f"{authority_host.rstrip('/')}/{tenant_id}"

        self.app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=self.authority,
        )

        # scope -> (token, expires_on epoch seconds)
        self._tokens: Dict[str, tuple] = {}

    # ---------- Token helpers ----------

    def _acquire_token(self, scope: str) -> Dict[str, Any]:
        """Acquire a token using MSAL (silent -> client creds). Returns MSAL result dict."""
        fncPrintMessage(f"Requesting access token for {scope}...", "debug")
        result = self.app.acquire_token_silent([scope], account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=[scope])
        if "access_token" not in result:
            detail = result.get("error_description", "Unknown error")
            fncPrintMessage(f"MSAL Authentication failed: {detail}", "error")
            raise RoleRangerError(f"Failed to acquire access token for {scope}: {detail}")
        return result

    @staticmethod
    def _expiry(msal_result: Dict[str, Any]) -> int:
        try:
            expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            expires_on = 0
        if not expires_on:
            expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))
        return expires_on

    def get_token(self, scope: str) -> str:
        """Return a bearer token for scope, refreshing if it expires in <5 minutes."""
        cached = self._tokens.get(scope)
        now = int(time.time())
        if cached and now < cached[1] - 300:
            return cached[0]
        if cached:
            fncPrintMessage("Refreshing access token (nearing expiry)...", "debug")
        result = self._acquire_token(scope)
        self._tokens[scope] = (result["access_token"], self._expiry(result))
        return result["access_token"]
