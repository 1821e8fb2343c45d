# ================================================================
# File     : session.py
# Purpose  : Explicit Azure session passed into every module call
# Notes    : Holds the Graph + ARM clients and the subscription
#            context. Never stored globally.
# ================================================================

import pathlib
from typing import Optional

from core.utils import fncPrintMessage, fncReadJSON


# ================================================================
# Function: fncReadCliDefaultSubscription
# Purpose : Find the default subscription of an Azure CLI login
# Notes   : Reads azureProfile.json; returns None if absent
# ================================================================
def fncReadCliDefaultSubscription(profile_path: Optional[str]) -> Optional[str]:
    if not profile_path or not pathlib.Path(profile_path).expanduser().is_file():
        return None
    profile = fncReadJSON(str(pathlib.Path(profile_path).expanduser()))
    for sub in profile.get("subscriptions", []) or []:
        if sub.get("isDefault") and sub.get("id"):
            fncPrintMessage(f"Using Azure CLI default subscription {sub['id']}", "debug")
            return sub["id"]
    return None


class AzureSession:
    def __init__(self, graph, arm, subscription_id: Optional[str] = None):
        self.graph = graph
        self.arm = arm
        self.subscription_id = subscription_id or None
        self.subscription_name: Optional[str] = None

    @property
    def current_subscription_id(self) -> Optional[str]:
        return self.subscription_id

    def set_subscription(self, subscription_id: str, name: Optional[str] = None) -> None:
        self.subscription_id = subscription_id
        self.subscription_name = name
        fncPrintMessage(f"Session context set to subscription {name or subscription_id}", "debug")
