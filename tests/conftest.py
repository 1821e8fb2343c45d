import pytest

from core import utils
from core.errors import ApiError
from handlers.azure.session import AzureSession

SUB_ID = "11111111-2222-3333-4444-555555555555"
SUB_SCOPE = f"/subscriptions/{SUB_ID}"

ROLE_IDS = {
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "User Access Administrator": "18d7d88d-d35e-4fb5-a5c3-7773c20a72d9",
    "Key Vault Administrator": "00482a5a-887f-4fb3-b363-3b7fe8e74483",
    # same name as a privileged role but different case: must be dropped
    "owner": "0000aaaa-0000-0000-0000-00000000beef",
}


def rg_scope(name):
    return f"{SUB_SCOPE}/resourceGroups/{name}"


def make_assignment(aid, scope, role, principal_type="User", principal_id=None):
    return {
        "id": f"{scope}/providers/Microsoft.Authorization/roleAssignments/{aid}",
        "name": aid,
        "properties": {
            "scope": scope,
            "roleDefinitionId": f"{SUB_SCOPE}/providers/Microsoft.Authorization/roleDefinitions/{ROLE_IDS[role]}",
            "principalId": principal_id or f"pid-{aid}",
            "principalType": principal_type,
        },
    }


class FakeArm:
    def __init__(self, assignments=None, resource_groups=(), fail_scopes=(),
                 subscription=None, subscription_error=None, rg_error=None,
                 classic_admins=None):
        self.assignments = assignments or {}
        self.resource_groups = list(resource_groups)
        self.fail_scopes = set(fail_scopes)
        self.subscription = subscription or {"subscriptionId": SUB_ID, "displayName": "Contoso Prod"}
        self.subscription_error = subscription_error
        self.rg_error = rg_error
        self.classic_admins = classic_admins or []
        self.calls = []

    def get_subscription(self, subscription_id):
        self.calls.append(("subscription", subscription_id))
        if self.subscription_error:
            raise self.subscription_error
        return self.subscription

    def list_role_definitions(self, scope):
        return [
            {"id": f"{SUB_SCOPE}/providers/Microsoft.Authorization/roleDefinitions/{guid}",
             "name": guid, "properties": {"roleName": name}}
            for name, guid in ROLE_IDS.items()
        ]

    def list_resource_groups(self, subscription_id):
        if self.rg_error:
            raise self.rg_error
        return [{"name": n, "id": rg_scope(n)} for n in self.resource_groups]

    def list_role_assignments(self, scope):
        self.calls.append(("assignments", scope))
        if scope in self.fail_scopes:
            raise ApiError(403, scope, "AuthorizationFailed")
        return list(self.assignments.get(scope, []))

    def list_classic_administrators(self, subscription_id):
        return list(self.classic_admins)


class FakeGraph:
    def __init__(self, principals=None, failing=(), flaky=None):
        self.principals = principals or {}
        self.failing = set(failing)
        # principal id -> list of outcomes (True = succeed, False = fail), consumed in order
        self.flaky = {k: list(v) for k, v in (flaky or {}).items()}
        self.calls = []

    def get_principal(self, principal_type, principal_id):
        self.calls.append((principal_type, principal_id))
        if principal_id in self.flaky and self.flaky[principal_id]:
            if not self.flaky[principal_id].pop(0):
                raise ApiError(503, f"users/{principal_id}", "transient")
        if principal_id in self.failing or principal_id not in self.principals:
            raise ApiError(404, f"users/{principal_id}", "Request_ResourceNotFound")
        return self.principals[principal_id]


@pytest.fixture(autouse=True)
def _reset_debug():
    utils.fncSetDebug(False)
    yield
    utils.fncSetDebug(False)


@pytest.fixture
def make_session():
    def _make(arm=None, graph=None, subscription_id=SUB_ID):
        return AzureSession(graph or FakeGraph(), arm or FakeArm(), subscription_id)
    return _make
