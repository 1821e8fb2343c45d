import argparse
import csv
import json
import types

import pytest

from core import config, exports, module_loader, reporting, utils
from core.errors import ApiError, NoActiveSession, RoleRangerError, ScopeFetchFailed
from handlers.azure import credential as credential_mod
from handlers.azure.credential import ARM_SCOPE, GRAPH_SCOPE, AzureCredential
from handlers.azure.session import fncReadCliDefaultSubscription
from handlers.arm.client import ArmClient
from handlers.graph.client import GraphClient

ENV_VARS = [
    "ROLERANGER_TENANT_ID", "ROLERANGER_CLIENT_ID", "ROLERANGER_CLIENT_SECRET", "AZURE_SUBSCRIPTION_ID",
    "ROLERANGER_AD_DOMAIN", "ROLERANGER_AD_SERVER", "ROLERANGER_AD_USERNAME", "ROLERANGER_AD_PASSWORD",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ---------- config ----------

def test_init_config_creates_default_file(tmp_path, clean_env):
    path = tmp_path / "home" / "config.json"
    cfg = config.fncInitConfig(str(path))

    assert path.is_file()
    assert cfg["providers"]["azure"]["authority"] == "https://login.microsoftonline.com"
    assert cfg["providers"]["ad"]["use_ssl"] is True
    assert cfg["debug"] is False


def test_load_config_fills_missing_keys_and_applies_env(tmp_path, clean_env):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"providers": {"azure": {"tenant_id": "from-file"}}}), encoding="utf-8")
    clean_env.setenv("AZURE_SUBSCRIPTION_ID", "'sub-from-env'")
    clean_env.setenv("ROLERANGER_AD_DOMAIN", "corp.example.com")

    cfg = config.fncLoadConfig(str(path))

    assert cfg["providers"]["azure"]["tenant_id"] == "from-file"
    assert cfg["providers"]["azure"]["default_subscription_id"] == "sub-from-env"
    assert cfg["providers"]["ad"]["domain"] == "corp.example.com"
    assert "client_secret" in cfg["providers"]["azure"]


def test_init_config_leaves_existing_file_untouched(tmp_path, clean_env):
    path = tmp_path / "config.json"
    original = json.dumps({"debug": True})
    path.write_text(original, encoding="utf-8")

    cfg = config.fncInitConfig(str(path))

    assert cfg["debug"] is True and "providers" in cfg
    assert path.read_text(encoding="utf-8") == original


def test_cli_overrides_and_provider_lookup():
    cfg = config.fncDefaultConfig()
    cfg = config.fncApplyCliOverrides(cfg, argparse.Namespace(debug=True))
    assert config.fncIsDebug(cfg)
    assert config.fncGetProviderConfig(cfg, "aws") == {}
    assert "tenant_id" in config.fncGetProviderConfig(cfg, "azure")


# ---------- utils / exports ----------

def test_export_list_flattens_commas_and_spaces():
    assert exports.fncExportList(None) == set()
    assert exports.fncExportList(["HTML,csv", "json"]) == {"html", "csv", "json"}
    assert exports.fncExportList([["csv json"]]) == {"csv", "json"}


def test_to_table_truncates():
    rows = [{"name": f"r{i}", "count": i} for i in range(5)]
    out = utils.fncToTable(rows, headers=["name", "count"], max_rows=2)
    assert "r1" in out and "r2" not in out
    assert "3 more row(s) not shown" in out
    assert utils.fncToTable([]) == "(no data)"


def test_safe_get():
    data = {"a": {"b": {"c": 1}}}
    assert utils.fncSafeGet(data, "a.b.c") == 1
    assert utils.fncSafeGet(data, "a.x.c", "none") == "none"


def test_export_csv_writes_header_for_empty_rows(tmp_path):
    path = tmp_path / "empty.csv"
    utils.fncExportCSV(str(path), [], headers=["A", "B"])
    assert path.read_text(encoding="utf-8").strip() == "A,B"


def test_export_single_module_writes_each_format(tmp_path):
    data = {
        "summary": {"Total": 1},
        "_title": "hint only",
        "rows": [{"name": "Owner", "count": 1}],
    }
    out_dir = exports.fncExportSingleModule("privileged_roles", data, {"json", "csv", "html"}, root=tmp_path)

    saved = json.loads((out_dir / "privileged_roles.json").read_text(encoding="utf-8"))
    assert "_title" not in saved and saved["rows"] == [{"name": "Owner", "count": 1}]
    with open(out_dir / "privileged_roles_rows.csv", newline="", encoding="utf-8") as f:
        assert list(csv.DictReader(f)) == [{"name": "Owner", "count": "1"}]
    assert "hint only" in (out_dir / "privileged_roles.html").read_text(encoding="utf-8")


def test_html_report_uses_fixed_stylesheet():
    html = reporting.fncRenderHTMLReport("privileged_roles", {"summary": {"Total": 1}, "_inline_css": "body{color:red}"})
    assert html.count("<style>") == 1
    assert "color:red" not in html
    assert "<script" not in html


# ---------- module loader ----------

def test_discover_modules():
    assert "privileged_roles" in module_loader.fncDiscoverModules("azure")
    assert {"gmsa_validate", "gmsa_create"} <= set(module_loader.fncDiscoverModules("ad"))
    assert module_loader.fncDiscoverModules("nope") == []


def test_register_module_args():
    parser = argparse.ArgumentParser()
    registered = module_loader.fncRegisterModuleArgs(parser, ["azure", "ad"])
    args = parser.parse_args(["--subscription-id", "abc", "--no-resource-groups",
                              "--sensor-host", "DC01", "--sensor-host", "DC02",
                              "--gmsa-group", "MDI Sensors"])

    assert "privileged_roles" in registered["azure"]
    assert args.subscription_id == "abc"
    assert args.include_resource_groups is False
    assert args.sensor_host == ["DC01", "DC02"]
    assert args.gmsa_group == ["MDI Sensors"]
    assert args.gmsa_container is None
    assert args.output_format == "both"


def test_run_missing_module_returns_none():
    assert module_loader.fncRunModule("azure", "does_not_exist", None, argparse.Namespace()) is None


def _raising_module(monkeypatch, error):
    def run(client, args):
        raise error
    monkeypatch.setattr(module_loader, "fncLoadModule", lambda provider, name: types.SimpleNamespace(run=run))


def test_run_module_propagates_fatal_errors(monkeypatch):
    _raising_module(monkeypatch, NoActiveSession())
    with pytest.raises(NoActiveSession):
        module_loader.fncRunModule("azure", "privileged_roles", None, argparse.Namespace())


def test_run_module_reports_non_fatal_errors(monkeypatch):
    _raising_module(monkeypatch, ScopeFetchFailed("/subscriptions/s1", ValueError("bad page")))
    result = module_loader.fncRunModule("azure", "privileged_roles", None, argparse.Namespace())
    assert "bad page" in result["error"]


# ---------- REST clients ----------

class FakeToken:
    def __init__(self):
        self.scopes = []

    def get_token(self, scope):
        self.scopes.append(scope)
        return "tok"


class FakeResponse:
    def __init__(self, status, body, url="https://example.invalid"):
        self.status_code = status
        self._body = body
        self.url = url
        self.text = json.dumps(body)

    def json(self):
        return self._body


class FakeHttp:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.requests.append((url, params, headers))
        return self.responses.pop(0)


def test_arm_get_all_follows_next_link():
    http = FakeHttp([
        FakeResponse(200, {"value": [{"id": "a"}], "nextLink": "https://management.azure.com/page2"}),
        FakeResponse(200, {"value": [{"id": "b"}]}),
    ])
    cred = FakeToken()
    arm = ArmClient(cred, session=http)

    items = arm.list_role_assignments("/subscriptions/s1")

    assert [i["id"] for i in items] == ["a", "b"]
    first_url, first_params, headers = http.requests[0]
    assert first_url == "https://management.azure.com/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments"
    assert first_params["$filter"] == "atScope()"
    assert headers["Authorization"] == "Bearer tok"
    assert http.requests[1][0] == "https://management.azure.com/page2"
    assert http.requests[1][1] is None
    assert cred.scopes == [ARM_SCOPE, ARM_SCOPE]


def test_graph_uses_odata_next_link():
    http = FakeHttp([
        FakeResponse(200, {"value": [1], "@odata.nextLink": "https://graph.microsoft.com/v1.0/next"}),
        FakeResponse(200, {"value": [2]}),
    ])
    assert GraphClient(FakeToken(), session=http).get_all("users") == [1, 2]


def test_error_status_raises_api_error():
    http = FakeHttp([FakeResponse(403, {"error": {"code": "AuthorizationFailed"}})])
    arm = ArmClient(FakeToken(), session=http)

    with pytest.raises(ApiError) as exc:
        arm.get_subscription("s1")
    assert exc.value.status == 403


def test_graph_principal_lookup():
    http = FakeHttp([FakeResponse(200, {"id": "u1", "displayName": "Ada"})])
    graph = GraphClient(FakeToken(), session=http)

    assert graph.get_principal("User", "u1")["displayName"] == "Ada"
    assert http.requests[0][0] == "https://graph.microsoft.com/v1.0/users/u1"
    assert graph.get_principal("ForeignGroup", "x") is None


# ---------- credential ----------

class FakeMsalApp:
    calls = []
    fail = False

    def __init__(self, client_id, client_credential, authority):
        self.authority = authority

    def acquire_token_silent(self, scopes, account=None):
        return None

    def acquire_token_for_client(self, scopes):
        FakeMsalApp.calls.append(scopes[0])
        if FakeMsalApp.fail:
            return {"error": "invalid_client", "error_description": "bad secret"}
        return {"access_token": f"tok-{len(FakeMsalApp.calls)}", "expires_in": 3600}


@pytest.fixture
def fake_msal(monkeypatch):
    FakeMsalApp.calls = []
    FakeMsalApp.fail = False
    monkeypatch.setattr(credential_mod.msal, "ConfidentialClientApplication", FakeMsalApp)
    return FakeMsalApp


def test_credential_caches_tokens_per_scope(fake_msal):
    cred = AzureCredential("tenant", "client", "secret")

    assert cred.authority == "https://login.microsoftonline.com/tenant"
    assert cred.get_token(ARM_SCOPE) == "tok-1"
    assert cred.get_token(ARM_SCOPE) == "tok-1"
    assert cred.get_token(GRAPH_SCOPE) == "tok-2"
    assert fake_msal.calls == [ARM_SCOPE, GRAPH_SCOPE]


def test_credential_refreshes_near_expiry(fake_msal):
    cred = AzureCredential("tenant", "client", "secret")
    cred.get_token(ARM_SCOPE)
    token, expires = cred._tokens[ARM_SCOPE]
    cred._tokens[ARM_SCOPE] = (token, expires - 3500)

    assert cred.get_token(ARM_SCOPE) == "tok-2"


def test_credential_failure_is_fatal(fake_msal):
    fake_msal.fail = True
    cred = AzureCredential("tenant", "client", "secret")
    with pytest.raises(RoleRangerError, match="bad secret"):
        cred.get_token(ARM_SCOPE)


# ---------- session ----------

def test_cli_default_subscription(tmp_path):
    profile = tmp_path / "azureProfile.json"
    profile.write_text(json.dumps({"subscriptions": [
        {"id": "sub-a", "isDefault": False},
        {"id": "sub-b", "isDefault": True},
    ]}), encoding="utf-8-sig")

    assert fncReadCliDefaultSubscription(str(profile)) == "sub-b"
    assert fncReadCliDefaultSubscription(str(tmp_path / "missing.json")) is None
    assert fncReadCliDefaultSubscription(None) is None
