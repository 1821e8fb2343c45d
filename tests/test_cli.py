import json

import pytest

import RoleRanger
from core.errors import ApiError

from conftest import SUB_ID, SUB_SCOPE, FakeArm, FakeGraph, make_assignment


@pytest.fixture
def cfg_path(tmp_path, monkeypatch):
    for name in ("ROLERANGER_TENANT_ID", "ROLERANGER_CLIENT_ID", "ROLERANGER_CLIENT_SECRET", "AZURE_SUBSCRIPTION_ID"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return str(tmp_path / "config.json")


def test_parser_requires_scan_or_list():
    with pytest.raises(SystemExit):
        RoleRanger.fncParseArguments(["azure"])


def test_parser_accepts_module_options():
    args = RoleRanger.fncParseArguments(["azure", "--scan", "privileged_roles", "--subscription-id", SUB_ID,
                                         "--output-format", "CSV", "--export", "json"])
    assert args.scan == "privileged_roles"
    assert args.subscription_id == SUB_ID
    assert args.output_format == "csv"
    assert args.export == ["json"]


def test_list_modules_exits_zero(cfg_path, capsys):
    assert RoleRanger.main(["azure", "--list-modules", "--config", cfg_path]) == 0
    assert "azure/privileged_roles" in capsys.readouterr().out


def test_fatal_error_exits_one(cfg_path, monkeypatch, make_session):
    session = make_session(subscription_id=None)
    monkeypatch.setattr(RoleRanger, "fncInitClient", lambda provider, cfg, args=None: session)

    assert RoleRanger.main(["azure", "--scan", "privileged_roles", "--config", cfg_path]) == 1


def test_subscription_not_found_exits_one(cfg_path, monkeypatch, make_session):
    arm = FakeArm(subscription_error=ApiError(404, "subscriptions/x", "SubscriptionNotFound"))
    session = make_session(arm=arm)
    monkeypatch.setattr(RoleRanger, "fncInitClient", lambda provider, cfg, args=None: session)

    assert RoleRanger.main(["azure", "--scan", "privileged_roles", "--config", cfg_path]) == 1


def test_unknown_module_exits_one(cfg_path, monkeypatch, make_session):
    monkeypatch.setattr(RoleRanger, "fncInitClient", lambda provider, cfg, args=None: make_session())
    assert RoleRanger.main(["azure", "--scan", "nothing_here", "--config", cfg_path]) == 1


def test_successful_audit_writes_reports_and_exports(cfg_path, tmp_path, monkeypatch, make_session):
    arm = FakeArm(assignments={SUB_SCOPE: [make_assignment("a1", SUB_SCOPE, "Owner", principal_id="u1")]})
    graph = FakeGraph(principals={"u1": {"displayName": "Alice", "userPrincipalName": "alice@contoso.com"}})
    session = make_session(arm=arm, graph=graph)
    monkeypatch.setattr(RoleRanger, "fncInitClient", lambda provider, cfg, args=None: session)
    exported = {}
    monkeypatch.setattr(RoleRanger, "fncExportSingleModule",
                        lambda name, data, formats: exported.update(name=name, data=data, formats=formats))

    code = RoleRanger.main([
        "azure", "--scan", "privileged_roles", "--config", cfg_path,
        "--output-csv", str(tmp_path / "out.csv"), "--output-html", str(tmp_path / "out.html"),
        "--export", "json",
    ])

    assert code == 0
    assert (tmp_path / "out.csv").is_file()
    assert "Alice" in (tmp_path / "out.html").read_text(encoding="utf-8")
    assert exported["formats"] == {"json"}
    assert exported["data"]["summary"]["Total privileged assignments"] == 1
    json.dumps(exported["data"]["assignments"], default=str)
