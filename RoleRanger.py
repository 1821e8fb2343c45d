#!/usr/bin/env python3
# ================================================================
# Tool     : RoleRanger
# Purpose  : Identity infrastructure review scripts: privileged
#            Azure role audit and gMSA DSA validation
# Notes    : "Who holds the keys to the kingdom?"
# ================================================================

import sys, argparse

from core.config import fncInitConfig, fncApplyCliOverrides, fncIsDebug, fncGetProviderConfig
from core.errors import RoleRangerError
from core.utils import fncPrintMessage, fncSetDebug, fncDisplayBanner
from core.module_loader import fncRunModule, fncDiscoverModules, fncRegisterModuleArgs
from core.exports import fncExportList, fncExportSingleModule

PROVIDERS = ["azure", "ad"]


# ================================================================
# Function: fncBuildParser
# Purpose  : Define command-line arguments for RoleRanger
# Notes    : Module-specific options are added by each module
# ================================================================
def fncBuildParser():
    parser = argparse.ArgumentParser(
        prog="RoleRanger",
        description="RoleRanger — privileged role audit and gMSA DSA validation"
    )

    parser.add_argument(
        "provider",
        choices=PROVIDERS,
        help="Specify which identity platform to target"
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--scan",
        help="Name of module to execute (e.g., privileged_roles, gmsa_validate, gmsa_create)"
    )
    group.add_argument(
        "--list-modules",
        action="store_true",
        help="List the modules available for the selected provider"
    )

    parser.add_argument(
        "--export",
        nargs="*",
        metavar="FMT[,FMT...]",
        help="Extra export of the module result: html, csv, json",
        default=None
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.json (default: ~/.roleranger/config.json)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug output"
    )

    fncRegisterModuleArgs(parser, PROVIDERS)
    return parser


def fncParseArguments(argv=None):
    return fncBuildParser().parse_args(argv)


# ================================================================
# Function: fncInitClient
# Purpose  : Initialise provider-specific API clients
# Notes    : azure → AzureSession (Graph + ARM), ad → AdClient.
#            Missing credentials are prompted for interactively.
# ================================================================
def fncInitClient(provider: str, cfg: dict, args=None):
    if provider == "azure":
        from handlers.azure.credential import AzureCredential
        from handlers.azure.session import AzureSession, fncReadCliDefaultSubscription
        from handlers.graph.client import GraphClient
        from handlers.arm.client import ArmClient

        azure_cfg = fncGetProviderConfig(cfg, "azure")
        if not all([azure_cfg.get("tenant_id"), azure_cfg.get("client_id"), azure_cfg.get("client_secret")]):
            fncPrintMessage("Missing Azure app credentials — dropping into interactive mode…", "warn")

        credential = AzureCredential(
            tenant_id=azure_cfg.get("tenant_id"),
            client_id=azure_cfg.get("client_id"),
            client_secret=azure_cfg.get("client_secret"),
            authority_host=azure_cfg.get("authority") or "https://login.microsoftonline.com",
        )
        active = azure_cfg.get("default_subscription_id") or \
            fncReadCliDefaultSubscription(azure_cfg.get("azure_cli_profile"))
        return AzureSession(GraphClient(credential), ArmClient(credential), active)

    elif provider == "ad":
        from handlers.ldap.client import AdClient

        ad_cfg = fncGetProviderConfig(cfg, "ad")
        domain = getattr(args, "domain", None) or ad_cfg.get("domain") or input("Enter AD domain: ").strip()
        if not domain:
            fncPrintMessage("An AD domain is required.", "error")
            return None
        return AdClient(
            domain=domain,
            server=getattr(args, "dc", None) or ad_cfg.get("server") or None,
            username=ad_cfg.get("username") or None,
            password=ad_cfg.get("password") or None,
            use_ssl=bool(ad_cfg.get("use_ssl", True)),
        )

    fncPrintMessage(f"Unsupported provider: {provider}", "error")
    return None


# ================================================================
# Function: main
# Purpose  : Main entry point for RoleRanger execution
# Notes    : Returns the process exit code (1 on a fatal error)
# ================================================================
def main(argv=None) -> int:
    args = fncParseArguments(argv)

    cfg = fncInitConfig(args.config)
    cfg = fncApplyCliOverrides(cfg, args)
    fncSetDebug(fncIsDebug(cfg))

    fncDisplayBanner("v1.0")
    if fncIsDebug(cfg):
        fncPrintMessage("Debug output enabled.", "debug")

    if args.list_modules:
        for name in fncDiscoverModules(args.provider):
            fncPrintMessage(f"{args.provider}/{name}", "info")
        return 0

    client = fncInitClient(args.provider, cfg, args)
    if not client:
        fncPrintMessage("Unable to continue without a valid provider client.", "error")
        return 1

    fncPrintMessage(f"Running scan module: {args.scan}", "info")
    try:
        result = fncRunModule(args.provider, args.scan, client, args)
    except RoleRangerError as ex:
        fncPrintMessage(f"Fatal: {ex}", "error")
        return 1

    if result is None or (isinstance(result, dict) and "error" in result):
        return 1

    export_formats = fncExportList(args.export)
    data = getattr(result, "report_data", result)
    if export_formats and isinstance(data, dict):
        fncExportSingleModule(args.scan, data, export_formats)

    fncPrintMessage("Scan complete. Trail followed to the end.", "success")
    return 0


if __name__ == "__main__":
    sys.exit(main())
