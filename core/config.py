# ================================================================
# File     : config.py
# Purpose  : Configuration management for RoleRanger
# Notes    : Handles initial creation and loading of config
# ================================================================

import pathlib
from core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv

DEFAULT_HOME = pathlib.Path.home() / ".roleranger"


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Called when config file does not exist
# ================================================================
def fncDefaultConfig() -> dict:
    return {
        "version": "1.0",
        "roleranger_home": str(DEFAULT_HOME),
        "debug": False,
        "providers": {
            "azure": {
                "tenant_id": "",
                "client_id": "",
                "client_secret": "",
                "authority": "https://login.microsoftonline.com",
                "default_subscription_id": "",
                "azure_cli_profile": str(pathlib.Path.home() / ".azure" / "azureProfile.json"),
            },
            "ad": {
                "domain": "",
                "server": "",
                "username": "",
                "password": "",
                "use_ssl": True,
            },
        }
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or DEFAULT_HOME / "config.json")

    fncEnsureFolder(path.parent)

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        cfg = fncDefaultConfig()
        fncWriteJSON(str(path), cfg)
    return fncLoadConfig(str(path))


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# Notes   : Missing keys are filled from the defaults first
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    cfg = fncReadJSON(config_path)

    defaults = fncDefaultConfig()
    for key, value in defaults.items():
        cfg.setdefault(key, value)
    for provider, values in defaults["providers"].items():
        block = cfg["providers"].setdefault(provider, {})
        for key, value in values.items():
            block.setdefault(key, value)

    azure = cfg["providers"]["azure"]
    ad = cfg["providers"]["ad"]

    # Environment overrides (useful in CI/CD or container)
    env_overrides = {
        "azure": {
            "tenant_id": fncLoadEnv("ROLERANGER_TENANT_ID", azure.get("tenant_id")),
            "client_id": fncLoadEnv("ROLERANGER_CLIENT_ID", azure.get("client_id")),
            "client_secret": fncLoadEnv("ROLERANGER_CLIENT_SECRET", azure.get("client_secret")),
            "default_subscription_id": fncLoadEnv("AZURE_SUBSCRIPTION_ID", azure.get("default_subscription_id")),
        },
        "ad": {
            "domain": fncLoadEnv("ROLERANGER_AD_DOMAIN", ad.get("domain")),
            "server": fncLoadEnv("ROLERANGER_AD_SERVER", ad.get("server")),
            "username": fncLoadEnv("ROLERANGER_AD_USERNAME", ad.get("username")),
            "password": fncLoadEnv("ROLERANGER_AD_PASSWORD", ad.get("password")),
        },
    }

    for provider, values in env_overrides.items():
        cfg["providers"][provider].update(values)

    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return cfg


# ================================================================
# Function: fncGetProviderConfig
# Purpose : Return config block for a specific provider
# Notes   : Provider options: azure, ad
# ================================================================
def fncGetProviderConfig(cfg: dict, provider: str) -> dict:
    providers = cfg.get("providers", {})
    if provider not in providers:
        fncPrintMessage(f"Provider not found in config: {provider}", "warn")
        return {}
    return providers[provider]


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# Notes   : Currently handles --debug
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", False):
        cfg["debug"] = True
    return cfg


# ================================================================
# Function: fncIsDebug
# Purpose : Return whether debug mode is enabled in config
# Notes   : Convenience helper for modules
# ================================================================
def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))
