# ================================================================
# File     : module_loader.py
# Purpose  : Dynamically load and execute scan modules
# Notes    : Works across providers (azure, ad). Provides discovery
#            and per-module CLI argument registration.
# ================================================================

import importlib
import pathlib
import traceback
from typing import Any, Dict, List

from core.errors import RoleRangerError
from core.utils import fncPrintMessage

MODULES_ROOT = pathlib.Path(__file__).resolve().parent.parent / "modules"


# ================================================================
# Function: fncLoadModule
# Purpose : Dynamically import a module based on provider and name
# Notes   : Returns the imported module or None if not found
# ================================================================
def fncLoadModule(provider: str, module_name: str):
    mod_path = f"modules.{provider}.{module_name}"
    try:
        mod = importlib.import_module(mod_path)
        fncPrintMessage(f"Loaded module: {mod_path}", "debug")
        return mod
    except ModuleNotFoundError as ex:
        if ex.name and not mod_path.startswith(ex.name):
            # The module exists but one of its own imports is missing
            fncPrintMessage(f"Failed to import {provider}/{module_name}: {ex}", "error")
        else:
            fncPrintMessage(f"Module not found: {provider}/{module_name}", "error")
        return None


# ================================================================
# Function: fncRunModule
# Purpose : Execute a loaded module's main 'run' function
# Notes   : Expects each module to define 'run(client, args)'.
#           A fatal RoleRangerError propagates to main; a non-fatal
#           one escaping a module is reported like any other failure.
# ================================================================
def fncRunModule(provider: str, module_name: str, client, args) -> Any:
    mod = fncLoadModule(provider, module_name)
    if not mod:
        return None
    if not hasattr(mod, "run"):
        fncPrintMessage(f"Module {module_name} missing 'run' function.", "warn")
        return None

    fncPrintMessage(f"Starting module: {provider}/{module_name}", "info")
    try:
        result = mod.run(client, args)
    except RoleRangerError as ex:
        if ex.fatal:
            raise
        fncPrintMessage(f"Module {module_name} stopped early: {ex}", "error")
        return {"error": str(ex)}
    except Exception as ex:
        fncPrintMessage(f"Module {module_name} raised an exception: {ex}", "error")
        fncPrintMessage(traceback.format_exc(), "debug")
        return {"error": str(ex)}
    fncPrintMessage(f"Module complete: {provider}/{module_name}", "success")
    return result


# ================================================================
# Function: fncDiscoverModules
# Purpose : Discover available modules for a provider by scanning the modules dir
# Notes   : Ignores __init__.py and files starting with '_' by convention
# ================================================================
def fncDiscoverModules(provider: str) -> List[str]:
    base = MODULES_ROOT / provider
    if not base.is_dir():
        fncPrintMessage(f"No modules directory for provider '{provider}' (expected: {base})", "warn")
        return []

    mods = [p.stem for p in sorted(base.iterdir())
            if p.is_file() and p.suffix == ".py" and not p.name.startswith("_")]
    fncPrintMessage(f"Discovered modules for {provider}: {mods}", "debug")
    return mods


# ================================================================
# Function: fncRegisterModuleArgs
# Purpose : Let every discovered module add its own CLI options
# Notes   : Modules opt in by defining add_args(parser)
# ================================================================
def fncRegisterModuleArgs(parser, providers: List[str]) -> Dict[str, List[str]]:
    registered: Dict[str, List[str]] = {}
    for provider in providers:
        for name in fncDiscoverModules(provider):
            mod = fncLoadModule(provider, name)
            if mod and hasattr(mod, "add_args"):
                mod.add_args(parser)
                registered.setdefault(provider, []).append(name)
    return registered
