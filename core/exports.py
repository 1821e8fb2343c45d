# ================================================================
# File     : exports.py
# Purpose  : Handle export logic for RoleRanger (HTML, CSV, JSON)
# Notes    : Called by modules and by RoleRanger.py after a scan
# ================================================================

import pathlib
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from core.models import CSV_COLUMNS, RoleAssignment
from core.utils import fncPrintMessage, fncEnsureFolder, fncExportCSV, fncWriteJSON, fncFileStamp
from core.reporting import fncWriteHTMLReport


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# ================================================================
def fncExportList(args_export) -> set:
    if not args_export:
        return set()
    out = set()
    for chunk in args_export:
        items = chunk if isinstance(chunk, (list, tuple)) else [chunk]
        for item in items:
            if isinstance(item, str):
                for part in item.replace(",", " ").split():
                    out.add(part.strip().lower())
    return out


# ================================================================
# Function: fncDefaultReportPath
# Purpose  : Timestamped report file name in the current directory
# ================================================================
def fncDefaultReportPath(prefix: str, key: str, ext: str, now: Optional[datetime] = None) -> str:
    return str(pathlib.Path.cwd() / f"{prefix}_{key}_{fncFileStamp(now)}.{ext}")


# ================================================================
# Function: fncExportAssignmentsCSV
# Purpose  : Write role assignments with the fixed CSV schema
# Notes    : One row per assignment; csv module handles quoting
# ================================================================
def fncExportAssignmentsCSV(path: str, assignments: Iterable[RoleAssignment]) -> None:
    fncExportCSV(path, [a.to_row() for a in assignments], headers=CSV_COLUMNS)


# ================================================================
# Function: fncGetExportPath
# Purpose  : Build structured output path under ~/.roleranger/reports/
# ================================================================
def fncGetExportPath(module_name: str, root: pathlib.Path = None):
    if root is None:
        root = pathlib.Path.home() / ".roleranger" / "reports"
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    mod_slug = module_name.replace("/", "_").replace("\\", "_")
    out_dir = root / ts / mod_slug
    fncEnsureFolder(out_dir)
    return out_dir


def _plain(value):
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


# ================================================================
# Function: fncExportSingleModule
# Purpose  : Handle --export formats for one module's dict result
# Notes    : Keys starting with '_' are presentation hints, not data
# ================================================================
def fncExportSingleModule(module_name: str, data: dict, formats: set, root: pathlib.Path = None):
    out_dir = fncGetExportPath(module_name, root)
    plain = {k: _plain(v) for k, v in data.items() if not k.startswith("_")}

    if "json" in formats:
        fncWriteJSON(str(out_dir / f"{module_name}.json"), plain)

    if "csv" in formats:
        for key, val in plain.items():
            if key == "summary":
                continue
            if isinstance(val, list) and val and isinstance(val[0], dict):
                fncExportCSV(str(out_dir / f"{module_name}_{key}.csv"), val, headers=list(val[0].keys()))

    if "html" in formats:
        fncWriteHTMLReport(str(out_dir / f"{module_name}.html"), module_name, data)

    fncPrintMessage(f"Exports written → {out_dir}", "success")
    return out_dir
