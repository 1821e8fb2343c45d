# ================================================================
# File     : modules/ad/gmsa_validate.py
# Purpose  : Validate a gMSA used as an identity sensor's Directory
#            Services Account (DSA)
# Notes    : Read-only LDAP checks; client is a connected AdClient.
#            Each check produces a PASS / FAIL / WARN row.
# ================================================================

import struct
from typing import Any, Dict, List, Optional

from ldap3.protocol.formatters.formatters import format_sid
from ldap3.utils.conv import escape_filter_chars

from core.utils import fncPrintMessage, fncToTable, fncNewRunId

REQUIRED_PERMS = ["Authenticated domain user (read access to the gMSA and KDS containers)"]

UAC_ACCOUNTDISABLE = 0x2
ACCESS_ALLOWED_ACE_TYPE = 0x00
IN_CHAIN = "1.2.840.113556.1.4.1941"

GMSA_ATTRIBUTES = [
    "sAMAccountName",
    "userAccountControl",
    "msDS-GroupMSAMembership",
    "msDS-ManagedPasswordInterval",
    "dNSHostName",
]


# ================================================================
# Function: add_args
# Purpose : Add module CLI arguments
# Notes   : --domain/--dc override the 'ad' config block
# ================================================================
def add_args(parser):
    g = parser.add_argument_group("ad/gmsa_validate")
    g.add_argument("--gmsa-name", default=None, help="gMSA account name (with or without trailing $)")
    g.add_argument("--sensor-host", action="append", default=[],
                   help="Sensor host that must be able to retrieve the gMSA password (repeatable)")
    g.add_argument("--domain", default=None, help="AD DNS domain, e.g. corp.example.com")
    g.add_argument("--dc", default=None, help="Domain controller to query (default: the domain name)")


# ================================================================
# Function: fncParseAllowedSids
# Purpose : SIDs granted access by msDS-GroupMSAMembership
# Notes   : Self-relative SECURITY_DESCRIPTOR; only ACCESS_ALLOWED
#           ACEs of the DACL are returned
# ================================================================
def fncParseAllowedSids(descriptor: Optional[bytes]) -> List[str]:
    if not descriptor or len(descriptor) < 20:
        return []
    dacl_offset = struct.unpack_from("<I", descriptor, 16)[0]
    if not dacl_offset or dacl_offset + 8 > len(descriptor):
        return []

    ace_count = struct.unpack_from("<H", descriptor, dacl_offset + 4)[0]
    pos = dacl_offset + 8
    sids = []
    for _ in range(ace_count):
        if pos + 4 > len(descriptor):
            break
        ace_type, _flags, ace_size = struct.unpack_from("<BBH", descriptor, pos)
        if ace_size < 8:
            break
        if ace_type == ACCESS_ALLOWED_ACE_TYPE:
            sids.append(format_sid(descriptor[pos + 8:pos + ace_size]))
        pos += ace_size
    return sids


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _check(name: str, status: str, detail: str) -> Dict[str, str]:
    return {"check": name, "status": status, "detail": detail}


# ================================================================
# Function: fncCheckKdsRootKey
# Purpose : gMSA passwords need at least one KDS root key
# ================================================================
def fncCheckKdsRootKey(client) -> Dict[str, str]:
    base = f"CN=Master Root Keys,CN=Group Key Distribution Service,CN=Services,{client.config_dn}"
    keys = client.search("(objectClass=msKds-ProvRootKey)", ["cn"], search_base=base)
    if keys:
        return _check("KDS root key", "PASS", f"{len(keys)} root key(s) present")
    return _check("KDS root key", "FAIL", "No KDS root key found; gMSA passwords cannot be generated")


def fncFindGmsa(client, gmsa_name: str) -> Optional[Dict[str, Any]]:
    sam = gmsa_name if gmsa_name.endswith("$") else f"{gmsa_name}$"
    found = client.search(
        f"(&(objectClass=msDS-GroupManagedServiceAccount)(sAMAccountName={escape_filter_chars(sam)}))",
        GMSA_ATTRIBUTES,
    )
    return found[0] if found else None


def fncResolveSid(client, sid: str) -> Dict[str, Any]:
    found = client.search(f"(objectSid={sid})", ["sAMAccountName", "objectClass"])
    if not found:
        return {"sid": sid, "name": sid, "dn": None, "kind": "unresolved"}
    entry = found[0]
    classes = [str(c).lower() for c in (entry.get("objectClass") or [])]
    kind = "group" if "group" in classes else "computer" if "computer" in classes else "account"
    return {"sid": sid, "name": _first(entry.get("sAMAccountName")) or sid, "dn": entry.get("dn"), "kind": kind}


# ================================================================
# Function: fncHostCanRetrieve
# Purpose : Is host allowed directly or through (nested) group
#           membership of an allowed group?
# ================================================================
def fncHostCanRetrieve(client, host: str, allowed: List[Dict[str, Any]]) -> Optional[str]:
    sam = escape_filter_chars(host if host.endswith("$") else f"{host}$")
    for principal in allowed:
        if principal["name"].lower() == sam.lower():
            return "direct"
    for principal in allowed:
        if principal["kind"] != "group" or not principal["dn"]:
            continue
        group_dn = escape_filter_chars(principal["dn"])
        hits = client.search(f"(&(sAMAccountName={sam})(memberOf:{IN_CHAIN}:={group_dn}))", ["sAMAccountName"])
        if hits:
            return f"via group {principal['name']}"
    return None


# ================================================================
# Function: fncValidateGmsa
# Purpose : Run every DSA check and return the result rows
# ================================================================
def fncValidateGmsa(client, gmsa_name: str, sensor_hosts: List[str]) -> Dict[str, Any]:
    checks = [fncCheckKdsRootKey(client)]
    allowed: List[Dict[str, Any]] = []

    account = fncFindGmsa(client, gmsa_name)
    if not account:
        checks.append(_check("gMSA account", "FAIL", f"No gMSA named {gmsa_name} found"))
    else:
        checks.append(_check("gMSA account", "PASS", account.get("dn") or gmsa_name))

        uac = int(_first(account.get("userAccountControl")) or 0)
        if uac & UAC_ACCOUNTDISABLE:
            checks.append(_check("Account enabled", "FAIL", "Account is disabled"))
        else:
            checks.append(_check("Account enabled", "PASS", "Account is enabled"))

        descriptor = _first(account.get("msDS-GroupMSAMembership;raw"))
        allowed = [fncResolveSid(client, sid) for sid in fncParseAllowedSids(descriptor)]
        if allowed:
            names = ", ".join(p["name"] for p in allowed)
            checks.append(_check("Password retrieval principals", "PASS", names))
        else:
            checks.append(_check("Password retrieval principals", "FAIL",
                                 "No principal is allowed to retrieve the managed password"))

        for p in allowed:
            if p["kind"] == "unresolved":
                checks.append(_check("Password retrieval principals", "WARN",
                                     f"SID {p['sid']} does not resolve to a directory object"))

    for host in sensor_hosts:
        how = fncHostCanRetrieve(client, host, allowed) if allowed else None
        if how:
            checks.append(_check(f"Sensor host {host}", "PASS", f"Can retrieve password ({how})"))
        else:
            checks.append(_check(f"Sensor host {host}", "FAIL", "Cannot retrieve the gMSA password"))

    failed = sum(1 for c in checks if c["status"] == "FAIL")
    warned = sum(1 for c in checks if c["status"] == "WARN")
    return {
        "provider": "ad",
        "_title": f"gMSA DSA Validation — {gmsa_name}",
        "_subtitle": f"Domain {client.domain}",
        "summary": {
            "gMSA": gmsa_name,
            "Checks run": len(checks),
            "Failed": failed,
            "Warnings": warned,
            "Result": "FAIL" if failed else "PASS",
        },
        "checks": checks,
        "allowedPrincipals": [{"name": p["name"], "sid": p["sid"], "kind": p["kind"]} for p in allowed],
    }


# ================================================================
# Function: run
# Purpose : Entry point for module execution
# Notes   : client is an AdClient (bound on demand)
# ================================================================
def run(client, args):
    run_id = fncNewRunId("ranger")
    gmsa_name = getattr(args, "gmsa_name", None) or input("Enter gMSA name: ").strip()
    fncPrintMessage(f"Running gmsa_validate for {gmsa_name} (run={run_id})", "info")

    client.connect()
    try:
        result = fncValidateGmsa(client, gmsa_name, list(getattr(args, "sensor_host", None) or []))
    finally:
        client.close()

    print(fncToTable(result["checks"], headers=["check", "status", "detail"]))
    level = "success" if result["summary"]["Result"] == "PASS" else "warn"
    fncPrintMessage(f"gmsa_validate complete — {result['summary']['Failed']} failed check(s)", level)
    return result
