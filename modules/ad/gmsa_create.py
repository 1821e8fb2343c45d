# ================================================================
# File     : modules/ad/gmsa_create.py
# Purpose  : Create a gMSA to serve as an identity sensor's
#            Directory Services Account (DSA)
# Notes    : Prerequisites are checked before anything is written;
#            the new account is then run through gmsa_validate.
#            Shares --gmsa-name / --sensor-host / --domain / --dc
#            with gmsa_validate.
# ================================================================

import struct
from typing import Any, Dict, List, Optional

from ldap3.protocol.formatters.formatters import format_sid
from ldap3.utils.conv import escape_filter_chars

from core.errors import GmsaCreateFailed
from core.utils import fncPrintMessage, fncToTable, fncNewRunId
from modules.ad.gmsa_validate import _first, fncCheckKdsRootKey, fncFindGmsa, fncValidateGmsa

REQUIRED_PERMS = ["Create msDS-GroupManagedServiceAccount objects in the target container"]

GMSA_OBJECT_CLASS = "msDS-GroupManagedServiceAccount"
UAC_WORKSTATION_TRUST_ACCOUNT = 0x1000
# AES128 | AES256
SUPPORTED_ENCRYPTION_TYPES = 0x18
PASSWORD_INTERVAL_DAYS = 30

# Owner of the membership descriptor: BUILTIN\Administrators
OWNER_SID = "S-1-5-32-544"
# GenericAll, the right the AD cmdlets grant in msDS-GroupMSAMembership
RETRIEVE_MASK = 0x000F01FF
SE_DACL_PRESENT = 0x0004
SE_SELF_RELATIVE = 0x8000


def add_args(parser):
    g = parser.add_argument_group("ad/gmsa_create")
    g.add_argument("--gmsa-group", action="append", default=[],
                   help="Group allowed to retrieve the gMSA password (repeatable)")
    g.add_argument("--gmsa-container", default=None,
                   help="DN to create the gMSA in (default: CN=Managed Service Accounts,<domain>)")
    g.add_argument("--gmsa-dns-host-name", default=None,
                   help="dNSHostName of the gMSA (default: <name>.<domain>)")


# ================================================================
# Function: fncSidToBytes
# Purpose : Binary SID from its S-1-... string form
# ================================================================
def fncSidToBytes(sid: str) -> bytes:
    parts = sid.split("-")
    if len(parts) < 3 or parts[0].upper() != "S":
        raise ValueError(f"Not a SID: {sid}")
    subs = [int(p) for p in parts[3:]]
    return (struct.pack("<BB", int(parts[1]), len(subs)) + int(parts[2]).to_bytes(6, "big")
            + b"".join(struct.pack("<I", s) for s in subs))


# ================================================================
# Function: fncBuildMembershipDescriptor
# Purpose : Self-relative security descriptor for
#           msDS-GroupMSAMembership (O:BA, one allow ACE per SID)
# Notes   : Layout is header, DACL, owner SID
# ================================================================
def fncBuildMembershipDescriptor(sids: List[bytes]) -> bytes:
    aces = b""
    for sid in sids:
        body = struct.pack("<I", RETRIEVE_MASK) + sid
        aces += struct.pack("<BBH", 0, 0, 4 + len(body)) + body
    dacl = struct.pack("<BBHHH", 2, 0, 8 + len(aces), len(sids), 0) + aces

    header_size = 20
    owner_offset = header_size + len(dacl)
    header = struct.pack("<BBHIIII", 1, 0, SE_SELF_RELATIVE | SE_DACL_PRESENT,
                         owner_offset, 0, 0, header_size)
    return header + dacl + fncSidToBytes(OWNER_SID)


# ================================================================
# Function: fncResolvePrincipal
# Purpose : objectSid (raw) for a host or group by sAMAccountName
# ================================================================
def fncResolvePrincipal(client, sam: str) -> Optional[Dict[str, Any]]:
    found = client.search(f"(sAMAccountName={escape_filter_chars(sam)})", ["objectSid"])
    if not found:
        return None
    raw = _first(found[0].get("objectSid;raw"))
    if not raw:
        return None
    return {"name": sam, "dn": found[0].get("dn"), "sid": format_sid(raw), "raw": raw}


def _allowed_principals(client, gmsa_name: str, sensor_hosts: List[str],
                        groups: List[str]) -> List[Dict[str, Any]]:
    wanted = [h if h.endswith("$") else f"{h}$" for h in sensor_hosts] + list(groups)
    principals, missing = [], []
    for sam in wanted:
        found = fncResolvePrincipal(client, sam)
        if found:
            principals.append(found)
        else:
            missing.append(sam)
    if missing:
        raise GmsaCreateFailed(gmsa_name, f"not found in the directory: {', '.join(missing)}")
    if not principals:
        raise GmsaCreateFailed(gmsa_name, "give at least one --sensor-host or --gmsa-group")
    return principals


# ================================================================
# Function: fncCreateGmsa
# Purpose : Create the gMSA, then validate it
# Notes   : Raises GmsaCreateFailed before writing when the KDS
#           root key, the principals or a free name are missing
# ================================================================
def fncCreateGmsa(client, gmsa_name: str, sensor_hosts: List[str], groups: Optional[List[str]] = None,
                  container: Optional[str] = None, dns_host_name: Optional[str] = None) -> Dict[str, Any]:
    name = gmsa_name.rstrip("$")
    groups = list(groups or [])

    kds = fncCheckKdsRootKey(client)
    if kds["status"] != "PASS":
        raise GmsaCreateFailed(name, kds["detail"])
    if fncFindGmsa(client, name):
        raise GmsaCreateFailed(name, "an account with that name already exists")

    principals = _allowed_principals(client, name, sensor_hosts, groups)

    dn = f"CN={name},{container or f'CN=Managed Service Accounts,{client.base_dn}'}"
    client.add(dn, GMSA_OBJECT_CLASS, {
        "sAMAccountName": f"{name}$",
        "dNSHostName": dns_host_name or f"{name}.{client.domain}",
        "userAccountControl": UAC_WORKSTATION_TRUST_ACCOUNT,
        "msDS-SupportedEncryptionTypes": SUPPORTED_ENCRYPTION_TYPES,
        "msDS-ManagedPasswordInterval": PASSWORD_INTERVAL_DAYS,
        "msDS-GroupMSAMembership": fncBuildMembershipDescriptor([p["raw"] for p in principals]),
    })

    result = fncValidateGmsa(client, name, sensor_hosts)
    result["_title"] = f"gMSA Creation — {name}"
    result["summary"] = {"Created": dn, **result["summary"]}
    return result


# ================================================================
# Function: run
# Purpose : Entry point for module execution
# Notes   : client is an AdClient (bound on demand)
# ================================================================
def run(client, args):
    run_id = fncNewRunId("ranger")
    gmsa_name = getattr(args, "gmsa_name", None) or input("Enter gMSA name: ").strip()
    fncPrintMessage(f"Running gmsa_create for {gmsa_name} (run={run_id})", "info")

    client.connect()
    try:
        result = fncCreateGmsa(
            client,
            gmsa_name,
            list(getattr(args, "sensor_host", None) or []),
            groups=list(getattr(args, "gmsa_group", None) or []),
            container=getattr(args, "gmsa_container", None),
            dns_host_name=getattr(args, "gmsa_dns_host_name", None),
        )
    finally:
        client.close()

    print(fncToTable(result["checks"], headers=["check", "status", "detail"]))
    level = "success" if result["summary"]["Result"] == "PASS" else "warn"
    fncPrintMessage(f"gmsa_create complete — {result['summary']['Failed']} failed check(s)", level)
    return result
