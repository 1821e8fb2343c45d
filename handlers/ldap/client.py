# ================================================================
# File     : client.py
# Purpose  : LDAP client for Active Directory checks and gMSA setup
# Notes    : ldap3; SIMPLE bind for UPNs, NTLM for DOMAIN\user.
#            The only write is add(), used by gmsa_create.
# ================================================================

import getpass
from typing import Any, Dict, List, Optional

from ldap3 import Server, Connection, ALL, NTLM, SIMPLE, SUBTREE, BASE
from ldap3.core.exceptions import LDAPException

from core.errors import DirectoryBindFailed, DirectoryWriteFailed
from core.utils import fncPrintMessage


def fncDomainToDn(domain: str) -> str:
    return ",".join(f"DC={part}" for part in domain.split(".") if part)


class AdClient:
    def __init__(
        self,
        domain: str,
        server: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = True,
        connection=None,
    ):
        self.domain = domain
        self.server_address = server or domain
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.base_dn = fncDomainToDn(domain)
        self.config_dn = f"CN=Configuration,{self.base_dn}"
        self.connection = connection

    def connect(self) -> "AdClient":
        if self.connection is not None:
            return self

        if not self.username:
            self.username = input("Enter AD username (user@domain or DOMAIN\\user): ").strip()
        if not self.password:
            self.password = getpass.getpass("Enter AD password (input hidden): ")

        port = 636 if self.use_ssl else 389
        fncPrintMessage(f"Connecting to {self.server_address}:{port}...", "info")
        try:
            server = Server(self.server_address, port=port, use_ssl=self.use_ssl, get_info=ALL)
            if "\\" in self.username:
                self.connection = Connection(server, user=self.username, password=self.password,
                                             authentication=NTLM, auto_bind=True)
            else:
                user = self.username if "@" in self.username else f"{self.username}@{self.domain}"
                self.connection = Connection(server, user=user, password=self.password,
                                             authentication=SIMPLE, auto_bind=True)
        except LDAPException as ex:
            raise DirectoryBindFailed(self.server_address, str(ex)) from ex

        fncPrintMessage(f"Bound to {self.server_address} (base {self.base_dn})", "success")
        return self

    def search(self, search_filter: str, attributes: List[str], search_base: Optional[str] = None,
               scope: str = "subtree") -> List[Dict[str, Any]]:
        """Return entries as dicts of raw attribute values plus 'dn'."""
        base = search_base or self.base_dn
        search_scope = BASE if scope == "base" else SUBTREE
        fncPrintMessage(f"LDAP search {search_filter} @ {base}", "debug")
        self.connection.search(
            search_base=base,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attributes,
        )
        results = []
        for entry in self.connection.response or []:
            if entry.get("type") != "searchResEntry":
                continue
            row = {"dn": entry.get("dn")}
            raw = entry.get("raw_attributes", {}) or {}
            attrs = entry.get("attributes", {}) or {}
            for attr in attributes:
                row[attr] = attrs.get(attr)
                row[f"{attr};raw"] = raw.get(attr)
            results.append(row)
        return results

    def add(self, dn: str, object_class: str, attributes: Dict[str, Any]) -> None:
        """Create one directory object; raises DirectoryWriteFailed if refused."""
        fncPrintMessage(f"LDAP add {dn} ({object_class})", "debug")
        try:
            ok = self.connection.add(dn, object_class, attributes)
        except LDAPException as ex:
            raise DirectoryWriteFailed(dn, str(ex)) from ex
        if not ok:
            result = self.connection.result or {}
            detail = f"{result.get('description', '')} {result.get('message', '')}".strip()
            raise DirectoryWriteFailed(dn, detail)
        fncPrintMessage(f"Created {dn}", "success")

    def close(self) -> None:
        if self.connection is not None:
            self.connection.unbind()
