"""App Service Easy Auth principal header parsing.

The hosting platform authenticates the user and injects
``x-ms-client-principal``: base64 of ``{"claims": [{"typ": ..., "val": ...}], ...}``.
Nothing here verifies that header; it is trusted because the platform sets it.
"""
import base64
import binascii
import json
import re
from enum import Enum
from typing import Any, Dict, Mapping, Optional

PRINCIPAL_HEADER = "x-ms-client-principal"


class ClaimType(str, Enum):
    """Claim types we read, matched on the last segment of the claim URI"""
    EMAIL = "emailaddress"
    UPN = "upn"
    NAME = "name"
    OTHER = "other"

    @classmethod
    def from_claim(cls, typ: str) -> "ClaimType":
        # ".../claims/name" is a NAME claim, ".../claims/givenname" is not
        segment = re.split(r"[/.]", typ.strip())[-1].lower()
        for claim_type in (cls.EMAIL, cls.UPN, cls.NAME):
            if segment == claim_type.value:
                return claim_type
        return cls.OTHER


# Search order for the identity claim
_EMAIL_PRIORITY = (ClaimType.EMAIL, ClaimType.UPN, ClaimType.NAME)


def decode_principal(headers: Mapping[str, str]) -> Optional[Dict[str, Any]]:
    """Decode the raw principal header, or None if absent/undecodable"""
    raw = headers.get(PRINCIPAL_HEADER)
    if not raw:
        return None
    try:
        decoded = base64.b64decode(raw, validate=False).decode("utf-8")
        principal = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return principal if isinstance(principal, dict) else None


def parse_principal(headers: Mapping[str, str]) -> Optional[str]:
    """Return the caller's email from the Easy Auth header.

    Claims are searched emailaddress → upn → name; the first non-empty value
    wins. Never raises.
    """
    principal = decode_principal(headers)
    if principal is None:
        return None

    claims = principal.get("claims")
    if not isinstance(claims, list):
        return None

    found: Dict[ClaimType, str] = {}
    for claim in claims:
        if not isinstance(claim, dict):
            continue
        typ, val = claim.get("typ"), claim.get("val")
        if not isinstance(typ, str) or not isinstance(val, str):
            continue
        claim_type = ClaimType.from_claim(typ)
        if claim_type is ClaimType.OTHER or claim_type in found:
            continue
        if val.strip():
            found[claim_type] = val.strip()

    for claim_type in _EMAIL_PRIORITY:
        if claim_type in found:
            return found[claim_type]
    return None
