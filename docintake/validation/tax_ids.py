"""GSTIN (Indian GST identification number) validation.

Format: 2-digit state code, 10-character PAN, entity number, 'Z', check
character. The check character is the mod-36 checksum over the first 14
characters.
"""

import re
from typing import Protocol

GSTIN_REGEX = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")

_CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# 01-38 are states/union territories, 97 other territory, 99 centre jurisdiction
_VALID_STATE_CODES = {f"{n:02d}" for n in range(1, 39)} | {"97", "99"}


def gstin_check_character(body: str) -> str:
    """Compute the check character for the first 14 characters of a GSTIN."""
    total = 0
    for index, char in enumerate(body):
        factor = 1 if index % 2 == 0 else 2
        product = _CHARSET.index(char) * factor
        total += product // 36 + product % 36
    return _CHARSET[(36 - total % 36) % 36]


def gstin_problem(gstin: str) -> str | None:
    """Return a description of what is wrong with a GSTIN, or None if valid."""
    value = gstin.strip().upper()
    if not GSTIN_REGEX.match(value):
        return f"'{gstin}' does not match the GSTIN format"
    if value[:2] not in _VALID_STATE_CODES:
        return f"'{gstin}' has unknown state code {value[:2]}"
    if gstin_check_character(value[:14]) != value[14]:
        return f"'{gstin}' fails the GSTIN checksum"
    return None


def is_valid_gstin(gstin: str) -> bool:
    return gstin_problem(gstin) is None


def state_code(gstin: str | None) -> str | None:
    """State code of a structurally valid GSTIN."""
    if gstin and GSTIN_REGEX.match(gstin.strip().upper()):
        return gstin.strip()[:2]
    return None


class JurisdictionClassifier(Protocol):
    """Decides whether a supply is within one jurisdiction.

    Returns True for same-jurisdiction, False for cross-jurisdiction and None
    when it cannot tell.
    """

    def is_same_jurisdiction(self, issuer_tax_id: str | None, recipient_tax_id: str | None) -> bool | None: ...


class GstinStateClassifier:
    """Intra-state when issuer and recipient GSTINs share a state code."""

    def is_same_jurisdiction(
        self, issuer_tax_id: str | None, recipient_tax_id: str | None
    ) -> bool | None:
        issuer_state = state_code(issuer_tax_id)
        recipient_state = state_code(recipient_tax_id)
        if issuer_state is None or recipient_state is None:
            return None
        return issuer_state == recipient_state
