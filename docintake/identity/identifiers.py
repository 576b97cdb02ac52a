"""Canonical forms of sender and endpoint identifiers.

Stored phone numbers come in whatever format the accountant typed them, so
both stored and inbound numbers are reduced to the same ordered variants.
"""

import re


def mask(identifier: str | None) -> str:
    """Mask an identifier for logs, keeping the last four characters."""
    if not identifier:
        return "<none>"
    return f"***{identifier[-4:]}"


def phone_variants(raw: str, country_code: str) -> list[str]:
    """Ordered canonical variants of a phone number.

    ``+911234567890`` → ``["+911234567890", "911234567890", "1234567890",
    "01234567890"]``. Numbers that do not look like national numbers of the
    default country are kept as-is (with and without ``+``).
    """
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return []
    if len(digits) == 10:
        national = digits
    elif len(digits) == 11 and digits.startswith("0"):
        national = digits[1:]
    elif digits.startswith(country_code) and len(digits) == len(country_code) + 10:
        national = digits[len(country_code) :]
    else:
        return [f"+{digits}", digits]
    return [
        f"+{country_code}{national}",
        f"{country_code}{national}",
        national,
        f"0{national}",
    ]


def normalize_identifier(raw: str, country_code: str) -> list[str]:
    """Canonical lookup variants for a phone number or email address."""
    value = raw.strip()
    if "@" in value:
        return [value.lower()]
    return phone_variants(value, country_code)


def canonical_identifier(raw: str | None, country_code: str) -> str | None:
    """Preferred stored form: ``+<cc><number>`` for phones, lower-case for emails."""
    if not raw or not raw.strip():
        return None
    variants = normalize_identifier(raw, country_code)
    return variants[0] if variants else raw.strip()
