"""Vendor matching for committed invoices.

Exact tax ID match first, then fuzzy name match on normalized names
(``difflib.SequenceMatcher``); otherwise a new vendor is created.
"""

import logging
import re
from difflib import SequenceMatcher

from docintake.identity.models import Vendor
from docintake.identity.store import IdentityStore

logger = logging.getLogger(__name__)

_SUFFIXES = re.compile(
    r"\s+(pvt\.?\s+ltd\.?|private\s+limited|pvt\.?|limited|ltd\.?|llp|llc|inc\.?|"
    r"corporation|corp\.?|co\.?)$",
    re.IGNORECASE,
)


def normalize_vendor_name(name: str) -> str:
    """Lower-case, drop legal-form suffixes and punctuation."""
    normalized = name.lower().strip()
    previous = None
    while previous != normalized:
        previous = normalized
        normalized = _SUFFIXES.sub("", normalized).strip()
    normalized = re.sub(r"[^\w\s]", "", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def name_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


class VendorRegistry:
    """Match or create vendors per tenant."""

    def __init__(self, store: IdentityStore, similarity_threshold: float = 0.85) -> None:
        self.store = store
        self.similarity_threshold = similarity_threshold

    async def match_or_create(self, tenant_id: str, name: str | None, tax_id: str | None) -> Vendor:
        """Return the tenant's vendor for an invoice issuer.

        Args:
            tenant_id: Owning tenant
            name: Issuer name as extracted
            tax_id: Issuer tax ID as extracted

        Returns:
            Existing (possibly enriched) or newly created vendor
        """
        display_name = (name or tax_id or "Unknown vendor").strip()
        normalized = normalize_vendor_name(display_name)
        vendors = await self.store.list_vendors(tenant_id)

        if tax_id:
            for vendor in vendors:
                if vendor.tax_id == tax_id:
                    return await self._merge(vendor, display_name, tax_id)

        best: Vendor | None = None
        best_score = 0.0
        for vendor in vendors:
            if tax_id and vendor.tax_id and vendor.tax_id != tax_id:
                continue
            score = max(
                [name_similarity(normalized, vendor.normalized_name)]
                + [name_similarity(normalized, normalize_vendor_name(a)) for a in vendor.aliases]
            )
            if score > best_score:
                best, best_score = vendor, score

        if best is not None and best_score >= self.similarity_threshold:
            logger.info(f"Matched vendor '{display_name}' to {best.id} (similarity {best_score:.2f})")
            return await self._merge(best, display_name, tax_id)

        vendor = Vendor(
            tenant_id=tenant_id,
            name=display_name,
            normalized_name=normalized,
            tax_id=tax_id,
        )
        logger.info(f"Created vendor {vendor.id} '{display_name}' for tenant {tenant_id}")
        return await self.store.save_vendor(vendor)

    async def _merge(self, vendor: Vendor, name: str, tax_id: str | None) -> Vendor:
        changed = False
        if name != vendor.name and name not in vendor.aliases:
            vendor.aliases.append(name)
            changed = True
        if tax_id and not vendor.tax_id:
            vendor.tax_id = tax_id
            changed = True
        if changed:
            await self.store.save_vendor(vendor)
        return vendor
