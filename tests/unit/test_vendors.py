"""Unit tests for vendor matching."""

import pytest

from docintake.identity.store import InMemoryIdentityStore
from docintake.identity.vendors import VendorRegistry, name_similarity, normalize_vendor_name


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("ACME Traders Pvt. Ltd.", "acme traders"),
        ("Acme Traders Private Limited", "acme traders"),
        ("  Globex,  LLP ", "globex"),
        ("Initech Inc.", "initech"),
        ("Sharma & Sons", "sharma sons"),
    ],
)
def test_normalize_vendor_name(name: str, expected: str) -> None:
    assert normalize_vendor_name(name) == expected


def test_name_similarity() -> None:
    assert name_similarity("acme traders", "acme traders") == 1.0
    assert name_similarity("acme traders", "") == 0.0
    assert name_similarity("acme traders", "globex") < 0.5


@pytest.fixture
def registry() -> VendorRegistry:
    return VendorRegistry(InMemoryIdentityStore())


@pytest.mark.asyncio
async def test_creates_new_vendor(registry: VendorRegistry) -> None:
    vendor = await registry.match_or_create("t1", "ACME Traders Pvt Ltd", "27AAPFU0939F1ZV")

    assert vendor.name == "ACME Traders Pvt Ltd"
    assert vendor.normalized_name == "acme traders"
    assert vendor.tax_id == "27AAPFU0939F1ZV"


@pytest.mark.asyncio
async def test_matches_by_tax_id_and_records_alias(registry: VendorRegistry) -> None:
    first = await registry.match_or_create("t1", "ACME Traders Pvt Ltd", "27AAPFU0939F1ZV")
    second = await registry.match_or_create("t1", "Acme Trading Co", "27AAPFU0939F1ZV")

    assert second.id == first.id
    assert "Acme Trading Co" in second.aliases


@pytest.mark.asyncio
async def test_matches_by_fuzzy_name(registry: VendorRegistry) -> None:
    first = await registry.match_or_create("t1", "ACME Traders Pvt Ltd", None)
    second = await registry.match_or_create("t1", "Acme Traders Limited", "27AAPFU0939F1ZV")

    assert second.id == first.id
    assert second.tax_id == "27AAPFU0939F1ZV"


@pytest.mark.asyncio
async def test_different_tax_ids_never_merge(registry: VendorRegistry) -> None:
    first = await registry.match_or_create("t1", "ACME Traders", "27AAPFU0939F1ZV")
    second = await registry.match_or_create("t1", "ACME Traders", "29AAPFU0939F1ZR")

    assert second.id != first.id


@pytest.mark.asyncio
async def test_vendors_are_tenant_scoped(registry: VendorRegistry) -> None:
    first = await registry.match_or_create("t1", "ACME Traders", None)
    second = await registry.match_or_create("t2", "ACME Traders", None)

    assert second.id != first.id
    assert second.tenant_id == "t2"
