"""KYC document checklist for client onboarding.

Each client gets a checklist of onboarding documents derived from its
business type. A KYC upload is classified from its file name and read text,
ticks the matching checklist item, and the client is told what is still
missing.
"""

import re
from enum import Enum

from pydantic import BaseModel


class KycDocumentType(str, Enum):
    PAN_CARD = "pan_card"
    AADHAAR_CARD = "aadhaar_card"
    GST_CERTIFICATE = "gst_certificate"
    BANK_DETAILS = "bank_details"
    CANCELLED_CHEQUE = "cancelled_cheque"
    ADDRESS_PROOF = "address_proof"
    SHOP_ESTABLISHMENT = "shop_establishment"
    PARTNERSHIP_DEED = "partnership_deed"
    PARTNERS_AADHAAR = "partners_aadhaar"
    LLP_AGREEMENT = "llp_agreement"
    INCORPORATION_CERTIFICATE = "incorporation_certificate"
    MOA_AOA = "moa_aoa"
    CIN_CERTIFICATE = "cin_certificate"
    DIRECTORS_DIN = "directors_din"
    SHARE_CERTIFICATES = "share_certificates"
    REGISTRATION_CERTIFICATE = "registration_certificate"
    UTILITY_BILL = "utility_bill"
    RENT_AGREEMENT = "rent_agreement"
    OTHER = "kyc_document"


DOCUMENT_NAMES: dict[KycDocumentType, str] = {
    KycDocumentType.PAN_CARD: "PAN Card",
    KycDocumentType.AADHAAR_CARD: "Aadhaar Card",
    KycDocumentType.GST_CERTIFICATE: "GST Certificate",
    KycDocumentType.BANK_DETAILS: "Bank Account Details",
    KycDocumentType.CANCELLED_CHEQUE: "Cancelled Cheque",
    KycDocumentType.ADDRESS_PROOF: "Address Proof",
    KycDocumentType.SHOP_ESTABLISHMENT: "Shop Establishment Certificate",
    KycDocumentType.PARTNERSHIP_DEED: "Partnership Deed",
    KycDocumentType.PARTNERS_AADHAAR: "Partners' Aadhaar Cards",
    KycDocumentType.LLP_AGREEMENT: "LLP Agreement",
    KycDocumentType.INCORPORATION_CERTIFICATE: "Certificate of Incorporation",
    KycDocumentType.MOA_AOA: "MOA & AOA",
    KycDocumentType.CIN_CERTIFICATE: "CIN Certificate",
    KycDocumentType.DIRECTORS_DIN: "Directors' DIN",
    KycDocumentType.SHARE_CERTIFICATES: "Share Certificates",
    KycDocumentType.REGISTRATION_CERTIFICATE: "Registration Certificate",
    KycDocumentType.UTILITY_BILL: "Utility Bill",
    KycDocumentType.RENT_AGREEMENT: "Rent Agreement",
    KycDocumentType.OTHER: "KYC Document",
}

_T = KycDocumentType

# (document type, required) per business type
CHECKLIST_TEMPLATES: dict[str, list[tuple[KycDocumentType, bool]]] = {
    "proprietorship": [
        (_T.PAN_CARD, True),
        (_T.AADHAAR_CARD, True),
        (_T.GST_CERTIFICATE, False),
        (_T.BANK_DETAILS, True),
        (_T.CANCELLED_CHEQUE, True),
        (_T.ADDRESS_PROOF, True),
        (_T.SHOP_ESTABLISHMENT, False),
    ],
    "partnership": [
        (_T.PARTNERSHIP_DEED, True),
        (_T.PAN_CARD, True),
        (_T.PARTNERS_AADHAAR, True),
        (_T.GST_CERTIFICATE, True),
        (_T.BANK_DETAILS, True),
        (_T.CANCELLED_CHEQUE, True),
        (_T.REGISTRATION_CERTIFICATE, True),
    ],
    "llp": [
        (_T.LLP_AGREEMENT, True),
        (_T.INCORPORATION_CERTIFICATE, True),
        (_T.PAN_CARD, True),
        (_T.PARTNERS_AADHAAR, True),
        (_T.GST_CERTIFICATE, True),
        (_T.BANK_DETAILS, True),
        (_T.CANCELLED_CHEQUE, True),
    ],
    "private_limited": [
        (_T.MOA_AOA, True),
        (_T.INCORPORATION_CERTIFICATE, True),
        (_T.CIN_CERTIFICATE, True),
        (_T.PAN_CARD, True),
        (_T.DIRECTORS_DIN, True),
        (_T.GST_CERTIFICATE, True),
        (_T.BANK_DETAILS, True),
        (_T.CANCELLED_CHEQUE, True),
        (_T.SHARE_CERTIFICATES, False),
    ],
}

_Clue = tuple[KycDocumentType, tuple[str, ...], tuple[str, ...]]

# (type, text phrases, file name fragments); first match wins, bank documents
# are checked between the two lists
_ID_CLUES: list[_Clue] = [
    (_T.PAN_CARD, ("permanent account number", "income tax department"), ("pan",)),
    (_T.AADHAAR_CARD, ("aadhaar", "आधार"), ("aadhaar", "aadhar")),
    (_T.GST_CERTIFICATE, ("gstin", "goods and services tax"), ("gst",)),
]
_ENTITY_CLUES: list[_Clue] = [
    (_T.PARTNERSHIP_DEED, ("partnership deed",), ("partnership",)),
    (
        _T.INCORPORATION_CERTIFICATE,
        ("certificate of incorporation", "incorporated"),
        ("incorporation",),
    ),
    (_T.MOA_AOA, ("memorandum", "articles of association"), ("moa", "aoa")),
    (_T.UTILITY_BILL, ("electricity bill", "utility bill"), ("utility", "electric")),
    (_T.RENT_AGREEMENT, ("rent agreement", "lease"), ("rent", "lease")),
]


class ChecklistStatus(str, Enum):
    PENDING = "pending"
    UPLOADED = "uploaded"
    VERIFIED = "verified"
    REJECTED = "rejected"


class KycChecklistItem(BaseModel):
    document_type: KycDocumentType
    required: bool
    status: ChecklistStatus = ChecklistStatus.PENDING
    document_id: str | None = None

    @property
    def outstanding(self) -> bool:
        return self.status in (ChecklistStatus.PENDING, ChecklistStatus.REJECTED)


def document_name(document_type: KycDocumentType) -> str:
    return DOCUMENT_NAMES[document_type]


def default_checklist(business_type: str | None) -> list[KycChecklistItem]:
    """Checklist for a business type (unknown types get the proprietorship list)."""
    template = CHECKLIST_TEMPLATES.get(business_type or "", CHECKLIST_TEMPLATES["proprietorship"])
    return [KycChecklistItem(document_type=t, required=required) for t, required in template]


def classify_kyc_document(file_name: str | None, text: str) -> KycDocumentType:
    """Guess the KYC document type from its file name and read text.

    File name fragments match the start of a word (``pan_card.jpg``,
    ``PANcard.png``), never the middle (``company.pdf``).
    """
    lower_text = text.lower()
    words = [w for w in re.split(r"[^a-z0-9]+", (file_name or "").lower()) if w]

    def matches(phrases: tuple[str, ...], fragments: tuple[str, ...]) -> bool:
        return any(p in lower_text for p in phrases) or any(
            w.startswith(f) for w in words for f in fragments
        )

    for document_type, phrases, fragments in _ID_CLUES:
        if matches(phrases, fragments):
            return document_type

    if matches(("ifsc", "account number"), ("cheque", "bank")):
        if matches(("cancelled",), ("cancelled",)):
            return _T.CANCELLED_CHEQUE
        return _T.BANK_DETAILS

    for document_type, phrases, fragments in _ENTITY_CLUES:
        if matches(phrases, fragments):
            return document_type
    return _T.OTHER


def mark(
    checklist: list[KycChecklistItem],
    document_type: KycDocumentType,
    status: ChecklistStatus,
    document_id: str,
) -> bool:
    """Set the status of the item for ``document_type``.

    Returns:
        False when the checklist has no such item
    """
    for item in checklist:
        if item.document_type == document_type:
            item.status = status
            item.document_id = document_id
            return True
    return False


def progress(checklist: list[KycChecklistItem]) -> int:
    """Percentage of checklist items uploaded or verified."""
    if not checklist:
        return 100
    done = sum(1 for item in checklist if not item.outstanding)
    return round(done * 100 / len(checklist))


def required_complete(checklist: list[KycChecklistItem]) -> bool:
    return not any(item.required and item.outstanding for item in checklist)


def format_checklist(checklist: list[KycChecklistItem]) -> str:
    """Checklist message listing what is still missing."""
    outstanding = [item for item in checklist if item.outstanding]
    if not outstanding:
        return "✅ KYC complete! All documents have been uploaded."

    lines = ["📋 KYC document checklist"]
    required = [item for item in outstanding if item.required]
    optional = [item for item in outstanding if not item.required]
    if required:
        lines.append("")
        lines.append("Required:")
        lines.extend(
            f"{i}. ❌ {document_name(item.document_type)}" for i, item in enumerate(required, 1)
        )
    if optional:
        lines.append("")
        lines.append("Optional:")
        lines.extend(
            f"{i}. ⚪ {document_name(item.document_type)}" for i, item in enumerate(optional, 1)
        )
    done = len(checklist) - len(outstanding)
    lines.append("")
    lines.append(f"Progress: {done}/{len(checklist)} completed ({progress(checklist)}%)")
    return "\n".join(lines)
