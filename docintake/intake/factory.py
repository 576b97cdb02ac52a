"""Wire the intake state machine from configuration."""

import logging

from docintake.channel.whatsapp import WhatsAppClient
from docintake.collaborators.ledger import HttpLedgerClient
from docintake.collaborators.review_queue import HttpReviewQueue
from docintake.extraction.factory import create_provider_chain
from docintake.extraction.orchestrator import ExtractionOrchestrator
from docintake.identity.resolver import IdentityResolver
from docintake.identity.store import IdentityStore, InMemoryIdentityStore
from docintake.identity.vendors import VendorRegistry
from docintake.intake.documents import (
    DocumentRepository,
    InMemoryDocumentRepository,
    RedisDocumentRepository,
)
from docintake.intake.machine import IntakeStateMachine
from docintake.session.backends import create_session_backend
from docintake.session.manager import SessionManager
from docintake.shared.config import Settings
from docintake.storage.service import StorageService
from docintake.validation.engine import ConfidenceEngine

logger = logging.getLogger(__name__)


def create_identity_store(settings: Settings) -> IdentityStore:
    """Identity store seeded from settings.tenants_file when configured."""
    if settings.tenants_file:
        return InMemoryIdentityStore.from_file(
            settings.tenants_file, settings.default_country_code
        )
    logger.warning("No tenants file configured; identity store starts empty")
    return InMemoryIdentityStore(settings.default_country_code)


def create_document_repository(settings: Settings) -> DocumentRepository:
    if settings.session_backend == "memory":
        return InMemoryDocumentRepository()
    return RedisDocumentRepository(settings.redis_url, content_ttl_seconds=settings.session_ttl_seconds)


def create_session_manager(settings: Settings) -> SessionManager:
    return SessionManager(create_session_backend(settings.session_backend, settings.redis_url), settings)


def build_state_machine(
    settings: Settings,
    whatsapp: WhatsAppClient | None = None,
    identity_store: IdentityStore | None = None,
) -> IntakeStateMachine:
    """Build the state machine and all its collaborators.

    Args:
        settings: Application settings
        whatsapp: Channel client used to download inbound media
        identity_store: Identity store (defaults to the configured one)

    Returns:
        Ready-to-use IntakeStateMachine
    """
    store = identity_store or create_identity_store(settings)
    machine = IntakeStateMachine(
        settings=settings,
        sessions=create_session_manager(settings),
        resolver=IdentityResolver(store, settings),
        orchestrator=ExtractionOrchestrator(
            create_provider_chain(settings), settings.acceptance_floor
        ),
        engine=ConfidenceEngine(settings),
        documents=create_document_repository(settings),
        ledger=HttpLedgerClient(settings),
        review_queue=HttpReviewQueue(settings),
        vendors=VendorRegistry(store),
        storage=StorageService(settings),
        media=whatsapp,
    )
    logger.info(
        f"Intake state machine ready (sessions={settings.session_backend}, "
        f"providers={settings.provider_order})"
    )
    return machine
