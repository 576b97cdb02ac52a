"""Intake state machine: drives document collection over a messaging channel.

One inbound event in, exactly one outbound reply out. Every event of one
identity is handled under that identity's session lock, so a second message
arriving mid-extraction waits for the first to finish.

States:
    idle → awaiting_document_category → awaiting_document → processing
    processing → idle (approved / rejected) | awaiting_confirmation (review)
    awaiting_confirmation → idle (approve / correct / reject)

KYC documents skip the invoice checks: they are classified, tick the
client's KYC checklist and wait for the accountant's verification, while the
session returns to idle.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from pydantic import BaseModel

from docintake.api import metrics
from docintake.channel.models import Button, InboundEvent, OutboundMessage
from docintake.collaborators.ledger import LedgerClient, LedgerError
from docintake.collaborators.review_queue import ReviewQueue, ReviewQueueError
from docintake.extraction.orchestrator import ExtractionOrchestrator
from docintake.extraction.schema import (
    Document,
    DocumentCategory,
    DocumentStatus,
    InvalidTransition,
    StructuredInvoiceResult,
)
from docintake.identity.identifiers import mask, normalize_identifier
from docintake.identity.models import Client, ClientStatus, Tenant
from docintake.identity.resolver import IdentityResolutionError, IdentityResolver
from docintake.identity.vendors import VendorRegistry
from docintake.intake import kyc, messages
from docintake.intake.documents import MEMORY_REF_PREFIX, DocumentRepository, invoice_key
from docintake.intake.kyc import ChecklistStatus, KycChecklistItem, KycDocumentType
from docintake.intake.messages import Intent
from docintake.session.manager import SessionManager, utcnow
from docintake.session.models import ConversationSession, RateLimited, SessionState
from docintake.shared.config import Settings
from docintake.storage.service import StorageService
from docintake.validation.engine import (
    ConfidenceEngine,
    ConfidenceVerdict,
    ReviewPriority,
    VerdictDecision,
)
from docintake.validation.rules import ValidationContext
from docintake.validation.tax_ids import GstinStateClassifier, JurisdictionClassifier

logger = logging.getLogger(__name__)


class MediaFetcher(Protocol):
    async def download_media(self, media_id: str) -> tuple[bytes, str]: ...


class DocumentNotFound(LookupError):
    """No document with the given id."""


class ProcessingOutcome(BaseModel):
    """What happened to one submitted document."""

    document: Document
    result: StructuredInvoiceResult
    verdict: ConfidenceVerdict
    checklist: list[KycChecklistItem] | None = None


class IntakeStateMachine:
    """Dispatch inbound events on (session state, intent)."""

    def __init__(
        self,
        settings: Settings,
        sessions: SessionManager,
        resolver: IdentityResolver,
        orchestrator: ExtractionOrchestrator,
        engine: ConfidenceEngine,
        documents: DocumentRepository,
        ledger: LedgerClient,
        review_queue: ReviewQueue,
        vendors: VendorRegistry,
        storage: StorageService | None = None,
        media: MediaFetcher | None = None,
        classifier: JurisdictionClassifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.engine = engine
        self.documents = documents
        self.ledger = ledger
        self.review_queue = review_queue
        self.vendors = vendors
        self.storage = storage
        self.media = media
        self.classifier = classifier or GstinStateClassifier()
        self.clock = clock
        self.processing_stale = timedelta(seconds=settings.processing_stale_seconds)

    # ------------------------------------------------------------------ entry

    async def handle(self, event: InboundEvent) -> list[OutboundMessage]:
        """Handle one conversational inbound event.

        Returns:
            Exactly one outbound reply
        """
        metrics.inbound_events_total.labels(channel=event.channel.value, kind=event.kind).inc()
        identity = self._identity(event)

        try:
            await self.sessions.check_rate_limit(f"{event.channel.value}:{identity}")
        except RateLimited as e:
            metrics.rate_limited_events_total.labels(channel=event.channel.value).inc()
            return [self._reply(event, messages.rate_limited(e.retry_after))]

        try:
            tenant = await self.resolver.resolve_tenant(event.endpoint)
        except IdentityResolutionError:
            return [self._reply(event, messages.IDENTITY_FAILURE)]

        async with self.sessions.serialized(f"{tenant.id}:{identity}"):
            session: ConversationSession | None = None
            try:
                session = await self.sessions.get_or_create(identity, tenant.id)
                return [await self._dispatch(event, tenant, session)]
            except IdentityResolutionError:
                if session is not None:
                    await self.sessions.clear(session)
                return [self._reply(event, messages.IDENTITY_FAILURE)]
            except Exception:
                logger.exception(f"Failed to handle event from {mask(identity)} (tenant {tenant.id})")
                if session is not None:
                    await self._reset_quietly(session)
                return [self._reply(event, messages.GENERIC_FAILURE)]

    async def handle_one_shot(self, event: InboundEvent) -> list[OutboundMessage]:
        """Process a document that arrives without a conversation (email).

        Returns:
            Exactly one outbound reply describing the outcome
        """
        metrics.inbound_events_total.labels(channel=event.channel.value, kind=event.kind).inc()
        identity = self._identity(event)
        try:
            await self.sessions.check_rate_limit(f"{event.channel.value}:{identity}")
        except RateLimited as e:
            metrics.rate_limited_events_total.labels(channel=event.channel.value).inc()
            return [self._reply(event, messages.rate_limited(e.retry_after))]

        try:
            tenant = await self.resolver.resolve_tenant(event.endpoint)
            client = await self.resolver.resolve_client(tenant, event.identity)
        except IdentityResolutionError:
            return [self._reply(event, messages.IDENTITY_FAILURE)]

        try:
            outcome = await self._submit(event, tenant, client, DocumentCategory.INVOICE)
        except Exception:
            logger.exception(f"Failed to process one-shot document from {mask(identity)}")
            return [self._reply(event, messages.GENERIC_FAILURE)]

        status = outcome.document.status
        if status == DocumentStatus.APPROVED:
            return [self._reply(event, messages.approved(outcome.result))]
        if status == DocumentStatus.NEEDS_REVIEW:
            text = f"{messages.review_pending()}\n\n{messages.summary(outcome.result)}"
            return [self._reply(event, text)]
        return [self._reply(event, messages.could_not_read())]

    async def apply_review_decision(self, document_id: str, decision: Intent) -> OutboundMessage | None:
        """Apply a reviewer's decision to a needs-review document.

        Args:
            document_id: Document under review
            decision: Intent.APPROVE, Intent.REJECT or Intent.CORRECT

        Returns:
            Notification for the submitting client (None if no reply address)

        Raises:
            DocumentNotFound: Unknown document
            InvalidTransition: Document is not awaiting review
            ValueError: Unsupported decision
            LedgerError / ReviewQueueError: Collaborator failure
        """
        if decision not in (Intent.APPROVE, Intent.REJECT, Intent.CORRECT):
            raise ValueError(f"Unsupported review decision: {decision}")

        document = await self.documents.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        if document.status != DocumentStatus.NEEDS_REVIEW:
            raise InvalidTransition(
                f"Document {document_id} is {document.status.value}, not awaiting review"
            )
        result = await self.documents.get_result(document_id)

        checklist: list[KycChecklistItem] = []
        if document.category.is_kyc:
            checklist = await self._apply_kyc_decision(document, decision)
        elif decision == Intent.APPROVE:
            if result is None:
                raise DocumentNotFound(f"No extraction result for {document_id}")
            await self._commit(document, result)
        elif decision == Intent.REJECT:
            await self._reject(document, result)
        else:
            await self.review_queue.route_to_manual_edit(document_id)
        await self.documents.save(document)
        logger.info(f"Review decision '{decision.value}' applied to document {document_id}")

        await self._release_pending_session(document)
        if not document.reply_to:
            return None
        if document.category.is_kyc:
            kyc_type = KycDocumentType(document.kyc_type or KycDocumentType.OTHER.value)
            text = messages.kyc_review_decision(decision.value, kyc_type, checklist)
        else:
            text = messages.review_decision(decision.value, result)
        return OutboundMessage(
            channel=document.channel,
            to=document.reply_to,
            reply_via=document.reply_via,
            text=text,
        )

    async def resubmit_pending_reviews(self) -> int:
        """Retry review-queue submissions that failed earlier.

        Documents decided in the meantime are dropped from the pending set.

        Returns:
            Number of documents handed to the review queue
        """
        submitted = 0
        for document_id, verdict in (await self.documents.pending_reviews()).items():
            document = await self.documents.get(document_id)
            result = await self.documents.get_result(document_id)
            if document is None or result is None or document.status != DocumentStatus.NEEDS_REVIEW:
                await self.documents.clear_review_pending(document_id)
                continue
            try:
                await self.review_queue.submit(document, result, verdict)
            except ReviewQueueError as e:
                logger.warning(f"Review queue still unavailable for document {document_id}: {e}")
                continue
            await self.documents.clear_review_pending(document_id)
            submitted += 1
        if submitted:
            logger.info(f"Resubmitted {submitted} documents to the review queue")
        return submitted

    async def document_content(self, document_id: str) -> tuple[bytes, str]:
        """Raw content of a submitted document, for reviewers.

        Returns:
            (content bytes, content type)

        Raises:
            DocumentNotFound: Unknown document, or its content is no longer kept
        """
        document = await self.documents.get(document_id)
        if document is None or not document.storage_ref:
            raise DocumentNotFound(document_id)
        if document.storage_ref.startswith(MEMORY_REF_PREFIX):
            content = await self.documents.get_content(document.storage_ref)
        elif self.storage is not None:
            content = await asyncio.to_thread(self.storage.download_bytes, document.storage_ref)
        else:
            content = None
        if content is None:
            raise DocumentNotFound(f"Content of document {document_id} is not available")
        return content, document.content_type or "application/octet-stream"

    # --------------------------------------------------------------- dispatch

    async def _dispatch(
        self, event: InboundEvent, tenant: Tenant, session: ConversationSession
    ) -> OutboundMessage:
        intent, category = messages.classify(event)
        logger.debug(
            f"Session {mask(session.identity)} state={session.state.value} intent={intent.value}"
        )

        if intent == Intent.CANCEL:
            await self.sessions.clear(session)
            return self._reply(event, messages.CANCELLED)

        if session.state == SessionState.PROCESSING:
            if self.clock() - session.state_changed_at <= self.processing_stale:
                return self._reply(event, messages.STILL_PROCESSING)
            logger.warning(f"Resetting stale processing session for {mask(session.identity)}")
            session = await self.sessions.clear(session)
            if intent != Intent.MEDIA:
                return self._reply(event, messages.SESSION_RESET)

        state = session.state

        if state == SessionState.AWAITING_CONFIRMATION:
            return await self._on_confirmation(event, session, intent)

        if intent == Intent.MEDIA:
            chosen = DocumentCategory.INVOICE
            if state == SessionState.AWAITING_DOCUMENT:
                chosen = DocumentCategory(session.context.get("category", chosen.value))
            return await self._process(event, tenant, session, chosen)

        if intent == Intent.CATEGORY and category is not None:
            await self.sessions.advance(
                session, state=SessionState.AWAITING_DOCUMENT, context={"category": category.value}
            )
            return self._reply(event, messages.document_prompt(category))

        if intent == Intent.UPLOAD:
            await self.sessions.advance(session, state=SessionState.AWAITING_DOCUMENT_CATEGORY)
            return self._reply(event, messages.category_prompt(), messages.CATEGORY_BUTTONS)

        if state == SessionState.AWAITING_DOCUMENT_CATEGORY and intent != Intent.MENU:
            return self._reply(event, messages.category_prompt(), messages.CATEGORY_BUTTONS)

        if state == SessionState.AWAITING_DOCUMENT and intent != Intent.MENU:
            chosen = DocumentCategory(session.context.get("category", DocumentCategory.INVOICE.value))
            return self._reply(event, messages.document_prompt(chosen))

        if state != SessionState.IDLE:
            await self.sessions.clear(session)
        return self._reply(
            event, messages.menu(tenant.greeting, event.sender_name), messages.MENU_BUTTONS
        )

    async def _on_confirmation(
        self, event: InboundEvent, session: ConversationSession, intent: Intent
    ) -> OutboundMessage:
        document_id = session.context.get("pending_document_id")
        document = await self.documents.get(document_id) if document_id else None
        if document is None or document.status != DocumentStatus.NEEDS_REVIEW:
            # decided elsewhere (reviewer) in the meantime
            await self.sessions.clear(session)
            if intent in (Intent.APPROVE, Intent.CORRECT, Intent.REJECT):
                return self._reply(event, messages.review_pending())
            return self._reply(event, messages.menu(None, event.sender_name), messages.MENU_BUTTONS)

        result = await self.documents.get_result(document.id)

        if intent == Intent.APPROVE and result is not None:
            try:
                await self._commit(document, result)
            except LedgerError:
                logger.exception(f"Ledger commit failed for confirmed document {document.id}")
                await self.sessions.clear(session)
                return self._reply(event, messages.review_pending())
            await self.documents.save(document)
            await self.sessions.clear(session)
            return self._reply(event, messages.approved(result))

        if intent == Intent.CORRECT:
            await self.review_queue.route_to_manual_edit(document.id)
            await self.sessions.clear(session)
            return self._reply(event, messages.CORRECTION_ROUTED)

        if intent == Intent.REJECT:
            await self._reject(document, result)
            await self.documents.save(document)
            await self.sessions.clear(session)
            return self._reply(event, messages.REJECTED_BY_CLIENT)

        return self._reply(event, messages.confirmation_reminder(), messages.CONFIRM_BUTTONS)

    async def _process(
        self,
        event: InboundEvent,
        tenant: Tenant,
        session: ConversationSession,
        category: DocumentCategory,
    ) -> OutboundMessage:
        session = await self.sessions.advance(
            session, state=SessionState.PROCESSING, context={"category": category.value}
        )
        client = await self._client_for(session, tenant, event)
        outcome = await self._submit(event, tenant, client, category)
        document, result, verdict = outcome.document, outcome.result, outcome.verdict

        if document.category.is_kyc and document.status == DocumentStatus.NEEDS_REVIEW:
            await self.sessions.clear(session)
            kyc_type = KycDocumentType(document.kyc_type or KycDocumentType.OTHER.value)
            return self._reply(event, messages.kyc_received(kyc_type, outcome.checklist or []))

        if document.status == DocumentStatus.APPROVED:
            await self.sessions.clear(session)
            return self._reply(event, messages.approved(result))

        if document.status == DocumentStatus.NEEDS_REVIEW:
            await self.sessions.advance(
                session,
                state=SessionState.AWAITING_CONFIRMATION,
                context={"pending_document_id": document.id},
                replace_context=True,
            )
            return self._reply(
                event, messages.needs_confirmation(result, verdict), messages.CONFIRM_BUTTONS
            )

        await self.sessions.clear(session)
        return self._reply(event, messages.could_not_read())

    # ---------------------------------------------------------------- pipeline

    async def _submit(
        self,
        event: InboundEvent,
        tenant: Tenant,
        client: Client,
        category: DocumentCategory,
    ) -> ProcessingOutcome:
        content, content_type = await self._fetch_content(event)
        metrics.document_size_bytes.observe(len(content))

        document = Document(
            tenant_id=tenant.id,
            client_id=client.id,
            channel=event.channel,
            category=category,
            file_name=event.file_name,
            content_type=content_type,
            reply_to=event.identity,
            reply_via=event.reply_via,
        )
        document.storage_ref = await self._store(document, content)
        await self.documents.save(document)
        try:
            return await self.process_document(document, content)
        except Exception:
            if not document.is_terminal and document.status != DocumentStatus.NEEDS_REVIEW:
                document.transition(DocumentStatus.REJECTED, self.clock())
                await self.documents.save(document)
            raise

    async def process_document(self, document: Document, content: bytes) -> ProcessingOutcome:
        """Extract, validate and route one stored document.

        Auto-approved documents are committed to the ledger (a ledger failure
        downgrades them to review); needs-review documents are queued.
        """
        document.transition(DocumentStatus.EXTRACTING, self.clock())
        await self.documents.save(document)

        extraction = await self.orchestrator.run(
            content, document.content_type or "application/octet-stream", document.category, document.id
        )
        result = extraction.result
        document.extraction_confidence = result.acceptance_confidence()
        document.transition(DocumentStatus.EXTRACTED, self.clock())
        await self.documents.save_result(result)

        if document.category.is_kyc:
            return await self._process_kyc(document, result)

        context = ValidationContext(
            today=self.clock().date(),
            is_duplicate=await self.documents.is_duplicate(document.tenant_id, result),
            classifier=self.classifier,
        )
        verdict = self.engine.evaluate(result, context)
        metrics.verdicts_total.labels(decision=verdict.decision.value).inc()

        document.transition(DocumentStatus.VALIDATED, self.clock())
        document.findings = verdict.findings
        document.verdict = verdict.decision.value
        document.review_reason = verdict.review_reason

        if verdict.decision == VerdictDecision.AUTO_APPROVE:
            try:
                await self._commit(document, result)
            except LedgerError as e:
                logger.error(f"Ledger commit failed for document {document.id}, sending to review: {e}")
                verdict = verdict.model_copy(
                    update={
                        "decision": VerdictDecision.NEEDS_REVIEW,
                        "review_reason": "Ledger unavailable during auto-approval",
                        "priority": ReviewPriority.LOW,
                    }
                )
                document.verdict = verdict.decision.value
                document.review_reason = verdict.review_reason

        if verdict.decision == VerdictDecision.NEEDS_REVIEW:
            document.transition(DocumentStatus.NEEDS_REVIEW, self.clock())
            await self._record_invoice(document, result)
            await self._queue_for_review(document, result, verdict)
        elif verdict.decision == VerdictDecision.REJECT:
            document.transition(DocumentStatus.REJECTED, self.clock())

        await self.documents.save(document)
        logger.info(
            f"Document {document.id} finished as {document.status.value} "
            f"(provider={result.provider_id}, score={verdict.score:.3f})"
        )
        return ProcessingOutcome(document=document, result=result, verdict=verdict)

    async def _commit(self, document: Document, result: StructuredInvoiceResult) -> None:
        vendor = await self.vendors.match_or_create(
            document.tenant_id, result.issuer.name, result.issuer.tax_id
        )
        await self.ledger.commit(document, result, vendor)
        document.transition(DocumentStatus.APPROVED, self.clock())
        await self._record_invoice(document, result)

    async def _reject(self, document: Document, result: StructuredInvoiceResult | None) -> None:
        document.transition(DocumentStatus.REJECTED, self.clock())
        if result is not None:
            key = invoice_key(document.tenant_id, result)
            if key is not None:
                await self.documents.forget_invoice(key, document.id)

    async def _apply_kyc_decision(
        self, document: Document, decision: Intent
    ) -> list[KycChecklistItem]:
        kyc_type = KycDocumentType(document.kyc_type or KycDocumentType.OTHER.value)
        if decision == Intent.APPROVE:
            document.transition(DocumentStatus.APPROVED, self.clock())
            return await self._update_checklist(document, kyc_type, ChecklistStatus.VERIFIED)
        if decision == Intent.REJECT:
            document.transition(DocumentStatus.REJECTED, self.clock())
            return await self._update_checklist(document, kyc_type, ChecklistStatus.REJECTED)
        await self.review_queue.route_to_manual_edit(document.id)
        return await self.documents.get_checklist(document.client_id) or []

    async def _record_invoice(self, document: Document, result: StructuredInvoiceResult) -> None:
        key = invoice_key(document.tenant_id, result)
        if key is not None:
            await self.documents.record_invoice(key, document.id)

    async def _queue_for_review(
        self, document: Document, result: StructuredInvoiceResult, verdict: ConfidenceVerdict
    ) -> None:
        try:
            await self.review_queue.submit(document, result, verdict)
        except ReviewQueueError as e:
            logger.error(f"Review queue unavailable for document {document.id}, will retry: {e}")
            await self.documents.mark_review_pending(document.id, verdict)

    async def _process_kyc(
        self, document: Document, result: StructuredInvoiceResult
    ) -> ProcessingOutcome:
        """Classify a KYC upload, tick the client's checklist and queue it for verification."""
        document.transition(DocumentStatus.VALIDATED, self.clock())
        checklist = None
        if result.is_empty():
            verdict = ConfidenceVerdict(
                decision=VerdictDecision.REJECT,
                score=0.0,
                review_reason="Nothing could be read from the document",
            )
            document.transition(DocumentStatus.REJECTED, self.clock())
        else:
            kyc_type = kyc.classify_kyc_document(document.file_name, result.raw_text)
            document.kyc_type = kyc_type.value
            verdict = ConfidenceVerdict(
                decision=VerdictDecision.NEEDS_REVIEW,
                score=result.provider_confidence,
                review_reason=f"{kyc.document_name(kyc_type)} awaiting KYC verification",
                priority=ReviewPriority.LOW,
            )
            document.transition(DocumentStatus.NEEDS_REVIEW, self.clock())
            checklist = await self._update_checklist(document, kyc_type, ChecklistStatus.UPLOADED)
            await self._queue_for_review(document, result, verdict)

        metrics.verdicts_total.labels(decision=verdict.decision.value).inc()
        document.verdict = verdict.decision.value
        document.review_reason = verdict.review_reason
        await self.documents.save(document)
        logger.info(
            f"KYC document {document.id} finished as {document.status.value} "
            f"(type={document.kyc_type})"
        )
        return ProcessingOutcome(
            document=document, result=result, verdict=verdict, checklist=checklist
        )

    async def _update_checklist(
        self, document: Document, kyc_type: KycDocumentType, status: ChecklistStatus
    ) -> list[KycChecklistItem]:
        """Record a KYC document on the client's checklist.

        The checklist is created on first use from the client's business type.
        A pending-onboarding client becomes active once every required
        document is in.
        """
        client = await self.resolver.store.get_client(document.client_id)
        checklist = await self.documents.get_checklist(document.client_id)
        if checklist is None:
            checklist = kyc.default_checklist(client.business_type if client else None)
        if not kyc.mark(checklist, kyc_type, status, document.id):
            logger.info(f"KYC type {kyc_type.value} is not on the checklist of {document.client_id}")
        await self.documents.save_checklist(document.client_id, checklist)

        if (
            client is not None
            and client.status == ClientStatus.PENDING_ONBOARDING
            and kyc.required_complete(checklist)
        ):
            await self.resolver.store.update_client(
                client.model_copy(update={"status": ClientStatus.ACTIVE})
            )
            logger.info(f"KYC complete for client {client.id}, client activated")
        return checklist

    # ---------------------------------------------------------------- helpers

    async def _client_for(
        self, session: ConversationSession, tenant: Tenant, event: InboundEvent
    ) -> Client:
        if session.client_id:
            client = await self.resolver.store.get_client(session.client_id)
            if client is not None:
                return client
        client = await self.resolver.resolve_client(tenant, event.identity)
        await self.sessions.advance(session, client_id=client.id)
        return client

    async def _fetch_content(self, event: InboundEvent) -> tuple[bytes, str]:
        if event.media_bytes is not None:
            return event.media_bytes, event.content_type or "application/octet-stream"
        if event.media_id is None or self.media is None:
            raise ValueError("Media event without content or media fetcher")
        content, mime = await self.media.download_media(event.media_id)
        return content, event.content_type or mime

    async def _store(self, document: Document, content: bytes) -> str:
        if self.storage is not None and self.storage.is_available():
            object_name = StorageService.object_name_for(
                document.tenant_id, document.id, document.file_name, document.content_type or ""
            )
            stored = await asyncio.to_thread(
                self.storage.upload_bytes, content, object_name, document.content_type
            )
            if stored.storage_ref is not None:
                return stored.storage_ref
            logger.warning(f"Object storage failed for {document.id}, keeping content in repository")
        return await self.documents.put_content(document.id, content)

    async def _release_pending_session(self, document: Document) -> None:
        if not document.reply_to:
            return
        identity = self._identity_of(document.reply_to)
        async with self.sessions.serialized(f"{document.tenant_id}:{identity}"):
            session = await self.sessions.get(identity, document.tenant_id)
            if (
                session is not None
                and session.state == SessionState.AWAITING_CONFIRMATION
                and session.context.get("pending_document_id") == document.id
            ):
                await self.sessions.clear(session)

    async def _reset_quietly(self, session: ConversationSession) -> None:
        try:
            await self.sessions.clear(session)
        except Exception:
            logger.exception(f"Could not reset session for {mask(session.identity)}")

    def _identity_of(self, raw: str) -> str:
        variants = normalize_identifier(raw, self.settings.default_country_code)
        return variants[0] if variants else raw

    def _identity(self, event: InboundEvent) -> str:
        return self._identity_of(event.identity)

    @staticmethod
    def _reply(
        event: InboundEvent, text: str, buttons: list[Button] | None = None
    ) -> OutboundMessage:
        return OutboundMessage(
            channel=event.channel,
            to=event.identity,
            text=text,
            buttons=buttons or [],
            reply_via=event.reply_via,
        )
