"""FastAPI application for conversational document intake.

Production-ready API with:
- WhatsApp Cloud API webhook (verification handshake + inbound messages)
- Email webhook for one-shot document submission
- Review decision endpoint for the review queue
- Health and readiness checks for Kubernetes
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import base64
import binascii
import logging
import time
from typing import Any, Literal

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from docintake.api import metrics
from docintake.channel.models import InboundEvent, OutboundMessage, parse_whatsapp_payload
from docintake.channel.whatsapp import ChannelError, WhatsAppClient
from docintake.collaborators.ledger import LedgerError
from docintake.collaborators.review_queue import ReviewQueueError
from docintake.extraction.schema import DocumentChannel, InvalidTransition
from docintake.intake.factory import build_state_machine
from docintake.intake.machine import DocumentNotFound
from docintake.intake.messages import Intent
from docintake.shared.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Document Intake Service",
    description="Conversational intake, extraction and validation of financial documents",
    version=settings.service_version,
)

whatsapp_client = WhatsAppClient(settings)
state_machine = build_state_machine(settings, whatsapp=whatsapp_client)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, bool] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    status: str
    events: int = 0


class EmailAttachment(BaseModel):
    filename: str | None = None
    content_type: str = "application/octet-stream"
    content_base64: str


class EmailWebhookRequest(BaseModel):
    """Inbound email forwarded by the mail provider."""

    sender: str
    recipient: str
    subject: str | None = None
    attachments: list[EmailAttachment] = Field(default_factory=list)


class EmailWebhookResponse(BaseModel):
    replies: list[str]


class ReviewDecisionRequest(BaseModel):
    decision: Literal["approve", "reject", "correct"]


class ReviewDecisionResponse(BaseModel):
    document_id: str
    status: str
    notified: bool


async def deliver(replies: list[OutboundMessage]) -> None:
    """Send replies over WhatsApp; delivery failures are logged, never raised."""
    for reply in replies:
        try:
            await whatsapp_client.send(reply)
        except ChannelError as e:
            logger.error(f"Reply delivery failed: {e}")


async def process_whatsapp_events(events: list[InboundEvent]) -> None:
    for event in events:
        replies = await state_machine.handle(event)
        await deliver(replies)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for Kubernetes liveness checks."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness checks.

    Object storage is only checked when enabled.
    """
    checks = {"whatsapp_configured": whatsapp_client.is_configured()}
    if settings.storage_enabled and state_machine.storage is not None:
        checks["storage"] = state_machine.storage.health_check()
    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/webhooks/whatsapp", response_class=PlainTextResponse, tags=["Webhooks"])
def verify_whatsapp_webhook(
    mode: str | None = Query(None, alias="hub.mode"),
    verify_token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
) -> PlainTextResponse:
    """Webhook verification handshake.

    Echoes ``hub.challenge`` only when the mode is 'subscribe' and the token
    matches the configured verify token.
    """
    if (
        mode == "subscribe"
        and settings.whatsapp_verify_token
        and verify_token == settings.whatsapp_verify_token
    ):
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("WhatsApp webhook verification failed")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@app.post("/webhooks/whatsapp", response_model=WebhookAck, tags=["Webhooks"])
async def receive_whatsapp_webhook(request: Request, background_tasks: BackgroundTasks) -> WebhookAck:
    """Receive inbound WhatsApp messages.

    Always acknowledged with 200 so the platform does not redeliver; events
    are processed after the response is sent.
    """
    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning("Ignoring WhatsApp webhook with invalid JSON body")
        return WebhookAck(status="ignored")
    if not isinstance(payload, dict):
        return WebhookAck(status="ignored")

    try:
        events = parse_whatsapp_payload(payload)
    except (AttributeError, TypeError, IndexError) as e:
        logger.warning(f"Ignoring malformed WhatsApp webhook payload: {e}")
        return WebhookAck(status="ignored")
    if events:
        background_tasks.add_task(process_whatsapp_events, events)
    return WebhookAck(status="ok", events=len(events))


@app.post("/webhooks/email", response_model=EmailWebhookResponse, tags=["Webhooks"])
async def receive_email_webhook(body: EmailWebhookRequest) -> EmailWebhookResponse:
    """Process every attachment of an inbound email as a one-shot intake.

    Raises:
        HTTPException: 400 if there are no attachments or one is not valid base64
    """
    if not body.attachments:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No attachments")

    events = []
    for attachment in body.attachments:
        try:
            content = base64.b64decode(attachment.content_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Attachment {attachment.filename or ''} is not valid base64",
            ) from e
        if not content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty attachment")
        events.append(
            InboundEvent(
                channel=DocumentChannel.EMAIL,
                identity=str(body.sender),
                endpoint=str(body.recipient),
                kind="media",
                text=body.subject,
                media_bytes=content,
                content_type=attachment.content_type,
                file_name=attachment.filename,
            )
        )

    replies: list[str] = []
    for event in events:
        for reply in await state_machine.handle_one_shot(event):
            replies.append(reply.text)
    return EmailWebhookResponse(replies=replies)


@app.post(
    "/api/v1/reviews/{document_id}/decision",
    response_model=ReviewDecisionResponse,
    tags=["Reviews"],
)
async def review_decision(document_id: str, body: ReviewDecisionRequest) -> ReviewDecisionResponse:
    """Apply a reviewer's decision and notify the submitting client.

    Raises:
        HTTPException: 404 unknown document, 409 not awaiting review,
            502 ledger or review queue failure
    """
    try:
        notification = await state_machine.apply_review_decision(document_id, Intent(body.decision))
    except DocumentNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found") from e
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except (LedgerError, ReviewQueueError) as e:
        logger.error(f"Review decision for {document_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Downstream service unavailable"
        ) from e

    notified = False
    if notification is not None and notification.channel == DocumentChannel.WHATSAPP:
        try:
            await whatsapp_client.send(notification)
            notified = True
        except ChannelError as e:
            logger.error(f"Review notification failed for {document_id}: {e}")

    document = await state_machine.documents.get(document_id)
    return ReviewDecisionResponse(
        document_id=document_id,
        status=document.status.value if document else "unknown",
        notified=notified,
    )


@app.get("/api/v1/documents/{document_id}/content", tags=["Reviews"])
async def document_content(document_id: str) -> Response:
    """Raw file of a submitted document, for the reviewer deciding on it.

    Raises:
        HTTPException: 404 unknown document or content no longer available
    """
    try:
        content, content_type = await state_machine.document_content(document_id)
    except DocumentNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found") from e
    return Response(content=content, media_type=content_type)
