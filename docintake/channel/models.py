"""Channel-agnostic inbound events and outbound messages.

WhatsApp Cloud API webhook payloads are flattened into ``InboundEvent``s here
so the state machine never sees the Meta JSON shape.

See: https://developers.facebook.com/docs/whatsapp/cloud-api/webhooks/payload-examples
"""

import logging
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from docintake.extraction.schema import DocumentChannel

logger = logging.getLogger(__name__)

EventKind = Literal["text", "interactive", "media", "other"]

MEDIA_TYPES = ("image", "document")


class InboundEvent(BaseModel):
    """One inbound message from a sender.

    Attributes:
        identity: Sender phone number / email as received
        endpoint: Channel endpoint the message was addressed to (tenant lookup)
        reply_via: Channel-specific handle to reply from (WhatsApp phone_number_id)
        media_id: Channel media handle to download (WhatsApp)
        media_bytes: Inline media content (email attachments)
    """

    channel: DocumentChannel
    identity: str
    endpoint: str
    reply_via: str | None = None
    message_id: str | None = None
    kind: EventKind = "text"
    text: str | None = None
    reply_id: str | None = None
    media_id: str | None = None
    media_bytes: bytes | None = None
    content_type: str | None = None
    file_name: str | None = None
    sender_name: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Button(BaseModel):
    id: str
    title: str = Field(max_length=20)


class OutboundMessage(BaseModel):
    """One reply to a sender; buttons render as interactive reply buttons."""

    channel: DocumentChannel
    to: str
    text: str
    buttons: list[Button] = Field(default_factory=list, max_length=3)
    reply_via: str | None = None


def _timestamp(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (TypeError, ValueError):
        return datetime.now(UTC)


def parse_whatsapp_payload(payload: dict[str, Any]) -> list[InboundEvent]:
    """Flatten a WhatsApp Cloud API webhook payload into inbound events.

    Delivery/read status callbacks carry no messages and yield nothing.

    Args:
        payload: Webhook JSON body

    Returns:
        Inbound events in payload order
    """
    events: list[InboundEvent] = []
    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value") or {}
            metadata = value.get("metadata") or {}
            endpoint = metadata.get("display_phone_number") or ""
            contacts = value.get("contacts") or [{}]
            sender_name = (contacts[0].get("profile") or {}).get("name")

            for message in value.get("messages", []) or []:
                msg_type = message.get("type")
                event = InboundEvent(
                    channel=DocumentChannel.WHATSAPP,
                    identity=message.get("from", ""),
                    endpoint=endpoint,
                    reply_via=metadata.get("phone_number_id"),
                    message_id=message.get("id"),
                    sender_name=sender_name,
                    received_at=_timestamp(message.get("timestamp")),
                    kind="other",
                )
                if msg_type == "text":
                    event.kind = "text"
                    event.text = (message.get("text") or {}).get("body", "")
                elif msg_type == "interactive":
                    interactive = message.get("interactive") or {}
                    reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                    event.kind = "interactive"
                    event.reply_id = reply.get("id")
                    event.text = reply.get("title")
                elif msg_type == "button":
                    event.kind = "interactive"
                    event.reply_id = (message.get("button") or {}).get("payload")
                    event.text = (message.get("button") or {}).get("text")
                elif msg_type in MEDIA_TYPES:
                    media = message.get(msg_type) or {}
                    event.kind = "media"
                    event.media_id = media.get("id")
                    event.content_type = media.get("mime_type")
                    event.file_name = media.get("filename")
                    event.text = media.get("caption")
                else:
                    logger.debug(f"Ignoring unsupported WhatsApp message type: {msg_type}")

                if not event.identity or not event.endpoint:
                    logger.warning("WhatsApp message without sender or endpoint, skipping")
                    continue
                events.append(event)
    return events
