"""WhatsApp Cloud API client (Graph API).

Sends text and interactive-button replies and downloads inbound media.
Transient transport errors are retried with exponential backoff.

See: https://developers.facebook.com/docs/whatsapp/cloud-api/reference/messages
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docintake.channel.models import OutboundMessage
from docintake.identity.identifiers import mask
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)

_TRANSIENT = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError)


class ChannelError(Exception):
    """Outbound message could not be delivered or media could not be fetched."""


class WhatsAppClient:
    """Minimal Graph API client for one business account."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize WhatsApp client.

        Args:
            settings: Application settings (token, API base URL)
            client: Optional preconfigured HTTP client
        """
        self.settings = settings
        self._base = settings.whatsapp_api_base.rstrip("/")
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.settings.whatsapp_token)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=30.0,
                headers={"Authorization": f"Bearer {self.settings.whatsapp_token}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_payload(message: OutboundMessage) -> dict[str, Any]:
        """Graph API message body for a text or interactive-button reply."""
        if not message.buttons:
            return {
                "messaging_product": "whatsapp",
                "to": message.to,
                "type": "text",
                "text": {"body": message.text},
            }
        return {
            "messaging_product": "whatsapp",
            "to": message.to,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": message.text[:1024]},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b.id, "title": b.title}}
                        for b in message.buttons
                    ]
                },
            },
        }

    async def send(self, message: OutboundMessage) -> None:
        """Send one reply.

        Raises:
            ChannelError: Not configured, no phone number id, or API failure
        """
        if not self.is_configured():
            raise ChannelError("APP_WHATSAPP_TOKEN not set")
        if not message.reply_via:
            raise ChannelError("No phone_number_id to reply from")
        try:
            await self._post(f"{self._base}/{message.reply_via}/messages", self.build_payload(message))
        except httpx.HTTPError as e:
            raise ChannelError(f"Failed to send message to {mask(message.to)}: {e}") from e
        logger.info(f"Sent WhatsApp reply to {mask(message.to)}")

    async def download_media(self, media_id: str) -> tuple[bytes, str]:
        """Fetch inbound media content.

        Returns:
            Tuple of (content bytes, MIME type)

        Raises:
            ChannelError: If the media URL or content cannot be fetched
        """
        if not self.is_configured():
            raise ChannelError("APP_WHATSAPP_TOKEN not set")
        try:
            meta = await self._get(f"{self._base}/{media_id}")
            info = meta.json()
            content = await self._get(info["url"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ChannelError(f"Failed to download media {media_id}: {e}") from e
        mime = info.get("mime_type") or content.headers.get("content-type", "application/octet-stream")
        return content.content, mime

    @retry(
        retry=retry_if_exception_type(_TRANSIENT),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        response = await self._http().post(url, json=body)
        response.raise_for_status()
        return response

    @retry(
        retry=retry_if_exception_type(_TRANSIENT),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _get(self, url: str) -> httpx.Response:
        response = await self._http().get(url)
        response.raise_for_status()
        return response
