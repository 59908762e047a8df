"""
Message delivery through the Resend email API.

One call, no internal retry: a failed delivery is retried by the dispatch
loop on its next pass because the job stays pending.
"""

from dataclasses import dataclass, field

import httpx

from summary_mailer.config import settings
from summary_mailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DeliveryError(Exception):
    """Raised when the delivery service rejects or cannot receive a message."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


@dataclass(slots=True)
class OutgoingMessage:
    recipients: list[str]
    subject: str
    plain_text_body: str
    html_body: str | None = None
    from_display_name: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


def resolve_from_name(requested: str | None) -> str:
    """Only allow-listed display names are honored."""
    name = (requested or "").strip()
    if name in settings.ALLOWED_FROM_NAMES:
        return name
    return settings.DEFAULT_FROM_NAME


class DeliveryService:
    """Client for the Resend send endpoint."""

    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self._client = client

    def _build_payload(self, message: OutgoingMessage) -> dict:
        from_name = resolve_from_name(message.from_display_name)
        payload = {
            "from": f"{from_name} <{settings.SENDER_ADDRESS}>",
            "to": message.recipients,
            "subject": message.subject,
            "text": message.plain_text_body,
        }
        if message.html_body:
            payload["html"] = message.html_body
        return payload

    async def send(self, message: OutgoingMessage) -> None:
        """
        Deliver one message.

        Raises:
            DeliveryError: Missing API key, transport failure or non-2xx response
        """
        if not self.api_key:
            raise DeliveryError("Missing RESEND_API_KEY")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(message)

        try:
            if self._client is not None:
                response = await self._client.post(settings.RESEND_API_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS) as client:
                    response = await client.post(settings.RESEND_API_URL, json=payload, headers=headers)
        except httpx.RequestError as e:
            raise DeliveryError(f"Delivery request failed: {e}") from e

        if response.status_code >= 400:
            detail = response.text
            raise DeliveryError(
                f"Resend error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                detail=detail,
            )

        logger.info(
            "Message delivered",
            recipient_count=len(message.recipients),
            subject_length=len(message.subject),
            **message.tags,
        )
