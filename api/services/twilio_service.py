"""
Twilio WhatsApp service.
Downloads inbound voice-note media and sends text replies.
"""

import time

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings
from utils.helpers import mask_phone_number, truncate_text
from utils.metrics import track_external_service

logger = structlog.get_logger(__name__)

# Twilio rejects WhatsApp bodies longer than this
MAX_BODY_LENGTH = 1600


class TwilioNotConfiguredError(RuntimeError):
    """Twilio credentials are missing."""


class TwilioService:
    """Service for the Twilio REST API (WhatsApp channel)."""

    def __init__(self):
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.base_url = settings.twilio_api_url

    def _get_auth(self) -> httpx.BasicAuth:
        """Get basic auth credentials."""
        if not self.account_sid or not self.auth_token:
            raise TwilioNotConfiguredError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be configured")
        return httpx.BasicAuth(self.account_sid, self.auth_token)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def download_media(self, media_url: str) -> bytes:
        """
        Download inbound media (Twilio redirects to the storage URL).

        Args:
            media_url: MediaUrl0 from the webhook

        Returns:
            Raw media bytes
        """
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                response = await client.get(media_url, auth=self._get_auth())
                response.raise_for_status()
                content = response.content

        except httpx.HTTPStatusError as e:
            track_external_service("twilio", "error", time.time() - start_time)
            logger.error("twilio_media_download_error", status_code=e.response.status_code)
            raise

        track_external_service("twilio", "success", time.time() - start_time)
        logger.info("twilio_media_downloaded", size=len(content))
        return content

    async def send_message(self, from_number: str, to_number: str, body: str) -> dict:
        """
        Send a WhatsApp text message.

        Not retried here: a resend could deliver the message twice.

        Args:
            from_number: Sender address ("whatsapp:+...")
            to_number: Recipient address ("whatsapp:+...")
            body: Message text

        Returns:
            Twilio message resource
        """
        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        body = truncate_text(body, MAX_BODY_LENGTH)
        start_time = time.time()

        logger.info(
            "twilio_sending_message",
            to=mask_phone_number(to_number),
            body_length=len(body),
        )

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    url,
                    auth=self._get_auth(),
                    data={"From": from_number, "To": to_number, "Body": body},
                )
                response.raise_for_status()
                result = response.json()

        except httpx.HTTPStatusError as e:
            track_external_service("twilio", "error", time.time() - start_time)
            logger.error(
                "twilio_send_error",
                status_code=e.response.status_code,
                response=e.response.text[:500],
                to=mask_phone_number(to_number),
            )
            raise

        track_external_service("twilio", "success", time.time() - start_time)
        logger.info("twilio_message_sent", message_sid=result.get("sid"), to=mask_phone_number(to_number))
        return result


# Singleton instance
twilio_service = TwilioService()
