"""
Email service for sending transactional emails via Resend.
Used for admin invitation emails.
"""

import time
from html import escape

import httpx
import structlog

from config import settings
from models.records import InvitationEmailRequest
from utils.helpers import mask_email
from utils.metrics import track_external_service

logger = structlog.get_logger()

INVITATION_EXPIRY_DAYS = 7


class EmailSendError(Exception):
    """The email provider rejected or failed the send."""


def build_invite_url(origin: str | None, invitation_token: str) -> str:
    """
    Accept link for an invitation.

    The caller's Origin is used only when it is one of the configured
    invitation origins; anything else gets APP_BASE_URL.
    """
    base = settings.app_base_url.rstrip("/")
    if origin:
        candidate = origin.rstrip("/")
        if candidate in settings.allowed_invitation_origins:
            base = candidate
        else:
            logger.warning("invitation_origin_rejected", origin=candidate)
    return f"{base}/admin/accept-invitation?token={invitation_token}"


def render_invitation_email(request: InvitationEmailRequest, invite_url: str) -> tuple[str, str]:
    """
    Render the invitation subject and HTML body.

    Returns:
        Tuple of (subject, html)
    """
    role_label = request.role_label
    article = "a" if role_label == "Super Admin" else "an"
    inviter = f"{escape(request.inviter_name)} has" if request.inviter_name else "You have been"
    url = escape(invite_url, quote=True)

    subject = f"You've been invited to join SettleSmart AI as {role_label}"
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h1 style="color: #333; margin-bottom: 20px;">Welcome to SettleSmart AI!</h1>
          <p style="color: #555; font-size: 16px; line-height: 1.5;">
            {inviter} invited you to join SettleSmart AI as {article} {role_label}.
          </p>
          <p style="color: #555; font-size: 16px; line-height: 1.5;">
            Click the button below to accept your invitation and set up your account:
          </p>
          <div style="text-align: center; margin: 30px 0;">
            <a href="{url}"
               style="background-color: #2563eb; color: white; padding: 14px 28px; text-decoration: none; border-radius: 6px; font-weight: bold; display: inline-block;">
              Accept Invitation
            </a>
          </div>
          <p style="color: #888; font-size: 14px; line-height: 1.5;">
            Or copy and paste this link into your browser:
          </p>
          <p style="color: #2563eb; font-size: 14px; word-break: break-all;">{url}</p>
          <p style="color: #888; font-size: 14px; line-height: 1.5; margin-top: 30px;">
            This invitation will expire in {INVITATION_EXPIRY_DAYS} days. If you didn't expect this invitation, you can safely ignore this email.
          </p>
          <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
          <p style="color: #888; font-size: 12px; text-align: center;">
            SettleSmart AI - Real Estate Management Platform
          </p>
        </div>
    """
    return subject, html


class EmailService:
    """Service for sending emails via the Resend API."""

    def __init__(self) -> None:
        self.api_key = settings.resend_api_key
        self.api_url = settings.resend_api_url
        self.from_address = settings.invitation_from

    async def send(self, to: str, subject: str, html_body: str) -> dict:
        """
        Send an email via Resend.

        Args:
            to: Recipient email address
            subject: Email subject line
            html_body: HTML body

        Returns:
            Provider send result (contains the message id)

        Raises:
            EmailSendError: If the provider is not configured or the send fails
        """
        if not self.api_key:
            logger.warning("email_not_sent_no_api_key", to=mask_email(to), subject=subject)
            raise EmailSendError("RESEND_API_KEY is not configured")

        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )

        except httpx.HTTPError as e:
            track_external_service("resend", "error", time.time() - start_time)
            logger.error("email_send_error", to=mask_email(to), subject=subject, error=str(e))
            raise EmailSendError(str(e)) from e

        if response.status_code not in (200, 201, 202):
            track_external_service("resend", "error", time.time() - start_time)
            logger.error(
                "email_send_failed",
                to=mask_email(to),
                subject=subject,
                status=response.status_code,
                response=response.text[:500],
            )
            raise EmailSendError(f"Resend returned {response.status_code}: {response.text[:200]}")

        track_external_service("resend", "success", time.time() - start_time)
        result = response.json() if response.content else {}
        logger.info("email_sent", to=mask_email(to), subject=subject, email_id=result.get("id"))
        return result

    async def send_invitation(self, request: InvitationEmailRequest, origin: str | None = None) -> dict:
        """Send an admin invitation email with a 7-day accept link."""
        invite_url = build_invite_url(origin, request.invitation_token)
        subject, html = render_invitation_email(request, invite_url)
        return await self.send(request.email, subject, html)


# Singleton instance
email_service = EmailService()
