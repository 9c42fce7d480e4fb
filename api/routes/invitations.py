"""Admin invitation email endpoint."""

import structlog
from fastapi import APIRouter, Header

from middleware.error_handler import APIError
from models.records import InvitationEmailRequest
from services.email_service import EmailSendError, email_service
from utils.helpers import mask_email

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/email")
async def send_invitation_email(
    invitation: InvitationEmailRequest,
    origin: str | None = Header(None),
) -> dict:
    """
    Email an admin invitation with its accept link.
    The link points at the calling site when its Origin is an allowed
    invitation origin, and at APP_BASE_URL otherwise.
    """
    logger.info("invitation_email_requested", to=mask_email(invitation.email), role=invitation.role)

    try:
        return await email_service.send_invitation(invitation, origin=origin)
    except EmailSendError as e:
        raise APIError(str(e), status_code=500, error_code="email_send_error") from e
