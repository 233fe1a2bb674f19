"""
Recipient context dependency for notification routes.

Authentication is handled by the calling system. Requests identify the
acting recipient with the X-Recipient-Id header carrying the caller's
employee id, which is resolved to a Recipient through the identity
resolver.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from crewnotify.src.db.database import get_db
from crewnotify.src.services.exceptions import RecipientNotFoundError
from crewnotify.src.services.identity import DatabaseIdentityResolver
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("api")

RECIPIENT_HEADER = "X-Recipient-Id"


@dataclass
class RecipientContext:
    """
    The recipient a request acts for.

    Attributes:
        recipient_id: Internal recipient id for queries
        recipient_guid: Recipient GUID (rcp_xxx) for responses
        external_id: The calling system's employee id
    """
    recipient_id: int
    recipient_guid: str
    external_id: str


async def get_recipient_context(
    x_recipient_id: Optional[str] = Header(default=None, alias=RECIPIENT_HEADER),
    db: Session = Depends(get_db),
) -> RecipientContext:
    """
    FastAPI dependency resolving the X-Recipient-Id header.

    Raises:
        HTTPException 401: Header missing or unknown recipient
        HTTPException 403: Recipient is inactive
    """
    if not x_recipient_id or not x_recipient_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{RECIPIENT_HEADER} header is required",
        )

    try:
        recipient = DatabaseIdentityResolver(db).resolve_external(x_recipient_id.strip())
    except RecipientNotFoundError:
        logger.warning("Unknown recipient", extra={"external_id": x_recipient_id})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown recipient",
        )

    if not recipient.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Recipient is inactive",
        )

    return RecipientContext(
        recipient_id=recipient.id,
        recipient_guid=recipient.guid,
        external_id=recipient.external_id,
    )
