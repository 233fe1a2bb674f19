"""
Recipient identity resolution.

The engine only needs a stable recipient id. IdentityResolver is the seam
where the calling system maps its own employee/user records onto that id;
DatabaseIdentityResolver is the default, backed by the recipients table.
"""

from typing import Iterable, List, Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from crewnotify.src.models.recipient import Recipient
from crewnotify.src.services.exceptions import RecipientNotFoundError, ValidationError
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


@runtime_checkable
class IdentityResolver(Protocol):
    """Resolve opaque recipient ids to Recipient records."""

    def resolve(self, recipient_id: int) -> Recipient:
        """Return the recipient or raise RecipientNotFoundError."""
        ...


class DatabaseIdentityResolver:
    """IdentityResolver backed by the recipients table."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, recipient_id: int) -> Recipient:
        recipient = (
            self.db.query(Recipient)
            .filter(Recipient.id == recipient_id)
            .first()
        )
        if not recipient:
            raise RecipientNotFoundError(recipient_id)
        return recipient

    def resolve_external(self, external_id: str) -> Recipient:
        """Resolve by the calling system's employee id."""
        recipient = (
            self.db.query(Recipient)
            .filter(Recipient.external_id == external_id)
            .first()
        )
        if not recipient:
            raise RecipientNotFoundError(external_id)
        return recipient

    def list_active(self, recipient_ids: Optional[Iterable[int]] = None) -> List[Recipient]:
        """Active recipients, optionally restricted to the given ids."""
        query = self.db.query(Recipient).filter(Recipient.is_active.is_(True))
        if recipient_ids is not None:
            query = query.filter(Recipient.id.in_(list(recipient_ids)))
        return query.order_by(Recipient.id).all()

    def register(
        self,
        external_id: str,
        name: str,
        email: Optional[str] = None,
    ) -> Recipient:
        """
        Create a recipient, or update name/email if the external id exists.

        Raises:
            ValidationError: If external_id or name is blank
        """
        if not external_id or not external_id.strip():
            raise ValidationError("external_id is required", field="external_id")
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")

        recipient = (
            self.db.query(Recipient)
            .filter(Recipient.external_id == external_id)
            .first()
        )
        if recipient:
            recipient.name = name.strip()
            recipient.email = email
        else:
            recipient = Recipient(external_id=external_id, name=name.strip(), email=email)
            self.db.add(recipient)

        self.db.commit()
        self.db.refresh(recipient)
        logger.info(
            "Registered recipient",
            extra={"guid": recipient.guid, "external_id": external_id},
        )
        return recipient
