"""
Notification store: persisted notification records and their lifecycle.

Provides:
- create_and_send: persist first, then attempt delivery unless deferred
- deliver: the single delivery branch shared by immediate sends and
  scheduled sweeps
- Lifecycle transitions (read, read-all, archive, delivered, sent)
- Listing, unread count and type x status statistics
- Queries used by the dedup guard and the scheduled dispatcher
- Explicit cleanup of old read/archived records
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crewnotify.src.models.notification import (
    Notification,
    NotificationPriority,
    NotificationStatus,
    RelatedEntityKind,
)
from crewnotify.src.services.delivery_router import DeliveryOutcome, DeliveryRouter, RetryPolicy
from crewnotify.src.services.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from crewnotify.src.services.identity import DatabaseIdentityResolver, IdentityResolver
from crewnotify.src.services.notification_types import NotificationTypeRegistry, get_type_registry
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


PENDING = NotificationStatus.PENDING.value
SENT = NotificationStatus.SENT.value
DELIVERED = NotificationStatus.DELIVERED.value
READ = NotificationStatus.READ.value
ARCHIVED = NotificationStatus.ARCHIVED.value

# Allowed lifecycle transitions. read -> read is the idempotent re-read.
VALID_TRANSITIONS: Dict[str, set] = {
    PENDING: {SENT, DELIVERED, READ, ARCHIVED},
    SENT: {DELIVERED, READ, ARCHIVED},
    DELIVERED: {READ, ARCHIVED},
    READ: {READ, ARCHIVED},
    ARCHIVED: set(),
}

# Statuses a sweep may still deliver
DELIVERABLE_STATUSES = (PENDING, SENT)

UNREAD_EXCLUDED_STATUSES = (READ, ARCHIVED)
CLEANUP_STATUSES = (READ, ARCHIVED)

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000
MAX_PAGE_SIZE = 100

PRIORITY_VALUES = {p.value for p in NotificationPriority}
RELATED_ENTITY_KINDS = {k.value for k in RelatedEntityKind}


class NotificationStore:
    """
    Service for notification records and their lifecycle.

    Records are always persisted before any delivery attempt, so a
    notification is never lost when every channel fails. Channel failures
    never raise from this service; persistence failures do.
    """

    def __init__(
        self,
        db: Session,
        router: Optional[DeliveryRouter] = None,
        identity_resolver: Optional[IdentityResolver] = None,
        type_registry: Optional[NotificationTypeRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the notification store.

        Args:
            db: SQLAlchemy database session
            router: Delivery router (no router = records are only persisted)
            identity_resolver: Recipient resolver (default: recipients table)
            type_registry: Registered notification types
            retry_policy: Backoff policy for unacknowledged deliveries
        """
        self.db = db
        self.router = router
        self.identity_resolver = identity_resolver or DatabaseIdentityResolver(db)
        self.type_registry = type_registry or get_type_registry()
        self.retry_policy = retry_policy or RetryPolicy()

    # ========================================================================
    # Creation and Delivery
    # ========================================================================

    def validate_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and normalize a notification payload.

        Args:
            payload: Dict with recipient_id, title, message, type and the
                optional priority, sender_id, related_entity {kind, id},
                data, push_token, web_push_subscription, scheduled_for,
                expires_at

        Returns:
            Normalized payload dict

        Raises:
            ValidationError: Missing title/message/type, unknown type,
                bad priority or related entity kind
        """
        if payload.get("recipient_id") is None:
            raise ValidationError("recipient_id is required", field="recipient_id")

        title = (payload.get("title") or "").strip()
        message = (payload.get("message") or "").strip()
        notification_type = (payload.get("type") or "").strip()

        if not title:
            raise ValidationError("title is required", field="title")
        if not message:
            raise ValidationError("message is required", field="message")
        if not notification_type:
            raise ValidationError("type is required", field="type")

        # Raises UnknownNotificationTypeError
        correlation_key = self.type_registry.get(notification_type).correlation_key

        priority = payload.get("priority") or NotificationPriority.MEDIUM.value
        if isinstance(priority, NotificationPriority):
            priority = priority.value
        if priority not in PRIORITY_VALUES:
            raise ValidationError(f"Invalid priority: {priority}", field="priority")

        related_kind = None
        related_id = None
        related = payload.get("related_entity")
        if related:
            related_kind = related.get("kind")
            if isinstance(related_kind, RelatedEntityKind):
                related_kind = related_kind.value
            if related_kind not in RELATED_ENTITY_KINDS:
                raise ValidationError(
                    f"Invalid related entity kind: {related_kind}",
                    field="related_entity",
                )
            related_id = str(related.get("id")) if related.get("id") is not None else None

        data = dict(payload.get("data") or {})
        # Correlation values are stored as strings so JSON lookups match
        if correlation_key and data.get(correlation_key) is not None:
            data[correlation_key] = str(data[correlation_key])

        return {
            "recipient_id": payload["recipient_id"],
            "sender_id": payload.get("sender_id"),
            "title": title[:TITLE_MAX_LENGTH],
            "message": message[:MESSAGE_MAX_LENGTH],
            "type": notification_type,
            "priority": priority,
            "related_entity_kind": related_kind,
            "related_entity_id": related_id,
            "data": data or None,
            "push_token": payload.get("push_token") or None,
            "web_push_subscription": payload.get("web_push_subscription") or None,
            "scheduled_for": payload.get("scheduled_for"),
            "expires_at": payload.get("expires_at"),
        }

    def create_and_send(
        self,
        payload: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Notification:
        """
        Persist a notification, then attempt delivery unless it is deferred.

        No preference gating happens here; callers that need it go through
        PreferenceEngine.send_if_allowed.

        Args:
            payload: Notification payload (see validate_payload)
            now: Current UTC time (naive); defaults to utcnow

        Returns:
            The persisted Notification (pending, or delivered when any
            channel acknowledged)

        Raises:
            ValidationError: Malformed payload
            RecipientNotFoundError: Recipient cannot be resolved
            PersistenceError: The record could not be written
        """
        now = now or datetime.utcnow()
        values = self.validate_payload(payload)
        self.identity_resolver.resolve(values["recipient_id"])

        # created_at is on the caller's clock; the dedup guard counts by it
        notification = Notification(status=PENDING, created_at=now, updated_at=now, **values)
        self.db.add(notification)
        self._commit("create notification")
        self.db.refresh(notification)

        logger.info(
            "Created notification",
            extra={
                "guid": notification.guid,
                "type": notification.type,
                "priority": notification.priority,
                "recipient_id": notification.recipient_id,
                "deferred": notification.scheduled_for is not None,
            },
        )

        if notification.scheduled_for is not None and notification.scheduled_for > now:
            return notification

        self.deliver(notification, now=now)
        return notification

    def deliver(
        self,
        notification: Notification,
        now: Optional[datetime] = None,
    ) -> DeliveryOutcome:
        """
        Attempt delivery of a persisted notification and record the outcome.

        Any acknowledgment moves the record to delivered. Otherwise the
        record stays in its current status and the retry policy decides
        when (or whether) the dispatcher tries again.
        """
        now = now or datetime.utcnow()

        if self.router is None:
            return DeliveryOutcome()

        outcome = self.router.attempt(notification)
        self._apply_outcome(notification, outcome, now)
        self._commit("record delivery attempt")
        self.db.refresh(notification)
        return outcome

    def _apply_outcome(
        self,
        notification: Notification,
        outcome: DeliveryOutcome,
        now: datetime,
    ) -> None:
        # Presence of scheduled_for means "not yet attempted"
        notification.scheduled_for = None

        if not outcome.attempted:
            notification.next_attempt_at = None
            return

        notification.delivery_attempts = (notification.delivery_attempts or 0) + 1
        notification.last_attempt_at = now

        channel_fields = {}
        if self.router is not None:
            channel_fields = {c.kind: c.response_field for c in self.router.channels}

        for result in outcome.results:
            response_field = channel_fields.get(result.channel)
            if not response_field:
                continue
            if result.acknowledged:
                setattr(notification, response_field, result.response)
            else:
                setattr(notification, response_field, {
                    "error": result.error,
                    "target_invalid": result.target_invalid,
                    "attempted_at": now.isoformat(),
                })

        if outcome.acknowledged:
            if notification.status in DELIVERABLE_STATUSES:
                self.transition(notification, DELIVERED)
                notification.sent_at = now
            notification.next_attempt_at = None
            return

        if all(r.target_invalid for r in outcome.results):
            notification.next_attempt_at = None
            logger.info(
                "All channel targets rejected; not retrying",
                extra={"guid": notification.guid},
            )
        elif self.retry_policy.is_exhausted(notification.delivery_attempts):
            notification.next_attempt_at = None
            logger.warning(
                "Delivery abandoned after max attempts",
                extra={
                    "guid": notification.guid,
                    "attempts": notification.delivery_attempts,
                },
            )
        else:
            notification.next_attempt_at = now + self.retry_policy.delay_for(
                notification.delivery_attempts
            )

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to {action}",
                extra={"error": str(e)},
            )
            raise PersistenceError(f"Failed to {action}: {e}") from e

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def transition(self, notification: Notification, new_status: str) -> Notification:
        """
        Move a notification to a new status (does not commit).

        Raises:
            InvalidTransitionError: If the lifecycle does not allow it
        """
        if isinstance(new_status, NotificationStatus):
            new_status = new_status.value
        current = notification.status
        if new_status not in VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(current, new_status)
        notification.status = new_status
        return notification

    def mark_as_delivered(
        self,
        notification: Notification,
        responses: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Notification:
        """
        Mark a notification delivered and store per-channel responses.

        Args:
            notification: Notification in pending or sent
            responses: {"push_response": ..., "web_push_response": ...}
        """
        self.transition(notification, DELIVERED)
        notification.sent_at = notification.sent_at or now or datetime.utcnow()
        notification.next_attempt_at = None
        notification.scheduled_for = None
        for response_field in ("push_response", "web_push_response"):
            if responses and response_field in responses:
                setattr(notification, response_field, responses[response_field])
        self._commit("mark notification delivered")
        self.db.refresh(notification)
        return notification

    def mark_as_sent(self, notification: Notification, now: Optional[datetime] = None) -> Notification:
        """Mark a notification handed to a transport without confirmation."""
        self.transition(notification, SENT)
        notification.sent_at = now or datetime.utcnow()
        self._commit("mark notification sent")
        self.db.refresh(notification)
        return notification

    def mark_notification_read(self, notification: Notification) -> Notification:
        """Mark as read (idempotent; read_at is re-stamped)."""
        self.transition(notification, READ)
        notification.read_at = datetime.utcnow()
        self._commit("mark notification read")
        self.db.refresh(notification)
        return notification

    def mark_as_read(self, guid: str, recipient_id: int) -> Notification:
        """
        Mark a recipient's notification as read (idempotent).

        Raises:
            NotFoundError: If not found or owned by another recipient
            InvalidTransitionError: If the notification is archived
        """
        return self.mark_notification_read(self.get_notification(guid, recipient_id))

    def mark_all_as_read(self, recipient_id: int) -> int:
        """
        Mark every unread, non-archived notification of a recipient as read.

        Returns:
            Number of notifications marked
        """
        updated = (
            self.db.query(Notification)
            .filter(
                Notification.recipient_id == recipient_id,
                Notification.status.notin_(UNREAD_EXCLUDED_STATUSES),
            )
            .update(
                {"status": READ, "read_at": datetime.utcnow()},
                synchronize_session="fetch",
            )
        )
        self._commit("mark all notifications read")
        logger.info(
            "Marked notifications read",
            extra={"recipient_id": recipient_id, "count": updated},
        )
        return updated

    def archive(self, guid: str, recipient_id: int) -> Notification:
        """
        Archive a recipient's notification.

        Raises:
            NotFoundError: If not found or owned by another recipient
            InvalidTransitionError: If already archived
        """
        notification = self.get_notification(guid, recipient_id)
        self.transition(notification, ARCHIVED)
        notification.next_attempt_at = None
        self._commit("archive notification")
        self.db.refresh(notification)
        return notification

    # ========================================================================
    # Queries
    # ========================================================================

    def get_notification(self, guid: str, recipient_id: Optional[int] = None) -> Notification:
        """
        Get a notification by GUID, optionally scoped to one recipient.

        Raises:
            NotFoundError: If the GUID is invalid, unknown, or owned by
                another recipient
        """
        try:
            uuid_value = Notification.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Notification", guid)

        query = self.db.query(Notification).filter(Notification.uuid == uuid_value)
        if recipient_id is not None:
            query = query.filter(Notification.recipient_id == recipient_id)

        notification = query.first()
        if not notification:
            raise NotFoundError("Notification", guid)
        return notification

    @staticmethod
    def _not_expired(now: datetime):
        return or_(Notification.expires_at.is_(None), Notification.expires_at > now)

    def list_notifications(
        self,
        recipient_id: int,
        status: Optional[str] = None,
        notification_type: Optional[str] = None,
        limit: int = 20,
        page: int = 1,
        include_expired: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Notification], int]:
        """
        List a recipient's notifications, newest first.

        Args:
            recipient_id: Recipient id
            status: Optional status filter; archived records are listed
                only when it is "archived"
            notification_type: Optional type filter
            limit: Page size (1-100)
            page: 1-based page number
            include_expired: Include records whose expires_at has passed

        Returns:
            Tuple of (notifications on the page, total matching count)
        """
        now = now or datetime.utcnow()
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)

        query = self.db.query(Notification).filter(Notification.recipient_id == recipient_id)

        if status:
            query = query.filter(Notification.status == status)
        else:
            query = query.filter(Notification.status != ARCHIVED)
        if notification_type:
            query = query.filter(Notification.type == notification_type)
        if not include_expired:
            query = query.filter(self._not_expired(now))

        total = query.count()
        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return notifications, total

    def get_unread_count(self, recipient_id: int, now: Optional[datetime] = None) -> int:
        """Count non-read, non-archived, non-expired notifications."""
        now = now or datetime.utcnow()
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.recipient_id == recipient_id,
                Notification.status.notin_(UNREAD_EXCLUDED_STATUSES),
                self._not_expired(now),
            )
            .scalar()
        )

    def get_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        recipient_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Aggregate notification counts by type and status.

        Returns:
            [{"type": ..., "total": n, "statuses": {status: count}}],
            ordered by total descending
        """
        query = self.db.query(
            Notification.type,
            Notification.status,
            func.count(Notification.id),
        )
        if start is not None:
            query = query.filter(Notification.created_at >= start)
        if end is not None:
            query = query.filter(Notification.created_at <= end)
        if recipient_id is not None:
            query = query.filter(Notification.recipient_id == recipient_id)

        by_type: Dict[str, Dict[str, Any]] = {}
        for notification_type, status, count in query.group_by(Notification.type, Notification.status).all():
            entry = by_type.setdefault(notification_type, {"type": notification_type, "total": 0, "statuses": {}})
            entry["statuses"][status] = count
            entry["total"] += count

        return sorted(by_type.values(), key=lambda e: (-e["total"], e["type"]))

    def count_created_between(
        self,
        recipient_id: int,
        notification_type: str,
        start: datetime,
        end: datetime,
        correlation_key: Optional[str] = None,
        correlation_value: Optional[str] = None,
    ) -> int:
        """
        Count a recipient's notifications of one type created in [start, end).

        When correlation_key is given, only records whose
        data[correlation_key] equals correlation_value (as a string) count.
        """
        query = self.db.query(func.count(Notification.id)).filter(
            Notification.recipient_id == recipient_id,
            Notification.type == notification_type,
            Notification.created_at >= start,
            Notification.created_at < end,
        )
        if correlation_key:
            query = query.filter(
                Notification.data[correlation_key].as_string() == str(correlation_value)
            )
        return query.scalar()

    def select_due(self, now: Optional[datetime] = None, limit: int = 100) -> List[Notification]:
        """
        Select deliverable records whose deferral or retry time has come.

        Returns at most ``limit`` records in status pending/sent with
        scheduled_for <= now or next_attempt_at <= now, oldest due first.
        """
        now = now or datetime.utcnow()
        due_at = func.coalesce(Notification.scheduled_for, Notification.next_attempt_at)
        return (
            self.db.query(Notification)
            .filter(
                Notification.status.in_(DELIVERABLE_STATUSES),
                or_(
                    and_(Notification.scheduled_for.isnot(None), Notification.scheduled_for <= now),
                    and_(Notification.next_attempt_at.isnot(None), Notification.next_attempt_at <= now),
                ),
            )
            .order_by(due_at.asc(), Notification.id.asc())
            .limit(limit)
            .all()
        )

    # ========================================================================
    # Cleanup
    # ========================================================================

    def cleanup_old_notifications(self, days_old: int = 30, now: Optional[datetime] = None) -> int:
        """
        Delete read and archived notifications older than ``days_old`` days.

        Never called implicitly; unread and undelivered records are kept.

        Returns:
            Number of notifications deleted
        """
        if days_old < 1:
            raise ValidationError("days_old must be at least 1", field="days_old")

        cutoff = (now or datetime.utcnow()) - timedelta(days=days_old)
        count = (
            self.db.query(Notification)
            .filter(
                Notification.status.in_(CLEANUP_STATUSES),
                Notification.created_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        self._commit("clean up notifications")

        if count > 0:
            logger.info(
                f"Deleted {count} old notifications (>{days_old} days)",
                extra={"days_old": days_old},
            )
        return count
