"""
Notification service: the preference-gated entry point for business callers.

PreferenceEngine.send_if_allowed orchestrates, in order:
1. Type registration and payload validation
2. Preference gating (push switch and per-type toggle)
3. Quiet-hours deferral (non-urgent only)
4. Channel target resolution from preferences
5. Dedup guard
6. NotificationStore.create_and_send

A suppressed send returns None and persists nothing. Deferred sends
return the pending record with scheduled_for set.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from crewnotify.src.models.notification import Notification, NotificationPriority
from crewnotify.src.services.dedup_guard import DedupGuard
from crewnotify.src.services.delivery_router import DeliveryRouter, RetryPolicy
from crewnotify.src.services.exceptions import ServiceError, UnknownNotificationTypeError
from crewnotify.src.services.identity import DatabaseIdentityResolver, IdentityResolver
from crewnotify.src.services.notification_store import NotificationStore
from crewnotify.src.services.notification_types import NotificationTypeRegistry, get_type_registry
from crewnotify.src.services.preference_service import PreferenceService
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass
class BroadcastResult:
    """
    Result of a broadcast.

    Attributes:
        total: Recipients targeted
        sent: Notifications created (delivered or pending)
        suppressed: Recipients skipped by preferences or the dedup guard
        failed: Recipients whose send raised a service error
    """
    total: int = 0
    sent: int = 0
    suppressed: int = 0
    failed: int = 0
    notifications: List[Notification] = field(default_factory=list)


class PreferenceEngine:
    """
    Orchestrates preferences, dedup guard and delivery behind one entry point.

    Args:
        db: SQLAlchemy database session
        router: Delivery router for channel attempts
        type_registry: Registered notification types
        identity_resolver: Recipient resolver
        retry_policy: Backoff policy applied by the store
    """

    def __init__(
        self,
        db: Session,
        router: Optional[DeliveryRouter] = None,
        type_registry: Optional[NotificationTypeRegistry] = None,
        identity_resolver: Optional[IdentityResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.db = db
        self.type_registry = type_registry or get_type_registry()
        self.identity_resolver = identity_resolver or DatabaseIdentityResolver(db)
        self.store = NotificationStore(
            db,
            router=router,
            identity_resolver=self.identity_resolver,
            type_registry=self.type_registry,
            retry_policy=retry_policy,
        )
        self.preferences = PreferenceService(
            db,
            type_registry=self.type_registry,
            identity_resolver=self.identity_resolver,
        )
        self.dedup_guard = DedupGuard(db, store=self.store, type_registry=self.type_registry)

    # ========================================================================
    # Orchestration
    # ========================================================================

    def send_if_allowed(
        self,
        recipient_id: int,
        notification_data: Dict[str, Any],
        now: Optional[datetime] = None,
        enforce_daily_cap: bool = True,
    ) -> Optional[Notification]:
        """
        Send a notification if the recipient's preferences allow it.

        Args:
            recipient_id: Recipient id
            notification_data: {title, message, type, priority?,
                related_entity?, data?, sender_id?, expires_at?}
            now: Current time (naive UTC); defaults to utcnow
            enforce_daily_cap: False skips the type's daily cap (used for
                repeat-enabled deadline reminders)

        Returns:
            The created Notification, or None when suppressed

        Raises:
            UnknownNotificationTypeError: Type not registered
            ValidationError: Malformed payload
            RecipientNotFoundError: Unknown recipient
            PersistenceError: Store unavailable
        """
        now = now or datetime.utcnow()
        notification_type = notification_data.get("type")
        if not notification_type or notification_type not in self.type_registry:
            raise UnknownNotificationTypeError(notification_type or "")

        payload = self._build_payload(recipient_id, notification_data)
        self.store.validate_payload(payload)

        prefs = self.preferences.get_or_create(recipient_id)

        if not self.preferences.is_notification_enabled(prefs, notification_type):
            logger.debug(
                "Notification suppressed by preferences",
                extra={"recipient_id": recipient_id, "type": notification_type},
            )
            return None

        if (
            payload["priority"] != NotificationPriority.URGENT.value
            and self.preferences.is_in_quiet_hours(prefs, now)
        ):
            payload["scheduled_for"] = self.preferences.next_quiet_hours_end(prefs, now)
            logger.info(
                "Notification deferred by quiet hours",
                extra={
                    "recipient_id": recipient_id,
                    "type": notification_type,
                    "scheduled_for": payload["scheduled_for"].isoformat(),
                },
            )

        if prefs.push_token:
            payload["push_token"] = prefs.push_token
        if prefs.web_push_subscription:
            payload["web_push_subscription"] = copy.deepcopy(prefs.web_push_subscription)

        if enforce_daily_cap and not self.dedup_guard.allow(
            recipient_id, notification_type, payload.get("data"), now=now
        ):
            return None

        return self.store.create_and_send(payload, now=now)

    def _build_payload(self, recipient_id: int, notification_data: Dict[str, Any]) -> Dict[str, Any]:
        priority = notification_data.get("priority") or NotificationPriority.MEDIUM.value
        if isinstance(priority, NotificationPriority):
            priority = priority.value

        return {
            "recipient_id": recipient_id,
            "sender_id": notification_data.get("sender_id"),
            "title": notification_data.get("title"),
            "message": notification_data.get("message"),
            "type": notification_data["type"],
            "priority": priority,
            "related_entity": notification_data.get("related_entity"),
            "data": notification_data.get("data"),
            "expires_at": notification_data.get("expires_at"),
        }

    def create_and_send(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Notification:
        """Persist and attempt delivery without preference gating."""
        return self.store.create_and_send(payload, now=now)

    def broadcast(
        self,
        notification_data: Dict[str, Any],
        recipient_ids: Optional[Iterable[int]] = None,
        now: Optional[datetime] = None,
    ) -> BroadcastResult:
        """
        Send a notification to many recipients through send_if_allowed.

        Args:
            notification_data: Same shape as send_if_allowed
            recipient_ids: Target recipients; None means every active recipient

        Returns:
            BroadcastResult with per-outcome counts. A failure for one
            recipient is logged and does not stop the broadcast.

        Raises:
            UnknownNotificationTypeError: Type not registered (checked once,
                before any recipient is processed)
        """
        notification_type = notification_data.get("type")
        if not notification_type or notification_type not in self.type_registry:
            raise UnknownNotificationTypeError(notification_type or "")

        if recipient_ids is None:
            recipients = self.identity_resolver.list_active()
            recipient_ids = [r.id for r in recipients]
        else:
            recipient_ids = list(dict.fromkeys(recipient_ids))

        result = BroadcastResult(total=len(recipient_ids))

        for recipient_id in recipient_ids:
            try:
                notification = self.send_if_allowed(recipient_id, notification_data, now=now)
            except ServiceError as e:
                result.failed += 1
                logger.warning(
                    f"Broadcast send failed: {e}",
                    extra={"recipient_id": recipient_id, "type": notification_type},
                )
                continue

            if notification is None:
                result.suppressed += 1
            else:
                result.sent += 1
                result.notifications.append(notification)

        logger.info(
            "Broadcast completed",
            extra={
                "type": notification_type,
                "total": result.total,
                "sent": result.sent,
                "suppressed": result.suppressed,
                "failed": result.failed,
            },
        )
        return result
