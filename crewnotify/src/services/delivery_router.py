"""
Delivery router: attempts every channel target present on a notification.

Each target is tried independently; when a notification carries more than
one target the attempts run concurrently on a thread pool. Channel
failures are captured per channel and logged, never raised. The router
only reports what happened; NotificationStore applies the outcome to the
record so both delivery branches (immediate and scheduled) share one
state machine.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from crewnotify.src.config.settings import AppSettings, get_settings
from crewnotify.src.models.notification import Notification
from crewnotify.src.services.channels import Channel, MobilePushChannel, WebPushChannel
from crewnotify.src.services.exceptions import ChannelError, ChannelTargetInvalidError
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("channels")

DEFAULT_MAX_WORKERS = 4


@dataclass
class ChannelResult:
    """Result of one channel attempt."""
    channel: str
    acknowledged: bool
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    target_invalid: bool = False


@dataclass
class DeliveryOutcome:
    """
    Combined result of attempting every target on a notification.

    Attributes:
        results: One ChannelResult per attempted target
        attempted: False when the notification had no usable target at all
    """
    results: List[ChannelResult] = field(default_factory=list)
    attempted: bool = False

    @property
    def acknowledged(self) -> bool:
        """Any single channel acknowledgment counts as delivered."""
        return any(r.acknowledged for r in self.results)

    @property
    def responses(self) -> Dict[str, Dict[str, Any]]:
        return {r.channel: r.response for r in self.results if r.acknowledged}

    @property
    def errors(self) -> Dict[str, str]:
        return {r.channel: r.error for r in self.results if not r.acknowledged}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Capped exponential backoff for records no channel acknowledged.

    After attempt n the next try is scheduled base * 2^(n-1) seconds later,
    capped at max_seconds. After max_attempts the record is abandoned: it
    stays pending but is no longer selected by sweeps.
    """
    base_seconds: int = 60
    max_seconds: int = 3600
    max_attempts: int = 12

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RetryPolicy":
        return cls(
            base_seconds=settings.retry_base_seconds,
            max_seconds=settings.retry_max_seconds,
            max_attempts=settings.max_delivery_attempts,
        )

    def delay_for(self, attempts: int) -> timedelta:
        exponent = max(attempts - 1, 0)
        seconds = min(self.base_seconds * (2 ** exponent), self.max_seconds)
        return timedelta(seconds=seconds)

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


class DeliveryRouter:
    """
    Fan a notification out to its channel targets.

    Args:
        channels: Channel adapters; each reads its address from
            ``getattr(notification, channel.target_field)``
        max_workers: Thread pool size for concurrent channel attempts
    """

    def __init__(self, channels: List[Channel], max_workers: int = DEFAULT_MAX_WORKERS):
        self.channels = list(channels)
        self.max_workers = max_workers

    def _targets(self, notification: Notification) -> List[Tuple[Channel, Any]]:
        return [
            (channel, getattr(notification, channel.target_field, None))
            for channel in self.channels
            if getattr(notification, channel.target_field, None)
        ]

    @staticmethod
    def _message_data(notification: Notification) -> Dict[str, Any]:
        return {
            **(notification.data or {}),
            "notificationId": notification.guid,
            "type": notification.type,
        }

    def attempt(self, notification: Notification) -> DeliveryOutcome:
        """
        Try every channel target present on the notification.

        Args:
            notification: Persisted notification (must have a GUID)

        Returns:
            DeliveryOutcome; ``attempted`` is False when there was no target
        """
        targets = self._targets(notification)
        if not targets:
            logger.debug(
                "No channel targets on notification",
                extra={"guid": notification.guid, "type": notification.type},
            )
            return DeliveryOutcome()

        title = notification.title
        body = notification.message
        data = self._message_data(notification)

        if len(targets) == 1:
            channel, target = targets[0]
            results = [self._send_one(channel, target, title, body, data, notification.guid)]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as executor:
                futures = [
                    executor.submit(self._send_one, channel, target, title, body, dict(data), notification.guid)
                    for channel, target in targets
                ]
                results = [future.result() for future in futures]

        outcome = DeliveryOutcome(results=results, attempted=True)

        logger.info(
            "Delivery attempt finished",
            extra={
                "guid": notification.guid,
                "type": notification.type,
                "channels": [r.channel for r in results],
                "acknowledged": outcome.acknowledged,
            },
        )
        return outcome

    def _send_one(
        self,
        channel: Channel,
        target: Any,
        title: str,
        body: str,
        data: Dict[str, Any],
        guid: str,
    ) -> ChannelResult:
        try:
            response = channel.send(target, title, body, data)
            return ChannelResult(channel=channel.kind, acknowledged=True, response=response or {})
        except ChannelTargetInvalidError as e:
            logger.info(
                "Channel target rejected",
                extra={"guid": guid, "channel": channel.kind, "error": e.message},
            )
            return ChannelResult(channel=channel.kind, acknowledged=False, error=e.message, target_invalid=True)
        except ChannelError as e:
            logger.warning(
                f"Channel delivery failed: {e.message}",
                extra={"guid": guid, "channel": channel.kind},
            )
            return ChannelResult(channel=channel.kind, acknowledged=False, error=e.message)
        except Exception as e:
            logger.error(
                "Unexpected channel error",
                extra={"guid": guid, "channel": channel.kind, "error_type": type(e).__name__},
                exc_info=True,
            )
            return ChannelResult(channel=channel.kind, acknowledged=False, error=str(e))

    def close(self) -> None:
        for channel in self.channels:
            channel.close()


def build_default_router(settings: Optional[AppSettings] = None) -> DeliveryRouter:
    """Router with the two built-in channels configured from settings."""
    settings = settings or get_settings()
    return DeliveryRouter(
        channels=[
            MobilePushChannel(
                push_url=settings.expo_push_url,
                access_token=settings.expo_access_token or None,
                timeout=settings.push_timeout_seconds,
            ),
            WebPushChannel(
                vapid_private_key=settings.vapid_private_key,
                vapid_claims=settings.vapid_claims,
            ),
        ]
    )
