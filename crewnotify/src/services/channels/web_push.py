"""
Web push channel (subscription-addressed) via pywebpush and VAPID.

The browser receives a JSON payload
{notificationId, title, message, type, data}.
"""

import json
from typing import Any, Dict, Optional

from pywebpush import webpush, WebPushException

from crewnotify.src.services.channels.base import Channel
from crewnotify.src.services.exceptions import (
    ChannelTargetInvalidError,
    ChannelTransportError,
)
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("channels")

PUSH_TTL_SECONDS = 86400


def is_web_push_subscription(subscription: Any) -> bool:
    """A subscription needs an endpoint and both encryption keys."""
    if not isinstance(subscription, dict):
        return False
    keys = subscription.get("keys") or {}
    return bool(subscription.get("endpoint") and keys.get("p256dh") and keys.get("auth"))


class WebPushChannel(Channel):
    """Deliver to a browser push subscription."""

    kind = "web_push"
    target_field = "web_push_subscription"
    response_field = "web_push_response"

    def __init__(
        self,
        vapid_private_key: str = "",
        vapid_claims: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            vapid_private_key: VAPID private key for push authentication
            vapid_claims: VAPID claims dict (e.g., {"sub": "mailto:..."})
        """
        self.vapid_private_key = vapid_private_key
        self.vapid_claims = vapid_claims or {}

    def is_configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_claims.get("sub"))

    def send(
        self,
        target: Any,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.is_configured():
            raise ChannelTransportError(self.kind, "Web push is not configured (VAPID keys missing)")
        if not is_web_push_subscription(target):
            raise ChannelTargetInvalidError(self.kind, "Malformed web push subscription")

        data = dict(data or {})
        payload_json = json.dumps({
            "notificationId": data.pop("notificationId", None),
            "title": title,
            "message": body,
            "type": data.pop("type", None),
            "data": data,
        }, default=str)

        endpoint_short = target["endpoint"][:60]

        try:
            response = webpush(
                subscription_info=target,
                data=payload_json,
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=PUSH_TTL_SECONDS,
                headers={"Urgency": "high"},
            )
        except WebPushException as e:
            if getattr(e, "response", None) is not None:
                # 410 Gone or 404 Not Found: subscription expired/invalid
                if e.response.status_code in (410, 404):
                    raise ChannelTargetInvalidError(
                        self.kind, f"Push subscription gone: {endpoint_short}"
                    ) from e
            raise ChannelTransportError(self.kind, str(e)) from e
        except (ValueError, TypeError) as e:
            raise ChannelTargetInvalidError(self.kind, str(e)) from e
        except Exception as e:
            raise ChannelTransportError(self.kind, str(e)) from e

        status_code = getattr(response, "status_code", None)
        logger.debug(
            "Web push accepted",
            extra={"endpoint": endpoint_short, "status_code": status_code},
        )
        return {"status_code": status_code, "endpoint": endpoint_short}
