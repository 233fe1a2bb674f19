"""
Delivery channels.

- MobilePushChannel: token-addressed mobile push
- WebPushChannel: subscription-addressed browser push
"""

from crewnotify.src.services.channels.base import Channel
from crewnotify.src.services.channels.mobile_push import MobilePushChannel, is_push_token
from crewnotify.src.services.channels.web_push import WebPushChannel, is_web_push_subscription

__all__ = [
    "Channel",
    "MobilePushChannel",
    "WebPushChannel",
    "is_push_token",
    "is_web_push_subscription",
]
