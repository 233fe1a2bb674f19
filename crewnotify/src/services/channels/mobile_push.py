"""
Mobile push channel (token-addressed) via the Expo push HTTP API.

Sends one message per call and returns the push ticket. A ticket with
status "error" is mapped onto the channel exception taxonomy:
DeviceNotRegistered means the token is retired, anything else is treated
as transient.
"""

import re
from typing import Any, Dict, Optional

import httpx

from crewnotify.src.services.channels.base import Channel
from crewnotify.src.services.exceptions import (
    ChannelTargetInvalidError,
    ChannelTransportError,
)
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("channels")

DEFAULT_PUSH_URL = "https://exp.host/--/api/v2/push/send"

PUSH_TOKEN_PATTERN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")

TARGET_INVALID_ERRORS = {"DeviceNotRegistered", "InvalidCredentials"}


def is_push_token(token: Any) -> bool:
    """Check that a value looks like an Expo push token."""
    return isinstance(token, str) and bool(PUSH_TOKEN_PATTERN.match(token))


class MobilePushChannel(Channel):
    """Deliver to a mobile device identified by its push token."""

    kind = "mobile_push"
    target_field = "push_token"
    response_field = "push_response"

    def __init__(
        self,
        push_url: str = DEFAULT_PUSH_URL,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            push_url: Push gateway endpoint
            access_token: Optional gateway access token (Bearer)
            timeout: Request timeout in seconds
            client: Pre-built httpx client (tests inject a mock transport)
        """
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self._push_url = push_url
        self._client = client or httpx.Client(headers=headers, timeout=timeout)

    def send(
        self,
        target: Any,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not target:
            raise ChannelTargetInvalidError(self.kind, "Missing push token")
        if not is_push_token(target):
            raise ChannelTargetInvalidError(self.kind, f"Invalid push token: {target}")

        message = {
            "to": target,
            "title": title,
            "body": body,
            "data": data or {},
            "sound": "default",
            "priority": "high",
        }

        try:
            response = self._client.post(self._push_url, json=[message])
        except httpx.ConnectError as e:
            raise ChannelTransportError(self.kind, f"Failed to connect to push gateway: {e}")
        except httpx.TimeoutException as e:
            raise ChannelTransportError(self.kind, f"Push gateway timed out: {e}")
        except httpx.HTTPError as e:
            raise ChannelTransportError(self.kind, str(e))

        if response.status_code != 200:
            raise ChannelTransportError(
                self.kind,
                f"Push gateway returned status {response.status_code}",
            )

        try:
            tickets = response.json().get("data") or []
        except ValueError as e:
            raise ChannelTransportError(self.kind, f"Unreadable gateway response: {e}")

        if isinstance(tickets, dict):
            tickets = [tickets]
        if not tickets:
            raise ChannelTransportError(self.kind, "Push gateway returned no ticket")

        ticket = tickets[0]
        if ticket.get("status") == "error":
            error_code = (ticket.get("details") or {}).get("error")
            error_message = ticket.get("message") or error_code or "Push ticket error"
            if error_code in TARGET_INVALID_ERRORS:
                raise ChannelTargetInvalidError(self.kind, error_message)
            raise ChannelTransportError(self.kind, error_message)

        logger.debug(
            "Mobile push accepted",
            extra={"ticket_id": ticket.get("id"), "token": target[:30]},
        )
        return {"tickets": tickets}

    def close(self) -> None:
        self._client.close()
