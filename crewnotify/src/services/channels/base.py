"""
Base class for delivery channels.

A channel delivers one message to one address. Channels raise
ChannelTargetInvalidError for a malformed or retired address and
ChannelTransportError for anything transient; they never decide whether a
notification counts as delivered.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Channel(ABC):
    """
    Abstract delivery channel.

    Attributes:
        kind: Channel identifier used in logs and response maps
        target_field: Notification attribute holding this channel's address
        response_field: Notification attribute receiving the acknowledgment
    """

    kind: str = "base"
    target_field: str = ""
    response_field: str = ""

    @abstractmethod
    def send(
        self,
        target: Any,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Deliver a message to a single address.

        Args:
            target: Channel-specific address (token string, subscription dict)
            title: Message title
            body: Message body
            data: Structured payload forwarded to the client

        Returns:
            Acknowledgment returned by the transport

        Raises:
            ChannelTargetInvalidError: Address malformed or no longer valid
            ChannelTransportError: Transient failure; retry later
        """

    def is_configured(self) -> bool:
        """Whether the channel has the credentials it needs."""
        return True

    def close(self) -> None:
        """Release transport resources."""
        return None
