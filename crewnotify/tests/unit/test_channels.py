"""
Unit tests for the mobile push and web push channels.

Mobile push runs against an httpx.MockTransport; web push patches the
pywebpush call.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
from pywebpush import WebPushException

from crewnotify.src.services.channels import (
    MobilePushChannel,
    WebPushChannel,
    is_push_token,
    is_web_push_subscription,
)
from crewnotify.src.services.exceptions import ChannelTargetInvalidError, ChannelTransportError


PUSH_URL = "https://push.example.com/--/api/v2/push/send"


def _mobile_channel(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return MobilePushChannel(push_url=PUSH_URL, client=client)


# ============================================================================
# Mobile Push
# ============================================================================


class TestPushTokenFormat:
    """Tests for is_push_token."""

    @pytest.mark.parametrize("token", [
        "ExponentPushToken[abc123]",
        "ExpoPushToken[xyz-789]",
    ])
    def test_accepts_valid_tokens(self, token):
        assert is_push_token(token)

    @pytest.mark.parametrize("token", [
        None, "", "abc123", "ExponentPushToken[]", "ExponentPushToken(abc)", 42,
    ])
    def test_rejects_invalid_tokens(self, token):
        assert not is_push_token(token)


class TestMobilePushChannel:
    """Tests for MobilePushChannel.send."""

    def test_sends_message_and_returns_ticket(self, push_token):
        """Should post one message and return the gateway tickets."""
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})

        channel = _mobile_channel(handler)
        response = channel.send(push_token, "Title", "Body", {"taskId": "42"})

        assert response == {"tickets": [{"status": "ok", "id": "ticket-1"}]}
        assert captured["url"] == PUSH_URL
        message = captured["body"][0]
        assert message["to"] == push_token
        assert message["title"] == "Title"
        assert message["body"] == "Body"
        assert message["data"] == {"taskId": "42"}

    def test_accepts_single_ticket_object(self, push_token):
        """A data object instead of a list is treated as one ticket."""
        channel = _mobile_channel(
            lambda request: httpx.Response(200, json={"data": {"status": "ok", "id": "t"}})
        )
        assert channel.send(push_token, "T", "B")["tickets"] == [{"status": "ok", "id": "t"}]

    def test_malformed_token_is_target_invalid(self):
        """Should reject a malformed token without calling the gateway."""
        handler = MagicMock()
        channel = _mobile_channel(handler)

        with pytest.raises(ChannelTargetInvalidError):
            channel.send("not-a-token", "T", "B")
        handler.assert_not_called()

    def test_device_not_registered_is_target_invalid(self, push_token):
        """DeviceNotRegistered tickets mean the token is retired."""
        channel = _mobile_channel(lambda request: httpx.Response(200, json={
            "data": [{
                "status": "error",
                "message": "The recipient device is not registered",
                "details": {"error": "DeviceNotRegistered"},
            }]
        }))

        with pytest.raises(ChannelTargetInvalidError) as exc_info:
            channel.send(push_token, "T", "B")
        assert exc_info.value.channel == "mobile_push"

    def test_other_ticket_errors_are_transient(self, push_token):
        """Any other ticket error is a transport failure."""
        channel = _mobile_channel(lambda request: httpx.Response(200, json={
            "data": [{"status": "error", "message": "Rate exceeded", "details": {"error": "MessageRateExceeded"}}]
        }))

        with pytest.raises(ChannelTransportError):
            channel.send(push_token, "T", "B")

    def test_gateway_error_status_is_transient(self, push_token):
        """Non-200 responses are transport failures."""
        channel = _mobile_channel(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(ChannelTransportError) as exc_info:
            channel.send(push_token, "T", "B")
        assert "503" in exc_info.value.message

    def test_connection_error_is_transient(self, push_token):
        """Network errors are transport failures."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ChannelTransportError):
            _mobile_channel(handler).send(push_token, "T", "B")

    def test_empty_ticket_list_is_transient(self, push_token):
        channel = _mobile_channel(lambda request: httpx.Response(200, json={"data": []}))

        with pytest.raises(ChannelTransportError):
            channel.send(push_token, "T", "B")


# ============================================================================
# Web Push
# ============================================================================


@pytest.fixture
def web_push_channel():
    """WebPushChannel with test VAPID config."""
    return WebPushChannel(
        vapid_private_key="test-private-key",
        vapid_claims={"sub": "mailto:test@example.com"},
    )


class TestWebPushSubscriptionFormat:
    """Tests for is_web_push_subscription."""

    def test_accepts_complete_subscription(self, web_push_subscription):
        assert is_web_push_subscription(web_push_subscription)

    @pytest.mark.parametrize("subscription", [
        None,
        "https://push.example.com",
        {"endpoint": "https://push.example.com"},
        {"endpoint": "https://push.example.com", "keys": {"p256dh": "k"}},
        {"keys": {"p256dh": "k", "auth": "a"}},
    ])
    def test_rejects_incomplete_subscription(self, subscription):
        assert not is_web_push_subscription(subscription)


class TestWebPushChannel:
    """Tests for WebPushChannel.send."""

    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_sends_payload(self, mock_webpush, web_push_channel, web_push_subscription):
        """Should call webpush with the subscription and a JSON payload."""
        mock_webpush.return_value = MagicMock(status_code=201)

        response = web_push_channel.send(
            web_push_subscription,
            "Title",
            "Body",
            {"notificationId": "ntf_1", "type": "task_assigned", "taskId": "42"},
        )

        assert response["status_code"] == 201
        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"] == web_push_subscription
        assert kwargs["vapid_private_key"] == "test-private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:test@example.com"}

        payload = json.loads(kwargs["data"])
        assert payload == {
            "notificationId": "ntf_1",
            "title": "Title",
            "message": "Body",
            "type": "task_assigned",
            "data": {"taskId": "42"},
        }

    @pytest.mark.parametrize("status_code", [404, 410])
    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_gone_subscription_is_target_invalid(
        self, mock_webpush, status_code, web_push_channel, web_push_subscription
    ):
        """404/410 from the push service means the subscription expired."""
        mock_webpush.side_effect = WebPushException(
            "Push failed", response=MagicMock(status_code=status_code)
        )

        with pytest.raises(ChannelTargetInvalidError):
            web_push_channel.send(web_push_subscription, "T", "B")

    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_server_error_is_transient(self, mock_webpush, web_push_channel, web_push_subscription):
        mock_webpush.side_effect = WebPushException(
            "Push failed", response=MagicMock(status_code=500)
        )

        with pytest.raises(ChannelTransportError):
            web_push_channel.send(web_push_subscription, "T", "B")

    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_unexpected_error_is_transient(self, mock_webpush, web_push_channel, web_push_subscription):
        mock_webpush.side_effect = ConnectionError("reset by peer")

        with pytest.raises(ChannelTransportError):
            web_push_channel.send(web_push_subscription, "T", "B")

    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_malformed_subscription_is_target_invalid(self, mock_webpush, web_push_channel):
        with pytest.raises(ChannelTargetInvalidError):
            web_push_channel.send({"endpoint": "https://push.example.com"}, "T", "B")
        mock_webpush.assert_not_called()

    @patch("crewnotify.src.services.channels.web_push.webpush")
    def test_unconfigured_channel_is_transient(self, mock_webpush, web_push_subscription):
        """Missing VAPID keys is a transport failure, not a bad target."""
        channel = WebPushChannel()
        assert not channel.is_configured()

        with pytest.raises(ChannelTransportError):
            channel.send(web_push_subscription, "T", "B")
        mock_webpush.assert_not_called()
