"""
Unit tests for DeliveryRouter and RetryPolicy.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from crewnotify.src.config.settings import AppSettings
from crewnotify.src.services.channels import MobilePushChannel, WebPushChannel
from crewnotify.src.services.delivery_router import (
    DeliveryRouter,
    RetryPolicy,
    build_default_router,
)


def _notification(push_token=None, web_push_subscription=None, data=None):
    return SimpleNamespace(
        guid="ntf_01hgw2bbg0000000000000000",
        type="task_assigned",
        title="New task",
        message="You were assigned a task.",
        data=data,
        push_token=push_token,
        web_push_subscription=web_push_subscription,
    )


# ============================================================================
# Test: DeliveryRouter.attempt
# ============================================================================


class TestAttempt:
    """Tests for DeliveryRouter.attempt."""

    def test_no_targets_is_not_attempted(self, delivery_router, push_channel, web_channel):
        """A notification without targets is not attempted at all."""
        outcome = delivery_router.attempt(_notification())

        assert outcome.attempted is False
        assert outcome.acknowledged is False
        assert outcome.results == []
        assert push_channel.calls == []
        assert web_channel.calls == []

    def test_single_target_acknowledged(self, delivery_router, push_channel, web_channel, push_token):
        """Only channels with a target are tried."""
        outcome = delivery_router.attempt(_notification(push_token=push_token))

        assert outcome.attempted is True
        assert outcome.acknowledged is True
        assert len(push_channel.calls) == 1
        assert web_channel.calls == []
        assert outcome.responses == {"mobile_push": {"id": "mobile_push-ticket-1"}}

    def test_message_data_carries_id_and_type(self, delivery_router, push_channel, push_token):
        """Clients receive the notification GUID and type with the data."""
        delivery_router.attempt(_notification(push_token=push_token, data={"taskId": "7"}))

        data = push_channel.calls[0]["data"]
        assert data == {
            "taskId": "7",
            "notificationId": "ntf_01hgw2bbg0000000000000000",
            "type": "task_assigned",
        }

    def test_both_targets_tried(
        self, delivery_router, push_channel, web_channel, push_token, web_push_subscription
    ):
        """Every present target is attempted."""
        outcome = delivery_router.attempt(
            _notification(push_token=push_token, web_push_subscription=web_push_subscription)
        )

        assert len(push_channel.calls) == 1
        assert len(web_channel.calls) == 1
        assert {r.channel for r in outcome.results} == {"mobile_push", "web_push"}

    def test_one_ack_is_enough(
        self, delivery_router, push_channel, web_channel, push_token, web_push_subscription
    ):
        """A failure on one channel does not block delivery on the other."""
        push_channel.behavior = "transport"

        outcome = delivery_router.attempt(
            _notification(push_token=push_token, web_push_subscription=web_push_subscription)
        )

        assert outcome.acknowledged is True
        assert outcome.errors == {"mobile_push": "gateway unavailable"}
        assert set(outcome.responses) == {"web_push"}

    def test_channel_errors_are_captured(self, delivery_router, push_channel, push_token):
        """Channel exceptions never escape the router."""
        push_channel.behavior = "invalid"

        outcome = delivery_router.attempt(_notification(push_token=push_token))

        assert outcome.acknowledged is False
        assert outcome.results[0].target_invalid is True
        assert outcome.results[0].error == "target no longer registered"

    def test_unexpected_exceptions_are_captured(self, push_token):
        """Bugs inside a channel are logged and reported as failures."""
        channel = MagicMock()
        channel.kind = "mobile_push"
        channel.target_field = "push_token"
        channel.send.side_effect = RuntimeError("boom")

        outcome = DeliveryRouter([channel]).attempt(_notification(push_token=push_token))

        assert outcome.acknowledged is False
        assert outcome.results[0].target_invalid is False
        assert outcome.results[0].error == "boom"

    def test_close_closes_channels(self, delivery_router, push_channel, web_channel):
        delivery_router.close()
        assert push_channel.closed and web_channel.closed


class TestBuildDefaultRouter:
    """Tests for build_default_router."""

    def test_builds_both_channels(self):
        settings = AppSettings(
            VAPID_PRIVATE_KEY="private",
            VAPID_PUBLIC_KEY="public",
            VAPID_SUBJECT="mailto:ops@example.com",
        )
        router = build_default_router(settings)
        try:
            kinds = [type(c) for c in router.channels]
            assert kinds == [MobilePushChannel, WebPushChannel]
            assert router.channels[1].is_configured()
        finally:
            router.close()


# ============================================================================
# Test: RetryPolicy
# ============================================================================


class TestRetryPolicy:
    """Tests for the capped exponential backoff."""

    def test_exponential_delays(self):
        policy = RetryPolicy(base_seconds=60, max_seconds=3600, max_attempts=12)

        assert policy.delay_for(1) == timedelta(seconds=60)
        assert policy.delay_for(2) == timedelta(seconds=120)
        assert policy.delay_for(3) == timedelta(seconds=240)

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_seconds=60, max_seconds=3600, max_attempts=12)
        assert policy.delay_for(10) == timedelta(seconds=3600)

    @pytest.mark.parametrize("attempts,exhausted", [(2, False), (3, True), (4, True)])
    def test_exhaustion(self, attempts, exhausted):
        assert RetryPolicy(max_attempts=3).is_exhausted(attempts) is exhausted

    def test_from_settings(self):
        settings = AppSettings(RETRY_BASE_SECONDS=30, RETRY_MAX_SECONDS=600, MAX_DELIVERY_ATTEMPTS=5)
        policy = RetryPolicy.from_settings(settings)
        assert (policy.base_seconds, policy.max_seconds, policy.max_attempts) == (30, 600, 5)
