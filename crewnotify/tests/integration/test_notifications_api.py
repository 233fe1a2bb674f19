"""
Integration tests for the Notifications API endpoints.

Tests end-to-end flows through the FastAPI app:
- Recipient header resolution (401 / 403)
- History: list, unread count, mark read, read-all, archive
- Preferences and channel target registration
- Send, broadcast and on-demand dispatch
- Statistics and health
"""

from datetime import datetime, timedelta

import pytest


API = "/api/notifications"


@pytest.fixture
def create_notification(engine, push_token):
    """Persist a delivered notification for a recipient through the store."""
    def _create(recipient, notification_type="task_assigned", now=None, **overrides):
        payload = {
            "recipient_id": recipient.id,
            "title": "New task",
            "message": "You were assigned a task.",
            "type": notification_type,
            "push_token": push_token,
        }
        payload.update(overrides)
        return engine.store.create_and_send(payload, now=now)
    return _create


# ============================================================================
# Test: Recipient Header
# ============================================================================


class TestRecipientHeader:
    """Requests must name an active recipient."""

    def test_missing_header(self, test_client):
        response = test_client.get(API)
        assert response.status_code == 401

    def test_blank_header(self, test_client):
        response = test_client.get(API, headers={"X-Recipient-Id": "   "})
        assert response.status_code == 401

    def test_unknown_recipient(self, test_client):
        response = test_client.get(API, headers={"X-Recipient-Id": "emp-9999"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Unknown recipient"

    def test_inactive_recipient(self, test_client, create_recipient, auth_headers):
        inactive = create_recipient(is_active=False)
        response = test_client.get(API, headers=auth_headers(inactive))
        assert response.status_code == 403


# ============================================================================
# Test: History
# ============================================================================


class TestNotificationHistory:
    """Integration tests for listing and lifecycle endpoints."""

    def test_list_newest_first(self, test_client, recipient, auth_headers, create_notification):
        older = create_notification(recipient, title="First", now=datetime.utcnow() - timedelta(hours=1))
        newer = create_notification(recipient, title="Second")

        response = test_client.get(API, headers=auth_headers(recipient))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["unread_count"] == 2
        assert [item["guid"] for item in body["items"]] == [newer.guid, older.guid]
        assert body["items"][0]["guid"].startswith("ntf_")

    def test_list_only_own_notifications(
        self, test_client, create_recipient, auth_headers, create_notification
    ):
        me, other = create_recipient(), create_recipient()
        create_notification(other)

        response = test_client.get(API, headers=auth_headers(me))

        assert response.json()["total"] == 0

    def test_list_filters_and_pagination(self, test_client, recipient, auth_headers, create_notification):
        for _ in range(3):
            create_notification(recipient)
        create_notification(recipient, "schedule_change", title="Shift moved")

        by_type = test_client.get(f"{API}?type=schedule_change", headers=auth_headers(recipient)).json()
        page_two = test_client.get(f"{API}?limit=2&page=2", headers=auth_headers(recipient)).json()

        assert by_type["total"] == 1
        assert by_type["items"][0]["title"] == "Shift moved"
        assert page_two["total"] == 4
        assert len(page_two["items"]) == 2

    def test_list_rejects_unknown_status(self, test_client, recipient, auth_headers):
        response = test_client.get(f"{API}?status=lost", headers=auth_headers(recipient))
        assert response.status_code == 422

    def test_unread_count(self, test_client, recipient, auth_headers, create_notification, engine):
        create_notification(recipient)
        read = create_notification(recipient)
        engine.store.mark_as_read(read.guid, recipient.id)

        response = test_client.get(f"{API}/unread-count", headers=auth_headers(recipient))

        assert response.status_code == 200
        assert response.json() == {"unread_count": 1}

    def test_mark_read(self, test_client, recipient, auth_headers, create_notification):
        notification = create_notification(recipient)

        response = test_client.put(f"{API}/{notification.guid}/read", headers=auth_headers(recipient))

        assert response.status_code == 200
        assert response.json()["status"] == "read"
        assert response.json()["read_at"] is not None

    def test_mark_read_other_recipients_notification(
        self, test_client, create_recipient, auth_headers, create_notification
    ):
        me, other = create_recipient(), create_recipient()
        notification = create_notification(other)

        response = test_client.put(f"{API}/{notification.guid}/read", headers=auth_headers(me))

        assert response.status_code == 404

    def test_mark_read_unknown_guid(self, test_client, recipient, auth_headers):
        response = test_client.put(
            f"{API}/ntf_01hgw2bbg00000000000000000/read", headers=auth_headers(recipient)
        )
        assert response.status_code == 404

    def test_mark_all_read(self, test_client, recipient, auth_headers, create_notification):
        for _ in range(3):
            create_notification(recipient)

        first = test_client.put(f"{API}/read-all", headers=auth_headers(recipient))
        second = test_client.put(f"{API}/read-all", headers=auth_headers(recipient))

        assert first.json() == {"updated_count": 3}
        assert second.json() == {"updated_count": 0}

    def test_archive(self, test_client, recipient, auth_headers, create_notification):
        notification = create_notification(recipient)

        response = test_client.delete(f"{API}/{notification.guid}", headers=auth_headers(recipient))

        assert response.status_code == 204
        listed = test_client.get(API, headers=auth_headers(recipient)).json()
        assert listed["total"] == 0
        archived = test_client.get(f"{API}?status=archived", headers=auth_headers(recipient)).json()
        assert [item["guid"] for item in archived["items"]] == [notification.guid]

    def test_archive_twice_conflicts(self, test_client, recipient, auth_headers, create_notification):
        notification = create_notification(recipient)
        test_client.delete(f"{API}/{notification.guid}", headers=auth_headers(recipient))

        response = test_client.delete(f"{API}/{notification.guid}", headers=auth_headers(recipient))

        assert response.status_code == 409

    def test_read_after_archive_conflicts(self, test_client, recipient, auth_headers, create_notification):
        notification = create_notification(recipient)
        test_client.delete(f"{API}/{notification.guid}", headers=auth_headers(recipient))

        response = test_client.put(f"{API}/{notification.guid}/read", headers=auth_headers(recipient))

        assert response.status_code == 409


# ============================================================================
# Test: Preferences
# ============================================================================


class TestPreferences:
    """Integration tests for preference endpoints."""

    def test_defaults_created_on_first_access(self, test_client, recipient, auth_headers):
        response = test_client.get(f"{API}/preferences", headers=auth_headers(recipient))

        assert response.status_code == 200
        body = response.json()
        assert body["push_enabled"] is True
        assert body["notification_types"]["task_assigned"] is True
        assert body["quiet_hours"] == {
            "enabled": False, "start_time": "22:00", "end_time": "08:00", "timezone": "UTC"
        }
        assert body["push_token"] is None
        assert body["web_push_subscribed"] is False

    def test_partial_update_merges(self, test_client, recipient, auth_headers):
        response = test_client.put(
            f"{API}/preferences",
            json={
                "notification_types": {"reminder": False, "pizza_party": False},
                "quiet_hours": {"enabled": True, "timezone": "Europe/Paris"},
                "reminder_settings": {"daily_summary": {"enabled": True}},
            },
            headers=auth_headers(recipient),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["notification_types"]["reminder"] is False
        assert "pizza_party" not in body["notification_types"]
        assert body["notification_types"]["task_assigned"] is True
        assert body["quiet_hours"]["enabled"] is True
        assert body["quiet_hours"]["timezone"] == "Europe/Paris"
        assert body["quiet_hours"]["start_time"] == "22:00"
        assert body["reminder_settings"]["daily_summary"] == {"enabled": True, "time": "18:00"}

    def test_invalid_timezone(self, test_client, recipient, auth_headers):
        response = test_client.put(
            f"{API}/preferences",
            json={"quiet_hours": {"timezone": "Mars/Olympus_Mons"}},
            headers=auth_headers(recipient),
        )

        assert response.status_code == 400
        assert "timezone" in response.json()["detail"]

    @pytest.mark.parametrize("value", ["25:00", "8:00", "08:60", "noon"])
    def test_invalid_time_format(self, test_client, recipient, auth_headers, value):
        response = test_client.put(
            f"{API}/preferences",
            json={"quiet_hours": {"start_time": value}},
            headers=auth_headers(recipient),
        )
        assert response.status_code == 422

    def test_register_push_token(self, test_client, recipient, auth_headers, push_token):
        response = test_client.post(
            f"{API}/preferences/push-token",
            json={"push_token": push_token},
            headers=auth_headers(recipient),
        )

        assert response.status_code == 200
        assert response.json()["push_token"] == push_token

    def test_clear_push_token(self, test_client, recipient, auth_headers, push_token):
        test_client.post(
            f"{API}/preferences/push-token", json={"push_token": push_token}, headers=auth_headers(recipient)
        )

        response = test_client.post(
            f"{API}/preferences/push-token", json={"push_token": None}, headers=auth_headers(recipient)
        )

        assert response.json()["push_token"] is None

    def test_register_web_push_subscription(self, test_client, recipient, auth_headers, web_push_subscription):
        response = test_client.post(
            f"{API}/preferences/web-push-subscription",
            json={"subscription": web_push_subscription},
            headers=auth_headers(recipient),
        )

        assert response.status_code == 200
        assert response.json()["web_push_subscribed"] is True

    def test_web_push_requires_https(self, test_client, recipient, auth_headers, web_push_subscription):
        web_push_subscription["endpoint"] = "http://push.example.com/send/abc123"

        response = test_client.post(
            f"{API}/preferences/web-push-subscription",
            json={"subscription": web_push_subscription},
            headers=auth_headers(recipient),
        )

        assert response.status_code == 422


# ============================================================================
# Test: Send / Broadcast / Dispatch
# ============================================================================


class TestSend:
    """Integration tests for POST /send."""

    def test_send_delivers(
        self, test_client, recipient, reachable_recipient, auth_headers, push_channel, push_token
    ):
        response = test_client.post(
            f"{API}/send",
            json={
                "recipient_id": reachable_recipient.external_id,
                "title": "New task",
                "message": "Inspect scaffolding on level 3.",
                "type": "task_assigned",
                "priority": "high",
                "related_entity": {"kind": "task", "id": "T-17"},
            },
            headers=auth_headers(recipient),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["sent"] is True
        assert body["notification"]["status"] == "delivered"
        assert body["notification"]["related_entity_kind"] == "task"
        assert body["notification"]["related_entity_id"] == "T-17"
        assert push_channel.calls[0]["target"] == push_token

    def test_send_suppressed_by_preferences(
        self, test_client, recipient, reachable_recipient, auth_headers, engine, push_channel
    ):
        engine.preferences.update(reachable_recipient.id, {"notification_types": {"task_assigned": False}})

        response = test_client.post(
            f"{API}/send",
            json={
                "recipient_id": reachable_recipient.external_id,
                "title": "New task",
                "message": "Inspect scaffolding on level 3.",
                "type": "task_assigned",
            },
            headers=auth_headers(recipient),
        )

        assert response.status_code == 200
        assert response.json()["sent"] is False
        assert response.json()["notification"] is None
        assert push_channel.calls == []

    def test_send_unknown_type(self, test_client, recipient, auth_headers):
        response = test_client.post(
            f"{API}/send",
            json={
                "recipient_id": recipient.external_id,
                "title": "Party",
                "message": "Pizza at noon",
                "type": "pizza_party",
            },
            headers=auth_headers(recipient),
        )
        assert response.status_code == 400

    def test_send_unknown_recipient(self, test_client, recipient, auth_headers):
        response = test_client.post(
            f"{API}/send",
            json={
                "recipient_id": "emp-4040",
                "title": "New task",
                "message": "Inspect scaffolding.",
                "type": "task_assigned",
            },
            headers=auth_headers(recipient),
        )
        assert response.status_code == 404

    def test_send_missing_title(self, test_client, recipient, auth_headers):
        response = test_client.post(
            f"{API}/send",
            json={"recipient_id": recipient.external_id, "message": "x", "type": "task_assigned"},
            headers=auth_headers(recipient),
        )
        assert response.status_code == 422


class TestBroadcast:
    """Integration tests for POST /broadcast."""

    def test_broadcast_to_all_active(self, test_client, create_recipient, auth_headers):
        sender = create_recipient()
        create_recipient()
        create_recipient(is_active=False)

        response = test_client.post(
            f"{API}/broadcast",
            json={"title": "Site closed", "message": "Storm warning.", "type": "system_announcement"},
            headers=auth_headers(sender),
        )

        assert response.status_code == 200
        assert response.json() == {"total": 2, "sent": 2, "suppressed": 0, "failed": 0}

    def test_broadcast_unknown_ids_count_as_failed(self, test_client, create_recipient, auth_headers):
        sender = create_recipient()
        target = create_recipient()

        response = test_client.post(
            f"{API}/broadcast",
            json={
                "title": "Site closed",
                "message": "Storm warning.",
                "type": "system_announcement",
                "recipient_ids": [target.external_id, "emp-4040"],
            },
            headers=auth_headers(sender),
        )

        assert response.json() == {"total": 2, "sent": 1, "suppressed": 0, "failed": 1}


class TestDispatch:
    """Integration tests for POST /dispatch."""

    def test_dispatch_delivers_due_records(
        self, test_client, recipient, auth_headers, create_notification, push_channel
    ):
        now = datetime.utcnow()
        create_notification(recipient, now=now - timedelta(hours=1), scheduled_for=now - timedelta(minutes=5))
        assert push_channel.calls == []

        response = test_client.post(f"{API}/dispatch", headers=auth_headers(recipient))

        assert response.status_code == 200
        assert response.json() == {"selected": 1, "delivered": 1, "pending": 0, "abandoned": 0}
        assert len(push_channel.calls) == 1


# ============================================================================
# Test: Stats / Health
# ============================================================================


class TestStats:

    def test_stats_by_type_and_status(self, test_client, recipient, auth_headers, create_notification, engine):
        create_notification(recipient)
        read = create_notification(recipient)
        engine.store.mark_as_read(read.guid, recipient.id)
        create_notification(recipient, "schedule_change")

        response = test_client.get(f"{API}/stats", headers=auth_headers(recipient))

        assert response.status_code == 200
        stats = {entry["type"]: entry for entry in response.json()["stats"]}
        assert stats["task_assigned"]["total"] == 2
        assert stats["task_assigned"]["statuses"] == {"delivered": 1, "read": 1}
        assert stats["schedule_change"]["total"] == 1

    def test_stats_rejects_inverted_range(self, test_client, recipient, auth_headers):
        response = test_client.get(
            f"{API}/stats?start_date=2026-03-02T00:00:00&end_date=2026-03-01T00:00:00",
            headers=auth_headers(recipient),
        )
        assert response.status_code == 400


class TestHealth:

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "crew-notify"
        assert body["timer_running"] is False


class TestLifespan:

    def test_shutdown_closes_channel_clients(self, delivery_router, push_channel, web_channel):
        from fastapi.testclient import TestClient
        from crewnotify.src.api.notifications import get_delivery_router
        from crewnotify.src.main import app

        app.dependency_overrides[get_delivery_router] = lambda: delivery_router
        try:
            with TestClient(app) as client:
                assert client.get("/health").json()["timer_running"] is False
                assert not push_channel.closed
        finally:
            app.dependency_overrides.clear()

        assert push_channel.closed
        assert web_channel.closed
