"""
Tests for the notification sink and inbox operations.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from alerts.notifications import (
    StoreNotificationSink,
    build_notification,
    list_notifications,
    mark_all_read,
    mark_read,
)
from core.errors import NotFoundError
from db.models import Notification

ORG_ID = "org_test"
USER_ID = "user-test"


def _notification(title="Forecast alert", user_id=USER_ID, severity="warning"):
    return build_notification(
        org_id=ORG_ID,
        user_id=user_id,
        title=title,
        body="WELL_C: probability of crossing the threshold 80%",
        severity=severity,
        related_entity="forecast",
        related_entity_id="fc_123",
    )


def _mock_redis(publish=None):
    client = MagicMock()
    client.publish = publish or AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


@pytest.mark.asyncio
class TestStoreNotificationSink:
    async def test_emit_persists(self, store, sink):
        notification = _notification()
        with patch("alerts.notifications.aioredis.from_url") as mock_from_url:
            await sink.emit(notification)

        rows = await store.find_all(Notification)
        assert [n.id for n in rows] == [notification.id]
        assert rows[0].read_at is None
        mock_from_url.assert_not_called()

    async def test_emit_same_notification_twice_keeps_one_row(self, store, sink):
        notification = _notification()
        await sink.emit(notification)
        await sink.emit(notification)
        assert len(await store.find_all(Notification)) == 1

    async def test_publishes_to_org_channel(self, store):
        sink = StoreNotificationSink(store, redis_url="redis://test:6379/0", pubsub_enabled=True)
        client = _mock_redis()
        notification = _notification(severity="critical")

        with patch("alerts.notifications.aioredis.from_url", return_value=client) as mock_from_url:
            await sink.emit(notification)

        mock_from_url.assert_called_once_with("redis://test:6379/0")
        channel, payload = client.publish.await_args.args
        assert channel == f"notifications:{ORG_ID}"
        message = json.loads(payload)
        assert message["type"] == "notification"
        assert message["payload"]["id"] == notification.id
        assert message["payload"]["severity"] == "critical"
        assert message["payload"]["related"] == {"entity": "forecast", "entity_id": "fc_123"}
        client.aclose.assert_awaited_once()

    async def test_publish_failure_is_not_raised(self, store):
        sink = StoreNotificationSink(store, pubsub_enabled=True)
        client = _mock_redis(publish=AsyncMock(side_effect=RedisConnectionError("redis down")))

        with patch("alerts.notifications.aioredis.from_url", return_value=client):
            await sink.emit(_notification())

        assert len(await store.find_all(Notification)) == 1
        client.aclose.assert_awaited_once()


@pytest.mark.asyncio
class TestInbox:
    async def test_list_unread_only(self, store, sink):
        first, second = _notification("first"), _notification("second")
        await sink.emit(first)
        await sink.emit(second)
        await mark_read(store, notification_id=first.id, org_id=ORG_ID, user_id=USER_ID)

        unread = await list_notifications(store, org_id=ORG_ID, user_id=USER_ID, unread_only=True)
        assert [n.id for n in unread] == [second.id]
        everything = await list_notifications(store, org_id=ORG_ID, user_id=USER_ID)
        assert {n.id for n in everything} == {first.id, second.id}

    async def test_inbox_is_per_user(self, store, sink):
        await sink.emit(_notification(user_id="someone-else"))
        assert await list_notifications(store, org_id=ORG_ID, user_id=USER_ID) == []

    async def test_mark_read_keeps_first_timestamp(self, store, sink):
        notification = _notification()
        await sink.emit(notification)

        first = await mark_read(store, notification_id=notification.id, org_id=ORG_ID, user_id=USER_ID)
        second = await mark_read(store, notification_id=notification.id, org_id=ORG_ID, user_id=USER_ID)
        assert first.read_at is not None
        assert second.read_at == first.read_at

    async def test_mark_read_other_users_notification(self, store, sink):
        notification = _notification(user_id="someone-else")
        await sink.emit(notification)
        with pytest.raises(NotFoundError):
            await mark_read(store, notification_id=notification.id, org_id=ORG_ID, user_id=USER_ID)

    async def test_mark_all_read(self, store, sink):
        for title in ("a", "b", "c"):
            await sink.emit(_notification(title))
        await sink.emit(_notification(user_id="someone-else"))

        assert await mark_all_read(store, org_id=ORG_ID, user_id=USER_ID) == 3
        assert await mark_all_read(store, org_id=ORG_ID, user_id=USER_ID) == 0
        others = await list_notifications(store, org_id=ORG_ID, user_id="someone-else", unread_only=True)
        assert len(others) == 1
