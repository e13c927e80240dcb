"""
Notification Sink — fire-and-forget delivery of in-app notifications.

Notifications are persisted to the inbox table and, when enabled, fanned out
over Redis pub/sub (channel ``notifications:<org_id>``) for live clients.
Callers emit only after their own store transaction has committed.
"""

from __future__ import annotations

import json
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from core.config import get_settings
from core.errors import NotFoundError
from db.models import Notification, generate_id, utcnow
from db.store import DocumentStore

logger = structlog.get_logger()


class NotificationSink(Protocol):
    async def emit(self, notification: Notification) -> None: ...


def build_notification(
    *,
    org_id: str,
    user_id: str,
    title: str,
    body: str,
    severity: str,
    related_entity: str | None = None,
    related_entity_id: str | None = None,
) -> Notification:
    return Notification(
        id=generate_id("nt"),
        org_id=org_id,
        user_id=user_id,
        title=title,
        body=body,
        severity=severity,
        created_at=utcnow(),
        related_entity=related_entity,
        related_entity_id=related_entity_id,
    )


class StoreNotificationSink:
    """Persists notifications and optionally publishes them to Redis."""

    def __init__(self, store: DocumentStore, *, redis_url: str | None = None, pubsub_enabled: bool | None = None):
        settings = get_settings()
        self._store = store
        self._redis_url = redis_url or settings.redis_url
        self._pubsub_enabled = settings.notifications_pubsub_enabled if pubsub_enabled is None else pubsub_enabled

    async def emit(self, notification: Notification) -> None:
        async with self._store.transaction() as tx:
            await tx.append_unique(notification)
        logger.info(
            "notification.emitted",
            notification_id=notification.id,
            org_id=notification.org_id,
            severity=notification.severity,
            related_entity=notification.related_entity,
        )
        if self._pubsub_enabled:
            await self._publish(notification)

    async def _publish(self, notification: Notification) -> int:
        """Publish to Redis; returns subscriber count (0 on failure)."""
        payload = json.dumps(
            {
                "type": "notification",
                "payload": {
                    "id": notification.id,
                    "user_id": notification.user_id,
                    "title": notification.title,
                    "body": notification.body,
                    "severity": notification.severity,
                    "related": {
                        "entity": notification.related_entity,
                        "entity_id": notification.related_entity_id,
                    },
                    "created_at": notification.created_at.isoformat(),
                },
            }
        )
        redis = aioredis.from_url(self._redis_url)
        try:
            return await redis.publish(f"notifications:{notification.org_id}", payload)
        except RedisError as exc:
            # Delivery is best effort; the inbox row is already committed.
            logger.warning("notification.publish_failed", notification_id=notification.id, error=str(exc))
            return 0
        finally:
            await redis.aclose()


# ─── Inbox ──────────────────────────────────────────────────────────────────


async def list_notifications(
    store: DocumentStore,
    *,
    org_id: str,
    user_id: str,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> list[Notification]:
    criteria = [Notification.org_id == org_id, Notification.user_id == user_id]
    if unread_only:
        criteria.append(Notification.read_at.is_(None))
    return await store.find_all(
        Notification, *criteria, order_by=Notification.created_at.desc(), offset=skip, limit=limit
    )


async def mark_read(store: DocumentStore, *, notification_id: str, org_id: str, user_id: str) -> Notification:
    async with store.transaction() as tx:
        notification = await tx.find(
            Notification,
            Notification.id == notification_id,
            Notification.org_id == org_id,
            Notification.user_id == user_id,
        )
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.read_at is None:
            notification.read_at = utcnow()
    return notification


async def mark_all_read(store: DocumentStore, *, org_id: str, user_id: str) -> int:
    async with store.transaction() as tx:
        unread = await tx.find_all(
            Notification,
            Notification.org_id == org_id,
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
        )
        now = utcnow()
        for notification in unread:
            notification.read_at = now
    return len(unread)
