"""Notification fan-out to users affected by marketplace state changes."""

from __future__ import annotations

import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import now_iso
from crewlink_service.services.responses import pagination

if TYPE_CHECKING:
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore


def _notification_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["notification_id"],
        "userId": row["user_id"],
        "type": row["type"],
        "title": row["title"],
        "body": row["body"],
        "data": row["data"],
        "actionUrl": row["action_url"],
        "read": row["read"],
        "createdAt": row["created_at"],
    }


class Notifier:
    """
    Persists in-app notifications.

    Callers invoke ``notify`` after their own state change has committed.
    A failed notification write is logged and swallowed: nothing is retried
    and the caller's state is not rolled back.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        body: str,
        data: dict[str, Any],
        action_url: str | None,
    ) -> str | None:
        """Persist one notification. Returns its ID, or None if the write failed."""
        notification_id = f"ntf-{uuid.uuid4()}"
        try:
            self._store.insert_notification(
                {
                    "notification_id": notification_id,
                    "user_id": user_id,
                    "type": notification_type,
                    "title": title,
                    "body": body,
                    "data": data,
                    "action_url": action_url,
                    "created_at": now_iso(),
                }
            )
        except sqlite3.Error:
            self._logger.exception(
                "Notification write failed",
                extra={"user_id": user_id, "type": notification_type},
            )
            return None
        return notification_id

    def list_notifications(
        self,
        principal: Principal,
        *,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> dict[str, Any]:
        """List the principal's notifications with the unread count."""
        rows = self._store.list_notifications(
            principal.user_id,
            unread_only=unread_only,
            limit=limit,
            offset=offset,
        )
        total = self._store.count_notifications(principal.user_id, unread_only=unread_only)
        return {
            "notifications": [_notification_to_response(row) for row in rows],
            "unreadCount": self._store.count_notifications(principal.user_id, unread_only=True),
            "pagination": pagination(total, limit, offset, len(rows)),
        }

    def mark_read(self, principal: Principal, notification_ids: list[str] | None) -> dict[str, int]:
        """Mark the given notifications (or all of them) read."""
        updated = self._store.mark_notifications_read(principal.user_id, notification_ids)
        return {"updated": updated}
