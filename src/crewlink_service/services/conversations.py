"""Message threads opened between a hirer and a worker on bid acceptance."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.services.marketplace_store import now_iso

if TYPE_CHECKING:
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier


def _message_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["message_id"],
        "conversationId": row["thread_id"],
        "senderId": row["sender_id"],
        "content": row["content"],
        "type": row["message_type"],
        "createdAt": row["created_at"],
    }


class ConversationService:
    """Read and append messages. Non-participants see NOT_FOUND."""

    def __init__(self, store: MarketplaceStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier

    def _require_participant(self, principal: Principal, thread_id: str) -> None:
        if not self._store.is_thread_participant(thread_id, principal.user_id):
            raise ServiceError("NOT_FOUND", "Conversation not found", 404, {})

    def list_threads(self, principal: Principal) -> dict[str, Any]:
        threads = self._store.list_threads_for_user(principal.user_id)
        return {
            "conversations": [
                {
                    "id": thread["thread_id"],
                    "jobId": thread["job_id"],
                    "participants": thread["participants"],
                    "createdAt": thread["created_at"],
                }
                for thread in threads
            ]
        }

    def list_messages(self, principal: Principal, thread_id: str) -> dict[str, Any]:
        self._require_participant(principal, thread_id)
        return {
            "conversationId": thread_id,
            "messages": [_message_to_response(row) for row in self._store.list_messages(thread_id)],
        }

    def post_message(self, principal: Principal, thread_id: str, content: str) -> dict[str, Any]:
        """Append a text message and notify the other participants."""
        self._require_participant(principal, thread_id)

        message = {
            "message_id": f"msg-{uuid.uuid4()}",
            "thread_id": thread_id,
            "sender_id": principal.user_id,
            "content": content,
            "message_type": "text",
            "created_at": now_iso(),
        }
        self._store.insert_message(message)

        preview = content if len(content) <= 100 else content[:97] + "..."
        for participant_id in self._store.list_thread_participants(thread_id):
            if participant_id == principal.user_id:
                continue
            self._notifier.notify(
                participant_id,
                "new_message",
                "New Message",
                preview,
                {"conversationId": thread_id, "messageId": message["message_id"]},
                f"/messages/{thread_id}",
            )
        return _message_to_response(message)
