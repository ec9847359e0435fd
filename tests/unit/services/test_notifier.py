"""Unit tests for Notifier."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from crewlink_service.core.auth import Principal
from crewlink_service.services.marketplace_store import MarketplaceStore
from crewlink_service.services.notifier import Notifier


@pytest.fixture
def store(tmp_path):
    marketplace = MarketplaceStore(db_path=str(tmp_path / "crewlink.db"))
    yield marketplace
    marketplace.close()


@pytest.mark.unit
def test_notify_persists_and_lists(store) -> None:
    notifier = Notifier(store)
    notification_id = notifier.notify(
        "usr-1", "bid_accepted", "Bid Accepted", "body", {"jobId": "job-1"}, "/work/job/job-1"
    )
    assert notification_id is not None
    assert notification_id.startswith("ntf-")

    result = notifier.list_notifications(
        Principal("usr-1", "worker"), unread_only=False, limit=20, offset=0
    )
    [item] = result["notifications"]
    assert item["id"] == notification_id
    assert item["data"] == {"jobId": "job-1"}
    assert item["actionUrl"] == "/work/job/job-1"
    assert result["unreadCount"] == 1
    assert result["pagination"]["total"] == 1


@pytest.mark.unit
def test_failed_write_is_swallowed() -> None:
    broken_store = MagicMock()
    broken_store.insert_notification.side_effect = sqlite3.OperationalError("database is locked")

    result = Notifier(broken_store).notify("usr-1", "new_bid", "t", "b", {}, None)

    assert result is None
    broken_store.insert_notification.assert_called_once()


@pytest.mark.unit
def test_mark_read_counts_updates(store) -> None:
    notifier = Notifier(store)
    notifier.notify("usr-1", "new_bid", "t", "b", {}, None)
    notifier.notify("usr-1", "new_bid", "t", "b", {}, None)

    assert notifier.mark_read(Principal("usr-1", "hirer"), None) == {"updated": 2}
    assert notifier.mark_read(Principal("usr-1", "hirer"), None) == {"updated": 0}
