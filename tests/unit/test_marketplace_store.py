"""Unit tests for MarketplaceStore."""

from __future__ import annotations

import pytest

from crewlink_service.services.marketplace_store import (
    DuplicateBidError,
    DuplicateReviewError,
    MarketplaceStore,
    StaleStateError,
    now_iso,
)


def _job_data(job_id: str, status: str = "posted", poster_id: str = "usr-hirer") -> dict[str, object]:
    timestamp = now_iso()
    return {
        "job_id": job_id,
        "poster_id": poster_id,
        "title": f"Job {job_id}",
        "description": "Description",
        "category": None,
        "budget": 100.0,
        "status": status,
        "assigned_worker_id": None,
        "bid_count": 0,
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def _bid_data(bid_id: str, job_id: str, worker_id: str, amount: float = 80.0) -> dict[str, object]:
    timestamp = now_iso()
    return {
        "bid_id": bid_id,
        "job_id": job_id,
        "worker_id": worker_id,
        "amount": amount,
        "message": None,
        "estimated_hours": None,
        "status": "pending",
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def _booking_data(booking_id: str, bid: dict[str, object], hirer_id: str) -> dict[str, object]:
    timestamp = now_iso()
    return {
        "booking_id": booking_id,
        "job_id": bid["job_id"],
        "bid_id": bid["bid_id"],
        "hirer_id": hirer_id,
        "worker_id": bid["worker_id"],
        "agreed_amount": bid["amount"],
        "final_amount": None,
        "status": "confirmed",
        "payment_status": "pending",
        "scheduled_start": timestamp,
        "actual_start": None,
        "completed_at": None,
        "cancelled_at": None,
        "cancel_reason": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def _accept(store: MarketplaceStore, bid_id: str, booking_id: str, thread_id: str = "thr-1"):
    bid = store.get_bid(bid_id)
    assert bid is not None
    return store.accept_bid(
        bid,
        "usr-hirer",
        _booking_data(booking_id, bid, "usr-hirer"),
        thread_id=thread_id,
        system_message={"message_id": f"msg-{thread_id}", "content": "Bid accepted"},
    )


def _hold_record(payment_id: str, booking_id: str, external_id: str = "pi_1") -> dict[str, object]:
    return {
        "payment_id": payment_id,
        "booking_id": booking_id,
        "user_id": "usr-hirer",
        "amount": 80.0,
        "type": "escrow_hold",
        "status": "pending",
        "external_id": external_id,
        "provider": "stripe",
        "description": "Escrow hold",
        "metadata": {"paymentIntentId": external_id},
        "created_at": now_iso(),
        "processed_at": None,
    }


@pytest.fixture
def store(tmp_path):
    marketplace = MarketplaceStore(db_path=str(tmp_path / "crewlink.db"))
    yield marketplace
    marketplace.close()


@pytest.fixture
def booked(store):
    """A posted job with two bids, the first accepted into bk-1."""
    store.insert_job(_job_data("job-1"))
    store.insert_bid(_bid_data("bid-1", "job-1", "usr-w1"))
    store.insert_bid(_bid_data("bid-2", "job-1", "usr-w2"))
    _accept(store, "bid-1", "bk-1")
    return store


@pytest.mark.unit
def test_job_crud_and_filters(store) -> None:
    store.insert_job(_job_data("job-1"))
    store.insert_job(_job_data("job-2", status="draft"))
    store.insert_job(_job_data("job-3", poster_id="usr-other"))

    assert store.get_job("job-1")["title"] == "Job job-1"
    assert store.get_job("missing") is None
    assert store.count_jobs("draft", None) == 1
    assert store.count_jobs(None, "usr-hirer") == 2
    assert [job["job_id"] for job in store.list_jobs(None, None, 2, 0)] == ["job-3", "job-2"]

    assert store.update_job("job-2", {"status": "posted"}, expected_status="draft") == 1
    assert store.update_job("job-2", {"status": "cancelled"}, expected_status="draft") == 0
    assert store.get_job("job-2")["status"] == "posted"


@pytest.mark.unit
def test_update_job_rejects_unknown_column(store) -> None:
    store.insert_job(_job_data("job-1"))
    with pytest.raises(ValueError):
        store.update_job("job-1", {"status; DROP TABLE jobs": "x"}, expected_status=None)


@pytest.mark.unit
def test_bid_count_follows_insert_and_withdraw(store) -> None:
    store.insert_job(_job_data("job-1"))
    store.insert_bid(_bid_data("bid-1", "job-1", "usr-w1"))
    store.insert_bid(_bid_data("bid-2", "job-1", "usr-w2"))
    assert store.get_job("job-1")["bid_count"] == 2

    store.withdraw_bid("bid-1", "job-1")
    assert store.get_job("job-1")["bid_count"] == 1
    assert store.get_bid("bid-1")["status"] == "withdrawn"

    with pytest.raises(StaleStateError):
        store.withdraw_bid("bid-1", "job-1")
    assert store.get_job("job-1")["bid_count"] == 1


@pytest.mark.unit
def test_duplicate_bid_is_rejected(store) -> None:
    store.insert_job(_job_data("job-1"))
    store.insert_bid(_bid_data("bid-1", "job-1", "usr-w1"))
    with pytest.raises(DuplicateBidError):
        store.insert_bid(_bid_data("bid-2", "job-1", "usr-w1"))
    assert store.get_job("job-1")["bid_count"] == 1


@pytest.mark.unit
def test_accept_bid_applies_every_step(booked) -> None:
    job = booked.get_job("job-1")
    assert job["status"] == "assigned"
    assert job["assigned_worker_id"] == "usr-w1"
    assert booked.get_bid("bid-1")["status"] == "accepted"
    assert booked.get_bid("bid-2")["status"] == "rejected"

    booking = booked.get_booking("bk-1")
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "pending"
    assert booked.get_booking_for_bid("bid-1")["booking_id"] == "bk-1"

    assert booked.list_thread_participants("thr-1") == ["usr-hirer", "usr-w1"]
    [message] = booked.list_messages("thr-1")
    assert message["message_type"] == "system"


@pytest.mark.unit
def test_accept_bid_rolls_back_when_job_is_closed(store) -> None:
    store.insert_job(_job_data("job-1", status="cancelled"))
    store.insert_bid(_bid_data("bid-1", "job-1", "usr-w1"))

    with pytest.raises(StaleStateError) as exc_info:
        _accept(store, "bid-1", "bk-1")
    assert exc_info.value.entity == "job"
    assert store.get_bid("bid-1")["status"] == "pending"
    assert store.get_booking("bk-1") is None
    assert store.list_threads_for_user("usr-hirer") == []


@pytest.mark.unit
def test_second_accept_on_job_hits_unique_index(booked) -> None:
    # Force the job back open so only the partial unique index can stop a second accept.
    booked.update_job("job-1", {"status": "posted"}, expected_status="assigned")
    booked.insert_bid(_bid_data("bid-3", "job-1", "usr-w3"))

    with pytest.raises(StaleStateError):
        _accept(booked, "bid-3", "bk-3", thread_id="thr-3")
    assert booked.get_bid("bid-3")["status"] == "pending"
    assert booked.get_booking("bk-3") is None


@pytest.mark.unit
def test_accept_reuses_existing_thread(store) -> None:
    store.insert_job(_job_data("job-1"))
    store.insert_bid(_bid_data("bid-1", "job-1", "usr-w1"))
    _accept(store, "bid-1", "bk-1", thread_id="thr-1")
    store.transition_booking(
        "bk-1", "confirmed", {"status": "cancelled"}, job_status="cancelled", completion_amount=None
    )

    # The cancelled job is reopened by hand and the same worker is re-hired.
    store.update_job("job-1", {"status": "posted"}, expected_status="cancelled")
    store._db.execute("UPDATE bids SET status = 'pending' WHERE bid_id = 'bid-1'")
    store._db.execute("DELETE FROM bookings WHERE booking_id = 'bk-1'")
    store._db.commit()

    result = _accept(store, "bid-1", "bk-2", thread_id="thr-2")
    assert result["thread_id"] == "thr-1"
    assert len(store.list_threads_for_user("usr-w1")) == 1


@pytest.mark.unit
def test_transition_booking_is_conditional(booked) -> None:
    updated = booked.transition_booking(
        "bk-1",
        "confirmed",
        {"status": "in_progress", "actual_start": now_iso()},
        job_status=None,
        completion_amount=None,
    )
    assert updated["status"] == "in_progress"

    with pytest.raises(StaleStateError):
        booked.transition_booking(
            "bk-1",
            "confirmed",
            {"status": "cancelled"},
            job_status="cancelled",
            completion_amount=None,
        )
    assert booked.get_booking("bk-1")["status"] == "in_progress"
    assert booked.get_job("job-1")["status"] == "assigned"


@pytest.mark.unit
def test_completion_updates_profiles(booked) -> None:
    booked.transition_booking(
        "bk-1", "confirmed", {"status": "in_progress"}, job_status=None, completion_amount=None
    )
    booked.transition_booking(
        "bk-1",
        "in_progress",
        {"status": "completed", "final_amount": 90.0},
        job_status="completed",
        completion_amount=90.0,
    )
    assert booked.get_job("job-1")["status"] == "completed"
    worker = booked.get_worker_profile("usr-w1")
    assert worker["completed_jobs"] == 1
    assert worker["lifetime_earnings"] == 90.0
    assert worker["total_earnings"] == 0.0
    assert booked.get_hirer_profile("usr-hirer")["total_spent"] == 90.0


@pytest.mark.unit
def test_transition_rejects_unknown_column(booked) -> None:
    with pytest.raises(ValueError):
        booked.transition_booking(
            "bk-1",
            "confirmed",
            {"payment_status": "paid"},
            job_status=None,
            completion_amount=None,
        )


@pytest.mark.unit
def test_capture_escrow_settles_once(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))

    booked.capture_escrow("pay-1", "bk-1", 80.0)
    assert booked.get_booking("bk-1")["payment_status"] == "paid"
    assert booked.get_worker_profile("usr-w1")["total_earnings"] == 80.0
    [record] = booked.list_payment_records("bk-1")
    assert record["status"] == "completed"
    assert record["metadata"] == {"paymentIntentId": "pi_1"}

    with pytest.raises(StaleStateError) as exc_info:
        booked.capture_escrow("pay-1", "bk-1", 80.0)
    assert exc_info.value.entity == "booking"
    assert booked.get_worker_profile("usr-w1")["total_earnings"] == 80.0


@pytest.mark.unit
def test_capture_escrow_accepts_record_completed_by_callback(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))
    assert booked.settle_pending_by_external_id("pi_1", "bk-1", "completed") == 1

    booked.capture_escrow("pay-1", "bk-1", 80.0)
    assert booked.get_booking("bk-1")["payment_status"] == "paid"


@pytest.mark.unit
def test_capture_escrow_refuses_failed_record(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))
    booked.settle_pending_by_external_id("pi_1", "bk-1", "failed")

    with pytest.raises(StaleStateError) as exc_info:
        booked.capture_escrow("pay-1", "bk-1", 80.0)
    assert exc_info.value.entity == "payment_record"
    assert booked.get_booking("bk-1")["payment_status"] == "pending"


@pytest.mark.unit
def test_record_refund_requires_paid_booking(booked) -> None:
    refund = _hold_record("pay-r", "bk-1", external_id="re_1")
    refund.update({"type": "refund", "status": "completed", "amount": -80.0})

    with pytest.raises(StaleStateError):
        booked.record_refund(refund)
    assert booked.list_payment_records("bk-1") == []

    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))
    booked.capture_escrow("pay-1", "bk-1", 80.0)
    booked.record_refund(refund)

    original, appended = booked.list_payment_records("bk-1")
    assert original["status"] == "completed"
    assert appended["amount"] == -80.0
    assert booked.get_booking("bk-1")["payment_status"] == "refunded"


@pytest.mark.unit
def test_settle_pending_only_touches_pending(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))
    assert booked.settle_pending_by_external_id("pi_1", "bk-1", "completed") == 1
    assert booked.settle_pending_by_external_id("pi_1", "bk-1", "failed") == 0
    assert booked.settle_pending_by_external_id("pi_other", "bk-1", "completed") == 0
    with pytest.raises(ValueError):
        booked.settle_pending_by_external_id("pi_1", "bk-1", "refunded")


@pytest.mark.unit
def test_find_payment_record_filters(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))

    found = booked.find_payment_record(
        "bk-1", user_id="usr-hirer", record_type="escrow_hold", statuses=("pending",)
    )
    assert found is not None
    assert found["payment_id"] == "pay-1"
    assert (
        booked.find_payment_record(
            "bk-1", user_id="usr-other", record_type="escrow_hold", statuses=("pending",)
        )
        is None
    )
    assert (
        booked.find_payment_record(
            "bk-1", user_id=None, record_type="escrow_hold", statuses=("completed",)
        )
        is None
    )


@pytest.mark.unit
def test_notifications_read_tracking(store) -> None:
    for index in range(3):
        store.insert_notification(
            {
                "notification_id": f"ntf-{index}",
                "user_id": "usr-hirer",
                "type": "new_bid",
                "title": "New Bid",
                "body": "body",
                "data": {"index": index},
                "action_url": None,
                "created_at": now_iso(),
            }
        )

    assert store.count_notifications("usr-hirer", unread_only=True) == 3
    newest = store.list_notifications("usr-hirer", unread_only=False, limit=1, offset=0)
    assert newest[0]["notification_id"] == "ntf-2"
    assert newest[0]["data"] == {"index": 2}

    assert store.mark_notifications_read("usr-hirer", ["ntf-0"]) == 1
    assert store.mark_notifications_read("usr-hirer", []) == 0
    assert store.mark_notifications_read("usr-hirer", None) == 2
    assert store.count_notifications("usr-hirer", unread_only=True) == 0


@pytest.mark.unit
def test_upsert_user_keeps_known_contact_details(store) -> None:
    store.upsert_user("usr-w1", "worker", "Bob", "bob@example.com")
    store.upsert_user("usr-w1", "worker", None, None)

    user = store.get_user("usr-w1")
    assert user["name"] == "Bob"
    assert user["email"] == "bob@example.com"


@pytest.mark.unit
def test_count_bookings_by_status(booked) -> None:
    assert booked.count_bookings_by_status() == {"confirmed": 1}


@pytest.mark.unit
def test_user_ledger_pages_and_sums_completed_entries(booked) -> None:
    booked.insert_payment_record(_hold_record("pay-1", "bk-1"))
    booked.capture_escrow("pay-1", "bk-1", 80.0)
    refund = _hold_record("pay-r", "bk-1", external_id="re_1")
    refund.update({"type": "refund", "status": "completed", "amount": -80.0})
    booked.record_refund(refund)

    rows, total = booked.list_payment_records_for_user("usr-hirer", None, 1, 0)
    assert total == 2
    assert [row["payment_id"] for row in rows] == ["pay-r"]

    rows, total = booked.list_payment_records_for_user("usr-hirer", "escrow_hold", 10, 0)
    assert total == 1
    assert rows[0]["metadata"] == {"paymentIntentId": "pi_1"}

    assert booked.list_payment_records_for_user("usr-w1", None, 10, 0) == ([], 0)
    assert booked.sum_completed_payments_by_type("usr-hirer") == {
        "escrow_hold": 80.0,
        "refund": -80.0,
    }
    assert booked.sum_completed_payments_by_type("usr-w1") == {}


def _review_data(review_id: str, author_id: str, subject_id: str, rating: int) -> dict[str, object]:
    return {
        "review_id": review_id,
        "booking_id": "bk-1",
        "author_id": author_id,
        "subject_id": subject_id,
        "rating": rating,
        "title": None,
        "content": None,
        "communication_rating": None,
        "quality_rating": None,
        "timeliness_rating": None,
        "value_rating": None,
        "created_at": now_iso(),
    }


@pytest.mark.unit
def test_insert_review_refreshes_subject_rating(booked) -> None:
    summary = booked.insert_review(_review_data("rev-1", "usr-hirer", "usr-w1", 4), "worker")
    assert summary == {"average_rating": 4.0, "review_count": 1}
    worker = booked.get_worker_profile("usr-w1")
    assert worker["average_rating"] == 4.0
    assert worker["completed_jobs"] == 0

    booked.insert_review(_review_data("rev-2", "usr-w1", "usr-hirer", 3), "hirer")
    assert booked.get_hirer_profile("usr-hirer")["review_count"] == 1

    with pytest.raises(DuplicateReviewError):
        booked.insert_review(_review_data("rev-3", "usr-hirer", "usr-w1", 1), "worker")
    assert booked.get_worker_profile("usr-w1")["average_rating"] == 4.0

    rows, total = booked.list_reviews("usr-w1", given=False, limit=10, offset=0)
    assert total == 1
    assert rows[0]["review_id"] == "rev-1"
    rows, total = booked.list_reviews("usr-w1", given=True, limit=10, offset=0)
    assert [row["review_id"] for row in rows] == ["rev-2"]
