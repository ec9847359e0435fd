"""Bid submission and resolution: accept, reject, withdraw."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Literal

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import (
    DuplicateBidError,
    StaleStateError,
    now_iso,
)
from crewlink_service.services.responses import bid_to_response

if TYPE_CHECKING:
    from crewlink_service.clients.email_client import EmailClient
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier

BidAction = Literal["accept", "reject", "withdraw"]

# Bid status reached by each action.
ACTION_TARGET_STATUS: dict[str, str] = {
    "accept": "accepted",
    "reject": "rejected",
    "withdraw": "withdrawn",
}

_PENDING_ALLOWED = ["accepted", "rejected", "withdrawn"]


def _invalid_bid_transition(current: str, action: str) -> ServiceError:
    allowed = _PENDING_ALLOWED if current == "pending" else []
    return ServiceError(
        "INVALID_TRANSITION",
        f"Cannot {action} a bid that is {current}",
        400,
        {"current": current, "requested": ACTION_TARGET_STATUS[action], "allowed": allowed},
    )


class BidResolver:
    """
    Handles the bid side of the marketplace.

    Acceptance closes out the competition for a job in a single store
    transaction: the winning bid, the job assignment, the sibling
    rejections, the booking, and the conversation thread either all land
    or none do. Notifications and email go out after the commit.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        notifier: Notifier,
        email_client: EmailClient,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._email_client = email_client
        self._logger = get_logger(__name__)

    def set_email_client(self, email_client: EmailClient) -> None:
        self._email_client = email_client

    def _load_bid(self, bid_id: str) -> dict[str, Any]:
        bid = self._store.get_bid(bid_id)
        if bid is None:
            raise ServiceError("NOT_FOUND", "Bid not found", 404, {})
        return bid

    def _load_job(self, job_id: str) -> dict[str, Any]:
        job = self._store.get_job(job_id)
        if job is None:
            raise ServiceError("NOT_FOUND", "Job not found", 404, {})
        return job

    # ------------------------------------------------------------------
    # Submission and lookup
    # ------------------------------------------------------------------

    def submit_bid(
        self,
        principal: Principal,
        job_id: str,
        *,
        amount: float,
        message: str | None,
        estimated_hours: float | None,
    ) -> dict[str, Any]:
        """
        Submit a worker's bid on a posted job.

        Error precedence:
        1. FORBIDDEN: principal is not a worker
        2. NOT_FOUND: job missing
        3. JOB_NOT_ACCEPTING_BIDS: job not posted
        4. SELF_BID: worker is the job's poster
        5. BID_ALREADY_EXISTS: one bid per (job, worker)
        """
        if not principal.is_worker:
            raise ServiceError("FORBIDDEN", "Only workers can submit bids", 403, {})

        job = self._load_job(job_id)
        if job["status"] != "posted":
            raise ServiceError(
                "JOB_NOT_ACCEPTING_BIDS",
                "This job is not accepting bids",
                400,
                {"status": job["status"]},
            )

        if job["poster_id"] == principal.user_id:
            raise ServiceError("SELF_BID", "Cannot bid on your own job", 400, {})

        self._store.upsert_user(principal.user_id, principal.role, principal.name, principal.email)

        timestamp = now_iso()
        bid = {
            "bid_id": f"bid-{uuid.uuid4()}",
            "job_id": job_id,
            "worker_id": principal.user_id,
            "amount": amount,
            "message": message,
            "estimated_hours": estimated_hours,
            "status": "pending",
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        try:
            self._store.insert_bid(bid)
        except DuplicateBidError as exc:
            raise ServiceError(
                "BID_ALREADY_EXISTS",
                "You have already submitted a bid for this job",
                400,
                {},
            ) from exc

        self._notifier.notify(
            job["poster_id"],
            "new_bid",
            "New Bid Received",
            f'You received a new bid of ${amount:.2f} for "{job["title"]}"',
            {"jobId": job_id, "bidId": bid["bid_id"]},
            f"/hiring/job/{job_id}",
        )
        return bid_to_response(bid)

    def get_bid(self, principal: Principal, bid_id: str) -> dict[str, Any]:
        """
        Return a bid to its worker or to the job's poster.

        An accepted bid also carries the ``bookingId`` it opened.
        """
        bid = self._load_bid(bid_id)
        job = self._load_job(bid["job_id"])
        if principal.user_id not in (bid["worker_id"], job["poster_id"]):
            raise ServiceError("FORBIDDEN", "You cannot view this bid", 403, {})
        response = bid_to_response(bid)
        if bid["status"] == "accepted":
            booking = self._store.get_booking_for_bid(bid_id)
            if booking is not None:
                response["bookingId"] = booking["booking_id"]
        return response

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_bid(
        self,
        principal: Principal,
        bid_id: str,
        action: BidAction,
    ) -> dict[str, Any]:
        """
        Accept, reject, or withdraw a pending bid.

        Error precedence:
        1. NOT_FOUND: bid missing
        2. FORBIDDEN: accept/reject by someone other than the poster,
           withdraw by someone other than the bidder
        3. INVALID_TRANSITION: bid not pending (or lost a race)
        """
        bid = self._load_bid(bid_id)
        job = self._load_job(bid["job_id"])

        if action == "withdraw":
            if bid["worker_id"] != principal.user_id:
                raise ServiceError("FORBIDDEN", "Only the bid owner can withdraw", 403, {})
        elif job["poster_id"] != principal.user_id:
            raise ServiceError(
                "FORBIDDEN",
                "Only the job owner can accept or reject bids",
                403,
                {},
            )

        if bid["status"] != "pending":
            raise _invalid_bid_transition(bid["status"], action)

        if action == "accept":
            return await self._accept(bid, job)
        if action == "reject":
            return self._reject(bid, job)
        return self._withdraw(bid)

    async def _accept(self, bid: dict[str, Any], job: dict[str, Any]) -> dict[str, Any]:
        timestamp = now_iso()
        booking = {
            "booking_id": f"bk-{uuid.uuid4()}",
            "job_id": job["job_id"],
            "bid_id": bid["bid_id"],
            "hirer_id": job["poster_id"],
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

        try:
            result = self._store.accept_bid(
                bid,
                job["poster_id"],
                booking,
                thread_id=f"thr-{uuid.uuid4()}",
                system_message={
                    "message_id": f"msg-{uuid.uuid4()}",
                    "content": "Bid accepted! You can now coordinate the job details.",
                },
            )
        except StaleStateError as exc:
            latest = self._load_bid(bid["bid_id"])
            if exc.entity == "bid" or latest["status"] != "pending":
                raise _invalid_bid_transition(latest["status"], "accept") from exc
            latest_job = self._load_job(job["job_id"])
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot accept a bid on a job that is {latest_job['status']}",
                400,
                {"current": latest_job["status"], "requested": "assigned", "allowed": []},
            ) from exc

        self._logger.info(
            "Bid accepted",
            extra={
                "bid_id": bid["bid_id"],
                "job_id": job["job_id"],
                "booking_id": booking["booking_id"],
                "rejected_siblings": result["rejected_count"],
            },
        )

        self._notifier.notify(
            bid["worker_id"],
            "bid_accepted",
            "Bid Accepted",
            f'Your bid for "{job["title"]}" has been accepted',
            {"jobId": job["job_id"], "bidId": bid["bid_id"], "bookingId": booking["booking_id"]},
            f"/work/job/{job['job_id']}",
        )

        worker = self._store.get_user(bid["worker_id"])
        if worker is not None and worker["email"]:
            await self._email_client.send_bid_accepted(
                worker["email"],
                worker["name"] or "Worker",
                job["title"],
                job["job_id"],
            )

        return {
            "bidStatus": "accepted",
            "conversationId": result["thread_id"],
            "bookingId": booking["booking_id"],
        }

    def _reject(self, bid: dict[str, Any], job: dict[str, Any]) -> dict[str, Any]:
        try:
            self._store.reject_bid(bid["bid_id"])
        except StaleStateError as exc:
            latest = self._load_bid(bid["bid_id"])
            raise _invalid_bid_transition(latest["status"], "reject") from exc

        self._notifier.notify(
            bid["worker_id"],
            "bid_rejected",
            "Bid Not Selected",
            f'Your bid for "{job["title"]}" was not selected',
            {"jobId": job["job_id"], "bidId": bid["bid_id"]},
            "/work/jobs",
        )
        return {"bidStatus": "rejected"}

    def _withdraw(self, bid: dict[str, Any]) -> dict[str, Any]:
        try:
            self._store.withdraw_bid(bid["bid_id"], bid["job_id"])
        except StaleStateError as exc:
            latest = self._load_bid(bid["bid_id"])
            raise _invalid_bid_transition(latest["status"], "withdraw") from exc
        return {"bidStatus": "withdrawn"}
