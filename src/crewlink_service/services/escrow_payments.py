"""Escrow payment flow: hold on booking, capture on completion, refund on request."""

from __future__ import annotations

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import StaleStateError, now_iso
from crewlink_service.services.responses import pagination, payment_to_response

if TYPE_CHECKING:
    from crewlink_service.clients.stripe_gateway import StripeGateway
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier

# Processor event types that settle a pending record, and the status they settle it to.
_SETTLING_EVENTS: dict[str, str] = {
    "payment_intent.succeeded": "completed",
    "payment_intent.payment_failed": "failed",
}

PAYMENT_RECORD_TYPES: frozenset[str] = frozenset({"escrow_hold", "refund"})


def to_minor_units(amount: float) -> int:
    """Convert a decimal currency amount to integer minor units (half-up)."""
    cents = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


class EscrowPayments:
    """
    Orchestrates the escrow ledger against the payment processor.

    The processor is always called before any local write. A processor
    failure surfaces as UPSTREAM_FAILURE and leaves the ledger untouched.
    PaymentRecord rows are append-only; the only mutation is a status flip
    out of ``pending``.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        gateway: StripeGateway,
        notifier: Notifier,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def set_gateway(self, gateway: StripeGateway) -> None:
        self._gateway = gateway

    def _load_owned_booking(self, principal: Principal, booking_id: str) -> dict[str, Any]:
        if not principal.is_hirer:
            raise ServiceError("FORBIDDEN", "Only hirers can manage payments", 403, {})
        booking = self._store.get_booking(booking_id)
        if booking is None or booking["hirer_id"] != principal.user_id:
            raise ServiceError("NOT_FOUND", "Booking not found", 404, {})
        return booking

    # ------------------------------------------------------------------
    # Hold
    # ------------------------------------------------------------------

    async def create_hold(self, principal: Principal, booking_id: str) -> dict[str, Any]:
        """
        Authorize the agreed amount as a manual-capture charge.

        Error precedence:
        1. FORBIDDEN: principal is not a hirer
        2. NOT_FOUND: booking missing or not owned by the principal
        3. ALREADY_INITIATED: payment_status is not pending, or a live
           escrow hold already exists
        4. UPSTREAM_FAILURE: processor rejected the request
        """
        booking = self._load_owned_booking(principal, booking_id)

        existing = self._store.find_payment_record(
            booking_id,
            user_id=None,
            record_type="escrow_hold",
            statuses=("pending", "completed"),
        )
        if booking["payment_status"] != "pending" or existing is not None:
            raise ServiceError(
                "ALREADY_INITIATED",
                "Payment has already been initiated for this booking",
                400,
                {"paymentStatus": booking["payment_status"]},
            )

        job = self._store.get_job(booking["job_id"])
        job_title = job["title"] if job is not None else ""

        intent = await self._gateway.create_hold(
            to_minor_units(booking["agreed_amount"]),
            {
                "bookingId": booking_id,
                "hirerId": principal.user_id,
                "workerId": booking["worker_id"],
                "jobTitle": job_title,
            },
        )

        self._store.insert_payment_record(
            {
                "payment_id": f"pay-{uuid.uuid4()}",
                "booking_id": booking_id,
                "user_id": principal.user_id,
                "amount": booking["agreed_amount"],
                "type": "escrow_hold",
                "status": "pending",
                "external_id": intent["id"],
                "provider": self._gateway.provider,
                "description": f'Escrow hold for "{job_title}"',
                "metadata": {
                    "paymentIntentId": intent["id"],
                    "jobId": booking["job_id"],
                    "workerId": booking["worker_id"],
                },
                "created_at": now_iso(),
                "processed_at": None,
            }
        )
        self._logger.info(
            "Escrow hold created",
            extra={"booking_id": booking_id, "external_id": intent["id"]},
        )
        return {"clientSecret": intent["client_secret"]}

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture_hold(self, principal: Principal, booking_id: str) -> dict[str, Any]:
        """
        Capture the held charge of a completed booking and mark it paid.

        No record is read or written unless the booking is completed.

        While the booking is still unpaid, a hold the succeeded callback has
        already completed is settled without calling the processor again. This
        covers a capture whose processor response was lost.
        """
        booking = self._load_owned_booking(principal, booking_id)
        if booking["status"] != "completed":
            raise ServiceError("NOT_FOUND", "Completed booking not found", 404, {})

        unpaid = booking["payment_status"] == "pending"
        record = self._store.find_payment_record(
            booking_id,
            user_id=principal.user_id,
            record_type="escrow_hold",
            statuses=("pending", "completed") if unpaid else ("pending",),
        )
        if record is None:
            raise ServiceError(
                "NOT_FOUND",
                "No pending escrow payment found for this booking",
                404,
                {},
            )
        if not record["external_id"]:
            raise ServiceError(
                "NOT_FOUND",
                "Payment record missing external reference",
                404,
                {"paymentId": record["payment_id"]},
            )

        if record["status"] == "pending":
            await self._gateway.capture_hold(
                record["external_id"],
                idempotency_key=f"capture_{booking_id}",
            )
        else:
            self._logger.info(
                "Hold already captured by the processor, settling locally",
                extra={"booking_id": booking_id, "payment_id": record["payment_id"]},
            )

        payout_amount = (
            booking["final_amount"]
            if booking["final_amount"] is not None
            else booking["agreed_amount"]
        )
        try:
            self._store.capture_escrow(record["payment_id"], booking_id, payout_amount)
        except StaleStateError as exc:
            self._logger.error(
                "Captured charge could not be settled locally",
                extra={"booking_id": booking_id, "payment_id": record["payment_id"]},
            )
            latest = self._store.get_booking(booking_id)
            current = latest["payment_status"] if latest is not None else "unknown"
            raise ServiceError(
                "INVALID_TRANSITION",
                "Payment was already settled for this booking",
                400,
                {"current": current, "requested": "paid", "allowed": []},
            ) from exc

        self._logger.info(
            "Escrow captured",
            extra={"booking_id": booking_id, "amount": payout_amount},
        )
        return {"message": "Payment captured successfully", "amount": payout_amount}

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def issue_refund(
        self,
        principal: Principal,
        booking_id: str,
        reason: str,
    ) -> dict[str, Any]:
        """
        Refund a paid booking in full.

        Appends a negative refund record referencing the original payment,
        moves the booking to refunded, and notifies the worker.
        """
        booking = self._load_owned_booking(principal, booking_id)

        if booking["payment_status"] == "refunded":
            raise ServiceError(
                "ALREADY_REFUNDED",
                "This booking has already been refunded",
                400,
                {},
            )

        original = None
        if booking["payment_status"] == "paid":
            original = self._store.find_payment_record(
                booking_id,
                user_id=principal.user_id,
                record_type="escrow_hold",
                statuses=("completed",),
            )
        if original is None:
            raise ServiceError(
                "NOT_FOUND",
                "No completed payment found for this booking",
                404,
                {},
            )
        if not original["external_id"]:
            raise ServiceError(
                "NOT_FOUND",
                "Payment record missing external reference",
                404,
                {"paymentId": original["payment_id"]},
            )

        refund = await self._gateway.refund(
            original["external_id"],
            {"bookingId": booking_id, "hirerId": principal.user_id, "reason": reason},
            idempotency_key=f"refund_{booking_id}",
        )

        job = self._store.get_job(booking["job_id"])
        job_title = job["title"] if job is not None else ""
        timestamp = now_iso()
        try:
            self._store.record_refund(
                {
                    "payment_id": f"pay-{uuid.uuid4()}",
                    "booking_id": booking_id,
                    "user_id": principal.user_id,
                    "amount": -original["amount"],
                    "type": "refund",
                    "status": "completed",
                    "external_id": refund["id"],
                    "provider": self._gateway.provider,
                    "description": f'Refund for "{job_title}": {reason}',
                    "metadata": {
                        "refundId": refund["id"],
                        "originalPaymentId": original["payment_id"],
                        "reason": reason,
                        "jobId": booking["job_id"],
                    },
                    "created_at": timestamp,
                    "processed_at": timestamp,
                }
            )
        except StaleStateError as exc:
            self._logger.error(
                "Processor refund could not be recorded locally",
                extra={"booking_id": booking_id, "refund_id": refund["id"]},
            )
            raise ServiceError(
                "ALREADY_REFUNDED",
                "This booking has already been refunded",
                400,
                {},
            ) from exc

        self._logger.info(
            "Refund issued",
            extra={"booking_id": booking_id, "refund_id": refund["id"], "amount": original["amount"]},
        )

        self._notifier.notify(
            booking["worker_id"],
            "payment_refunded",
            "Payment Refunded",
            f'A refund has been issued for "{job_title}".',
            {"bookingId": booking_id, "jobId": booking["job_id"]},
            f"/work/bookings/{booking_id}",
        )

        return {
            "refundId": refund["id"],
            "amount": original["amount"],
            "message": "Refund has been processed successfully",
        }

    # ------------------------------------------------------------------
    # Processor callbacks
    # ------------------------------------------------------------------

    def handle_webhook(self, payload: bytes, signature: str | None) -> dict[str, bool]:
        """
        Verify and apply a processor event.

        Settling events flip matching pending records only, so a replayed
        event changes nothing and notifies nobody.
        """
        if not signature:
            raise ServiceError(
                "INVALID_SIGNATURE",
                "Missing Stripe-Signature header",
                400,
                {},
            )

        event = self._gateway.construct_event(payload, signature)
        event_type = str(event.get("type", ""))
        new_status = _SETTLING_EVENTS.get(event_type)
        if new_status is None:
            self._logger.info("Unhandled webhook event type", extra={"event_type": event_type})
            return {"received": True}

        intent = event.get("data", {}).get("object", {})
        metadata = intent.get("metadata") or {}
        booking_id = metadata.get("bookingId")
        external_id = intent.get("id")
        if not booking_id or not external_id:
            self._logger.warning(
                "Webhook event has no booking reference",
                extra={"event_type": event_type, "event_id": event.get("id")},
            )
            return {"received": True}

        changed = self._store.settle_pending_by_external_id(external_id, booking_id, new_status)
        self._logger.info(
            "Webhook event applied",
            extra={
                "event_type": event_type,
                "booking_id": booking_id,
                "external_id": external_id,
                "records_changed": changed,
            },
        )

        hirer_id = metadata.get("hirerId")
        if new_status == "failed" and changed > 0 and hirer_id:
            job_title = metadata.get("jobTitle") or "a booking"
            self._notifier.notify(
                hirer_id,
                "payment_failed",
                "Payment Failed",
                f'Your payment for "{job_title}" has failed. Please update your payment method.',
                {"bookingId": booking_id, "paymentIntentId": external_id},
                f"/hiring/bookings/{booking_id}",
            )

        return {"received": True}

    # ------------------------------------------------------------------
    # Earnings
    # ------------------------------------------------------------------

    def earnings(self, principal: Principal) -> dict[str, Any]:
        """Return the principal's profile counters, zeros before the first increment."""
        if principal.is_worker:
            profile = self._store.get_worker_profile(principal.user_id) or {}
            return {
                "role": "worker",
                "completedJobs": profile.get("completed_jobs", 0),
                "lifetimeEarnings": profile.get("lifetime_earnings", 0.0),
                "totalEarnings": profile.get("total_earnings", 0.0),
            }
        profile = self._store.get_hirer_profile(principal.user_id) or {}
        return {"role": "hirer", "totalSpent": profile.get("total_spent", 0.0)}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def list_transactions(
        self,
        principal: Principal,
        *,
        record_type: str | None,
        limit: int,
        offset: int,
    ) -> dict[str, Any]:
        """
        List the principal's ledger entries, newest first.

        The summary covers every completed entry of the principal, not only
        the returned page. Refund records carry negative amounts, so
        ``totalRefunded`` is reported as a positive figure.
        """
        if record_type is not None and record_type not in PAYMENT_RECORD_TYPES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown transaction type: {record_type}",
                400,
                {"allowed": sorted(PAYMENT_RECORD_TYPES)},
            )
        rows, total = self._store.list_payment_records_for_user(
            principal.user_id, record_type, limit, offset
        )
        totals = self._store.sum_completed_payments_by_type(principal.user_id)
        return {
            "transactions": [payment_to_response(row) for row in rows],
            "summary": {
                "totalPaid": totals.get("escrow_hold", 0.0),
                "totalRefunded": abs(totals.get("refund", 0.0)),
            },
            "pagination": pagination(total, limit, offset, len(rows)),
        }
