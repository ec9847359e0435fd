"""Booking state machine: confirmed -> in_progress -> completed | cancelled | disputed."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import StaleStateError, now_iso
from crewlink_service.services.responses import booking_to_response, pagination

if TYPE_CHECKING:
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier

BOOKING_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "confirmed": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled", "disputed"),
    "disputed": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

BOOKING_STATUSES = frozenset(BOOKING_TRANSITIONS)

# Booking statuses that are mirrored onto the owning job.
_JOB_PROPAGATION: dict[str, str] = {
    "completed": "completed",
    "cancelled": "cancelled",
}

_NOTIFICATION_TITLES: dict[str, str] = {
    "in_progress": "Job Started",
    "completed": "Job Completed",
    "cancelled": "Booking Cancelled",
    "disputed": "Booking Disputed",
}


def _invalid_transition(current: str, requested: str) -> ServiceError:
    allowed = list(BOOKING_TRANSITIONS.get(current, ()))
    return ServiceError(
        "INVALID_TRANSITION",
        f"Cannot transition from {current} to {requested}",
        400,
        {"current": current, "requested": requested, "allowed": allowed},
    )


class BookingManager:
    """
    Moves bookings along the transition table.

    Each transition is a single store call that updates the booking only
    while it is still in the status observed here, so two racing requests
    cannot both apply. The loser sees INVALID_TRANSITION.
    """

    def __init__(self, store: MarketplaceStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def _load_booking(self, booking_id: str) -> dict[str, Any]:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise ServiceError("NOT_FOUND", "Booking not found", 404, {})
        return booking

    @staticmethod
    def _is_participant(principal: Principal, booking: dict[str, Any]) -> bool:
        return principal.user_id in (booking["hirer_id"], booking["worker_id"])

    def get_booking(self, principal: Principal, booking_id: str) -> dict[str, Any]:
        booking = self._load_booking(booking_id)
        if not self._is_participant(principal, booking):
            raise ServiceError("FORBIDDEN", "You cannot view this booking", 403, {})
        return booking_to_response(booking)

    def list_bookings(
        self,
        principal: Principal,
        *,
        status: str | None,
        limit: int,
        offset: int,
    ) -> dict[str, Any]:
        """List bookings where the principal is the hirer or the worker."""
        if status is not None and status not in BOOKING_STATUSES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown booking status: {status}",
                400,
                {"allowed": sorted(BOOKING_STATUSES)},
            )
        rows, total = self._store.list_bookings_for_user(principal.user_id, status, limit, offset)
        return {
            "bookings": [booking_to_response(row) for row in rows],
            "pagination": pagination(total, limit, offset, len(rows)),
        }

    def transition(
        self,
        principal: Principal,
        booking_id: str,
        new_status: str,
        *,
        cancel_reason: str | None = None,
        final_amount: float | None = None,
    ) -> dict[str, Any]:
        """
        Apply one booking status change.

        Error precedence:
        1. NOT_FOUND: booking missing
        2. FORBIDDEN: actor is neither hirer nor worker
        3. INVALID_TRANSITION: move not in the table for the current status
        4. FORBIDDEN: a worker requesting ``completed``
        5. INVALID_TRANSITION: booking changed between read and write
        """
        booking = self._load_booking(booking_id)

        if not self._is_participant(principal, booking):
            raise ServiceError(
                "FORBIDDEN",
                "You do not have permission to update this booking",
                403,
                {},
            )

        current = booking["status"]
        if new_status not in BOOKING_TRANSITIONS.get(current, ()):
            raise _invalid_transition(current, new_status)

        actor_is_hirer = booking["hirer_id"] == principal.user_id
        if new_status == "completed" and not actor_is_hirer:
            raise ServiceError(
                "FORBIDDEN",
                "Only the hirer can mark a booking as completed",
                403,
                {},
            )

        timestamp = now_iso()
        updates: dict[str, Any] = {"status": new_status}
        completion_amount: float | None = None
        if new_status == "in_progress":
            updates["actual_start"] = timestamp
        elif new_status == "completed":
            completion_amount = (
                final_amount if final_amount is not None else booking["agreed_amount"]
            )
            updates["completed_at"] = timestamp
            updates["final_amount"] = completion_amount
        elif new_status == "cancelled":
            updates["cancelled_at"] = timestamp
            updates["cancel_reason"] = cancel_reason

        try:
            updated = self._store.transition_booking(
                booking_id,
                current,
                updates,
                job_status=_JOB_PROPAGATION.get(new_status),
                completion_amount=completion_amount,
            )
        except StaleStateError as exc:
            latest = self._load_booking(booking_id)
            raise _invalid_transition(latest["status"], new_status) from exc

        self._logger.info(
            "Booking transitioned",
            extra={
                "booking_id": booking_id,
                "from_status": current,
                "to_status": new_status,
                "actor_id": principal.user_id,
            },
        )

        if actor_is_hirer:
            recipient_id = booking["worker_id"]
            action_url = f"/work/job/{booking['job_id']}"
        else:
            recipient_id = booking["hirer_id"]
            action_url = f"/hiring/job/{booking['job_id']}"

        readable = new_status.replace("_", " ")
        self._notifier.notify(
            recipient_id,
            f"booking_{new_status}",
            _NOTIFICATION_TITLES[new_status],
            f"The booking status has been updated to {readable}",
            {"bookingId": booking_id, "jobId": booking["job_id"]},
            action_url,
        )

        return booking_to_response(updated)
