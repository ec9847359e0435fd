"""Reviews left by booking participants on a completed booking."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import DuplicateReviewError, now_iso
from crewlink_service.services.responses import pagination

if TYPE_CHECKING:
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier

REVIEW_LIST_TYPES = frozenset({"received", "given"})

# Where the reviewed user finds their reviews, keyed by their side of the booking.
_PROFILE_URLS: dict[str, str] = {"worker": "/work/profile", "hirer": "/hiring/profile"}


def _review_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["review_id"],
        "bookingId": row["booking_id"],
        "authorId": row["author_id"],
        "subjectId": row["subject_id"],
        "rating": row["rating"],
        "title": row["title"],
        "content": row["content"],
        "communicationRating": row["communication_rating"],
        "qualityRating": row["quality_rating"],
        "timelinessRating": row["timeliness_rating"],
        "valueRating": row["value_rating"],
        "createdAt": row["created_at"],
    }


class ReviewService:
    """
    Each participant of a completed booking may review the other party once.

    Writing a review recomputes the subject's average rating in the same
    transaction, then notifies the subject.
    """

    def __init__(self, store: MarketplaceStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def create_review(
        self,
        principal: Principal,
        booking_id: str,
        *,
        rating: int,
        title: str | None = None,
        content: str | None = None,
        sub_ratings: dict[str, int | None] | None = None,
    ) -> dict[str, Any]:
        """
        Review the other party of a completed booking.

        Error precedence:
        1. NOT_FOUND: booking missing
        2. FORBIDDEN: principal is neither the hirer nor the worker
        3. BOOKING_NOT_COMPLETED: booking status is not completed
        4. REVIEW_ALREADY_EXISTS: principal already reviewed this booking
        """
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise ServiceError("NOT_FOUND", "Booking not found", 404, {})

        if principal.user_id == booking["hirer_id"]:
            subject_id, subject_role = booking["worker_id"], "worker"
        elif principal.user_id == booking["worker_id"]:
            subject_id, subject_role = booking["hirer_id"], "hirer"
        else:
            raise ServiceError("FORBIDDEN", "You are not part of this booking", 403, {})

        if booking["status"] != "completed":
            raise ServiceError(
                "BOOKING_NOT_COMPLETED",
                "Can only review completed bookings",
                400,
                {"status": booking["status"]},
            )

        sub_ratings = sub_ratings or {}
        review = {
            "review_id": f"rev-{uuid.uuid4()}",
            "booking_id": booking_id,
            "author_id": principal.user_id,
            "subject_id": subject_id,
            "rating": rating,
            "title": title,
            "content": content,
            "communication_rating": sub_ratings.get("communication"),
            "quality_rating": sub_ratings.get("quality"),
            "timeliness_rating": sub_ratings.get("timeliness"),
            "value_rating": sub_ratings.get("value"),
            "created_at": now_iso(),
        }
        try:
            rating_summary = self._store.insert_review(review, subject_role)
        except DuplicateReviewError as exc:
            raise ServiceError(
                "REVIEW_ALREADY_EXISTS",
                "You have already reviewed this booking",
                409,
                {},
            ) from exc

        self._logger.info(
            "Review created",
            extra={
                "review_id": review["review_id"],
                "booking_id": booking_id,
                "subject_id": subject_id,
                "average_rating": rating_summary["average_rating"],
            },
        )
        self._notifier.notify(
            subject_id,
            "new_review",
            "New Review",
            f"{principal.name or 'Someone'} left you a {rating}-star review",
            {"reviewId": review["review_id"], "bookingId": booking_id},
            _PROFILE_URLS[subject_role],
        )
        return _review_to_response(review)

    def list_reviews(
        self,
        principal: Principal,
        *,
        user_id: str | None,
        list_type: str,
        limit: int,
        offset: int,
    ) -> dict[str, Any]:
        """List reviews about a user (received) or by a user (given); defaults to the caller."""
        if list_type not in REVIEW_LIST_TYPES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown review type: {list_type}",
                400,
                {"allowed": sorted(REVIEW_LIST_TYPES)},
            )
        target = user_id or principal.user_id
        rows, total = self._store.list_reviews(
            target,
            given=list_type == "given",
            limit=limit,
            offset=offset,
        )
        return {
            "userId": target,
            "reviews": [_review_to_response(row) for row in rows],
            "pagination": pagination(total, limit, offset, len(rows)),
        }
