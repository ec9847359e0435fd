"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_bookings: int
    bookings_by_status: dict[str, int]


class _RequestModel(BaseModel):
    """Request bodies use camelCase on the wire and carry finite numbers only."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        allow_inf_nan=False,
    )


class CreateJobRequest(_RequestModel):
    """Body of POST /jobs."""

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: str | None = None
    budget: float | None = Field(default=None, gt=0)
    publish: bool = True


class JobStatusRequest(_RequestModel):
    """Body of POST /jobs/{job_id}/status."""

    status: str = Field(min_length=1)


class SubmitBidRequest(_RequestModel):
    """Body of POST /jobs/{job_id}/bids."""

    amount: float = Field(gt=0)
    message: str | None = None
    estimated_hours: float | None = Field(default=None, gt=0, alias="estimatedHours")


class ResolveBidRequest(_RequestModel):
    """Body of POST /bids/{bid_id}."""

    action: Literal["accept", "reject", "withdraw"]


class UpdateBookingRequest(_RequestModel):
    """Body of PATCH /bookings."""

    booking_id: str = Field(min_length=1, alias="bookingId")
    status: Literal["in_progress", "completed", "cancelled", "disputed"]
    cancel_reason: str | None = Field(default=None, alias="cancelReason")
    final_amount: float | None = Field(default=None, gt=0, alias="finalAmount")


class BookingPaymentRequest(_RequestModel):
    """Body of POST /payments/create-intent and POST /payments/confirm."""

    booking_id: str = Field(min_length=1, alias="bookingId")


class RefundRequest(_RequestModel):
    """Body of POST /payments/refund."""

    booking_id: str = Field(min_length=1, alias="bookingId")
    reason: str = Field(min_length=1)


class MarkReadRequest(_RequestModel):
    """Body of POST /notifications/read. Omitting ``ids`` marks everything read."""

    ids: list[str] | None = None


class PostMessageRequest(_RequestModel):
    """Body of POST /conversations/{conversation_id}/messages."""

    content: str = Field(min_length=1)


class CreateReviewRequest(_RequestModel):
    """Body of POST /reviews. Ratings are whole stars from 1 to 5."""

    booking_id: str = Field(min_length=1, alias="bookingId")
    rating: int = Field(ge=1, le=5)
    title: str | None = None
    content: str | None = None
    communication_rating: int | None = Field(default=None, ge=1, le=5, alias="communicationRating")
    quality_rating: int | None = Field(default=None, ge=1, le=5, alias="qualityRating")
    timeliness_rating: int | None = Field(default=None, ge=1, le=5, alias="timelinessRating")
    value_rating: int | None = Field(default=None, ge=1, le=5, alias="valueRating")
