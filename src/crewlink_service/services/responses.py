"""Conversion of store rows to camelCase API payloads."""

from __future__ import annotations

from typing import Any


def job_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["job_id"],
        "posterId": row["poster_id"],
        "title": row["title"],
        "description": row["description"],
        "category": row["category"],
        "budget": row["budget"],
        "status": row["status"],
        "assignedWorkerId": row["assigned_worker_id"],
        "bidCount": row["bid_count"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def bid_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["bid_id"],
        "jobId": row["job_id"],
        "workerId": row["worker_id"],
        "amount": row["amount"],
        "message": row["message"],
        "estimatedHours": row["estimated_hours"],
        "status": row["status"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def booking_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["booking_id"],
        "jobId": row["job_id"],
        "bidId": row["bid_id"],
        "hirerId": row["hirer_id"],
        "workerId": row["worker_id"],
        "agreedAmount": row["agreed_amount"],
        "finalAmount": row["final_amount"],
        "status": row["status"],
        "paymentStatus": row["payment_status"],
        "scheduledStart": row["scheduled_start"],
        "actualStart": row["actual_start"],
        "completedAt": row["completed_at"],
        "cancelledAt": row["cancelled_at"],
        "cancelReason": row["cancel_reason"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def pagination(total: int, limit: int, offset: int, returned: int) -> dict[str, Any]:
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "hasMore": offset + returned < total,
    }


def payment_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["payment_id"],
        "bookingId": row["booking_id"],
        "amount": row["amount"],
        "type": row["type"],
        "status": row["status"],
        "provider": row["provider"],
        "description": row["description"],
        "metadata": row["metadata"],
        "createdAt": row["created_at"],
        "processedAt": row["processed_at"],
    }
