"""Job posting and job status management."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger
from crewlink_service.services.marketplace_store import now_iso
from crewlink_service.services.responses import bid_to_response, job_to_response, pagination

if TYPE_CHECKING:
    from crewlink_service.core.auth import Principal
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier

JOB_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("posted", "cancelled"),
    "posted": ("in_review", "assigned", "cancelled"),
    "in_review": ("assigned", "posted", "cancelled"),
    "assigned": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

JOB_STATUSES = frozenset(JOB_TRANSITIONS)

# Reached only through bid acceptance, which also opens the booking.
_BID_DRIVEN_STATUSES = frozenset({"assigned"})


class JobBoard:
    """Creates jobs, lists them, and moves them through the job status table."""

    def __init__(self, store: MarketplaceStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def _load_job(self, job_id: str) -> dict[str, Any]:
        job = self._store.get_job(job_id)
        if job is None:
            raise ServiceError("NOT_FOUND", "Job not found", 404, {})
        return job

    def create_job(
        self,
        principal: Principal,
        *,
        title: str,
        description: str,
        category: str | None,
        budget: float | None,
        publish: bool,
    ) -> dict[str, Any]:
        """Create a job owned by the hirer, either posted or kept as a draft."""
        if not principal.is_hirer:
            raise ServiceError("FORBIDDEN", "Only hirers can post jobs", 403, {})

        self._store.upsert_user(principal.user_id, principal.role, principal.name, principal.email)

        timestamp = now_iso()
        job = {
            "job_id": f"job-{uuid.uuid4()}",
            "poster_id": principal.user_id,
            "title": title,
            "description": description,
            "category": category,
            "budget": budget,
            "status": "posted" if publish else "draft",
            "assigned_worker_id": None,
            "bid_count": 0,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        self._store.insert_job(job)
        self._logger.info(
            "Job created",
            extra={"job_id": job["job_id"], "poster_id": principal.user_id, "status": job["status"]},
        )
        return job_to_response(job)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return job_to_response(self._load_job(job_id))

    def list_jobs(
        self,
        *,
        status: str | None,
        poster_id: str | None,
        limit: int,
        offset: int,
    ) -> dict[str, Any]:
        if status is not None and status not in JOB_STATUSES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown job status: {status}",
                400,
                {"allowed": sorted(JOB_STATUSES)},
            )
        rows = self._store.list_jobs(status, poster_id, limit, offset)
        total = self._store.count_jobs(status, poster_id)
        return {
            "jobs": [job_to_response(row) for row in rows],
            "pagination": pagination(total, limit, offset, len(rows)),
        }

    def transition_job(self, principal: Principal, job_id: str, new_status: str) -> dict[str, Any]:
        """
        Move a job along the job status table.

        Error precedence:
        1. NOT_FOUND: job missing
        2. FORBIDDEN: actor is neither poster nor assigned worker
        3. INVALID_TRANSITION: move not in the table, reserved for bid
           acceptance, or the job changed concurrently
        """
        job = self._load_job(job_id)

        is_poster = job["poster_id"] == principal.user_id
        is_assigned_worker = job["assigned_worker_id"] == principal.user_id
        if not is_poster and not is_assigned_worker:
            raise ServiceError(
                "FORBIDDEN",
                "You do not have permission to change this job status",
                403,
                {},
            )

        current = job["status"]
        allowed = [
            status
            for status in JOB_TRANSITIONS.get(current, ())
            if status not in _BID_DRIVEN_STATUSES
        ]
        if new_status not in allowed:
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot transition job from {current} to {new_status}",
                400,
                {"current": current, "requested": new_status, "allowed": allowed},
            )

        changed = self._store.update_job(
            job_id,
            {"status": new_status, "updated_at": now_iso()},
            expected_status=current,
        )
        if changed == 0:
            latest = self._load_job(job_id)
            raise ServiceError(
                "INVALID_TRANSITION",
                "Job status changed concurrently",
                400,
                {
                    "current": latest["status"],
                    "requested": new_status,
                    "allowed": list(JOB_TRANSITIONS.get(latest["status"], ())),
                },
            )

        readable = new_status.replace("_", " ")
        assigned_worker_id = job["assigned_worker_id"]
        if assigned_worker_id and assigned_worker_id != principal.user_id:
            self._notifier.notify(
                assigned_worker_id,
                "job_status_changed",
                "Job Status Updated",
                f"The job status has been changed to {readable}",
                {"jobId": job_id},
                f"/work/job/{job_id}",
            )
        if job["poster_id"] != principal.user_id:
            self._notifier.notify(
                job["poster_id"],
                "job_status_changed",
                "Job Status Updated",
                f"Your job status has been changed to {readable}",
                {"jobId": job_id},
                f"/hiring/job/{job_id}",
            )

        return job_to_response(self._load_job(job_id))

    def list_job_bids(self, principal: Principal, job_id: str) -> dict[str, Any]:
        """List all bids on a job. Only the poster may see them."""
        job = self._load_job(job_id)
        if job["poster_id"] != principal.user_id:
            raise ServiceError(
                "FORBIDDEN",
                "You can only view bids for your own jobs",
                403,
                {},
            )
        bids = [bid_to_response(row) for row in self._store.get_bids_for_job(job_id)]
        return {"jobId": job_id, "bids": bids}
