"""SQLite-backed storage for jobs, bids, bookings, payments, and messaging."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class DuplicateBidError(Exception):
    """Raised when a worker bids twice on the same job."""


class DuplicateReviewError(Exception):
    """Raised when a participant reviews the same booking twice."""


class StaleStateError(Exception):
    """Raised when a conditional update matched no rows because state moved on."""

    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} is no longer in the expected state")
        self.entity = entity


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    role TEXT NOT NULL,
    name TEXT,
    email TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    poster_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT,
    budget REAL,
    status TEXT NOT NULL,
    assigned_worker_id TEXT,
    bid_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    worker_id TEXT NOT NULL,
    amount REAL NOT NULL,
    message TEXT,
    estimated_hours REAL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(job_id, worker_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_one_accepted_per_job
    ON bids(job_id) WHERE status = 'accepted';

CREATE TABLE IF NOT EXISTS bookings (
    booking_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    bid_id TEXT NOT NULL UNIQUE REFERENCES bids(bid_id),
    hirer_id TEXT NOT NULL,
    worker_id TEXT NOT NULL,
    agreed_amount REAL NOT NULL,
    final_amount REAL,
    status TEXT NOT NULL DEFAULT 'confirmed',
    payment_status TEXT NOT NULL DEFAULT 'pending',
    scheduled_start TEXT NOT NULL,
    actual_start TEXT,
    completed_at TEXT,
    cancelled_at TEXT,
    cancel_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payment_records (
    payment_id TEXT PRIMARY KEY,
    booking_id TEXT NOT NULL REFERENCES bookings(booking_id),
    user_id TEXT NOT NULL,
    amount REAL NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    external_id TEXT,
    provider TEXT NOT NULL,
    description TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_payment_records_booking ON payment_records(booking_id);
CREATE INDEX IF NOT EXISTS idx_payment_records_user ON payment_records(user_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
    notification_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    action_url TEXT,
    read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS message_threads (
    thread_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS thread_participants (
    thread_id TEXT NOT NULL REFERENCES message_threads(thread_id),
    user_id TEXT NOT NULL,
    PRIMARY KEY (thread_id, user_id)
);

CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL REFERENCES message_threads(thread_id),
    sender_id TEXT NOT NULL,
    content TEXT NOT NULL,
    message_type TEXT NOT NULL DEFAULT 'text',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reviews (
    review_id TEXT PRIMARY KEY,
    booking_id TEXT NOT NULL REFERENCES bookings(booking_id),
    author_id TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
    title TEXT,
    content TEXT,
    communication_rating INTEGER,
    quality_rating INTEGER,
    timeliness_rating INTEGER,
    value_rating INTEGER,
    created_at TEXT NOT NULL,
    UNIQUE(booking_id, author_id)
);

CREATE INDEX IF NOT EXISTS idx_reviews_subject ON reviews(subject_id, created_at);

CREATE TABLE IF NOT EXISTS worker_profiles (
    user_id TEXT PRIMARY KEY,
    completed_jobs INTEGER NOT NULL DEFAULT 0,
    lifetime_earnings REAL NOT NULL DEFAULT 0,
    total_earnings REAL NOT NULL DEFAULT 0,
    average_rating REAL,
    review_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS hirer_profiles (
    user_id TEXT PRIMARY KEY,
    total_spent REAL NOT NULL DEFAULT 0,
    average_rating REAL,
    review_count INTEGER NOT NULL DEFAULT 0
);
"""


class MarketplaceStore:
    """
    SQLite-backed storage for the marketplace.

    Multi-row state changes (bid acceptance, booking transitions, escrow
    capture, refunds) are exposed as single methods that run inside one
    ``BEGIN IMMEDIATE`` transaction and use conditional updates on the
    expected prior status. A conditional update that matches no rows rolls
    the whole transaction back and raises StaleStateError.
    """

    _JOB_COLUMNS: tuple[str, ...] = (
        "job_id",
        "poster_id",
        "title",
        "description",
        "category",
        "budget",
        "status",
        "assigned_worker_id",
        "bid_count",
        "created_at",
        "updated_at",
    )
    _BID_COLUMNS: tuple[str, ...] = (
        "bid_id",
        "job_id",
        "worker_id",
        "amount",
        "message",
        "estimated_hours",
        "status",
        "created_at",
        "updated_at",
    )
    _BOOKING_COLUMNS: tuple[str, ...] = (
        "booking_id",
        "job_id",
        "bid_id",
        "hirer_id",
        "worker_id",
        "agreed_amount",
        "final_amount",
        "status",
        "payment_status",
        "scheduled_start",
        "actual_start",
        "completed_at",
        "cancelled_at",
        "cancel_reason",
        "created_at",
        "updated_at",
    )
    _PAYMENT_COLUMNS: tuple[str, ...] = (
        "payment_id",
        "booking_id",
        "user_id",
        "amount",
        "type",
        "status",
        "external_id",
        "provider",
        "description",
        "metadata",
        "created_at",
        "processed_at",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "booking_id",
        "author_id",
        "subject_id",
        "rating",
        "title",
        "content",
        "communication_rating",
        "quality_rating",
        "timeliness_rating",
        "value_rating",
        "created_at",
    )
    # Profile table that holds a reviewed user's rating, keyed by their role.
    _PROFILE_TABLES: dict[str, str] = {"worker": "worker_profiles", "hirer": "hirer_profiles"}
    _BOOKING_UPDATABLE: frozenset[str] = frozenset(
        {
            "status",
            "final_amount",
            "actual_start",
            "completed_at",
            "cancelled_at",
            "cancel_reason",
        }
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(_SCHEMA_SQL)
            self._db.commit()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                yield self._db
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    @staticmethod
    def _select_sql(table: str, columns: tuple[str, ...]) -> str:
        return f"SELECT {', '.join(columns)} FROM {table}"  # nosec B608

    @staticmethod
    def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608

    @staticmethod
    def _row_to_dict(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        return {column: row[column] for column in columns}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(self, user_id: str, role: str, name: str | None, email: str | None) -> None:
        """Insert or refresh a user's contact details."""
        with self._lock:
            self._db.execute(
                """
                INSERT INTO users (user_id, role, name, email, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    role = excluded.role,
                    name = COALESCE(excluded.name, users.name),
                    email = COALESCE(excluded.email, users.email),
                    updated_at = excluded.updated_at
                """,
                (user_id, role, name, email, now_iso()),
            )
            self._db.commit()

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user's contact details."""
        with self._lock:
            row = self._db.execute(
                "SELECT user_id, role, name, email, updated_at FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return dict(row)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def insert_job(self, job_data: dict[str, Any]) -> None:
        """Insert a new job row."""
        values = tuple(job_data[column] for column in self._JOB_COLUMNS)
        with self._lock:
            self._db.execute(self._insert_sql("jobs", self._JOB_COLUMNS), values)
            self._db.commit()

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Fetch a job by ID."""
        with self._lock:
            row = self._db.execute(
                self._select_sql("jobs", self._JOB_COLUMNS) + " WHERE job_id = ?",
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._JOB_COLUMNS)

    def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update job columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._JOB_COLUMNS for column in updates):
            msg = "Attempted to update unknown job column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE jobs SET " + set_clause + " WHERE job_id = ?"  # nosec B608
        params.append(job_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    @staticmethod
    def _job_filters(status: str | None, poster_id: str | None) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if poster_id is not None:
            clauses.append("poster_id = ?")
            params.append(poster_id)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    def list_jobs(
        self,
        status: str | None,
        poster_id: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List jobs newest first with optional filters."""
        where, params = self._job_filters(status, poster_id)
        query = (
            self._select_sql("jobs", self._JOB_COLUMNS)
            + where
            + " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        )
        with self._lock:
            rows = self._db.execute(query, [*params, limit, offset]).fetchall()
        return [self._row_to_dict(row, self._JOB_COLUMNS) for row in rows]

    def count_jobs(self, status: str | None, poster_id: str | None) -> int:
        """Count jobs matching the same filters as list_jobs."""
        where, params = self._job_filters(status, poster_id)
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM jobs" + where, params).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid_data: dict[str, Any]) -> None:
        """Insert a bid and increment the job's bid_count atomically."""
        values = tuple(bid_data[column] for column in self._BID_COLUMNS)
        try:
            with self._transaction() as db:
                db.execute(self._insert_sql("bids", self._BID_COLUMNS), values)
                db.execute(
                    "UPDATE jobs SET bid_count = bid_count + 1 WHERE job_id = ?",
                    (bid_data["job_id"],),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateBidError("This worker already bid on this job") from exc
            raise

    def get_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch a bid by ID."""
        with self._lock:
            row = self._db.execute(
                self._select_sql("bids", self._BID_COLUMNS) + " WHERE bid_id = ?",
                (bid_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._BID_COLUMNS)

    def get_bids_for_job(self, job_id: str) -> list[dict[str, Any]]:
        """Fetch all bids for a job in submission order."""
        with self._lock:
            rows = self._db.execute(
                self._select_sql("bids", self._BID_COLUMNS)
                + " WHERE job_id = ? ORDER BY created_at",
                (job_id,),
            ).fetchall()
        return [self._row_to_dict(row, self._BID_COLUMNS) for row in rows]

    def reject_bid(self, bid_id: str) -> None:
        """Move a pending bid to rejected."""
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE bids SET status = 'rejected', updated_at = ? "
                "WHERE bid_id = ? AND status = 'pending'",
                (now_iso(), bid_id),
            )
            if cursor.rowcount == 0:
                raise StaleStateError("bid")

    def withdraw_bid(self, bid_id: str, job_id: str) -> None:
        """Move a pending bid to withdrawn and decrement the job's bid_count."""
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE bids SET status = 'withdrawn', updated_at = ? "
                "WHERE bid_id = ? AND status = 'pending'",
                (now_iso(), bid_id),
            )
            if cursor.rowcount == 0:
                raise StaleStateError("bid")
            db.execute(
                "UPDATE jobs SET bid_count = MAX(bid_count - 1, 0) WHERE job_id = ?",
                (job_id,),
            )

    def accept_bid(
        self,
        bid: dict[str, Any],
        hirer_id: str,
        booking_data: dict[str, Any],
        thread_id: str,
        system_message: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Accept a bid and open its booking in one transaction.

        Steps: bid pending->accepted, job posted|in_review->assigned,
        sibling pending bids->rejected, booking insert, message thread
        reuse-or-create (with a system message when created).

        Returns:
            dict with keys: thread_id, rejected_count

        Raises:
            StaleStateError: bid no longer pending, or job no longer open
        """
        timestamp = now_iso()
        try:
            with self._transaction() as db:
                cursor = db.execute(
                    "UPDATE bids SET status = 'accepted', updated_at = ? "
                    "WHERE bid_id = ? AND status = 'pending'",
                    (timestamp, bid["bid_id"]),
                )
                if cursor.rowcount == 0:
                    raise StaleStateError("bid")

                cursor = db.execute(
                    "UPDATE jobs SET status = 'assigned', assigned_worker_id = ?, updated_at = ? "
                    "WHERE job_id = ? AND status IN ('posted', 'in_review')",
                    (bid["worker_id"], timestamp, bid["job_id"]),
                )
                if cursor.rowcount == 0:
                    raise StaleStateError("job")

                cursor = db.execute(
                    "UPDATE bids SET status = 'rejected', updated_at = ? "
                    "WHERE job_id = ? AND bid_id != ? AND status = 'pending'",
                    (timestamp, bid["job_id"], bid["bid_id"]),
                )
                rejected_count = int(cursor.rowcount)

                db.execute(
                    self._insert_sql("bookings", self._BOOKING_COLUMNS),
                    tuple(booking_data[column] for column in self._BOOKING_COLUMNS),
                )

                row = db.execute(
                    """
                    SELECT t.thread_id FROM message_threads t
                    WHERE t.job_id = ?
                      AND EXISTS (SELECT 1 FROM thread_participants p
                                  WHERE p.thread_id = t.thread_id AND p.user_id = ?)
                      AND EXISTS (SELECT 1 FROM thread_participants p
                                  WHERE p.thread_id = t.thread_id AND p.user_id = ?)
                    ORDER BY t.created_at LIMIT 1
                    """,
                    (bid["job_id"], hirer_id, bid["worker_id"]),
                ).fetchone()

                if row is not None:
                    resolved_thread_id = str(row["thread_id"])
                else:
                    resolved_thread_id = thread_id
                    db.execute(
                        "INSERT INTO message_threads (thread_id, job_id, created_at) "
                        "VALUES (?, ?, ?)",
                        (thread_id, bid["job_id"], timestamp),
                    )
                    db.executemany(
                        "INSERT INTO thread_participants (thread_id, user_id) VALUES (?, ?)",
                        [(thread_id, hirer_id), (thread_id, bid["worker_id"])],
                    )
                    db.execute(
                        "INSERT INTO messages (message_id, thread_id, sender_id, content, "
                        "message_type, created_at) VALUES (?, ?, ?, ?, 'system', ?)",
                        (
                            system_message["message_id"],
                            thread_id,
                            hirer_id,
                            system_message["content"],
                            timestamp,
                        ),
                    )
        except sqlite3.IntegrityError as exc:
            # Partial unique index: another bid on this job is already accepted.
            raise StaleStateError("job") from exc

        return {"thread_id": resolved_thread_id, "rejected_count": rejected_count}

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Fetch a booking by ID."""
        with self._lock:
            row = self._db.execute(
                self._select_sql("bookings", self._BOOKING_COLUMNS) + " WHERE booking_id = ?",
                (booking_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._BOOKING_COLUMNS)

    def get_booking_for_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch the booking opened by an accepted bid."""
        with self._lock:
            row = self._db.execute(
                self._select_sql("bookings", self._BOOKING_COLUMNS) + " WHERE bid_id = ?",
                (bid_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._BOOKING_COLUMNS)

    def list_bookings_for_user(
        self,
        user_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List bookings where the user is hirer or worker, with the total count."""
        where = " WHERE (hirer_id = ? OR worker_id = ?)"
        params: list[object] = [user_id, user_id]
        if status is not None:
            where += " AND status = ?"
            params.append(status)

        with self._lock:
            rows = self._db.execute(
                self._select_sql("bookings", self._BOOKING_COLUMNS)
                + where
                + " ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
            total_row = self._db.execute(
                "SELECT COUNT(*) FROM bookings" + where,  # nosec B608
                params,
            ).fetchone()
        total = int(total_row[0]) if total_row is not None else 0
        return [self._row_to_dict(row, self._BOOKING_COLUMNS) for row in rows], total

    def transition_booking(
        self,
        booking_id: str,
        expected_status: str,
        updates: dict[str, Any],
        *,
        job_status: str | None,
        completion_amount: float | None,
    ) -> dict[str, Any]:
        """
        Apply a booking status change and its side effects atomically.

        The booking row is updated only while it is still in
        ``expected_status``. When ``job_status`` is given the owning job is
        moved to it. When ``completion_amount`` is given the worker's
        completed-job counter and lifetime earnings and the hirer's total
        spend are incremented by it.

        Returns:
            The updated booking row.

        Raises:
            StaleStateError: the booking is no longer in expected_status
        """
        if any(column not in self._BOOKING_UPDATABLE for column in updates):
            msg = "Attempted to update unknown booking column"
            raise ValueError(msg)

        timestamp = now_iso()
        assignments = {**updates, "updated_at": timestamp}
        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        query = (
            "UPDATE bookings SET " + set_clause + " WHERE booking_id = ? AND status = ?"  # nosec B608
        )

        with self._transaction() as db:
            cursor = db.execute(query, [*assignments.values(), booking_id, expected_status])
            if cursor.rowcount == 0:
                raise StaleStateError("booking")

            row = db.execute(
                self._select_sql("bookings", self._BOOKING_COLUMNS) + " WHERE booking_id = ?",
                (booking_id,),
            ).fetchone()
            booking = self._row_to_dict(row, self._BOOKING_COLUMNS)

            if job_status is not None:
                db.execute(
                    "UPDATE jobs SET status = ?, updated_at = ? WHERE job_id = ?",
                    (job_status, timestamp, booking["job_id"]),
                )

            if completion_amount is not None:
                db.execute(
                    """
                    INSERT INTO worker_profiles (user_id, completed_jobs, lifetime_earnings)
                    VALUES (?, 1, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        completed_jobs = completed_jobs + 1,
                        lifetime_earnings = lifetime_earnings + excluded.lifetime_earnings
                    """,
                    (booking["worker_id"], completion_amount),
                )
                db.execute(
                    """
                    INSERT INTO hirer_profiles (user_id, total_spent) VALUES (?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        total_spent = total_spent + excluded.total_spent
                    """,
                    (booking["hirer_id"], completion_amount),
                )

        return booking

    def count_bookings_by_status(self) -> dict[str, int]:
        """Count bookings grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM bookings GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Payment records (append-only ledger)
    # ------------------------------------------------------------------

    def _row_to_payment(self, row: sqlite3.Row) -> dict[str, Any]:
        record = self._row_to_dict(row, self._PAYMENT_COLUMNS)
        record["metadata"] = json.loads(record["metadata"])
        return record

    def insert_payment_record(self, record: dict[str, Any]) -> None:
        """Append a payment record."""
        values = tuple(
            json.dumps(record[column]) if column == "metadata" else record[column]
            for column in self._PAYMENT_COLUMNS
        )
        with self._lock:
            self._db.execute(self._insert_sql("payment_records", self._PAYMENT_COLUMNS), values)
            self._db.commit()

    def find_payment_record(
        self,
        booking_id: str,
        *,
        user_id: str | None,
        record_type: str,
        statuses: tuple[str, ...],
    ) -> dict[str, Any] | None:
        """Find the oldest payment record of a type and status set for a booking."""
        placeholders = ", ".join("?" for _ in statuses)
        query = (
            self._select_sql("payment_records", self._PAYMENT_COLUMNS)
            + f" WHERE booking_id = ? AND type = ? AND status IN ({placeholders})"
        )
        params: list[object] = [booking_id, record_type, *statuses]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at LIMIT 1"

        with self._lock:
            row = self._db.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_payment(row)

    def list_payment_records(self, booking_id: str) -> list[dict[str, Any]]:
        """List every ledger entry for a booking in write order."""
        with self._lock:
            rows = self._db.execute(
                self._select_sql("payment_records", self._PAYMENT_COLUMNS)
                + " WHERE booking_id = ? ORDER BY created_at",
                (booking_id,),
            ).fetchall()
        return [self._row_to_payment(row) for row in rows]

    def list_payment_records_for_user(
        self,
        user_id: str,
        record_type: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List a user's ledger entries newest first, with the total count."""
        where = " WHERE user_id = ?"
        params: list[object] = [user_id]
        if record_type is not None:
            where += " AND type = ?"
            params.append(record_type)

        with self._lock:
            rows = self._db.execute(
                self._select_sql("payment_records", self._PAYMENT_COLUMNS)
                + where
                + " ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
            total_row = self._db.execute(
                "SELECT COUNT(*) FROM payment_records" + where,  # nosec B608
                params,
            ).fetchone()
        total = int(total_row[0]) if total_row is not None else 0
        return [self._row_to_payment(row) for row in rows], total

    def sum_completed_payments_by_type(self, user_id: str) -> dict[str, float]:
        """Sum a user's completed ledger amounts per record type."""
        with self._lock:
            rows = self._db.execute(
                "SELECT type, SUM(amount) FROM payment_records "
                "WHERE user_id = ? AND status = 'completed' GROUP BY type",
                (user_id,),
            ).fetchall()
        return {str(row[0]): float(row[1]) for row in rows}

    def capture_escrow(self, payment_id: str, booking_id: str, payout_amount: float) -> None:
        """
        Settle a captured hold: record pending->completed, booking
        payment_status pending->paid, worker total_earnings += payout_amount.

        The record may already be completed by the processor's succeeded
        callback; the booking's payment_status guard alone prevents a second
        settlement.

        Raises:
            StaleStateError: the record failed, or the booking already moved on
        """
        timestamp = now_iso()
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE payment_records SET status = 'completed', "
                "processed_at = COALESCE(processed_at, ?) "
                "WHERE payment_id = ? AND status IN ('pending', 'completed')",
                (timestamp, payment_id),
            )
            if cursor.rowcount == 0:
                raise StaleStateError("payment_record")

            cursor = db.execute(
                "UPDATE bookings SET payment_status = 'paid', updated_at = ? "
                "WHERE booking_id = ? AND payment_status = 'pending'",
                (timestamp, booking_id),
            )
            if cursor.rowcount == 0:
                raise StaleStateError("booking")

            row = db.execute(
                "SELECT worker_id FROM bookings WHERE booking_id = ?",
                (booking_id,),
            ).fetchone()
            db.execute(
                """
                INSERT INTO worker_profiles (user_id, total_earnings) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    total_earnings = total_earnings + excluded.total_earnings
                """,
                (row["worker_id"], payout_amount),
            )

    def record_refund(self, refund_record: dict[str, Any]) -> None:
        """
        Append a refund record and move the booking paid->refunded.

        Raises:
            StaleStateError: the booking is no longer paid
        """
        values = tuple(
            json.dumps(refund_record[column]) if column == "metadata" else refund_record[column]
            for column in self._PAYMENT_COLUMNS
        )
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE bookings SET payment_status = 'refunded', updated_at = ? "
                "WHERE booking_id = ? AND payment_status = 'paid'",
                (now_iso(), refund_record["booking_id"]),
            )
            if cursor.rowcount == 0:
                raise StaleStateError("booking")
            db.execute(self._insert_sql("payment_records", self._PAYMENT_COLUMNS), values)

    def settle_pending_by_external_id(
        self,
        external_id: str,
        booking_id: str,
        new_status: str,
    ) -> int:
        """Move matching pending records to completed or failed; return rows changed."""
        if new_status not in ("completed", "failed"):
            msg = f"Payment records cannot move to {new_status!r}"
            raise ValueError(msg)
        with self._lock:
            cursor = self._db.execute(
                "UPDATE payment_records SET status = ?, processed_at = ? "
                "WHERE external_id = ? AND booking_id = ? AND status = 'pending'",
                (new_status, now_iso(), external_id, booking_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_worker_profile(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a worker's counters."""
        with self._lock:
            row = self._db.execute(
                "SELECT user_id, completed_jobs, lifetime_earnings, total_earnings, "
                "average_rating, review_count FROM worker_profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return dict(row) if row is not None else None

    def get_hirer_profile(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a hirer's counters."""
        with self._lock:
            row = self._db.execute(
                "SELECT user_id, total_spent, average_rating, review_count "
                "FROM hirer_profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return dict(row) if row is not None else None

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review: dict[str, Any], subject_role: str) -> dict[str, Any]:
        """
        Insert a review and refresh the subject's rating in one transaction.

        The subject's profile row is created on first review. Returns the
        subject's new ``average_rating`` and ``review_count``.

        Raises:
            DuplicateReviewError: the author already reviewed this booking
        """
        profile_table = self._PROFILE_TABLES[subject_role]
        values = tuple(review[column] for column in self._REVIEW_COLUMNS)
        try:
            with self._transaction() as db:
                db.execute(self._insert_sql("reviews", self._REVIEW_COLUMNS), values)
                row = db.execute(
                    "SELECT AVG(rating), COUNT(*) FROM reviews WHERE subject_id = ?",
                    (review["subject_id"],),
                ).fetchone()
                average_rating, review_count = float(row[0]), int(row[1])
                db.execute(
                    f"""
                    INSERT INTO {profile_table} (user_id, average_rating, review_count)
                    VALUES (?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        average_rating = excluded.average_rating,
                        review_count = excluded.review_count
                    """,  # nosec B608
                    (review["subject_id"], average_rating, review_count),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateReviewError("Author already reviewed this booking") from exc
            raise
        return {"average_rating": average_rating, "review_count": review_count}

    def list_reviews(
        self,
        user_id: str,
        *,
        given: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List reviews written by (given) or about the user, newest first, with the total."""
        where = " WHERE author_id = ?" if given else " WHERE subject_id = ?"
        with self._lock:
            rows = self._db.execute(
                self._select_sql("reviews", self._REVIEW_COLUMNS)
                + where
                + " ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (user_id, limit, offset),
            ).fetchall()
            total_row = self._db.execute(
                "SELECT COUNT(*) FROM reviews" + where,  # nosec B608
                (user_id,),
            ).fetchone()
        total = int(total_row[0]) if total_row is not None else 0
        return [self._row_to_dict(row, self._REVIEW_COLUMNS) for row in rows], total

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(self, notification: dict[str, Any]) -> None:
        """Persist a notification."""
        with self._lock:
            self._db.execute(
                """
                INSERT INTO notifications (
                    notification_id, user_id, type, title, body, data, action_url, read, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    notification["notification_id"],
                    notification["user_id"],
                    notification["type"],
                    notification["title"],
                    notification["body"],
                    json.dumps(notification["data"]),
                    notification["action_url"],
                    notification["created_at"],
                ),
            )
            self._db.commit()

    def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List a user's notifications newest first."""
        query = (
            "SELECT notification_id, user_id, type, title, body, data, action_url, read, "
            "created_at FROM notifications WHERE user_id = ?"
        )
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"

        with self._lock:
            rows = self._db.execute(query, (user_id, limit, offset)).fetchall()
        notifications = []
        for row in rows:
            item = dict(row)
            item["data"] = json.loads(item["data"])
            item["read"] = bool(item["read"])
            notifications.append(item)
        return notifications

    def count_notifications(self, user_id: str, *, unread_only: bool) -> int:
        """Count a user's notifications."""
        query = "SELECT COUNT(*) FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        with self._lock:
            row = self._db.execute(query, (user_id,)).fetchone()
        return int(row[0]) if row is not None else 0

    def mark_notifications_read(self, user_id: str, notification_ids: list[str] | None) -> int:
        """Mark the given (or all) unread notifications of a user as read."""
        query = "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0"
        params: list[object] = [user_id]
        if notification_ids is not None:
            if not notification_ids:
                return 0
            placeholders = ", ".join("?" for _ in notification_ids)
            query += f" AND notification_id IN ({placeholders})"
            params.extend(notification_ids)
        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def list_threads_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """List threads the user participates in, with participant IDs."""
        with self._lock:
            rows = self._db.execute(
                """
                SELECT t.thread_id, t.job_id, t.created_at FROM message_threads t
                JOIN thread_participants p ON p.thread_id = t.thread_id
                WHERE p.user_id = ?
                ORDER BY t.created_at DESC
                """,
                (user_id,),
            ).fetchall()
            threads = []
            for row in rows:
                thread = dict(row)
                thread["participants"] = self.list_thread_participants(row["thread_id"])
                threads.append(thread)
        return threads

    def list_thread_participants(self, thread_id: str) -> list[str]:
        """List the user IDs in a thread."""
        with self._lock:
            rows = self._db.execute(
                "SELECT user_id FROM thread_participants WHERE thread_id = ? ORDER BY user_id",
                (thread_id,),
            ).fetchall()
        return [str(row["user_id"]) for row in rows]

    def is_thread_participant(self, thread_id: str, user_id: str) -> bool:
        """Check whether a user belongs to a thread."""
        with self._lock:
            row = self._db.execute(
                "SELECT 1 FROM thread_participants WHERE thread_id = ? AND user_id = ?",
                (thread_id, user_id),
            ).fetchone()
        return row is not None

    def list_messages(self, thread_id: str) -> list[dict[str, Any]]:
        """List a thread's messages oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT message_id, thread_id, sender_id, content, message_type, created_at "
                "FROM messages WHERE thread_id = ? ORDER BY created_at",
                (thread_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def insert_message(self, message: dict[str, Any]) -> None:
        """Append a message to a thread."""
        with self._lock:
            self._db.execute(
                "INSERT INTO messages (message_id, thread_id, sender_id, content, "
                "message_type, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    message["message_id"],
                    message["thread_id"],
                    message["sender_id"],
                    message["content"],
                    message["message_type"],
                    message["created_at"],
                ),
            )
            self._db.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
