"""SQLite-backed booking storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from booking_service.services.booking_state import PENDING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    AuditBuilder = Callable[[dict[str, Any]], list[dict[str, Any]]]


class RecordNotFoundError(Exception):
    """Raised when an atomic update addresses a row that does not exist."""


class DuplicatePendingBookingError(Exception):
    """Raised when the client already has a Pending booking with the same provider."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"A pending booking already exists: {booking_id}")
        self.booking_id = booking_id


class DuplicateExecutionError(Exception):
    """Raised when a booking already has an execution record."""


class DuplicateReviewError(Exception):
    """Raised when a booking has already been reviewed."""


class BookingStore:
    """
    SQLite-backed storage for bookings and their chat logs, payments,
    executions, notifications and reviews.
    """

    _BOOKING_COLUMNS: tuple[str, ...] = (
        "booking_id",
        "client_id",
        "provider_id",
        "notes",
        "scheduled_date",
        "price",
        "status",
        "agreed_by_client",
        "agreed_by_provider",
        "last_proposed_by",
        "agreement_url",
        "created_at",
        "updated_at",
        "confirmed_at",
        "paid_at",
        "completed_at",
        "cancelled_at",
        "cancelled_by",
    )
    _PAYMENT_COLUMNS: tuple[str, ...] = (
        "payment_id",
        "booking_id",
        "amount",
        "currency",
        "gateway_reference",
        "status",
        "created_at",
        "updated_at",
        "paid_at",
    )
    _EXECUTION_COLUMNS: tuple[str, ...] = (
        "execution_id",
        "booking_id",
        "client_id",
        "provider_id",
        "payment_id",
        "credential_validated",
        "provider_completed",
        "client_completed",
        "created_at",
        "updated_at",
    )
    _NOTIFICATION_COLUMNS: tuple[str, ...] = (
        "notification_id",
        "user_id",
        "event",
        "type",
        "title",
        "message",
        "booking_id",
        "created_at",
        "read",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "booking_id",
        "client_id",
        "provider_id",
        "rating",
        "comment",
        "created_at",
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
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS bookings (
                    booking_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    notes TEXT NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    price INTEGER,
                    status TEXT NOT NULL,
                    agreed_by_client INTEGER NOT NULL DEFAULT 0,
                    agreed_by_provider INTEGER NOT NULL DEFAULT 0,
                    last_proposed_by TEXT,
                    agreement_url TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    confirmed_at TEXT,
                    paid_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    cancelled_by TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_bookings_client ON bookings(client_id);
                CREATE INDEX IF NOT EXISTS idx_bookings_provider ON bookings(provider_id);

                CREATE TABLE IF NOT EXISTS chat_messages (
                    message_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    booking_id TEXT NOT NULL REFERENCES bookings(booking_id),
                    sender_id TEXT NOT NULL,
                    sender_role TEXT NOT NULL,
                    message TEXT NOT NULL,
                    sent_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_chat_booking
                    ON chat_messages(booking_id, message_id);

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL UNIQUE REFERENCES bookings(booking_id),
                    amount INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    gateway_reference TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    paid_at TEXT
                );

                CREATE TABLE IF NOT EXISTS executions (
                    execution_id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL UNIQUE REFERENCES bookings(booking_id),
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    payment_id TEXT NOT NULL,
                    credential_validated TEXT NOT NULL,
                    provider_completed TEXT NOT NULL,
                    client_completed TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    event TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    booking_id TEXT,
                    created_at TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_notifications_user
                    ON notifications(user_id, created_at);

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL UNIQUE REFERENCES bookings(booking_id),
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_reviews_provider ON reviews(provider_id);

                CREATE TABLE IF NOT EXISTS audit_logs (
                    audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    action TEXT NOT NULL,
                    booking_id TEXT,
                    metadata TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_audit_booking ON audit_logs(booking_id, audit_id);
                """
            )
            self._db.commit()

    @contextlib.contextmanager
    def _immediate_transaction(self) -> Iterator[None]:
        """Run a block inside BEGIN IMMEDIATE; roll back if it raises."""
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.commit()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_booking(self, row: sqlite3.Row) -> dict[str, Any]:
        booking = {column: row[column] for column in self._BOOKING_COLUMNS}
        booking["agreed_by_client"] = bool(booking["agreed_by_client"])
        booking["agreed_by_provider"] = bool(booking["agreed_by_provider"])
        return booking

    def _row_to_payment(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._PAYMENT_COLUMNS}

    def _row_to_execution(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._EXECUTION_COLUMNS}

    def _row_to_notification(self, row: sqlite3.Row) -> dict[str, Any]:
        notification = {column: row[column] for column in self._NOTIFICATION_COLUMNS}
        notification["read"] = bool(notification["read"])
        return notification

    def _row_to_review(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._REVIEW_COLUMNS}

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "message_id": row["message_id"],
            "booking_id": row["booking_id"],
            "sender_id": row["sender_id"],
            "sender_role": row["sender_role"],
            "message": row["message"],
            "timestamp": row["sent_at"],
        }

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def _select_booking(self, booking_id: str) -> dict[str, Any] | None:
        cursor = self._db.execute(
            f"SELECT {', '.join(self._BOOKING_COLUMNS)} FROM bookings WHERE booking_id = ?",  # noqa: S608
            (booking_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_booking(row)

    def _apply_booking_updates(self, booking_id: str, updates: dict[str, Any]) -> None:
        if len(updates) == 0:
            return
        if any(column not in self._BOOKING_COLUMNS or column == "booking_id" for column in updates):
            msg = "Attempted to update unknown booking column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        self._db.execute(
            f"UPDATE bookings SET {set_clause} WHERE booking_id = ?",  # noqa: S608
            (*updates.values(), booking_id),
        )

    def insert_booking(
        self,
        booking_data: dict[str, Any],
        audit_entries: Iterable[dict[str, Any]] = (),
    ) -> dict[str, Any]:
        """
        Insert a new booking row, with its audit entries in the same transaction.

        Raises:
            DuplicatePendingBookingError: the same client/provider pair already has a
                Pending booking
        """
        values = tuple(booking_data[column] for column in self._BOOKING_COLUMNS)
        placeholders = ", ".join("?" for _ in self._BOOKING_COLUMNS)

        with self._immediate_transaction():
            existing = self._db.execute(
                "SELECT booking_id FROM bookings "
                "WHERE client_id = ? AND provider_id = ? AND status = ? LIMIT 1",
                (booking_data["client_id"], booking_data["provider_id"], PENDING),
            ).fetchone()
            if existing is not None:
                raise DuplicatePendingBookingError(existing["booking_id"])
            self._db.execute(
                f"INSERT INTO bookings ({', '.join(self._BOOKING_COLUMNS)}) "  # noqa: S608
                f"VALUES ({placeholders})",
                values,
            )
            booking = self._select_booking(booking_data["booking_id"])
            self._insert_audit_entries(audit_entries)

        assert booking is not None
        return booking

    def get_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Fetch a booking by ID."""
        with self._lock:
            return self._select_booking(booking_id)

    def update_booking_atomically(
        self,
        booking_id: str,
        mutator: Callable[[dict[str, Any]], dict[str, Any]],
        audit: AuditBuilder | None = None,
    ) -> dict[str, Any]:
        """
        Read-modify-write one booking inside a single immediate transaction.

        The mutator receives the committed row and returns column updates
        (possibly empty). Anything it raises aborts the transaction. audit,
        when given, receives the updated row and returns the audit entries
        written in the same transaction.

        Raises:
            RecordNotFoundError: the booking does not exist
        """
        with self._immediate_transaction():
            row = self._select_booking(booking_id)
            if row is None:
                raise RecordNotFoundError(booking_id)
            self._apply_booking_updates(booking_id, mutator(row))
            booking = self._select_booking(booking_id)
            if audit is not None and booking is not None:
                self._insert_audit_entries(audit(booking))

        assert booking is not None
        return booking

    def set_agreement_url(
        self,
        booking_id: str,
        agreement_url: str,
        audit_entries: Iterable[dict[str, Any]] = (),
    ) -> str:
        """
        Store the agreement reference unless one is already set; return the stored one.

        The audit entries are written only by the call that sets the reference.
        """
        with self._immediate_transaction():
            cursor = self._db.execute(
                "UPDATE bookings SET agreement_url = ? "
                "WHERE booking_id = ? AND agreement_url IS NULL",
                (agreement_url, booking_id),
            )
            if cursor.rowcount == 1:
                self._insert_audit_entries(audit_entries)
            row = self._db.execute(
                "SELECT agreement_url FROM bookings WHERE booking_id = ?",
                (booking_id,),
            ).fetchone()

        if row is None:
            raise RecordNotFoundError(booking_id)
        stored: str = row["agreement_url"]
        return stored

    def list_bookings(
        self,
        user_id: str,
        status: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List bookings where the user is client or provider, newest first."""
        query = (
            f"SELECT {', '.join(self._BOOKING_COLUMNS)} FROM bookings "  # noqa: S608
            "WHERE (client_id = ? OR provider_id = ?)"
        )
        params: list[object] = [user_id, user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, booking_id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)
        elif offset is not None:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def count_bookings(self) -> int:
        """Count all bookings."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) AS total FROM bookings").fetchone()
        return int(row["total"])

    def count_bookings_by_status(self) -> dict[str, int]:
        """Count bookings grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) AS total FROM bookings GROUP BY status"
            ).fetchall()
        return {row["status"]: int(row["total"]) for row in rows}

    # ------------------------------------------------------------------
    # Chat log
    # ------------------------------------------------------------------

    def append_message(
        self,
        booking_id: str,
        sender_id: str,
        sender_role: str,
        message: str,
        sent_at: str,
    ) -> dict[str, Any]:
        """
        Append one message to a booking's chat log with a single INSERT.

        Raises:
            RecordNotFoundError: the booking does not exist
        """
        with self._lock:
            try:
                cursor = self._db.execute(
                    "INSERT INTO chat_messages "
                    "(booking_id, sender_id, sender_role, message, sent_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (booking_id, sender_id, sender_role, message, sent_at),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise RecordNotFoundError(booking_id) from exc

        return {
            "message_id": cursor.lastrowid,
            "booking_id": booking_id,
            "sender_id": sender_id,
            "sender_role": sender_role,
            "message": message,
            "timestamp": sent_at,
        }

    def get_messages(self, booking_id: str) -> list[dict[str, Any]]:
        """Return a booking's chat log in append order."""
        with self._lock:
            rows = self._db.execute(
                "SELECT message_id, booking_id, sender_id, sender_role, message, sent_at "
                "FROM chat_messages WHERE booking_id = ? ORDER BY message_id",
                (booking_id,),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _select_payment_for_booking(self, booking_id: str) -> dict[str, Any] | None:
        row = self._db.execute(
            f"SELECT {', '.join(self._PAYMENT_COLUMNS)} FROM payments WHERE booking_id = ?",  # noqa: S608
            (booking_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_payment(row)

    def get_payment_for_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Fetch the payment record of a booking."""
        with self._lock:
            return self._select_payment_for_booking(booking_id)

    def upsert_pending_payment(self, payment_data: dict[str, Any]) -> dict[str, Any]:
        """Create the pending payment for a checkout, or refresh it while still pending."""
        values = tuple(payment_data[column] for column in self._PAYMENT_COLUMNS)
        with self._immediate_transaction():
            self._db.execute(
                "INSERT INTO payments (payment_id, booking_id, amount, currency, "
                "gateway_reference, status, created_at, updated_at, paid_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(booking_id) DO UPDATE SET "
                "amount = excluded.amount, currency = excluded.currency, "
                "gateway_reference = excluded.gateway_reference, "
                "updated_at = excluded.updated_at "
                "WHERE payments.status = 'pending'",
                values,
            )
            payment = self._select_payment_for_booking(payment_data["booking_id"])

        assert payment is not None
        return payment

    def record_payment(
        self,
        booking_id: str,
        mutator: Callable[[dict[str, Any]], dict[str, Any]],
        payment_data: dict[str, Any],
        audit: AuditBuilder | None = None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Mark a booking's payment successful and apply the booking updates in one transaction.

        The payment row is written before the booking row so the booking can only
        reach Paid together with a successful payment record.

        Raises:
            RecordNotFoundError: the booking does not exist
        """
        values = tuple(payment_data[column] for column in self._PAYMENT_COLUMNS)
        with self._immediate_transaction():
            row = self._select_booking(booking_id)
            if row is None:
                raise RecordNotFoundError(booking_id)
            updates = mutator(row)
            self._db.execute(
                "INSERT INTO payments (payment_id, booking_id, amount, currency, "
                "gateway_reference, status, created_at, updated_at, paid_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(booking_id) DO UPDATE SET "
                "amount = excluded.amount, gateway_reference = excluded.gateway_reference, "
                "status = excluded.status, updated_at = excluded.updated_at, "
                "paid_at = excluded.paid_at",
                values,
            )
            self._apply_booking_updates(booking_id, updates)
            booking = self._select_booking(booking_id)
            payment = self._select_payment_for_booking(booking_id)
            if audit is not None and booking is not None:
                self._insert_audit_entries(audit(booking))

        assert booking is not None
        assert payment is not None
        return booking, payment

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def _select_execution(self, column: str, value: str) -> dict[str, Any] | None:
        row = self._db.execute(
            f"SELECT {', '.join(self._EXECUTION_COLUMNS)} FROM executions WHERE {column} = ?",  # noqa: S608
            (value,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_execution(row)

    def insert_execution(self, execution_data: dict[str, Any]) -> dict[str, Any]:
        """
        Insert the execution record of a booking.

        Raises:
            DuplicateExecutionError: the booking already has one
        """
        values = tuple(execution_data[column] for column in self._EXECUTION_COLUMNS)
        placeholders = ", ".join("?" for _ in self._EXECUTION_COLUMNS)
        try:
            with self._immediate_transaction():
                self._db.execute(
                    f"INSERT INTO executions ({', '.join(self._EXECUTION_COLUMNS)}) "  # noqa: S608
                    f"VALUES ({placeholders})",
                    values,
                )
                execution = self._select_execution("execution_id", execution_data["execution_id"])
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateExecutionError(
                    "An execution record already exists for "
                    f"booking_id={execution_data['booking_id']}"
                ) from exc
            raise

        assert execution is not None
        return execution

    def get_execution(self, execution_id: str) -> dict[str, Any] | None:
        """Fetch an execution record by ID."""
        with self._lock:
            return self._select_execution("execution_id", execution_id)

    def get_execution_for_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Fetch the execution record of a booking."""
        with self._lock:
            return self._select_execution("booking_id", booking_id)

    def update_execution_atomically(
        self,
        execution_id: str,
        mutator: Callable[[dict[str, Any], dict[str, Any]], tuple[dict[str, Any], dict[str, Any]]],
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Read-modify-write an execution record and its booking in one transaction.

        The mutator receives (execution, booking) and returns
        (execution_updates, booking_updates).

        Raises:
            RecordNotFoundError: the execution record does not exist
        """
        with self._immediate_transaction():
            execution = self._select_execution("execution_id", execution_id)
            if execution is None:
                raise RecordNotFoundError(execution_id)
            booking = self._select_booking(execution["booking_id"])
            if booking is None:
                raise RecordNotFoundError(execution["booking_id"])

            execution_updates, booking_updates = mutator(execution, booking)
            if execution_updates:
                if any(
                    column not in self._EXECUTION_COLUMNS or column == "execution_id"
                    for column in execution_updates
                ):
                    msg = "Attempted to update unknown execution column"
                    raise ValueError(msg)
                set_clause = ", ".join(f"{column} = ?" for column in execution_updates)
                self._db.execute(
                    f"UPDATE executions SET {set_clause} WHERE execution_id = ?",  # noqa: S608
                    (*execution_updates.values(), execution_id),
                )
            self._apply_booking_updates(booking["booking_id"], booking_updates)

            updated_execution = self._select_execution("execution_id", execution_id)
            updated_booking = self._select_booking(booking["booking_id"])

        assert updated_execution is not None
        assert updated_booking is not None
        return updated_execution, updated_booking

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(self, notification_data: dict[str, Any]) -> None:
        """Persist one delivered notification."""
        values = tuple(notification_data[column] for column in self._NOTIFICATION_COLUMNS)
        placeholders = ", ".join("?" for _ in self._NOTIFICATION_COLUMNS)
        with self._lock:
            try:
                self._db.execute(
                    f"INSERT INTO notifications ({', '.join(self._NOTIFICATION_COLUMNS)}) "  # noqa: S608
                    f"VALUES ({placeholders})",
                    values,
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def list_notifications(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._NOTIFICATION_COLUMNS)} FROM notifications "  # noqa: S608
                "WHERE user_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def count_unread_notifications(self, user_id: str) -> int:
        """Count a user's unread notifications."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) AS total FROM notifications WHERE user_id = ? AND read = 0",
                (user_id,),
            ).fetchone()
        return int(row["total"])

    def mark_notification_read(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        """Mark one of the user's notifications read; None if the user has no such notification."""
        with self._immediate_transaction():
            self._db.execute(
                "UPDATE notifications SET read = 1 WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            row = self._db.execute(
                f"SELECT {', '.join(self._NOTIFICATION_COLUMNS)} FROM notifications "  # noqa: S608
                "WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_notification(row)

    def mark_all_notifications_read(self, user_id: str) -> int:
        """Mark every unread notification of the user read; return how many changed."""
        with self._immediate_transaction():
            cursor = self._db.execute(
                "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0",
                (user_id,),
            )
            changed = cursor.rowcount
        return changed

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """
        Insert the review of a booking.

        Raises:
            DuplicateReviewError: the booking has already been reviewed
        """
        values = tuple(review_data[column] for column in self._REVIEW_COLUMNS)
        placeholders = ", ".join("?" for _ in self._REVIEW_COLUMNS)
        try:
            with self._immediate_transaction():
                self._db.execute(
                    f"INSERT INTO reviews ({', '.join(self._REVIEW_COLUMNS)}) "  # noqa: S608
                    f"VALUES ({placeholders})",
                    values,
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateReviewError(
                    f"Booking {review_data['booking_id']} has already been reviewed"
                ) from exc
            raise

    def get_review_for_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Fetch the review of a booking."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._REVIEW_COLUMNS)} FROM reviews WHERE booking_id = ?",  # noqa: S608
                (booking_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_review(row)

    def list_reviews_for_provider(self, provider_id: str) -> list[dict[str, Any]]:
        """List a provider's reviews, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._REVIEW_COLUMNS)} FROM reviews "  # noqa: S608
                "WHERE provider_id = ? ORDER BY created_at DESC, rowid DESC",
                (provider_id,),
            ).fetchall()
        return [self._row_to_review(row) for row in rows]

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def _insert_audit_entries(self, entries: Iterable[dict[str, Any]]) -> None:
        self._db.executemany(
            "INSERT INTO audit_logs (user_id, action, booking_id, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [
                (
                    entry["user_id"],
                    entry["action"],
                    entry["booking_id"],
                    json.dumps(entry["metadata"], sort_keys=True),
                    entry["created_at"],
                )
                for entry in entries
            ],
        )

    def list_audit_logs(self, booking_id: str) -> list[dict[str, Any]]:
        """Return a booking's audit trail in write order."""
        with self._lock:
            rows = self._db.execute(
                "SELECT audit_id, user_id, action, booking_id, metadata, created_at "
                "FROM audit_logs WHERE booking_id = ? ORDER BY audit_id",
                (booking_id,),
            ).fetchall()
        return [
            {
                "audit_id": row["audit_id"],
                "user_id": row["user_id"],
                "action": row["action"],
                "booking_id": row["booking_id"],
                "metadata": json.loads(row["metadata"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
