"""SQLite-backed storage for jobs, proposals, escrow holds, confirmations, and events."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from job_escrow_service.models import (
    Assignment,
    Category,
    ConfirmationRecord,
    Contractor,
    EscrowHold,
    HoldStatus,
    Job,
    JobStatus,
    LedgerEntry,
    Location,
    PartyRole,
    Priority,
    Proposal,
    ProposalOrigin,
    ProposalStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicateProposalError(Exception):
    """Raised when a contractor already has a pending proposal on the job."""


class EngineStore:
    """
    SQLite-backed storage shared by every engine component.

    One connection guarded by an RLock. Writes go through ``transaction()``,
    which opens ``BEGIN IMMEDIATE`` on the outermost call and joins the open
    transaction on nested calls, so several components can commit as one unit.
    """

    _JOB_COLUMNS_SQL = (
        "job_id, requester_id, category, priority, postal_code, latitude, longitude, "
        "radius_miles, description, status, assigned_contractor_id, accepted_amount, "
        "accepted_proposal_id, dispute_reason, created_at, updated_at"
    )
    _PROPOSAL_COLUMNS_SQL = (
        "proposal_id, job_id, contractor_id, amount, status, origin, counters_proposal_id, "
        "submitted_at, decided_at"
    )
    _HOLD_COLUMNS_SQL = (
        "hold_id, job_id, amount, status, processor_reference, released_amount, "
        "refunded_amount, platform_fee, contractor_payout, created_at, updated_at"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    requester_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    postal_code TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    radius_miles REAL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    assigned_contractor_id TEXT,
                    accepted_amount INTEGER,
                    accepted_proposal_id TEXT,
                    dispute_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK ((assigned_contractor_id IS NULL) = (accepted_amount IS NULL)),
                    CHECK ((assigned_contractor_id IS NULL) = (accepted_proposal_id IS NULL))
                );

                CREATE TABLE IF NOT EXISTS proposals (
                    proposal_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id),
                    contractor_id TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    status TEXT NOT NULL DEFAULT 'pending',
                    origin TEXT NOT NULL,
                    counters_proposal_id TEXT,
                    submitted_at TEXT NOT NULL,
                    decided_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_pending_proposal
                    ON proposals(job_id, contractor_id)
                    WHERE status = 'pending';

                CREATE UNIQUE INDEX IF NOT EXISTS ux_accepted_proposal
                    ON proposals(job_id)
                    WHERE status = 'accepted';

                CREATE TABLE IF NOT EXISTS escrow_holds (
                    hold_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL UNIQUE REFERENCES jobs(job_id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    status TEXT NOT NULL DEFAULT 'held',
                    processor_reference TEXT NOT NULL,
                    released_amount INTEGER NOT NULL DEFAULT 0 CHECK (released_amount >= 0),
                    refunded_amount INTEGER NOT NULL DEFAULT 0 CHECK (refunded_amount >= 0),
                    platform_fee INTEGER NOT NULL DEFAULT 0,
                    contractor_payout INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (released_amount + refunded_amount <= amount)
                );

                CREATE TABLE IF NOT EXISTS ledger_entries (
                    hold_id TEXT NOT NULL REFERENCES escrow_holds(hold_id),
                    sequence INTEGER NOT NULL,
                    entry_type TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount >= 0),
                    reference TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (hold_id, sequence),
                    UNIQUE (hold_id, reference)
                );

                CREATE TABLE IF NOT EXISTS confirmations (
                    job_id TEXT NOT NULL REFERENCES jobs(job_id),
                    role TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    confirmed_at TEXT NOT NULL,
                    PRIMARY KEY (job_id, role)
                );

                CREATE TABLE IF NOT EXISTS contractors (
                    contractor_id TEXT PRIMARY KEY,
                    postal_code TEXT,
                    latitude REAL,
                    longitude REAL,
                    service_radius_miles REAL NOT NULL,
                    available INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS contractor_categories (
                    contractor_id TEXT NOT NULL REFERENCES contractors(contractor_id),
                    category TEXT NOT NULL,
                    PRIMARY KEY (contractor_id, category)
                );

                CREATE TABLE IF NOT EXISTS contractor_postal_codes (
                    contractor_id TEXT NOT NULL REFERENCES contractors(contractor_id),
                    postal_code TEXT NOT NULL,
                    PRIMARY KEY (contractor_id, postal_code)
                );

                CREATE TABLE IF NOT EXISTS events (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_jobs_status ON jobs(status);
                CREATE INDEX IF NOT EXISTS ix_proposals_job ON proposals(job_id, submitted_at);
                CREATE INDEX IF NOT EXISTS ix_events_job ON events(job_id, event_id);
                CREATE INDEX IF NOT EXISTS ix_contractor_categories_category
                    ON contractor_categories(category);
                """
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed writes atomically.

        The outermost call holds the lock for the whole block and issues
        BEGIN IMMEDIATE; nested calls join it. Any exception rolls back
        everything written since the outermost BEGIN.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            else:
                self._db.execute("COMMIT")
            finally:
                self._depth = 0

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        assignment = None
        if row["assigned_contractor_id"] is not None:
            assignment = Assignment(
                contractor_id=str(row["assigned_contractor_id"]),
                amount=int(row["accepted_amount"]),
                proposal_id=str(row["accepted_proposal_id"]),
            )
        return Job(
            job_id=str(row["job_id"]),
            requester_id=str(row["requester_id"]),
            category=Category(row["category"]),
            priority=Priority(row["priority"]),
            location=Location(
                postal_code=str(row["postal_code"]),
                latitude=row["latitude"],
                longitude=row["longitude"],
                radius_miles=row["radius_miles"],
            ),
            description=str(row["description"]),
            status=JobStatus(row["status"]),
            assignment=assignment,
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            dispute_reason=row["dispute_reason"],
        )

    @staticmethod
    def _row_to_proposal(row: sqlite3.Row) -> Proposal:
        return Proposal(
            proposal_id=str(row["proposal_id"]),
            job_id=str(row["job_id"]),
            contractor_id=str(row["contractor_id"]),
            amount=int(row["amount"]),
            status=ProposalStatus(row["status"]),
            origin=ProposalOrigin(row["origin"]),
            submitted_at=str(row["submitted_at"]),
            decided_at=row["decided_at"],
            counters_proposal_id=row["counters_proposal_id"],
        )

    @staticmethod
    def _row_to_hold(row: sqlite3.Row) -> EscrowHold:
        return EscrowHold(
            hold_id=str(row["hold_id"]),
            job_id=str(row["job_id"]),
            amount=int(row["amount"]),
            status=HoldStatus(row["status"]),
            processor_reference=str(row["processor_reference"]),
            released_amount=int(row["released_amount"]),
            refunded_amount=int(row["refunded_amount"]),
            platform_fee=int(row["platform_fee"]),
            contractor_payout=int(row["contractor_payout"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def insert_job(self, job: Job) -> None:
        """Insert a new, unassigned job row."""
        with self.transaction():
            self._db.execute(
                "INSERT INTO jobs (" + self._JOB_COLUMNS_SQL + ") "  # nosec B608
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    job.job_id,
                    job.requester_id,
                    job.category.value,
                    job.priority.value,
                    job.location.postal_code,
                    job.location.latitude,
                    job.location.longitude,
                    job.location.radius_miles,
                    job.description,
                    job.status.value,
                    None,
                    None,
                    None,
                    None,
                    job.created_at,
                    job.updated_at,
                ),
            )

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self._db.execute(
                "SELECT " + self._JOB_COLUMNS_SQL + " FROM jobs WHERE job_id = ?",  # nosec B608
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    def update_job_status(
        self,
        job_id: str,
        *,
        expected_status: JobStatus,
        new_status: JobStatus,
        updated_at: str,
        assignment: Assignment | None = None,
        dispute_reason: str | None = None,
    ) -> int:
        """
        Compare-and-swap the job status. Returns the number of rows changed.

        The assignment columns are only ever written together.
        """
        set_clause = "status = ?, updated_at = ?"
        params: list[object] = [new_status.value, updated_at]
        if assignment is not None:
            set_clause += (
                ", assigned_contractor_id = ?, accepted_amount = ?, accepted_proposal_id = ?"
            )
            params.extend([assignment.contractor_id, assignment.amount, assignment.proposal_id])
        if dispute_reason is not None:
            set_clause += ", dispute_reason = ?"
            params.append(dispute_reason)
        params.extend([job_id, expected_status.value])

        with self.transaction():
            cursor = self._db.execute(
                "UPDATE jobs SET " + set_clause + " WHERE job_id = ? AND status = ?",  # nosec B608
                params,
            )
        return int(cursor.rowcount)

    def list_jobs(
        self,
        status: JobStatus | None,
        requester_id: str | None,
        contractor_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[Job]:
        """List jobs with optional filters, newest first."""
        query = "SELECT " + self._JOB_COLUMNS_SQL + " FROM jobs"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if requester_id is not None:
            clauses.append("requester_id = ?")
            params.append(requester_id)
        if contractor_id is not None:
            clauses.append("assigned_contractor_id = ?")
            params.append(contractor_id)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, job_id"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM jobs GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def insert_proposal(self, proposal: Proposal) -> None:
        """Insert a pending proposal; one pending proposal per (job, contractor)."""
        try:
            with self.transaction():
                self._db.execute(
                    "INSERT INTO proposals ("  # nosec B608
                    + self._PROPOSAL_COLUMNS_SQL
                    + ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        proposal.proposal_id,
                        proposal.job_id,
                        proposal.contractor_id,
                        proposal.amount,
                        proposal.status.value,
                        proposal.origin.value,
                        proposal.counters_proposal_id,
                        proposal.submitted_at,
                        proposal.decided_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateProposalError(
                    "Contractor already has a pending proposal on this job"
                ) from exc
            raise

    def get_proposal(self, proposal_id: str) -> Proposal | None:
        with self._lock:
            row = self._db.execute(
                "SELECT " + self._PROPOSAL_COLUMNS_SQL  # nosec B608
                + " FROM proposals WHERE proposal_id = ?",
                (proposal_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_proposal(row)

    def list_proposals(self, job_id: str) -> list[Proposal]:
        with self._lock:
            rows = self._db.execute(
                "SELECT " + self._PROPOSAL_COLUMNS_SQL  # nosec B608
                + " FROM proposals WHERE job_id = ? ORDER BY submitted_at, proposal_id",
                (job_id,),
            ).fetchall()
        return [self._row_to_proposal(row) for row in rows]

    def decide_proposal(
        self,
        proposal_id: str,
        *,
        new_status: ProposalStatus,
        decided_at: str,
    ) -> int:
        """Move a pending proposal to a decided status. Returns rows changed."""
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE proposals SET status = ?, decided_at = ? "
                "WHERE proposal_id = ? AND status = 'pending'",
                (new_status.value, decided_at, proposal_id),
            )
        return int(cursor.rowcount)

    def reject_pending_proposals(
        self,
        job_id: str,
        *,
        decided_at: str,
        except_proposal_id: str | None = None,
    ) -> list[str]:
        """Reject every pending proposal on a job (bar one). Returns the rejected ids."""
        with self.transaction():
            rows = self._db.execute(
                "SELECT proposal_id FROM proposals WHERE job_id = ? AND status = 'pending'",
                (job_id,),
            ).fetchall()
            rejected = [
                str(row["proposal_id"])
                for row in rows
                if str(row["proposal_id"]) != except_proposal_id
            ]
            for proposal_id in rejected:
                self._db.execute(
                    "UPDATE proposals SET status = 'rejected', decided_at = ? "
                    "WHERE proposal_id = ? AND status = 'pending'",
                    (decided_at, proposal_id),
                )
        return rejected

    def count_accepted_proposals(self, job_id: str) -> int:
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM proposals WHERE job_id = ? AND status = 'accepted'",
                (job_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Escrow holds and ledger entries
    # ------------------------------------------------------------------

    def insert_hold(self, hold: EscrowHold) -> None:
        with self.transaction():
            self._db.execute(
                "INSERT INTO escrow_holds (" + self._HOLD_COLUMNS_SQL + ") "  # nosec B608
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    hold.hold_id,
                    hold.job_id,
                    hold.amount,
                    hold.status.value,
                    hold.processor_reference,
                    hold.released_amount,
                    hold.refunded_amount,
                    hold.platform_fee,
                    hold.contractor_payout,
                    hold.created_at,
                    hold.updated_at,
                ),
            )

    def get_hold(self, hold_id: str) -> EscrowHold | None:
        with self._lock:
            row = self._db.execute(
                "SELECT " + self._HOLD_COLUMNS_SQL  # nosec B608
                + " FROM escrow_holds WHERE hold_id = ?",
                (hold_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_hold(row)

    def get_hold_for_job(self, job_id: str) -> EscrowHold | None:
        with self._lock:
            row = self._db.execute(
                "SELECT " + self._HOLD_COLUMNS_SQL  # nosec B608
                + " FROM escrow_holds WHERE job_id = ?",
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_hold(row)

    def update_hold(
        self,
        hold_id: str,
        updates: dict[str, Any],
        *,
        expected_status: HoldStatus,
    ) -> int:
        """Compare-and-swap update of a hold row. Returns rows changed."""
        allowed = {
            "status",
            "released_amount",
            "refunded_amount",
            "platform_fee",
            "contractor_payout",
            "updated_at",
        }
        if not updates or any(column not in allowed for column in updates):
            msg = "Attempted to update unknown hold column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            value.value if isinstance(value, HoldStatus) else value for value in updates.values()
        ]
        params.extend([hold_id, expected_status.value])

        with self.transaction():
            cursor = self._db.execute(
                "UPDATE escrow_holds SET " + set_clause  # nosec B608
                + " WHERE hold_id = ? AND status = ?",
                params,
            )
        return int(cursor.rowcount)

    def append_ledger_entry(
        self,
        hold_id: str,
        entry_type: str,
        amount: int,
        reference: str,
        created_at: str,
    ) -> LedgerEntry:
        """Append an entry with the next per-hold sequence number."""
        with self.transaction():
            row = self._db.execute(
                "SELECT COALESCE(MAX(sequence), 0) FROM ledger_entries WHERE hold_id = ?",
                (hold_id,),
            ).fetchone()
            sequence = int(row[0]) + 1
            self._db.execute(
                "INSERT INTO ledger_entries "
                "(hold_id, sequence, entry_type, amount, reference, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (hold_id, sequence, entry_type, amount, reference, created_at),
            )
        return LedgerEntry(
            hold_id=hold_id,
            sequence=sequence,
            entry_type=entry_type,
            amount=amount,
            reference=reference,
            created_at=created_at,
        )

    def has_ledger_reference(self, hold_id: str, reference: str) -> bool:
        with self._lock:
            row = self._db.execute(
                "SELECT 1 FROM ledger_entries WHERE hold_id = ? AND reference = ?",
                (hold_id, reference),
            ).fetchone()
        return row is not None

    def get_ledger_entry(self, hold_id: str, reference: str) -> LedgerEntry | None:
        with self._lock:
            row = self._db.execute(
                "SELECT hold_id, sequence, entry_type, amount, reference, created_at "
                "FROM ledger_entries WHERE hold_id = ? AND reference = ? "
                "ORDER BY sequence LIMIT 1",
                (hold_id, reference),
            ).fetchone()
        if row is None:
            return None
        return LedgerEntry(
            hold_id=str(row["hold_id"]),
            sequence=int(row["sequence"]),
            entry_type=str(row["entry_type"]),
            amount=int(row["amount"]),
            reference=str(row["reference"]),
            created_at=str(row["created_at"]),
        )

    def list_ledger_entries(self, hold_id: str) -> list[LedgerEntry]:
        with self._lock:
            rows = self._db.execute(
                "SELECT hold_id, sequence, entry_type, amount, reference, created_at "
                "FROM ledger_entries WHERE hold_id = ? ORDER BY sequence",
                (hold_id,),
            ).fetchall()
        return [
            LedgerEntry(
                hold_id=str(row["hold_id"]),
                sequence=int(row["sequence"]),
                entry_type=str(row["entry_type"]),
                amount=int(row["amount"]),
                reference=str(row["reference"]),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    def insert_confirmation(self, record: ConfirmationRecord) -> bool:
        """Insert a confirmation unless one exists for (job, role). Returns True if new."""
        with self.transaction():
            cursor = self._db.execute(
                "INSERT OR IGNORE INTO confirmations (job_id, role, actor_id, confirmed_at) "
                "VALUES (?, ?, ?, ?)",
                (record.job_id, record.role.value, record.actor_id, record.confirmed_at),
            )
        return cursor.rowcount == 1

    def list_confirmations(self, job_id: str) -> list[ConfirmationRecord]:
        with self._lock:
            rows = self._db.execute(
                "SELECT job_id, role, actor_id, confirmed_at FROM confirmations "
                "WHERE job_id = ? ORDER BY confirmed_at, role",
                (job_id,),
            ).fetchall()
        return [
            ConfirmationRecord(
                job_id=str(row["job_id"]),
                role=PartyRole(row["role"]),
                actor_id=str(row["actor_id"]),
                confirmed_at=str(row["confirmed_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Contractors
    # ------------------------------------------------------------------

    def upsert_contractor(self, contractor: Contractor) -> None:
        """Replace a contractor's profile, categories, and enumerated postal codes."""
        with self.transaction():
            self._db.execute(
                "INSERT INTO contractors "
                "(contractor_id, postal_code, latitude, longitude, service_radius_miles, "
                "available, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(contractor_id) DO UPDATE SET "
                "postal_code = excluded.postal_code, latitude = excluded.latitude, "
                "longitude = excluded.longitude, "
                "service_radius_miles = excluded.service_radius_miles, "
                "available = excluded.available, updated_at = excluded.updated_at",
                (
                    contractor.contractor_id,
                    contractor.postal_code,
                    contractor.latitude,
                    contractor.longitude,
                    contractor.service_radius_miles,
                    int(contractor.available),
                    contractor.updated_at,
                ),
            )
            self._db.execute(
                "DELETE FROM contractor_categories WHERE contractor_id = ?",
                (contractor.contractor_id,),
            )
            self._db.executemany(
                "INSERT INTO contractor_categories (contractor_id, category) VALUES (?, ?)",
                [(contractor.contractor_id, c.value) for c in sorted(contractor.categories)],
            )
            self._db.execute(
                "DELETE FROM contractor_postal_codes WHERE contractor_id = ?",
                (contractor.contractor_id,),
            )
            self._db.executemany(
                "INSERT INTO contractor_postal_codes (contractor_id, postal_code) VALUES (?, ?)",
                [
                    (contractor.contractor_id, code)
                    for code in sorted(contractor.service_postal_codes)
                ],
            )

    def set_contractor_availability(
        self, contractor_id: str, available: bool, updated_at: str
    ) -> int:
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE contractors SET available = ?, updated_at = ? WHERE contractor_id = ?",
                (int(available), updated_at, contractor_id),
            )
        return int(cursor.rowcount)

    def _load_contractors(self, where: str, params: tuple[object, ...]) -> list[Contractor]:
        with self._lock:
            rows = self._db.execute(
                "SELECT contractor_id, postal_code, latitude, longitude, service_radius_miles, "
                "available, updated_at FROM contractors " + where,  # nosec B608
                params,
            ).fetchall()
            contractor_ids = [str(row["contractor_id"]) for row in rows]
            categories: dict[str, set[Category]] = {cid: set() for cid in contractor_ids}
            postal_codes: dict[str, set[str]] = {cid: set() for cid in contractor_ids}
            if contractor_ids:
                placeholders = ", ".join("?" for _ in contractor_ids)
                for row in self._db.execute(
                    "SELECT contractor_id, category FROM contractor_categories "  # nosec B608
                    f"WHERE contractor_id IN ({placeholders})",
                    contractor_ids,
                ).fetchall():
                    categories[str(row["contractor_id"])].add(Category(row["category"]))
                for row in self._db.execute(
                    "SELECT contractor_id, postal_code FROM contractor_postal_codes "  # nosec B608
                    f"WHERE contractor_id IN ({placeholders})",
                    contractor_ids,
                ).fetchall():
                    postal_codes[str(row["contractor_id"])].add(str(row["postal_code"]))

        return [
            Contractor(
                contractor_id=str(row["contractor_id"]),
                categories=frozenset(categories[str(row["contractor_id"])]),
                postal_code=row["postal_code"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                service_radius_miles=float(row["service_radius_miles"]),
                service_postal_codes=frozenset(postal_codes[str(row["contractor_id"])]),
                available=bool(row["available"]),
                updated_at=str(row["updated_at"]),
            )
            for row in rows
        ]

    def get_contractor(self, contractor_id: str) -> Contractor | None:
        found = self._load_contractors("WHERE contractor_id = ?", (contractor_id,))
        return found[0] if found else None

    def list_available_contractors_in_category(self, category: Category) -> list[Contractor]:
        """Candidates for matching: available contractors registered for the category."""
        return self._load_contractors(
            "WHERE available = 1 AND contractor_id IN "
            "(SELECT contractor_id FROM contractor_categories WHERE category = ?) "
            "ORDER BY contractor_id",
            (category.value,),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def append_event(
        self,
        job_id: str,
        event_type: str,
        payload: dict[str, Any],
        created_at: str,
    ) -> int:
        with self.transaction():
            cursor = self._db.execute(
                "INSERT INTO events (job_id, event_type, payload, created_at) VALUES (?, ?, ?, ?)",
                (job_id, event_type, json.dumps(payload, sort_keys=True, default=str), created_at),
            )
        return int(cursor.lastrowid or 0)

    def list_events(self, job_id: str, after: int, limit: int) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._db.execute(
                "SELECT event_id, job_id, event_type, payload, created_at FROM events "
                "WHERE job_id = ? AND event_id > ? ORDER BY event_id LIMIT ?",
                (job_id, after, limit),
            ).fetchall()
        return [
            {
                "event_id": int(row["event_id"]),
                "job_id": str(row["job_id"]),
                "event_type": str(row["event_type"]),
                "payload": json.loads(row["payload"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
