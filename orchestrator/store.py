"""
StorePilot — Workflow Store

SQLite-backed persistence for workflow state, session → pending
workflow links, and the action ledger. A paused workflow is saved
with its full WorkflowState snapshot so it can be resumed in a later
process.

Usage:
    store = WorkflowStore("storepilot.db")      # or ":memory:" in tests
    store.save_workflow(state)
    state = store.get_workflow("wf_...")
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from pilot.state import WorkflowState, WorkflowStatus


class _Transaction:
    """
    SQLite transaction context manager.

    While active, individual save_*/commit() calls become no-ops.
    The real COMMIT happens when the context manager exits cleanly.
    """
    def __init__(self, conn, store):
        self.conn = conn
        self.store = store

    def __enter__(self):
        self.store._lock.acquire()
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except Exception:
            # __exit__ never runs when __enter__ raises
            self.store._lock.release()
            raise
        self.store._in_transaction = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.store._in_transaction = False
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
        finally:
            self.store._lock.release()
        return False


class WorkflowStore:
    """SQLite-backed store for workflow state."""

    def __init__(self, db_path: str | Path = "storepilot.db"):
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self._lock = threading.RLock()
        self._in_transaction = False
        self._create_tables()

    def _commit(self):
        """Commit unless inside an explicit transaction block."""
        if not self._in_transaction and self.conn.in_transaction:
            self.conn.commit()

    def transaction(self):
        """
        Context manager for explicit transaction boundaries.

        Usage:
            with store.transaction():
                store.save_workflow(state)
                store.set_session_pending(session_id, state.workflow_id)
                # Both committed atomically, or both rolled back
        """
        return _Transaction(self.conn, self)

    def _create_tables(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS workflows (
                    workflow_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    trace_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    intent TEXT DEFAULT '',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    expires_at REAL,
                    state TEXT NOT NULL,
                    error TEXT
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    pending_workflow_id TEXT,
                    updated_at REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS action_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workflow_id TEXT NOT NULL,
                    trace_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    details TEXT NOT NULL,
                    idempotency_key TEXT UNIQUE,
                    created_at REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows(status);
                CREATE INDEX IF NOT EXISTS idx_workflows_session ON workflows(session_id);
                CREATE INDEX IF NOT EXISTS idx_ledger_workflow ON action_ledger(workflow_id);
            """)

    # ─── Workflow CRUD ───────────────────────────────────────────────

    def save_workflow(self, state: WorkflowState):
        pending = state.pending_action
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO workflows
                (workflow_id, session_id, trace_id, status, intent,
                 created_at, updated_at, expires_at, state, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                state.workflow_id, state.input.session_id, state.input.trace_id,
                state.status.value,
                state.plan.intent if state.plan else "",
                state.started_at, time.time(),
                pending.expires_at if pending else None,
                json.dumps(state.to_dict(), default=str),
                state.error,
            ))
            self._commit()

    def get_workflow(self, workflow_id: str) -> WorkflowState | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT state FROM workflows WHERE workflow_id = ?", (workflow_id,)
            ).fetchone()
        if not row:
            return None
        return WorkflowState.from_dict(json.loads(row["state"]))

    def list_workflows(
        self,
        status: WorkflowStatus | None = None,
        session_id: str | None = None,
        limit: int = 500,
    ) -> list[WorkflowState]:
        query = "SELECT state FROM workflows WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [WorkflowState.from_dict(json.loads(r["state"])) for r in rows]

    def list_pending(self, session_id: str | None = None) -> list[WorkflowState]:
        return self.list_workflows(WorkflowStatus.PENDING_CONFIRMATION, session_id=session_id)

    def find_expired(self, now: float | None = None) -> list[WorkflowState]:
        """Pending workflows whose confirmation window has closed."""
        now = time.time() if now is None else now
        with self._lock:
            rows = self.conn.execute(
                "SELECT state FROM workflows WHERE status = ? "
                "AND expires_at IS NOT NULL AND expires_at <= ? ORDER BY created_at",
                (WorkflowStatus.PENDING_CONFIRMATION.value, now),
            ).fetchall()
        return [WorkflowState.from_dict(json.loads(r["state"])) for r in rows]

    # ─── Sessions ────────────────────────────────────────────────────

    def set_session_pending(self, session_id: str, workflow_id: str | None):
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO sessions (session_id, pending_workflow_id, updated_at)
                VALUES (?, ?, ?)
            """, (session_id, workflow_id, time.time()))
            self._commit()

    def get_session_pending(self, session_id: str) -> str | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT pending_workflow_id FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return row["pending_workflow_id"] if row else None

    def clear_session_pending(self, session_id: str, workflow_id: str | None = None):
        """Drop the session's pending link; when workflow_id is given, only if it still matches."""
        with self._lock:
            if workflow_id is None:
                self.conn.execute(
                    "UPDATE sessions SET pending_workflow_id = NULL, updated_at = ? WHERE session_id = ?",
                    (time.time(), session_id),
                )
            else:
                self.conn.execute(
                    "UPDATE sessions SET pending_workflow_id = NULL, updated_at = ? "
                    "WHERE session_id = ? AND pending_workflow_id = ?",
                    (time.time(), session_id, workflow_id),
                )
            self._commit()

    # ─── Action Ledger ───────────────────────────────────────────────

    def log_action(
        self,
        workflow_id: str,
        trace_id: str,
        action_type: str,
        details: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> bool:
        """
        Log an action to the ledger. Returns False if the idempotency
        key already exists (preventing duplicate execution).
        """
        with self._lock:
            try:
                self.conn.execute("""
                    INSERT INTO action_ledger
                    (workflow_id, trace_id, action_type, details,
                     idempotency_key, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    workflow_id, trace_id, action_type,
                    json.dumps(details, default=str),
                    idempotency_key, time.time(),
                ))
                self._commit()
                return True
            except sqlite3.IntegrityError:
                # Idempotency key already exists
                return False

    def get_ledger(self, workflow_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM action_ledger WHERE 1=1"
        params = []
        if workflow_id:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        query += " ORDER BY id"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [
            {
                "id": r["id"],
                "workflow_id": r["workflow_id"],
                "trace_id": r["trace_id"],
                "action_type": r["action_type"],
                "details": json.loads(r["details"]),
                "idempotency_key": r["idempotency_key"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    # ─── Statistics ──────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        with self._lock:
            workflows = self.conn.execute(
                "SELECT status, COUNT(*) as cnt FROM workflows GROUP BY status"
            ).fetchall()
            ledger_count = self.conn.execute(
                "SELECT COUNT(*) as cnt FROM action_ledger"
            ).fetchone()["cnt"]
        return {
            "workflows": {r["status"]: r["cnt"] for r in workflows},
            "action_ledger_entries": ledger_count,
        }

    def close(self):
        self.conn.close()
