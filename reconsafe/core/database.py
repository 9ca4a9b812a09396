"""
ReconSafe Database

Single store for exceptions, bank transactions, invoices, suggestions,
reconciliation links, settlement allocations, suggestion outcomes, prediction
logs, drift signals, guardrail events and tenant ML settings.

Postgres is used when DATABASE_URL points at one; SQLite otherwise.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

try:
    import psycopg
    from psycopg.rows import dict_row
    HAS_POSTGRES = True
except ImportError:  # pragma: no cover
    psycopg = None
    dict_row = None
    HAS_POSTGRES = False

from reconsafe.core.models import utcnow, new_id

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dump(value: Optional[Dict[str, Any]]) -> str:
    return json.dumps(value or {}, default=str)


class ReconDB:
    def __init__(self, db_path: str = "reconsafe.db"):
        self.dsn = os.getenv("DATABASE_URL")
        self.db_path = db_path
        dsn = (self.dsn or "").strip().lower()
        self.allow_sqlite_fallback = str(
            os.getenv("RECONSAFE_DB_FALLBACK_SQLITE", "true")
        ).strip().lower() not in {"0", "false", "no", "off"}
        self.use_postgres = bool(
            HAS_POSTGRES
            and dsn
            and (dsn.startswith("postgres://") or dsn.startswith("postgresql://"))
        )
        self._initialized = False
        self._fallback_warned = False

    def _sqlite_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self):
        if self.use_postgres:
            try:
                conn = psycopg.connect(self.dsn, row_factory=dict_row)
            except Exception as exc:
                if not self.allow_sqlite_fallback:
                    raise
                if not self._fallback_warned:
                    logger.warning(
                        "Postgres unavailable (%s). Falling back to SQLite at %s. "
                        "Set RECONSAFE_DB_FALLBACK_SQLITE=false to disable fallback.",
                        exc,
                        self.db_path,
                    )
                    self._fallback_warned = True
                self.use_postgres = False
                conn = self._sqlite_connection()
        else:
            conn = self._sqlite_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _prepare_sql(self, sql: str) -> str:
        if self.use_postgres:
            return sql.replace("?", "%s")
        return sql

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a cursor whose statements commit together or not at all."""
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def _cursor(self, cur=None) -> Iterator[Any]:
        if cur is not None:
            yield cur
            return
        with self.transaction() as own:
            yield own

    def _exec(self, cur, sql: str, params: tuple = ()) -> int:
        cur.execute(self._prepare_sql(sql), params)
        return cur.rowcount

    def _fetchone(self, sql: str, params: tuple = (), cur=None) -> Optional[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute(self._prepare_sql(sql), params)
            row = c.fetchone()
        return dict(row) if row else None

    def _fetchall(self, sql: str, params: tuple = (), cur=None) -> List[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute(self._prepare_sql(sql), params)
            rows = c.fetchall()
        return [dict(row) for row in rows]

    def initialize(self) -> None:
        if self._initialized:
            return
        with self.connect() as conn:
            cur = conn.cursor()

            cur.execute("""
                CREATE TABLE IF NOT EXISTS tenant_users (
                    user_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    role TEXT DEFAULT 'user',
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS tenant_ml_settings (
                    tenant_id TEXT PRIMARY KEY,
                    ml_enabled INTEGER DEFAULT 0,
                    ml_status TEXT DEFAULT 'DISABLED',
                    ml_model_version TEXT DEFAULT 'v2.0',
                    last_fallback_reason TEXT,
                    last_fallback_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS exceptions_queue (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    exception_type TEXT NOT NULL,
                    ref_id TEXT NOT NULL,
                    status TEXT DEFAULT 'open',
                    created_at TEXT,
                    resolved_at TEXT,
                    resolved_by TEXT,
                    triage_notes TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS bank_transactions (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT,
                    description TEXT,
                    reference TEXT,
                    transaction_date TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS invoices (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    invoice_number TEXT,
                    customer_name TEXT,
                    total_amount REAL NOT NULL,
                    due_date TEXT,
                    issue_date TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reconciliation_suggestions (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    exception_id TEXT NOT NULL,
                    bank_transaction_id TEXT,
                    invoice_id TEXT,
                    suggestion_type TEXT NOT NULL,
                    confidence INTEGER NOT NULL,
                    suggested_amount REAL NOT NULL,
                    currency TEXT,
                    rationale TEXT,
                    auto_confirm_eligible INTEGER DEFAULT 0,
                    rank INTEGER DEFAULT 0,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reconciliation_links (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    bank_transaction_id TEXT,
                    invoice_id TEXT,
                    match_type TEXT NOT NULL,
                    matched_amount REAL NOT NULL,
                    confidence INTEGER,
                    matched_by TEXT,
                    match_source TEXT,
                    notes TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS settlement_allocations (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    reconciliation_link_id TEXT NOT NULL,
                    invoice_id TEXT,
                    allocated_amount REAL NOT NULL,
                    allocation_type TEXT DEFAULT 'principal',
                    created_at TEXT,
                    UNIQUE(reconciliation_link_id, allocation_type)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reconciliation_suggestion_outcomes (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    suggestion_id TEXT NOT NULL,
                    exception_id TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    confidence_at_time INTEGER,
                    final_result TEXT NOT NULL,
                    rationale_snapshot TEXT,
                    decided_by TEXT,
                    decided_at TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS ml_prediction_logs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    suggestion_id TEXT NOT NULL,
                    model_version TEXT,
                    predicted_confidence INTEGER,
                    explanation TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS ml_drift_signals (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    model_version TEXT,
                    drift_type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    metric TEXT NOT NULL,
                    baseline_value REAL,
                    current_value REAL,
                    delta REAL,
                    details TEXT,
                    auto_action_taken TEXT,
                    detected_at TEXT,
                    acknowledged_at TEXT,
                    acknowledged_by TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reconciliation_guardrail_events (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    suggestion_id TEXT,
                    action TEXT NOT NULL,
                    reason TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS confidence_calibration_stats (
                    tenant_id TEXT NOT NULL,
                    confidence_bucket TEXT NOT NULL,
                    sample_size INTEGER DEFAULT 0,
                    success_rate REAL,
                    updated_at TEXT,
                    PRIMARY KEY (tenant_id, confidence_bucket)
                )
            """)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_suggestions_exception ON reconciliation_suggestions(exception_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_outcomes_tenant ON reconciliation_suggestion_outcomes(tenant_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_predictions_tenant ON ml_prediction_logs(tenant_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_drift_tenant ON ml_drift_signals(tenant_id, detected_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_guardrail_tenant ON reconciliation_guardrail_events(tenant_id, created_at)")

            conn.commit()
        self._initialized = True

    # ==================== TENANTS ====================

    def add_tenant_user(self, user_id: str, tenant_id: str, role: str = "user") -> None:
        with self._cursor() as cur:
            self._exec(
                cur,
                """
                INSERT INTO tenant_users (user_id, tenant_id, role, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET tenant_id = excluded.tenant_id, role = excluded.role
                """,
                (user_id, tenant_id, role, _iso(utcnow())),
            )

    def get_tenant_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._fetchone("SELECT * FROM tenant_users WHERE user_id = ?", (user_id,))

    # ==================== TENANT ML SETTINGS ====================

    def get_ml_settings(self, tenant_id: str, cur=None) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            "SELECT * FROM tenant_ml_settings WHERE tenant_id = ?", (tenant_id,), cur=cur
        )

    def upsert_ml_settings(self, payload: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO tenant_ml_settings
                    (tenant_id, ml_enabled, ml_status, ml_model_version,
                     last_fallback_reason, last_fallback_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET
                    ml_enabled = excluded.ml_enabled,
                    ml_status = excluded.ml_status,
                    ml_model_version = excluded.ml_model_version,
                    last_fallback_reason = excluded.last_fallback_reason,
                    last_fallback_at = excluded.last_fallback_at,
                    updated_at = excluded.updated_at
                """,
                (
                    payload["tenant_id"],
                    1 if payload.get("ml_enabled") else 0,
                    payload.get("ml_status") or "DISABLED",
                    payload.get("ml_model_version") or "v2.0",
                    payload.get("last_fallback_reason"),
                    payload.get("last_fallback_at"),
                    payload.get("updated_at") or _iso(utcnow()),
                ),
            )

    def compare_and_set_ml_settings(
        self, tenant_id: str, expected_status: str, updates: Dict[str, Any], cur=None
    ) -> bool:
        """Apply `updates` only if the row still has `expected_status`."""
        allowed = {"ml_enabled", "ml_status", "last_fallback_reason", "last_fallback_at"}
        columns = [key for key in updates if key in allowed]
        values: List[Any] = []
        for key in columns:
            value = updates[key]
            if key == "ml_enabled":
                value = 1 if value else 0
            values.append(value)
        assignments = ", ".join(f"{key} = ?" for key in columns + ["updated_at"])
        values.append(_iso(utcnow()))
        with self._cursor(cur) as c:
            changed = self._exec(
                c,
                f"UPDATE tenant_ml_settings SET {assignments} WHERE tenant_id = ? AND ml_status = ?",
                tuple(values) + (tenant_id, expected_status),
            )
        return changed > 0

    # ==================== EXCEPTIONS ====================

    def create_exception(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "id": payload.get("id") or new_id(),
            "tenant_id": payload["tenant_id"],
            "exception_type": payload["exception_type"],
            "ref_id": payload["ref_id"],
            "status": payload.get("status") or "open",
            "created_at": payload.get("created_at") or _iso(utcnow()),
        }
        with self._cursor() as cur:
            self._exec(
                cur,
                """
                INSERT INTO exceptions_queue (id, tenant_id, exception_type, ref_id, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (row["id"], row["tenant_id"], row["exception_type"], row["ref_id"], row["status"], row["created_at"]),
            )
        return row

    def get_exception(self, exception_id: str, cur=None) -> Optional[Dict[str, Any]]:
        return self._fetchone("SELECT * FROM exceptions_queue WHERE id = ?", (exception_id,), cur=cur)

    def resolve_exception(self, exception_id: str, resolved_by: Optional[str], notes: str, cur=None) -> bool:
        """Flip an open exception to resolved; False if it was not open."""
        with self._cursor(cur) as c:
            changed = self._exec(
                c,
                """
                UPDATE exceptions_queue
                SET status = 'resolved', resolved_at = ?, resolved_by = ?, triage_notes = ?
                WHERE id = ? AND status = 'open'
                """,
                (_iso(utcnow()), resolved_by, notes, exception_id),
            )
        return changed > 0

    # ==================== BANK TRANSACTIONS & INVOICES ====================

    def create_bank_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "id": payload.get("id") or new_id(),
            "tenant_id": payload["tenant_id"],
            "amount": float(payload["amount"]),
            "currency": payload.get("currency"),
            "description": payload.get("description"),
            "reference": payload.get("reference"),
            "transaction_date": payload.get("transaction_date"),
            "created_at": _iso(utcnow()),
        }
        with self._cursor() as cur:
            self._exec(
                cur,
                """
                INSERT INTO bank_transactions
                    (id, tenant_id, amount, currency, description, reference, transaction_date, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                tuple(row.values()),
            )
        return row

    def create_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "id": payload.get("id") or new_id(),
            "tenant_id": payload["tenant_id"],
            "invoice_number": payload.get("invoice_number"),
            "customer_name": payload.get("customer_name"),
            "total_amount": float(payload["total_amount"]),
            "due_date": payload.get("due_date"),
            "issue_date": payload.get("issue_date"),
            "created_at": _iso(utcnow()),
        }
        with self._cursor() as cur:
            self._exec(
                cur,
                """
                INSERT INTO invoices
                    (id, tenant_id, invoice_number, customer_name, total_amount, due_date, issue_date, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                tuple(row.values()),
            )
        return row

    _BANK_WITH_MATCH_STATE = """
        SELECT bt.*, COALESCE(m.matched, 0) AS matched_amount
        FROM bank_transactions bt
        LEFT JOIN (
            SELECT bank_transaction_id, SUM(matched_amount) AS matched
            FROM reconciliation_links
            WHERE tenant_id = ?
            GROUP BY bank_transaction_id
        ) m ON m.bank_transaction_id = bt.id
        WHERE bt.tenant_id = ?
    """

    _INVOICE_WITH_SETTLED = """
        SELECT i.*, COALESCE(p.paid, 0) AS paid_amount_settled,
               i.total_amount - COALESCE(p.paid, 0) AS outstanding
        FROM invoices i
        LEFT JOIN (
            SELECT invoice_id, SUM(allocated_amount) AS paid
            FROM settlement_allocations
            WHERE tenant_id = ?
            GROUP BY invoice_id
        ) p ON p.invoice_id = i.id
        WHERE i.tenant_id = ?
    """

    def get_bank_transaction(self, tenant_id: str, bank_transaction_id: str) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            self._BANK_WITH_MATCH_STATE + " AND bt.id = ?",
            (tenant_id, tenant_id, bank_transaction_id),
        )

    def list_unmatched_bank_transactions(self, tenant_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self._fetchall(
            self._BANK_WITH_MATCH_STATE
            + " AND bt.amount > 0 AND COALESCE(m.matched, 0) < bt.amount"
            + " ORDER BY bt.transaction_date DESC, bt.id LIMIT ?",
            (tenant_id, tenant_id, limit),
        )

    def get_invoice(self, tenant_id: str, invoice_id: str) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            self._INVOICE_WITH_SETTLED + " AND i.id = ?",
            (tenant_id, tenant_id, invoice_id),
        )

    def list_open_invoices(self, tenant_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self._fetchall(
            self._INVOICE_WITH_SETTLED
            + " AND i.total_amount - COALESCE(p.paid, 0) > 0"
            + " ORDER BY i.due_date DESC, i.id LIMIT ?",
            (tenant_id, tenant_id, limit),
        )

    # ==================== SUGGESTIONS ====================

    def delete_suggestions_for_exception(self, exception_id: str, cur=None) -> int:
        with self._cursor(cur) as c:
            return self._exec(
                c, "DELETE FROM reconciliation_suggestions WHERE exception_id = ?", (exception_id,)
            )

    def insert_suggestion(self, suggestion: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO reconciliation_suggestions
                    (id, tenant_id, exception_id, bank_transaction_id, invoice_id, suggestion_type,
                     confidence, suggested_amount, currency, rationale, auto_confirm_eligible, rank, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    suggestion["id"],
                    suggestion["tenant_id"],
                    suggestion["exception_id"],
                    suggestion.get("bank_transaction_id"),
                    suggestion.get("invoice_id"),
                    suggestion["suggestion_type"],
                    int(suggestion["confidence"]),
                    float(suggestion["suggested_amount"]),
                    suggestion.get("currency"),
                    _dump(suggestion.get("rationale")),
                    1 if suggestion.get("auto_confirm_eligible") else 0,
                    int(suggestion.get("rank") or 0),
                    suggestion.get("created_at") or _iso(utcnow()),
                ),
            )

    def get_suggestion(self, suggestion_id: str, cur=None) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            "SELECT * FROM reconciliation_suggestions WHERE id = ?", (suggestion_id,), cur=cur
        )

    def list_suggestions_for_exception(self, exception_id: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM reconciliation_suggestions WHERE exception_id = ? "
            "ORDER BY confidence DESC, rank ASC",
            (exception_id,),
        )

    def list_suggestions_created_before(self, tenant_id: str, cutoff: datetime) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM reconciliation_suggestions WHERE tenant_id = ? AND created_at < ? "
            "ORDER BY created_at ASC",
            (tenant_id, _iso(cutoff)),
        )

    def delete_suggestion(self, suggestion_id: str, cur=None) -> bool:
        """Consume a suggestion; False if someone else already did."""
        with self._cursor(cur) as c:
            changed = self._exec(
                c, "DELETE FROM reconciliation_suggestions WHERE id = ?", (suggestion_id,)
            )
        return changed > 0

    # ==================== LINKS & ALLOCATIONS ====================

    def insert_reconciliation_link(self, link: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO reconciliation_links
                    (id, tenant_id, bank_transaction_id, invoice_id, match_type, matched_amount,
                     confidence, matched_by, match_source, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    link["id"],
                    link["tenant_id"],
                    link.get("bank_transaction_id"),
                    link.get("invoice_id"),
                    link["match_type"],
                    float(link["matched_amount"]),
                    link.get("confidence"),
                    link.get("matched_by"),
                    link.get("match_source"),
                    link.get("notes"),
                    link.get("created_at") or _iso(utcnow()),
                ),
            )

    def list_reconciliation_links(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM reconciliation_links WHERE tenant_id = ? ORDER BY created_at",
            (tenant_id,),
        )

    def list_links_without_allocation(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            """
            SELECT l.* FROM reconciliation_links l
            LEFT JOIN settlement_allocations a ON a.reconciliation_link_id = l.id
            WHERE l.tenant_id = ? AND l.invoice_id IS NOT NULL AND a.id IS NULL
            ORDER BY l.created_at
            """,
            (tenant_id,),
        )

    def insert_settlement_allocation(self, allocation: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO settlement_allocations
                    (id, tenant_id, reconciliation_link_id, invoice_id, allocated_amount, allocation_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    allocation.get("id") or new_id(),
                    allocation["tenant_id"],
                    allocation["reconciliation_link_id"],
                    allocation.get("invoice_id"),
                    float(allocation["allocated_amount"]),
                    allocation.get("allocation_type") or "principal",
                    _iso(utcnow()),
                ),
            )

    def list_settlement_allocations(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM settlement_allocations WHERE tenant_id = ? ORDER BY created_at",
            (tenant_id,),
        )

    # ==================== OUTCOMES & PREDICTIONS ====================

    def insert_outcome(self, outcome: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO reconciliation_suggestion_outcomes
                    (id, tenant_id, suggestion_id, exception_id, outcome, confidence_at_time,
                     final_result, rationale_snapshot, decided_by, decided_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    outcome["id"],
                    outcome["tenant_id"],
                    outcome["suggestion_id"],
                    outcome["exception_id"],
                    outcome["outcome"],
                    outcome.get("confidence_at_time"),
                    outcome["final_result"],
                    _dump(outcome.get("rationale_snapshot")),
                    outcome.get("decided_by"),
                    outcome["decided_at"],
                    outcome.get("created_at") or outcome["decided_at"],
                ),
            )

    def list_outcomes(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM reconciliation_suggestion_outcomes WHERE tenant_id = ?"
        params: List[Any] = [tenant_id]
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(_iso(since))
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._fetchall(sql, tuple(params))

    def insert_prediction_log(self, prediction: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO ml_prediction_logs
                    (id, tenant_id, suggestion_id, model_version, predicted_confidence, explanation, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    prediction["id"],
                    prediction["tenant_id"],
                    prediction["suggestion_id"],
                    prediction.get("model_version"),
                    int(prediction["predicted_confidence"]),
                    _dump(prediction.get("explanation")),
                    prediction.get("created_at") or _iso(utcnow()),
                ),
            )

    def delete_predictions_for_open_suggestions(self, exception_id: str, cur=None) -> int:
        """Drop the prediction logs of an exception's live suggestions.

        Live suggestions have no outcome yet, so these rows can never be
        scored; run before the suggestions themselves are deleted.
        """
        with self._cursor(cur) as c:
            return self._exec(
                c,
                """
                DELETE FROM ml_prediction_logs
                WHERE suggestion_id IN (
                    SELECT id FROM reconciliation_suggestions WHERE exception_id = ?
                )
                AND suggestion_id NOT IN (
                    SELECT suggestion_id FROM reconciliation_suggestion_outcomes WHERE exception_id = ?
                )
                """,
                (exception_id, exception_id),
            )

    def count_predictions(self, tenant_id: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM ml_prediction_logs WHERE tenant_id = ?", (tenant_id,)
        )
        return int(row["n"]) if row else 0

    def list_predictions(self, tenant_id: str, since: datetime) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM ml_prediction_logs WHERE tenant_id = ? AND created_at >= ? ORDER BY created_at",
            (tenant_id, _iso(since)),
        )

    # ==================== GUARDRAIL EVENTS ====================

    def insert_guardrail_event(self, event: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO reconciliation_guardrail_events (id, tenant_id, suggestion_id, action, reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.get("id") or new_id(),
                    event["tenant_id"],
                    event.get("suggestion_id"),
                    event["action"],
                    event.get("reason"),
                    event.get("created_at") or _iso(utcnow()),
                ),
            )

    def count_guardrail_events(self, tenant_id: str, since: datetime, action: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM reconciliation_guardrail_events WHERE tenant_id = ? AND created_at >= ?"
        params: List[Any] = [tenant_id, _iso(since)]
        if action:
            sql += " AND action = ?"
            params.append(action)
        row = self._fetchone(sql, tuple(params))
        return int(row["n"]) if row else 0

    # ==================== DRIFT SIGNALS ====================

    def insert_drift_signal(self, signal: Dict[str, Any], cur=None) -> None:
        with self._cursor(cur) as c:
            self._exec(
                c,
                """
                INSERT INTO ml_drift_signals
                    (id, tenant_id, model_version, drift_type, severity, metric, baseline_value,
                     current_value, delta, details, auto_action_taken, detected_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    signal["id"],
                    signal["tenant_id"],
                    signal.get("model_version"),
                    signal["drift_type"],
                    signal["severity"],
                    signal["metric"],
                    signal.get("baseline_value"),
                    signal.get("current_value"),
                    signal.get("delta"),
                    _dump(signal.get("details")),
                    signal.get("auto_action_taken"),
                    signal.get("detected_at") or _iso(utcnow()),
                ),
            )

    def list_drift_signals(
        self, tenant_id: str, since: Optional[datetime] = None, limit: int = 50
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM ml_drift_signals WHERE tenant_id = ?"
        params: List[Any] = [tenant_id]
        if since is not None:
            sql += " AND detected_at >= ?"
            params.append(_iso(since))
        sql += " ORDER BY detected_at DESC LIMIT ?"
        params.append(limit)
        return self._fetchall(sql, tuple(params))

    def acknowledge_drift_signal(self, tenant_id: str, signal_id: str, acknowledged_by: Optional[str]) -> bool:
        with self._cursor() as cur:
            changed = self._exec(
                cur,
                """
                UPDATE ml_drift_signals SET acknowledged_at = ?, acknowledged_by = ?
                WHERE id = ? AND tenant_id = ?
                """,
                (_iso(utcnow()), acknowledged_by, signal_id, tenant_id),
            )
        return changed > 0

    # ==================== CALIBRATION STATS ====================

    def list_calibration_stats(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            "SELECT * FROM confidence_calibration_stats WHERE tenant_id = ? ORDER BY confidence_bucket",
            (tenant_id,),
        )

    def upsert_calibration_stat(self, tenant_id: str, bucket: str, sample_size: int, success_rate: float) -> None:
        with self._cursor() as cur:
            self._exec(
                cur,
                """
                INSERT INTO confidence_calibration_stats (tenant_id, confidence_bucket, sample_size, success_rate, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, confidence_bucket) DO UPDATE SET
                    sample_size = excluded.sample_size,
                    success_rate = excluded.success_rate,
                    updated_at = excluded.updated_at
                """,
                (tenant_id, bucket, sample_size, success_rate, _iso(utcnow())),
            )


_DB_INSTANCE: Optional[ReconDB] = None


def get_db() -> ReconDB:
    global _DB_INSTANCE
    if _DB_INSTANCE is None:
        _DB_INSTANCE = ReconDB(db_path=os.getenv("RECONSAFE_DB_PATH", "reconsafe.db"))
    return _DB_INSTANCE
