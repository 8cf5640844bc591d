"""Usage log and credit ledger backed by SQLite."""

from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path

import structlog

from .errors import NotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    caller_id: str
    api_key_id: str
    provider: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    latency_ms: int
    success: bool
    error: str | None = None


class UsageStore:
    """Usage sink and credit provider for a single gateway process."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        c = sqlite3.connect(str(self.db_path))
        c.execute("PRAGMA journal_mode=WAL;")
        return c

    def _init_db(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_log (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts REAL NOT NULL,
                  caller_id TEXT NOT NULL,
                  api_key_id TEXT NOT NULL,
                  provider TEXT NOT NULL,
                  model TEXT NOT NULL,
                  prompt_tokens INTEGER NOT NULL,
                  completion_tokens INTEGER NOT NULL,
                  total_tokens INTEGER NOT NULL,
                  cost REAL NOT NULL,
                  latency_ms INTEGER NOT NULL,
                  success INTEGER NOT NULL,
                  error TEXT
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS credits (
                  caller_id TEXT PRIMARY KEY,
                  balance REAL NOT NULL
                )
                """
            )

    def ensure_account(self, caller_id: str, initial_credits: float) -> None:
        with self._lock, self._conn() as c:
            c.execute(
                "INSERT OR IGNORE INTO credits(caller_id, balance) VALUES(?, ?)",
                (caller_id, initial_credits),
            )

    def record(self, rec: UsageRecord) -> None:
        with self._lock, self._conn() as c:
            c.execute(
                "INSERT INTO usage_log(ts, caller_id, api_key_id, provider, model, prompt_tokens, "
                "completion_tokens, total_tokens, cost, latency_ms, success, error) "
                "VALUES(?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    time.time(),
                    rec.caller_id,
                    rec.api_key_id,
                    rec.provider,
                    rec.model,
                    rec.prompt_tokens,
                    rec.completion_tokens,
                    rec.total_tokens,
                    rec.cost,
                    rec.latency_ms,
                    int(rec.success),
                    rec.error,
                ),
            )
        logger.info("api_usage", **asdict(rec))

    def balance(self, caller_id: str) -> float:
        with self._conn() as c:
            row = c.execute(
                "SELECT balance FROM credits WHERE caller_id=?", (caller_id,)
            ).fetchone()
        if not row:
            raise NotFoundError("Caller not found", details={"caller_id": caller_id})
        return float(row[0])

    def debit(self, caller_id: str, amount: float) -> float:
        with self._lock, self._conn() as c:
            cur = c.execute(
                "UPDATE credits SET balance = balance - ? WHERE caller_id=?",
                (amount, caller_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Caller not found", details={"caller_id": caller_id})
            row = c.execute(
                "SELECT balance FROM credits WHERE caller_id=?", (caller_id,)
            ).fetchone()
        return float(row[0])

    def records(self, caller_id: str, limit: int = 100) -> list[UsageRecord]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT caller_id, api_key_id, provider, model, prompt_tokens, completion_tokens, "
                "total_tokens, cost, latency_ms, success, error FROM usage_log "
                "WHERE caller_id=? ORDER BY id DESC LIMIT ?",
                (caller_id, limit),
            ).fetchall()
        return [
            UsageRecord(
                caller_id=r[0],
                api_key_id=r[1],
                provider=r[2],
                model=r[3],
                prompt_tokens=int(r[4]),
                completion_tokens=int(r[5]),
                total_tokens=int(r[6]),
                cost=float(r[7]),
                latency_ms=int(r[8]),
                success=bool(r[9]),
                error=r[10],
            )
            for r in rows
        ]

    def summary(self, caller_id: str, days: int = 30) -> dict[str, int | float]:
        since = time.time() - days * 86400
        with self._conn() as c:
            row = c.execute(
                "SELECT COUNT(*), COALESCE(SUM(total_tokens), 0), COALESCE(SUM(cost), 0), "
                "COALESCE(AVG(latency_ms), 0), COALESCE(SUM(success), 0) "
                "FROM usage_log WHERE caller_id=? AND ts >= ?",
                (caller_id, since),
            ).fetchone()
        total = int(row[0])
        return {
            "days": days,
            "total_requests": total,
            "total_tokens": int(row[1]),
            "total_cost": float(row[2]),
            "average_latency_ms": float(row[3]),
            "success_rate": (int(row[4]) / total) if total else 0.0,
        }
