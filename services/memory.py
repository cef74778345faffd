# services/memory.py
"""SQLite persistence for evaluations, bidder history and market benchmarks."""

import sqlite3
import json
from datetime import datetime
from typing import Dict, List, Optional
from pathlib import Path
from dataclasses import dataclass

from config import MEMORY_DB_PATH
from models import HistoricalRecord


@dataclass
class EvaluationRecord:
    """Stored evaluation row."""
    id: str
    timestamp: str
    project_id: str
    bid_count: int
    recommended_bid_id: str
    recommended_bidder_id: str
    confidence: float
    input_hash: str
    result_data: Dict


class MemoryStore:
    """SQLite-backed store; also serves as the bidder-history and benchmark source."""

    def __init__(self, db_path: str = MEMORY_DB_PATH):
        self.db_path = Path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS evaluations (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    bid_count INTEGER NOT NULL,
                    recommended_bid_id TEXT NOT NULL,
                    recommended_bidder_id TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    input_hash TEXT NOT NULL,
                    result_data TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bidder_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bidder_id TEXT NOT NULL,
                    tender_id TEXT,
                    bid_date TEXT,
                    won INTEGER NOT NULL,
                    rank INTEGER,
                    total_price REAL,
                    winner_id TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS market_benchmarks (
                    category TEXT PRIMARY KEY,
                    benchmark_price REAL NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_eval_timestamp ON evaluations(timestamp)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_eval_hash ON evaluations(input_hash)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_bidder ON bidder_history(bidder_id)")

            conn.commit()

    # ==================== EVALUATIONS ====================

    def save_evaluation(self, result: Dict, input_hash: str) -> str:
        """Save an evaluation's JSON form; the same id overwrites the earlier row."""
        recommendation = result.get("recommendation") or {}

        with self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO evaluations
                (id, timestamp, project_id, bid_count, recommended_bid_id,
                 recommended_bidder_id, confidence, input_hash, result_data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                result["id"],
                result.get("generated") or datetime.now().isoformat(),
                result.get("projectId", ""),
                result.get("bidCount", 0),
                recommendation.get("bidId", ""),
                recommendation.get("bidderId", ""),
                recommendation.get("confidence", 0),
                input_hash,
                json.dumps(result)
            ))
            conn.commit()

        return result["id"]

    def get_evaluation(self, eval_id: str) -> Optional[EvaluationRecord]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT id, timestamp, project_id, bid_count, recommended_bid_id,
                       recommended_bidder_id, confidence, input_hash, result_data
                FROM evaluations WHERE id = ?
            """, (eval_id,)).fetchone()

        if not row:
            return None

        return EvaluationRecord(
            id=row[0],
            timestamp=row[1],
            project_id=row[2],
            bid_count=row[3],
            recommended_bid_id=row[4],
            recommended_bidder_id=row[5],
            confidence=row[6],
            input_hash=row[7],
            result_data=json.loads(row[8])
        )

    def find_similar_evaluation(self, input_hash: str) -> Optional[Dict]:
        """Find the latest evaluation of an identical input snapshot."""
        with self._connect() as conn:
            row = conn.execute("""
                SELECT id, timestamp, result_data
                FROM evaluations
                WHERE input_hash = ?
                ORDER BY timestamp DESC
                LIMIT 1
            """, (input_hash,)).fetchone()

        if row:
            return {"id": row[0], "timestamp": row[1], "result": json.loads(row[2])}
        return None

    def get_recent_evaluations(self, limit: int = 10) -> List[Dict]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT id, timestamp, project_id, bid_count, recommended_bid_id, confidence
                FROM evaluations
                ORDER BY timestamp DESC
                LIMIT ?
            """, (limit,)).fetchall()

        return [
            {
                "id": row[0],
                "timestamp": row[1],
                "project_id": row[2],
                "bid_count": row[3],
                "recommended_bid_id": row[4],
                "confidence": row[5]
            }
            for row in rows
        ]

    def get_evaluation_stats(self) -> Dict:
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("SELECT COUNT(*) FROM evaluations")
            total = cursor.fetchone()[0]

            cursor.execute("""
                SELECT recommended_bidder_id, COUNT(*) as awards
                FROM evaluations
                GROUP BY recommended_bidder_id
                ORDER BY awards DESC
                LIMIT 10
            """)
            award_dist = {row[0]: row[1] for row in cursor.fetchall()}

            cursor.execute("SELECT AVG(confidence) FROM evaluations")
            avg_confidence = cursor.fetchone()[0] or 0

        return {
            "total_evaluations": total,
            "award_distribution": award_dist,
            "average_confidence": round(avg_confidence, 3)
        }

    # ==================== BIDDER HISTORY ====================

    def add_bidder_record(self, record: HistoricalRecord):
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO bidder_history
                (bidder_id, tender_id, bid_date, won, rank, total_price, winner_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.bidder_id,
                record.tender_id,
                record.bid_date,
                1 if record.won else 0,
                record.rank,
                record.total_price,
                record.winner_id
            ))
            conn.commit()

    def get_bidder_history(self, bidder_id: str, limit: int = 20) -> List[HistoricalRecord]:
        """Most recent records for a bidder, returned oldest first."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT bidder_id, won, rank, total_price, tender_id, winner_id, bid_date
                FROM bidder_history
                WHERE bidder_id = ?
                ORDER BY bid_date DESC, id DESC
                LIMIT ?
            """, (bidder_id, limit)).fetchall()

        return [
            HistoricalRecord(
                bidder_id=row[0],
                won=bool(row[1]),
                rank=row[2],
                total_price=row[3],
                tender_id=row[4],
                winner_id=row[5],
                bid_date=row[6]
            )
            for row in reversed(rows)
        ]

    def get_tender_records(self, tender_ids: List[str]) -> List[HistoricalRecord]:
        """Every bidder's records for the given tenders, oldest first."""
        if not tender_ids:
            return []

        placeholders = ", ".join("?" for _ in tender_ids)
        with self._connect() as conn:
            rows = conn.execute(f"""
                SELECT bidder_id, won, rank, total_price, tender_id, winner_id, bid_date
                FROM bidder_history
                WHERE tender_id IN ({placeholders})
                ORDER BY bid_date ASC, id ASC
            """, list(tender_ids)).fetchall()

        return [
            HistoricalRecord(
                bidder_id=row[0],
                won=bool(row[1]),
                rank=row[2],
                total_price=row[3],
                tender_id=row[4],
                winner_id=row[5],
                bid_date=row[6]
            )
            for row in rows
        ]

    # ==================== MARKET BENCHMARKS ====================

    def set_benchmark(self, category: str, benchmark_price: float, active: bool = True):
        with self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO market_benchmarks
                (category, benchmark_price, active, updated_at)
                VALUES (?, ?, ?, ?)
            """, (category, benchmark_price, 1 if active else 0, datetime.now().isoformat()))
            conn.commit()

    def get_market_benchmarks(self) -> Dict[str, float]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT category, benchmark_price
                FROM market_benchmarks
                WHERE active = 1
                ORDER BY category
            """).fetchall()
        return {row[0]: row[1] for row in rows}


# Singleton instance
_memory_store: Optional[MemoryStore] = None


def get_memory_store(db_path: str = MEMORY_DB_PATH) -> MemoryStore:
    """Get or create memory store singleton."""
    global _memory_store
    if _memory_store is None:
        _memory_store = MemoryStore(db_path)
    return _memory_store
