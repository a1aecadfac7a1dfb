import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List

from scene_regen.core.models import AttemptResult, QualityIssue, RegenerationAttempt


class AttemptStore(ABC):
    """Storage behind the attempt ledger. Rows are only ever inserted or purged per scene."""

    @abstractmethod
    def insert(self, attempt: RegenerationAttempt):
        pass

    @abstractmethod
    def query(self, scene_id: str, limit: int) -> List[RegenerationAttempt]:
        """Most recent first."""
        pass

    @abstractmethod
    def delete(self, scene_id: str) -> int:
        pass


class InMemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._rows: Dict[str, List[RegenerationAttempt]] = {}
        self._lock = threading.Lock()

    def insert(self, attempt: RegenerationAttempt):
        with self._lock:
            self._rows.setdefault(attempt.scene_id, []).append(attempt)

    def query(self, scene_id: str, limit: int) -> List[RegenerationAttempt]:
        with self._lock:
            rows = list(self._rows.get(scene_id, []))
        # Insertion order breaks timestamp ties
        ordered = [a for _, a in sorted(enumerate(rows), key=lambda p: (p[1].timestamp, p[0]), reverse=True)]
        return ordered[:max(limit, 0)]

    def delete(self, scene_id: str) -> int:
        with self._lock:
            return len(self._rows.pop(scene_id, []))


class SQLiteAttemptStore(AttemptStore):
    def __init__(self, db_path: str = "regeneration_history.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_conn(self):
        if not hasattr(self._local, "conn"):
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        # WAL lets readers run while the single writer per scene appends
        conn.execute("PRAGMA journal_mode=WAL;")
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS regeneration_attempts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scene_id TEXT NOT NULL,
                project_id TEXT,
                attempt_number INTEGER NOT NULL,
                provider TEXT NOT NULL,
                strategy TEXT NOT NULL,
                prompt TEXT NOT NULL,
                result TEXT NOT NULL,
                quality_score REAL,
                issues JSON,
                reasoning TEXT,
                confidence_score REAL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_attempts_scene ON regeneration_attempts (scene_id, created_at)"
        )
        conn.commit()
        conn.close()

    def insert(self, attempt: RegenerationAttempt):
        conn = self._get_conn()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT INTO regeneration_attempts (
                scene_id, project_id, attempt_number, provider, strategy, prompt, result,
                quality_score, issues, reasoning, confidence_score, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attempt.scene_id,
                attempt.project_id,
                attempt.attempt_number,
                attempt.provider,
                attempt.strategy,
                attempt.prompt,
                attempt.result.value,
                attempt.quality_score,
                json.dumps([i.to_dict() for i in attempt.issues]),
                attempt.reasoning,
                attempt.confidence_score,
                attempt.timestamp.isoformat(),
            ),
        )
        conn.commit()

    def query(self, scene_id: str, limit: int) -> List[RegenerationAttempt]:
        if limit <= 0:
            return []
        conn = self._get_conn()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM regeneration_attempts WHERE scene_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (scene_id, limit),
        )
        return [self._row_to_attempt(row) for row in cursor.fetchall()]

    def delete(self, scene_id: str) -> int:
        conn = self._get_conn()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM regeneration_attempts WHERE scene_id = ?", (scene_id,))
        conn.commit()
        return cursor.rowcount

    def close(self):
        if hasattr(self._local, "conn"):
            self._local.conn.close()
            del self._local.conn

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> RegenerationAttempt:
        issues = ()
        if row["issues"]:
            issues = tuple(QualityIssue.from_dict(i) for i in json.loads(row["issues"]))
        return RegenerationAttempt(
            scene_id=row["scene_id"],
            project_id=row["project_id"],
            attempt_number=row["attempt_number"],
            timestamp=datetime.fromisoformat(row["created_at"]),
            provider=row["provider"],
            strategy=row["strategy"],
            prompt=row["prompt"],
            result=AttemptResult(row["result"]),
            quality_score=row["quality_score"],
            issues=issues,
            reasoning=row["reasoning"],
            confidence_score=row["confidence_score"],
        )
