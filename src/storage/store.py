"""
SQLite Store

Durable state for tasks, evaluation records, experiments and flow traces.

Evaluation records are append-only: rows are inserted, never updated.
Experiments store their running aggregates embedded as JSON.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class SQLiteStore:
    """
    Router persistence on sqlite3.

    One connection shared across threads, serialized by a lock.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database, or ":memory:"
        """
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    agent_id TEXT,
                    tenant_id TEXT,
                    experiment_id TEXT,
                    data JSON NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS evaluations (
                    eval_id TEXT PRIMARY KEY,
                    agent_id TEXT,
                    task_id TEXT,
                    template TEXT NOT NULL,
                    aggregate_score REAL NOT NULL,
                    passed INTEGER NOT NULL,
                    data JSON NOT NULL,
                    created_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_evaluations_agent_time
                ON evaluations(agent_id, created_at)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS experiments (
                    experiment_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    data JSON NOT NULL,
                    created_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS experiment_assignments (
                    experiment_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    variant TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    assigned_at REAL NOT NULL,
                    PRIMARY KEY (experiment_id, task_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS flow_traces (
                    task_id TEXT PRIMARY KEY,
                    adherence_score REAL NOT NULL,
                    data JSON NOT NULL
                )
            """)

            self.conn.commit()

    # Tasks

    def save_task(self, task: Dict[str, Any]) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO tasks
                (task_id, state, agent_id, tenant_id, experiment_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task["task_id"],
                    task["state"],
                    task.get("agent_id"),
                    task.get("tenant_id"),
                    task.get("experiment_id"),
                    json.dumps(task, default=str),
                    task["created_at"],
                    task["updated_at"],
                ),
            )
            self.conn.commit()

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute("SELECT data FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        return json.loads(row["data"]) if row else None

    # Evaluations

    def append_evaluation(self, record: Dict[str, Any]) -> None:
        """
        Insert an evaluation record.

        Raises:
            sqlite3.IntegrityError: A record with this eval_id already exists
        """
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO evaluations
                (eval_id, agent_id, task_id, template, aggregate_score, passed, data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["eval_id"],
                    record.get("agent_id"),
                    record.get("task_id"),
                    record["template"],
                    record["aggregate_score"],
                    1 if record["passed"] else 0,
                    json.dumps(record),
                    record["created_at"],
                ),
            )
            self.conn.commit()

    def get_evaluation(self, eval_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM evaluations WHERE eval_id = ?", (eval_id,)
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def list_evaluations(
        self,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Evaluation records, newest first"""
        query = "SELECT data FROM evaluations WHERE 1=1"
        params: List[Any] = []

        if agent_id is not None:
            query += " AND agent_id = ?"
            params.append(agent_id)
        if task_id is not None:
            query += " AND task_id = ?"
            params.append(task_id)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [json.loads(row["data"]) for row in rows]

    # Experiments

    def save_experiment(self, experiment: Dict[str, Any]) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO experiments (experiment_id, status, data, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    experiment["experiment_id"],
                    experiment["status"],
                    json.dumps(experiment),
                    experiment["created_at"],
                ),
            )
            self.conn.commit()

    def load_experiments(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT data FROM experiments ORDER BY created_at"
            ).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def save_assignment(self, assignment: Dict[str, Any]) -> bool:
        """Record an assignment; returns False if the task already had one"""
        with self._lock:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO experiment_assignments
                (experiment_id, task_id, variant, agent_id, assigned_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    assignment["experiment_id"],
                    assignment["task_id"],
                    assignment["variant"],
                    assignment["agent_id"],
                    assignment["assigned_at"],
                ),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def count_assignments(self, experiment_id: str) -> Dict[str, int]:
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT variant, COUNT(*) AS n FROM experiment_assignments
                WHERE experiment_id = ? GROUP BY variant
                """,
                (experiment_id,),
            ).fetchall()
        return {row["variant"]: row["n"] for row in rows}

    # Flow traces

    def save_flow_trace(self, trace: Dict[str, Any]) -> None:
        """Store a flow trace; the first trace for a task wins"""
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO flow_traces (task_id, adherence_score, data) VALUES (?, ?, ?)",
                (trace["task_id"], trace["adherence_score"], json.dumps(trace)),
            )
            self.conn.commit()

    def get_flow_trace(self, task_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM flow_traces WHERE task_id = ?", (task_id,)
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def close(self):
        """Close database connection"""
        with self._lock:
            self.conn.close()
        logger.debug(f"Closed store {self.db_path}")
