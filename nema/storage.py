"""Append-only SQLite log of neuron-state snapshots and the prompts behind them."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from .errors import NotFoundError, StorageError
from .schemas import NeuroState

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class NeuroStateStore:
    """Small SQLite wrapper that appends snapshots and prompt/response pairs.

    Rows are never updated or deleted. Each write is committed on its own.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        try:
            self.connection = sqlite3.connect(db_path, check_same_thread=False)
            self.connection.row_factory = sqlite3.Row
            self.connection.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database '{db_path}': {exc}") from exc
        self._lock = threading.Lock()
        self.init_schema()

    def init_schema(self) -> None:
        with self._lock:
            try:
                cur = self.connection.cursor()
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS neural_states (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        state_count INTEGER NOT NULL,
                        updated_at TEXT NOT NULL,
                        motor_neurons TEXT NOT NULL,
                        sensory_neurons TEXT NOT NULL
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_neural_states_updated_at
                    ON neural_states(updated_at)
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS prompts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        neural_state_id INTEGER NOT NULL,
                        question TEXT NOT NULL,
                        response TEXT NOT NULL,
                        completed_at TEXT NOT NULL,
                        FOREIGN KEY(neural_state_id) REFERENCES neural_states(id)
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_prompts_neural_state_id
                    ON prompts(neural_state_id)
                    """
                )
                self.connection.commit()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to create schema: {exc}") from exc

    @staticmethod
    def _serialize_neurons(neurons: Mapping[str, int], group: str) -> str:
        try:
            return json.dumps(dict(neurons), ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Failed to serialise {group} neurons: {exc}") from exc

    @staticmethod
    def _deserialize_neurons(text: str, group: str) -> Dict[str, int]:
        try:
            data: Any = json.loads(text)
        except (TypeError, json.JSONDecodeError) as exc:
            raise StorageError(f"Malformed {group} neurons JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Stored {group} neurons must be a JSON object")
        for name, value in data.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise StorageError(f"Stored {group} neuron '{name}' is not an integer")
        return data

    def save_state(self, state: NeuroState) -> int:
        """Append a snapshot of ``state`` and return its identifier."""

        motor = self._serialize_neurons(state.motor_neurons, "motor")
        sensory = self._serialize_neurons(state.sensory_neurons, "sensory")
        with self._lock:
            try:
                cur = self.connection.execute(
                    """
                    INSERT INTO neural_states(
                        state_count, updated_at, motor_neurons, sensory_neurons
                    ) VALUES (?, ?, ?, ?)
                    """,
                    (state.state_count, _timestamp(state.updated_at), motor, sensory),
                )
                self.connection.commit()
            except sqlite3.Error as exc:
                self.connection.rollback()
                raise StorageError(f"Failed to save state: {exc}") from exc
        snapshot_id = int(cur.lastrowid)
        logger.debug("Saved neural state %s (state_count=%s)", snapshot_id, state.state_count)
        return snapshot_id

    def save_prompt(self, snapshot_id: int, question: str, response: str) -> int:
        """Log the prompt/response pair that produced snapshot ``snapshot_id``."""

        completed_at = _timestamp(datetime.now(timezone.utc))
        with self._lock:
            try:
                cur = self.connection.execute(
                    """
                    INSERT INTO prompts(
                        neural_state_id, question, response, completed_at
                    ) VALUES (?, ?, ?, ?)
                    """,
                    (snapshot_id, question, response, completed_at),
                )
                self.connection.commit()
            except sqlite3.Error as exc:
                self.connection.rollback()
                raise StorageError(f"Failed to save prompt: {exc}") from exc
        return int(cur.lastrowid)

    def get_latest_state(self) -> NeuroState:
        with self._lock:
            try:
                cur = self.connection.execute(
                    """
                    SELECT state_count, updated_at, motor_neurons, sensory_neurons
                    FROM neural_states
                    ORDER BY updated_at DESC, id DESC
                    LIMIT 1
                    """
                )
                row = cur.fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to get state: {exc}") from exc
        if row is None:
            raise NotFoundError("No neural state stored yet")

        try:
            updated_at = datetime.fromisoformat(row["updated_at"])
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Malformed updated_at value: {row['updated_at']!r}") from exc
        return NeuroState(
            state_count=int(row["state_count"]),
            updated_at=updated_at,
            motor_neurons=self._deserialize_neurons(row["motor_neurons"], "motor"),
            sensory_neurons=self._deserialize_neurons(row["sensory_neurons"], "sensory"),
        )

    def close(self) -> None:
        with self._lock:
            self.connection.close()


__all__ = ["NeuroStateStore"]
