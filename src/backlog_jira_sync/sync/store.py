"""Durable sync state: mappings, baseline snapshots, sync metadata, audit log.

State lives in a single SQLite database (``.backlog-jira/jira-sync.db`` by
default) with four tables:

* ``mappings``   -- ``local_id`` primary key, ``remote_key`` unique (1:1).
* ``snapshots``  -- composite key ``(local_id, side)``; last-write-wins.
* ``sync_state`` -- ``local_id`` primary key.
* ``ops_log``    -- append-only, auto-increment id.

Key design choices:

* **One connection, one lock** -- the connection is shared across worker
  threads (``check_same_thread=False``) and every statement runs under an
  ``RLock`` so concurrent entity syncs never interleave inside a write.
* **Paired baselines** -- ``set_snapshots()`` writes the local and remote
  snapshot of one entity in a single transaction; either both land or
  neither does.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from ..errors import DuplicateMappingError, LocalStoreError, NotFoundError
from .models import (
    CanonicalPayload,
    Mapping,
    OpLogEntry,
    Side,
    Snapshot,
    SyncStateRecord,
)
from .normalizer import hash_payload

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mappings (
    local_id TEXT PRIMARY KEY,
    remote_key TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS snapshots (
    local_id TEXT NOT NULL,
    side TEXT NOT NULL CHECK (side IN ('local', 'remote')),
    hash TEXT NOT NULL,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (local_id, side)
);

CREATE TABLE IF NOT EXISTS sync_state (
    local_id TEXT PRIMARY KEY,
    last_sync_at TEXT,
    conflict_state TEXT,
    strategy TEXT
);

CREATE TABLE IF NOT EXISTS ops_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ts TEXT NOT NULL,
    op TEXT NOT NULL,
    local_id TEXT,
    remote_key TEXT,
    outcome TEXT NOT NULL,
    details TEXT
);
"""

# Marks a sync_state column that should be left untouched by an update.
_UNSET = object()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncStore:
    """SQLite-backed store for mappings, snapshots, sync state and op log.

    Args:
        db_path: Database file path, or ``":memory:"`` for an in-process
            database.  Parent directories are created on demand.
    """

    def __init__(self, db_path: Path | str = MEMORY) -> None:
        if str(db_path) != MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self._db_path, check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise LocalStoreError(
                f"Cannot open sync database {self._db_path}: {exc}"
            ) from exc
        logger.debug("SyncStore initialized at %s", self._db_path)

    @classmethod
    def in_state_dir(
        cls, state_dir: Path | str, db_name: str = "jira-sync.db"
    ) -> SyncStore:
        """Open the store at ``<state_dir>/<db_name>``."""
        return cls(Path(state_dir) / db_name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SyncStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def add_mapping(self, local_id: str, remote_key: str) -> Mapping:
        """Link *local_id* to *remote_key*.

        Re-adding an identical mapping only refreshes ``updated_at``.

        Raises:
            DuplicateMappingError: If either side is already mapped to a
                different partner.
        """
        with self._lock:
            existing = self.get_mapping(local_id)
            if existing is not None and existing.remote_key != remote_key:
                raise DuplicateMappingError(
                    f"Task {local_id} is already mapped to "
                    f"{existing.remote_key}"
                )
            other = self.get_mapping_by_remote_key(remote_key)
            if other is not None and other.local_id != local_id:
                raise DuplicateMappingError(
                    f"Issue {remote_key} is already mapped to "
                    f"{other.local_id}"
                )
            now = _now()
            with self._conn:
                self._conn.execute(
                    """INSERT INTO mappings
                       (local_id, remote_key, created_at, updated_at)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(local_id) DO UPDATE SET
                           updated_at = excluded.updated_at""",
                    (local_id, remote_key, now, now),
                )
            logger.debug("Added mapping %s -> %s", local_id, remote_key)
            return self.require_mapping(local_id)

    def get_mapping(self, local_id: str) -> Mapping | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM mappings WHERE local_id = ?", (local_id,)
            ).fetchone()
        return _row_to_mapping(row) if row else None

    def require_mapping(self, local_id: str) -> Mapping:
        """Return the mapping for *local_id*.

        Raises:
            NotFoundError: If *local_id* is not mapped.
        """
        mapping = self.get_mapping(local_id)
        if mapping is None:
            raise NotFoundError("mapping", local_id)
        return mapping

    def get_mapping_by_remote_key(self, remote_key: str) -> Mapping | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM mappings WHERE remote_key = ?", (remote_key,)
            ).fetchone()
        return _row_to_mapping(row) if row else None

    def all_mappings(self) -> list[Mapping]:
        """Return every mapping ordered by local id."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM mappings ORDER BY local_id"
            ).fetchall()
        return [_row_to_mapping(row) for row in rows]

    def delete_mapping(self, local_id: str) -> None:
        """Remove the mapping, both snapshots and the sync state row.

        Raises:
            NotFoundError: If *local_id* is not mapped.
        """
        with self._lock:
            self.require_mapping(local_id)
            with self._conn:
                for table in ("mappings", "snapshots", "sync_state"):
                    self._conn.execute(
                        f"DELETE FROM {table} WHERE local_id = ?",
                        (local_id,),
                    )
        logger.debug("Deleted mapping for %s", local_id)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_snapshot(self, local_id: str, side: Side) -> Snapshot | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM snapshots WHERE local_id = ? AND side = ?",
                (local_id, Side(side).value),
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    def get_snapshots(
        self, local_id: str
    ) -> tuple[Snapshot | None, Snapshot | None]:
        """Return ``(local_snapshot, remote_snapshot)`` for *local_id*."""
        with self._lock:
            return (
                self.get_snapshot(local_id, Side.LOCAL),
                self.get_snapshot(local_id, Side.REMOTE),
            )

    def set_snapshot(
        self, local_id: str, side: Side, payload: CanonicalPayload
    ) -> Snapshot:
        """Overwrite the baseline of one side (last write wins)."""
        with self._lock, self._conn:
            snapshot = self._write_snapshot(local_id, Side(side), payload)
        logger.debug(
            "Set %s snapshot for %s (%s)",
            snapshot.side.value,
            local_id,
            snapshot.hash[:12],
        )
        return snapshot

    def set_snapshots(
        self,
        local_id: str,
        local_payload: CanonicalPayload,
        remote_payload: CanonicalPayload,
    ) -> tuple[Snapshot, Snapshot]:
        """Write both baselines of *local_id* in one transaction.

        Raises:
            LocalStoreError: If the transaction fails; neither snapshot is
                changed in that case.
        """
        try:
            with self._lock, self._conn:
                local = self._write_snapshot(
                    local_id, Side.LOCAL, local_payload
                )
                remote = self._write_snapshot(
                    local_id, Side.REMOTE, remote_payload
                )
        except sqlite3.Error as exc:
            raise LocalStoreError(
                f"Failed to write baselines for {local_id}: {exc}"
            ) from exc
        logger.debug(
            "Set baselines for %s (local=%s remote=%s)",
            local_id,
            local.hash[:12],
            remote.hash[:12],
        )
        return local, remote

    def _write_snapshot(
        self, local_id: str, side: Side, payload: CanonicalPayload
    ) -> Snapshot:
        snapshot = Snapshot(
            entity_id=local_id,
            side=side,
            hash=hash_payload(payload),
            payload=payload,
            updated_at=_now(),
        )
        self._conn.execute(
            """INSERT OR REPLACE INTO snapshots
               (local_id, side, hash, payload, updated_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                local_id,
                side.value,
                snapshot.hash,
                payload.model_dump_json(),
                snapshot.updated_at,
            ),
        )
        return snapshot

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    def update_sync_state(
        self,
        local_id: str,
        *,
        last_sync_at: str | None | object = _UNSET,
        conflict_state: str | None | object = _UNSET,
        strategy: str | None | object = _UNSET,
    ) -> None:
        """Upsert the sync state row; omitted fields keep their value."""
        updates = {
            name: value
            for name, value in (
                ("last_sync_at", last_sync_at),
                ("conflict_state", conflict_state),
                ("strategy", strategy),
            )
            if value is not _UNSET
        }
        if not updates:
            return
        columns = ", ".join(updates)
        placeholders = ", ".join("?" for _ in updates)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in updates)
        with self._lock, self._conn:
            self._conn.execute(
                f"""INSERT INTO sync_state (local_id, {columns})
                    VALUES (?, {placeholders})
                    ON CONFLICT(local_id) DO UPDATE SET {assignments}""",
                (local_id, *updates.values()),
            )

    def get_sync_state(self, local_id: str) -> SyncStateRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sync_state WHERE local_id = ?", (local_id,)
            ).fetchone()
        if row is None:
            return None
        return SyncStateRecord(
            local_id=row["local_id"],
            last_sync_at=row["last_sync_at"],
            conflict_state=row["conflict_state"],
            strategy=row["strategy"],
        )

    # ------------------------------------------------------------------
    # Operations log
    # ------------------------------------------------------------------

    def log_operation(
        self,
        operation: str,
        outcome: str,
        *,
        local_id: str | None = None,
        remote_key: str | None = None,
        details: str | dict | None = None,
    ) -> int:
        """Append an audit entry and return its id.

        Dict *details* are stored as JSON.
        """
        if isinstance(details, dict):
            details = json.dumps(details, sort_keys=True)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """INSERT INTO ops_log
                   (ts, op, local_id, remote_key, outcome, details)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (_now(), operation, local_id, remote_key, outcome, details),
            )
        return int(cursor.lastrowid or 0)

    def recent_ops(self, limit: int = 20) -> list[OpLogEntry]:
        """Return the newest *limit* audit entries, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM ops_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            OpLogEntry(
                id=row["id"],
                timestamp=row["ts"],
                operation=row["op"],
                local_id=row["local_id"],
                remote_key=row["remote_key"],
                outcome=row["outcome"],
                details=row["details"],
            )
            for row in rows
        ]


def _row_to_mapping(row: sqlite3.Row) -> Mapping:
    return Mapping(
        local_id=row["local_id"],
        remote_key=row["remote_key"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        entity_id=row["local_id"],
        side=Side(row["side"]),
        hash=row["hash"],
        payload=CanonicalPayload.model_validate_json(row["payload"]),
        updated_at=row["updated_at"],
    )
