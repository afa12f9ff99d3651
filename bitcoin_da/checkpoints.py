"""Recovery checkpoints for half-finished inscriptions.

Once the commit transaction is broadcast its output is locked to the reveal
script, so the raw reveal transaction is saved, keyed by the commit txid,
before the reveal itself is broadcast. An operator can rebroadcast it by
hand if the process dies in between. Entries are never rewritten.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class CheckpointError(RuntimeError):
    """Raised when a checkpoint conflicts with an existing entry."""


class RevealCheckpointStore:
    """Interface for append-only ``commit_txid -> raw reveal tx`` storage."""

    def save(self, commit_txid: str, raw_reveal_tx: bytes) -> None:
        raise NotImplementedError

    def load(self, commit_txid: str) -> Optional[bytes]:
        raise NotImplementedError

    def commit_txids(self) -> List[str]:
        raise NotImplementedError


class FileRevealCheckpointStore(RevealCheckpointStore):
    """One ``reveal_<commit_txid>.tx`` file of raw bytes per entry."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, commit_txid: str) -> Path:
        if not commit_txid or any(c not in "0123456789abcdef" for c in commit_txid.lower()):
            raise ValueError(f"Invalid commit txid: {commit_txid!r}")
        return self.directory / f"reveal_{commit_txid.lower()}.tx"

    def save(self, commit_txid: str, raw_reveal_tx: bytes) -> None:
        path = self._path(commit_txid)
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("xb") as handle:
                handle.write(raw_reveal_tx)
        except FileExistsError:
            if path.read_bytes() != raw_reveal_tx:
                raise CheckpointError(
                    f"A different reveal transaction is already stored for commit {commit_txid}"
                ) from None
            return
        logger.info("Saved reveal checkpoint %s", path)

    def load(self, commit_txid: str) -> Optional[bytes]:
        path = self._path(commit_txid)
        if not path.exists():
            return None
        return path.read_bytes()

    def commit_txids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(
            path.stem[len("reveal_") :] for path in self.directory.glob("reveal_*.tx")
        )


class SQLiteRevealCheckpointStore(RevealCheckpointStore):
    """Persist reveal checkpoints to a local SQLite database."""

    DEFAULT_DB_PATH = Path.home() / ".bitcoin-da" / "checkpoints.sqlite"

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS reveal_checkpoints (
                commit_txid TEXT PRIMARY KEY,
                raw_reveal_tx BLOB NOT NULL,
                created_at INTEGER DEFAULT (strftime('%s', 'now'))
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SQLiteRevealCheckpointStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - convenience
        self.close()

    def save(self, commit_txid: str, raw_reveal_tx: bytes) -> None:
        existing = self.load(commit_txid)
        if existing is not None:
            if existing != raw_reveal_tx:
                raise CheckpointError(
                    f"A different reveal transaction is already stored for commit {commit_txid}"
                )
            return
        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT INTO reveal_checkpoints (commit_txid, raw_reveal_tx) VALUES (?, ?)",
            (commit_txid.lower(), sqlite3.Binary(raw_reveal_tx)),
        )
        self.conn.commit()
        logger.info("Saved reveal checkpoint for commit %s", commit_txid)

    def load(self, commit_txid: str) -> Optional[bytes]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT raw_reveal_tx FROM reveal_checkpoints WHERE commit_txid = ?",
            (commit_txid.lower(),),
        )
        row = cursor.fetchone()
        return bytes(row["raw_reveal_tx"]) if row else None

    def commit_txids(self) -> List[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT commit_txid FROM reveal_checkpoints ORDER BY created_at, commit_txid")
        return [row["commit_txid"] for row in cursor.fetchall()]


__all__ = [
    "CheckpointError",
    "FileRevealCheckpointStore",
    "RevealCheckpointStore",
    "SQLiteRevealCheckpointStore",
]
