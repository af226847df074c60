"""SQLite storage for mirrored proposals."""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..errors import InvalidArgument, PersistenceError
from ..models import Category, Proposal, VoteStatus, VoteSummary

logger = logging.getLogger(__name__)

PROPOSALS_SCHEMA = """
-- One row per censorship token; `data` holds the remote record
CREATE TABLE IF NOT EXISTS proposals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT NOT NULL UNIQUE,
    category INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    vote_status TEXT NOT NULL,
    vote_summary TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_proposals_category ON proposals(category, timestamp);
CREATE INDEX IF NOT EXISTS idx_proposals_timestamp ON proposals(timestamp);
"""

# Fields stored in their own columns rather than inside `data`
_COLUMN_FIELDS = ("id", "category", "votestatus", "votesummary")


def _dumps(value: dict[str, Any]) -> str:
    # Stable encoding so an unchanged record is stored byte-for-byte the same
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


_FIELD_ENCODERS = {
    "vote_status": lambda v: _dumps(v.to_dict()),
    "vote_summary": lambda v: _dumps(v.to_dict()),
    "category": lambda v: int(v),
}


class ProposalStore:
    """SQLite-backed local mirror of proposals.

    Lookups by token, by numeric id, and by category with skip/limit and
    timestamp ordering. A single connection is shared between the sync
    engine (the only writer) and query callers, serialized by a lock.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the proposal store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(PROPOSALS_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"error opening proposals database: {e}") from e

        logger.info(f"ProposalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("ProposalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._ensure_connected()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"error querying proposals: {e}") from e

    @staticmethod
    def _row_to_proposal(row: sqlite3.Row) -> Proposal:
        data = json.loads(row["data"])
        data["id"] = row["id"]
        data["category"] = row["category"]
        data["votestatus"] = json.loads(row["vote_status"])
        data["votesummary"] = json.loads(row["vote_summary"])
        return Proposal.from_dict(data)

    # ==================== Writes ====================

    def save(self, proposal: Proposal) -> int:
        """Insert or update a proposal, keyed by its censorship token.

        The numeric id of an existing record is kept.

        Args:
            proposal: Proposal with a concrete category.

        Returns:
            The proposal's numeric id (also set on `proposal.id`).
        """
        if proposal.category is None or proposal.category is Category.ALL:
            raise InvalidArgument(
                f"proposal {proposal.token} needs a concrete category, got {proposal.category!r}"
            )

        data = {k: v for k, v in proposal.to_dict().items() if k not in _COLUMN_FIELDS}

        with self._lock:
            conn = self._ensure_connected()
            try:
                conn.execute(
                    """
                    INSERT INTO proposals (
                        token, category, timestamp, vote_status, vote_summary, data
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(token) DO UPDATE SET
                        category = excluded.category,
                        timestamp = excluded.timestamp,
                        vote_status = excluded.vote_status,
                        vote_summary = excluded.vote_summary,
                        data = excluded.data
                    """,
                    (
                        proposal.token,
                        int(proposal.category),
                        proposal.timestamp,
                        _dumps(proposal.vote_status.to_dict()),
                        _dumps(proposal.vote_summary.to_dict()),
                        _dumps(data),
                    ),
                )
                row = conn.execute(
                    "SELECT id FROM proposals WHERE token = ?", (proposal.token,)
                ).fetchone()
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"error saving proposal {proposal.token}: {e}") from e

        proposal.id = row["id"]
        logger.debug(f"Saved proposal {proposal.token} as id={proposal.id}")
        return proposal.id

    def update_field(self, token: str, name: str, value: Any) -> bool:
        """Update a single field of a stored proposal.

        Args:
            token: Censorship token of the proposal.
            name: One of "vote_status", "vote_summary", "category".
            value: New value in its in-memory form.

        Returns:
            True if a stored proposal was updated.
        """
        encode = _FIELD_ENCODERS.get(name)
        if encode is None:
            raise InvalidArgument(f"unknown proposal field: {name}")
        if name == "category" and Category(value) is Category.ALL:
            raise InvalidArgument("cannot store the ALL category")

        with self._lock:
            conn = self._ensure_connected()
            try:
                # name is whitelisted above
                cursor = conn.execute(
                    f"UPDATE proposals SET {name} = ? WHERE token = ?",
                    (encode(value), token),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"error updating {name} of {token}: {e}") from e

        return cursor.rowcount > 0

    # ==================== Reads ====================

    def get_by_token(self, token: str) -> Proposal | None:
        """Get a proposal by censorship token, or None."""
        rows = self._query("SELECT * FROM proposals WHERE token = ?", (token,))
        return self._row_to_proposal(rows[0]) if rows else None

    def get_by_id(self, proposal_id: int) -> Proposal | None:
        """Get a proposal by numeric id, or None."""
        rows = self._query("SELECT * FROM proposals WHERE id = ?", (proposal_id,))
        return self._row_to_proposal(rows[0]) if rows else None

    def find(
        self,
        category: Category = Category.ALL,
        offset: int = 0,
        limit: int = 0,
        newest_first: bool = True,
    ) -> list[Proposal]:
        """Find proposals in a category, ordered by timestamp.

        Args:
            category: Category to filter on; ALL matches every proposal.
            offset: Number of records to skip (ignored if <= 0).
            limit: Maximum records to return (unlimited if <= 0).
            newest_first: Order by timestamp descending instead of ascending.

        Returns:
            Matching proposals; empty if none.
        """
        category = Category.parse(category)
        direction = "DESC" if newest_first else "ASC"

        sql = "SELECT * FROM proposals"
        params: list[Any] = []
        if category is not Category.ALL:
            sql += " WHERE category = ?"
            params.append(int(category))
        sql += f" ORDER BY timestamp {direction}, id {direction}"

        # SQLite needs a LIMIT clause before OFFSET; -1 means no limit
        if limit > 0 or offset > 0:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit if limit > 0 else -1, max(offset, 0)])

        return [self._row_to_proposal(row) for row in self._query(sql, tuple(params))]

    def all(self) -> list[Proposal]:
        """Get every stored proposal in id order."""
        return [
            self._row_to_proposal(row)
            for row in self._query("SELECT * FROM proposals ORDER BY id ASC")
        ]

    def all_tokens(self) -> list[str]:
        """Get the censorship tokens of every stored proposal."""
        return [row["token"] for row in self._query("SELECT token FROM proposals ORDER BY id ASC")]

    def vote_statuses(self) -> dict[str, VoteStatus]:
        """Get the stored vote status of every proposal, keyed by token."""
        rows = self._query("SELECT token, vote_status FROM proposals")
        return {row["token"]: VoteStatus.from_dict(json.loads(row["vote_status"])) for row in rows}

    def count(self, category: Category = Category.ALL) -> int:
        """Count proposals in a category (ALL counts everything)."""
        category = Category.parse(category)
        if category is Category.ALL:
            rows = self._query("SELECT COUNT(*) FROM proposals")
        else:
            rows = self._query(
                "SELECT COUNT(*) FROM proposals WHERE category = ?", (int(category),)
            )
        return rows[0][0]

    def get_stats(self) -> dict[str, Any]:
        """Get proposal counts per category."""
        stats: dict[str, Any] = {"total": self.count(Category.ALL)}
        for category in Category.concrete():
            stats[category.name.lower()] = self.count(category)

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
