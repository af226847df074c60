"""SQLite persistence for the authenticated session.

Holds a single row (fixed key) with the anti-forgery token, cookies, the
logged-in user and the server policy so a restarted process can resume the
session without logging in again.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import InvalidArgument, PersistenceError
from ..models import ServerPolicy, User

logger = logging.getLogger(__name__)

SESSION_KEY = 1

SESSION_SCHEMA = """
CREATE TABLE IF NOT EXISTS session_state (
    id INTEGER PRIMARY KEY,
    csrf_token TEXT NOT NULL DEFAULT '',
    csrf_token_expires_at TEXT,
    cookies TEXT NOT NULL DEFAULT '[]',
    session_expires_at TEXT,
    user TEXT,
    policy TEXT,
    created_at TEXT NOT NULL
);
"""


@dataclass
class SessionRecord:
    """Persisted form of the session state."""

    csrf_token: str = ""
    csrf_token_expires_at: datetime | None = None
    cookies: list[dict[str, Any]] = field(default_factory=list)
    session_expires_at: datetime | None = None
    user: User | None = None
    policy: ServerPolicy | None = None
    created_at: datetime = field(default_factory=datetime.now)


def _encode_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _decode_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# Column encoders for update_field(); anything not listed cannot be updated.
_FIELD_ENCODERS = {
    "csrf_token": lambda v: v or "",
    "csrf_token_expires_at": _encode_datetime,
    "cookies": lambda v: json.dumps(v or [], sort_keys=True),
    "session_expires_at": _encode_datetime,
    "user": lambda v: json.dumps(v.to_dict(), sort_keys=True) if v else None,
    "policy": lambda v: json.dumps(v.to_dict(), sort_keys=True) if v else None,
}


class SessionStore:
    """Singleton-row SQLite store for `SessionRecord`."""

    def __init__(self, db_path: str | Path):
        """Initialize the session store.

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
            self._conn.executescript(SESSION_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"error opening session database: {e}") from e

        logger.info(f"SessionStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _ensure_row(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO session_state (id, created_at) VALUES (?, ?)",
            (SESSION_KEY, datetime.now().isoformat()),
        )

    def load(self) -> SessionRecord:
        """Load the stored session, or an empty record if none was saved."""
        with self._lock:
            conn = self._ensure_connected()
            try:
                row = conn.execute(
                    "SELECT * FROM session_state WHERE id = ?", (SESSION_KEY,)
                ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"error loading session: {e}") from e

        if row is None:
            return SessionRecord()

        return SessionRecord(
            csrf_token=row["csrf_token"] or "",
            csrf_token_expires_at=_decode_datetime(row["csrf_token_expires_at"]),
            cookies=json.loads(row["cookies"] or "[]"),
            session_expires_at=_decode_datetime(row["session_expires_at"]),
            user=User.from_dict(json.loads(row["user"])) if row["user"] else None,
            policy=ServerPolicy.from_dict(json.loads(row["policy"])) if row["policy"] else None,
            created_at=_decode_datetime(row["created_at"]) or datetime.now(),
        )

    def save(self, record: SessionRecord) -> None:
        """Upsert the whole session record."""
        values = {name: encode(getattr(record, name)) for name, encode in _FIELD_ENCODERS.items()}

        with self._lock:
            conn = self._ensure_connected()
            try:
                conn.execute(
                    """
                    INSERT INTO session_state (
                        id, csrf_token, csrf_token_expires_at, cookies,
                        session_expires_at, user, policy, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        csrf_token = excluded.csrf_token,
                        csrf_token_expires_at = excluded.csrf_token_expires_at,
                        cookies = excluded.cookies,
                        session_expires_at = excluded.session_expires_at,
                        user = excluded.user,
                        policy = excluded.policy
                    """,
                    (
                        SESSION_KEY,
                        values["csrf_token"],
                        values["csrf_token_expires_at"],
                        values["cookies"],
                        values["session_expires_at"],
                        values["user"],
                        values["policy"],
                        record.created_at.isoformat(),
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"error saving session: {e}") from e

    def update_field(self, name: str, value: Any) -> None:
        """Update a single session field without rewriting the record.

        Args:
            name: Field name of `SessionRecord` (except created_at).
            value: New value, in its in-memory form.
        """
        self.update_fields(**{name: value})

    def update_fields(self, **values: Any) -> None:
        """Update several session fields in one transaction.

        Either every field is written or none is.

        Args:
            **values: Field names of `SessionRecord` (except created_at)
                mapped to their new in-memory values.
        """
        unknown = [name for name in values if name not in _FIELD_ENCODERS]
        if unknown:
            raise InvalidArgument(f"unknown session field: {', '.join(unknown)}")
        if not values:
            return

        names = list(values)
        # names are whitelisted above
        assignments = ", ".join(f"{name} = ?" for name in names)
        params = [_FIELD_ENCODERS[name](values[name]) for name in names]

        with self._lock:
            conn = self._ensure_connected()
            try:
                self._ensure_row(conn)
                conn.execute(
                    f"UPDATE session_state SET {assignments} WHERE id = ?",
                    (*params, SESSION_KEY),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"error saving {', '.join(names)}: {e}") from e

        logger.debug(f"Session fields updated: {', '.join(names)}")
