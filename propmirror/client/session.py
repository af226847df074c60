"""Authenticated session state owned by the transport client."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

from ..models import ServerPolicy, User
from ..store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)


class Session:
    """Anti-forgery token, cookies, server policy and logged-in user.

    All mutation goes through the `set_*` methods, which persist the change
    before updating memory. A lock makes each update atomic with respect to
    the readers.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        record: SessionRecord | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the session.

        Args:
            store: Persistence for the session; None keeps it in memory only.
            record: Initial state, e.g. loaded from the store.
            clock: Source of the current time.
        """
        self._store = store
        self._record = record or SessionRecord()
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def load(
        cls, store: SessionStore, clock: Callable[[], datetime] = datetime.now
    ) -> "Session":
        """Restore the session persisted in `store`."""
        record = store.load()
        if record.csrf_token:
            logger.debug(f"Restored session (csrf expires {record.csrf_token_expires_at})")
        return cls(store=store, record=record, clock=clock)

    @property
    def csrf_token(self) -> str:
        return self._record.csrf_token

    @property
    def csrf_token_expires_at(self) -> datetime | None:
        return self._record.csrf_token_expires_at

    @property
    def cookies(self) -> list[dict[str, Any]]:
        return list(self._record.cookies)

    @property
    def policy(self) -> ServerPolicy | None:
        return self._record.policy

    @property
    def user(self) -> User | None:
        return self._record.user

    @property
    def session_expires_at(self) -> datetime | None:
        return self._record.session_expires_at

    def has_valid_csrf_token(self) -> bool:
        """True if a token is held and has not expired."""
        with self._lock:
            token = self._record.csrf_token
            expires_at = self._record.csrf_token_expires_at
        if not token:
            return False
        return expires_at is None or self._clock() < expires_at

    def is_logged_in(self) -> bool:
        with self._lock:
            user = self._record.user
            expires_at = self._record.session_expires_at
        return user is not None and expires_at is not None and self._clock() < expires_at

    def set_csrf_token(self, token: str, ttl_seconds: float) -> None:
        """Store a refreshed anti-forgery token valid for `ttl_seconds`."""
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        with self._lock:
            if self._store:
                self._store.update_fields(csrf_token=token, csrf_token_expires_at=expires_at)
            self._record.csrf_token = token
            self._record.csrf_token_expires_at = expires_at
        logger.debug(f"CSRF token refreshed, expires {expires_at.isoformat()}")

    def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        with self._lock:
            if self._store:
                self._store.update_field("cookies", cookies)
            self._record.cookies = list(cookies)

    def set_session(self, cookies: list[dict[str, Any]], user: User) -> None:
        """Store a logged-in session; it expires after the user's session max age."""
        expires_at = self._clock() + timedelta(seconds=user.sessionmaxage)
        with self._lock:
            record = SessionRecord(
                csrf_token=self._record.csrf_token,
                csrf_token_expires_at=self._record.csrf_token_expires_at,
                cookies=list(cookies),
                session_expires_at=expires_at,
                user=user,
                policy=self._record.policy,
                created_at=self._record.created_at,
            )
            if self._store:
                self._store.save(record)
            self._record = record
        logger.info(f"Logged in as {user.username or user.userid}, session expires {expires_at.isoformat()}")

    def set_policy(self, policy: ServerPolicy) -> ServerPolicy:
        """Store the server policy if none is held yet.

        The policy is immutable once set; the held policy is returned.
        """
        with self._lock:
            if self._record.policy is not None:
                return self._record.policy
            if self._store:
                self._store.update_field("policy", policy)
            self._record.policy = policy
            return policy
