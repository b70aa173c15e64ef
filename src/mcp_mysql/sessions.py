from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from collections.abc import Callable, Iterable

from mcp_mysql.errors import AuthenticationFailure
from mcp_mysql.models import Session, User

logger = logging.getLogger(__name__)

_TOKEN_BYTES = 24

# Compared against when the username is unknown so both failure paths do the same work.
_DUMMY_PASSWORD = secrets.token_urlsafe(16)


class SessionStore:
    """Maps opaque session tokens to users from a fixed registry.

    All operations run inside one lock so concurrent authenticate, resolve and
    revoke calls are linearizable.
    """

    def __init__(
        self,
        users: Iterable[User],
        *,
        session_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._users: dict[str, User] = {user.username: user for user in users}
        self._sessions: dict[str, Session] = {}
        self._session_ttl = session_ttl
        self._clock = clock
        self._lock = threading.Lock()

    def authenticate(self, username: str, password: str) -> str:
        """Return a new session token, or raise ``AuthenticationFailure``."""
        user = self._users.get(username)
        expected = user.password.get_secret_value() if user else _DUMMY_PASSWORD
        matched = hmac.compare_digest(password.encode(), expected.encode())
        if user is None or not matched:
            logger.info("Authentication failed")
            raise AuthenticationFailure(operation="authenticate")

        with self._lock:
            token = secrets.token_urlsafe(_TOKEN_BYTES)
            while token in self._sessions:
                token = secrets.token_urlsafe(_TOKEN_BYTES)
            self._sessions[token] = Session(
                token=token, username=user.username, created_at=self._clock()
            )
        logger.info("Session opened for %s (%s)", user.username, user.role.value)
        return token

    def resolve(self, token: str) -> User | None:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if self._is_expired(session):
                del self._sessions[token]
                logger.info("Session for %s expired", session.username)
                return None
            return self._users.get(session.username)

    def revoke(self, token: str) -> None:
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is not None:
            logger.info("Session closed for %s", session.username)

    def active_sessions(self) -> int:
        with self._lock:
            return sum(1 for s in self._sessions.values() if not self._is_expired(s))

    def _is_expired(self, session: Session) -> bool:
        if self._session_ttl is None:
            return False
        return self._clock() - session.created_at > self._session_ttl
