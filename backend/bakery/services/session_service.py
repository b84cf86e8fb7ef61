# Overview: Session store implementations keyed by opaque bearer tokens.

"""
Session storage.

A SessionStore maps an opaque token to an AuthSession. Tokens are never
kept in process globals by the auth manager; callers pass them explicitly.

- InMemorySessionStore: dict guarded by a lock (single process, tests)
- SqlSessionStore: session_tokens table, token stored as SHA-256 hash

Expiry is not enforced here; the auth session manager compares expires_at
with its clock on every access and deletes expired sessions.
"""

from __future__ import annotations

import hashlib
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime

from ..models import SessionToken
from ..time_utils import to_utc_z


@dataclass(frozen=True)
class AuthSession:
    employee_id: int
    token: str
    issued_at: datetime
    expires_at: datetime
    remember_me: bool = False
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "issued_at": to_utc_z(self.issued_at),
            "expires_at": to_utc_z(self.expires_at),
            "remember_me": self.remember_me,
        }


def generate_token() -> str:
    """64-character hex token (32 bytes from the OS CSPRNG)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used as the storage key for SQL sessions."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionStore:
    """
    Interface: get / put / delete by token.

    transactional stores take part in the caller's database transaction;
    the others are written only after it commits.
    """

    transactional = False

    def get(self, token: str) -> AuthSession | None:
        raise NotImplementedError

    def put(self, token: str, session: AuthSession) -> None:
        raise NotImplementedError

    def delete(self, token: str) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: dict[str, AuthSession] = {}
        self._lock = threading.Lock()

    def get(self, token: str) -> AuthSession | None:
        with self._lock:
            return self._sessions.get(token)

    def put(self, token: str, session: AuthSession) -> None:
        with self._lock:
            self._sessions[token] = session

    def delete(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class SqlSessionStore(SessionStore):
    """
    Sessions persisted in session_tokens.

    Writes only flush; the auth session manager calls them inside a
    gateway transaction.
    """

    transactional = True

    def __init__(self, gateway):
        self.gateway = gateway

    def _row(self, token: str) -> SessionToken | None:
        return (
            self.gateway.query(SessionToken)
            .filter(SessionToken.token_hash == hash_token(token))
            .first()
        )

    def get(self, token: str) -> AuthSession | None:
        row = self._row(token)
        if row is None:
            return None
        return AuthSession(
            employee_id=row.employee_id,
            token=token,
            issued_at=row.issued_at,
            expires_at=row.expires_at,
            remember_me=row.remember_me,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
        )

    def put(self, token: str, session: AuthSession) -> None:
        row = self._row(token)
        if row is None:
            row = SessionToken(token_hash=hash_token(token))
            self.gateway.session.add(row)
        row.employee_id = session.employee_id
        row.issued_at = session.issued_at
        row.expires_at = session.expires_at
        row.remember_me = session.remember_me
        row.ip_address = session.ip_address
        row.user_agent = (session.user_agent or "")[:512] or None
        self.gateway.session.flush()

    def delete(self, token: str) -> None:
        self.gateway.query(SessionToken).filter(
            SessionToken.token_hash == hash_token(token)
        ).delete(synchronize_session=False)
        self.gateway.session.flush()
