"""Bearer-token identity for reservation owners."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AccessKeyNotConfiguredError(AuthenticationError):
    """Raised when API_ACCESS_KEY is missing."""


class InvalidCredentialsError(AuthenticationError):
    """Raised when an access key or bearer token is invalid."""


@dataclass(frozen=True)
class _Session:
    token: str
    user_id: str
    expires_at: float


class AuthService:
    """Exchanges the shared access key for per-user session tokens.

    Sessions live in memory, expire after ``session_ttl_seconds`` and are
    capped at ``max_sessions``; the oldest session is evicted first.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._monotonic = monotonic
        self._sessions: dict[str, _Session] = {}
        self._lock = Lock()

    def _expected_key(self) -> str:
        if not self._settings.access_key:
            raise AccessKeyNotConfiguredError(
                "API_ACCESS_KEY is not configured. Set API_ACCESS_KEY in environment variables."
            )
        return self._settings.access_key

    def _prune(self, now: float) -> None:
        # Insertion order is issue order, and every session shares one ttl.
        while self._sessions:
            oldest_token = next(iter(self._sessions))
            if self._sessions[oldest_token].expires_at > now:
                break
            del self._sessions[oldest_token]

    def login(self, user_id: str, provided_access_key: str) -> str:
        expected = self._expected_key()
        if not user_id.strip():
            raise InvalidCredentialsError("user_id must be non-empty")
        if not secrets.compare_digest(provided_access_key, expected):
            raise InvalidCredentialsError("Invalid access key")
        token = secrets.token_urlsafe(32)
        now = self._monotonic()
        with self._lock:
            self._prune(now)
            while len(self._sessions) >= max(self._settings.max_sessions, 1):
                del self._sessions[next(iter(self._sessions))]
            self._sessions[token] = _Session(
                token=token,
                user_id=user_id.strip(),
                expires_at=now + self._settings.session_ttl_seconds,
            )
        return token

    def resolve_user(self, bearer_token: str) -> str:
        now = self._monotonic()
        with self._lock:
            self._prune(now)
            session = self._sessions.get(bearer_token)
        if session is None or not secrets.compare_digest(session.token, bearer_token):
            raise InvalidCredentialsError("Invalid bearer token")
        return session.user_id

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)

    def active_sessions(self) -> int:
        with self._lock:
            self._prune(self._monotonic())
            return len(self._sessions)
