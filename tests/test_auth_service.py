from __future__ import annotations

from dataclasses import replace

import pytest

from backend.services.auth_service import (
    AccessKeyNotConfiguredError,
    AuthService,
    InvalidCredentialsError,
)


class Ticker:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def _service(settings, ticker: Ticker, **overrides) -> AuthService:
    return AuthService(settings=replace(settings, **overrides), monotonic=ticker)


def test_login_issues_a_token_that_resolves_to_the_user(settings) -> None:
    service = _service(settings, Ticker())
    token = service.login(" alice ", "test-access-key")

    assert service.resolve_user(token) == "alice"


def test_wrong_key_and_unknown_token_are_rejected(settings) -> None:
    service = _service(settings, Ticker())
    with pytest.raises(InvalidCredentialsError):
        service.login("alice", "wrong-key")
    with pytest.raises(InvalidCredentialsError):
        service.resolve_user("not-a-token")


def test_missing_access_key_is_reported(settings) -> None:
    service = _service(settings, Ticker(), access_key=None)
    with pytest.raises(AccessKeyNotConfiguredError):
        service.login("alice", "anything")


def test_session_expires_after_its_ttl(settings) -> None:
    ticker = Ticker()
    service = _service(settings, ticker, session_ttl_seconds=60.0)
    token = service.login("alice", "test-access-key")

    ticker.value = 59.0
    assert service.resolve_user(token) == "alice"

    ticker.value = 60.0
    with pytest.raises(InvalidCredentialsError):
        service.resolve_user(token)
    assert service.active_sessions() == 0


def test_repeated_logins_are_capped_and_evict_the_oldest(settings) -> None:
    service = _service(settings, Ticker(), max_sessions=3)
    tokens = [service.login(f"user{index}", "test-access-key") for index in range(5)]

    assert service.active_sessions() == 3
    with pytest.raises(InvalidCredentialsError):
        service.resolve_user(tokens[0])
    with pytest.raises(InvalidCredentialsError):
        service.resolve_user(tokens[1])
    assert service.resolve_user(tokens[4]) == "user4"


def test_logout_revokes_the_token(settings) -> None:
    service = _service(settings, Ticker())
    token = service.login("alice", "test-access-key")
    service.logout(token)

    with pytest.raises(InvalidCredentialsError):
        service.resolve_user(token)
