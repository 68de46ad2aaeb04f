"""Tests for the token service: accessor, retries, single-flight, lifecycle."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from penfield.auth.credential_store import CredentialStore
from penfield.auth.rotator import TokenRotator
from penfield.auth.service import TokenService
from penfield.exceptions import NotAuthenticatedError, RefreshError
from penfield.models import Settings, TokenGrant
from tests.helpers import HOUR_MS, FakeClock, make_credential


def _transient() -> RefreshError:
    return RefreshError("Token refresh failed: connection refused", transient=True)


def _invalid_grant() -> RefreshError:
    return RefreshError("Token refresh failed: invalid_grant", error_code="invalid_grant")


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock) -> CredentialStore:
    return CredentialStore(tmp_path / "credentials" / "credentials.json", clock=clock)


@pytest.fixture()
def rotator() -> MagicMock:
    mock = MagicMock(spec=TokenRotator)
    mock.refresh.return_value = TokenGrant(
        access_token="at-2", refresh_token="rt-2", expires_in=24 * 3600
    )
    return mock


@pytest.fixture()
def service(store: CredentialStore, rotator: MagicMock, clock: FakeClock) -> TokenService:
    return TokenService(
        Settings(auth_url="https://auth.example.com"),
        store,
        rotator,
        clock=clock,
        sleep=clock.sleep,
    )


# -------------------------------------------------------------------------
# Refresh with retry
# -------------------------------------------------------------------------


class TestRefreshRetry:
    def test_three_network_failures(self, service, store, rotator, clock) -> None:
        store.save(make_credential())
        rotator.refresh.side_effect = [_transient(), _transient(), _transient()]

        with pytest.raises(RefreshError) as exc_info:
            service.refresh()

        assert exc_info.value.transient is True
        assert rotator.refresh.call_count == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_invalid_grant_fails_immediately(self, service, store, rotator, clock) -> None:
        store.save(make_credential())
        rotator.refresh.side_effect = _invalid_grant()

        with pytest.raises(RefreshError):
            service.refresh()

        assert rotator.refresh.call_count == 1
        assert clock.sleeps == []

    def test_recovers_after_transient_failure(self, service, store, rotator, clock) -> None:
        store.save(make_credential())
        rotator.refresh.side_effect = [
            _transient(),
            TokenGrant(access_token="at-2", refresh_token="rt-2", expires_in=3600),
        ]

        credential = service.refresh()

        assert credential.access_token == "at-2"
        assert rotator.refresh.call_count == 2
        assert clock.sleeps == [1.0]

    def test_rotator_called_with_stored_values(self, service, store, rotator) -> None:
        store.save(make_credential(refresh_token="rt-x", client_id="client-x"))
        service.refresh()
        rotator.refresh.assert_called_once_with("https://auth.example.com", "rt-x", "client-x")

    def test_without_refresh_token(self, service, store, rotator) -> None:
        store.save(make_credential(refresh_token=None))
        with pytest.raises(RefreshError, match="No refresh token"):
            service.refresh()
        rotator.refresh.assert_not_called()

    def test_without_credential(self, service) -> None:
        with pytest.raises(NotAuthenticatedError, match="penfield login"):
            service.refresh()


class TestRotation:
    def test_new_refresh_token_replaces_old(self, service, store, clock) -> None:
        store.save(make_credential(refresh_token="rt-1"))
        credential = service.refresh()

        assert credential.refresh_token == "rt-2"
        assert credential.expires_at == int(clock.now * 1000) + 24 * HOUR_MS
        assert store.load().refresh_token == "rt-2"
        assert service.credential.refresh_token == "rt-2"

    def test_missing_refresh_token_keeps_old(self, service, store, rotator) -> None:
        store.save(make_credential(refresh_token="rt-1"))
        rotator.refresh.return_value = TokenGrant(access_token="at-2", expires_in=3600)

        credential = service.refresh()

        assert credential.access_token == "at-2"
        assert credential.refresh_token == "rt-1"
        assert store.load().refresh_token == "rt-1"

    def test_spent_refresh_token_is_not_sent_again(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=HOUR_MS, refresh_token="rt-1"))
        stale = store.load()

        assert service.get_access_token() == "at-2"
        credential = service.refresh(stale)

        assert [c.args[1] for c in rotator.refresh.call_args_list] == ["rt-1"]
        assert credential.refresh_token == "rt-2"
        assert store.load().refresh_token == "rt-2"

    def test_save_failure_keeps_rotated_token_in_memory(
        self, service, store, rotator, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.save(make_credential(expires_in_ms=HOUR_MS, refresh_token="rt-1"))

        with patch.object(store, "save", side_effect=OSError("disk full")), caplog.at_level(
            "WARNING", logger="penfield.auth.service"
        ):
            assert service.get_access_token() == "at-2"

        assert service.credential.refresh_token == "rt-2"
        assert "could not be saved" in caplog.text
        assert "disk full" in caplog.text
        # A later call uses the cached token instead of the spent one on disk
        assert service.get_access_token() == "at-2"
        rotator.refresh.assert_called_once()


# -------------------------------------------------------------------------
# Accessor
# -------------------------------------------------------------------------


class TestGetAccessToken:
    def test_not_authenticated(self, service) -> None:
        with pytest.raises(NotAuthenticatedError, match="Run: penfield login"):
            service.get_access_token()

    def test_valid_token_is_cached(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=24 * HOUR_MS))
        assert service.get_access_token() == "at-1"
        assert service.get_access_token() == "at-1"
        rotator.refresh.assert_not_called()

    def test_due_token_is_refreshed(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=2 * HOUR_MS))
        assert service.get_access_token() == "at-2"
        rotator.refresh.assert_called_once()
        assert store.load().access_token == "at-2"

    def test_adopts_fresher_stored_credential(self, service, store, rotator) -> None:
        service.adopt(make_credential(expires_in_ms=HOUR_MS))
        store.save(make_credential(access_token="at-login", expires_in_ms=24 * HOUR_MS))

        assert service.get_access_token() == "at-login"
        rotator.refresh.assert_not_called()

    def test_expired_without_refresh_token(self, service, store) -> None:
        store.save(make_credential(expires_in_ms=-HOUR_MS, refresh_token=None))
        with pytest.raises(NotAuthenticatedError, match="expired"):
            service.get_access_token()

    def test_due_but_unexpired_without_refresh_token(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=HOUR_MS, refresh_token=None))
        assert service.get_access_token() == "at-1"
        rotator.refresh.assert_not_called()

    def test_failed_refresh_falls_back_to_unexpired_token(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=HOUR_MS))
        rotator.refresh.side_effect = _invalid_grant()
        assert service.get_access_token() == "at-1"

    def test_failed_refresh_of_expired_token(self, service, store, rotator) -> None:
        store.save(make_credential(expires_in_ms=-HOUR_MS))
        rotator.refresh.side_effect = _invalid_grant()
        with pytest.raises(NotAuthenticatedError, match="penfield login") as exc_info:
            service.get_access_token()
        assert isinstance(exc_info.value.__cause__, RefreshError)


class TestIsAuthenticated:
    def test_no_credential(self, service) -> None:
        assert service.is_authenticated() is False

    def test_valid(self, service, store) -> None:
        store.save(make_credential(expires_in_ms=24 * HOUR_MS))
        assert service.is_authenticated() is True

    def test_inside_buffer(self, service, store) -> None:
        store.save(make_credential(expires_in_ms=HOUR_MS))
        assert service.is_authenticated() is False


# -------------------------------------------------------------------------
# Single-flight
# -------------------------------------------------------------------------


class TestConcurrentRefresh:
    def test_concurrent_callers_share_one_refresh(self, tmp_path: Path) -> None:
        store = CredentialStore(tmp_path / "credentials.json")
        store.save(make_credential(expires_at=int(time.time() * 1000) + HOUR_MS))

        started = threading.Event()
        release = threading.Event()

        def _slow_refresh(*args: object) -> TokenGrant:
            started.set()
            release.wait(5)
            return TokenGrant(access_token="at-2", refresh_token="rt-2", expires_in=3600)

        rotator = MagicMock(spec=TokenRotator)
        rotator.refresh.side_effect = _slow_refresh
        service = TokenService(Settings(), store, rotator)

        results: list[str] = []

        def _call() -> None:
            results.append(service.refresh().access_token)

        leader = threading.Thread(target=_call)
        leader.start()
        assert started.wait(5)

        followers = [threading.Thread(target=_call) for _ in range(3)]
        for t in followers:
            t.start()
        time.sleep(0.2)
        release.set()

        for t in [leader, *followers]:
            t.join(5)

        assert results == ["at-2"] * 4
        assert rotator.refresh.call_count == 1


# -------------------------------------------------------------------------
# Lifecycle
# -------------------------------------------------------------------------


class TestLifecycle:
    def test_start_and_stop(self, service, store) -> None:
        store.save(make_credential())
        service.start()
        try:
            assert service.running is True
            assert service.credential is not None
            service.start()  # idempotent
            assert service.running is True
        finally:
            service.stop()
        assert service.running is False
        service.stop()  # idempotent

    def test_start_unauthenticated(self, service) -> None:
        service.start()
        try:
            assert service.running is True
            assert service.credential is None
        finally:
            service.stop()
