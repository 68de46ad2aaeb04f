"""Tests for the refresh-token grant and its failure classification."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from penfield.auth.rotator import RetryPolicy, TokenRotator
from penfield.exceptions import DiscoveryError, RefreshError
from penfield.models import DiscoveryDocument
from tests.helpers import AUTH_URL, TOKEN_ENDPOINT, json_response

DOC = DiscoveryDocument(token_endpoint=TOKEN_ENDPOINT)


@pytest.fixture()
def mock_post():
    with patch("penfield.auth.rotator.discover", return_value=DOC), patch(
        "penfield.auth.rotator.httpx.post"
    ) as post:
        yield post


def _refresh() -> object:
    return TokenRotator().refresh(AUTH_URL, "rt-old", "client-1")


class TestRefreshSuccess:
    def test_rotated_refresh_token(self, mock_post) -> None:
        mock_post.return_value = json_response(
            {"access_token": "at-2", "refresh_token": "rt-2", "expires_in": 1800}
        )
        grant = _refresh()
        assert grant.access_token == "at-2"
        assert grant.refresh_token == "rt-2"
        assert grant.expires_in == 1800

    def test_no_rotation(self, mock_post) -> None:
        mock_post.return_value = json_response({"access_token": "at-2", "expires_in": 1800})
        assert _refresh().refresh_token is None

    def test_request_shape(self, mock_post) -> None:
        mock_post.return_value = json_response({"access_token": "at-2"})
        _refresh()
        assert mock_post.call_args[0][0] == TOKEN_ENDPOINT
        assert mock_post.call_args[1]["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "rt-old",
            "client_id": "client-1",
        }

    def test_default_lifetime(self, mock_post) -> None:
        mock_post.return_value = json_response({"access_token": "at-2"})
        assert _refresh().expires_in == 3600


class TestRefreshFailures:
    def test_invalid_grant_is_terminal(self, mock_post) -> None:
        mock_post.return_value = json_response(
            {"error": "invalid_grant", "error_description": "Refresh token revoked"},
            status_code=400,
        )
        with pytest.raises(RefreshError, match="Refresh token revoked") as exc_info:
            _refresh()
        assert exc_info.value.transient is False
        assert exc_info.value.error_code == "invalid_grant"

    def test_invalid_client_is_terminal(self, mock_post) -> None:
        mock_post.return_value = json_response({"error": "invalid_client"}, status_code=401)
        with pytest.raises(RefreshError) as exc_info:
            _refresh()
        assert exc_info.value.transient is False

    @pytest.mark.parametrize("code", ["server_error", "temporarily_unavailable"])
    def test_retryable_oauth_codes(self, mock_post, code: str) -> None:
        mock_post.return_value = json_response({"error": code}, status_code=400)
        with pytest.raises(RefreshError) as exc_info:
            _refresh()
        assert exc_info.value.transient is True

    def test_5xx_is_transient(self, mock_post) -> None:
        mock_post.return_value = httpx.Response(
            503, content=b"", request=httpx.Request("POST", TOKEN_ENDPOINT)
        )
        with pytest.raises(RefreshError, match="HTTP 503") as exc_info:
            _refresh()
        assert exc_info.value.transient is True

    def test_network_error_is_transient(self, mock_post) -> None:
        mock_post.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(RefreshError) as exc_info:
            _refresh()
        assert exc_info.value.transient is True
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_timeout_is_transient(self, mock_post) -> None:
        mock_post.side_effect = httpx.ReadTimeout("timed out")
        with pytest.raises(RefreshError) as exc_info:
            _refresh()
        assert exc_info.value.transient is True

    def test_response_without_access_token(self, mock_post) -> None:
        mock_post.return_value = json_response({"token_type": "Bearer"})
        with pytest.raises(RefreshError, match="access_token") as exc_info:
            _refresh()
        assert exc_info.value.transient is False


class TestDiscoveryFailures:
    def _raise_discovery(self, cause: Exception):
        def _discover(*args, **kwargs):
            raise DiscoveryError("OAuth discovery failed") from cause

        return _discover

    def test_transport_failure_is_transient(self) -> None:
        with patch(
            "penfield.auth.rotator.discover",
            side_effect=self._raise_discovery(httpx.ConnectError("dns")),
        ):
            with pytest.raises(RefreshError) as exc_info:
                _refresh()
        assert exc_info.value.transient is True

    def test_server_5xx_is_transient(self) -> None:
        response = httpx.Response(502, request=httpx.Request("GET", AUTH_URL))
        cause = httpx.HTTPStatusError("bad gateway", request=response.request, response=response)
        with patch("penfield.auth.rotator.discover", side_effect=self._raise_discovery(cause)):
            with pytest.raises(RefreshError) as exc_info:
                _refresh()
        assert exc_info.value.transient is True

    def test_malformed_document_is_terminal(self) -> None:
        with patch(
            "penfield.auth.rotator.discover",
            side_effect=DiscoveryError("OAuth discovery document missing 'token_endpoint'"),
        ):
            with pytest.raises(RefreshError) as exc_info:
                _refresh()
        assert exc_info.value.transient is False


class TestRetryPolicy:
    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.attempts == 3
        assert [policy.delay(1), policy.delay(2)] == [1.0, 2.0]

    def test_custom_base(self) -> None:
        assert RetryPolicy(base_delay=0.5).delay(3) == 2.0
