"""Tests for client id resolution and dynamic client registration."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from penfield.auth.oauth import DEVICE_CODE_GRANT
from penfield.auth.registration import register_client, registration_request, resolve_client_id
from penfield.exceptions import DiscoveryError, RegistrationError
from penfield.models import DiscoveryDocument
from tests.helpers import AUTH_URL, REGISTRATION_ENDPOINT, json_response


def _doc(registration_endpoint: str | None = REGISTRATION_ENDPOINT) -> DiscoveryDocument:
    return DiscoveryDocument(
        token_endpoint=f"{AUTH_URL}/oauth/token",
        registration_endpoint=registration_endpoint,
    )


def _reg_response(data, status_code: int = 201) -> httpx.Response:
    return json_response(data, status_code, url=REGISTRATION_ENDPOINT)


class TestRegistrationRequest:
    def test_declares_public_device_client(self) -> None:
        body = registration_request()
        assert body["token_endpoint_auth_method"] == "none"
        assert body["grant_types"] == [DEVICE_CODE_GRANT, "refresh_token"]
        assert body["scope"] == "read write offline_access"
        assert body["client_name"]
        assert body["redirect_uris"]
        assert body["response_types"] == ["code"]


class TestRegisterClient:
    def test_success(self) -> None:
        with patch(
            "penfield.auth.registration.httpx.post",
            return_value=_reg_response({"client_id": "dyn-1", "client_name": "penfield-cli"}),
        ) as mock_post:
            registration = register_client(REGISTRATION_ENDPOINT)

        assert registration.client_id == "dyn-1"
        assert mock_post.call_args[1]["json"] == registration_request()

    def test_rejected_uses_error_description(self) -> None:
        with patch(
            "penfield.auth.registration.httpx.post",
            return_value=_reg_response(
                {"error": "invalid_client_metadata", "error_description": "bad redirect"},
                status_code=400,
            ),
        ):
            with pytest.raises(RegistrationError, match="bad redirect"):
                register_client(REGISTRATION_ENDPOINT)

    def test_rejected_without_body(self) -> None:
        response = httpx.Response(
            500, content=b"", request=httpx.Request("POST", REGISTRATION_ENDPOINT)
        )
        with patch("penfield.auth.registration.httpx.post", return_value=response):
            with pytest.raises(RegistrationError, match="HTTP 500"):
                register_client(REGISTRATION_ENDPOINT)

    def test_missing_client_id(self) -> None:
        with patch(
            "penfield.auth.registration.httpx.post",
            return_value=_reg_response({"client_name": "x"}),
        ):
            with pytest.raises(RegistrationError, match="client_id"):
                register_client(REGISTRATION_ENDPOINT)

    def test_transport_error(self) -> None:
        with patch(
            "penfield.auth.registration.httpx.post",
            side_effect=httpx.ConnectError("refused"),
        ):
            with pytest.raises(RegistrationError):
                register_client(REGISTRATION_ENDPOINT)


class TestResolveClientId:
    def test_provided_id_skips_network(self) -> None:
        mock_discover = MagicMock()
        mock_post = MagicMock()
        with patch("penfield.auth.registration.discover", mock_discover), patch(
            "penfield.auth.registration.httpx.post", mock_post
        ):
            assert resolve_client_id(AUTH_URL, "static-id") == "static-id"
        mock_discover.assert_not_called()
        mock_post.assert_not_called()

    def test_registers_when_not_provided(self) -> None:
        with patch("penfield.auth.registration.discover", return_value=_doc()), patch(
            "penfield.auth.registration.httpx.post",
            return_value=_reg_response({"client_id": "dyn-42"}),
        ) as mock_post:
            assert resolve_client_id(AUTH_URL) == "dyn-42"
        assert mock_post.call_args[0][0] == REGISTRATION_ENDPOINT

    def test_dcr_unsupported(self) -> None:
        with patch("penfield.auth.registration.discover", return_value=_doc(None)):
            with pytest.raises(RegistrationError, match="DCR unsupported"):
                resolve_client_id(AUTH_URL)

    def test_discovery_failure_propagates(self) -> None:
        with patch(
            "penfield.auth.registration.discover",
            side_effect=DiscoveryError("down"),
        ):
            with pytest.raises(DiscoveryError):
                resolve_client_id(AUTH_URL)
