"""Shared constants, response builders and a fake clock for penfield tests."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from penfield.models import Credential

AUTH_URL = "https://auth.example.com"
TOKEN_ENDPOINT = f"{AUTH_URL}/oauth/token"
DEVICE_ENDPOINT = f"{AUTH_URL}/oauth/device/code"
REGISTRATION_ENDPOINT = f"{AUTH_URL}/oauth/register"

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
HOUR_MS = 3_600_000


def json_response(
    data: Any,
    status_code: int = 200,
    method: str = "POST",
    url: str = TOKEN_ENDPOINT,
) -> httpx.Response:
    """Build a real httpx.Response with a JSON body."""
    return httpx.Response(
        status_code=status_code,
        json=data,
        request=httpx.Request(method, url),
    )


def discovery_document(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "issuer": AUTH_URL,
        "token_endpoint": TOKEN_ENDPOINT,
        "device_authorization_endpoint": DEVICE_ENDPOINT,
        "registration_endpoint": REGISTRATION_ENDPOINT,
    }
    doc.update(overrides)
    return {k: v for k, v in doc.items() if v is not None}


def make_credential(
    expires_in_ms: int = 24 * HOUR_MS,
    refresh_token: Optional[str] = "rt-1",
    **overrides: Any,
) -> Credential:
    fields: dict[str, Any] = {
        "client_id": "client-1",
        "access_token": "at-1",
        "refresh_token": refresh_token,
        "expires_at": NOW_MS + expires_in_ms,
        "created_at": NOW_MS,
    }
    fields.update(overrides)
    return Credential(**fields)


class FakeClock:
    """A controllable clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = NOW) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

