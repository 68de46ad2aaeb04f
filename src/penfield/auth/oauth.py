"""Shared OAuth protocol constants and error-body parsing.

Token and device-authorization endpoints report failures as a JSON object
``{"error": ..., "error_description": ...}`` (:rfc:`6749` section 5.2).
:func:`read_error` extracts that pair from an :class:`httpx.Response`
without ever raising, since error bodies are frequently empty or HTML.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

import httpx

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
REFRESH_TOKEN_GRANT = "refresh_token"
DEFAULT_SCOPE = "read write offline_access"

FORM_HEADERS = {"Accept": "application/json"}


class OAuthErrorBody(NamedTuple):
    """The ``error`` / ``error_description`` pair of an OAuth error response."""

    error: Optional[str]
    description: Optional[str]

    def describe(self, fallback: str) -> str:
        return self.description or self.error or fallback


def read_error(response: httpx.Response) -> OAuthErrorBody:
    """Parse an OAuth error body, returning ``(None, None)`` when there is none."""
    try:
        body = response.json()
    except ValueError:
        return OAuthErrorBody(None, None)
    if not isinstance(body, dict):
        return OAuthErrorBody(None, None)
    error = body.get("error")
    description = body.get("error_description")
    return OAuthErrorBody(
        str(error) if error else None,
        str(description) if description else None,
    )


def status_line(response: httpx.Response) -> str:
    return f"HTTP {response.status_code} {response.reason_phrase or ''}".rstrip()
