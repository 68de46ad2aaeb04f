"""Authenticated HTTP client for the Penfield memory API.

Example::

    from penfield.client import ApiClient

    with ApiClient(settings, token_service) as client:
        memories = client.get("/api/v2/memories", params={"limit": "10"})
"""

from penfield.client.api_client import ApiClient

__all__ = ["ApiClient"]
