"""penfield -- OAuth login and token lifecycle for the Penfield memory API.

This package authenticates a long-running client with the Penfield
authorization server using the OAuth 2.0 Device Authorization Grant
(:rfc:`8628`), optionally registering its own client identity via Dynamic
Client Registration (:rfc:`7591`), and keeps the access token valid through
background refresh with refresh-token rotation (:rfc:`9700`).

Typical workflow::

    penfield login          # interactive device flow, persists credentials
    penfield serve          # keep the token fresh in the background

Modules:
    app: Typer application and CLI entry point.
    auth: Discovery, registration, device flow, rotation, storage, scheduling.
    client: Authenticated HTTP client for the memory API.
    config: XDG-aware settings with precedence resolution.
    models: Pydantic models shared across the package.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
