"""Exception taxonomy for the sync orchestrator.

None of these escape the public control surface: each is raised inside the
component that issued the failing call and converted there into a state
change plus a bus event.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for orchestrator failures."""


class CredentialInvalid(SyncError):
    """The remote-service credential was rejected and could not be refreshed."""


class RemoteRejection(SyncError):
    """A remote endpoint answered with a non-2xx, non-401 status."""

    def __init__(self, endpoint: str, status_code: int) -> None:
        super().__init__(f"{endpoint} rejected the request: HTTP {status_code}")
        self.endpoint = endpoint
        self.status_code = status_code


class AuthorizationUnavailable(SyncError):
    """No authorization redirect URL could be obtained."""
