"""Validity tracking for the remote-service credential.

``check_status()`` asks the remote service whether the stored credential is
still good; ``refresh()`` asks it to renew the credential.  Both go through the
request coordinator and neither raises: failures degrade the state to invalid
and bump the error counter.

A 404 from the check endpoint means the deployment has no verification
endpoint.  That is treated as valid so a missing optional endpoint never
blocks syncing.
"""

from __future__ import annotations

import logging
from enum import Enum

import httpx

from stravasync.orchestrator.base import OrchestratorState
from stravasync.orchestrator.client import RemoteClient
from stravasync.orchestrator.coordinator import RequestCoordinator
from stravasync.orchestrator.events import EventBus, SyncEventName
from stravasync.orchestrator.store import LocalStore, read_identity

logger = logging.getLogger("stravasync.orchestrator.credentials")

TOKEN_CHECK_KEY = "token-check"
TOKEN_REFRESH_KEY = "refresh-token"


class CredentialStatus(str, Enum):
    UNKNOWN = "unknown"
    VALID = "valid"
    INVALID = "invalid"


class CredentialMonitor:
    """Track and renew the remote-service credential.

    Writes ``credential_valid`` and ``error_count`` on the shared
    ``OrchestratorState``; touches nothing else.
    """

    def __init__(
        self,
        state: OrchestratorState,
        store: LocalStore,
        client: RemoteClient,
        coordinator: RequestCoordinator,
        bus: EventBus,
    ) -> None:
        self._state = state
        self._store = store
        self._client = client
        self._coordinator = coordinator
        self._bus = bus
        self._status = CredentialStatus.UNKNOWN

    @property
    def status(self) -> CredentialStatus:
        return self._status

    def _set_valid(self, valid: bool) -> None:
        self._state.credential_valid = valid
        self._status = CredentialStatus.VALID if valid else CredentialStatus.INVALID

    async def check_status(self) -> bool:
        """Verify the stored credential with the remote service.

        Returns:
            The resulting validity.
        """
        identity = read_identity(self._store)
        if identity is None:
            self._set_valid(False)
            return False

        try:
            response: httpx.Response = await self._coordinator.execute(
                TOKEN_CHECK_KEY, lambda: self._client.check_token(identity)
            )
        except Exception as exc:
            logger.warning("Credential check failed: %s", exc)
            self._set_valid(False)
            self._state.record_error()
            self._bus.publish(SyncEventName.CREDENTIAL_STATUS_CHANGED, {"valid": False})
            return False

        if response.status_code == 404:
            logger.warning("Credential check endpoint not found; assuming credential is valid")
            self._set_valid(True)
            self._state.reset_errors()
        elif response.is_success:
            self._set_valid(True)
            self._state.reset_errors()
        else:
            logger.info("Credential check rejected: HTTP %d", response.status_code)
            self._set_valid(False)
            self._state.record_error()

        self._bus.publish(
            SyncEventName.CREDENTIAL_STATUS_CHANGED, {"valid": self._state.credential_valid}
        )
        return self._state.credential_valid

    async def refresh(self) -> bool:
        """Ask the remote service to renew the credential.

        Returns:
            True if the credential was refreshed.  On False nothing is
            escalated; the caller decides what happens next.
        """
        identity = read_identity(self._store)
        if identity is None:
            logger.info("Credential refresh skipped: not signed in")
            return False

        try:
            response: httpx.Response = await self._coordinator.execute(
                TOKEN_REFRESH_KEY,
                lambda: self._client.refresh_token(identity),
                use_cache=False,
            )
        except Exception as exc:
            logger.warning("Credential refresh failed: %s", exc)
            self._set_valid(False)
            self._state.record_error()
            return False

        if not response.is_success:
            logger.info("Credential refresh rejected: HTTP %d", response.status_code)
            return False

        self._set_valid(True)
        self._state.reset_errors()
        self._coordinator.invalidate(TOKEN_CHECK_KEY)
        self._bus.publish(SyncEventName.CREDENTIAL_REFRESHED)
        logger.info("Credential refreshed for user %s", identity.user_id)
        return True
